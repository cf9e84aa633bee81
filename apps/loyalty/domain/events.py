"""
Loyalty Domain Events
"""

from dataclasses import dataclass
from uuid import UUID

from shared.domain.base import DomainEvent


@dataclass(kw_only=True)
class PointsEarned(DomainEvent):
    account_id: UUID
    user_id: UUID
    booking_id: UUID | None
    points: int


@dataclass(kw_only=True)
class PointsRedeemed(DomainEvent):
    account_id: UUID
    user_id: UUID
    booking_id: UUID | None
    points: int


@dataclass(kw_only=True)
class PointsAdjusted(DomainEvent):
    account_id: UUID
    user_id: UUID
    points: int
    admin_id: UUID


@dataclass(kw_only=True)
class TierUpgraded(DomainEvent):
    account_id: UUID
    user_id: UUID
    previous_tier: str
    new_tier: str
