"""
Payment Domain Events

Published after the unit of work that changed the transaction commits.
"""

from dataclasses import dataclass
from uuid import UUID

from shared.domain.base import DomainEvent
from shared.domain.value_objects import Money


@dataclass(kw_only=True)
class PaymentSucceeded(DomainEvent):
    """
    Event: Payment captured by the gateway

    Triggers:
    - Payment receipt notification to the guest
    """
    transaction_id: UUID
    booking_id: UUID
    user_id: UUID
    amount: Money
    external_intent_id: str


@dataclass(kw_only=True)
class PaymentFailed(DomainEvent):
    transaction_id: UUID
    booking_id: UUID
    reason: str = ''


@dataclass(kw_only=True)
class PaymentRefunded(DomainEvent):
    transaction_id: UUID
    booking_id: UUID
    refund_amount: Money
    status: str
