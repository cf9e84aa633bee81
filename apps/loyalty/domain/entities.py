"""
Loyalty Domain Entities

- LoyaltyAccount: cached balance and tier of one user (aggregate root)
- LoyaltyTransaction: immutable ledger row; the balance is the sum of rows

Every balance change on the account returns the ledger entry that records
it, so the caller persists both in the same unit of work.
"""

from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from enum import Enum
from uuid import UUID

from apps.loyalty.domain.tiers import LoyaltyTier, TIER_CONFIG, get_tier_for_spending
from shared.domain.base import Aggregate, Entity
from shared.domain.exceptions import ValidationError


class LoyaltyTransactionType(Enum):
    EARN = 'EARN'
    REDEEM = 'REDEEM'
    BONUS = 'BONUS'
    ADJUSTMENT = 'ADJUSTMENT'


@dataclass(kw_only=True, eq=False)
class LoyaltyTransaction(Entity):
    account_id: UUID
    booking_id: UUID | None = None
    type: LoyaltyTransactionType
    points: int
    balance_after: int
    description: str = ''
    metadata: dict = field(default_factory=dict)


@dataclass(kw_only=True, eq=False)
class LoyaltyAccount(Aggregate):
    """
    Loyalty Account Aggregate Root

    Key invariants:
    - current_points >= 0
    - lifetime_points and lifetime_spending never decrease
    - tier == get_tier_for_spending(lifetime_spending) after every award
    """
    user_id: UUID
    current_points: int = 0
    lifetime_points: int = 0
    lifetime_spending: Decimal = Decimal('0')
    tier: LoyaltyTier = LoyaltyTier.BRONZE
    tier_updated_at: datetime | None = None

    def _entry(self, type_, points, now, booking_id=None, description='', metadata=None):
        return LoyaltyTransaction(
            account_id=self.id,
            booking_id=booking_id,
            type=type_,
            points=points,
            balance_after=self.current_points,
            description=description,
            metadata=metadata or {},
            created_at=now,
            updated_at=now,
        )

    def earn(self, points: int, amount: Decimal, booking_id: UUID, now: datetime,
             description: str = '') -> LoyaltyTransaction:
        """
        Credit points for money spent

        Events: PointsEarned
        """
        if points < 0:
            raise ValidationError("Earned points cannot be negative", points=points)

        from apps.loyalty.domain.events import PointsEarned

        metadata = {
            'amount': str(amount),
            'tier': self.tier.value,
            'multiplier': str(TIER_CONFIG[self.tier].multiplier),
        }
        self.current_points += points
        self.lifetime_points += points
        self.lifetime_spending += Decimal(amount)
        self.touch(now)

        entry = self._entry(
            LoyaltyTransactionType.EARN, points, now,
            booking_id=booking_id,
            description=description or f"Earned {points} points from booking",
            metadata=metadata,
        )
        self.add_event(PointsEarned(
            aggregate_id=self.id,
            account_id=self.id,
            user_id=self.user_id,
            booking_id=booking_id,
            points=points,
        ))
        return entry

    def upgrade_tier_if_needed(self, now: datetime) -> LoyaltyTransaction | None:
        """
        Re-derive the tier from lifetime spending

        A change is recorded as a zero-point BONUS entry.
        Events: TierUpgraded
        """
        new_tier = get_tier_for_spending(self.lifetime_spending)
        if new_tier == self.tier:
            return None

        from apps.loyalty.domain.events import TierUpgraded

        previous = self.tier
        self.tier = new_tier
        self.tier_updated_at = now
        self.touch(now)

        entry = self._entry(
            LoyaltyTransactionType.BONUS, 0, now,
            description=(
                f"Tier upgraded from {TIER_CONFIG[previous].name} "
                f"to {TIER_CONFIG[new_tier].name}"
            ),
            metadata={'previousTier': previous.value, 'newTier': new_tier.value},
        )
        self.add_event(TierUpgraded(
            aggregate_id=self.id,
            account_id=self.id,
            user_id=self.user_id,
            previous_tier=previous.value,
            new_tier=new_tier.value,
        ))
        return entry

    def redeem(self, points: int, booking_id: UUID, now: datetime,
               description: str = '', metadata: dict | None = None) -> LoyaltyTransaction:
        """Events: PointsRedeemed"""
        if points <= 0:
            raise ValidationError("Points to redeem must be positive", points=points)
        if points > self.current_points:
            raise ValidationError(
                "Insufficient points",
                requested=points,
                available=self.current_points,
            )

        from apps.loyalty.domain.events import PointsRedeemed

        self.current_points -= points
        self.touch(now)

        entry = self._entry(
            LoyaltyTransactionType.REDEEM, -points, now,
            booking_id=booking_id,
            description=description or f"Redeemed {points} points",
            metadata=metadata,
        )
        self.add_event(PointsRedeemed(
            aggregate_id=self.id,
            account_id=self.id,
            user_id=self.user_id,
            booking_id=booking_id,
            points=points,
        ))
        return entry

    def adjust(self, points: int, reason: str, admin_id: UUID, now: datetime) -> LoyaltyTransaction:
        """
        Manual correction by an admin

        Positive adjustments also count towards lifetime points.
        Events: PointsAdjusted
        """
        if points == 0:
            raise ValidationError("Adjustment cannot be zero")
        if points < 0 and -points > self.current_points:
            raise ValidationError(
                "Cannot remove more points than available",
                requested=points,
                available=self.current_points,
            )

        from apps.loyalty.domain.events import PointsAdjusted

        self.current_points += points
        if points > 0:
            self.lifetime_points += points
        self.touch(now)

        entry = self._entry(
            LoyaltyTransactionType.ADJUSTMENT, points, now,
            description=reason,
            metadata={'adminId': str(admin_id)},
        )
        self.add_event(PointsAdjusted(
            aggregate_id=self.id,
            account_id=self.id,
            user_id=self.user_id,
            points=points,
            admin_id=admin_id,
        ))
        return entry
