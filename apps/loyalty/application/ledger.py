"""
Loyalty Ledger

Append-only points ledger with a cached balance on the account.

Every balance change happens in one unit of work that locks the account
row, appends the ledger entry and saves the account, so
    account.current_points == sum(entry.points)
holds after every commit. Methods that take `uow=` join the caller's unit
of work instead of opening their own; the booking state machine uses this
to award or redeem points atomically with the booking change.
"""

from contextlib import nullcontext
from decimal import Decimal
from math import ceil
from typing import Callable, List
from uuid import UUID
import logging

from apps.bookings.domain.ports import LoyaltyAwarder, LoyaltyRedeemer, Redemption
from apps.loyalty.domain.entities import LoyaltyAccount, LoyaltyTransaction, LoyaltyTransactionType
from apps.loyalty.domain.tiers import (
    LoyaltyConfig,
    LoyaltyTier,
    calculate_max_redeemable_points,
    calculate_points_to_earn,
    calculate_tier_progress,
    points_to_money,
)
from shared.domain.base import utcnow
from shared.domain.exceptions import ConflictError, ValidationError
from shared.domain.value_objects import Money

logger = logging.getLogger(__name__)


class LoyaltyLedger(LoyaltyAwarder, LoyaltyRedeemer):

    def __init__(self, uow_factory: Callable, config: LoyaltyConfig | None = None, clock=utcnow):
        self.uow_factory = uow_factory
        self.config = config or LoyaltyConfig()
        self.clock = clock

    def _unit(self, uow):
        return nullcontext(uow) if uow is not None else self.uow_factory()

    def _locked_account(self, uow, user_id: UUID, now) -> LoyaltyAccount:
        account = uow.loyalty_accounts.get_by_user(user_id, lock=True)
        if account is not None:
            return account

        account = LoyaltyAccount(user_id=user_id, created_at=now, updated_at=now)
        try:
            uow.loyalty_accounts.add(account)
        except ConflictError:
            # created concurrently by another unit of work
            account = uow.loyalty_accounts.get_by_user(user_id, lock=True)
        else:
            logger.info(f"Created loyalty account for user {user_id}")
        return account

    # ===== Accounts =====

    def get_or_create_account(self, user_id: UUID) -> LoyaltyAccount:
        with self.uow_factory() as uow:
            account = uow.loyalty_accounts.get_by_user(user_id)
            if account is None:
                account = self._locked_account(uow, user_id, self.clock())
        return account

    def get_tier_progress(self, user_id: UUID) -> dict:
        account = self.get_or_create_account(user_id)
        return calculate_tier_progress(account.tier, account.lifetime_spending)

    def get_account_details(self, user_id: UUID, limit: int = 10) -> dict:
        account = self.get_or_create_account(user_id)
        with self.uow_factory() as uow:
            recent = uow.loyalty_transactions.list_for_account(account.id, limit=limit)
        return {
            'account': account,
            'tier_progress': calculate_tier_progress(account.tier, account.lifetime_spending),
            'recent_transactions': recent,
        }

    def get_transaction_history(self, user_id: UUID, page: int = 1, limit: int = 20) -> dict:
        """Newest entries first, paginated"""
        if page < 1 or limit < 1:
            raise ValidationError("page and limit must be positive", page=page, limit=limit)

        account = self.get_or_create_account(user_id)
        with self.uow_factory() as uow:
            total = uow.loyalty_transactions.count_for_account(account.id)
            transactions = uow.loyalty_transactions.list_for_account(
                account.id, offset=(page - 1) * limit, limit=limit
            )
        return {
            'transactions': transactions,
            'total': total,
            'page': page,
            'total_pages': ceil(total / limit),
        }

    def ledger_balance(self, user_id: UUID) -> int:
        """Sum of ledger entries; equals current_points when the ledger is consistent"""
        with self.uow_factory() as uow:
            account = uow.loyalty_accounts.get_by_user(user_id)
            if account is None:
                return 0
            return uow.loyalty_transactions.sum_points(account.id)

    def find_mismatches(self) -> List[dict]:
        """Accounts whose cached balance differs from their ledger sum"""
        mismatches = []
        with self.uow_factory() as uow:
            for account in uow.loyalty_accounts.list_all():
                ledger_sum = uow.loyalty_transactions.sum_points(account.id)
                if ledger_sum != account.current_points:
                    mismatches.append({
                        'user_id': account.user_id,
                        'current_points': account.current_points,
                        'ledger_sum': ledger_sum,
                    })
        return mismatches

    # ===== Earning =====

    def calculate_points_to_earn(self, amount: Decimal, tier: LoyaltyTier) -> int:
        return calculate_points_to_earn(amount, tier, self.config)

    def award_points(self, user_id: UUID, booking_id: UUID, amount, description: str = '',
                     *, uow=None) -> LoyaltyTransaction:
        """
        Credit points for a paid booking

        Idempotent per booking: a second award returns the existing EARN entry.
        Crossing a tier threshold appends a zero-point BONUS entry.
        """
        if isinstance(amount, Money):
            amount = amount.amount
        amount = Decimal(amount)
        if amount < 0:
            raise ValidationError("Amount cannot be negative", amount=amount)

        with self._unit(uow) as unit:
            now = self.clock()
            account = self._locked_account(unit, user_id, now)

            existing = unit.loyalty_transactions.find_for_booking(
                account.id, booking_id, LoyaltyTransactionType.EARN
            )
            if existing is not None:
                logger.info(f"Points for booking {booking_id} already awarded, skipping")
                return existing

            points = self.calculate_points_to_earn(amount, account.tier)
            entry = account.earn(points, amount, booking_id, now, description)
            unit.loyalty_transactions.add(entry)

            bonus = account.upgrade_tier_if_needed(now)
            if bonus is not None:
                unit.loyalty_transactions.add(bonus)
                logger.info(f"User {user_id} upgraded to {account.tier.value}")

            unit.loyalty_accounts.save(account)
            unit.collect_events(account)

        logger.info(f"Awarded {points} points to user {user_id} for booking {booking_id}")
        return entry

    # ===== Redemption =====

    def calculate_max_redeemable_points(self, current_points: int, booking_amount: Money) -> dict:
        return calculate_max_redeemable_points(current_points, booking_amount, self.config)

    def redeem_points(self, user_id: UUID, booking_id: UUID, requested: int, booking_amount: Money,
                      *, uow=None) -> Redemption:
        """
        Spend points against a booking

        The request is clamped to the redemption cap; the actual points and
        discount are returned.
        """
        if requested <= 0:
            raise ValidationError("Points to redeem must be positive", requested=requested)

        with self._unit(uow) as unit:
            now = self.clock()
            account = self._locked_account(unit, user_id, now)

            if requested > account.current_points:
                raise ValidationError(
                    "Insufficient points",
                    requested=requested,
                    available=account.current_points,
                )

            limits = self.calculate_max_redeemable_points(account.current_points, booking_amount)
            points = min(requested, limits['max_points'])
            if points <= 0:
                raise ValidationError("No points can be redeemed for this booking", booking_id=booking_id)
            discount = points_to_money(points, booking_amount.currency, self.config)

            entry = account.redeem(
                points, booking_id, now,
                description=f"Redeemed {points} points for ${discount.amount:.2f} discount",
                metadata={
                    'discountAmount': str(discount.amount),
                    'originalTotal': str(booking_amount.amount),
                },
            )
            unit.loyalty_transactions.add(entry)
            unit.loyalty_accounts.save(account)
            unit.collect_events(account)

        logger.info(f"User {user_id} redeemed {points} points on booking {booking_id}")
        return Redemption(points=points, discount=discount)

    # ===== Admin =====

    def adjust_points(self, user_id: UUID, points: int, reason: str, admin_id: UUID,
                      *, uow=None) -> LoyaltyTransaction:
        if not reason:
            raise ValidationError("A reason is required for manual adjustments")

        with self._unit(uow) as unit:
            now = self.clock()
            account = self._locked_account(unit, user_id, now)
            entry = account.adjust(points, reason, admin_id, now)
            unit.loyalty_transactions.add(entry)
            unit.loyalty_accounts.save(account)
            unit.collect_events(account)

        logger.info(f"Admin {admin_id} adjusted user {user_id} by {points} points: {reason}")
        return entry
