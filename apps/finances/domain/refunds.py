"""
Refund Policy

Pure decision function: given a booking, its captured transaction, the
current time and who is asking, how much money goes back.

Rules:
- admin with an explicit amount: 0 < amount <= refundable
- cancelled at least `cancellation_window` before check-in: full refund
- admin without an amount: full refund (admins bypass the window)
- late cancellation by anyone else: `late_refund_percent` of refundable,
  rounded down to the cent
"""

from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal

from apps.bookings.domain.policies import BookingPolicy
from apps.finances.domain.entities import TransactionStatus
from shared.domain.actors import Actor
from shared.domain.exceptions import ForbiddenError, ValidationError
from shared.domain.value_objects import Money


@dataclass(frozen=True)
class RefundPolicy:
    booking_policy: BookingPolicy = field(default_factory=BookingPolicy)
    late_refund_percent: Decimal = Decimal('50')

    def __post_init__(self):
        if not Decimal('0') <= Decimal(self.late_refund_percent) <= Decimal('100'):
            raise ValueError("late_refund_percent must be between 0 and 100")


@dataclass(frozen=True)
class RefundDecision:
    amount: Money
    resulting_status: TransactionStatus
    basis: str

    @property
    def is_full(self) -> bool:
        return self.resulting_status == TransactionStatus.REFUNDED


def compute_refund(
    booking,
    transaction,
    now: datetime,
    actor: Actor,
    requested_amount: Money | None = None,
    policy: RefundPolicy | None = None,
) -> RefundDecision:
    policy = policy or RefundPolicy()
    refundable = transaction.refundable_amount

    if requested_amount is not None:
        if not actor.is_admin:
            raise ForbiddenError("Only admins can choose a refund amount", user_id=actor.user_id)
        if requested_amount.currency != refundable.currency:
            raise ValidationError(
                "Refund currency does not match the payment",
                currency=requested_amount.currency,
            )
        if not requested_amount or requested_amount > refundable:
            raise ValidationError(
                f"Refund amount must be greater than zero and at most {refundable}",
                requested=requested_amount,
            )
        amount, basis = requested_amount, 'admin_amount'
    elif policy.booking_policy.is_within_free_cancellation(booking, now):
        amount, basis = refundable, 'within_window'
    elif actor.is_admin:
        amount, basis = refundable, 'admin_override'
    else:
        amount, basis = refundable.percent(policy.late_refund_percent), 'late_cancellation'

    total_refunded = transaction.refunded_so_far + amount
    if total_refunded >= transaction.amount:
        status = TransactionStatus.REFUNDED
    else:
        status = TransactionStatus.PARTIALLY_REFUNDED
    return RefundDecision(amount=amount, resulting_status=status, basis=basis)
