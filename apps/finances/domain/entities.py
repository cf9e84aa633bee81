"""
Payment Domain Entities

- PaymentTransaction: one gateway payment intent for a booking
- ProcessedWebhookEvent: a gateway delivery already applied, used to make
  webhook handling idempotent
"""

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from uuid import UUID

from shared.domain.base import Aggregate, Entity
from shared.domain.value_objects import Money


class TransactionStatus(Enum):
    PENDING = 'pending'
    SUCCEEDED = 'succeeded'
    FAILED = 'failed'
    REFUNDED = 'refunded'
    PARTIALLY_REFUNDED = 'partially_refunded'


# Monotonic: a status never moves back to one it came from.
ALLOWED_TRANSITIONS = {
    TransactionStatus.PENDING: {
        TransactionStatus.SUCCEEDED,
        TransactionStatus.FAILED,
        TransactionStatus.REFUNDED,
    },
    TransactionStatus.FAILED: {TransactionStatus.SUCCEEDED},
    TransactionStatus.SUCCEEDED: {
        TransactionStatus.PARTIALLY_REFUNDED,
        TransactionStatus.REFUNDED,
    },
    TransactionStatus.PARTIALLY_REFUNDED: {
        TransactionStatus.PARTIALLY_REFUNDED,
        TransactionStatus.REFUNDED,
    },
    TransactionStatus.REFUNDED: set(),
}

# At most one of these per booking
ACTIVE_STATUSES = frozenset({TransactionStatus.PENDING, TransactionStatus.SUCCEEDED})


@dataclass(kw_only=True, eq=False)
class PaymentTransaction(Aggregate):
    """
    Payment Transaction Aggregate Root

    Status changes only through the methods below; each returns False when
    the change would move the transaction backwards, so stale or reordered
    gateway events can be logged and dropped by the caller.
    """
    booking_id: UUID
    user_id: UUID
    amount: Money
    external_intent_id: str
    client_secret: str = ''
    attempt: int = 1
    status: TransactionStatus = TransactionStatus.PENDING

    refund_amount: Money | None = None
    refund_reason: str = ''
    external_refund_id: str = ''
    failure_reason: str = ''

    succeeded_at: datetime | None = None
    refunded_at: datetime | None = None

    def can_move_to(self, status: TransactionStatus) -> bool:
        return status in ALLOWED_TRANSITIONS[self.status]

    def mark_succeeded(self, now: datetime) -> bool:
        """
        Mark payment captured

        Events: PaymentSucceeded
        """
        if not self.can_move_to(TransactionStatus.SUCCEEDED):
            return False

        from apps.finances.domain.events import PaymentSucceeded

        self.status = TransactionStatus.SUCCEEDED
        self.succeeded_at = now
        self.failure_reason = ''
        self.touch(now)
        self.add_event(PaymentSucceeded(
            aggregate_id=self.id,
            transaction_id=self.id,
            booking_id=self.booking_id,
            user_id=self.user_id,
            amount=self.amount,
            external_intent_id=self.external_intent_id,
        ))
        return True

    def mark_failed(self, reason: str, now: datetime) -> bool:
        """Events: PaymentFailed"""
        if not self.can_move_to(TransactionStatus.FAILED):
            return False

        from apps.finances.domain.events import PaymentFailed

        self.status = TransactionStatus.FAILED
        self.failure_reason = reason
        self.touch(now)
        self.add_event(PaymentFailed(
            aggregate_id=self.id,
            transaction_id=self.id,
            booking_id=self.booking_id,
            reason=reason,
        ))
        return True

    def record_refund(
        self,
        amount: Money,
        status: TransactionStatus,
        now: datetime,
        reason: str = '',
        external_refund_id: str = '',
    ) -> bool:
        """
        Record money returned to the customer

        amount is the cumulative refunded total as reported by the gateway.
        Events: PaymentRefunded
        """
        if status not in (TransactionStatus.REFUNDED, TransactionStatus.PARTIALLY_REFUNDED):
            raise ValueError(f"Not a refund status: {status.value}")
        if not self.can_move_to(status):
            return False
        if self.refund_amount is not None and amount <= self.refund_amount:
            return False

        from apps.finances.domain.events import PaymentRefunded

        self.status = status
        self.refund_amount = amount
        self.refunded_at = now
        if reason:
            self.refund_reason = reason
        if external_refund_id:
            self.external_refund_id = external_refund_id
        self.touch(now)
        self.add_event(PaymentRefunded(
            aggregate_id=self.id,
            transaction_id=self.id,
            booking_id=self.booking_id,
            refund_amount=amount,
            status=status.value,
        ))
        return True

    @property
    def currency(self) -> str:
        return self.amount.currency

    @property
    def refunded_so_far(self) -> Money:
        return self.refund_amount or Money.zero(self.currency)

    @property
    def refundable_amount(self) -> Money:
        """Captured amount not yet returned"""
        return self.amount - self.refunded_so_far

    @property
    def is_active(self) -> bool:
        return self.status in ACTIVE_STATUSES

    def __repr__(self):
        return (
            f"PaymentTransaction(id={self.id}, booking_id={self.booking_id}, "
            f"intent={self.external_intent_id}, status={self.status.value})"
        )


@dataclass(kw_only=True, eq=False)
class ProcessedWebhookEvent(Entity):
    """Unique on (external_intent_id, event_type)"""
    external_intent_id: str
    event_type: str
    event_id: str = ''
    received_at: datetime
