"""
Payment Reconciler

Keeps local payment state in line with the gateway:
- create_intent: opens a gateway payment intent for a booking
- handle_webhook: applies signed gateway events exactly once
- sync_intent: pulls an intent from the gateway and applies its status
  through the same idempotent path (client confirm, periodic reconciliation)
- refund: returns money and cancels the booking once the gateway agrees
- get_payment_history: a user's transactions, newest first

Booking payment state is only ever derived from verified gateway events or
gateway retrieval, never from what a client reports.

Every gateway call happens outside a unit of work. Lock order inside a unit
of work is payment transaction -> booking -> loyalty account.
"""

from dataclasses import dataclass
from datetime import timedelta
from typing import Callable
from uuid import UUID
import logging

from apps.bookings.application.lifecycle import (
    confirm_booking_payment,
    ensure_owner_or_admin,
    load_booking,
)
from apps.bookings.domain.entities import BookingPaymentStatus, BookingStatus
from apps.bookings.domain.ports import LoyaltyAwarder, RefundIssuer
from apps.finances.domain.entities import (
    PaymentTransaction,
    ProcessedWebhookEvent,
    TransactionStatus,
)
from apps.finances.domain.refunds import RefundPolicy, compute_refund
from apps.finances.gateway import PaymentGateway
from apps.finances.signatures import DEFAULT_TOLERANCE, construct_event
from shared.domain.actors import Actor
from shared.domain.base import utcnow
from shared.domain.exceptions import (
    ConflictError,
    ExternalGatewayError,
    ForbiddenError,
    IllegalTransitionError,
    NotFoundError,
    ValidationError,
)
from shared.domain.value_objects import Money

logger = logging.getLogger(__name__)

PAYMENT_SUCCEEDED = 'payment_intent.succeeded'
PAYMENT_FAILED = 'payment_intent.payment_failed'
CHARGE_REFUNDED = 'charge.refunded'

HANDLED_EVENT_TYPES = (PAYMENT_SUCCEEDED, PAYMENT_FAILED, CHARGE_REFUNDED)

# WebhookResult.status values
PROCESSED = 'processed'
DUPLICATE = 'duplicate'
UNMATCHED = 'unmatched'
IGNORED = 'ignored'
PENDING = 'pending'


@dataclass(frozen=True)
class WebhookResult:
    status: str
    event_type: str = ''
    intent_id: str = ''


class PaymentReconciler(RefundIssuer):

    def __init__(
        self,
        uow_factory: Callable,
        gateway: PaymentGateway,
        loyalty: LoyaltyAwarder,
        webhook_secret: str,
        refund_policy: RefundPolicy | None = None,
        webhook_tolerance: int = DEFAULT_TOLERANCE,
        clock=utcnow,
    ):
        self.uow_factory = uow_factory
        self.gateway = gateway
        self.loyalty = loyalty
        self.webhook_secret = webhook_secret
        self.refund_policy = refund_policy or RefundPolicy()
        self.webhook_tolerance = webhook_tolerance
        self.clock = clock

    # ===== Intents =====

    def create_intent(self, booking_id: UUID, actor: Actor, amount: Money | None = None,
                      currency: str | None = None) -> PaymentTransaction:
        """
        Open a gateway payment intent for the booking's payable amount

        The returned transaction carries the client secret the client uses
        to complete the payment.
        """
        with self.uow_factory() as uow:
            booking = load_booking(uow, booking_id)
            ensure_owner_or_admin(booking, actor)
            payable = self._check_payable(uow, booking, amount, currency)
            attempt = len(uow.payments.list_for_booking(booking.id)) + 1

        intent = self.gateway.create_intent(
            payable,
            metadata={'bookingId': str(booking.id), 'userId': str(booking.user_id)},
            idempotency_key=f"intent:{booking.id}:{attempt}",
        )

        now = self.clock()
        with self.uow_factory() as uow:
            booking = load_booking(uow, booking_id, lock=True)
            if self._check_payable(uow, booking, amount, currency) != payable:
                raise ConflictError("Booking amount changed while creating the payment", booking_id=booking_id)

            transaction = PaymentTransaction(
                booking_id=booking.id,
                user_id=booking.user_id,
                amount=payable,
                external_intent_id=intent.id,
                client_secret=intent.client_secret,
                attempt=attempt,
                created_at=now,
                updated_at=now,
            )
            uow.payments.add(transaction)
            booking.mark_payment_pending(transaction.id, now)
            uow.bookings.save(booking)

        logger.info(
            f"Payment intent {intent.id} created for booking {booking_id}, "
            f"amount {payable}, attempt {attempt}"
        )
        return transaction

    def _check_payable(self, uow, booking, amount, currency) -> Money:
        if booking.status != BookingStatus.PENDING_PAYMENT:
            raise ConflictError(
                f"Booking is {booking.status.value}, payment is not expected",
                booking_id=booking.id,
            )

        payable = booking.payable_amount
        if currency and currency.upper() != payable.currency:
            raise ValidationError(f"Payment currency must be {payable.currency}", currency=currency)
        if amount is not None and amount != payable:
            raise ValidationError(f"Payment amount must equal {payable}", amount=amount)
        if not payable:
            raise ValidationError("Nothing to pay for this booking", booking_id=booking.id)

        active = uow.payments.find_active_for_booking(booking.id)
        if active is not None:
            raise ConflictError(
                f"Booking already has a {active.status.value} payment",
                booking_id=booking.id,
                transaction_id=active.id,
            )
        return payable

    # ===== Webhooks =====

    def handle_webhook(self, payload: bytes, signature: str | None) -> WebhookResult:
        """
        Verify and apply a gateway delivery

        Deliveries are at-least-once; each (intent, event type) is applied
        exactly once.
        """
        event = construct_event(payload, signature, self.webhook_secret, tolerance=self.webhook_tolerance)
        event_type = event['type']
        event_id = event.get('id', '')
        obj = (event.get('data') or {}).get('object') or {}

        if event_type not in HANDLED_EVENT_TYPES:
            logger.info(f"Ignoring gateway event {event_id} of type {event_type}")
            return WebhookResult(IGNORED, event_type)

        if event_type == CHARGE_REFUNDED:
            intent_id = obj.get('payment_intent')
            currency = obj.get('currency', 'usd')
            refunded = Money.from_minor_units(int(obj.get('amount_refunded', 0)), currency)
            full = bool(obj.get('refunded'))
            # each cumulative refund total is a distinct delivery
            dedup_type = f"{CHARGE_REFUNDED}:{refunded.to_minor_units()}"

            def apply(uow, transaction, at):
                self._apply_refund(uow, transaction, refunded, full, at)
        elif event_type == PAYMENT_SUCCEEDED:
            intent_id = obj.get('id')
            dedup_type = event_type
            apply = self._apply_success
        else:
            intent_id = obj.get('id')
            dedup_type = event_type
            error = obj.get('last_payment_error') or {}
            reason = error.get('message', '') or 'Payment failed'

            def apply(uow, transaction, at):
                self._apply_failure(uow, transaction, reason, at)

        if not intent_id:
            raise ValidationError("Webhook event does not reference a payment intent", event_id=event_id)

        status = self._process(intent_id, dedup_type, event_id, apply)
        return WebhookResult(status, event_type, intent_id)

    def sync_intent(self, intent_id: str) -> WebhookResult:
        """
        Fetch the intent from the gateway and apply its status

        Shares the webhook idempotency keys, so a webhook arriving after a
        sync (or the reverse) is a no-op.
        """
        intent = self.gateway.retrieve_intent(intent_id)

        if intent.succeeded:
            status = self._process(intent_id, PAYMENT_SUCCEEDED, f"sync:{intent_id}", self._apply_success)
            return WebhookResult(status, PAYMENT_SUCCEEDED, intent_id)
        if intent.failed:
            reason = intent.last_error or f"Payment {intent.status}"

            def apply(uow, transaction, at):
                self._apply_failure(uow, transaction, reason, at)

            status = self._process(intent_id, PAYMENT_FAILED, f"sync:{intent_id}", apply)
            return WebhookResult(status, PAYMENT_FAILED, intent_id)

        logger.info(f"Payment intent {intent_id} still {intent.status}")
        return WebhookResult(PENDING, '', intent_id)

    def confirm_from_client(self, intent_id: str, actor: Actor) -> WebhookResult:
        """Client-side "I paid" call: the gateway, not the client, decides"""
        with self.uow_factory() as uow:
            transaction = uow.payments.get_by_intent(intent_id)
            if transaction is None:
                raise NotFoundError(f"Payment intent {intent_id} not found")
            if not (actor.is_admin or actor.owns(transaction.user_id)):
                raise ForbiddenError("Not your payment", intent_id=intent_id)
        return self.sync_intent(intent_id)

    def reconcile_pending_intents(self, older_than: timedelta) -> dict:
        """Sync PENDING transactions that have waited longer than older_than"""
        cutoff = self.clock() - older_than
        with self.uow_factory() as uow:
            stale = uow.payments.list_pending_created_before(cutoff)

        summary = {'checked': 0, 'updated': 0, 'errors': 0}
        for transaction in stale:
            summary['checked'] += 1
            try:
                result = self.sync_intent(transaction.external_intent_id)
            except (ExternalGatewayError, ConflictError) as e:
                summary['errors'] += 1
                logger.warning(f"Could not sync intent {transaction.external_intent_id}: {e}")
                continue
            if result.status == PROCESSED:
                summary['updated'] += 1
        return summary

    def _process(self, intent_id: str, dedup_type: str, event_id: str, apply) -> str:
        now = self.clock()
        try:
            with self.uow_factory() as uow:
                transaction = uow.payments.get_by_intent(intent_id, lock=True)
                if transaction is None:
                    logger.warning(f"Dropping {dedup_type} for unknown payment intent {intent_id}")
                    return UNMATCHED

                if uow.webhook_events.exists(intent_id, dedup_type):
                    logger.info(f"Duplicate {dedup_type} for intent {intent_id}, already processed")
                    return DUPLICATE

                uow.webhook_events.add(ProcessedWebhookEvent(
                    external_intent_id=intent_id,
                    event_type=dedup_type,
                    event_id=event_id or '',
                    received_at=now,
                ))
                apply(uow, transaction, now)
        except ConflictError:
            with self.uow_factory() as uow:
                if uow.webhook_events.exists(intent_id, dedup_type):
                    logger.info(f"Duplicate {dedup_type} for intent {intent_id}, processed concurrently")
                    return DUPLICATE
            raise
        return PROCESSED

    def _apply_success(self, uow, transaction: PaymentTransaction, now):
        if transaction.status == TransactionStatus.FAILED:
            competing = uow.payments.find_active_for_booking(transaction.booking_id)
            if competing is not None and competing.status == TransactionStatus.PENDING:
                competing.mark_failed(f"Superseded by {transaction.external_intent_id}", now)
                uow.payments.save(competing)
                uow.collect_events(competing)
                logger.warning(
                    f"Intent {competing.external_intent_id} superseded by late success "
                    f"of {transaction.external_intent_id}"
                )

        if transaction.mark_succeeded(now):
            uow.payments.save(transaction)
            uow.collect_events(transaction)
            logger.info(f"Payment {transaction.id} succeeded for booking {transaction.booking_id}")
        elif transaction.status != TransactionStatus.SUCCEEDED:
            logger.warning(
                f"Ignoring success for payment {transaction.id} in status {transaction.status.value}"
            )
            return

        booking = load_booking(uow, transaction.booking_id, lock=True)
        try:
            confirm_booking_payment(uow, booking, transaction, self.loyalty, now)
        except ConflictError as e:
            logger.error(
                f"Payment {transaction.id} captured but booking {booking.id} "
                f"({booking.status.value}) cannot be confirmed: {e}"
            )

    def _apply_failure(self, uow, transaction: PaymentTransaction, reason: str, now):
        if not transaction.mark_failed(reason, now):
            logger.warning(
                f"Ignoring failure for payment {transaction.id} in status {transaction.status.value}"
            )
            return
        uow.payments.save(transaction)
        uow.collect_events(transaction)

        booking = load_booking(uow, transaction.booking_id, lock=True)
        if booking.status == BookingStatus.PENDING_PAYMENT and booking.payment_transaction_id == transaction.id:
            booking.mark_payment_failed(now)
            uow.bookings.save(booking)
        logger.info(f"Payment {transaction.id} failed for booking {booking.id}: {reason}")

    def _apply_refund(self, uow, transaction: PaymentTransaction, refunded: Money, full: bool, now):
        status = TransactionStatus.REFUNDED if full else TransactionStatus.PARTIALLY_REFUNDED
        if not transaction.record_refund(refunded, status, now):
            logger.warning(
                f"Ignoring refund of {refunded} for payment {transaction.id} "
                f"in status {transaction.status.value}"
            )
            return
        uow.payments.save(transaction)
        uow.collect_events(transaction)

        booking = load_booking(uow, transaction.booking_id, lock=True)
        booking.record_refund(refunded, BookingPaymentStatus(status.value), now)
        uow.bookings.save(booking)
        logger.info(f"Gateway reported refund of {refunded} for payment {transaction.id}")

    # ===== Refunds =====

    def refund(self, transaction_id: UUID, actor: Actor, amount: Money | None = None,
               reason: str = '', now=None) -> PaymentTransaction:
        """
        Refund a captured payment and cancel its booking

        Fail-closed: if the gateway refund fails, nothing changes locally.
        The free-cancellation window is not enforced here; a late refund
        requested by the guest gets the late-cancellation percentage.
        A caller that already checked the cancellation window passes the
        `now` it checked against.
        """
        now = self.clock() if now is None else now
        with self.uow_factory() as uow:
            transaction = uow.payments.get(transaction_id)
            if transaction is None:
                raise NotFoundError(f"Payment transaction {transaction_id} not found")
            booking = load_booking(uow, transaction.booking_id)
            ensure_owner_or_admin(booking, actor)
            booking.ensure_can_cancel()
            if transaction.status != TransactionStatus.SUCCEEDED:
                raise ConflictError(
                    f"Only succeeded payments can be refunded, this one is {transaction.status.value}",
                    transaction_id=transaction_id,
                )
            decision = compute_refund(booking, transaction, now, actor, amount, self.refund_policy)

        external_refund_id = ''
        if decision.amount:
            gateway_refund = self.gateway.refund(
                transaction.external_intent_id,
                decision.amount,
                idempotency_key=f"refund:{transaction.id}",
                reason=reason,
            )
            external_refund_id = gateway_refund.id

        with self.uow_factory() as uow:
            transaction = uow.payments.get(transaction_id, lock=True)
            booking = load_booking(uow, transaction.booking_id, lock=True)
            if booking.status == BookingStatus.CANCELLED and transaction.status != TransactionStatus.SUCCEEDED:
                logger.info(f"Payment {transaction_id} was already refunded by a concurrent request")
                return transaction

            if decision.amount:
                total = transaction.refunded_so_far + decision.amount
                if transaction.record_refund(total, decision.resulting_status, now, reason, external_refund_id):
                    uow.payments.save(transaction)
                    uow.collect_events(transaction)
                payment_status = BookingPaymentStatus(decision.resulting_status.value)
            else:
                payment_status = None

            try:
                booking.cancel(reason, now, refund_amount=decision.amount, payment_status=payment_status)
            except IllegalTransitionError:
                logger.error(
                    f"Refund {external_refund_id} issued but booking {booking.id} "
                    f"is now {booking.status.value} and cannot be cancelled"
                )
                if payment_status is not None:
                    booking.record_refund(decision.amount, payment_status, now)
            uow.bookings.save(booking)
            uow.collect_events(booking)

        logger.info(
            f"Refunded {decision.amount} ({decision.basis}) on payment {transaction_id}, "
            f"booking {booking.id} cancelled by {actor.user_id}"
        )
        return transaction

    # ===== History =====

    def get_payment_history(self, actor: Actor, user_id: UUID | None = None) -> list[PaymentTransaction]:
        """A user's payment transactions, newest first; admins may read anyone's"""
        user_id = user_id or actor.user_id
        if not actor.owns(user_id) and not actor.is_admin:
            raise ForbiddenError("Cannot read another user's payments", user_id=actor.user_id)
        with self.uow_factory() as uow:
            return uow.payments.list_for_user(user_id)
