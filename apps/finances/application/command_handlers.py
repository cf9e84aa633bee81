"""
Payment Command Handlers

Commands:
- CreatePaymentIntent: Open a gateway intent for a booking
- HandleWebhook: Apply a signed gateway delivery
- SyncPaymentIntent: Pull an intent's status from the gateway
- RefundPayment: Refund a captured payment (cancels the booking)
- GetPaymentHistory: A user's payment transactions, newest first
"""

from dataclasses import dataclass
from decimal import Decimal
from uuid import UUID

from apps.finances.application.reconciler import PaymentReconciler, WebhookResult
from apps.finances.domain.entities import PaymentTransaction
from shared.domain.actors import Actor
from shared.domain.exceptions import NotFoundError, ValidationError
from shared.domain.value_objects import Money


# ===== Commands =====

@dataclass
class CreatePaymentIntent:
    booking_id: UUID
    actor: Actor
    amount: Decimal | None = None
    currency: str | None = None


@dataclass
class HandleWebhook:
    """Raw request body and signature header exactly as received"""
    payload: bytes
    signature: str | None


@dataclass
class SyncPaymentIntent:
    """
    Client confirm (actor given) or background reconciliation (no actor)
    """
    intent_id: str
    actor: Actor | None = None


@dataclass
class RefundPayment:
    transaction_id: UUID
    actor: Actor
    amount: Decimal | None = None
    reason: str = ''


@dataclass
class GetPaymentHistory:
    """user_id defaults to the actor's own"""
    actor: Actor
    user_id: UUID | None = None


# ===== Command Handlers =====

class CreatePaymentIntentHandler:

    def __init__(self, reconciler: PaymentReconciler):
        self.reconciler = reconciler

    def handle(self, command: CreatePaymentIntent) -> PaymentTransaction:
        amount = None
        if command.amount is not None:
            currency = command.currency
            if not currency:
                with self.reconciler.uow_factory() as uow:
                    booking = uow.bookings.get(command.booking_id)
                if booking is None:
                    raise NotFoundError(f"Booking {command.booking_id} not found")
                currency = booking.total_price.currency
            try:
                amount = Money(command.amount, currency)
            except ValueError as e:
                raise ValidationError(str(e), amount=command.amount)
        return self.reconciler.create_intent(
            command.booking_id, command.actor, amount=amount, currency=command.currency
        )


class HandleWebhookHandler:

    def __init__(self, reconciler: PaymentReconciler):
        self.reconciler = reconciler

    def handle(self, command: HandleWebhook) -> WebhookResult:
        return self.reconciler.handle_webhook(command.payload, command.signature)


class SyncPaymentIntentHandler:

    def __init__(self, reconciler: PaymentReconciler):
        self.reconciler = reconciler

    def handle(self, command: SyncPaymentIntent) -> WebhookResult:
        if command.actor is not None:
            return self.reconciler.confirm_from_client(command.intent_id, command.actor)
        return self.reconciler.sync_intent(command.intent_id)


class RefundPaymentHandler:

    def __init__(self, reconciler: PaymentReconciler):
        self.reconciler = reconciler

    def handle(self, command: RefundPayment) -> PaymentTransaction:
        amount = None
        if command.amount is not None:
            with self.reconciler.uow_factory() as uow:
                transaction = uow.payments.get(command.transaction_id)
            if transaction is None:
                raise NotFoundError(f"Payment transaction {command.transaction_id} not found")
            try:
                amount = Money(command.amount, transaction.currency)
            except ValueError as e:
                raise ValidationError(str(e), amount=command.amount)
        return self.reconciler.refund(
            command.transaction_id, command.actor, amount=amount, reason=command.reason
        )


class GetPaymentHistoryHandler:

    def __init__(self, reconciler: PaymentReconciler):
        self.reconciler = reconciler

    def handle(self, command: GetPaymentHistory) -> list[PaymentTransaction]:
        return self.reconciler.get_payment_history(command.actor, command.user_id)
