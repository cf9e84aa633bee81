"""Django ORM implementation of the payment repositories."""

from apps.finances.domain.entities import PaymentTransaction, ProcessedWebhookEvent, TransactionStatus
from apps.finances.domain.repositories import PaymentTransactionRepository, WebhookEventRepository
from apps.finances.models import PaymentTransaction as PaymentTransactionModel
from apps.finances.models import ProcessedWebhookEvent as ProcessedWebhookEventModel
from shared.domain.value_objects import Money
from shared.infrastructure.persistence import conflict_on_integrity_error, lock_queryset_if_possible


def transaction_to_entity(obj: PaymentTransactionModel) -> PaymentTransaction:
    return PaymentTransaction(
        id=obj.id,
        booking_id=obj.booking_id,
        user_id=obj.user_id,
        amount=Money(obj.amount, obj.currency),
        external_intent_id=obj.external_intent_id,
        client_secret=obj.client_secret,
        attempt=obj.attempt,
        status=TransactionStatus(obj.status),
        refund_amount=Money(obj.refund_amount, obj.currency) if obj.refund_amount is not None else None,
        refund_reason=obj.refund_reason,
        external_refund_id=obj.external_refund_id,
        failure_reason=obj.failure_reason,
        succeeded_at=obj.succeeded_at,
        refunded_at=obj.refunded_at,
        created_at=obj.created_at,
        updated_at=obj.updated_at,
    )


def _transaction_fields(txn: PaymentTransaction) -> dict:
    return {
        'booking_id': txn.booking_id,
        'user_id': txn.user_id,
        'amount': txn.amount.amount,
        'currency': txn.amount.currency,
        'external_intent_id': txn.external_intent_id,
        'client_secret': txn.client_secret,
        'attempt': txn.attempt,
        'status': txn.status.value,
        'refund_amount': txn.refund_amount.amount if txn.refund_amount else None,
        'refund_reason': txn.refund_reason,
        'external_refund_id': txn.external_refund_id,
        'failure_reason': txn.failure_reason,
        'succeeded_at': txn.succeeded_at,
        'refunded_at': txn.refunded_at,
        'created_at': txn.created_at,
        'updated_at': txn.updated_at,
    }


class DjangoPaymentTransactionRepository(PaymentTransactionRepository):

    def _first(self, queryset, lock):
        if lock:
            queryset = lock_queryset_if_possible(queryset)
        obj = queryset.first()
        return transaction_to_entity(obj) if obj else None

    def get(self, transaction_id, lock=False):
        return self._first(PaymentTransactionModel.objects.filter(pk=transaction_id), lock)

    def get_by_intent(self, external_intent_id, lock=False):
        return self._first(
            PaymentTransactionModel.objects.filter(external_intent_id=external_intent_id), lock
        )

    def find_active_for_booking(self, booking_id):
        return self._first(
            PaymentTransactionModel.objects.filter(
                booking_id=booking_id,
                status__in=PaymentTransactionModel.ACTIVE_STATUSES,
            ),
            lock=False,
        )

    def list_for_booking(self, booking_id):
        queryset = PaymentTransactionModel.objects.filter(booking_id=booking_id).order_by('created_at')
        return [transaction_to_entity(obj) for obj in queryset]

    def list_for_user(self, user_id):
        queryset = PaymentTransactionModel.objects.filter(user_id=user_id).order_by('-created_at')
        return [transaction_to_entity(obj) for obj in queryset]

    def list_pending_created_before(self, cutoff):
        queryset = PaymentTransactionModel.objects.filter(
            status=PaymentTransactionModel.Status.PENDING,
            created_at__lt=cutoff,
        ).order_by('created_at')
        return [transaction_to_entity(obj) for obj in queryset]

    def add(self, transaction):
        with conflict_on_integrity_error("Booking already has an active payment",
                                         booking_id=str(transaction.booking_id)):
            PaymentTransactionModel.objects.create(id=transaction.id, **_transaction_fields(transaction))

    def save(self, transaction):
        with conflict_on_integrity_error("Booking already has an active payment",
                                         booking_id=str(transaction.booking_id)):
            PaymentTransactionModel.objects.filter(pk=transaction.id).update(**_transaction_fields(transaction))


class DjangoWebhookEventRepository(WebhookEventRepository):

    def exists(self, external_intent_id, event_type):
        return ProcessedWebhookEventModel.objects.filter(
            external_intent_id=external_intent_id,
            event_type=event_type,
        ).exists()

    def add(self, event: ProcessedWebhookEvent):
        with conflict_on_integrity_error("Webhook event already processed",
                                         external_intent_id=event.external_intent_id,
                                         event_type=event.event_type):
            ProcessedWebhookEventModel.objects.create(
                id=event.id,
                external_intent_id=event.external_intent_id,
                event_type=event.event_type,
                event_id=event.event_id,
                received_at=event.received_at,
                created_at=event.created_at,
            )
