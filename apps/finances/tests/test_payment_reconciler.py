"""Payment intents, webhook processing and reconciliation."""

from concurrent.futures import ThreadPoolExecutor
from datetime import date, timedelta
from decimal import Decimal
import time

import pytest

from apps.bookings.domain.entities import BookingPaymentStatus, BookingStatus
from apps.finances.application.command_handlers import (
    CreatePaymentIntent,
    GetPaymentHistory,
    HandleWebhook,
    SyncPaymentIntent,
)
from apps.finances.domain.entities import TransactionStatus
from apps.finances.signatures import sign_payload
from apps.loyalty.domain.entities import LoyaltyTransactionType
from shared.domain.exceptions import ConflictError, ForbiddenError, SignatureError, ValidationError
from shared.domain.value_objects import Money

SUCCEEDED = "payment_intent.succeeded"
FAILED = "payment_intent.payment_failed"
REFUNDED = "charge.refunded"


@pytest.fixture
def transaction_for(store, bus):
    def _transaction_for(intent_id):
        with store.unit_of_work(bus=bus) as uow:
            return uow.payments.get_by_intent(intent_id)
    return _transaction_for


def _earn_entries(services, user_id):
    history = services.ledger.get_transaction_history(user_id, limit=100)["transactions"]
    return [e for e in history if e.type == LoyaltyTransactionType.EARN]


def test_create_intent_uses_payable_amount_and_idempotency_key(services, make_booking, guest, gateway):
    booking = make_booking()

    transaction = services.bus.handle_command(CreatePaymentIntent(booking_id=booking.id, actor=guest))

    assert transaction.status == TransactionStatus.PENDING
    assert transaction.amount == Money(Decimal("300.00"))
    assert transaction.client_secret == f"{transaction.external_intent_id}_secret"
    assert gateway.by_key == {f"intent:{booking.id}:1": transaction.external_intent_id}
    updated = services.state_machine.get(booking.id)
    assert updated.payment_status == BookingPaymentStatus.PENDING
    assert updated.payment_transaction_id == transaction.id


def test_second_active_intent_is_rejected(services, make_booking, guest):
    booking = make_booking()
    services.reconciler.create_intent(booking.id, guest)

    with pytest.raises(ConflictError):
        services.reconciler.create_intent(booking.id, guest)


def test_intent_amount_must_match_booking(services, make_booking, guest):
    booking = make_booking()

    with pytest.raises(ValidationError):
        services.bus.handle_command(CreatePaymentIntent(booking_id=booking.id, actor=guest, amount=Decimal("10")))


def test_intent_for_someone_elses_booking_is_forbidden(services, make_booking, other_guest):
    booking = make_booking()

    with pytest.raises(ForbiddenError):
        services.reconciler.create_intent(booking.id, other_guest)


def test_success_webhook_confirms_booking_and_awards_points(services, make_booking, guest, send_webhook,
                                                            transaction_for):
    booking = make_booking()
    intent_id = services.reconciler.create_intent(booking.id, guest).external_intent_id

    result = send_webhook(SUCCEEDED, {"id": intent_id})

    assert result.status == "processed"
    confirmed = services.state_machine.get(booking.id)
    assert confirmed.status == BookingStatus.CONFIRMED
    assert confirmed.is_paid
    assert confirmed.points_earned == 300
    assert transaction_for(intent_id).status == TransactionStatus.SUCCEEDED
    assert [e.points for e in _earn_entries(services, guest.user_id)] == [300]


def test_duplicate_success_webhook_is_applied_once(services, make_booking, guest, send_webhook):
    booking = make_booking()
    intent_id = services.reconciler.create_intent(booking.id, guest).external_intent_id

    first = send_webhook(SUCCEEDED, {"id": intent_id})
    second = send_webhook(SUCCEEDED, {"id": intent_id})

    assert (first.status, second.status) == ("processed", "duplicate")
    assert len(_earn_entries(services, guest.user_id)) == 1
    assert services.ledger.get_or_create_account(guest.user_id).current_points == 300


def test_concurrent_duplicate_success_webhooks_are_applied_once(services, make_booking, guest, send_webhook):
    booking = make_booking()
    intent_id = services.reconciler.create_intent(booking.id, guest).external_intent_id

    with ThreadPoolExecutor(max_workers=2) as pool:
        results = list(pool.map(lambda _: send_webhook(SUCCEEDED, {"id": intent_id}).status, range(2)))

    assert sorted(results) == ["duplicate", "processed"]
    assert services.state_machine.get(booking.id).status == BookingStatus.CONFIRMED
    assert len(_earn_entries(services, guest.user_id)) == 1
    assert services.ledger.find_mismatches() == []


def test_command_bus_passes_raw_payload(services, make_booking, guest):
    booking = make_booking()
    intent_id = services.reconciler.create_intent(booking.id, guest).external_intent_id
    payload = (
        b'{"id": "evt_1", "type": "payment_intent.succeeded", '
        b'"data": {"object": {"id": "' + intent_id.encode() + b'"}}}'
    )
    signature = sign_payload(payload, services.settings.webhook_secret)

    result = services.bus.handle_command(HandleWebhook(payload=payload, signature=signature))

    assert result.status == "processed"


def test_forged_signature_is_rejected_and_nothing_changes(services, make_booking, guest, send_webhook):
    booking = make_booking()
    intent_id = services.reconciler.create_intent(booking.id, guest).external_intent_id

    with pytest.raises(SignatureError):
        send_webhook(SUCCEEDED, {"id": intent_id}, secret="whsec_attacker")
    with pytest.raises(SignatureError):
        send_webhook(SUCCEEDED, {"id": intent_id}, signature="")

    assert services.state_machine.get(booking.id).status == BookingStatus.PENDING_PAYMENT
    assert _earn_entries(services, guest.user_id) == []


def test_replayed_old_delivery_is_rejected(services, make_booking, guest):
    booking = make_booking()
    intent_id = services.reconciler.create_intent(booking.id, guest).external_intent_id
    stale = int(time.time()) - 3600
    payload = b'{"type": "payment_intent.succeeded", "data": {"object": {"id": "' + intent_id.encode() + b'"}}}'

    with pytest.raises(SignatureError):
        services.reconciler.handle_webhook(payload, sign_payload(payload, services.settings.webhook_secret, stale))


def test_unknown_intent_and_unhandled_types_are_dropped(send_webhook):
    assert send_webhook(SUCCEEDED, {"id": "pi_unknown"}).status == "unmatched"
    assert send_webhook("customer.created", {"id": "cus_1"}).status == "ignored"


def test_event_without_intent_is_invalid(send_webhook):
    with pytest.raises(ValidationError):
        send_webhook(SUCCEEDED, {})


def test_failure_webhook_lets_guest_retry(services, make_booking, guest, send_webhook, transaction_for):
    booking = make_booking()
    first = services.reconciler.create_intent(booking.id, guest)

    result = send_webhook(FAILED, {"id": first.external_intent_id,
                                   "last_payment_error": {"message": "Your card was declined."}})

    assert result.status == "processed"
    failed = transaction_for(first.external_intent_id)
    assert failed.status == TransactionStatus.FAILED
    assert failed.failure_reason == "Your card was declined."
    updated = services.state_machine.get(booking.id)
    assert updated.status == BookingStatus.PENDING_PAYMENT
    assert updated.payment_status == BookingPaymentStatus.FAILED

    second = services.reconciler.create_intent(booking.id, guest)
    assert second.attempt == 2
    assert second.external_intent_id != first.external_intent_id


def test_failure_after_success_is_ignored(services, paid_booking, send_webhook, transaction_for):
    booking, intent_id = paid_booking

    send_webhook(FAILED, {"id": intent_id})

    assert transaction_for(intent_id).status == TransactionStatus.SUCCEEDED
    assert services.state_machine.get(booking.id).status == BookingStatus.CONFIRMED


def test_late_success_supersedes_pending_retry(services, make_booking, guest, send_webhook, transaction_for):
    booking = make_booking()
    first = services.reconciler.create_intent(booking.id, guest)
    send_webhook(FAILED, {"id": first.external_intent_id})
    second = services.reconciler.create_intent(booking.id, guest)

    send_webhook(SUCCEEDED, {"id": first.external_intent_id})

    assert transaction_for(first.external_intent_id).status == TransactionStatus.SUCCEEDED
    assert transaction_for(second.external_intent_id).status == TransactionStatus.FAILED
    confirmed = services.state_machine.get(booking.id)
    assert confirmed.status == BookingStatus.CONFIRMED
    assert confirmed.payment_transaction_id == first.id


def test_success_for_cancelled_booking_keeps_capture(services, make_booking, guest, send_webhook,
                                                     transaction_for):
    booking = make_booking()
    intent_id = services.reconciler.create_intent(booking.id, guest).external_intent_id
    services.state_machine.cancel(booking.id, guest, reason="Changed mind")

    assert send_webhook(SUCCEEDED, {"id": intent_id}).status == "processed"

    assert transaction_for(intent_id).status == TransactionStatus.SUCCEEDED
    assert services.state_machine.get(booking.id).status == BookingStatus.CANCELLED


def test_charge_refunded_records_partial_then_full(services, paid_booking, send_webhook, transaction_for):
    booking, intent_id = paid_booking
    partial = {"payment_intent": intent_id, "amount_refunded": 10000, "refunded": False, "currency": "usd"}

    assert send_webhook(REFUNDED, partial).status == "processed"
    assert send_webhook(REFUNDED, partial).status == "duplicate"
    transaction = transaction_for(intent_id)
    assert transaction.status == TransactionStatus.PARTIALLY_REFUNDED
    assert transaction.refund_amount == Money(Decimal("100.00"))

    send_webhook(REFUNDED, {"payment_intent": intent_id, "amount_refunded": 30000, "refunded": True,
                            "currency": "usd"})

    assert transaction_for(intent_id).status == TransactionStatus.REFUNDED
    updated = services.state_machine.get(booking.id)
    assert updated.payment_status == BookingPaymentStatus.REFUNDED
    assert updated.status == BookingStatus.CONFIRMED


def test_client_confirm_asks_the_gateway(services, make_booking, guest, other_guest, gateway):
    booking = make_booking()
    intent_id = services.reconciler.create_intent(booking.id, guest).external_intent_id

    with pytest.raises(ForbiddenError):
        services.bus.handle_command(SyncPaymentIntent(intent_id=intent_id, actor=other_guest))

    still_pending = services.bus.handle_command(SyncPaymentIntent(intent_id=intent_id, actor=guest))
    assert still_pending.status == "pending"

    gateway.set_status(intent_id, "succeeded")
    result = services.bus.handle_command(SyncPaymentIntent(intent_id=intent_id, actor=guest))

    assert result.status == "processed"
    assert services.state_machine.get(booking.id).status == BookingStatus.CONFIRMED


def test_reconcile_syncs_stale_intents_and_shares_webhook_keys(services, make_booking, guest, gateway,
                                                                clock, send_webhook):
    booking = make_booking()
    fresh = make_booking(check_in=date(2025, 7, 1), check_out=date(2025, 7, 2))
    stale_intent = services.reconciler.create_intent(booking.id, guest).external_intent_id
    gateway.set_status(stale_intent, "succeeded")
    clock.advance(minutes=20)
    services.reconciler.create_intent(fresh.id, guest)

    summary = services.reconciler.reconcile_pending_intents(timedelta(minutes=15))

    assert summary == {"checked": 1, "updated": 1, "errors": 0}
    assert services.state_machine.get(booking.id).status == BookingStatus.CONFIRMED
    assert send_webhook(SUCCEEDED, {"id": stale_intent}).status == "duplicate"
    assert len(_earn_entries(services, guest.user_id)) == 1


def test_reconcile_marks_canceled_intents_failed(services, make_booking, guest, gateway, clock,
                                                 transaction_for):
    booking = make_booking()
    intent_id = services.reconciler.create_intent(booking.id, guest).external_intent_id
    gateway.set_status(intent_id, "canceled")
    clock.advance(hours=1)

    services.reconciler.reconcile_pending_intents(timedelta(minutes=15))

    assert transaction_for(intent_id).status == TransactionStatus.FAILED


def test_points_redeemed_then_paid_end_to_end(services, make_booking, guest, admin, send_webhook):
    services.ledger.adjust_points(guest.user_id, 3000, "Welcome bonus", admin_id=admin.user_id)
    booking = make_booking(check_in=date(2025, 6, 1), check_out=date(2025, 6, 4))
    assert booking.total_price == Money(Decimal("300.00"))

    redemption = services.state_machine.apply_points_redemption(booking.id, guest, 3000)
    assert redemption.discount == Money(Decimal("30.00"))

    transaction = services.reconciler.create_intent(booking.id, guest)
    assert transaction.amount == Money(Decimal("270.00"))

    send_webhook(SUCCEEDED, {"id": transaction.external_intent_id})

    confirmed = services.state_machine.get(booking.id)
    assert confirmed.status == BookingStatus.CONFIRMED
    assert confirmed.points_earned == 270
    account = services.ledger.get_or_create_account(guest.user_id)
    assert account.current_points == 270
    assert account.lifetime_spending == Decimal("270.00")
    assert services.ledger.ledger_balance(guest.user_id) == 270


def test_payment_history_is_newest_first_and_private(services, make_booking, guest, other_guest, admin, clock):
    first = services.reconciler.create_intent(make_booking().id, guest)
    clock.advance(hours=1)
    second = services.reconciler.create_intent(
        make_booking(check_in=date(2025, 7, 1), check_out=date(2025, 7, 3)).id, guest
    )
    someone_else = make_booking(check_in=date(2025, 8, 1), check_out=date(2025, 8, 2), actor=other_guest)
    services.reconciler.create_intent(someone_else.id, other_guest)

    history = services.bus.handle_command(GetPaymentHistory(actor=guest))

    assert [t.id for t in history] == [second.id, first.id]
    assert [t.id for t in services.reconciler.get_payment_history(admin, guest.user_id)] == [second.id, first.id]
    with pytest.raises(ForbiddenError):
        services.bus.handle_command(GetPaymentHistory(actor=other_guest, user_id=guest.user_id))
