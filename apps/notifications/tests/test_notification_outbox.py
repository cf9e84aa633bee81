from datetime import date
from unittest.mock import MagicMock

import pytest

from apps.bookings.domain.entities import BookingStatus
from apps.notifications.dispatcher import EmailNotificationDispatcher
from apps.notifications.outbox import NotificationKind, NotificationStatus, OutboundNotification
from apps.notifications.relay import NotificationRelay
from shared.infrastructure.memory import InMemoryNotificationRepository


@pytest.fixture
def outbox(store, bus):
    def _outbox(booking_id):
        with store.unit_of_work(bus=bus) as uow:
            return uow.notifications.list_for_booking(booking_id)
    return _outbox


def test_nothing_is_queued_for_an_unpaid_booking(make_booking, outbox):
    booking = make_booking()

    assert outbox(booking.id) == []


def test_payment_queues_confirmation_and_receipt(paid_booking, outbox):
    booking, intent_id = paid_booking

    queued = {n.kind: n for n in outbox(booking.id)}

    assert set(queued) == {NotificationKind.BOOKING_CONFIRMATION, NotificationKind.PAYMENT_RECEIPT}
    confirmation = queued[NotificationKind.BOOKING_CONFIRMATION]
    assert confirmation.recipient == "ada@example.com"
    assert confirmation.status == NotificationStatus.PENDING
    assert confirmation.payload["check_in"] == "2025-06-01"
    assert confirmation.payload["amount"] == "300.00"
    assert queued[NotificationKind.PAYMENT_RECEIPT].payload["external_intent_id"] == intent_id


def test_cancellation_queues_confirmation_with_refund(services, paid_booking, guest, clock, outbox):
    booking, _ = paid_booking
    clock.set(clock().replace(month=5, day=20))

    services.state_machine.cancel(booking.id, guest, reason="Plans changed")

    cancellation = [n for n in outbox(booking.id) if n.kind == NotificationKind.CANCELLATION_CONFIRMATION]
    assert len(cancellation) == 1
    assert cancellation[0].payload["reason"] == "Plans changed"
    assert cancellation[0].payload["refund_amount"] == "300.00"


def test_failed_outbox_write_rolls_back_the_payment(services, make_booking, guest, send_webhook, outbox,
                                                    monkeypatch):
    booking = make_booking()
    intent_id = services.reconciler.create_intent(booking.id, guest).external_intent_id
    monkeypatch.setattr(InMemoryNotificationRepository, "add", MagicMock(side_effect=RuntimeError("disk full")))

    with pytest.raises(RuntimeError):
        send_webhook("payment_intent.succeeded", {"id": intent_id})

    assert services.state_machine.get(booking.id).status == BookingStatus.PENDING_PAYMENT
    assert services.ledger.get_or_create_account(guest.user_id).current_points == 0

    monkeypatch.undo()
    assert send_webhook("payment_intent.succeeded", {"id": intent_id}).status == "processed"

    assert services.state_machine.get(booking.id).status == BookingStatus.CONFIRMED
    assert len(outbox(booking.id)) == 2


def test_booking_without_email_is_not_queued(services, room, guest, gateway, send_webhook, outbox):
    booking = services.state_machine.create(
        user_id=guest.user_id,
        room_id=room.id,
        check_in=date(2025, 6, 1),
        check_out=date(2025, 6, 2),
        guests=1,
    )
    intent_id = services.reconciler.create_intent(booking.id, guest).external_intent_id

    send_webhook("payment_intent.succeeded", {"id": intent_id})

    assert outbox(booking.id) == []


def test_relay_sends_pending_notifications_once(services, paid_booking, dispatcher, outbox):
    booking, _ = paid_booking

    assert services.relay.deliver_pending() == {"sent": 2, "failed": 0, "retrying": 0}
    assert services.relay.deliver_pending() == {"sent": 0, "failed": 0, "retrying": 0}

    assert sorted(kind for kind, _, _ in dispatcher.sent) == ["booking_confirmation", "payment_receipt"]
    assert all(recipient == "ada@example.com" for _, recipient, _ in dispatcher.sent)
    assert {n.status for n in outbox(booking.id)} == {NotificationStatus.SENT}


def test_failed_delivery_is_retried_then_given_up(store, bus, dispatcher, clock):
    dispatcher.fail_with = ConnectionError("SMTP unavailable")
    relay = NotificationRelay(lambda: store.unit_of_work(bus=bus), dispatcher, max_attempts=2, clock=clock)
    notification = OutboundNotification(
        kind=NotificationKind.PAYMENT_RECEIPT,
        recipient="ada@example.com",
        payload={"booking_id": "b-1", "amount": "10.00", "currency": "USD", "external_intent_id": "pi_1"},
    )
    with store.unit_of_work(bus=bus) as uow:
        uow.notifications.add(notification)

    assert relay.deliver_pending() == {"sent": 0, "failed": 0, "retrying": 1}
    assert relay.deliver_pending() == {"sent": 0, "failed": 1, "retrying": 0}
    assert relay.deliver_pending() == {"sent": 0, "failed": 0, "retrying": 0}

    with store.unit_of_work(bus=bus) as uow:
        stored = uow.notifications.get(notification.id)
    assert stored.status == NotificationStatus.FAILED
    assert stored.attempts == 2
    assert stored.last_error == "SMTP unavailable"


def test_email_dispatcher_sends_receipt(mailoutbox, settings):
    settings.DEFAULT_FROM_EMAIL = "bookings@innkeep.test"
    notification = OutboundNotification(
        kind=NotificationKind.PAYMENT_RECEIPT,
        recipient="ada@example.com",
        payload={"booking_id": "b-1", "amount": "270.00", "currency": "USD", "external_intent_id": "pi_1"},
    )

    EmailNotificationDispatcher().dispatch(notification)

    assert len(mailoutbox) == 1
    message = mailoutbox[0]
    assert message.to == ["ada@example.com"]
    assert message.from_email == "bookings@innkeep.test"
    assert message.subject == "Payment receipt for booking b-1"
    assert "Amount: 270.00 USD" in message.body
