"""Celery Beat tasks run against the in-memory booking core."""

from datetime import timedelta
from unittest import mock

from apps.bookings.domain.entities import BookingStatus
from apps.finances import tasks as payment_tasks
from apps.loyalty import tasks as loyalty_tasks
from apps.notifications import tasks as notification_tasks


def test_deliver_pending_task(services, paid_booking, dispatcher):
    with mock.patch.object(notification_tasks, "get_services", return_value=services):
        summary = notification_tasks.deliver_pending()

    assert summary == {"sent": 2, "failed": 0, "retrying": 0}
    assert len(dispatcher.sent) == 2


def test_reconcile_task_uses_configured_delay(services, make_booking, guest, gateway, clock):
    booking = make_booking()
    intent_id = services.reconciler.create_intent(booking.id, guest).external_intent_id
    gateway.set_status(intent_id, "succeeded")

    with mock.patch.object(payment_tasks, "get_services", return_value=services):
        assert payment_tasks.reconcile_pending_intents() == {"checked": 0, "updated": 0, "errors": 0}
        clock.advance(minutes=services.settings.reconcile_after // timedelta(minutes=1) + 1)
        assert payment_tasks.reconcile_pending_intents() == {"checked": 1, "updated": 1, "errors": 0}

    assert services.state_machine.get(booking.id).status == BookingStatus.CONFIRMED


def test_audit_task_reports_mismatches(services, guest, admin, store):
    services.ledger.adjust_points(guest.user_id, 500, "Welcome", admin_id=admin.user_id)

    with mock.patch.object(loyalty_tasks, "get_services", return_value=services):
        assert loyalty_tasks.audit_ledgers() == {"mismatches": 0}

        account = next(iter(store.tables["loyalty_accounts"].values()))
        account.current_points = 499
        assert loyalty_tasks.audit_ledgers() == {"mismatches": 1}
