from datetime import date, datetime, timedelta, timezone
from decimal import Decimal
from unittest.mock import MagicMock
from uuid import uuid4

import pytest

from apps.bookings.application.command_handlers import CancelBooking
from apps.bookings.domain.entities import Booking, BookingPaymentStatus, BookingStatus
from apps.bookings.domain.policies import BookingPolicy
from apps.finances.application import reconciler as reconciler_module
from apps.finances.application.command_handlers import RefundPayment
from apps.finances.domain.entities import PaymentTransaction, TransactionStatus
from apps.finances.domain.refunds import RefundPolicy, compute_refund
from shared.domain.actors import Actor, UserRole
from shared.domain.exceptions import ExternalGatewayError, ForbiddenError, IllegalTransitionError, ValidationError
from shared.domain.value_objects import DateRange, Money

# Check-in 2025-06-01 00:00 UTC, free cancellation until 2025-05-31 00:00
EARLY = datetime(2025, 5, 30, 18, 0, tzinfo=timezone.utc)
DEADLINE = datetime(2025, 5, 31, 0, 0, tzinfo=timezone.utc)
LATE = datetime(2025, 5, 31, 14, 0, tzinfo=timezone.utc)


@pytest.fixture
def owner():
    return Actor(user_id=uuid4(), role=UserRole.GUEST)


@pytest.fixture
def booking(owner):
    return Booking(
        user_id=owner.user_id,
        room_id=uuid4(),
        dates=DateRange(date(2025, 6, 1), date(2025, 6, 4)),
        guests=1,
        nightly_rate=Money(Decimal("100.00")),
        total_price=Money(Decimal("300.00")),
    )


@pytest.fixture
def captured(booking, owner):
    return PaymentTransaction(
        booking_id=booking.id,
        user_id=owner.user_id,
        amount=Money(Decimal("300.00")),
        external_intent_id="pi_1",
        status=TransactionStatus.SUCCEEDED,
    )


def test_full_refund_inside_the_window(booking, captured, owner):
    decision = compute_refund(booking, captured, EARLY, owner)

    assert decision.amount == Money(Decimal("300.00"))
    assert decision.resulting_status == TransactionStatus.REFUNDED
    assert decision.basis == "within_window"
    assert decision.is_full


def test_deadline_itself_still_counts_as_early(booking, captured, owner):
    assert compute_refund(booking, captured, DEADLINE, owner).basis == "within_window"


def test_late_guest_gets_the_late_percentage(booking, captured, owner):
    decision = compute_refund(booking, captured, LATE, owner)

    assert decision.amount == Money(Decimal("150.00"))
    assert decision.resulting_status == TransactionStatus.PARTIALLY_REFUNDED
    assert decision.basis == "late_cancellation"


def test_late_percentage_rounds_down_to_the_cent(booking, owner):
    odd = PaymentTransaction(
        booking_id=booking.id,
        user_id=owner.user_id,
        amount=Money(Decimal("100.01")),
        external_intent_id="pi_2",
        status=TransactionStatus.SUCCEEDED,
    )

    assert compute_refund(booking, odd, LATE, owner).amount == Money(Decimal("50.00"))


def test_late_percentage_is_configurable(booking, captured, owner):
    policy = RefundPolicy(booking_policy=BookingPolicy(), late_refund_percent=Decimal("0"))

    decision = compute_refund(booking, captured, LATE, owner, policy=policy)

    assert decision.amount == Money.zero()


def test_admin_bypasses_the_window(booking, captured, admin):
    decision = compute_refund(booking, captured, LATE, admin)

    assert decision.amount == Money(Decimal("300.00"))
    assert decision.basis == "admin_override"


def test_admin_may_choose_the_amount(booking, captured, admin):
    decision = compute_refund(booking, captured, LATE, admin, requested_amount=Money(Decimal("75.00")))

    assert decision.amount == Money(Decimal("75.00"))
    assert decision.resulting_status == TransactionStatus.PARTIALLY_REFUNDED
    assert decision.basis == "admin_amount"


@pytest.mark.parametrize("requested", [Decimal("0"), Decimal("300.01")])
def test_admin_amount_must_fit_the_payment(booking, captured, admin, requested):
    with pytest.raises(ValidationError):
        compute_refund(booking, captured, EARLY, admin, requested_amount=Money(requested))


def test_guest_cannot_choose_the_amount(booking, captured, owner):
    with pytest.raises(ForbiddenError):
        compute_refund(booking, captured, EARLY, owner, requested_amount=Money(Decimal("10.00")))


def test_invalid_late_percentage_is_rejected():
    with pytest.raises(ValueError):
        RefundPolicy(late_refund_percent=Decimal("120"))


# ===== Flows =====


def test_guest_cancelling_early_gets_everything_back(services, paid_booking, guest, gateway, clock):
    booking, intent_id = paid_booking
    clock.set(EARLY)

    cancelled = services.bus.handle_command(CancelBooking(booking_id=booking.id, actor=guest, reason="Plans changed"))

    assert cancelled.status == BookingStatus.CANCELLED
    assert cancelled.refund_amount == Money(Decimal("300.00"))
    assert cancelled.payment_status == BookingPaymentStatus.REFUNDED
    assert gateway.refunds == [{
        "intent_id": intent_id,
        "amount": Money(Decimal("300.00")),
        "key": f"refund:{booking.payment_transaction_id}",
        "reason": "Plans changed",
    }]


def test_guest_cannot_cancel_late_but_can_request_a_partial_refund(services, paid_booking, guest, gateway, clock):
    booking, _ = paid_booking
    clock.set(LATE)

    with pytest.raises(ForbiddenError):
        services.bus.handle_command(CancelBooking(booking_id=booking.id, actor=guest))
    assert gateway.refunds == []

    transaction = services.bus.handle_command(
        RefundPayment(transaction_id=booking.payment_transaction_id, actor=guest, reason="Flight cancelled")
    )

    assert transaction.status == TransactionStatus.PARTIALLY_REFUNDED
    assert transaction.refund_amount == Money(Decimal("150.00"))
    cancelled = services.state_machine.get(booking.id)
    assert cancelled.status == BookingStatus.CANCELLED
    assert cancelled.payment_status == BookingPaymentStatus.PARTIALLY_REFUNDED


def test_admin_cancel_with_explicit_amount(services, paid_booking, admin, gateway, clock):
    booking, _ = paid_booking
    clock.set(LATE)

    cancelled = services.bus.handle_command(
        CancelBooking(booking_id=booking.id, actor=admin, reason="Goodwill", refund_amount=Decimal("200"))
    )

    assert cancelled.status == BookingStatus.CANCELLED
    assert cancelled.refund_amount == Money(Decimal("200.00"))
    assert gateway.refunds[0]["amount"] == Money(Decimal("200.00"))


def test_guest_refund_amount_is_forbidden(services, paid_booking, guest, gateway, clock):
    booking, _ = paid_booking
    clock.set(EARLY)

    with pytest.raises(ForbiddenError):
        services.bus.handle_command(
            RefundPayment(transaction_id=booking.payment_transaction_id, actor=guest, amount=Decimal("300"))
        )
    assert gateway.refunds == []


def test_failed_gateway_refund_changes_nothing(services, paid_booking, guest, gateway, clock, store, bus,
                                              monkeypatch):
    booking, intent_id = paid_booking
    clock.set(EARLY)
    monkeypatch.setattr(gateway, "refund", MagicMock(side_effect=ExternalGatewayError("gateway timed out")))

    with pytest.raises(ExternalGatewayError):
        services.state_machine.cancel(booking.id, guest, reason="Plans changed")

    unchanged = services.state_machine.get(booking.id)
    assert unchanged.status == BookingStatus.CONFIRMED
    assert unchanged.payment_status == BookingPaymentStatus.SUCCEEDED
    with store.unit_of_work(bus=bus) as uow:
        assert uow.payments.get_by_intent(intent_id).status == TransactionStatus.SUCCEEDED


def test_refund_is_sent_once_on_retry(services, paid_booking, guest, gateway, clock):
    booking, _ = paid_booking
    clock.set(EARLY)
    services.state_machine.cancel(booking.id, guest)

    with pytest.raises(IllegalTransitionError):
        services.state_machine.cancel(booking.id, guest)
    assert len(gateway.refunds) == 1


def test_refund_uses_the_time_the_cancellation_was_allowed_at(services, paid_booking, guest, gateway, clock):
    booking, _ = paid_booking
    clock.set(DEADLINE - timedelta(seconds=1))
    clock.tick = timedelta(seconds=2)

    cancelled = services.state_machine.cancel(booking.id, guest)

    assert cancelled.status == BookingStatus.CANCELLED
    assert cancelled.refund_amount == Money(Decimal("300.00"))
    assert cancelled.payment_status == BookingPaymentStatus.REFUNDED
    assert gateway.refunds[0]["amount"] == Money(Decimal("300.00"))


def test_losing_concurrent_refund_returns_quietly(services, paid_booking, guest, admin, gateway, clock,
                                                  monkeypatch):
    booking, _ = paid_booking
    clock.set(EARLY)
    issue = gateway.refund
    raced = []

    def refund_while_another_request_wins(*args, **kwargs):
        if not raced:
            raced.append(True)
            services.reconciler.refund(booking.payment_transaction_id, admin, reason="Duplicate booking")
        return issue(*args, **kwargs)

    monkeypatch.setattr(gateway, "refund", refund_while_another_request_wins)
    errors = MagicMock()
    monkeypatch.setattr(reconciler_module.logger, "error", errors)

    transaction = services.reconciler.refund(booking.payment_transaction_id, guest, reason="Plans changed")

    assert transaction.status == TransactionStatus.REFUNDED
    assert transaction.refund_amount == Money(Decimal("300.00"))
    assert len(gateway.refunds) == 1
    assert services.state_machine.get(booking.id).status == BookingStatus.CANCELLED
    errors.assert_not_called()
