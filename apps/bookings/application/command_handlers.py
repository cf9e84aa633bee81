"""
Booking Command Handlers

These are the use cases for the booking domain exposed upward through the
message bus. They validate the command and delegate to the
BookingStateMachine, which owns the units of work.

Commands:
- CreateBooking: Create a new booking (PENDING_PAYMENT)
- ConfirmPayment: Confirm a booking with a succeeded payment transaction
- CancelBooking: Cancel a booking, refunding it if paid
- ApplyPointsRedemption: Spend loyalty points on a booking before paying
- CheckIn / CheckOut: Staff check-in and check-out
- MarkNoShow: Admin marks a confirmed guest as no-show
"""

from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from uuid import UUID
import logging

from apps.bookings.application.state_machine import BookingStateMachine
from apps.bookings.domain.entities import Booking
from apps.bookings.domain.ports import Redemption
from shared.domain.actors import Actor
from shared.domain.exceptions import ValidationError
from shared.domain.value_objects import Money

logger = logging.getLogger(__name__)


# ===== Commands =====

@dataclass
class CreateBooking:
    """
    Command to create a new booking

    This is the primary entry point for creating bookings.
    """
    user_id: UUID
    room_id: UUID
    check_in: date
    check_out: date
    guests: int
    guest_name: str = ''
    guest_email: str = ''
    special_requests: str = ''


@dataclass
class ConfirmPayment:
    """Command to confirm a booking after its payment succeeded"""
    booking_id: UUID
    transaction_id: UUID


@dataclass
class CancelBooking:
    """Command to cancel a booking"""
    booking_id: UUID
    actor: Actor
    reason: str = ''
    refund_amount: Decimal | None = None   # admin only


@dataclass
class ApplyPointsRedemption:
    booking_id: UUID
    actor: Actor
    points: int


@dataclass
class CheckIn:
    """Command to check in a guest"""
    booking_id: UUID
    actor: Actor


@dataclass
class CheckOut:
    """Command to check out a guest"""
    booking_id: UUID
    actor: Actor


@dataclass
class MarkNoShow:
    booking_id: UUID
    actor: Actor


# ===== Command Handlers =====

class CreateBookingHandler:
    """
    Handler for CreateBooking command

    Double booking prevention (Defense in Depth):
    1. Start unit of work (transaction)
    2. Lock the room row (SELECT FOR UPDATE)
    3. Check overlap against active bookings
    4. Insert the booking and commit
    5. PostgreSQL EXCLUDE constraint as final safety net
    """

    def __init__(self, state_machine: BookingStateMachine):
        self.state_machine = state_machine

    def handle(self, command: CreateBooking) -> Booking:
        if command.check_in >= command.check_out:
            raise ValidationError("Check-out date must be after check-in date")

        return self.state_machine.create(
            user_id=command.user_id,
            room_id=command.room_id,
            check_in=command.check_in,
            check_out=command.check_out,
            guests=command.guests,
            guest_name=command.guest_name,
            guest_email=command.guest_email,
            special_requests=command.special_requests,
        )


class ConfirmPaymentHandler:

    def __init__(self, state_machine: BookingStateMachine):
        self.state_machine = state_machine

    def handle(self, command: ConfirmPayment) -> Booking:
        return self.state_machine.confirm_payment(command.booking_id, command.transaction_id)


class CancelBookingHandler:
    """
    Handler for CancelBooking command

    Refund amount is given in the booking currency; only admins may set it.
    """

    def __init__(self, state_machine: BookingStateMachine):
        self.state_machine = state_machine

    def handle(self, command: CancelBooking) -> Booking:
        refund_amount = None
        if command.refund_amount is not None:
            booking = self.state_machine.get(command.booking_id)
            try:
                refund_amount = Money(command.refund_amount, booking.total_price.currency)
            except ValueError as e:
                raise ValidationError(str(e), refund_amount=command.refund_amount)

        return self.state_machine.cancel(
            command.booking_id,
            command.actor,
            reason=command.reason,
            refund_amount=refund_amount,
        )


class ApplyPointsRedemptionHandler:

    def __init__(self, state_machine: BookingStateMachine):
        self.state_machine = state_machine

    def handle(self, command: ApplyPointsRedemption) -> Redemption:
        return self.state_machine.apply_points_redemption(
            command.booking_id, command.actor, command.points
        )


class CheckInHandler:

    def __init__(self, state_machine: BookingStateMachine):
        self.state_machine = state_machine

    def handle(self, command: CheckIn) -> Booking:
        return self.state_machine.check_in(command.booking_id, command.actor)


class CheckOutHandler:

    def __init__(self, state_machine: BookingStateMachine):
        self.state_machine = state_machine

    def handle(self, command: CheckOut) -> Booking:
        return self.state_machine.check_out(command.booking_id, command.actor)


class MarkNoShowHandler:

    def __init__(self, state_machine: BookingStateMachine):
        self.state_machine = state_machine

    def handle(self, command: MarkNoShow) -> Booking:
        return self.state_machine.mark_no_show(command.booking_id, command.actor)
