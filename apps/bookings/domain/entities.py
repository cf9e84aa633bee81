"""
Booking Domain Entities

Core business entities for the booking domain:
- Room: Read-only catalog room a booking is made against
- Booking: Main aggregate representing a reservation
- BookingStatus: FSM states for booking lifecycle
- BookingPaymentStatus: Payment state mirrored on the booking
"""

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from uuid import UUID

from shared.domain.base import Aggregate, Entity
from shared.domain.exceptions import ConflictError, IllegalTransitionError, ValidationError
from shared.domain.value_objects import Money, DateRange


class BookingStatus(Enum):
    """
    Booking Status Finite State Machine

    State transitions:
    - PENDING_PAYMENT -> CONFIRMED (payment succeeded)
    - PENDING_PAYMENT -> CANCELLED (cancelled before payment)
    - CONFIRMED -> CHECKED_IN (guest checked in)
    - CONFIRMED -> CANCELLED (guest or admin cancelled)
    - CONFIRMED -> NO_SHOW (admin only)
    - CHECKED_IN -> CHECKED_OUT (guest checked out)
    """
    PENDING_PAYMENT = 'pending_payment'    # Created, waiting for payment
    CONFIRMED = 'confirmed'                # Paid and confirmed
    CHECKED_IN = 'checked_in'              # Guest has checked in
    CHECKED_OUT = 'checked_out'            # Guest has checked out
    CANCELLED = 'cancelled'
    NO_SHOW = 'no_show'


class BookingEvent(Enum):
    CONFIRM_PAYMENT = 'confirm_payment'
    CHECK_IN = 'check_in'
    CHECK_OUT = 'check_out'
    CANCEL = 'cancel'
    MARK_NO_SHOW = 'mark_no_show'


class BookingPaymentStatus(Enum):
    """Payment status tracking"""
    UNPAID = 'unpaid'                           # No payment intent yet
    PENDING = 'pending'                         # Intent created, waiting for the gateway
    SUCCEEDED = 'succeeded'
    FAILED = 'failed'                           # Last attempt failed, a new intent may be created
    REFUNDED = 'refunded'
    PARTIALLY_REFUNDED = 'partially_refunded'


# (status, event) -> new status. Pairs missing from the table are illegal.
TRANSITIONS = {
    (BookingStatus.PENDING_PAYMENT, BookingEvent.CONFIRM_PAYMENT): BookingStatus.CONFIRMED,
    (BookingStatus.PENDING_PAYMENT, BookingEvent.CANCEL): BookingStatus.CANCELLED,
    (BookingStatus.CONFIRMED, BookingEvent.CHECK_IN): BookingStatus.CHECKED_IN,
    (BookingStatus.CONFIRMED, BookingEvent.CANCEL): BookingStatus.CANCELLED,
    (BookingStatus.CONFIRMED, BookingEvent.MARK_NO_SHOW): BookingStatus.NO_SHOW,
    (BookingStatus.CHECKED_IN, BookingEvent.CHECK_OUT): BookingStatus.CHECKED_OUT,
}

TERMINAL_STATUSES = frozenset({
    BookingStatus.CANCELLED,
    BookingStatus.CHECKED_OUT,
    BookingStatus.NO_SHOW,
})

# Statuses that release the room dates
INACTIVE_STATUSES = frozenset({BookingStatus.CANCELLED, BookingStatus.NO_SHOW})


def next_status(status: BookingStatus, event: BookingEvent) -> BookingStatus:
    try:
        return TRANSITIONS[(status, event)]
    except KeyError:
        raise IllegalTransitionError(status, event) from None


@dataclass(kw_only=True, eq=False)
class Room(Entity):
    """Catalog room, owned outside the booking core"""
    name: str
    hotel_name: str = ''
    price_per_night: Money
    capacity: int
    is_available: bool = True


@dataclass(kw_only=True, eq=False)
class Booking(Aggregate):
    """
    Booking Aggregate Root

    Represents a guest's reservation of a room for specific dates.

    Key invariants:
    - Booking must have valid date range (check_in < check_out)
    - Guests count must not exceed room capacity
    - Only active bookings (not cancelled or no-show) block room dates
    - total_price = nights x nightly rate, fixed at creation
    """

    # References
    user_id: UUID
    room_id: UUID

    # Dates
    dates: DateRange
    guests: int

    # Pricing
    nightly_rate: Money
    total_price: Money
    discount_from_points: Money | None = None
    points_earned: int = 0
    points_redeemed: int = 0

    # Guest contact information
    guest_name: str = ''
    guest_email: str = ''
    special_requests: str = ''

    # Status tracking
    status: BookingStatus = BookingStatus.PENDING_PAYMENT
    payment_status: BookingPaymentStatus = BookingPaymentStatus.UNPAID
    payment_transaction_id: UUID | None = None
    is_paid: bool = False
    paid_at: datetime | None = None

    # Cancellation details
    cancellation_reason: str = ''
    refund_amount: Money | None = None

    # Timestamps
    confirmed_at: datetime | None = None
    checked_in_at: datetime | None = None
    checked_out_at: datetime | None = None
    cancelled_at: datetime | None = None

    def __post_init__(self):
        if self.guests < 1:
            raise ValidationError("Guests count must be at least 1", guests=self.guests)
        if self.discount_from_points is None:
            self.discount_from_points = Money.zero(self.total_price.currency)

    @classmethod
    def create(
        cls,
        *,
        room: Room,
        user_id: UUID,
        dates: DateRange,
        guests: int,
        now: datetime,
        guest_name: str = '',
        guest_email: str = '',
        special_requests: str = '',
    ) -> 'Booking':
        """
        Create a PENDING_PAYMENT booking for a room

        Availability is not checked here; the caller runs the overlap check
        under the room lock in the same unit of work.
        Events: BookingCreated
        """
        if not room.is_available:
            raise ValidationError("Room is not available for booking", room_id=room.id)
        if dates.start_date < now.date():
            raise ValidationError("Check-in date cannot be in the past", check_in=dates.start_date)
        if guests < 1 or guests > room.capacity:
            raise ValidationError(
                f"Guests count ({guests}) must be between 1 and room capacity ({room.capacity})",
                guests=guests,
            )

        from apps.bookings.domain.events import BookingCreated

        booking = cls(
            user_id=user_id,
            room_id=room.id,
            dates=dates,
            guests=guests,
            nightly_rate=room.price_per_night,
            total_price=room.price_per_night * len(dates),
            guest_name=guest_name,
            guest_email=guest_email,
            special_requests=special_requests,
            created_at=now,
            updated_at=now,
        )
        booking.add_event(BookingCreated(
            aggregate_id=booking.id,
            booking_id=booking.id,
            room_id=room.id,
            user_id=user_id,
            dates=dates,
            total_price=booking.total_price,
        ))
        return booking

    def _apply(self, event: BookingEvent, now: datetime) -> BookingStatus:
        previous = self.status
        self.status = next_status(self.status, event)
        self.touch(now)
        return previous

    def confirm_payment(self, transaction_id: UUID, now: datetime) -> bool:
        """
        Confirm payment (PENDING_PAYMENT -> CONFIRMED)

        Returns False when the booking is already paid by the same
        transaction, so redelivered gateway events are no-ops.
        Events: BookingConfirmed
        """
        if self.is_paid:
            if self.payment_transaction_id == transaction_id:
                return False
            raise ConflictError(
                "Booking is already paid by another transaction",
                booking_id=self.id,
                transaction_id=self.payment_transaction_id,
            )

        self._apply(BookingEvent.CONFIRM_PAYMENT, now)

        from apps.bookings.domain.events import BookingConfirmed

        self.payment_status = BookingPaymentStatus.SUCCEEDED
        self.payment_transaction_id = transaction_id
        self.is_paid = True
        self.paid_at = now
        self.confirmed_at = now

        self.add_event(BookingConfirmed(
            aggregate_id=self.id,
            booking_id=self.id,
            room_id=self.room_id,
            user_id=self.user_id,
            transaction_id=transaction_id,
            dates=self.dates,
            amount_paid=self.payable_amount,
            guest_name=self.guest_name,
            guest_email=self.guest_email,
        ))
        return True

    def check_in(self, now: datetime):
        """
        Check in guest (CONFIRMED -> CHECKED_IN)

        Events: BookingCheckedIn
        """
        self._apply(BookingEvent.CHECK_IN, now)

        from apps.bookings.domain.events import BookingCheckedIn

        self.checked_in_at = now
        self.add_event(BookingCheckedIn(
            aggregate_id=self.id,
            booking_id=self.id,
            room_id=self.room_id,
        ))

    def check_out(self, now: datetime):
        """
        Check out guest (CHECKED_IN -> CHECKED_OUT)

        Events: BookingCheckedOut
        """
        self._apply(BookingEvent.CHECK_OUT, now)

        from apps.bookings.domain.events import BookingCheckedOut

        self.checked_out_at = now
        self.add_event(BookingCheckedOut(
            aggregate_id=self.id,
            booking_id=self.id,
            room_id=self.room_id,
            user_id=self.user_id,
        ))

    def mark_no_show(self, now: datetime):
        """CONFIRMED -> NO_SHOW; releases the room dates"""
        self._apply(BookingEvent.MARK_NO_SHOW, now)

        from apps.bookings.domain.events import BookingMarkedNoShow

        self.add_event(BookingMarkedNoShow(
            aggregate_id=self.id,
            booking_id=self.id,
            room_id=self.room_id,
        ))

    def ensure_can_cancel(self):
        """Raise IllegalTransitionError unless the table allows cancelling"""
        next_status(self.status, BookingEvent.CANCEL)

    def cancel(
        self,
        reason: str,
        now: datetime,
        refund_amount: Money | None = None,
        payment_status: BookingPaymentStatus | None = None,
    ):
        """
        Cancel booking

        Can be called from PENDING_PAYMENT or CONFIRMED.
        Events: BookingCancelled
        """
        previous = self._apply(BookingEvent.CANCEL, now)

        from apps.bookings.domain.events import BookingCancelled

        self.cancellation_reason = reason
        self.cancelled_at = now
        if refund_amount:
            self.refund_amount = refund_amount
        if payment_status is not None:
            self.payment_status = payment_status

        self.add_event(BookingCancelled(
            aggregate_id=self.id,
            booking_id=self.id,
            room_id=self.room_id,
            user_id=self.user_id,
            reason=reason,
            refund_amount=refund_amount,
            previous_status=previous.value,
            guest_name=self.guest_name,
            guest_email=self.guest_email,
        ))

    def apply_points_discount(self, points: int, discount: Money, now: datetime):
        """Record a loyalty redemption against the price; status is unchanged"""
        if self.status != BookingStatus.PENDING_PAYMENT:
            raise ConflictError(
                f"Points can only be redeemed while the booking is {BookingStatus.PENDING_PAYMENT.value}",
                booking_id=self.id,
            )
        if self.points_redeemed:
            raise ConflictError("Points were already redeemed for this booking", booking_id=self.id)
        if discount > self.total_price:
            raise ValidationError("Discount cannot exceed the booking total", booking_id=self.id)

        self.points_redeemed = points
        self.discount_from_points = discount
        self.touch(now)

    def mark_payment_pending(self, transaction_id: UUID, now: datetime):
        self.payment_status = BookingPaymentStatus.PENDING
        self.payment_transaction_id = transaction_id
        self.touch(now)

    def mark_payment_failed(self, now: datetime):
        """The booking stays PENDING_PAYMENT; a new intent may be created"""
        self.payment_status = BookingPaymentStatus.FAILED
        self.touch(now)

    def record_refund(self, amount: Money, payment_status: BookingPaymentStatus, now: datetime):
        """Refund reported by the gateway; the booking status is left alone"""
        self.refund_amount = amount
        self.payment_status = payment_status
        self.touch(now)

    def record_points_earned(self, points: int, now: datetime):
        self.points_earned = points
        self.touch(now)

    @property
    def payable_amount(self) -> Money:
        """Amount the guest pays after the points discount"""
        return self.total_price - self.discount_from_points

    @property
    def nights(self) -> int:
        """Number of nights"""
        return len(self.dates)

    @property
    def is_active(self) -> bool:
        """Active bookings block the room dates"""
        return self.status not in INACTIVE_STATUSES

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    def __str__(self):
        return f"Booking {self.id} ({self.status.value})"

    def __repr__(self):
        return (
            f"Booking(id={self.id}, room_id={self.room_id}, "
            f"status={self.status.value}, dates={self.dates})"
        )
