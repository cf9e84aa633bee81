"""
Booking Domain Events

Events that represent things that have happened in the booking domain.
These are published after successful transaction commits.
"""

from dataclasses import dataclass
from uuid import UUID

from shared.domain.base import DomainEvent
from shared.domain.value_objects import Money, DateRange


# ===== Booking Events =====

@dataclass(kw_only=True)
class BookingCreated(DomainEvent):
    """Event: A new booking was created in PENDING_PAYMENT"""
    booking_id: UUID
    room_id: UUID
    user_id: UUID
    dates: DateRange
    total_price: Money


@dataclass(kw_only=True)
class BookingConfirmed(DomainEvent):
    """
    Event: Booking payment confirmed (PENDING_PAYMENT -> CONFIRMED)

    Triggers:
    - Booking confirmation notification to the guest
    """
    booking_id: UUID
    room_id: UUID
    user_id: UUID
    transaction_id: UUID
    dates: DateRange
    amount_paid: Money
    guest_name: str = ''
    guest_email: str = ''


@dataclass(kw_only=True)
class BookingCheckedIn(DomainEvent):
    """Event: Guest has checked in (CONFIRMED -> CHECKED_IN)"""
    booking_id: UUID
    room_id: UUID


@dataclass(kw_only=True)
class BookingCheckedOut(DomainEvent):
    """Event: Guest has checked out (CHECKED_IN -> CHECKED_OUT)"""
    booking_id: UUID
    room_id: UUID
    user_id: UUID


@dataclass(kw_only=True)
class BookingMarkedNoShow(DomainEvent):
    booking_id: UUID
    room_id: UUID


@dataclass(kw_only=True)
class BookingCancelled(DomainEvent):
    """
    Event: Booking was cancelled

    Triggers:
    - Cancellation confirmation notification to the guest
    """
    booking_id: UUID
    room_id: UUID
    user_id: UUID
    reason: str
    refund_amount: Money | None
    previous_status: str
    guest_name: str = ''
    guest_email: str = ''
