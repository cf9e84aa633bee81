"""
Availability Guard

This is the CRITICAL check for preventing double bookings.
Every booking insertion MUST go through ensure_available().

Strategy (Defense in Depth):
1. Pessimistic locking: the room row is locked (SELECT FOR UPDATE) before
   the check, so concurrent requests for the same room are serialized
2. Domain validation: half-open interval overlap against active bookings
3. Storage constraint: PostgreSQL EXCLUDE constraint on the booking table
   (the in-memory store enforces the same rule at commit)

Usage:
    with uow:
        room = uow.rooms.get(room_id, lock=True)
        ensure_available(uow, room.id, dates)
        uow.bookings.add(booking)
"""

from datetime import date
from typing import List
from uuid import UUID
import logging

from shared.domain.exceptions import ConflictError
from shared.domain.value_objects import DateRange

logger = logging.getLogger(__name__)


def find_overlapping(uow, room_id: UUID, dates: DateRange, exclude_booking_id: UUID | None = None) -> List:
    """Active bookings on the room whose dates intersect [check_in, check_out)"""
    return [
        booking
        for booking in uow.bookings.list_active_for_room(room_id)
        if booking.id != exclude_booking_id and booking.dates.overlaps_with(dates)
    ]


def check_overlap(uow, room_id: UUID, check_in: date, check_out: date) -> bool:
    """
    True if any active booking intersects the requested range

    The checkout day is not occupied, so a booking ending on the requested
    check-in date does not overlap.
    """
    return bool(find_overlapping(uow, room_id, DateRange(check_in, check_out)))


def ensure_available(uow, room_id: UUID, dates: DateRange, exclude_booking_id: UUID | None = None):
    """Raise ConflictError if the room is taken for any night of the range"""
    overlapping = find_overlapping(uow, room_id, dates, exclude_booking_id)
    if overlapping:
        logger.info(
            f"Room {room_id} not available for {dates}: "
            f"{len(overlapping)} overlapping booking(s)"
        )
        raise ConflictError(
            f"Room is not available for dates {dates}",
            room_id=room_id,
            conflicting_booking_id=overlapping[0].id,
        )
