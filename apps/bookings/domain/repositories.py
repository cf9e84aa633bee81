"""
Booking Repository Interfaces

Implemented by the Django ORM (apps.bookings.repositories) and by the
in-memory store (shared.infrastructure.memory). Lookups return None when
the record does not exist; lock=True takes a row lock held until the unit
of work ends.
"""

from abc import ABC, abstractmethod
from typing import List
from uuid import UUID

from apps.bookings.domain.entities import Booking, Room


class RoomRepository(ABC):

    @abstractmethod
    def get(self, room_id: UUID, lock: bool = False) -> Room | None:
        pass

    @abstractmethod
    def add(self, room: Room):
        pass


class BookingRepository(ABC):

    @abstractmethod
    def get(self, booking_id: UUID, lock: bool = False) -> Booking | None:
        pass

    @abstractmethod
    def add(self, booking: Booking):
        pass

    @abstractmethod
    def save(self, booking: Booking):
        pass

    @abstractmethod
    def list_active_for_room(self, room_id: UUID) -> List[Booking]:
        """Bookings on the room that still block their dates"""
        pass
