"""
Notification Outbox

Outbound notifications are written as rows from domain event handlers and
delivered later by the relay (apps.notifications.relay). Delivery failures
stay visible on the row.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import List
from uuid import UUID

from shared.domain.base import Entity


class NotificationKind(Enum):
    BOOKING_CONFIRMATION = 'booking_confirmation'
    PAYMENT_RECEIPT = 'payment_receipt'
    CANCELLATION_CONFIRMATION = 'cancellation_confirmation'


class NotificationStatus(Enum):
    PENDING = 'pending'
    SENT = 'sent'
    FAILED = 'failed'


@dataclass(kw_only=True, eq=False)
class OutboundNotification(Entity):
    kind: NotificationKind
    booking_id: UUID | None = None
    recipient: str
    payload: dict = field(default_factory=dict)
    status: NotificationStatus = NotificationStatus.PENDING
    attempts: int = 0
    last_error: str = ''
    sent_at: datetime | None = None

    def mark_sent(self, now: datetime):
        self.status = NotificationStatus.SENT
        self.attempts += 1
        self.sent_at = now
        self.last_error = ''
        self.touch(now)

    def mark_attempt_failed(self, error: str, max_attempts: int, now: datetime):
        """Stays PENDING for another try until max_attempts is reached"""
        self.attempts += 1
        self.last_error = error[:1000]
        if self.attempts >= max_attempts:
            self.status = NotificationStatus.FAILED
        self.touch(now)


class NotificationRepository(ABC):

    @abstractmethod
    def add(self, notification: OutboundNotification):
        pass

    @abstractmethod
    def save(self, notification: OutboundNotification):
        pass

    @abstractmethod
    def get(self, notification_id: UUID, lock: bool = False) -> OutboundNotification | None:
        pass

    @abstractmethod
    def list_pending(self, limit: int = 100) -> List[OutboundNotification]:
        """Oldest first"""
        pass

    @abstractmethod
    def list_for_booking(self, booking_id: UUID) -> List[OutboundNotification]:
        pass
