"""
Payment Repository Interfaces
"""

from abc import ABC, abstractmethod
from datetime import datetime
from typing import List
from uuid import UUID

from apps.finances.domain.entities import PaymentTransaction, ProcessedWebhookEvent


class PaymentTransactionRepository(ABC):

    @abstractmethod
    def get(self, transaction_id: UUID, lock: bool = False) -> PaymentTransaction | None:
        pass

    @abstractmethod
    def get_by_intent(self, external_intent_id: str, lock: bool = False) -> PaymentTransaction | None:
        pass

    @abstractmethod
    def find_active_for_booking(self, booking_id: UUID) -> PaymentTransaction | None:
        """The PENDING or SUCCEEDED transaction of a booking, if any"""
        pass

    @abstractmethod
    def list_for_booking(self, booking_id: UUID) -> List[PaymentTransaction]:
        pass

    @abstractmethod
    def list_for_user(self, user_id: UUID) -> List[PaymentTransaction]:
        """All transactions of a user, newest first"""
        pass

    @abstractmethod
    def list_pending_created_before(self, cutoff: datetime) -> List[PaymentTransaction]:
        pass

    @abstractmethod
    def add(self, transaction: PaymentTransaction):
        """Raises ConflictError when the booking already has an active transaction"""
        pass

    @abstractmethod
    def save(self, transaction: PaymentTransaction):
        pass


class WebhookEventRepository(ABC):

    @abstractmethod
    def exists(self, external_intent_id: str, event_type: str) -> bool:
        pass

    @abstractmethod
    def add(self, event: ProcessedWebhookEvent):
        """Raises ConflictError on a duplicate (intent, event type)"""
        pass
