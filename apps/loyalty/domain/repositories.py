"""
Loyalty Repository Interfaces
"""

from abc import ABC, abstractmethod
from typing import List
from uuid import UUID

from apps.loyalty.domain.entities import LoyaltyAccount, LoyaltyTransaction, LoyaltyTransactionType


class LoyaltyAccountRepository(ABC):

    @abstractmethod
    def get_by_user(self, user_id: UUID, lock: bool = False) -> LoyaltyAccount | None:
        pass

    @abstractmethod
    def add(self, account: LoyaltyAccount):
        """Raises ConflictError if the user already has an account"""
        pass

    @abstractmethod
    def save(self, account: LoyaltyAccount):
        pass

    @abstractmethod
    def list_all(self) -> List[LoyaltyAccount]:
        pass


class LoyaltyTransactionRepository(ABC):
    """Append-only: entries are never updated or deleted"""

    @abstractmethod
    def add(self, entry: LoyaltyTransaction):
        pass

    @abstractmethod
    def list_for_account(self, account_id: UUID, offset: int = 0, limit: int | None = None) -> List[LoyaltyTransaction]:
        """Newest first"""
        pass

    @abstractmethod
    def count_for_account(self, account_id: UUID) -> int:
        pass

    @abstractmethod
    def sum_points(self, account_id: UUID) -> int:
        pass

    @abstractmethod
    def find_for_booking(self, account_id: UUID, booking_id: UUID,
                         type_: LoyaltyTransactionType) -> LoyaltyTransaction | None:
        pass
