"""
Actors

Who is performing an operation. Authentication happens outside the core;
the caller passes the authenticated user id and role.
"""

from dataclasses import dataclass
from enum import Enum
from uuid import UUID

from shared.domain.base import ValueObject


class UserRole(Enum):
    GUEST = 'guest'
    STAFF = 'staff'
    ADMIN = 'admin'


@dataclass(frozen=True)
class Actor(ValueObject):
    user_id: UUID
    role: UserRole = UserRole.GUEST

    @property
    def is_admin(self) -> bool:
        return self.role == UserRole.ADMIN

    @property
    def is_staff(self) -> bool:
        """Staff-only operations are open to admins as well"""
        return self.role in (UserRole.STAFF, UserRole.ADMIN)

    def owns(self, user_id: UUID) -> bool:
        return self.user_id == user_id
