"""
Ports used by the booking state machine

The booking core talks to loyalty and payments only through these
interfaces. Every call receives the caller's unit of work so the work is
committed (or rolled back) together with the booking change.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from uuid import UUID

from shared.domain.actors import Actor
from shared.domain.value_objects import Money


@dataclass(frozen=True)
class Redemption:
    points: int
    discount: Money


class LoyaltyAwarder(ABC):

    @abstractmethod
    def award_points(self, user_id: UUID, booking_id: UUID, amount: Decimal,
                     description: str = '', *, uow=None):
        """Append an EARN entry for a paid booking and return it"""


class LoyaltyRedeemer(ABC):

    @abstractmethod
    def redeem_points(self, user_id: UUID, booking_id: UUID, requested: int,
                      booking_amount: Money, *, uow=None) -> Redemption:
        """Spend points against a booking amount, clamped to the allowed maximum"""


class RefundIssuer(ABC):

    @abstractmethod
    def refund(self, transaction_id: UUID, actor: Actor, amount: Money | None = None,
               reason: str = '', now: datetime | None = None):
        """
        Refund a captured payment and cancel its booking once the gateway succeeds

        `now` is the time the caller already authorized the cancellation at;
        the refund amount is decided against it.
        """
