"""
Loyalty Command Handlers

Commands:
- GetLoyaltyAccount: Account, tier progress and recent entries
- GetLoyaltyHistory: Paginated ledger
- RedeemPoints: Redeem points on a booking (goes through the booking state
  machine so the booking discount and the ledger entry commit together)
- AdjustPoints: Admin correction
"""

from dataclasses import dataclass
from uuid import UUID

from apps.bookings.application.state_machine import BookingStateMachine
from apps.bookings.domain.ports import Redemption
from apps.loyalty.application.ledger import LoyaltyLedger
from apps.loyalty.domain.entities import LoyaltyTransaction
from shared.domain.actors import Actor
from shared.domain.exceptions import ForbiddenError


# ===== Commands =====

@dataclass
class GetLoyaltyAccount:
    user_id: UUID
    limit: int = 10


@dataclass
class GetLoyaltyHistory:
    user_id: UUID
    page: int = 1
    limit: int = 20


@dataclass
class RedeemPoints:
    actor: Actor
    booking_id: UUID
    points: int


@dataclass
class AdjustPoints:
    actor: Actor
    user_id: UUID
    points: int
    reason: str


# ===== Command Handlers =====

class GetLoyaltyAccountHandler:

    def __init__(self, ledger: LoyaltyLedger):
        self.ledger = ledger

    def handle(self, command: GetLoyaltyAccount) -> dict:
        return self.ledger.get_account_details(command.user_id, command.limit)


class GetLoyaltyHistoryHandler:

    def __init__(self, ledger: LoyaltyLedger):
        self.ledger = ledger

    def handle(self, command: GetLoyaltyHistory) -> dict:
        return self.ledger.get_transaction_history(command.user_id, command.page, command.limit)


class RedeemPointsHandler:

    def __init__(self, state_machine: BookingStateMachine):
        self.state_machine = state_machine

    def handle(self, command: RedeemPoints) -> Redemption:
        return self.state_machine.apply_points_redemption(
            command.booking_id, command.actor, command.points
        )


class AdjustPointsHandler:

    def __init__(self, ledger: LoyaltyLedger):
        self.ledger = ledger

    def handle(self, command: AdjustPoints) -> LoyaltyTransaction:
        if not command.actor.is_admin:
            raise ForbiddenError("Only admins can adjust loyalty points", user_id=command.actor.user_id)
        return self.ledger.adjust_points(
            command.user_id, command.points, command.reason, command.actor.user_id
        )
