"""Ledger operations on the in-memory store."""

from concurrent.futures import ThreadPoolExecutor
from decimal import Decimal
from uuid import uuid4

import pytest

from apps.loyalty.application.command_handlers import AdjustPoints, GetLoyaltyAccount, GetLoyaltyHistory
from apps.loyalty.domain.entities import LoyaltyTransactionType
from apps.loyalty.domain.events import PointsEarned, TierUpgraded
from apps.loyalty.domain.tiers import LoyaltyTier
from shared.domain.exceptions import ForbiddenError, ValidationError
from shared.domain.value_objects import Money


@pytest.fixture
def ledger(services):
    return services.ledger


def _balance_matches_ledger(ledger, user_id):
    account = ledger.get_or_create_account(user_id)
    assert ledger.ledger_balance(user_id) == account.current_points
    return account


def test_account_is_created_lazily_at_bronze(ledger):
    user_id = uuid4()

    account = ledger.get_or_create_account(user_id)

    assert account.tier == LoyaltyTier.BRONZE
    assert account.current_points == 0
    assert ledger.get_or_create_account(user_id).id == account.id


def test_award_appends_earn_entry_and_updates_balance(ledger):
    user_id, booking_id = uuid4(), uuid4()

    entry = ledger.award_points(user_id, booking_id, Decimal("270.00"))

    assert entry.type == LoyaltyTransactionType.EARN
    assert entry.points == 270
    assert entry.balance_after == 270
    assert entry.metadata["tier"] == "BRONZE"
    account = _balance_matches_ledger(ledger, user_id)
    assert account.lifetime_points == 270
    assert account.lifetime_spending == Decimal("270.00")


def test_award_is_idempotent_per_booking(ledger):
    user_id, booking_id = uuid4(), uuid4()

    first = ledger.award_points(user_id, booking_id, Decimal("100"))
    second = ledger.award_points(user_id, booking_id, Decimal("100"))

    assert second.id == first.id
    history = ledger.get_transaction_history(user_id)
    assert history["total"] == 1
    assert ledger.get_or_create_account(user_id).current_points == 100


def test_crossing_threshold_upgrades_tier_with_zero_point_bonus(ledger, bus):
    upgrades = []
    bus.register_event_handler(TierUpgraded, upgrades.append)
    user_id = uuid4()
    ledger.award_points(user_id, uuid4(), Decimal("480"))

    ledger.award_points(user_id, uuid4(), Decimal("40"))

    account = _balance_matches_ledger(ledger, user_id)
    assert account.tier == LoyaltyTier.SILVER
    assert account.lifetime_spending == Decimal("520")
    # earned at BRONZE rate; the new tier applies from the next award
    assert account.current_points == 520

    newest = ledger.get_transaction_history(user_id)["transactions"][0]
    assert newest.type == LoyaltyTransactionType.BONUS
    assert newest.points == 0
    assert newest.description == "Tier upgraded from Bronze to Silver"
    assert newest.metadata == {"previousTier": "BRONZE", "newTier": "SILVER"}
    assert [(e.previous_tier, e.new_tier) for e in upgrades] == [("BRONZE", "SILVER")]


def test_redeem_is_clamped_to_cap(ledger):
    user_id = uuid4()
    ledger.adjust_points(user_id, 10000, "Welcome bonus", admin_id=uuid4())

    redemption = ledger.redeem_points(user_id, uuid4(), 10000, Money(Decimal("100.00")))

    assert redemption.points == 5000
    assert redemption.discount == Money(Decimal("50.00"))
    account = _balance_matches_ledger(ledger, user_id)
    assert account.current_points == 5000
    entry = ledger.get_transaction_history(user_id)["transactions"][0]
    assert entry.type == LoyaltyTransactionType.REDEEM
    assert entry.points == -5000
    assert entry.description == "Redeemed 5000 points for $50.00 discount"


def test_redeem_more_than_balance_is_rejected_without_side_effects(ledger):
    user_id = uuid4()
    ledger.adjust_points(user_id, 100, "Goodwill", admin_id=uuid4())

    with pytest.raises(ValidationError):
        ledger.redeem_points(user_id, uuid4(), 101, Money(Decimal("100.00")))

    account = _balance_matches_ledger(ledger, user_id)
    assert account.current_points == 100
    assert ledger.get_transaction_history(user_id)["total"] == 1


@pytest.mark.parametrize("points", [0, -5])
def test_redeem_requires_positive_points(ledger, points):
    with pytest.raises(ValidationError):
        ledger.redeem_points(uuid4(), uuid4(), points, Money(Decimal("100.00")))


def test_negative_adjustment_cannot_overdraw(ledger):
    user_id = uuid4()
    ledger.adjust_points(user_id, 50, "Goodwill", admin_id=uuid4())

    with pytest.raises(ValidationError):
        ledger.adjust_points(user_id, -51, "Correction", admin_id=uuid4())

    assert _balance_matches_ledger(ledger, user_id).current_points == 50


def test_adjustment_requires_reason(ledger):
    with pytest.raises(ValidationError):
        ledger.adjust_points(uuid4(), 10, "", admin_id=uuid4())


def test_history_is_paginated_newest_first(ledger):
    user_id = uuid4()
    for points in (10, 20, 30):
        ledger.adjust_points(user_id, points, f"Adjustment {points}", admin_id=uuid4())

    first_page = ledger.get_transaction_history(user_id, page=1, limit=2)
    second_page = ledger.get_transaction_history(user_id, page=2, limit=2)

    assert [e.points for e in first_page["transactions"]] == [30, 20]
    assert [e.points for e in second_page["transactions"]] == [10]
    assert first_page["total"] == 3
    assert first_page["total_pages"] == 2


def test_concurrent_earn_and_redeem_keep_ledger_consistent(ledger):
    user_id = uuid4()
    ledger.adjust_points(user_id, 5000, "Seed", admin_id=uuid4())

    def earn(_):
        ledger.award_points(user_id, uuid4(), Decimal("10"))

    def redeem(_):
        ledger.redeem_points(user_id, uuid4(), 10, Money(Decimal("100.00")))

    with ThreadPoolExecutor(max_workers=8) as pool:
        list(pool.map(earn, range(20)))
        list(pool.map(redeem, range(20)))

    account = _balance_matches_ledger(ledger, user_id)
    assert account.current_points == 5000 + 20 * 10 - 20 * 10
    assert ledger.find_mismatches() == []


def test_earned_events_are_published_after_commit(ledger, bus):
    earned = []
    bus.register_event_handler(PointsEarned, earned.append)

    ledger.award_points(uuid4(), uuid4(), Decimal("42"))

    assert [e.points for e in earned] == [42]


def test_adjust_command_is_admin_only(services, guest, admin):
    command = AdjustPoints(user_id=guest.user_id, points=500, reason="Compensation", actor=guest)
    with pytest.raises(ForbiddenError):
        services.bus.handle_command(command)

    services.bus.handle_command(
        AdjustPoints(user_id=guest.user_id, points=500, reason="Compensation", actor=admin)
    )
    details = services.bus.handle_command(GetLoyaltyAccount(user_id=guest.user_id))
    history = services.bus.handle_command(GetLoyaltyHistory(user_id=guest.user_id, page=1, limit=10))

    assert details["account"].current_points == 500
    assert history["transactions"][0].metadata == {"adminId": str(admin.user_id)}
