"""Pure calculations behind earning, redeeming and tier progress."""

from decimal import Decimal

import pytest

from apps.loyalty.domain.tiers import (
    LoyaltyConfig,
    LoyaltyTier,
    calculate_max_redeemable_points,
    calculate_points_to_earn,
    calculate_tier_progress,
    get_next_tier,
    get_tier_for_spending,
    points_to_money,
)
from shared.domain.value_objects import Money


@pytest.mark.parametrize(
    "spending, tier",
    [
        ("0", LoyaltyTier.BRONZE),
        ("499.99", LoyaltyTier.BRONZE),
        ("500", LoyaltyTier.SILVER),
        ("1999.99", LoyaltyTier.SILVER),
        ("2000", LoyaltyTier.GOLD),
        ("5000", LoyaltyTier.PLATINUM),
        ("125000", LoyaltyTier.PLATINUM),
    ],
)
def test_tier_is_derived_from_lifetime_spending(spending, tier):
    assert get_tier_for_spending(Decimal(spending)) == tier


def test_points_are_floored_twice():
    # floor(floor(99.99 * 1) * 1.25) = floor(99 * 1.25) = 123
    assert calculate_points_to_earn(Decimal("99.99"), LoyaltyTier.SILVER) == 123
    assert calculate_points_to_earn(Decimal("270.00"), LoyaltyTier.BRONZE) == 270
    assert calculate_points_to_earn(Decimal("100"), LoyaltyTier.PLATINUM) == 200


def test_points_per_dollar_is_configurable():
    config = LoyaltyConfig(points_per_dollar=3)
    assert calculate_points_to_earn(Decimal("10.50"), LoyaltyTier.GOLD, config) == 46


def test_redemption_is_capped_at_half_the_booking():
    limits = calculate_max_redeemable_points(10000, Money(Decimal("100.00")))

    assert limits["max_points"] == 5000
    assert limits["max_discount"] == Money(Decimal("50.00"))
    assert limits["current_points"] == 10000


def test_redemption_is_capped_by_balance():
    limits = calculate_max_redeemable_points(1200, Money(Decimal("100.00")))

    assert limits["max_points"] == 1200
    assert limits["max_discount"] == Money(Decimal("12.00"))


def test_points_convert_to_money_at_ratio():
    assert points_to_money(3000, "USD") == Money(Decimal("30.00"))
    assert points_to_money(1, "USD") == Money(Decimal("0.01"))


def test_tier_progress_towards_next_tier():
    progress = calculate_tier_progress(LoyaltyTier.SILVER, Decimal("1250"))

    assert progress["current_tier"] == "SILVER"
    assert progress["next_tier"] == "GOLD"
    assert progress["amount_to_next_tier"] == Decimal("750")
    assert progress["progress_percentage"] == Decimal("50")


def test_top_tier_has_no_next_tier():
    progress = calculate_tier_progress(LoyaltyTier.PLATINUM, Decimal("9000"))

    assert get_next_tier(LoyaltyTier.PLATINUM) is None
    assert progress["next_tier"] is None
    assert progress["progress_percentage"] == Decimal("100")
