"""
Loyalty Tiers and Points Arithmetic

Tier is derived from lifetime spending and sets the earning multiplier.
All functions here are pure.
"""

from dataclasses import dataclass
from decimal import Decimal, ROUND_FLOOR
from enum import Enum

from shared.domain.value_objects import Money


class LoyaltyTier(Enum):
    BRONZE = 'BRONZE'
    SILVER = 'SILVER'
    GOLD = 'GOLD'
    PLATINUM = 'PLATINUM'


TIER_ORDER = [LoyaltyTier.BRONZE, LoyaltyTier.SILVER, LoyaltyTier.GOLD, LoyaltyTier.PLATINUM]


@dataclass(frozen=True)
class TierConfig:
    name: str
    min_spending: Decimal
    multiplier: Decimal
    benefits: tuple


TIER_CONFIG = {
    LoyaltyTier.BRONZE: TierConfig(
        name='Bronze',
        min_spending=Decimal('0'),
        multiplier=Decimal('1.0'),
        benefits=('1 point per $1 spent',),
    ),
    LoyaltyTier.SILVER: TierConfig(
        name='Silver',
        min_spending=Decimal('500'),
        multiplier=Decimal('1.25'),
        benefits=('1.25x points on bookings', 'Priority customer support'),
    ),
    LoyaltyTier.GOLD: TierConfig(
        name='Gold',
        min_spending=Decimal('2000'),
        multiplier=Decimal('1.5'),
        benefits=(
            '1.5x points on bookings',
            'Free room upgrades when available',
            'Late checkout',
        ),
    ),
    LoyaltyTier.PLATINUM: TierConfig(
        name='Platinum',
        min_spending=Decimal('5000'),
        multiplier=Decimal('2.0'),
        benefits=(
            '2x points on bookings',
            'Guaranteed room upgrades',
            'Airport transfers',
            'Exclusive member events',
        ),
    ),
}


@dataclass(frozen=True)
class LoyaltyConfig:
    points_per_dollar: int = 1
    points_to_dollar_ratio: int = 100         # 100 points = $1
    max_redemption_percentage: Decimal = Decimal('0.5')


def _floor(value: Decimal) -> int:
    return int(value.to_integral_value(rounding=ROUND_FLOOR))


def get_tier_for_spending(lifetime_spending: Decimal) -> LoyaltyTier:
    for tier in reversed(TIER_ORDER):
        if lifetime_spending >= TIER_CONFIG[tier].min_spending:
            return tier
    return LoyaltyTier.BRONZE


def get_next_tier(tier: LoyaltyTier) -> LoyaltyTier | None:
    index = TIER_ORDER.index(tier)
    if index < len(TIER_ORDER) - 1:
        return TIER_ORDER[index + 1]
    return None


def calculate_points_to_earn(amount: Decimal, tier: LoyaltyTier, config: LoyaltyConfig | None = None) -> int:
    """floor(floor(amount x points_per_dollar) x multiplier)"""
    config = config or LoyaltyConfig()
    base_points = _floor(Decimal(amount) * config.points_per_dollar)
    return _floor(base_points * TIER_CONFIG[tier].multiplier)


def points_to_money(points: int, currency: str, config: LoyaltyConfig | None = None) -> Money:
    config = config or LoyaltyConfig()
    return Money(Decimal(points) / config.points_to_dollar_ratio, currency)


def calculate_max_redeemable_points(current_points: int, booking_amount: Money,
                                    config: LoyaltyConfig | None = None) -> dict:
    """
    Largest redemption allowed against a booking amount

    Returns {'max_points', 'max_discount', 'current_points'}.
    """
    config = config or LoyaltyConfig()
    max_discount_allowed = booking_amount.amount * Decimal(config.max_redemption_percentage)
    max_points = min(current_points, _floor(max_discount_allowed * config.points_to_dollar_ratio))
    max_points = max(max_points, 0)
    return {
        'max_points': max_points,
        'max_discount': points_to_money(max_points, booking_amount.currency, config),
        'current_points': current_points,
    }


def calculate_tier_progress(tier: LoyaltyTier, lifetime_spending: Decimal) -> dict:
    current = TIER_CONFIG[tier]
    next_tier = get_next_tier(tier)

    next_tier_threshold = None
    amount_to_next_tier = None
    progress_percentage = Decimal('100')

    if next_tier:
        upcoming = TIER_CONFIG[next_tier]
        next_tier_threshold = upcoming.min_spending
        amount_to_next_tier = max(Decimal('0'), upcoming.min_spending - lifetime_spending)
        tier_range = upcoming.min_spending - current.min_spending
        progress_in_tier = lifetime_spending - current.min_spending
        progress_percentage = min(Decimal('100'), progress_in_tier / tier_range * 100)

    return {
        'current_tier': tier.value,
        'current_spending': lifetime_spending,
        'next_tier': next_tier.value if next_tier else None,
        'next_tier_threshold': next_tier_threshold,
        'amount_to_next_tier': amount_to_next_tier,
        'progress_percentage': progress_percentage,
        'tier_multiplier': current.multiplier,
        'tier_benefits': list(current.benefits),
    }
