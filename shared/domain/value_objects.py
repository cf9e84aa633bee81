"""
Common Value Objects

Value objects used across multiple domains:
- Money: Represents monetary amounts with currency
- DateRange: Represents a range of dates (check-in to check-out)
"""

from dataclasses import dataclass
from datetime import date
from decimal import Decimal, ROUND_DOWN, ROUND_HALF_UP

from shared.domain.base import ValueObject

CENT = Decimal('0.01')
SUPPORTED_CURRENCIES = ('USD', 'EUR', 'GBP', 'KZT')


@dataclass(frozen=True)
class Money(ValueObject):
    """
    Money value object

    Represents a monetary amount with currency.
    Immutable and supports arithmetic operations. Amounts are kept
    quantized to cents.
    """
    amount: Decimal
    currency: str = 'USD'

    def __post_init__(self):
        amount = Decimal(str(self.amount)).quantize(CENT, rounding=ROUND_HALF_UP)
        currency = (self.currency or '').upper()
        object.__setattr__(self, 'amount', amount)
        object.__setattr__(self, 'currency', currency)

        # Validation
        if amount < 0:
            raise ValueError("Amount cannot be negative")
        if not currency:
            raise ValueError("Currency is required")
        if currency not in SUPPORTED_CURRENCIES:
            raise ValueError(f"Unsupported currency: {currency}")

    @classmethod
    def zero(cls, currency: str = 'USD') -> 'Money':
        return cls(Decimal('0'), currency)

    @classmethod
    def from_minor_units(cls, value: int, currency: str = 'USD') -> 'Money':
        """Build from an integer amount in cents, as payment gateways report it"""
        return cls(Decimal(value) / 100, currency)

    def to_minor_units(self) -> int:
        return int((self.amount * 100).to_integral_value())

    def _check_currency(self, other: 'Money', operation: str):
        if not isinstance(other, Money):
            raise TypeError(f"Can only {operation} Money with Money")
        if self.currency != other.currency:
            raise ValueError(
                f"Cannot {operation} different currencies: {self.currency} and {other.currency}"
            )

    def __add__(self, other: 'Money') -> 'Money':
        """Add two money objects"""
        self._check_currency(other, 'add')
        return Money(self.amount + other.amount, self.currency)

    def __sub__(self, other: 'Money') -> 'Money':
        """Subtract two money objects"""
        self._check_currency(other, 'subtract')
        return Money(self.amount - other.amount, self.currency)

    def __mul__(self, factor) -> 'Money':
        """Multiply money by a factor"""
        if not isinstance(factor, (int, Decimal)):
            raise TypeError("Can only multiply Money by int or Decimal")
        return Money(self.amount * factor, self.currency)

    def percent(self, percentage: Decimal) -> 'Money':
        """Portion of this amount, rounded down so it never exceeds the exact share"""
        share = (self.amount * Decimal(percentage) / Decimal(100)).quantize(CENT, rounding=ROUND_DOWN)
        return Money(share, self.currency)

    def __lt__(self, other: 'Money') -> bool:
        self._check_currency(other, 'compare')
        return self.amount < other.amount

    def __le__(self, other: 'Money') -> bool:
        self._check_currency(other, 'compare')
        return self.amount <= other.amount

    def __gt__(self, other: 'Money') -> bool:
        self._check_currency(other, 'compare')
        return self.amount > other.amount

    def __ge__(self, other: 'Money') -> bool:
        self._check_currency(other, 'compare')
        return self.amount >= other.amount

    def __bool__(self) -> bool:
        return self.amount != 0

    def __str__(self):
        return f"{self.amount:,.2f} {self.currency}"

    def __repr__(self):
        return f"Money({self.amount}, '{self.currency}')"


@dataclass(frozen=True)
class DateRange(ValueObject):
    """
    Date range value object

    Represents a range from start_date (inclusive) to end_date (exclusive).
    Used for booking periods and availability checks.
    """
    start_date: date
    end_date: date

    def __post_init__(self):
        if self.start_date >= self.end_date:
            raise ValueError(f"Start date ({self.start_date}) must be before end date ({self.end_date})")

    def overlaps_with(self, other: 'DateRange') -> bool:
        """
        Check if this range overlaps with another

        Two ranges overlap if they share any night.
        Note: end_date is exclusive, so adjacent ranges don't overlap.

        Examples:
            - DateRange(25, 28) overlaps with DateRange(27, 30) -> True
            - DateRange(25, 28) overlaps with DateRange(28, 31) -> False (adjacent)
        """
        if not isinstance(other, DateRange):
            raise TypeError("Can only check overlap with another DateRange")

        # Overlap formula: start1 < end2 AND end1 > start2
        return (self.start_date < other.end_date and
                self.end_date > other.start_date)

    def contains(self, check_date: date) -> bool:
        """
        Check if a date is within this range

        Note: start_date is inclusive, end_date is exclusive
        """
        return self.start_date <= check_date < self.end_date

    def __len__(self) -> int:
        """Number of nights in this range"""
        return (self.end_date - self.start_date).days

    def __str__(self):
        return f"{self.start_date.isoformat()} - {self.end_date.isoformat()}"

    def __repr__(self):
        return f"DateRange({self.start_date}, {self.end_date})"
