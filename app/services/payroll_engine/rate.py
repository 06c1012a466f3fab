"""
OpsGuard - Rate Value Type

Percentages reach the engine in two shapes: as a fraction (0.20) or as a
percent (20). `Rate` is the single normalization point: anything above 1 is
read as a percent and divided by 100, everything else is already a fraction.
Once a value is a `Rate` it is never scaled again.
"""

from dataclasses import dataclass
from decimal import Decimal, ROUND_FLOOR, ROUND_HALF_UP
from typing import Union

from app.utils.error_handling import InvalidAmountException


Number = Union[int, float, str, Decimal]
RateLike = Union["Rate", int, float, str, Decimal, None]

ZERO = Decimal("0")
ONE = Decimal("1")
HUNDRED = Decimal("100")


def to_decimal(value: Number) -> Decimal:
    """Convert a number to Decimal without picking up float noise."""
    if isinstance(value, Decimal):
        return value
    if isinstance(value, float):
        return Decimal(str(value))
    return Decimal(value)


def round_clp(amount: Decimal) -> int:
    """Round a peso amount to whole CLP (half up)."""
    return int(amount.quantize(ONE, rounding=ROUND_HALF_UP))


def floor_clp(amount: Decimal) -> int:
    """Truncate a peso amount to whole CLP."""
    return int(amount.quantize(ONE, rounding=ROUND_FLOOR))


@dataclass(frozen=True)
class Rate:
    """A percentage held as a 0-1 fraction."""

    fraction: Decimal

    def __post_init__(self):
        if not isinstance(self.fraction, Decimal):
            object.__setattr__(self, "fraction", to_decimal(self.fraction))
        if self.fraction < 0:
            raise InvalidAmountException(
                self.fraction, field="rate", message=f"Rate cannot be negative: {self.fraction}"
            )

    @classmethod
    def of(cls, value: RateLike) -> "Rate":
        """
        Build a Rate from a fraction or a percent.

        `Rate.of(20)` and `Rate.of(0.20)` are equal. Passing a Rate returns
        it unchanged, so normalizing twice is harmless.
        """
        if isinstance(value, Rate):
            return value
        if value is None:
            return cls(ZERO)
        amount = to_decimal(value)
        if amount > ONE:
            amount = amount / HUNDRED
        return cls(amount)

    @classmethod
    def zero(cls) -> "Rate":
        return cls(ZERO)

    @property
    def percent(self) -> Decimal:
        return self.fraction * HUNDRED

    def apply(self, amount: Number) -> Decimal:
        """Return `amount x rate` as an unrounded Decimal."""
        return to_decimal(amount) * self.fraction

    def __add__(self, other: "Rate") -> "Rate":
        return Rate(self.fraction + Rate.of(other).fraction)

    def __bool__(self) -> bool:
        return self.fraction != ZERO

    def __float__(self) -> float:
        return float(self.fraction)

    def __str__(self) -> str:
        return f"{self.percent.normalize():f}%"
