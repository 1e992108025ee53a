"""
fine_policy.py

Flat per-day fine rules, one per material category.
"""

from __future__ import annotations
from decimal import Decimal, InvalidOperation
from typing import Dict, Tuple, Union

from .exceptions import ValidationError

Amount = Union[Decimal, int, str, float]

# category name -> (rate per overdue day, allowed loan period in days)
DEFAULT_POLICY_SETTINGS: Dict[str, Tuple[str, int]] = {
    "BOOK": ("10", 28),
    "CD": ("20", 7),
    "JOURNAL": ("15", 21),
}

ZERO = Decimal("0")


def to_decimal(value: Amount, what: str = "amount") -> Decimal:
    """
    Convert a money value to Decimal.

    Floats go through str() so 0.1 stays 0.1 instead of its binary expansion.
    Raises ValidationError for None or values that are not numbers.
    """
    if value is None:
        raise ValidationError(f"{what} cannot be missing.")
    if isinstance(value, bool):
        raise ValidationError(f"{what} must be a number, got {value!r}.")
    if isinstance(value, Decimal):
        result = value
    else:
        try:
            result = Decimal(str(value).strip())
        except (InvalidOperation, ValueError):
            raise ValidationError(f"{what} must be a number, got {value!r}.") from None
    if not result.is_finite():
        raise ValidationError(f"{what} must be finite, got {value!r}.")
    return result


class FinePolicy:
    """
    Immutable fine rule: a daily rate and the allowed loan period.

    The type does not know which material it applies to; the category only
    decides which preset gets attached to a loan.
    """

    __slots__ = ("_rate_per_day", "_period_days")

    def __init__(self, rate_per_day: Amount, period_days: int):
        rate = to_decimal(rate_per_day, "rate_per_day")
        if rate < ZERO:
            raise ValidationError("Rate per day must be non-negative.")
        if isinstance(period_days, bool) or not isinstance(period_days, int):
            raise ValidationError(f"Loan period must be an integer number of days, got {period_days!r}.")
        if period_days <= 0:
            raise ValidationError("Loan period must be positive.")
        self._rate_per_day = rate
        self._period_days = period_days

    @property
    def rate_per_day(self) -> Decimal:
        return self._rate_per_day

    @property
    def period_days(self) -> int:
        return self._period_days

    def calculate_fine(self, overdue_days: int) -> Decimal:
        """Return rate * overdue_days, or zero when nothing is overdue."""
        if overdue_days <= 0:
            return ZERO
        return self._rate_per_day * overdue_days

    def get_allowed_period_days(self) -> int:
        return self._period_days

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, FinePolicy):
            return NotImplemented
        return (self._rate_per_day, self._period_days) == (other._rate_per_day, other._period_days)

    def __hash__(self) -> int:
        return hash((self._rate_per_day, self._period_days))

    def __repr__(self) -> str:
        return f"FinePolicy(rate_per_day={self._rate_per_day}, period_days={self._period_days})"


def for_category(category, overrides=None) -> FinePolicy:
    """
    Return the policy attached to loans of `category`.

    `overrides` maps categories to configured policies (see config.load_fine_policies);
    categories missing from it fall back to the built-in presets.
    """
    if category is None:
        raise ValidationError("Material category cannot be missing.")
    if overrides and category in overrides:
        return overrides[category]
    try:
        rate, period = DEFAULT_POLICY_SETTINGS[category.name]
    except (KeyError, AttributeError):
        raise ValidationError(f"No fine policy for category {category!r}.") from None
    return FinePolicy(rate, period)
