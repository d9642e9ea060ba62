"""Percentage helpers for portfolio and account metrics."""

from decimal import Decimal
from typing import Optional


def safe_ratio(numerator: Decimal, denominator: Decimal) -> Optional[Decimal]:
    """
    Signed ratio of numerator to denominator.

    Returns:
        numerator / denominator, or None when the denominator is zero
    """
    if denominator == 0:
        return None
    return numerator / denominator


def abs_ratio(numerator: Decimal, denominator: Decimal) -> Optional[Decimal]:
    """
    Magnitude of numerator / denominator.

    Returns:
        |numerator / denominator|, or None when the denominator is zero
    """
    ratio = safe_ratio(numerator, denominator)
    return abs(ratio) if ratio is not None else None


def weighted_average(total: Decimal, units: Decimal) -> Optional[Decimal]:
    """Average per-unit value (e.g. average buy price), None without units."""
    return safe_ratio(total, units)
