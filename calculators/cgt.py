"""
Capital Gains Tax Discount Policy

Fixed CGT rule applied to every realized sell portion:
- A capital gain on an asset held for more than 12 months is discounted by 50%
- Losses are never discounted, whatever the holding period

Copyright (c) 2026 Andreas Wagner. All rights reserved.
"""

from datetime import date
from decimal import Decimal
from typing import Tuple

import pandas as pd


CGT_DISCOUNT_RATE = Decimal("0.5")
CGT_MIN_HOLDING_YEARS = Decimal(1)


def _add_months(day: date, months: int) -> date:
    # Month-end dates clamp (31 Jan + 1 month = 28/29 Feb)
    return (pd.Timestamp(day) + pd.DateOffset(months=months)).date()


def holding_period_years(acquired: date, disposed: date) -> Decimal:
    """
    Fractional number of years between two dates, measured in calendar months.

    Whole months are counted from the acquisition date; the remainder is the
    fraction of the following month elapsed. A disposal exactly one calendar
    year after acquisition gives exactly 1.

    Args:
        acquired: Acquisition (buy) date
        disposed: Disposal (sell) date

    Returns:
        Holding period in years (negative if disposed precedes acquired)
    """
    if disposed < acquired:
        return -holding_period_years(disposed, acquired)

    whole_months = (disposed.year - acquired.year) * 12 + (disposed.month - acquired.month)
    anchor = _add_months(acquired, whole_months)
    if disposed < anchor:
        whole_months -= 1
        anchor = _add_months(acquired, whole_months)

    next_anchor = _add_months(acquired, whole_months + 1)
    fraction = Decimal((disposed - anchor).days) / Decimal((next_anchor - anchor).days)

    return (Decimal(whole_months) + fraction) / Decimal(12)


def is_discount_eligible(profit_or_loss: Decimal, acquired: date, disposed: date) -> bool:
    """Check whether the CGT discount applies to a realized result."""
    if profit_or_loss <= 0:
        return False
    return holding_period_years(acquired, disposed) > CGT_MIN_HOLDING_YEARS


def apply_cgt_discount(
    profit_or_loss: Decimal,
    acquired: date,
    disposed: date
) -> Tuple[Decimal, bool]:
    """
    Compute the capital gain or loss for a sell portion.

    Returns:
        (capital_gain_or_loss, discount_applied)
    """
    if is_discount_eligible(profit_or_loss, acquired, disposed):
        return profit_or_loss * CGT_DISCOUNT_RATE, True
    return profit_or_loss, False
