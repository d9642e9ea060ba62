"""
Forward-Only Series Cursors

Point-in-time lookups over sparse, date-ascending series:
- SeriesCursor: last-known value carried forward over gaps (weekends, holidays)
- ConstantCursor: identity conversion (rate 1) behind the same interface
- UnitTracker: units held of one security as of an advancing date

All cursors only accept non-decreasing query dates; an earlier date raises
NonMonotonicQueryError. Start a new cursor to scan again.

Copyright (c) 2026 Andreas Wagner. All rights reserved.
"""

from abc import ABC, abstractmethod
from datetime import date
from decimal import Decimal
from typing import Optional, Sequence

from core.records import SeriesEntry, Security


class NonMonotonicQueryError(ValueError):
    """Raised when a forward-only cursor is queried with an earlier date."""
    pass


class _ForwardOnly:
    """Tracks the last query date and rejects queries that move backwards."""

    def __init__(self):
        self._last_query: Optional[date] = None

    def _check_order(self, query_date: date):
        if self._last_query is not None and query_date < self._last_query:
            raise NonMonotonicQueryError(
                f"{type(self).__name__} queried with {query_date} after {self._last_query}"
            )
        self._last_query = query_date


class ValueCursor(_ForwardOnly, ABC):
    """A forward-only lookup of a dated value."""

    @abstractmethod
    def value_at(self, query_date: date) -> Decimal:
        """Return the value applicable on query_date."""
        pass


class SeriesCursor(ValueCursor):
    """
    Carry-forward cursor over an ascending series.

    value_at() returns the entry with the latest date not later than the query
    date. Queries before the first entry return the first entry: the series is
    never extrapolated backwards, the earliest known value stands in.
    """

    def __init__(self, entries: Sequence[SeriesEntry]):
        super().__init__()
        if not entries:
            raise ValueError("SeriesCursor requires at least one entry")
        self.entries = entries
        self.index = 0

    def entry_at(self, query_date: date) -> SeriesEntry:
        self._check_order(query_date)

        while self.index + 1 < len(self.entries) and self.entries[self.index + 1].date <= query_date:
            self.index += 1

        return self.entries[self.index]

    def value_at(self, query_date: date) -> Decimal:
        return self.entry_at(query_date).value


class ConstantCursor(ValueCursor):
    """Cursor returning the same value for every date (1 for same-currency conversion)."""

    def __init__(self, value: Decimal = Decimal(1)):
        super().__init__()
        self.value = value

    def value_at(self, query_date: date) -> Decimal:
        self._check_order(query_date)
        return self.value


class UnitTracker(_ForwardOnly):
    """
    Replays a security's buy and sell history to give units held as of a date.

    A trade dated on the query date itself is not yet counted (strictly
    before), so a daily bar reflects the position held at the start of the day.
    The running total is not clamped; callers report negative counts as a
    data-integrity problem.
    """

    def __init__(self, security: Security, account_id: str = ''):
        """
        Args:
            security: Security whose history is replayed (histories sorted ascending)
            account_id: Restrict to one account; empty string tracks all accounts
        """
        super().__init__()
        self.security = security
        self.account_id = account_id
        self.units = Decimal(0)
        self.buy_index = 0
        self.sell_index = 0

    def _matches(self, account_id: str) -> bool:
        return self.account_id == '' or self.account_id == account_id

    def units_at(self, query_date: date) -> Decimal:
        self._check_order(query_date)

        buys = self.security.buy_history
        while self.buy_index < len(buys) and buys[self.buy_index].date < query_date:
            entry = buys[self.buy_index]
            if self._matches(entry.account_id):
                self.units += entry.quantity
            self.buy_index += 1

        sells = self.security.sell_history
        while self.sell_index < len(sells) and sells[self.sell_index].sell_date < query_date:
            entry = sells[self.sell_index]
            if self._matches(entry.account_id):
                self.units -= entry.quantity
            self.sell_index += 1

        return self.units
