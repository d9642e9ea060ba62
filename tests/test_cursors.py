"""
Tests for forward-only series cursors and the unit tracker.
"""

from datetime import date
from decimal import Decimal

import pytest

from calculators.cursors import ConstantCursor, NonMonotonicQueryError, SeriesCursor, UnitTracker
from core.records import BuyHistoryEntry, SeriesEntry, Security, SellHistoryEntry


def _entries(*pairs):
    return [SeriesEntry(date=date.fromisoformat(d), value=Decimal(v)) for d, v in pairs]


def _buy(account_id, d, quantity):
    return BuyHistoryEntry(
        trade_id=f"b-{d}", account_id=account_id, date=date.fromisoformat(d),
        quantity=Decimal(quantity), price=Decimal("1"), brokerage=Decimal(0), gst=Decimal(0),
        total=Decimal(quantity),
    )


def _sell(account_id, d, quantity):
    zero = Decimal(0)
    return SellHistoryEntry(
        trade_id=f"s-{d}", account_id=account_id, buy_date=date(2020, 1, 1),
        sell_date=date.fromisoformat(d), quantity=Decimal(quantity), buy_price=Decimal(1),
        sell_price=Decimal(1), applied_buy_brokerage=zero, applied_sell_brokerage=zero,
        applied_buy_gst=zero, applied_sell_gst=zero, total=Decimal(quantity),
        profit_or_loss=zero, capital_gain_or_loss=zero, cgt_discount=False,
    )


class TestSeriesCursor:

    def test_carries_forward_over_gaps(self):
        cursor = SeriesCursor(_entries(("2026-01-02", "10"), ("2026-01-05", "11"), ("2026-01-06", "12")))

        assert cursor.value_at(date(2026, 1, 2)) == Decimal("10")
        assert cursor.value_at(date(2026, 1, 3)) == Decimal("10")   # Saturday
        assert cursor.value_at(date(2026, 1, 4)) == Decimal("10")   # Sunday
        assert cursor.value_at(date(2026, 1, 5)) == Decimal("11")
        assert cursor.value_at(date(2026, 1, 20)) == Decimal("12")

    def test_before_first_entry_returns_first(self):
        cursor = SeriesCursor(_entries(("2026-01-05", "7"), ("2026-01-06", "8")))
        assert cursor.value_at(date(2025, 6, 1)) == Decimal("7")

    def test_exact_date_match_is_used(self):
        cursor = SeriesCursor(_entries(("2026-01-01", "1"), ("2026-01-02", "2")))
        assert cursor.value_at(date(2026, 1, 2)) == Decimal("2")

    def test_same_date_twice_is_idempotent(self):
        cursor = SeriesCursor(_entries(("2026-01-01", "1"), ("2026-01-03", "3")))
        first = cursor.value_at(date(2026, 1, 3))
        second = cursor.value_at(date(2026, 1, 3))
        assert first == second == Decimal("3")

    def test_backwards_query_rejected(self):
        cursor = SeriesCursor(_entries(("2026-01-01", "1"), ("2026-01-03", "3")))
        cursor.value_at(date(2026, 1, 3))

        with pytest.raises(NonMonotonicQueryError):
            cursor.value_at(date(2026, 1, 2))

    def test_empty_series_rejected(self):
        with pytest.raises(ValueError):
            SeriesCursor([])


class TestConstantCursor:

    def test_returns_one_by_default(self):
        cursor = ConstantCursor()
        assert cursor.value_at(date(2026, 1, 1)) == Decimal(1)
        assert cursor.value_at(date(2026, 6, 1)) == Decimal(1)

    def test_enforces_forward_queries(self):
        cursor = ConstantCursor()
        cursor.value_at(date(2026, 6, 1))
        with pytest.raises(NonMonotonicQueryError):
            cursor.value_at(date(2026, 1, 1))


class TestUnitTracker:

    @pytest.fixture
    def security(self):
        security = Security(symbol="ABC", name="ABC", currency="AUD")
        security.buy_history = [
            _buy("A", "2026-01-10", "100"),
            _buy("B", "2026-01-12", "50"),
            _buy("A", "2026-02-01", "20"),
        ]
        security.sell_history = [_sell("A", "2026-01-20", "30")]
        return security

    def test_same_day_trades_not_yet_counted(self, security):
        tracker = UnitTracker(security)
        assert tracker.units_at(date(2026, 1, 10)) == Decimal(0)
        assert tracker.units_at(date(2026, 1, 11)) == Decimal(100)

    def test_all_accounts(self, security):
        tracker = UnitTracker(security)
        assert tracker.units_at(date(2026, 1, 13)) == Decimal(150)
        assert tracker.units_at(date(2026, 1, 21)) == Decimal(120)
        assert tracker.units_at(date(2026, 3, 1)) == Decimal(140)

    def test_account_filter(self, security):
        tracker = UnitTracker(security, account_id="A")
        assert tracker.units_at(date(2026, 1, 13)) == Decimal(100)
        assert tracker.units_at(date(2026, 1, 21)) == Decimal(70)
        assert tracker.units_at(date(2026, 3, 1)) == Decimal(90)

    def test_negative_counts_not_clamped(self):
        security = Security(symbol="ABC", name="ABC", currency="AUD")
        security.sell_history = [_sell("A", "2026-01-05", "10")]

        tracker = UnitTracker(security)
        assert tracker.units_at(date(2026, 1, 6)) == Decimal(-10)

    def test_backwards_query_rejected(self, security):
        tracker = UnitTracker(security)
        tracker.units_at(date(2026, 2, 1))
        with pytest.raises(NonMonotonicQueryError):
            tracker.units_at(date(2026, 1, 1))
