"""
Valuation Reconstructor - Portfolio Report Assembly

Builds the portfolio report for a filtered set of securities:
1. Chart: one data point per interval over the trailing window, valued as
   units held x carried-forward price x carried-forward FX rate
2. Trade, buy-history and sell-history rows
3. Holding rows and today's data point from a single quote snapshot

Market data failures degrade the report instead of failing it: a security
without historical (or FX) data is left out of the chart, a security without
a quote is left out of the holdings, and a failed quote batch returns the
report without today's overlay.

Copyright (c) 2026 Andreas Wagner. All rights reserved.
"""

from dataclasses import dataclass, field
from datetime import date, timedelta
from decimal import Decimal
from typing import Any, Dict, List, Optional

import pandas as pd

from calculators.cursors import ConstantCursor, SeriesCursor, UnitTracker, ValueCursor
from calculators.metrics import safe_ratio, weighted_average
from core.records import (
    Account, BuyHistoryEntry, ExchangeRateSeries, HistoricalSeries, Security, SellHistoryEntry,
)
from core.repository import PortfolioSnapshot
from lib.market_cache import SeriesCache
from lib.market_data import MarketDataError
from lib.quotes import QuoteService, QuoteSnapshot
from parsers.trade_input import PortfolioFilter
from utils.logging_config import Diagnostics, setup_logger, get_perf_logger

logger = setup_logger(__name__)


def _dec(value: Optional[Decimal]) -> Optional[str]:
    return str(value) if value is not None else None


@dataclass
class ChartPoint:
    date: date
    value: Decimal = Decimal(0)

    def to_dict(self) -> Dict[str, Any]:
        return {'date': self.date.isoformat(), 'value': _dec(self.value)}


@dataclass
class HoldingRow:
    """
    Current position in one security (native currency unless noted).

    weight_perc is the row's market value converted into the target currency
    as a fraction of the combined market value.
    """
    id: int
    symbol: str
    name: str
    currency: str
    exchange: str
    type: str
    units: Decimal
    buy_price: Decimal
    last_price: Decimal
    market_value: Decimal
    purchase_cost: Decimal
    profit_or_loss: Decimal
    profit_or_loss_perc: Optional[Decimal]
    today_change: Decimal
    today_change_perc: Optional[Decimal]
    first_purchase: date
    last_purchase: date
    weight_perc: Optional[Decimal] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            'id': self.id,
            'symbol': self.symbol,
            'name': self.name,
            'currency': self.currency,
            'exchange': self.exchange,
            'type': self.type,
            'units': _dec(self.units),
            'buy_price': _dec(self.buy_price),
            'last_price': _dec(self.last_price),
            'market_value': _dec(self.market_value),
            'purchase_cost': _dec(self.purchase_cost),
            'profit_or_loss': _dec(self.profit_or_loss),
            'profit_or_loss_perc': _dec(self.profit_or_loss_perc),
            'today_change': _dec(self.today_change),
            'today_change_perc': _dec(self.today_change_perc),
            'first_purchase': self.first_purchase.isoformat(),
            'last_purchase': self.last_purchase.isoformat(),
            'weight_perc': _dec(self.weight_perc),
        }


@dataclass
class TradeRow:
    """A buy trade, or a sell trade merged across the lots it consumed."""
    id: int
    trade_id: str
    date: date
    type: str
    account_name: str
    symbol: str
    currency: str
    exchange: str
    quantity: Decimal
    price: Decimal
    brokerage: Decimal
    gst: Decimal
    total: Decimal

    def to_dict(self) -> Dict[str, Any]:
        return {
            'id': self.id,
            'trade_id': self.trade_id,
            'date': self.date.isoformat(),
            'type': self.type,
            'account_name': self.account_name,
            'symbol': self.symbol,
            'currency': self.currency,
            'exchange': self.exchange,
            'quantity': _dec(self.quantity),
            'price': _dec(self.price),
            'brokerage': _dec(self.brokerage),
            'gst': _dec(self.gst),
            'total': _dec(self.total),
        }


@dataclass
class HistoryRow:
    """A buy- or sell-history entry decorated with account and security details."""
    id: int
    entry: Any  # BuyHistoryEntry or SellHistoryEntry
    account_name: str
    symbol: str
    currency: str
    exchange: str

    def to_dict(self) -> Dict[str, Any]:
        data = self.entry.to_dict()
        data.pop('account_id', None)
        data.update({
            'id': self.id,
            'account_name': self.account_name,
            'symbol': self.symbol,
            'currency': self.currency,
            'exchange': self.exchange,
        })
        return data


@dataclass
class PortfolioReport:
    """Everything shown on the portfolio page, values in the target currency."""
    currency: str
    chart: List[ChartPoint] = field(default_factory=list)
    holdings: List[HoldingRow] = field(default_factory=list)
    trades: List[TradeRow] = field(default_factory=list)
    buy_history: List[HistoryRow] = field(default_factory=list)
    sell_history: List[HistoryRow] = field(default_factory=list)
    market_value: Decimal = Decimal(0)
    today_change: Decimal = Decimal(0)
    today_change_perc: Optional[Decimal] = None
    profit_or_loss: Decimal = Decimal(0)
    profit_or_loss_perc: Optional[Decimal] = None
    warnings: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'currency': self.currency,
            'chart': [p.to_dict() for p in self.chart],
            'holdings': [h.to_dict() for h in self.holdings],
            'trades': [t.to_dict() for t in self.trades],
            'buy_history': [r.to_dict() for r in self.buy_history],
            'sell_history': [r.to_dict() for r in self.sell_history],
            'market_value': _dec(self.market_value),
            'today_change': _dec(self.today_change),
            'today_change_perc': _dec(self.today_change_perc),
            'profit_or_loss': _dec(self.profit_or_loss),
            'profit_or_loss_perc': _dec(self.profit_or_loss_perc),
            'warnings': list(self.warnings),
        }


class RowIds:
    """Sequential 1-based row ids, one counter per row kind."""

    def __init__(self):
        self._counters: Dict[str, int] = {}

    def next(self, kind: str) -> int:
        self._counters[kind] = self._counters.get(kind, 0) + 1
        return self._counters[kind]


class PortfolioReportAssembler:
    """
    Assembles one PortfolioReport from a snapshot of the record graph.

    An assembler is single use: create one per report request.
    """

    def __init__(
        self,
        snapshot: PortfolioSnapshot,
        series_cache: SeriesCache,
        quote_service: QuoteService,
        report_filter: Optional[PortfolioFilter] = None,
        today: Optional[date] = None,
        history_years: int = 5,
        interval_days: int = 1,
        diagnostics: Optional[Diagnostics] = None
    ):
        self.snapshot = snapshot
        self.series_cache = series_cache
        self.quote_service = quote_service
        self.filter = report_filter or PortfolioFilter()
        self.today = today or date.today()
        self.history_years = history_years
        self.interval_days = interval_days
        self.diagnostics = diagnostics or Diagnostics(logger)

        self.target_currency = snapshot.settings.currency
        self.securities: Dict[str, Security] = {
            symbol: security
            for symbol, security in sorted(snapshot.securities.items())
            if self.filter.matches(security)
        }
        self.ids = RowIds()
        self.data_points: List[ChartPoint] = []
        self.report = PortfolioReport(currency=self.target_currency)

    def assemble(self) -> PortfolioReport:
        with get_perf_logger(logger, "portfolio report assembly", threshold_ms=5000):
            self._assemble()

        self.report.warnings = list(self.diagnostics.messages)
        return self.report

    def _assemble(self):
        if not self.securities:
            logger.info("No securities match the portfolio filter")
            return

        currencies = {symbol: s.currency for symbol, s in self.securities.items()}
        historicals = self.series_cache.get_historicals(
            self.securities, currencies, self.today, self.diagnostics
        )
        exchange_rates = self.series_cache.get_exchange_rates(
            {h.currency or currencies[h.symbol] for h in historicals.values()},
            self.target_currency,
            self.today,
            self.diagnostics,
        )

        self._initialise_data_points()

        for security in self.securities.values():
            self._process_trades_and_history(security)

            rate_cursor = self._chart_cursors(security, historicals, exchange_rates)
            if rate_cursor is not None:
                price_cursor = SeriesCursor(historicals[security.symbol].entries)
                self._process_data_points(security, price_cursor, rate_cursor)

        self.report.chart = self.data_points

        try:
            quotes = self._request_quotes()
        except MarketDataError as e:
            self.diagnostics.error(
                f"Quote fetch failed, report returned without today's values: {e}"
            )
            return

        self._process_holdings_with_quotes(quotes)

    # ------------------------------------------------------------------
    # Chart
    # ------------------------------------------------------------------

    def _initialise_data_points(self):
        """One zero-valued point per interval from the window start up to today."""
        current = (pd.Timestamp(self.today) - pd.DateOffset(years=self.history_years)).date()
        step = timedelta(days=self.interval_days)

        while current <= self.today:
            self.data_points.append(ChartPoint(date=current))
            current += step

    def _chart_cursors(
        self,
        security: Security,
        historicals: Dict[str, HistoricalSeries],
        exchange_rates: Dict[str, ExchangeRateSeries]
    ) -> Optional[ValueCursor]:
        """
        Return the FX cursor for a security's chart contribution, or None when
        the security has to be left out of the chart.
        """
        historical = historicals.get(security.symbol)
        if historical is None or not historical.entries:
            self.diagnostics.warning(
                f"Skipped {security.symbol}: missing or empty historical data"
            )
            return None

        currency = historical.currency or security.currency
        if currency == self.target_currency:
            return ConstantCursor()

        exchange_rate = exchange_rates.get(currency)
        if exchange_rate is None or not exchange_rate.entries:
            self.diagnostics.warning(
                f"Skipped {security.symbol}: missing or empty exchange rate data for {currency}"
            )
            return None

        return SeriesCursor(exchange_rate.entries)

    def _process_data_points(
        self,
        security: Security,
        price_cursor: ValueCursor,
        rate_cursor: ValueCursor
    ):
        # Data points are visited in ascending date order; the cursors require it
        tracker = UnitTracker(security, self.filter.account_id)
        negative_reported = False

        for point in self.data_points:
            units = tracker.units_at(point.date)
            if units < 0 and not negative_reported:
                self.diagnostics.warning(
                    f"{security.symbol}: negative unit count {units} on {point.date}"
                )
                negative_reported = True

            point.value += units * price_cursor.value_at(point.date) * rate_cursor.value_at(point.date)

    # ------------------------------------------------------------------
    # Trades and history
    # ------------------------------------------------------------------

    def _account_name(self, account_id: str) -> str:
        account: Optional[Account] = self.snapshot.accounts.get(account_id)
        return account.name if account is not None else ''

    def _history_row(self, kind: str, security: Security, entry) -> HistoryRow:
        return HistoryRow(
            id=self.ids.next(kind),
            entry=entry,
            account_name=self._account_name(entry.account_id),
            symbol=security.symbol,
            currency=security.currency,
            exchange=security.exchange,
        )

    def _process_trades_and_history(self, security: Security):
        trades: Dict[str, TradeRow] = {}

        for entry in security.buy_history:
            if not self.filter.includes_account(entry.account_id):
                continue

            self.report.buy_history.append(self._history_row('buy_history', security, entry))
            trades[entry.trade_id] = self._buy_trade_row(security, entry)

        for entry in security.sell_history:
            if not self.filter.includes_account(entry.account_id):
                continue

            self.report.sell_history.append(self._history_row('sell_history', security, entry))

            trade = trades.get(entry.trade_id)
            if trade is not None:
                trade.quantity += entry.quantity
                trade.brokerage += entry.applied_sell_brokerage
                trade.gst += entry.applied_sell_gst
                trade.total += entry.total
            else:
                trades[entry.trade_id] = self._sell_trade_row(security, entry)

        self.report.trades.extend(trades.values())

    def _buy_trade_row(self, security: Security, entry: BuyHistoryEntry) -> TradeRow:
        return TradeRow(
            id=self.ids.next('trade'),
            trade_id=entry.trade_id,
            date=entry.date,
            type='BUY',
            account_name=self._account_name(entry.account_id),
            symbol=security.symbol,
            currency=security.currency,
            exchange=security.exchange,
            quantity=entry.quantity,
            price=entry.price,
            brokerage=entry.brokerage,
            gst=entry.gst,
            total=entry.total,
        )

    def _sell_trade_row(self, security: Security, entry: SellHistoryEntry) -> TradeRow:
        return TradeRow(
            id=self.ids.next('trade'),
            trade_id=entry.trade_id,
            date=entry.sell_date,
            type='SELL',
            account_name=self._account_name(entry.account_id),
            symbol=security.symbol,
            currency=security.currency,
            exchange=security.exchange,
            quantity=entry.quantity,
            price=entry.sell_price,
            brokerage=entry.applied_sell_brokerage,
            gst=entry.applied_sell_gst,
            total=entry.total,
        )

    # ------------------------------------------------------------------
    # Holdings and today's value
    # ------------------------------------------------------------------

    def _held_securities(self) -> List[Security]:
        return [s for s in self.securities.values() if s.holdings]

    def _request_quotes(self) -> QuoteSnapshot:
        held = self._held_securities()
        return self.quote_service.snapshot(
            [s.symbol for s in held],
            {s.currency for s in held},
            self.target_currency,
            self.diagnostics,
        )

    def _process_holdings_with_quotes(self, quotes: QuoteSnapshot):
        combined_value = Decimal(0)
        combined_previous_value = Decimal(0)
        combined_cost = Decimal(0)
        converted_values: List[Decimal] = []

        for security in self._held_securities():
            quote = quotes.quote(security.symbol)
            if quote is None:
                self.diagnostics.warning(f"Skipped holding {security.symbol}: no quote")
                continue

            rate = quotes.rate(quote.currency)
            previous_rate = quotes.previous_rate(quote.currency)
            if rate is None or previous_rate is None:
                self.diagnostics.warning(
                    f"Skipped holding {security.symbol}: no exchange rate for {quote.currency}"
                )
                continue

            market_value = Decimal(0)
            previous_value = Decimal(0)
            units = Decimal(0)
            cost = Decimal(0)
            first_purchase: Optional[date] = None
            last_purchase: Optional[date] = None

            for lot in security.holdings:
                if not self.filter.includes_account(lot.account_id):
                    continue

                market_value += quote.price * lot.quantity
                cost += lot.price * lot.quantity + lot.brokerage + lot.gst
                units += lot.quantity

                # Lots bought today are measured against their buy price, not yesterday's close
                if lot.date < self.today:
                    previous_value += quote.previous_close * lot.quantity
                else:
                    previous_value += lot.price * lot.quantity

                if first_purchase is None or lot.date < first_purchase:
                    first_purchase = lot.date
                if last_purchase is None or lot.date > last_purchase:
                    last_purchase = lot.date

            combined_value += market_value * rate
            combined_previous_value += previous_value * previous_rate
            combined_cost += cost * rate

            if units > 0:
                profit_or_loss = market_value - cost
                today_change = market_value - previous_value

                self.report.holdings.append(HoldingRow(
                    id=self.ids.next('holding'),
                    symbol=security.symbol,
                    name=security.name,
                    currency=security.currency,
                    exchange=security.exchange,
                    type=security.type,
                    units=units,
                    buy_price=weighted_average(cost, units),
                    last_price=quote.price,
                    market_value=market_value,
                    purchase_cost=cost,
                    profit_or_loss=profit_or_loss,
                    profit_or_loss_perc=safe_ratio(profit_or_loss, cost),
                    today_change=today_change,
                    today_change_perc=safe_ratio(today_change, previous_value),
                    first_purchase=first_purchase,
                    last_purchase=last_purchase,
                ))
                converted_values.append(market_value * rate)

        for row, converted in zip(self.report.holdings, converted_values):
            row.weight_perc = safe_ratio(converted, combined_value)

        self._overlay_today(combined_value)

        self.report.market_value = combined_value
        self.report.today_change = combined_value - combined_previous_value
        self.report.today_change_perc = safe_ratio(self.report.today_change, combined_previous_value)
        self.report.profit_or_loss = combined_value - combined_cost
        self.report.profit_or_loss_perc = safe_ratio(self.report.profit_or_loss, combined_cost)

        logger.info(
            f"Portfolio report: {len(self.report.holdings)} holdings, "
            f"market value {combined_value} {self.target_currency}"
        )

    def _overlay_today(self, combined_value: Decimal):
        """Overwrite (or append) today's data point with the live valuation."""
        if self.data_points and self.data_points[-1].date == self.today:
            self.data_points[-1].value = combined_value
        else:
            self.data_points.append(ChartPoint(date=self.today, value=combined_value))

        self.report.chart = self.data_points
