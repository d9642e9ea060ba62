"""
Cached Historical Series

Historical price series and exchange-rate series persisted in the document
store ('historicals' and 'exchange_rates' keys). A cached series is reused
while it was updated today; missing or stale series are fetched from the
market-data provider concurrently, one task per symbol.
"""

import threading
from concurrent.futures import ThreadPoolExecutor, as_completed
from datetime import date
from typing import Dict, Iterable, List, Optional, Tuple

import pandas as pd

from core.db import DocumentStore
from core.records import ExchangeRateSeries, HistoricalSeries, SeriesEntry
from lib.market_data import MarketDataProvider, fx_symbol
from utils.logging_config import Diagnostics, setup_logger, get_perf_logger

logger = setup_logger(__name__)


class SeriesCache:
    """Store-backed cache of historical price and FX series."""

    def __init__(
        self,
        store: DocumentStore,
        provider: MarketDataProvider,
        history_years: int = 5,
        max_workers: int = 4
    ):
        self.store = store
        self.provider = provider
        self.history_years = history_years
        self.max_workers = max_workers
        self._lock = threading.Lock()

    def window_start(self, today: date) -> date:
        return (pd.Timestamp(today) - pd.DateOffset(years=self.history_years)).date()

    def _fetch_all(
        self,
        symbols: Iterable[str],
        today: date,
        diagnostics: Diagnostics
    ) -> Dict[str, List[SeriesEntry]]:
        """Fetch series concurrently; failed symbols are reported and left out."""
        symbols = list(symbols)
        results: Dict[str, List[SeriesEntry]] = {}
        if not symbols:
            return results

        from_date = self.window_start(today)

        def fetch(symbol: str) -> Tuple[str, List[SeriesEntry]]:
            return symbol, self.provider.fetch_historical_series(symbol, from_date)

        with get_perf_logger(logger, f"historical batch fetch ({len(symbols)} symbols)", threshold_ms=5000):
            with ThreadPoolExecutor(max_workers=self.max_workers) as executor:
                future_to_symbol = {executor.submit(fetch, s): s for s in symbols}

                for future in as_completed(future_to_symbol):
                    symbol = future_to_symbol[future]
                    try:
                        _, entries = future.result()
                        results[symbol] = entries
                    except Exception as e:
                        diagnostics.warning(f"Historical data fetch failed for {symbol}: {e}")

        logger.info(f"Fetched {len(results)}/{len(symbols)} historical series")
        return results

    def get_historicals(
        self,
        symbols: Iterable[str],
        currencies: Dict[str, str],
        today: date,
        diagnostics: Optional[Diagnostics] = None
    ) -> Dict[str, HistoricalSeries]:
        """
        Historical price series for the given symbols.

        Args:
            symbols: Symbols to return
            currencies: Quote currency by symbol (recorded on fetched series)
            today: Reference date for staleness
            diagnostics: Collector for fetch failures

        Returns:
            Series by symbol. A symbol is missing when it could not be fetched
            and nothing was cached.
        """
        diagnostics = diagnostics or Diagnostics(logger)
        symbols = list(dict.fromkeys(symbols))

        with self._lock:
            cached = {
                symbol: HistoricalSeries.from_dict(data)
                for symbol, data in (self.store.load('historicals') or {}).items()
            }

        stale = [s for s in symbols if s not in cached or cached[s].last_updated != today]
        fetched = self._fetch_all(stale, today, diagnostics)

        if fetched:
            with self._lock:
                stored = self.store.load('historicals') or {}
                for symbol, entries in fetched.items():
                    series = HistoricalSeries(
                        symbol=symbol,
                        currency=currencies.get(symbol, ''),
                        last_updated=today,
                        entries=entries,
                    )
                    cached[symbol] = series
                    stored[symbol] = series.to_dict()
                self.store.save('historicals', stored)

        for symbol in stale:
            if symbol not in fetched and symbol in cached:
                diagnostics.warning(
                    f"Using historical data for {symbol} last updated {cached[symbol].last_updated}"
                )

        return {s: cached[s] for s in symbols if s in cached}

    def get_exchange_rates(
        self,
        currencies: Iterable[str],
        target_currency: str,
        today: date,
        diagnostics: Optional[Diagnostics] = None
    ) -> Dict[str, ExchangeRateSeries]:
        """
        Exchange-rate series converting each currency into target_currency.

        The target currency itself is never fetched (identity conversion).
        Cached series for a different target currency are discarded.

        Returns:
            Series by source currency
        """
        diagnostics = diagnostics or Diagnostics(logger)
        currencies = [c for c in dict.fromkeys(currencies) if c and c != target_currency]

        with self._lock:
            stored = self.store.load('exchange_rates') or {}
            cached = {}
            for currency, data in stored.items():
                series = ExchangeRateSeries.from_dict(data)
                if series.to_currency == target_currency:
                    cached[currency] = series

        stale = [c for c in currencies if c not in cached or cached[c].last_updated != today]
        pair_to_currency = {fx_symbol(c, target_currency): c for c in stale}
        fetched = self._fetch_all(pair_to_currency, today, diagnostics)

        with self._lock:
            stored = {c: s.to_dict() for c, s in cached.items()}
            for pair, entries in fetched.items():
                currency = pair_to_currency[pair]
                series = ExchangeRateSeries(
                    from_currency=currency,
                    to_currency=target_currency,
                    last_updated=today,
                    entries=entries,
                )
                cached[currency] = series
                stored[currency] = series.to_dict()
            self.store.save('exchange_rates', stored)

        return {c: cached[c] for c in currencies if c in cached}
