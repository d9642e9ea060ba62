"""Market data provider interface with a yfinance implementation.

Provides:
- Historical adjusted close series (ascending, gaps on non-trading days)
- Quote snapshots (price, previous close, currency)
- Security search and security info lookup

Quote batches fail as a whole when the download fails or nothing comes back;
otherwise a symbol without usable data is logged and left out of the result.
"""

from abc import ABC, abstractmethod
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from typing import Any, Dict, List, Optional
import logging
import re

import pandas as pd
import yfinance as yf

from core.records import SeriesEntry
from utils.logging_config import setup_logger, get_perf_logger

logger = setup_logger(__name__)


# Suppress yfinance error spam for delisted tickers
logging.getLogger('yfinance').setLevel(logging.CRITICAL)


class MarketDataError(Exception):
    """Raised when market data for a symbol cannot be fetched or is incomplete."""
    pass


@dataclass(frozen=True)
class Quote:
    """Live quote snapshot for one symbol."""
    symbol: str
    price: Decimal
    previous_close: Decimal
    currency: str


@dataclass(frozen=True)
class SearchResult:
    symbol: str
    name: str
    exchange: str
    type: str


FX_PAIR = re.compile(r'^[A-Z]{6}=X$')


def fx_symbol(from_currency: str, to_currency: str) -> str:
    """Yahoo Finance symbol of a currency pair (e.g. USDAUD=X)."""
    return f"{from_currency}{to_currency}=X"


def normalize_ticker(ticker: str) -> str:
    """
    Normalize ticker format for Yahoo Finance compatibility.

    Conversions:
    - 'BRK/B' -> 'BRK-B' (class shares use hyphen)
    - 'BRK.B' -> 'BRK-B' (some sources use period)

    Exchange suffixes of two or more letters (BHP.AX) are kept.
    """
    if not ticker:
        return ticker

    ticker = ticker.strip().upper()
    ticker = re.sub(r'[/\.]([A-Z])$', r'-\1', ticker)
    ticker = re.sub(r'/([A-Z]+)$', r'-\1', ticker)

    return ticker


def _to_decimal(value: Any) -> Optional[Decimal]:
    if value is None or pd.isna(value):
        return None
    return Decimal(str(float(value)))


class MarketDataProvider(ABC):
    """Source of historical series, quotes and security metadata."""

    @abstractmethod
    def fetch_historical_series(
        self,
        symbol: str,
        from_date: date,
        interval: str = '1d'
    ) -> List[SeriesEntry]:
        """
        Fetch adjusted close prices from from_date until today.

        Returns:
            Entries ascending by date (may be empty)

        Raises:
            MarketDataError: If the fetch fails
        """
        pass

    @abstractmethod
    def fetch_quotes(self, symbols: List[str]) -> Dict[str, Quote]:
        """
        Fetch quote snapshots.

        Symbols without a complete quote (price, previous close, currency)
        are omitted from the result.

        Raises:
            MarketDataError: If the batch fails outright or returns no quote
        """
        pass

    @abstractmethod
    def fetch_security_info(self, symbol: str) -> Dict[str, Any]:
        """Return metadata for a symbol: name, currency, exchange, type."""
        pass

    @abstractmethod
    def search(self, query: str) -> List[SearchResult]:
        """Search securities by symbol or name."""
        pass


class YFinanceProvider(MarketDataProvider):
    """Market data from Yahoo Finance via yfinance."""

    def __init__(self, max_workers: int = 4):
        self.max_workers = max(1, max_workers)
        self._currency_cache: Dict[str, str] = {}

    def fetch_historical_series(
        self,
        symbol: str,
        from_date: date,
        interval: str = '1d'
    ) -> List[SeriesEntry]:
        with get_perf_logger(logger, f"fetch_historical_series({symbol})", threshold_ms=3000):
            try:
                hist = yf.Ticker(symbol).history(
                    start=from_date.isoformat(),
                    interval=interval,
                    auto_adjust=False
                )
            except Exception as e:
                raise MarketDataError(f"Historical fetch failed for {symbol}: {e}") from e

        if hist is None or hist.empty:
            logger.warning(f"{symbol}: No historical data since {from_date}")
            return []

        column = 'Adj Close' if 'Adj Close' in hist.columns else 'Close'
        closes = hist[column].dropna()

        entries: Dict[date, Decimal] = {}
        for timestamp, value in closes.items():
            entries[pd.Timestamp(timestamp).date()] = Decimal(str(float(value)))

        series = [SeriesEntry(date=d, value=v) for d, v in sorted(entries.items())]
        logger.info(f"{symbol}: {len(series)} historical prices since {from_date}")
        return series

    def fetch_quotes(self, symbols: List[str]) -> Dict[str, Quote]:
        """
        Batch quote snapshot from the last two daily closes of a 5-day window.

        Currency pairs (USDAUD=X) are quoted in their second currency; for
        securities the quote currency is looked up once per symbol and cached.

        Raises:
            MarketDataError: If the download fails or no requested symbol has a quote
        """
        quotes: Dict[str, Quote] = {}
        symbols = list(dict.fromkeys(symbols))
        if not symbols:
            return quotes

        with get_perf_logger(logger, f"fetch_quotes({len(symbols)} symbols)", threshold_ms=3000):
            try:
                data = yf.download(
                    symbols,
                    period='5d',
                    interval='1d',
                    group_by='ticker',
                    auto_adjust=False,
                    threads=False,
                    progress=False
                )
            except Exception as e:
                raise MarketDataError(f"Quote download failed for {len(symbols)} symbols: {e}") from e

            if data is None or data.empty:
                raise MarketDataError(f"Quote download returned no data for {', '.join(symbols)}")

            closes: Dict[str, pd.Series] = {}
            for symbol in symbols:
                series = self._close_series(data, symbol, single=len(symbols) == 1)
                if series is None or len(series) < 2:
                    logger.warning(f"{symbol}: Fewer than two closes in the last 5 days")
                    continue
                closes[symbol] = series

            currencies = self._currencies(list(closes))

            for symbol, series in closes.items():
                currency = currencies.get(symbol)
                if not currency:
                    continue
                quotes[symbol] = Quote(
                    symbol=symbol,
                    price=_to_decimal(series.iloc[-1]),
                    previous_close=_to_decimal(series.iloc[-2]),
                    currency=currency,
                )

        logger.info(f"Quote fetch complete: {len(quotes)}/{len(symbols)} succeeded")
        if not quotes:
            raise MarketDataError(f"No quotes available for {', '.join(symbols)}")
        return quotes

    @staticmethod
    def _close_series(data: pd.DataFrame, symbol: str, single: bool) -> Optional[pd.Series]:
        """Non-empty closes of one ticker from a group_by='ticker' download."""
        if isinstance(data.columns, pd.MultiIndex):
            if symbol not in data.columns.levels[0]:
                return None
            frame = data[symbol]
        elif single:
            frame = data
        else:
            return None

        if 'Close' not in frame.columns:
            return None
        return frame['Close'].dropna()

    def _currencies(self, symbols: List[str]) -> Dict[str, str]:
        """Quote currency per symbol; lookups run concurrently and are cached."""
        result: Dict[str, str] = {}
        pending: List[str] = []

        for symbol in symbols:
            if FX_PAIR.match(symbol):
                result[symbol] = symbol[3:6]
            elif symbol in self._currency_cache:
                result[symbol] = self._currency_cache[symbol]
            else:
                pending.append(symbol)

        if not pending:
            return result

        with ThreadPoolExecutor(max_workers=min(self.max_workers, len(pending))) as executor:
            futures = {executor.submit(self._lookup_currency, s): s for s in pending}
            for future in as_completed(futures):
                symbol = futures[future]
                try:
                    currency = future.result()
                except Exception as e:
                    logger.warning(f"{symbol}: Currency lookup failed: {e}")
                    continue
                if not currency:
                    logger.warning(f"{symbol}: No currency in market data")
                    continue
                self._currency_cache[symbol] = currency
                result[symbol] = currency

        return result

    @staticmethod
    def _lookup_currency(symbol: str) -> Optional[str]:
        currency = yf.Ticker(symbol).fast_info['currency']
        return currency.upper() if currency else None

    def fetch_security_info(self, symbol: str) -> Dict[str, Any]:
        try:
            info = yf.Ticker(symbol).info or {}
        except Exception as e:
            raise MarketDataError(f"Security info fetch failed for {symbol}: {e}") from e

        currency = info.get('currency')
        return {
            'symbol': symbol,
            'name': info.get('longName') or info.get('shortName') or symbol,
            'currency': currency.upper() if currency else None,
            'exchange': info.get('exchange', '') or '',
            'type': info.get('quoteType', '') or '',
        }

    def search(self, query: str) -> List[SearchResult]:
        try:
            results = yf.Search(query, max_results=10).quotes
        except Exception as e:
            raise MarketDataError(f"Search failed for '{query}': {e}") from e

        return [
            SearchResult(
                symbol=item['symbol'],
                name=item.get('longname') or item.get('shortname') or item['symbol'],
                exchange=item.get('exchange', ''),
                type=item.get('quoteType', ''),
            )
            for item in results
            if item.get('symbol')
        ]
