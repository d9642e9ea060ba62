"""
Shared fixtures: temporary document store, in-memory market data provider,
fixed reference date.

Copyright (c) 2026 Andreas Wagner. All rights reserved.
"""

from datetime import date, timedelta
from decimal import Decimal
from typing import Any, Dict, List

import pytest

from core.db import DocumentStore
from core.records import SeriesEntry
from lib.market_data import MarketDataError, MarketDataProvider, Quote, SearchResult
from services.portfolio_service import PortfolioService
from utils.config import AppConfig


TODAY = date(2026, 10, 18)


class FakeProvider(MarketDataProvider):
    """In-memory market data; records every request it receives."""

    def __init__(self):
        self.series: Dict[str, List[SeriesEntry]] = {}
        self.quotes: Dict[str, Quote] = {}
        self.infos: Dict[str, Dict[str, Any]] = {}
        self.search_results: List[SearchResult] = []
        self.failing_series = set()
        self.fail_quotes = False
        self.series_requests: List[str] = []
        self.quote_requests: List[List[str]] = []

    def set_flat_series(self, symbol: str, value, start: date, end: date = TODAY, step_days: int = 1):
        entries = []
        current = start
        while current <= end:
            entries.append(SeriesEntry(date=current, value=Decimal(str(value))))
            current += timedelta(days=step_days)
        self.series[symbol] = entries

    def set_quote(self, symbol: str, price, previous_close, currency: str):
        self.quotes[symbol] = Quote(
            symbol=symbol,
            price=Decimal(str(price)),
            previous_close=Decimal(str(previous_close)),
            currency=currency,
        )

    def fetch_historical_series(self, symbol, from_date, interval='1d'):
        self.series_requests.append(symbol)
        if symbol in self.failing_series:
            raise MarketDataError(f"{symbol}: simulated failure")
        return [e for e in self.series.get(symbol, []) if e.date >= from_date]

    def fetch_quotes(self, symbols):
        self.quote_requests.append(list(symbols))
        if self.fail_quotes:
            raise MarketDataError("simulated quote outage")
        return {s: self.quotes[s] for s in symbols if s in self.quotes}

    def fetch_security_info(self, symbol):
        if symbol not in self.infos:
            raise MarketDataError(f"{symbol}: not found")
        return dict(self.infos[symbol])

    def search(self, query):
        return [r for r in self.search_results if query.upper() in r.symbol or query.upper() in r.name]


@pytest.fixture
def today():
    return TODAY


@pytest.fixture
def store(tmp_path):
    document_store = DocumentStore(tmp_path / "portfolio.db")
    yield document_store
    document_store.close()


@pytest.fixture
def provider():
    return FakeProvider()


@pytest.fixture
def config(tmp_path):
    return AppConfig(data_dir=tmp_path, history_years=1, chart_interval_days=1, fetch_workers=2)


@pytest.fixture
def service(store, provider, config):
    counter = iter(range(1, 10000))
    return PortfolioService(
        store,
        provider,
        config,
        today=lambda: TODAY,
        trade_id_factory=lambda: f"trade-{next(counter)}",
    )


@pytest.fixture
def account(service):
    return service.create_account("Main")


@pytest.fixture
def bhp(service, provider):
    """An AUD-quoted security added to the service."""
    provider.infos['BHP.AX'] = {'symbol': 'BHP.AX', 'name': 'BHP', 'currency': 'AUD', 'exchange': 'ASX', 'type': 'EQUITY'}
    return service.add_security('BHP.AX', 'BHP GROUP', 'ASX', 'EQUITY')


@pytest.fixture
def nvda(service, provider):
    """A USD-quoted security added to the service."""
    provider.infos['NVDA'] = {'symbol': 'NVDA', 'name': 'NVIDIA', 'currency': 'USD', 'exchange': 'NMS', 'type': 'EQUITY'}
    return service.add_security('NVDA', 'NVIDIA CORP', 'NMS', 'EQUITY')
