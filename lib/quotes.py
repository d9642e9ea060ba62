"""
Quote Snapshots

One quote fetch per report: security quotes plus the currency-pair quotes
needed to convert them into the target currency. The snapshot is read-only
and discarded with the report.
"""

from dataclasses import dataclass, field
from decimal import Decimal
from typing import Dict, Iterable, Optional, Tuple

from lib.market_data import MarketDataProvider, Quote, fx_symbol
from utils.logging_config import Diagnostics, setup_logger, get_perf_logger

logger = setup_logger(__name__)


@dataclass
class QuoteSnapshot:
    """Quotes by symbol and (current, previous) FX rates by source currency."""
    target_currency: str
    quotes: Dict[str, Quote] = field(default_factory=dict)
    rates: Dict[str, Tuple[Decimal, Decimal]] = field(default_factory=dict)

    def quote(self, symbol: str) -> Optional[Quote]:
        return self.quotes.get(symbol)

    def rate(self, currency: str) -> Optional[Decimal]:
        """Current rate into the target currency (1 for the target itself)."""
        if currency == self.target_currency:
            return Decimal(1)
        pair = self.rates.get(currency)
        return pair[0] if pair else None

    def previous_rate(self, currency: str) -> Optional[Decimal]:
        """Previous-close rate into the target currency."""
        if currency == self.target_currency:
            return Decimal(1)
        pair = self.rates.get(currency)
        return pair[1] if pair else None


class QuoteService:
    """Builds quote snapshots from the market-data provider."""

    def __init__(self, provider: MarketDataProvider):
        self.provider = provider

    def snapshot(
        self,
        symbols: Iterable[str],
        currencies: Iterable[str],
        target_currency: str,
        diagnostics: Optional[Diagnostics] = None
    ) -> QuoteSnapshot:
        """
        Fetch quotes for symbols and FX pairs for currencies.

        Symbols or pairs missing from the provider's answer are reported to
        diagnostics and left out of the snapshot.

        Raises:
            MarketDataError: If the provider fails for the whole batch
        """
        diagnostics = diagnostics or Diagnostics(logger)
        symbols = list(dict.fromkeys(symbols))
        pairs = {
            fx_symbol(c, target_currency): c
            for c in dict.fromkeys(currencies)
            if c and c != target_currency
        }

        with get_perf_logger(logger, f"quote snapshot ({len(symbols)} symbols)", threshold_ms=3000):
            quotes = self.provider.fetch_quotes(symbols + list(pairs))

        snapshot = QuoteSnapshot(target_currency=target_currency)

        for symbol in symbols:
            quote = quotes.get(symbol)
            if quote is None:
                diagnostics.warning(f"No quote for {symbol}")
                continue
            snapshot.quotes[symbol] = quote

        for pair, currency in pairs.items():
            quote = quotes.get(pair)
            if quote is None:
                diagnostics.warning(f"No exchange rate quote for {currency}/{target_currency}")
                continue
            snapshot.rates[currency] = (quote.price, quote.previous_close)

        logger.info(
            f"Quote snapshot: {len(snapshot.quotes)}/{len(symbols)} quotes, "
            f"{len(snapshot.rates)}/{len(pairs)} exchange rates"
        )
        return snapshot
