"""
Account Aggregator

Rolls holdings and sell history up to one summary per account, plus
portfolio-wide totals and each account's share of the total market value.

Amounts are in the target currency, except realised figures which are summed
as recorded in each security's quote currency. Percentages are magnitudes:
|numerator / denominator|, None when the denominator is zero.

Copyright (c) 2026 Andreas Wagner. All rights reserved.
"""

from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal
from typing import Any, Dict, List, Optional

from calculators.metrics import abs_ratio, safe_ratio
from core.repository import PortfolioSnapshot
from lib.market_data import MarketDataError
from lib.quotes import QuoteService, QuoteSnapshot
from utils.logging_config import Diagnostics, setup_logger, get_perf_logger

logger = setup_logger(__name__)


def _dec(value: Optional[Decimal]) -> Optional[str]:
    return str(value) if value is not None else None


@dataclass
class AccountData:
    """Summary figures for one account."""
    name: str
    account_id: str
    currency: str
    today_change: Decimal = Decimal(0)
    realised_profit_or_loss: Decimal = Decimal(0)
    realised_total: Decimal = Decimal(0)       # Net proceeds of all sells
    market_value: Decimal = Decimal(0)
    total_cost: Decimal = Decimal(0)
    weight_perc: Optional[Decimal] = None

    @property
    def unrealised_profit_or_loss(self) -> Decimal:
        return self.market_value - self.total_cost

    @property
    def today_change_perc(self) -> Optional[Decimal]:
        return abs_ratio(self.today_change, self.market_value - self.today_change)

    @property
    def unrealised_profit_or_loss_perc(self) -> Optional[Decimal]:
        return abs_ratio(self.unrealised_profit_or_loss, self.total_cost)

    @property
    def realised_profit_or_loss_perc(self) -> Optional[Decimal]:
        # Proceeds minus profit is the cost of the units sold
        return abs_ratio(
            self.realised_profit_or_loss,
            self.realised_total - self.realised_profit_or_loss
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            'name': self.name,
            'account_id': self.account_id,
            'currency': self.currency,
            'today_change': _dec(self.today_change),
            'today_change_perc': _dec(self.today_change_perc),
            'unrealised_profit_or_loss': _dec(self.unrealised_profit_or_loss),
            'unrealised_profit_or_loss_perc': _dec(self.unrealised_profit_or_loss_perc),
            'realised_profit_or_loss': _dec(self.realised_profit_or_loss),
            'realised_profit_or_loss_perc': _dec(self.realised_profit_or_loss_perc),
            'market_value': _dec(self.market_value),
            'total_cost': _dec(self.total_cost),
            'weight_perc': _dec(self.weight_perc),
        }


@dataclass
class PortfolioSummary:
    """Account summaries (sorted by name) and their totals."""
    currency: str
    accounts: List[AccountData] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)

    def total(self) -> AccountData:
        """Portfolio-wide figures, summed across accounts."""
        total = AccountData(name='Total', account_id='', currency=self.currency)
        for account in self.accounts:
            total.today_change += account.today_change
            total.realised_profit_or_loss += account.realised_profit_or_loss
            total.realised_total += account.realised_total
            total.market_value += account.market_value
            total.total_cost += account.total_cost
        total.weight_perc = Decimal(1) if total.market_value != 0 else None
        return total

    def to_dict(self) -> Dict[str, Any]:
        return {
            'currency': self.currency,
            'accounts': [a.to_dict() for a in self.accounts],
            'total': self.total().to_dict(),
            'warnings': list(self.warnings),
        }


class AccountSummaryAssembler:
    """Builds one PortfolioSummary from a snapshot; single use."""

    def __init__(
        self,
        snapshot: PortfolioSnapshot,
        quote_service: QuoteService,
        today: Optional[date] = None,
        diagnostics: Optional[Diagnostics] = None
    ):
        self.snapshot = snapshot
        self.quote_service = quote_service
        self.today = today or date.today()
        self.diagnostics = diagnostics or Diagnostics(logger)
        self.target_currency = snapshot.settings.currency

        self.account_data: Dict[str, AccountData] = {
            account.account_id: AccountData(
                name=account.name,
                account_id=account.account_id,
                currency=self.target_currency,
            )
            for account in snapshot.accounts.values()
        }

    def assemble(self) -> PortfolioSummary:
        with get_perf_logger(logger, "account summary assembly", threshold_ms=3000):
            self._assemble()
        return self._result()

    def _assemble(self):
        active = [s for s in self.snapshot.securities.values() if s.has_activity()]
        if not active:
            return

        # Realised figures need no market data
        self._process_realised()

        held = [s for s in active if s.holdings]
        if not held:
            return

        try:
            quotes = self.quote_service.snapshot(
                [s.symbol for s in held],
                {s.currency for s in held},
                self.target_currency,
                self.diagnostics,
            )
        except MarketDataError as e:
            self.diagnostics.error(
                f"Quote fetch failed, account summary limited to realised figures: {e}"
            )
            return

        self._process_with_quotes(held, quotes)

    def _process_realised(self):
        for security in self.snapshot.securities.values():
            for entry in security.sell_history:
                data = self.account_data.get(entry.account_id)
                if data is None:
                    self.diagnostics.warning(
                        f"Skipped a sell history entry for {security.symbol}: "
                        f"unknown account id {entry.account_id}"
                    )
                    continue

                data.realised_total += entry.total
                data.realised_profit_or_loss += entry.profit_or_loss

    def _process_with_quotes(self, held, quotes: QuoteSnapshot):
        for security in held:
            quote = quotes.quote(security.symbol)
            if quote is None:
                self.diagnostics.warning(f"Skipped {security.symbol}: no quote")
                continue

            rate = quotes.rate(quote.currency)
            previous_rate = quotes.previous_rate(quote.currency)
            if rate is None or previous_rate is None:
                self.diagnostics.warning(
                    f"Skipped {security.symbol}: no exchange rate for {quote.currency}"
                )
                continue

            for lot in security.holdings:
                data = self.account_data.get(lot.account_id)
                if data is None:
                    self.diagnostics.warning(
                        f"Skipped a holding of {security.symbol}: unknown account id {lot.account_id}"
                    )
                    continue

                value = quote.price * lot.quantity * rate

                # Lots bought today are measured against their buy price, not yesterday's close
                if lot.date < self.today:
                    data.today_change += value - quote.previous_close * lot.quantity * previous_rate
                else:
                    data.today_change += value - lot.price * lot.quantity * previous_rate

                data.market_value += value
                data.total_cost += (lot.price * lot.quantity + lot.brokerage + lot.gst) * rate

    def _result(self) -> PortfolioSummary:
        accounts = sorted(self.account_data.values(), key=lambda a: a.name.lower())

        total_value = sum((a.market_value for a in accounts), Decimal(0))
        for account in accounts:
            account.weight_perc = safe_ratio(account.market_value, total_value)

        logger.info(f"Account summary: {len(accounts)} accounts, market value {total_value}")

        return PortfolioSummary(
            currency=self.target_currency,
            accounts=accounts,
            warnings=list(self.diagnostics.messages),
        )
