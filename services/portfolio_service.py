"""
Portfolio Service

Operations exposed to the presentation layer and the CLI:
- Trades: record_buy, record_sell, record_trade, available_units, last_price
- Reports: get_portfolio_report, get_account_summary
- Accounts, securities and settings maintenance

Trades are all-or-nothing: the ledger works on a detached copy of the
security, which is committed only when the whole trade succeeded.
"""

from datetime import date
from decimal import Decimal
from typing import Any, Callable, Dict, List, Optional, Union

from pydantic import ValidationError

from calculators.accounts import AccountSummaryAssembler, PortfolioSummary
from calculators.lot_ledger import LotLedger, TradeValidationError, parse_gst_percent
from calculators.valuation import PortfolioReport, PortfolioReportAssembler
from core.db import DocumentStore
from core.records import TAG_FIELDS, Account, BuyHistoryEntry, Security, SellHistoryEntry
from core.repository import PortfolioRepository
from lib.market_cache import SeriesCache
from lib.market_data import (
    MarketDataError, MarketDataProvider, SearchResult, YFinanceProvider, normalize_ticker
)
from lib.quotes import QuoteService
from parsers.trade_input import PortfolioFilter, SettingsUpdate, TradeInput, TradeType
from utils.config import AppConfig
from utils.logging_config import Diagnostics, configure_logging, setup_logger

logger = setup_logger(__name__)


class PortfolioService:
    """Entry point for trades, reports and record maintenance."""

    def __init__(
        self,
        store: DocumentStore,
        provider: MarketDataProvider,
        config: Optional[AppConfig] = None,
        today: Optional[Callable[[], date]] = None,
        trade_id_factory: Optional[Callable[[], str]] = None
    ):
        """
        Args:
            store: Document store holding all records
            provider: Market data provider
            config: Runtime configuration (defaults to AppConfig())
            today: Returns the current date (defaults to date.today)
            trade_id_factory: Generates trade ids (defaults to uuid4)
        """
        self.config = config or AppConfig()
        self.store = store
        self.provider = provider
        self.repository = PortfolioRepository(store)
        self.series_cache = SeriesCache(
            store,
            provider,
            history_years=self.config.history_years,
            max_workers=self.config.fetch_workers,
        )
        self.quote_service = QuoteService(provider)
        self._today = today or date.today
        self._trade_id_factory = trade_id_factory

    @classmethod
    def from_config(
        cls,
        config: Optional[AppConfig] = None,
        provider: Optional[MarketDataProvider] = None
    ) -> 'PortfolioService':
        """Service backed by the configured database and Yahoo Finance."""
        config = config or AppConfig.from_env()
        configure_logging(config.log_level, config.log_file)
        provider = provider or YFinanceProvider(max_workers=config.fetch_workers)
        return cls(DocumentStore(config.db_path), provider, config)

    def today(self) -> date:
        return self._today()

    # ------------------------------------------------------------------
    # Trades
    # ------------------------------------------------------------------

    def record_buy(
        self,
        symbol: str,
        account_id: str,
        trade_date: Union[date, str],
        quantity: Any,
        price: Any,
        brokerage: Any = None
    ) -> BuyHistoryEntry:
        """
        Record a buy trade.

        Brokerage defaults to the configured auto-fill amount.

        Raises:
            TradeValidationError: Invalid inputs, unknown symbol/account or GST setting
        """
        trade = self._trade_input(TradeType.BUY, symbol, account_id, trade_date, quantity, price, brokerage)
        return self.record_trade(trade)

    def record_sell(
        self,
        symbol: str,
        account_id: str,
        trade_date: Union[date, str],
        quantity: Any,
        price: Any,
        brokerage: Any = None
    ) -> List[SellHistoryEntry]:
        """
        Record a sell trade against the account's oldest lots.

        Raises:
            TradeValidationError: Invalid inputs, unknown symbol/account or GST setting
            InsufficientUnitsError: The account owns too few units on trade_date
        """
        trade = self._trade_input(TradeType.SELL, symbol, account_id, trade_date, quantity, price, brokerage)
        return self.record_trade(trade)

    def _trade_input(self, trade_type, symbol, account_id, trade_date, quantity, price, brokerage) -> TradeInput:
        if brokerage is None:
            brokerage = self.repository.get_settings().brokerage_auto_fill or Decimal(0)
        return self.validate_trade({
            'symbol': symbol,
            'account_id': account_id,
            'type': trade_type,
            'trade_date': trade_date,
            'quantity': quantity,
            'price': price,
            'brokerage': brokerage,
        })

    @staticmethod
    def validate_trade(data: Dict[str, Any]) -> TradeInput:
        """Parse raw trade fields, raising TradeValidationError on bad input."""
        try:
            return TradeInput(**data)
        except ValidationError as e:
            raise TradeValidationError(f"Invalid trade: {e}") from e

    def record_trade(self, trade: Union[TradeInput, Dict[str, Any]]):
        """
        Record a validated trade.

        Returns:
            BuyHistoryEntry for a buy, list of SellHistoryEntry for a sell
        """
        if not isinstance(trade, TradeInput):
            trade = self.validate_trade(trade)

        with self.repository.writing(trade.symbol):
            security = self.repository.get_security(trade.symbol)
            if security is None:
                raise TradeValidationError(f"Unknown symbol: {trade.symbol}")
            if self.repository.get_account(trade.account_id) is None:
                raise TradeValidationError(f"Unknown account id: {trade.account_id}")

            settings = self.repository.get_settings()
            ledger = LotLedger(security, settings.gst_percent, self._trade_id_factory)

            if trade.type == TradeType.BUY:
                result = ledger.buy(
                    trade.account_id, trade.trade_date, trade.quantity, trade.price, trade.brokerage
                )
            else:
                result = ledger.sell(
                    trade.account_id, trade.trade_date, trade.quantity, trade.price, trade.brokerage
                )

            self.repository.commit_security(security)

        return result

    def available_units(self, symbol: str, account_id: str, as_of: Optional[date] = None) -> Decimal:
        """
        Units of symbol held by the account.

        With as_of, only lots acquired on or before that date count (the
        units a sell on that date could consume).
        """
        security = self.repository.get_security(symbol)
        if security is None:
            raise TradeValidationError(f"Unknown symbol: {symbol}")

        if as_of is not None:
            settings = self.repository.get_settings()
            return LotLedger(security, settings.gst_percent).owned_units(account_id, as_of)

        return sum(
            (lot.quantity for lot in security.holdings if lot.account_id == account_id),
            Decimal(0)
        )

    def last_price(self, symbol: str) -> Decimal:
        """
        Latest market price of a symbol.

        Raises:
            MarketDataError: If no price is available
        """
        quote = self.provider.fetch_quotes([symbol]).get(symbol)
        if quote is None:
            raise MarketDataError(f"Could not find a market price for {symbol}")
        return quote.price

    # ------------------------------------------------------------------
    # Reports
    # ------------------------------------------------------------------

    def get_portfolio_report(
        self,
        report_filter: Optional[Union[PortfolioFilter, Dict[str, Any]]] = None
    ) -> PortfolioReport:
        if isinstance(report_filter, dict):
            report_filter = PortfolioFilter(**report_filter)

        assembler = PortfolioReportAssembler(
            snapshot=self.repository.snapshot(),
            series_cache=self.series_cache,
            quote_service=self.quote_service,
            report_filter=report_filter,
            today=self.today(),
            history_years=self.config.history_years,
            interval_days=self.config.chart_interval_days,
            diagnostics=Diagnostics(logger),
        )
        return assembler.assemble()

    def get_account_summary(self) -> PortfolioSummary:
        assembler = AccountSummaryAssembler(
            snapshot=self.repository.snapshot(),
            quote_service=self.quote_service,
            today=self.today(),
            diagnostics=Diagnostics(logger),
        )
        return assembler.assemble()

    # ------------------------------------------------------------------
    # Accounts
    # ------------------------------------------------------------------

    def list_accounts(self) -> List[Account]:
        return sorted(self.repository.snapshot().accounts.values(), key=lambda a: a.name.lower())

    def create_account(self, name: str) -> Account:
        name = (name or '').strip()
        if not name:
            raise TradeValidationError("Account name cannot be empty")
        return self.repository.create_account(name)

    def rename_account(self, account_id: str, name: str) -> Account:
        name = (name or '').strip()
        if not name:
            raise TradeValidationError("Account name cannot be empty")

        account = self.repository.get_account(account_id)
        if account is None:
            raise TradeValidationError(f"Unknown account id: {account_id}")

        account.name = name
        self.repository.commit_account(account)
        logger.info(f"Renamed account {account_id} to {name}")
        return account

    def delete_account(self, account_id: str) -> bool:
        """Delete an account together with its lots and trade history."""
        existed = self.repository.delete_account(account_id)
        if existed:
            logger.info(f"Deleted account {account_id} and its trades")
        else:
            logger.warning(f"Delete requested for unknown account id {account_id}")
        return existed

    # ------------------------------------------------------------------
    # Securities
    # ------------------------------------------------------------------

    def search_securities(self, query: str) -> List[SearchResult]:
        """Provider search results, excluding securities already added."""
        results = self.provider.search(query)
        return [r for r in results if not self.repository.has_security(r.symbol)]

    def add_security(self, symbol: str, name: str, exchange: str, type: str = '') -> Security:
        """
        Add a security; its quote currency is looked up from the provider.

        The symbol is normalized to Yahoo Finance form first (BRK.B -> BRK-B).

        Raises:
            TradeValidationError: Symbol already added, currency missing or exchange mismatch
            MarketDataError: Provider lookup failed
        """
        symbol = normalize_ticker(symbol)
        with self.repository.writing(symbol):
            if self.repository.has_security(symbol):
                raise TradeValidationError(f"Symbol already exists: {symbol}")

            info = self.provider.fetch_security_info(symbol)
            if not info.get('currency'):
                raise TradeValidationError(f"Currency missing from market data for {symbol}")
            if info.get('exchange', '') != exchange:
                raise TradeValidationError(
                    f"Exchange mismatch for {symbol}: {info.get('exchange')} != {exchange}"
                )

            security = Security(
                symbol=symbol,
                name=name,
                currency=info['currency'],
                exchange=exchange,
                type=type,
            )
            self.repository.commit_security(security)

        logger.info(f"Added security {symbol} ({security.currency}, {exchange})")
        return security

    def update_security_tags(self, symbol: str, **tags: List[str]) -> Security:
        """Replace one or more tag lists of a security (countries, resources, ...)."""
        unknown = set(tags) - set(TAG_FIELDS)
        if unknown:
            raise TradeValidationError(f"Unknown tag fields: {', '.join(sorted(unknown))}")

        with self.repository.writing(symbol):
            security = self.repository.get_security(symbol)
            if security is None:
                raise TradeValidationError(f"Unknown symbol: {symbol}")

            for tag, values in tags.items():
                setattr(security, tag, list(values))
            self.repository.commit_security(security)

        return security

    # ------------------------------------------------------------------
    # Settings
    # ------------------------------------------------------------------

    def update_settings(self, **changes: Any):
        """
        Update user settings (currency, gst_percent, brokerage_auto_fill).

        Raises:
            TradeValidationError: If a value is invalid
        """
        try:
            update = SettingsUpdate(**changes)
        except ValidationError as e:
            raise TradeValidationError(f"Invalid settings: {e}") from e

        settings = self.repository.get_settings()
        if update.currency is not None:
            settings.currency = update.currency
        if update.gst_percent is not None:
            settings.gst_percent = parse_gst_percent(update.gst_percent)
        if update.brokerage_auto_fill is not None:
            settings.brokerage_auto_fill = update.brokerage_auto_fill

        self.repository.commit_settings(settings)
        logger.info(f"Settings updated: {sorted(k for k, v in changes.items() if v is not None)}")
        return settings
