"""
Lot Ledger - FIFO Sell Matching with Proportional Fee Allocation

Owns the open lots of one security and records trades against them:
1. Buy: appends a lot and an immutable buy-history entry
2. Sell: consumes the account's oldest lots first, splitting a lot when the
   sell only takes part of it, and records one sell-history entry per lot
3. Each sell portion carries its proportional share of the lot's remaining
   brokerage/GST and of the sell trade's brokerage/GST, and gets the CGT
   discount when eligible

Every operation is all-or-nothing: inputs are validated and the new lot list
is computed in full before the security is touched.

Copyright (c) 2026 Andreas Wagner. All rights reserved.
"""

import uuid
from dataclasses import replace
from datetime import date
from decimal import Decimal, InvalidOperation
from typing import Any, Callable, List, Optional

from calculators.cgt import apply_cgt_discount
from core.records import BuyHistoryEntry, Lot, Security, SellHistoryEntry
from utils.logging_config import setup_logger

logger = setup_logger(__name__)


class LedgerError(Exception):
    """Base class for errors raised while recording a trade."""
    pass


class TradeValidationError(LedgerError, ValueError):
    """Raised when trade inputs or ledger configuration are invalid."""
    pass


class InsufficientUnitsError(LedgerError):
    """Raised when a sell exceeds the units the account owns on the sell date."""

    def __init__(self, symbol: str, account_id: str, required: Decimal, owned: Decimal):
        self.symbol = symbol
        self.account_id = account_id
        self.required = required
        self.owned = owned
        super().__init__(
            f"Insufficient units of {symbol} in account {account_id}: "
            f"required {required}, owned {owned}"
        )


def parse_gst_percent(value: Any) -> Decimal:
    """
    Parse the configured GST rate (percent).

    Raises:
        TradeValidationError: If the value is missing, non-numeric or negative
    """
    if isinstance(value, bool) or value is None:
        raise TradeValidationError(f"GST rate is not a number: {value!r}")
    try:
        rate = Decimal(str(value).strip())
    except InvalidOperation:
        raise TradeValidationError(f"GST rate is not a number: {value!r}")
    if not rate.is_finite() or rate < 0:
        raise TradeValidationError(f"GST rate must be a non-negative number: {value!r}")
    return rate


def _new_trade_id() -> str:
    return str(uuid.uuid4())


class LotLedger:
    """
    FIFO lot ledger for a single security.

    The ledger mutates the Security it is given. Callers that need to discard
    a failed trade should hand it a detached copy and persist it only when the
    operation returns.
    """

    def __init__(
        self,
        security: Security,
        gst_percent: Any,
        trade_id_factory: Optional[Callable[[], str]] = None
    ):
        """
        Args:
            security: Security record whose holdings and histories are updated
            gst_percent: GST rate applied to brokerage, in percent (e.g. 10)
            trade_id_factory: Generates trade ids (defaults to uuid4)
        """
        self.security = security
        self.gst_percent = parse_gst_percent(gst_percent)
        self._new_trade_id = trade_id_factory or _new_trade_id

    def gst_on(self, brokerage: Decimal) -> Decimal:
        return brokerage * self.gst_percent / Decimal(100)

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def _candidate_lots(self, account_id: str, as_of: date) -> List[Lot]:
        """Account's lots acquired on or before as_of, oldest first."""
        lots = [
            lot for lot in self.security.holdings
            if lot.account_id == account_id and lot.date <= as_of
        ]
        return sorted(lots, key=lambda lot: lot.date)

    def owned_units(self, account_id: str, as_of: date) -> Decimal:
        """Units the account can sell on as_of (lots bought later are excluded)."""
        return sum(
            (lot.quantity for lot in self._candidate_lots(account_id, as_of)),
            Decimal(0)
        )

    # ------------------------------------------------------------------
    # Trades
    # ------------------------------------------------------------------

    @staticmethod
    def _validate(quantity: Decimal, price: Decimal, brokerage: Decimal):
        if quantity <= 0:
            raise TradeValidationError(f"Quantity must be greater than zero: {quantity}")
        if price < 0:
            raise TradeValidationError(f"Price cannot be negative: {price}")
        if brokerage < 0:
            raise TradeValidationError(f"Brokerage cannot be negative: {brokerage}")

    def buy(
        self,
        account_id: str,
        trade_date: date,
        quantity: Decimal,
        price: Decimal,
        brokerage: Decimal
    ) -> BuyHistoryEntry:
        """
        Record a buy trade.

        Returns:
            The buy-history entry created for the trade
        """
        self._validate(quantity, price, brokerage)

        gst = self.gst_on(brokerage)
        total = quantity * price + brokerage + gst

        lot = Lot(
            account_id=account_id,
            date=trade_date,
            quantity=quantity,
            price=price,
            brokerage=brokerage,
            gst=gst,
        )
        entry = BuyHistoryEntry(
            trade_id=self._new_trade_id(),
            account_id=account_id,
            date=trade_date,
            quantity=quantity,
            price=price,
            brokerage=brokerage,
            gst=gst,
            total=total,
        )

        self.security.holdings = self.security.holdings + [lot]
        self.security.buy_history = sorted(
            self.security.buy_history + [entry], key=lambda e: e.date
        )

        logger.info(
            f"BUY {self.security.symbol}: {quantity} @ {price} on {trade_date}, total {total}",
            extra={'context': {'account': account_id, 'trade_id': entry.trade_id}}
        )
        return entry

    def sell(
        self,
        account_id: str,
        trade_date: date,
        quantity: Decimal,
        price: Decimal,
        brokerage: Decimal
    ) -> List[SellHistoryEntry]:
        """
        Record a sell trade, consuming the account's lots oldest first.

        Returns:
            One sell-history entry per lot consumed, sharing one trade id

        Raises:
            TradeValidationError: On invalid quantity, price or brokerage
            InsufficientUnitsError: If the account owns fewer units on trade_date
        """
        self._validate(quantity, price, brokerage)

        candidates = self._candidate_lots(account_id, trade_date)
        owned = sum((lot.quantity for lot in candidates), Decimal(0))
        if owned < quantity:
            raise InsufficientUnitsError(self.security.symbol, account_id, quantity, owned)

        trade_id = self._new_trade_id()
        sell_gst = self.gst_on(brokerage)

        # Replacement lots keyed by the identity of the lot they replace
        # (None once the lot is fully consumed)
        replacements = {}
        entries: List[SellHistoryEntry] = []
        remaining = quantity

        for lot in candidates:
            if remaining <= 0:
                break

            sold = min(lot.quantity, remaining)
            buy_ratio = sold / lot.quantity
            sell_ratio = sold / quantity

            applied_buy_brokerage = buy_ratio * lot.brokerage
            applied_buy_gst = buy_ratio * lot.gst
            applied_sell_brokerage = sell_ratio * brokerage
            applied_sell_gst = sell_ratio * sell_gst

            cost = sold * lot.price + applied_buy_brokerage + applied_buy_gst
            proceeds = sold * price - applied_sell_brokerage - applied_sell_gst
            profit_or_loss = proceeds - cost
            capital_gain_or_loss, discounted = apply_cgt_discount(
                profit_or_loss, lot.date, trade_date
            )

            entries.append(SellHistoryEntry(
                trade_id=trade_id,
                account_id=account_id,
                buy_date=lot.date,
                sell_date=trade_date,
                quantity=sold,
                buy_price=lot.price,
                sell_price=price,
                applied_buy_brokerage=applied_buy_brokerage,
                applied_sell_brokerage=applied_sell_brokerage,
                applied_buy_gst=applied_buy_gst,
                applied_sell_gst=applied_sell_gst,
                total=proceeds,
                profit_or_loss=profit_or_loss,
                capital_gain_or_loss=capital_gain_or_loss,
                cgt_discount=discounted,
            ))

            if sold == lot.quantity:
                replacements[id(lot)] = None
            else:
                remaining_ratio = Decimal(1) - buy_ratio
                replacements[id(lot)] = replace(
                    lot,
                    quantity=lot.quantity - sold,
                    brokerage=lot.brokerage * remaining_ratio,
                    gst=lot.gst * remaining_ratio,
                )

            remaining -= sold

        holdings = []
        for lot in self.security.holdings:
            if id(lot) in replacements:
                if replacements[id(lot)] is not None:
                    holdings.append(replacements[id(lot)])
            else:
                holdings.append(lot)

        self.security.holdings = holdings
        self.security.sell_history = sorted(
            self.security.sell_history + entries, key=lambda e: e.sell_date
        )

        logger.info(
            f"SELL {self.security.symbol}: {quantity} @ {price} on {trade_date} "
            f"matched against {len(entries)} lot(s)",
            extra={'context': {'account': account_id, 'trade_id': trade_id}}
        )
        return entries
