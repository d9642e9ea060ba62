"""
Portfolio Record Models

Defines the persisted record graph:
- Security: a tradable instrument with its open lots and trade history
- Lot: an open holding (mutable while being consumed by sells)
- BuyHistoryEntry / SellHistoryEntry: immutable trade log entries
- Account, Settings: supporting records
- HistoricalSeries / ExchangeRateSeries: cached market-data series

Records serialize to plain JSON-friendly dicts: dates as YYYY-MM-DD,
quantities and money as decimal strings.

Copyright (c) 2026 Andreas Wagner. All rights reserved.
"""

from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal, InvalidOperation
from typing import Any, Dict, List, Optional


TAG_FIELDS = (
    'countries',
    'financial_status',
    'mining_status',
    'resources',
    'products',
    'recommendations',
    'monitor',
)


def to_decimal(value: Any) -> Decimal:
    """Parse a stored number (str, int, float or Decimal) into a Decimal."""
    if isinstance(value, Decimal):
        return value
    if value is None or value == '':
        return Decimal(0)
    try:
        return Decimal(str(value))
    except InvalidOperation:
        raise ValueError(f"Not a decimal value: {value!r}")


def parse_date(value: Any) -> date:
    """Parse a YYYY-MM-DD string (or a date) into a date."""
    if isinstance(value, date):
        return value
    return date.fromisoformat(str(value)[:10])


def dec_str(value: Decimal) -> str:
    return str(value)


@dataclass
class Lot:
    """
    An open holding of a security owned by one account.

    quantity, brokerage and gst shrink as sells consume the lot; the lot is
    removed from the ledger once its quantity reaches zero.
    """
    account_id: str
    date: date
    quantity: Decimal
    price: Decimal
    brokerage: Decimal
    gst: Decimal

    def to_dict(self) -> Dict[str, Any]:
        return {
            'account_id': self.account_id,
            'date': self.date.isoformat(),
            'quantity': dec_str(self.quantity),
            'price': dec_str(self.price),
            'brokerage': dec_str(self.brokerage),
            'gst': dec_str(self.gst),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'Lot':
        return cls(
            account_id=str(data['account_id']),
            date=parse_date(data['date']),
            quantity=to_decimal(data['quantity']),
            price=to_decimal(data['price']),
            brokerage=to_decimal(data.get('brokerage')),
            gst=to_decimal(data.get('gst')),
        )


@dataclass(frozen=True)
class BuyHistoryEntry:
    """Immutable record of a buy trade."""
    trade_id: str
    account_id: str
    date: date
    quantity: Decimal
    price: Decimal
    brokerage: Decimal
    gst: Decimal
    total: Decimal

    def to_dict(self) -> Dict[str, Any]:
        return {
            'trade_id': self.trade_id,
            'account_id': self.account_id,
            'date': self.date.isoformat(),
            'quantity': dec_str(self.quantity),
            'price': dec_str(self.price),
            'brokerage': dec_str(self.brokerage),
            'gst': dec_str(self.gst),
            'total': dec_str(self.total),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'BuyHistoryEntry':
        return cls(
            trade_id=str(data['trade_id']),
            account_id=str(data['account_id']),
            date=parse_date(data['date']),
            quantity=to_decimal(data['quantity']),
            price=to_decimal(data['price']),
            brokerage=to_decimal(data.get('brokerage')),
            gst=to_decimal(data.get('gst')),
            total=to_decimal(data['total']),
        )


@dataclass(frozen=True)
class SellHistoryEntry:
    """
    Immutable record of one (sell trade, consumed lot) pair.

    A sell spanning several lots produces several entries sharing trade_id.
    """
    trade_id: str
    account_id: str
    buy_date: date
    sell_date: date
    quantity: Decimal
    buy_price: Decimal
    sell_price: Decimal
    applied_buy_brokerage: Decimal
    applied_sell_brokerage: Decimal
    applied_buy_gst: Decimal
    applied_sell_gst: Decimal
    total: Decimal                    # Net proceeds received for this portion
    profit_or_loss: Decimal
    capital_gain_or_loss: Decimal
    cgt_discount: bool

    @property
    def cost(self) -> Decimal:
        """Purchase cost of the sold units including applied buy fees."""
        return self.total - self.profit_or_loss

    def to_dict(self) -> Dict[str, Any]:
        return {
            'trade_id': self.trade_id,
            'account_id': self.account_id,
            'buy_date': self.buy_date.isoformat(),
            'sell_date': self.sell_date.isoformat(),
            'quantity': dec_str(self.quantity),
            'buy_price': dec_str(self.buy_price),
            'sell_price': dec_str(self.sell_price),
            'applied_buy_brokerage': dec_str(self.applied_buy_brokerage),
            'applied_sell_brokerage': dec_str(self.applied_sell_brokerage),
            'applied_buy_gst': dec_str(self.applied_buy_gst),
            'applied_sell_gst': dec_str(self.applied_sell_gst),
            'total': dec_str(self.total),
            'profit_or_loss': dec_str(self.profit_or_loss),
            'capital_gain_or_loss': dec_str(self.capital_gain_or_loss),
            'cgt_discount': self.cgt_discount,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'SellHistoryEntry':
        return cls(
            trade_id=str(data['trade_id']),
            account_id=str(data['account_id']),
            buy_date=parse_date(data['buy_date']),
            sell_date=parse_date(data['sell_date']),
            quantity=to_decimal(data['quantity']),
            buy_price=to_decimal(data['buy_price']),
            sell_price=to_decimal(data['sell_price']),
            applied_buy_brokerage=to_decimal(data.get('applied_buy_brokerage')),
            applied_sell_brokerage=to_decimal(data.get('applied_sell_brokerage')),
            applied_buy_gst=to_decimal(data.get('applied_buy_gst')),
            applied_sell_gst=to_decimal(data.get('applied_sell_gst')),
            total=to_decimal(data['total']),
            profit_or_loss=to_decimal(data['profit_or_loss']),
            capital_gain_or_loss=to_decimal(data['capital_gain_or_loss']),
            cgt_discount=bool(data.get('cgt_discount', False)),
        )


@dataclass
class Security:
    """A tradable security together with its lot ledger and trade history."""
    symbol: str
    name: str
    currency: str
    exchange: str = ''
    type: str = ''

    # User-defined tags used by the portfolio filter
    countries: List[str] = field(default_factory=list)
    financial_status: List[str] = field(default_factory=list)
    mining_status: List[str] = field(default_factory=list)
    resources: List[str] = field(default_factory=list)
    products: List[str] = field(default_factory=list)
    recommendations: List[str] = field(default_factory=list)
    monitor: List[str] = field(default_factory=list)

    holdings: List[Lot] = field(default_factory=list)
    buy_history: List[BuyHistoryEntry] = field(default_factory=list)     # Ascending by date
    sell_history: List[SellHistoryEntry] = field(default_factory=list)   # Ascending by sell_date

    def has_activity(self) -> bool:
        return bool(self.holdings or self.buy_history or self.sell_history)

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {
            'symbol': self.symbol,
            'name': self.name,
            'currency': self.currency,
            'exchange': self.exchange,
            'type': self.type,
        }
        for tag in TAG_FIELDS:
            data[tag] = list(getattr(self, tag))
        data['holdings'] = [lot.to_dict() for lot in self.holdings]
        data['buy_history'] = [entry.to_dict() for entry in self.buy_history]
        data['sell_history'] = [entry.to_dict() for entry in self.sell_history]
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'Security':
        return cls(
            symbol=data['symbol'],
            name=data.get('name', ''),
            currency=data['currency'],
            exchange=data.get('exchange', ''),
            type=data.get('type', ''),
            **{tag: list(data.get(tag, [])) for tag in TAG_FIELDS},
            holdings=[Lot.from_dict(d) for d in data.get('holdings', [])],
            buy_history=[BuyHistoryEntry.from_dict(d) for d in data.get('buy_history', [])],
            sell_history=[SellHistoryEntry.from_dict(d) for d in data.get('sell_history', [])],
        )


@dataclass
class Account:
    account_id: str
    name: str

    def to_dict(self) -> Dict[str, Any]:
        return {'account_id': self.account_id, 'name': self.name}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'Account':
        return cls(account_id=str(data['account_id']), name=data['name'])


@dataclass
class Settings:
    """
    User settings.

    gst_percent is kept as stored; it is parsed (and rejected if non-numeric)
    each time a trade is recorded.
    """
    currency: str = "AUD"
    gst_percent: Any = Decimal("10")
    brokerage_auto_fill: Optional[Decimal] = Decimal("10")

    def to_dict(self) -> Dict[str, Any]:
        return {
            'currency': self.currency,
            'gst_percent': str(self.gst_percent),
            'brokerage_auto_fill': (
                dec_str(self.brokerage_auto_fill) if self.brokerage_auto_fill is not None else None
            ),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'Settings':
        auto_fill = data.get('brokerage_auto_fill', '10')
        return cls(
            currency=data.get('currency', 'AUD'),
            gst_percent=data.get('gst_percent', '10'),
            brokerage_auto_fill=to_decimal(auto_fill) if auto_fill not in (None, '') else None,
        )


@dataclass(frozen=True)
class SeriesEntry:
    """A dated value in a sparse, ascending time series."""
    date: date
    value: Decimal

    def to_dict(self) -> Dict[str, Any]:
        return {'date': self.date.isoformat(), 'value': dec_str(self.value)}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'SeriesEntry':
        return cls(date=parse_date(data['date']), value=to_decimal(data['value']))


@dataclass
class HistoricalSeries:
    """Adjusted close prices for one symbol."""
    symbol: str
    currency: str
    last_updated: date
    entries: List[SeriesEntry] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'symbol': self.symbol,
            'currency': self.currency,
            'last_updated': self.last_updated.isoformat(),
            'entries': [e.to_dict() for e in self.entries],
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'HistoricalSeries':
        return cls(
            symbol=data['symbol'],
            currency=data['currency'],
            last_updated=parse_date(data['last_updated']),
            entries=[SeriesEntry.from_dict(e) for e in data.get('entries', [])],
        )


@dataclass
class ExchangeRateSeries:
    """Daily rates converting from_currency into to_currency."""
    from_currency: str
    to_currency: str
    last_updated: date
    entries: List[SeriesEntry] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'from_currency': self.from_currency,
            'to_currency': self.to_currency,
            'last_updated': self.last_updated.isoformat(),
            'entries': [e.to_dict() for e in self.entries],
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'ExchangeRateSeries':
        return cls(
            from_currency=data['from_currency'],
            to_currency=data['to_currency'],
            last_updated=parse_date(data['last_updated']),
            entries=[SeriesEntry.from_dict(e) for e in data.get('entries', [])],
        )
