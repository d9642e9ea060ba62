"""
Trade and Report Input Models

Validated inputs accepted at the service boundary:
- TradeInput: a buy or sell trade entered by the user
- PortfolioFilter: account and tag filter for reports
- SettingsUpdate: changes to the persisted user settings
"""

from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, Field, field_validator

from core.records import Security


FILTER_TAGS = (
    'countries',
    'financial_status',
    'mining_status',
    'resources',
    'products',
    'recommendations',
)


class TradeTypeError(ValueError):
    """Raised when a trade type cannot be normalized."""
    pass


class TradeType(str, Enum):
    """Trade directions supported by the lot ledger."""

    BUY = "Buy"
    SELL = "Sell"

    @classmethod
    def normalize(cls, value: str) -> 'TradeType':
        """Normalize trade type from free-form input ('buy', 'SELL', 'Sell ')."""
        clean_value = value.strip().upper()
        type_map = {
            "BUY": cls.BUY,
            "B": cls.BUY,
            "SELL": cls.SELL,
            "S": cls.SELL,
        }

        result = type_map.get(clean_value)
        if result is None:
            raise TradeTypeError(f"Unknown trade type: '{value}'")
        return result


class TradeInput(BaseModel):
    """A single buy or sell trade."""

    symbol: str = Field(min_length=1)
    account_id: str = Field(min_length=1)
    type: TradeType
    trade_date: date
    quantity: Decimal
    price: Decimal
    brokerage: Decimal = Decimal(0)

    @field_validator('symbol', 'account_id', mode='before')
    @classmethod
    def strip_identifiers(cls, v):
        return v.strip() if isinstance(v, str) else v

    @field_validator('type', mode='before')
    @classmethod
    def parse_type(cls, v):
        if isinstance(v, str) and not isinstance(v, TradeType):
            return TradeType.normalize(v)
        return v

    @field_validator('trade_date', mode='before')
    @classmethod
    def parse_trade_date(cls, v):
        """Accept ISO strings and datetimes; only the calendar date is kept."""
        if isinstance(v, datetime):
            return v.date()
        if isinstance(v, str):
            return date.fromisoformat(v.strip()[:10])
        return v

    @field_validator('quantity', 'price', 'brokerage', mode='before')
    @classmethod
    def parse_decimal(cls, v):
        """Parse numbers given as strings with thousands separators."""
        if isinstance(v, str):
            v = v.replace(',', '').strip()
        if isinstance(v, float):
            v = str(v)
        return v

    @field_validator('quantity')
    @classmethod
    def positive_quantity(cls, v):
        if v <= 0:
            raise ValueError(f'Quantity must be greater than zero: {v}')
        return v

    @field_validator('price', 'brokerage')
    @classmethod
    def non_negative_values(cls, v):
        if v < 0:
            raise ValueError(f'Value cannot be negative: {v}')
        return v


class PortfolioFilter(BaseModel):
    """
    Report filter.

    An empty account_id selects every account. A security qualifies when each
    value listed in a tag filter is present in the security's tag list of the
    same name.
    """

    account_id: str = ''
    countries: List[str] = Field(default_factory=list)
    financial_status: List[str] = Field(default_factory=list)
    mining_status: List[str] = Field(default_factory=list)
    resources: List[str] = Field(default_factory=list)
    products: List[str] = Field(default_factory=list)
    recommendations: List[str] = Field(default_factory=list)

    def matches(self, security: Security) -> bool:
        for tag in FILTER_TAGS:
            wanted = getattr(self, tag)
            have = getattr(security, tag)
            if any(value not in have for value in wanted):
                return False
        return True

    def includes_account(self, account_id: str) -> bool:
        return self.account_id == '' or self.account_id == account_id


class SettingsUpdate(BaseModel):
    """Partial update of user settings; None leaves a field unchanged."""

    currency: Optional[str] = None
    gst_percent: Optional[Decimal] = None
    brokerage_auto_fill: Optional[Decimal] = None

    @field_validator('currency')
    @classmethod
    def currency_code(cls, v):
        if v is None:
            return v
        v = v.strip().upper()
        if len(v) != 3 or not v.isalpha():
            raise ValueError(f'Currency must be a 3-letter code: {v}')
        return v

    @field_validator('gst_percent', 'brokerage_auto_fill')
    @classmethod
    def non_negative_values(cls, v):
        if v is not None and v < 0:
            raise ValueError(f'Value cannot be negative: {v}')
        return v
