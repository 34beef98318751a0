"""Data models for the ETF portfolio tracker."""

import re
from datetime import date, datetime, timezone
from enum import Enum
from typing import Optional

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    computed_field,
    field_validator,
    model_validator,
)
from pydantic.alias_generators import to_camel

from .exceptions import InvalidSymbolError

# Increment when making breaking changes to the stored document layout
CURRENT_SCHEMA_VERSION = 1

SYMBOL_PATTERN = re.compile(r"^[A-Z0-9]{1,10}$")


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def normalize_symbol(symbol: str) -> str:
    """Normalize an ETF symbol to trimmed uppercase."""
    return symbol.strip().upper()


def is_valid_symbol(symbol: str) -> bool:
    """Return True if the symbol is 1-10 letters or digits."""
    return bool(SYMBOL_PATTERN.match(normalize_symbol(symbol)))


def validate_symbol(symbol: str) -> str:
    """Normalize a symbol, raising InvalidSymbolError if it is malformed."""
    normalized = normalize_symbol(symbol)
    if not SYMBOL_PATTERN.match(normalized):
        raise InvalidSymbolError(symbol)
    return normalized


def _clean_notes(value: Optional[str]) -> Optional[str]:
    if value is None:
        return None
    value = value.strip()
    return value or None


class WireModel(BaseModel):
    """Base model serialized with camelCase keys for the JSON documents."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class MarketSession(str, Enum):
    """US equity market session used to pick the price cache TTL."""
    MARKET_HOURS = "MARKET_HOURS"
    AFTER_HOURS = "AFTER_HOURS"
    CLOSED = "CLOSED"  # Saturday/Sunday


class ETF(WireModel):
    """Exchange-traded fund details."""
    symbol: str
    name: str = ""
    exchange: Optional[str] = None
    currency: str = "USD"


class Purchase(WireModel):
    """A single ETF buy transaction."""
    id: str
    etf_symbol: str
    purchase_date: date
    shares: float = Field(gt=0)
    price_per_share: float = Field(gt=0)
    fees: float = Field(default=0.0, ge=0)
    notes: Optional[str] = None
    created_at: datetime
    updated_at: datetime

    @field_validator("etf_symbol")
    @classmethod
    def normalize_etf_symbol(cls, v: str) -> str:
        """Normalize ETF symbol to uppercase."""
        return normalize_symbol(v)

    @computed_field(alias="totalCost")
    @property
    def total_cost(self) -> float:
        """Shares times price plus fees; always derived, never stored."""
        return self.shares * self.price_per_share + self.fees


class PurchaseInput(WireModel):
    """Fields supplied when recording a new purchase."""
    etf_symbol: str
    purchase_date: date
    shares: float = Field(gt=0)
    price_per_share: float = Field(gt=0)
    fees: float = Field(default=0.0, ge=0)
    notes: Optional[str] = None

    @field_validator("etf_symbol")
    @classmethod
    def check_symbol(cls, v: str) -> str:
        normalized = normalize_symbol(v)
        if not is_valid_symbol(normalized):
            raise ValueError("Symbol must be 1-10 letters or numbers")
        return normalized

    @field_validator("notes")
    @classmethod
    def strip_notes(cls, v: Optional[str]) -> Optional[str]:
        return _clean_notes(v)


class PurchaseUpdate(WireModel):
    """Partial edit of an existing purchase; unset fields keep their value."""
    etf_symbol: Optional[str] = None
    purchase_date: Optional[date] = None
    shares: Optional[float] = Field(default=None, gt=0)
    price_per_share: Optional[float] = Field(default=None, gt=0)
    fees: Optional[float] = Field(default=None, ge=0)
    notes: Optional[str] = None

    @field_validator("etf_symbol")
    @classmethod
    def check_symbol(cls, v: Optional[str]) -> Optional[str]:
        if v is None:
            return None
        normalized = normalize_symbol(v)
        if not is_valid_symbol(normalized):
            raise ValueError("Symbol must be 1-10 letters or numbers")
        return normalized

    @field_validator("notes")
    @classmethod
    def strip_notes(cls, v: Optional[str]) -> Optional[str]:
        return _clean_notes(v)


class ETFPriceData(WireModel):
    """Quote snapshot for one ETF."""
    symbol: str
    current_price: float
    previous_close: float
    change: float = 0.0
    change_percent: float = 0.0
    high_52_week: float = Field(default=0.0, alias="high52Week")
    low_52_week: float = Field(default=0.0, alias="low52Week")
    ytd_change_percent: float = 0.0

    @field_validator("symbol")
    @classmethod
    def normalize(cls, v: str) -> str:
        return normalize_symbol(v)

    @property
    def ytd_start_price(self) -> float:
        """Price at the start of the year implied by the YTD percent change."""
        divisor = 1 + self.ytd_change_percent / 100
        if self.ytd_change_percent == 0 or divisor <= 0:
            return self.current_price
        return self.current_price / divisor


class ETFCacheEntry(WireModel):
    """Cached quote for one ETF, keyed by symbol in the portfolio cache map."""
    etf: ETF
    current_price: float
    previous_close: float
    last_updated: datetime
    ytd_start_price: float

    @property
    def symbol(self) -> str:
        return self.etf.symbol


class CachedPrice(BaseModel):
    """Result of a cache lookup."""
    price: float
    stale: bool


class Portfolio(WireModel):
    """Aggregate root: one user's purchases plus the ETF price cache."""
    id: str
    name: str
    purchases: list[Purchase] = Field(default_factory=list)
    etf_cache: dict[str, ETFCacheEntry] = Field(default_factory=dict)
    created_at: datetime
    updated_at: datetime
    version: int = CURRENT_SCHEMA_VERSION

    @model_validator(mode="after")
    def check_unique_purchase_ids(self) -> "Portfolio":
        seen = set()
        for purchase in self.purchases:
            if purchase.id in seen:
                raise ValueError(f"Duplicate purchase id: {purchase.id}")
            seen.add(purchase.id)
        return self


class PurchaseMetrics(WireModel):
    """Performance of a single purchase."""
    purchase_id: str
    etf_symbol: str
    shares: float
    cost_basis: float
    current_value: float
    gain_loss: float
    gain_loss_percent: float
    holding_period_days: int
    annualized_return: float


class ETFHoldingMetrics(WireModel):
    """Aggregated performance of all purchases of one ETF."""
    etf_symbol: str
    etf_name: str
    total_shares: float
    average_cost_per_share: float
    total_cost_basis: float
    current_price: float
    current_value: float
    total_gain_loss: float
    total_gain_loss_percent: float
    weight_in_portfolio: float
    purchases: list[PurchaseMetrics]


class YTDPerformance(WireModel):
    """Year-to-date gain/loss."""
    ytd_gain_loss: float
    ytd_gain_loss_percent: float


class PortfolioMetrics(WireModel):
    """Overall portfolio performance."""
    total_invested: float
    current_value: float
    total_gain_loss: float
    total_gain_loss_percent: float
    ytd_gain_loss: float
    ytd_gain_loss_percent: float
    holdings: list[ETFHoldingMetrics]
    last_updated: datetime
