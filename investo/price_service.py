"""Quote sources and the price refresh orchestrator."""

import asyncio
import logging
from collections.abc import Iterable
from datetime import date
from enum import Enum
from typing import Optional, Protocol

import pandas as pd
import yfinance as yf
from pydantic import BaseModel, Field

from .cache_service import PriceCacheService
from .exceptions import InvalidSymbolError, QuoteFetchError
from .models import ETFPriceData, normalize_symbol, validate_symbol

logger = logging.getLogger(__name__)


class QuoteSource(Protocol):
    def get_quote(self, symbol: str) -> ETFPriceData:
        """Return the current quote for a symbol, or raise QuoteFetchError."""
        ...


def _round2(value: float) -> float:
    return round(float(value), 2)


def _checked_symbol(symbol: str) -> str:
    try:
        return validate_symbol(symbol)
    except InvalidSymbolError as e:
        raise QuoteFetchError(str(e), "INVALID_SYMBOL", symbol) from e


def build_quote(
    symbol: str,
    price: float,
    previous_close: float,
    ytd_start_price: float,
    high_52_week: float,
    low_52_week: float,
) -> ETFPriceData:
    """Derive change, change percent and YTD percent from raw prices."""
    change = price - previous_close
    change_percent = change / previous_close * 100 if previous_close else 0.0
    ytd_change = (price - ytd_start_price) / ytd_start_price * 100 if ytd_start_price else 0.0

    return ETFPriceData(
        symbol=symbol,
        current_price=price,
        previous_close=previous_close,
        change=_round2(change),
        change_percent=_round2(change_percent),
        high_52_week=high_52_week,
        low_52_week=low_52_week,
        ytd_change_percent=_round2(ytd_change),
    )


def quote_from_history(symbol: str, history: pd.DataFrame, today: date) -> ETFPriceData:
    """Build a quote from a daily OHLC history frame.

    Args:
        symbol: Ticker symbol
        history: Daily history with at least a Close column
        today: Date used to locate the start of the year

    Returns:
        ETFPriceData based on the latest close
    """
    closes = history["Close"].dropna()
    if closes.empty:
        raise QuoteFetchError(f"No price data available for {symbol}", "NOT_FOUND", symbol)

    price = float(closes.iloc[-1])
    previous_close = float(closes.iloc[-2]) if len(closes) >= 2 else price

    year_start = date(today.year, 1, 1)
    before_year = closes[[d < year_start for d in closes.index.date]]
    if not before_year.empty:
        ytd_start_price = float(before_year.iloc[-1])
    else:
        ytd_start_price = float(closes.iloc[0])

    high = history["High"].max() if "High" in history else closes.max()
    low = history["Low"].min() if "Low" in history else closes.min()

    return build_quote(
        symbol,
        _round2(price),
        _round2(previous_close),
        ytd_start_price,
        _round2(high),
        _round2(low),
    )


class YFinanceQuoteSource:
    """Quotes from Yahoo Finance daily history."""

    def get_quote(self, symbol: str) -> ETFPriceData:
        symbol = _checked_symbol(symbol)

        try:
            ticker = yf.Ticker(symbol)
            history = ticker.history(period="1y")
        except Exception as e:
            logger.error(f"Error fetching quote for {symbol}: {e}")
            raise QuoteFetchError(str(e), "NETWORK_ERROR", symbol) from e

        if history.empty:
            logger.warning(f"No price data available for {symbol}")
            raise QuoteFetchError(f"No price data available for {symbol}", "NOT_FOUND", symbol)

        return quote_from_history(symbol, history, date.today())


# price, previous close, price at the start of the year, 52-week high, 52-week low
MOCK_PRICES: dict[str, tuple[float, float, float, float, float]] = {
    "VOO": (477.85, 475.32, 437.92, 485.47, 382.61),
    "SPY": (519.42, 516.73, 475.31, 527.89, 415.23),
    "IVV": (522.15, 519.48, 478.25, 530.12, 417.95),
    "VTI": (262.34, 260.87, 239.42, 268.94, 210.53),
    "ITOT": (117.82, 117.15, 107.65, 120.45, 94.72),
    "IWM": (201.56, 199.42, 198.75, 211.34, 166.29),
    "QQQ": (431.27, 427.54, 403.62, 445.82, 311.74),
    "VGT": (524.68, 520.35, 487.23, 542.15, 378.42),
    "VEA": (48.73, 48.52, 45.87, 50.23, 41.35),
    "VWO": (41.92, 41.78, 40.15, 44.12, 36.54),
    "VXUS": (58.45, 58.21, 54.87, 60.15, 49.82),
    "BND": (72.84, 72.95, 71.25, 75.42, 69.15),
    "AGG": (98.52, 98.67, 96.35, 101.24, 93.48),
    "TLT": (95.42, 95.87, 91.25, 107.58, 82.36),
    "GLD": (192.35, 191.82, 188.45, 198.72, 168.23),
}


def hash_symbol(symbol: str) -> int:
    """Deterministic non-negative hash of a symbol, using 32-bit wraparound."""
    value = 0
    for char in symbol:
        value = (value << 5) - value + ord(char)
        value &= 0xFFFFFFFF
        if value >= 0x80000000:
            value -= 0x100000000
    return abs(value)


def generate_mock_prices(symbol: str) -> tuple[float, float, float, float, float]:
    """Stable made-up prices for a symbol without a fixed mock entry."""
    h = hash_symbol(symbol.upper())

    price = 20 + (h % 480) + (h % 100) / 100
    previous_close = price / (1 + ((h % 400) - 200) / 10000)
    ytd_start_price = price / (1 + ((h % 3000) - 1500) / 10000)
    high_52_week = price * (1 + 0.05 + (h % 15) / 100)
    low_52_week = price * (1 - (0.1 + (h % 20) / 100))

    return (
        _round2(price),
        _round2(previous_close),
        _round2(ytd_start_price),
        _round2(high_52_week),
        _round2(low_52_week),
    )


class MockQuoteSource:
    """Deterministic offline quotes."""

    def get_quote(self, symbol: str) -> ETFPriceData:
        symbol = _checked_symbol(symbol)
        prices = MOCK_PRICES.get(symbol) or generate_mock_prices(symbol)
        return build_quote(symbol, *prices)


def create_quote_source(provider: str) -> QuoteSource:
    """Build the quote source named in settings."""
    if provider == "mock":
        return MockQuoteSource()
    if provider == "yfinance":
        return YFinanceQuoteSource()
    raise ValueError(f"Unknown quote provider: {provider}")


class RefreshStatus(str, Enum):
    OK = "ok"
    PARTIAL = "partial"  # some symbols failed
    FAILED = "failed"    # every symbol failed


class PriceRefreshResult(BaseModel):
    """Outcome of one price refresh round."""
    generation: int
    prices: dict[str, ETFPriceData] = Field(default_factory=dict)
    errors: dict[str, str] = Field(default_factory=dict)
    fallback_symbols: list[str] = Field(default_factory=list)
    requested: int = 0
    superseded: bool = False

    @property
    def status(self) -> RefreshStatus:
        if not self.errors:
            return RefreshStatus.OK
        if len(self.errors) == self.requested:
            return RefreshStatus.FAILED
        return RefreshStatus.PARTIAL

    @property
    def message(self) -> Optional[str]:
        status = self.status
        if status == RefreshStatus.FAILED:
            return "Failed to fetch price data. Please try again later."
        if status == RefreshStatus.PARTIAL:
            return f"Failed to fetch {len(self.errors)} of {self.requested} prices."
        return None


class PriceService:
    """Fetches quotes per symbol and keeps the price cache current.

    Each refresh gets a generation number. A refresh that completes after a
    newer one has started is reported as superseded and its results are
    dropped, so stale quotes never overwrite fresh ones.
    """

    def __init__(self, quote_source: QuoteSource, cache_service: PriceCacheService):
        self.quote_source = quote_source
        self.cache_service = cache_service
        self._generation = 0

    @property
    def generation(self) -> int:
        return self._generation

    def quote_from_cache(self, symbol: str) -> Optional[ETFPriceData]:
        """Rebuild a partial quote from the last cached entry, if any."""
        entry = self.cache_service.get_cache_entry(symbol)
        if entry is None:
            return None

        ytd_change = 0.0
        if entry.ytd_start_price > 0:
            ytd_change = (entry.current_price / entry.ytd_start_price - 1) * 100

        change = entry.current_price - entry.previous_close
        return ETFPriceData(
            symbol=entry.symbol or symbol,
            current_price=entry.current_price,
            previous_close=entry.previous_close,
            change=change,
            change_percent=change / entry.previous_close * 100 if entry.previous_close else 0.0,
            ytd_change_percent=ytd_change,
        )

    async def refresh(self, symbols: Iterable[str]) -> PriceRefreshResult:
        """Fetch current quotes for the given symbols.

        Symbols are fetched concurrently and fail independently. A failed
        symbol falls back to its cached price when one exists; otherwise it is
        left out of ``prices``.

        Args:
            symbols: Symbols to refresh (normalized and de-duplicated)

        Returns:
            PriceRefreshResult for this generation
        """
        unique = list(dict.fromkeys(
            normalize_symbol(s) for s in symbols if s and s.strip()
        ))

        self._generation += 1
        generation = self._generation

        if not unique:
            return PriceRefreshResult(generation=generation)

        results = await asyncio.gather(
            *(asyncio.to_thread(self.quote_source.get_quote, symbol) for symbol in unique),
            return_exceptions=True,
        )

        if generation != self._generation:
            logger.info(f"Discarding superseded price refresh (generation {generation})")
            return PriceRefreshResult(generation=generation, requested=len(unique), superseded=True)

        prices: dict[str, ETFPriceData] = {}
        errors: dict[str, str] = {}
        fallback_symbols: list[str] = []
        fetched: list[ETFPriceData] = []

        for symbol, result in zip(unique, results):
            if isinstance(result, BaseException):
                errors[symbol] = str(result)
                cached = self.quote_from_cache(symbol)
                if cached is not None:
                    logger.warning(f"Using cached price for {symbol} after fetch failure: {result}")
                    prices[symbol] = cached
                    fallback_symbols.append(symbol)
                else:
                    logger.warning(f"No price available for {symbol}: {result}")
            else:
                prices[symbol] = result
                fetched.append(result)

        self.cache_service.bulk_update(fetched)

        return PriceRefreshResult(
            generation=generation,
            prices=prices,
            errors=errors,
            fallback_symbols=fallback_symbols,
            requested=len(unique),
        )

    async def get_quote(self, symbol: str, prefer_cache: bool = False) -> ETFPriceData:
        """Fetch one quote and cache it.

        Args:
            symbol: Ticker symbol
            prefer_cache: Serve a fresh cache entry without fetching

        Raises:
            InvalidSymbolError: If the symbol is malformed
            QuoteFetchError: If the quote source fails
        """
        symbol = validate_symbol(symbol)

        if prefer_cache and not self.cache_service.is_stale(symbol):
            cached = self.quote_from_cache(symbol)
            if cached is not None:
                return cached

        quote = await asyncio.to_thread(self.quote_source.get_quote, symbol)
        self.cache_service.update_cache(symbol, quote)
        return quote
