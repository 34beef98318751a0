from datetime import date, datetime, timedelta, timezone
from itertools import count

import pytest

from investo.cache_service import PriceCacheService
from investo.models import ETFPriceData, Portfolio, Purchase
from investo.portfolio_service import PortfolioService
from investo.storage import MemoryStore, PortfolioStorage

# Monday 16 March 2026, 11:00 in New York (EDT)
NOW = datetime(2026, 3, 16, 15, 0, tzinfo=timezone.utc)


class FrozenClock:
    """Callable clock that only moves when told to."""

    def __init__(self, now: datetime = NOW):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now += timedelta(**kwargs)


@pytest.fixture
def now() -> datetime:
    return NOW


@pytest.fixture
def clock() -> FrozenClock:
    return FrozenClock()


@pytest.fixture
def make_purchase():
    ids = count(1)

    def _make(
        symbol: str = "VOO",
        purchase_date: date = date(2025, 6, 1),
        shares: float = 10,
        price_per_share: float = 100,
        fees: float = 0,
        purchase_id: str = None,
    ) -> Purchase:
        return Purchase(
            id=purchase_id or f"p{next(ids)}",
            etf_symbol=symbol,
            purchase_date=purchase_date,
            shares=shares,
            price_per_share=price_per_share,
            fees=fees,
            created_at=NOW,
            updated_at=NOW,
        )

    return _make


@pytest.fixture
def make_portfolio():
    def _make(purchases=None, etf_cache=None) -> Portfolio:
        return Portfolio(
            id="portfolio-1",
            name="Test Portfolio",
            purchases=purchases or [],
            etf_cache=etf_cache or {},
            created_at=NOW,
            updated_at=NOW,
        )

    return _make


@pytest.fixture
def make_quote():
    def _make(
        symbol: str = "VOO",
        current_price: float = 100,
        previous_close: float = 99,
        ytd_change_percent: float = 0,
    ) -> ETFPriceData:
        return ETFPriceData(
            symbol=symbol,
            current_price=current_price,
            previous_close=previous_close,
            change=current_price - previous_close,
            ytd_change_percent=ytd_change_percent,
        )

    return _make


@pytest.fixture
def memory_store() -> MemoryStore:
    return MemoryStore()


@pytest.fixture
def storage(memory_store) -> PortfolioStorage:
    return PortfolioStorage(memory_store)


@pytest.fixture
def cache_service(storage, clock) -> PriceCacheService:
    return PriceCacheService(storage, clock=clock)


@pytest.fixture
def portfolio_service(storage, clock) -> PortfolioService:
    return PortfolioService(storage, clock=clock)
