"""Price cache with market-hours-aware freshness.

Entries are persisted through PortfolioStorage. When the backing store is
unavailable every read behaves like an empty cache and writes are dropped,
so callers see "not cached" (always stale) rather than an error.
"""

import logging
from collections.abc import Callable, Iterable
from datetime import datetime, timedelta
from typing import Optional

from .market_hours import MARKET_TIMEZONE, get_cache_ttl, get_market_session
from .models import (
    ETF,
    CachedPrice,
    ETFCacheEntry,
    ETFPriceData,
    normalize_symbol,
    utc_now,
)
from .popular_etfs import find_etf_by_symbol
from .storage import ETFCache, PortfolioStorage

logger = logging.getLogger(__name__)

# Entries older than this are removed by prune_stale()
DEFAULT_PRUNE_MAX_AGE = timedelta(hours=24)


class PriceCacheService:
    """Read, write and prune cached ETF prices."""

    def __init__(
        self,
        storage: PortfolioStorage,
        clock: Callable[[], datetime] = utc_now,
        tz_name: str = MARKET_TIMEZONE,
    ):
        """Initialize the cache service.

        Args:
            storage: Persistence for the cache document
            clock: Returns the current time; injectable for tests
            tz_name: Market timezone used for the session TTL
        """
        self.storage = storage
        self.clock = clock
        self.tz_name = tz_name

    def current_ttl(self, now: Optional[datetime] = None) -> timedelta:
        """TTL for the market session in effect at ``now``."""
        return get_cache_ttl(now or self.clock(), self.tz_name)

    def get_price_cache(self) -> ETFCache:
        return self.storage.load_cache()

    def _build_entry(self, symbol: str, quote: ETFPriceData, now: datetime) -> ETFCacheEntry:
        known = find_etf_by_symbol(symbol)
        return ETFCacheEntry(
            etf=ETF(symbol=symbol, name=known.name if known else ""),
            current_price=quote.current_price,
            previous_close=quote.previous_close,
            last_updated=now,
            ytd_start_price=quote.ytd_start_price,
        )

    def update_cache(self, symbol: str, quote: ETFPriceData) -> None:
        """Insert or replace the cache entry for one symbol."""
        symbol = normalize_symbol(symbol)
        cache = self.get_price_cache()
        cache[symbol] = self._build_entry(symbol, quote, self.clock())
        self.storage.save_cache(cache)

    def bulk_update(self, quotes: Iterable[ETFPriceData]) -> int:
        """Insert or replace entries for several quotes in a single write.

        Returns:
            Number of entries written, 0 if the store rejected the write
        """
        quotes = list(quotes)
        if not quotes:
            return 0

        cache = self.get_price_cache()
        now = self.clock()
        for quote in quotes:
            symbol = normalize_symbol(quote.symbol)
            cache[symbol] = self._build_entry(symbol, quote, now)

        if not self.storage.save_cache(cache):
            return 0

        logger.info(f"Cached prices for {len(quotes)} symbols")
        return len(quotes)

    def get_cache_entry(self, symbol: str) -> Optional[ETFCacheEntry]:
        return self.get_price_cache().get(normalize_symbol(symbol))

    def get_cached_price(self, symbol: str) -> Optional[CachedPrice]:
        """Get a cached price and whether it is stale.

        Returns:
            CachedPrice, or None if the symbol was never cached
        """
        entry = self.get_cache_entry(symbol)
        if entry is None:
            return None

        now = self.clock()
        age = now - entry.last_updated
        return CachedPrice(price=entry.current_price, stale=age > self.current_ttl(now))

    def is_stale(self, symbol: str) -> bool:
        """True if the symbol is not cached or its entry has expired."""
        cached = self.get_cached_price(symbol)
        return cached is None or cached.stale

    def remove_entry(self, symbol: str) -> bool:
        symbol = normalize_symbol(symbol)
        cache = self.get_price_cache()
        if symbol not in cache:
            return False
        del cache[symbol]
        return self.storage.save_cache(cache)

    def clear_cache(self) -> None:
        """Remove every cached price."""
        if self.storage.clear_cache():
            logger.info("Price cache cleared")

    def prune_stale(self, max_age: timedelta = DEFAULT_PRUNE_MAX_AGE) -> int:
        """Remove entries older than ``max_age``, regardless of market session.

        Returns:
            Number of entries removed
        """
        cache = self.get_price_cache()
        now = self.clock()

        expired = [
            symbol for symbol, entry in cache.items()
            if now - entry.last_updated > max_age
        ]
        if not expired:
            return 0

        for symbol in expired:
            del cache[symbol]
        self.storage.save_cache(cache)

        logger.info(f"Pruned {len(expired)} stale price cache entries")
        return len(expired)

    def get_cache_stats(self) -> dict:
        """Get cache statistics.

        Returns:
            Dictionary with entry counts, symbols and the current session
        """
        cache = self.get_price_cache()
        now = self.clock()
        ttl = self.current_ttl(now)

        stale = sum(1 for entry in cache.values() if now - entry.last_updated > ttl)

        return {
            "total_entries": len(cache),
            "stale_entries": stale,
            "fresh_entries": len(cache) - stale,
            "symbols": list(cache.keys()),
            "session": get_market_session(now, self.tz_name).value,
            "ttl_seconds": int(ttl.total_seconds()),
        }
