from datetime import datetime, timedelta, timezone

import pytest

from investo.cache_service import PriceCacheService
from investo.storage import MemoryStore, PortfolioStorage


class TestPriceCache:
    def test_should_return_none_for_unknown_symbol(self, cache_service) -> None:
        assert cache_service.get_cached_price("VOO") is None
        assert cache_service.is_stale("VOO")

    def test_should_store_entry_with_catalogue_name(self, cache_service, make_quote, now) -> None:
        cache_service.update_cache("voo", make_quote(current_price=110, ytd_change_percent=10))

        entry = cache_service.get_cache_entry("VOO")
        assert entry.etf.symbol == "VOO"
        assert entry.etf.name == "Vanguard S&P 500 ETF"
        assert entry.current_price == 110
        assert entry.previous_close == 99
        assert entry.ytd_start_price == pytest.approx(100)
        assert entry.last_updated == now

    def test_should_leave_name_empty_for_unknown_etf(self, cache_service, make_quote) -> None:
        cache_service.update_cache("XYZ", make_quote("XYZ"))

        assert cache_service.get_cache_entry("XYZ").etf.name == ""

    def test_should_be_fresh_within_market_hours_ttl(self, cache_service, clock, make_quote) -> None:
        cache_service.update_cache("VOO", make_quote(current_price=110))

        clock.advance(minutes=4)
        cached = cache_service.get_cached_price("VOO")

        assert cached.price == 110
        assert cached.stale is False

    def test_should_go_stale_after_market_hours_ttl(self, cache_service, clock, make_quote) -> None:
        cache_service.update_cache("VOO", make_quote(current_price=110))

        clock.advance(minutes=6)
        cached = cache_service.get_cached_price("VOO")

        assert cached.price == 110
        assert cached.stale is True
        assert cache_service.is_stale("VOO")

    def test_should_keep_entries_longer_on_weekends(self, storage, make_quote) -> None:
        saturday = datetime(2026, 3, 14, 15, 0, tzinfo=timezone.utc)
        times = iter([saturday, saturday + timedelta(minutes=45)])
        service = PriceCacheService(storage, clock=lambda: next(times))

        service.update_cache("VOO", make_quote())

        assert service.get_cached_price("VOO").stale is False

    def test_should_replace_existing_entry(self, cache_service, clock, make_quote, now) -> None:
        cache_service.update_cache("VOO", make_quote(current_price=100))
        clock.advance(minutes=10)
        cache_service.update_cache("VOO", make_quote(current_price=105))

        entry = cache_service.get_cache_entry("VOO")
        assert entry.current_price == 105
        assert entry.last_updated == now + timedelta(minutes=10)
        assert len(cache_service.get_price_cache()) == 1


class TestBulkUpdate:
    def test_should_write_all_quotes_with_one_timestamp(self, cache_service, make_quote, now) -> None:
        written = cache_service.bulk_update([make_quote("VOO"), make_quote("qqq"), make_quote("BND")])

        cache = cache_service.get_price_cache()
        assert written == 3
        assert list(cache) == ["VOO", "QQQ", "BND"]
        assert {entry.last_updated for entry in cache.values()} == {now}

    def test_should_do_nothing_for_empty_batch(self, cache_service) -> None:
        assert cache_service.bulk_update([]) == 0
        assert cache_service.get_price_cache() == {}

    def test_should_report_zero_when_write_fails(self, cache_service, memory_store, make_quote) -> None:
        memory_store.available = False

        assert cache_service.bulk_update([make_quote("VOO"), make_quote("QQQ")]) == 0

        memory_store.available = True
        assert cache_service.get_price_cache() == {}


class TestCacheMaintenance:
    def test_should_prune_entries_older_than_max_age(self, cache_service, clock, make_quote) -> None:
        cache_service.update_cache("VOO", make_quote("VOO"))
        clock.advance(hours=20)
        cache_service.update_cache("QQQ", make_quote("QQQ"))
        clock.advance(hours=5)

        removed = cache_service.prune_stale()

        assert removed == 1
        assert list(cache_service.get_price_cache()) == ["QQQ"]

    def test_should_prune_with_custom_max_age(self, cache_service, clock, make_quote) -> None:
        cache_service.update_cache("VOO", make_quote("VOO"))
        clock.advance(hours=2)

        assert cache_service.prune_stale(timedelta(hours=3)) == 0
        assert cache_service.prune_stale(timedelta(hours=1)) == 1

    def test_should_remove_single_entry(self, cache_service, make_quote) -> None:
        cache_service.update_cache("VOO", make_quote("VOO"))

        assert cache_service.remove_entry("voo") is True
        assert cache_service.remove_entry("VOO") is False
        assert cache_service.get_cache_entry("VOO") is None

    def test_should_clear_everything(self, cache_service, make_quote) -> None:
        cache_service.bulk_update([make_quote("VOO"), make_quote("QQQ")])

        cache_service.clear_cache()

        assert cache_service.get_price_cache() == {}

    def test_should_report_stats(self, cache_service, clock, make_quote) -> None:
        cache_service.update_cache("VOO", make_quote("VOO"))
        clock.advance(minutes=10)
        cache_service.update_cache("QQQ", make_quote("QQQ"))

        stats = cache_service.get_cache_stats()

        assert stats == {
            "total_entries": 2,
            "stale_entries": 1,
            "fresh_entries": 1,
            "symbols": ["VOO", "QQQ"],
            "session": "MARKET_HOURS",
            "ttl_seconds": 300,
        }


class TestUnavailableStorage:
    @pytest.fixture
    def service(self, clock) -> PriceCacheService:
        return PriceCacheService(PortfolioStorage(MemoryStore(available=False)), clock=clock)

    def test_should_behave_like_empty_cache(self, service, make_quote) -> None:
        service.update_cache("VOO", make_quote())

        assert service.get_cached_price("VOO") is None
        assert service.is_stale("VOO")
        assert service.get_cache_stats()["total_entries"] == 0

    def test_should_not_raise_on_maintenance(self, service, make_quote) -> None:
        assert service.bulk_update([make_quote()]) == 0
        assert service.prune_stale() == 0
        assert service.remove_entry("VOO") is False
        service.clear_cache()
