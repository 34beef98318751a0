import asyncio
import threading
from datetime import date

import pandas as pd
import pytest

from investo.exceptions import InvalidSymbolError, QuoteFetchError
from investo.models import ETFPriceData
from investo.price_service import (
    MockQuoteSource,
    PriceRefreshResult,
    PriceService,
    RefreshStatus,
    YFinanceQuoteSource,
    build_quote,
    create_quote_source,
    hash_symbol,
    quote_from_history,
)


class FakeQuoteSource:
    """Quote source with fixed prices that records every call."""

    def __init__(self, prices=None, failing=()):
        self.prices = prices or {}
        self.failing = set(failing)
        self.calls = []

    def get_quote(self, symbol: str) -> ETFPriceData:
        self.calls.append(symbol)
        if symbol in self.failing or symbol not in self.prices:
            raise QuoteFetchError(f"Failed to fetch {symbol}", "NETWORK_ERROR", symbol)
        return build_quote(symbol, self.prices[symbol], self.prices[symbol] - 1, 100, 0, 0)


class BlockingQuoteSource(FakeQuoteSource):
    """Holds quotes for one symbol until released."""

    def __init__(self, slow_symbol: str, **kwargs):
        super().__init__(**kwargs)
        self.slow_symbol = slow_symbol
        self.release = threading.Event()

    def get_quote(self, symbol: str) -> ETFPriceData:
        if symbol == self.slow_symbol:
            self.release.wait(timeout=5)
        return super().get_quote(symbol)


def daily_history(start: str, closes: list) -> pd.DataFrame:
    index = pd.date_range(start, periods=len(closes), freq="D")
    return pd.DataFrame(
        {
            "Open": closes,
            "High": [c + 1 for c in closes],
            "Low": [c - 1 for c in closes],
            "Close": closes,
        },
        index=index,
    )


class TestBuildQuote:
    def test_should_derive_changes_and_round(self) -> None:
        quote = build_quote("VOO", 477.85, 475.32, 437.92, 485.47, 382.61)

        assert quote.change == pytest.approx(2.53)
        assert quote.change_percent == pytest.approx(0.53)
        assert quote.ytd_change_percent == pytest.approx(9.12)
        assert quote.high_52_week == 485.47
        assert quote.low_52_week == 382.61

    def test_should_not_divide_by_zero(self) -> None:
        quote = build_quote("VOO", 10, 0, 0, 0, 0)

        assert quote.change_percent == 0
        assert quote.ytd_change_percent == 0


class TestQuoteFromHistory:
    def test_should_use_last_close_before_year_start(self) -> None:
        history = daily_history("2025-12-29", [100, 101, 102, 103, 105])

        quote = quote_from_history("VOO", history, date(2026, 1, 2))

        assert quote.current_price == 105
        assert quote.previous_close == 103
        assert quote.change == pytest.approx(2)
        assert quote.change_percent == pytest.approx(1.94)
        assert quote.ytd_change_percent == pytest.approx(2.94)
        assert quote.high_52_week == 106
        assert quote.low_52_week == 99

    def test_should_use_first_close_of_year_without_prior_data(self) -> None:
        history = daily_history("2026-01-02", [200, 210, 220])

        quote = quote_from_history("QQQ", history, date(2026, 1, 4))

        assert quote.previous_close == 210
        assert quote.ytd_change_percent == pytest.approx(10.0)

    def test_should_use_price_as_previous_close_for_single_row(self) -> None:
        quote = quote_from_history("BND", daily_history("2026-03-16", [72.84]), date(2026, 3, 16))

        assert quote.previous_close == 72.84
        assert quote.change == 0

    def test_should_raise_not_found_without_closes(self) -> None:
        history = daily_history("2026-03-16", [float("nan")])

        with pytest.raises(QuoteFetchError) as exc_info:
            quote_from_history("VOO", history, date(2026, 3, 16))

        assert exc_info.value.code == "NOT_FOUND"


class TestQuoteSources:
    def test_mock_should_return_fixed_quote_for_popular_etf(self) -> None:
        quote = MockQuoteSource().get_quote("voo")

        assert quote.symbol == "VOO"
        assert quote.current_price == 477.85
        assert quote.previous_close == 475.32
        assert quote.ytd_change_percent == pytest.approx(9.12)

    def test_mock_should_be_deterministic_for_other_symbols(self) -> None:
        source = MockQuoteSource()

        first = source.get_quote("ABCD")
        second = source.get_quote("ABCD")

        assert first == second
        assert 20 <= first.current_price < 501
        assert first.low_52_week < first.current_price < first.high_52_week

    def test_mock_should_reject_invalid_symbol(self) -> None:
        with pytest.raises(QuoteFetchError) as exc_info:
            MockQuoteSource().get_quote("BRK.B")

        assert exc_info.value.code == "INVALID_SYMBOL"

    def test_hash_should_wrap_at_32_bits(self) -> None:
        assert hash_symbol("A") == 65
        assert hash_symbol("AB") == 65 * 31 + 66
        assert 0 <= hash_symbol("ABCDEFGHIJ") < 2 ** 31 + 1

    def test_should_create_configured_source(self) -> None:
        assert isinstance(create_quote_source("mock"), MockQuoteSource)
        assert isinstance(create_quote_source("yfinance"), YFinanceQuoteSource)

        with pytest.raises(ValueError):
            create_quote_source("bloomberg")


class TestRefreshResult:
    def test_should_report_status_and_message(self) -> None:
        ok = PriceRefreshResult(generation=1, requested=2)
        partial = PriceRefreshResult(generation=1, requested=3, errors={"VOO": "boom"})
        failed = PriceRefreshResult(generation=1, requested=1, errors={"VOO": "boom"})

        assert ok.status == RefreshStatus.OK
        assert ok.message is None
        assert partial.status == RefreshStatus.PARTIAL
        assert partial.message == "Failed to fetch 1 of 3 prices."
        assert failed.status == RefreshStatus.FAILED


class TestPriceService:
    def test_should_fetch_and_cache_every_symbol(self, cache_service) -> None:
        source = FakeQuoteSource({"VOO": 110, "QQQ": 220})
        service = PriceService(source, cache_service)

        result = asyncio.run(service.refresh(["VOO", "QQQ"]))

        assert result.status == RefreshStatus.OK
        assert result.prices["VOO"].current_price == 110
        assert result.prices["QQQ"].current_price == 220
        assert set(cache_service.get_price_cache()) == {"VOO", "QQQ"}

    def test_should_deduplicate_symbols(self, cache_service) -> None:
        source = FakeQuoteSource({"VOO": 110})
        service = PriceService(source, cache_service)

        result = asyncio.run(service.refresh(["voo", "VOO", " voo ", ""]))

        assert source.calls == ["VOO"]
        assert result.requested == 1

    def test_should_report_partial_failure(self, cache_service) -> None:
        source = FakeQuoteSource({"VOO": 110, "QQQ": 220}, failing={"QQQ"})
        service = PriceService(source, cache_service)

        result = asyncio.run(service.refresh(["VOO", "QQQ"]))

        assert result.status == RefreshStatus.PARTIAL
        assert result.message == "Failed to fetch 1 of 2 prices."
        assert list(result.prices) == ["VOO"]
        assert result.errors == {"QQQ": "Failed to fetch QQQ"}
        assert cache_service.get_cache_entry("QQQ") is None

    def test_should_report_total_failure(self, cache_service) -> None:
        service = PriceService(FakeQuoteSource(failing={"VOO"}), cache_service)

        result = asyncio.run(service.refresh(["VOO"]))

        assert result.status == RefreshStatus.FAILED
        assert result.prices == {}
        assert result.message == "Failed to fetch price data. Please try again later."

    def test_should_fall_back_to_cached_price(self, cache_service, make_quote) -> None:
        cache_service.update_cache("VOO", make_quote(current_price=110, previous_close=100, ytd_change_percent=10))
        service = PriceService(FakeQuoteSource(failing={"VOO"}), cache_service)

        result = asyncio.run(service.refresh(["VOO"]))

        quote = result.prices["VOO"]
        assert result.fallback_symbols == ["VOO"]
        assert "VOO" in result.errors
        assert quote.current_price == 110
        assert quote.previous_close == 100
        assert quote.change == pytest.approx(10)
        assert quote.ytd_change_percent == pytest.approx(10)

    def test_should_do_nothing_for_no_symbols(self, cache_service) -> None:
        source = FakeQuoteSource()
        service = PriceService(source, cache_service)

        result = asyncio.run(service.refresh([]))

        assert result.status == RefreshStatus.OK
        assert result.prices == {}
        assert source.calls == []
        assert service.generation == 1

    def test_should_discard_superseded_refresh(self, cache_service) -> None:
        source = BlockingQuoteSource("SLOW", prices={"SLOW": 50, "VOO": 110})
        service = PriceService(source, cache_service)

        async def scenario():
            first = asyncio.create_task(service.refresh(["SLOW"]))
            while service.generation < 1:
                await asyncio.sleep(0)
            second = await service.refresh(["VOO"])
            source.release.set()
            return await first, second

        first, second = asyncio.run(scenario())

        assert first.superseded is True
        assert first.prices == {}
        assert second.superseded is False
        assert second.prices["VOO"].current_price == 110
        assert cache_service.get_cache_entry("SLOW") is None
        assert cache_service.get_cache_entry("VOO") is not None

    def test_get_quote_should_fetch_and_cache(self, cache_service) -> None:
        source = FakeQuoteSource({"VOO": 110})
        service = PriceService(source, cache_service)

        quote = asyncio.run(service.get_quote("voo"))

        assert quote.current_price == 110
        assert cache_service.get_cache_entry("VOO").current_price == 110

    def test_get_quote_should_serve_fresh_cache_entry(self, cache_service, clock, make_quote) -> None:
        cache_service.update_cache("VOO", make_quote(current_price=105))
        source = FakeQuoteSource({"VOO": 110})
        service = PriceService(source, cache_service)

        cached = asyncio.run(service.get_quote("VOO", prefer_cache=True))
        clock.advance(minutes=10)
        refreshed = asyncio.run(service.get_quote("VOO", prefer_cache=True))

        assert cached.current_price == 105
        assert refreshed.current_price == 110
        assert source.calls == ["VOO"]

    def test_get_quote_should_reject_invalid_symbol(self, cache_service) -> None:
        service = PriceService(FakeQuoteSource(), cache_service)

        with pytest.raises(InvalidSymbolError):
            asyncio.run(service.get_quote("NOT VALID"))
