"""
Unit tests for ProviderGateway.fetch_many

Tests request merging, priority ordering, chunk pacing and native batch calls
"""

import asyncio
from unittest.mock import AsyncMock, patch

import pytest

from core.errors import UnknownIndicatorError
from core.models.indicators import FetchRequest, IndicatorDescriptor, Priority, ProviderId, ValueSource
from tests.unit.fakes import FakeAdapter


@pytest.fixture
def crypto_registry(registry):
    registry.register(
        IndicatorDescriptor(
            id="ETH",
            category="crypto",
            provider_symbols={ProviderId.BINANCE: "ETH/USDT", ProviderId.COINBASE: "ETH/USD"},
        )
    )
    registry.register(
        IndicatorDescriptor(
            id="SOL",
            category="crypto",
            provider_symbols={ProviderId.BINANCE: "SOL/USDT", ProviderId.COINBASE: "SOL/USD"},
        )
    )
    return registry


@pytest.fixture
def batch_binance():
    return FakeAdapter(
        ProviderId.BINANCE,
        quotes={"BTC/USDT": (60000.0, 59000.0), "ETH/USDT": (3000.0, 2900.0)},
        supports_batch=True,
    )


@pytest.fixture
def batch_coinbase():
    return FakeAdapter(
        ProviderId.COINBASE,
        quotes={"BTC/USD": 60100.0, "ETH/USD": 3010.0, "SOL/USD": 150.0},
        confidence=0.85,
        supports_batch=True,
    )


@pytest.mark.unit
class TestFetchMany:
    @pytest.mark.asyncio
    async def test_results_in_request_order(self, make_gateway, fred):
        gateway = make_gateway([fred])

        results = await gateway.fetch_many(["RRP", "WALCL", "TGA"])

        assert list(results) == ["RRP", "WALCL", "TGA"]
        assert all(result.ok for result in results.values())
        assert results["TGA"].value.current == 800.0

    @pytest.mark.asyncio
    async def test_duplicates_merged(self, make_gateway, fred):
        gateway = make_gateway([fred])

        results = await gateway.fetch_many(["WALCL", "WALCL", FetchRequest(indicator_id="WALCL")])

        assert list(results) == ["WALCL"]
        assert fred.calls == ["WALCL"]

    @pytest.mark.asyncio
    async def test_cache_hits_not_refetched(self, make_gateway, fred):
        gateway = make_gateway([fred])
        await gateway.fetch("WALCL")

        results = await gateway.fetch_many(["WALCL", "TGA"])

        assert results["WALCL"].value.source == ValueSource.CACHE
        assert fred.calls == ["WALCL", "WTREGEN"]

    @pytest.mark.asyncio
    async def test_force_refresh_per_request(self, make_gateway, fred):
        gateway = make_gateway([fred])
        await gateway.fetch_many(["WALCL", "TGA"])

        results = await gateway.fetch_many(
            [FetchRequest(indicator_id="WALCL", force_refresh=True), "TGA"]
        )

        assert results["WALCL"].value.source == ValueSource.RAW_PROVIDER
        assert results["TGA"].value.source == ValueSource.CACHE

    @pytest.mark.asyncio
    async def test_errors_are_per_indicator(self, make_gateway, fred):
        gateway = make_gateway([fred])

        results = await gateway.fetch_many(["WALCL", "NOPE", "NET_LIQ"])

        assert results["WALCL"].ok
        assert isinstance(results["NOPE"].error, UnknownIndicatorError)
        assert not results["NET_LIQ"].has_value

    @pytest.mark.asyncio
    async def test_higher_priority_fetched_first(self, make_gateway, fred):
        gateway = make_gateway([fred])

        results = await gateway.fetch_many(
            [
                FetchRequest(indicator_id="WALCL", priority=Priority.LOW),
                FetchRequest(indicator_id="TGA", priority=Priority.CRITICAL),
            ]
        )

        assert fred.calls == ["WTREGEN", "WALCL"]
        assert list(results) == ["WALCL", "TGA"]

    @pytest.mark.asyncio
    async def test_duplicate_keeps_highest_priority(self, make_gateway, fred):
        gateway = make_gateway([fred])

        await gateway.fetch_many(
            [
                FetchRequest(indicator_id="WALCL", priority=Priority.LOW),
                FetchRequest(indicator_id="TGA", priority=Priority.HIGH),
                FetchRequest(indicator_id="WALCL", priority=Priority.CRITICAL),
            ]
        )

        assert fred.calls == ["WALCL", "WTREGEN"]


@pytest.mark.unit
class TestChunking:
    def test_chunk_size_from_rate_limit(self, make_gateway, fred):
        gateway = make_gateway([fred], limits={ProviderId.FRED: 8})

        assert gateway.chunk_size(ProviderId.FRED, Priority.NORMAL) == 2

    def test_chunk_size_minimum_one(self, make_gateway, fred):
        gateway = make_gateway([fred], limits={ProviderId.FRED: 2})

        assert gateway.chunk_size(ProviderId.FRED, Priority.CRITICAL) == 1

    def test_chunk_size_by_priority(self, make_gateway, fred):
        gateway = make_gateway([fred])

        assert gateway.chunk_size(ProviderId.FRED, Priority.CRITICAL) == 5
        assert gateway.chunk_size(ProviderId.FRED, Priority.LOW) == 3
        assert gateway.chunk_size(None, Priority.HIGH) == 5

    @pytest.mark.asyncio
    async def test_inter_chunk_delay(self, make_gateway, registry, fred):
        for series in ("DGS10", "DGS2"):
            registry.register(IndicatorDescriptor(id=series, category="liquidity"))
            fred.quotes[series] = 4.0
        gateway = make_gateway(
            [fred], limits={ProviderId.FRED: 8}, inter_chunk_delays={ProviderId.FRED: 1.0}
        )

        with patch("services.gateway.gateway.asyncio.sleep", new=AsyncMock()) as sleep:
            results = await gateway.fetch_many(["WALCL", "TGA", "RRP", "DGS10", "DGS2"])

        assert all(result.ok for result in results.values())
        assert sleep.await_count == 2
        sleep.assert_awaited_with(1.0)


@pytest.mark.unit
class TestNativeBatch:
    @pytest.mark.asyncio
    async def test_one_batch_call_per_chunk(self, make_gateway, crypto_registry, batch_binance):
        gateway = make_gateway([batch_binance])

        results = await gateway.fetch_many(["BTC", "ETH"])

        assert batch_binance.batch_calls == [["BTC/USDT", "ETH/USDT"]]
        assert batch_binance.calls == []
        assert results["ETH"].value.current == 3000.0
        assert results["ETH"].value.source == ValueSource.RAW_PROVIDER
        assert gateway.rate_limiter.usage(ProviderId.BINANCE) == 0

    @pytest.mark.asyncio
    async def test_batch_consumes_one_rate_limit_slot(self, make_gateway, crypto_registry, batch_binance):
        gateway = make_gateway([batch_binance], limits={ProviderId.BINANCE: 100})

        await gateway.fetch_many(["BTC", "ETH"])

        assert gateway.rate_limiter.usage(ProviderId.BINANCE) == 1

    @pytest.mark.asyncio
    async def test_batch_results_cached(self, make_gateway, crypto_registry, batch_binance):
        gateway = make_gateway([batch_binance])
        await gateway.fetch_many(["BTC", "ETH"])

        result = await gateway.fetch("ETH")

        assert result.value.source == ValueSource.CACHE

    @pytest.mark.asyncio
    async def test_missing_symbol_falls_back_individually(
        self, make_gateway, crypto_registry, batch_binance, batch_coinbase
    ):
        gateway = make_gateway([batch_binance, batch_coinbase])

        results = await gateway.fetch_many(["BTC", "ETH", "SOL"])

        assert results["BTC"].value.provider == "binance"
        assert results["SOL"].value.provider == "coinbase"
        assert results["SOL"].value.source == ValueSource.FALLBACK
        assert batch_binance.calls == ["SOL/USDT"]
        assert batch_coinbase.calls == ["SOL/USD"]

    @pytest.mark.asyncio
    async def test_failed_batch_falls_back_to_chain(
        self, make_gateway, crypto_registry, batch_binance, batch_coinbase
    ):
        batch_binance.fail_with = RuntimeError("exchange exploded")
        gateway = make_gateway([batch_binance, batch_coinbase], max_retries=1)

        results = await gateway.fetch_many(["BTC", "ETH"])

        assert {result.value.provider for result in results.values()} == {"coinbase"}

    @pytest.mark.asyncio
    async def test_open_breaker_skips_batch(self, make_gateway, crypto_registry, batch_binance, batch_coinbase):
        gateway = make_gateway([batch_binance, batch_coinbase])
        for _ in range(3):
            gateway.breakers.get("binance").record_failure()

        results = await gateway.fetch_many(["BTC", "ETH"])

        assert batch_binance.batch_calls == []
        assert results["BTC"].value.provider == "coinbase"

    @pytest.mark.asyncio
    async def test_indicator_scope_disables_batch(self, make_gateway, crypto_registry, batch_binance):
        gateway = make_gateway([batch_binance], breaker_scope="indicator")

        await gateway.fetch_many(["BTC", "ETH"])

        assert batch_binance.batch_calls == []
        assert sorted(batch_binance.calls) == ["BTC/USDT", "ETH/USDT"]

    @pytest.mark.asyncio
    async def test_concurrent_fetch_shares_batch(self, make_gateway, crypto_registry, batch_binance):
        batch_binance.delay = 0.05
        gateway = make_gateway([batch_binance])

        many, single = await asyncio.gather(gateway.fetch_many(["BTC", "ETH"]), gateway.fetch("BTC"))

        requested = batch_binance.calls + [s for batch in batch_binance.batch_calls for s in batch]
        assert requested.count("BTC/USDT") == 1
        assert many["BTC"].value.current == single.value.current == 60000.0
