"""
Unit tests for the sliding-window RateLimiter
"""

import asyncio

import pytest

from core.errors import TransientProviderError
from core.models.indicators import IndicatorDescriptor, ProviderId
from services.gateway.rate_limiter import RateLimiter
from tests.unit.fakes import FakeClock


@pytest.mark.unit
class TestRateLimiter:
    def test_unconfigured_provider_is_unlimited(self):
        limiter = RateLimiter()

        assert limiter.allow(ProviderId.FRED) is True
        assert limiter.remaining(ProviderId.FRED) is None
        assert limiter.limit_for(ProviderId.FRED) is None

    def test_denies_when_window_full(self):
        clock = FakeClock()
        limiter = RateLimiter({ProviderId.FRED: 2}, window_seconds=60, clock=clock)

        limiter.record(ProviderId.FRED)
        limiter.record(ProviderId.FRED)

        assert limiter.allow(ProviderId.FRED) is False
        assert limiter.remaining(ProviderId.FRED) == 0

    def test_allow_does_not_consume(self):
        limiter = RateLimiter({ProviderId.FRED: 1})

        assert limiter.allow(ProviderId.FRED)
        assert limiter.allow(ProviderId.FRED)
        assert limiter.usage(ProviderId.FRED) == 0

    def test_slots_free_up_after_window(self):
        clock = FakeClock()
        limiter = RateLimiter({ProviderId.FRED: 2}, window_seconds=60, clock=clock)
        limiter.record(ProviderId.FRED)
        clock.advance(30)
        limiter.record(ProviderId.FRED)

        clock.advance(30)
        assert limiter.usage(ProviderId.FRED) == 1
        assert limiter.allow(ProviderId.FRED)

        clock.advance(30)
        assert limiter.remaining(ProviderId.FRED) == 2

    def test_enum_and_string_keys_share_window(self):
        limiter = RateLimiter({"fred": 1})
        limiter.record(ProviderId.FRED)

        assert limiter.allow("fred") is False
        assert limiter.limit_for(ProviderId.FRED) == 1

    def test_try_acquire_reserves_up_to_limit(self):
        clock = FakeClock()
        limiter = RateLimiter({ProviderId.BINANCE: 3}, window_seconds=60, clock=clock)

        slots = [limiter.try_acquire(ProviderId.BINANCE) for _ in range(5)]

        assert slots[:3] == [1000.0] * 3
        assert slots[3:] == [None, None]
        assert limiter.usage(ProviderId.BINANCE) == 3

    def test_release_returns_slot(self):
        clock = FakeClock()
        limiter = RateLimiter({ProviderId.FRED: 1}, window_seconds=60, clock=clock)
        slot = limiter.try_acquire(ProviderId.FRED)

        limiter.release(ProviderId.FRED, slot)

        assert limiter.usage(ProviderId.FRED) == 0
        assert limiter.try_acquire(ProviderId.FRED) is not None

    def test_release_after_eviction_is_harmless(self):
        clock = FakeClock()
        limiter = RateLimiter({ProviderId.FRED: 2}, window_seconds=60, clock=clock)
        slot = limiter.try_acquire(ProviderId.FRED)
        clock.advance(61)
        limiter.try_acquire(ProviderId.FRED)

        limiter.release(ProviderId.FRED, slot)

        assert limiter.usage(ProviderId.FRED) == 1

    def test_unlimited_try_acquire(self):
        limiter = RateLimiter()

        assert limiter.try_acquire(ProviderId.FRED) is not None
        limiter.release(ProviderId.FRED, 0.0)

    def test_record_keeps_every_timestamp_in_window(self):
        clock = FakeClock()
        limiter = RateLimiter({ProviderId.BINANCE: 3}, window_seconds=60, clock=clock)
        for _ in range(5):
            limiter.record(ProviderId.BINANCE)

        assert limiter.usage(ProviderId.BINANCE) == 5
        assert limiter.remaining(ProviderId.BINANCE) == 0

        clock.advance(60)
        assert limiter.usage(ProviderId.BINANCE) == 0

    def test_configure_rejects_non_positive_limit(self):
        with pytest.raises(ValueError):
            RateLimiter({ProviderId.FRED: 0})

    def test_snapshot_and_reset(self):
        limiter = RateLimiter({ProviderId.FRED: 5, ProviderId.BINANCE: 10})
        limiter.record(ProviderId.FRED)

        assert limiter.snapshot() == {"fred": 4, "binance": 10}

        limiter.reset()
        assert limiter.snapshot() == {"fred": 5, "binance": 10}


@pytest.mark.unit
class TestGatewayRateLimiting:
    @pytest.mark.asyncio
    async def test_concurrent_burst_never_exceeds_limit(self, make_gateway, registry, fred):
        for series in ("DGS10", "DGS2", "T10YIE"):
            registry.register(IndicatorDescriptor(id=series, category="liquidity"))
            fred.quotes[series] = 4.0
        fred.delay = 0.02
        gateway = make_gateway([fred], limits={ProviderId.FRED: 2})
        ids = ["WALCL", "TGA", "RRP", "DGS10", "DGS2", "T10YIE"]

        results = await asyncio.gather(*(gateway.fetch(i) for i in ids))

        assert len(fred.calls) == 2
        assert sum(result.ok for result in results) == 2
        assert gateway.rate_limiter.usage(ProviderId.FRED) == 2
        assert gateway.metrics.counters["rate_limit_skips"] == 4

    @pytest.mark.asyncio
    async def test_failed_attempt_does_not_consume_slot(self, make_gateway, fred):
        fred.fail_with = TransientProviderError("fred", "503")
        gateway = make_gateway([fred], limits={ProviderId.FRED: 2})

        await gateway.fetch("WALCL")

        assert gateway.rate_limiter.usage(ProviderId.FRED) == 0

    @pytest.mark.asyncio
    async def test_rejection_does_not_consume_slot(self, make_gateway, fred):
        fred.quotes.pop("WALCL")
        gateway = make_gateway([fred], limits={ProviderId.FRED: 2})

        await gateway.fetch("WALCL")

        assert gateway.rate_limiter.usage(ProviderId.FRED) == 0
