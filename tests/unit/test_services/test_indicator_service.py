"""
Unit tests for IndicatorService wiring, warm-up and shutdown
"""

import signal
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from core.models.indicators import ValueSource
from services.calculation_engine import CalculationEngine
from services.indicator_service.main import IndicatorService, signal_handler


@pytest.fixture
def service(make_gateway, registry, cache, fallback_store, fred):
    gateway = make_gateway([fred])
    settings = MagicMock()
    settings.WARMUP_INDICATORS = ["WALCL", "NET_LIQ"]
    settings.HEALTH_LOG_INTERVAL_SECONDS = 60
    settings.CACHE_SWEEP_INTERVAL_SECONDS = 30
    settings.cache_backend = "memory"

    with (
        patch("services.indicator_service.main.get_settings", return_value=settings),
        patch("services.indicator_service.main.create_indicator_registry", return_value=registry),
        patch("services.indicator_service.main.create_cache_client", return_value=cache),
        patch("services.indicator_service.main.create_fallback_store", return_value=fallback_store),
        patch("services.indicator_service.main.create_gateway", return_value=gateway),
        patch(
            "services.indicator_service.main.create_calculation_engine",
            side_effect=lambda gw: CalculationEngine(gw, registry, cache, fallback_store=fallback_store),
        ),
    ):
        yield IndicatorService()


@pytest.mark.unit
class TestIndicatorService:
    @pytest.mark.asyncio
    async def test_resolve_calculated(self, service):
        result = await service.resolve("NET_LIQ")

        assert result.ok
        assert result.value.current == 5050.0
        assert result.value.source == ValueSource.CALCULATED

    @pytest.mark.asyncio
    async def test_warm_up_populates_cache(self, service, fred):
        results = await service.warm_up()

        assert set(results) == {"WALCL", "NET_LIQ"}
        assert all(result.ok for result in results.values())

        calls = len(fred.calls)
        cached = await service.resolve("NET_LIQ")

        assert cached.value.source == ValueSource.CACHE
        assert len(fred.calls) == calls

    @pytest.mark.asyncio
    async def test_warm_up_nothing_configured(self, service):
        service.settings.WARMUP_INDICATORS = []

        assert await service.warm_up() == {}

    @pytest.mark.asyncio
    async def test_stop_closes_adapters(self, service, fred):
        await service.stop()

        assert not service.running
        assert fred.closed
        assert not service.reporter.running

    @pytest.mark.asyncio
    async def test_start_failure_still_stops(self, service, fred):
        service.cache.connect = AsyncMock(side_effect=ConnectionError("redis down"))

        await service.start()

        assert not service.running
        assert fred.closed


@pytest.mark.unit
class TestSignalHandler:
    def test_handler_stops_service(self):
        service = MagicMock(running=True)

        signal_handler(service)(signal.SIGTERM, None)

        assert service.running is False
