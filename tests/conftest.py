"""
Pytest configuration for test suite

Markers:
- unit: Fast unit tests (no external dependencies)
- integration: Tests against live providers / Redis (requires network or Docker)
- slow: Slow-running tests (>10 seconds)

Shared fixtures build a small liquidity + crypto indicator graph:
    WALCL, TGA, RRP (liquidity, FRED) -> NET_LIQ = WALCL - TGA - RRP
    BTC (crypto, Binance then Coinbase)
"""

import pytest

from core.models.indicators import IndicatorDescriptor, ProviderId, SourceKind
from domain.indicators.registry import IndicatorRegistry
from providers.memory.cache import InMemoryCacheClient
from providers.memory.fallback_store import InMemoryFallbackStore
from services.gateway.circuit_breaker import CircuitBreakerStore
from services.gateway.gateway import ProviderGateway
from services.gateway.rate_limiter import RateLimiter
from tests.unit.fakes import FakeAdapter, FakeClock


def pytest_configure(config):
    """Register custom markers"""
    config.addinivalue_line("markers", "unit: Fast unit tests (no dependencies)")
    config.addinivalue_line(
        "markers", "integration: Integration tests (requires network or Docker)"
    )
    config.addinivalue_line("markers", "slow: Slow tests (>10 seconds)")


DEFAULT_CHAINS = {
    "liquidity": [ProviderId.FRED],
    "crypto": [ProviderId.BINANCE, ProviderId.COINBASE],
}


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def registry():
    return IndicatorRegistry(
        [
            IndicatorDescriptor(id="WALCL", category="liquidity"),
            IndicatorDescriptor(id="TGA", category="liquidity", symbol="WTREGEN"),
            IndicatorDescriptor(id="RRP", category="liquidity", symbol="RRPONTSYD"),
            IndicatorDescriptor(
                id="NET_LIQ",
                category="liquidity",
                source_kind=SourceKind.CALCULATED,
                dependencies=["WALCL", "TGA", "RRP"],
                transform="net_liquidity",
            ),
            IndicatorDescriptor(
                id="BTC",
                category="crypto",
                provider_symbols={ProviderId.BINANCE: "BTC/USDT", ProviderId.COINBASE: "BTC/USD"},
            ),
        ]
    )


@pytest.fixture
def fred():
    return FakeAdapter(
        ProviderId.FRED,
        quotes={"WALCL": (7000.0, 6900.0), "WTREGEN": (800.0, 850.0), "RRPONTSYD": (1150.0, 1200.0)},
        confidence=0.95,
    )


@pytest.fixture
def binance():
    return FakeAdapter(ProviderId.BINANCE, quotes={"BTC/USDT": (60000.0, 59000.0)})


@pytest.fixture
def coinbase():
    return FakeAdapter(ProviderId.COINBASE, quotes={"BTC/USD": (60100.0, 59100.0)}, confidence=0.85)


@pytest.fixture
def cache(clock):
    return InMemoryCacheClient(max_size=100, clock=clock)


@pytest.fixture
def fallback_store():
    return InMemoryFallbackStore()


@pytest.fixture
def make_gateway(registry, cache, fallback_store, clock):
    """Gateway builder with zero backoff and a fake clock for breakers/limiter"""

    def _make(adapters, chains=None, limits=None, **kwargs):
        kwargs.setdefault("retry_base_delay", 0.0)
        kwargs.setdefault("fallback_store", fallback_store)
        return ProviderGateway(
            registry,
            {adapter.provider_id: adapter for adapter in adapters},
            cache,
            chains or DEFAULT_CHAINS,
            rate_limiter=RateLimiter(limits or {}, window_seconds=60, clock=clock),
            breakers=kwargs.pop("breakers", None)
            or CircuitBreakerStore(failure_threshold=3, cooldown_seconds=60, clock=clock),
            **kwargs,
        )

    return _make
