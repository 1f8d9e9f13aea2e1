"""
Client factory - Auto-create clients based on configuration

Builds the gateway object graph from gateway.yaml / indicators.yaml / .env
"""

import logging
from collections.abc import Callable

from config.loader import (
    ProviderConfig,
    load_fallback_chains,
    load_indicator_descriptors,
    load_provider_configs,
)
from config.settings import get_settings
from core.interfaces.cache import BaseCacheClient
from core.interfaces.fallback_store import BaseFallbackStore
from core.interfaces.provider import BaseProviderAdapter
from core.models.indicators import IndicatorDescriptor, ProviderId
from domain.indicators.registry import IndicatorRegistry
from domain.indicators.transforms import TransformRegistry
from services.calculation_engine.engine import CalculationEngine
from services.gateway.circuit_breaker import CircuitBreakerStore
from services.gateway.gateway import ProviderGateway
from services.gateway.rate_limiter import RateLimiter

logger = logging.getLogger(__name__)


def _create_fred(config: ProviderConfig) -> BaseProviderAdapter:
    from providers.fred.rest_api import FredRestAPI

    return FredRestAPI(base_url=config.base_url)


def _create_binance(config: ProviderConfig) -> BaseProviderAdapter:
    from providers.binance.rest_api import BinanceTickerAPI

    return BinanceTickerAPI()


def _create_coinbase(config: ProviderConfig) -> BaseProviderAdapter:
    from providers.coinbase.rest_api import CoinbaseTickerAPI

    return CoinbaseTickerAPI()


# Closed set: every ProviderId has exactly one adapter
PROVIDER_ADAPTERS: dict[ProviderId, Callable[[ProviderConfig], BaseProviderAdapter]] = {
    ProviderId.FRED: _create_fred,
    ProviderId.BINANCE: _create_binance,
    ProviderId.COINBASE: _create_coinbase,
}


def create_cache_client(backend: str | None = None) -> BaseCacheClient:
    """
    Create cache client based on cache backend config

    Args:
        backend: "memory" or "redis" (default: settings.cache_backend)

    Returns:
        BaseCacheClient: InMemoryCacheClient or RedisCacheClient

    Examples:
        >>> # gateway.yaml: cache.backend=memory
        >>> cache = create_cache_client()  # Returns InMemoryCacheClient
        >>>
        >>> # .env: CACHE_BACKEND=redis
        >>> cache = create_cache_client()  # Returns RedisCacheClient
    """
    settings = get_settings()
    backend = (backend or settings.cache_backend).lower()

    if backend == "memory":
        from providers.memory.cache import InMemoryCacheClient

        logger.info("✓ Creating InMemoryCacheClient")
        return InMemoryCacheClient(max_size=settings.CACHE_MAX_SIZE)

    elif backend == "redis":
        from providers.opensource.redis_client import RedisCacheClient

        logger.info("✓ Creating RedisCacheClient")
        return RedisCacheClient()

    else:
        raise ValueError(f"Unsupported cache backend: {backend}. Supported: memory, redis")


def create_fallback_store(backend: str | None = None) -> BaseFallbackStore:
    """
    Create last-known-good store (same backend as the cache by default)

    Returns:
        BaseFallbackStore: InMemoryFallbackStore or RedisFallbackStore
    """
    backend = (backend or get_settings().cache_backend).lower()

    if backend == "memory":
        from providers.memory.fallback_store import InMemoryFallbackStore

        logger.info("✓ Creating InMemoryFallbackStore")
        return InMemoryFallbackStore()

    elif backend == "redis":
        from providers.opensource.redis_client import RedisFallbackStore

        logger.info("✓ Creating RedisFallbackStore")
        return RedisFallbackStore()

    else:
        raise ValueError(f"Unsupported fallback store backend: {backend}. Supported: memory, redis")


def create_provider_adapters(
    configs: dict[ProviderId, ProviderConfig] | None = None,
) -> dict[ProviderId, BaseProviderAdapter]:
    """
    Create adapters for every enabled provider

    Reads from: config/providers/gateway.yaml (providers section)

    Examples:
        >>> adapters = create_provider_adapters()
        >>> sorted(p.value for p in adapters)
        ['binance', 'coinbase', 'fred']
    """
    configs = load_provider_configs() if configs is None else configs

    adapters = {}
    for provider_id, config in configs.items():
        if not config.enabled:
            continue
        adapters[provider_id] = PROVIDER_ADAPTERS[provider_id](config)
        logger.info(f"Creating {provider_id.value} adapter")

    if not adapters:
        raise ValueError("No provider adapters created. Check config/providers/gateway.yaml")

    logger.info(f"✓ Created {len(adapters)} provider adapters: {[p.value for p in adapters]}")
    return adapters


def create_rate_limiter(configs: dict[ProviderId, ProviderConfig]) -> RateLimiter:
    """Sliding windows for providers that declare a rate_limit"""
    limiter = RateLimiter()
    for provider_id, config in configs.items():
        if config.rate_limit is not None:
            limiter.configure(
                provider_id,
                config.rate_limit.requests_per_window,
                config.rate_limit.window_seconds,
            )
    return limiter


def create_indicator_registry(
    descriptors: list[IndicatorDescriptor] | None = None,
) -> IndicatorRegistry:
    """
    Registry populated from indicators.yaml

    Raises:
        CyclicDependencyError: If the configured graph has a cycle
    """
    descriptors = load_indicator_descriptors() if descriptors is None else descriptors
    registry = IndicatorRegistry(descriptors)
    logger.info(f"✓ Registered {len(registry)} indicators ({len(registry.categories())} categories)")
    return registry


def create_gateway(
    registry: IndicatorRegistry,
    cache: BaseCacheClient,
    fallback_store: BaseFallbackStore | None = None,
    adapters: dict[ProviderId, BaseProviderAdapter] | None = None,
    provider_configs: dict[ProviderId, ProviderConfig] | None = None,
) -> ProviderGateway:
    """
    Create the provider gateway with settings-driven resilience

    Examples:
        >>> registry = create_indicator_registry()
        >>> cache = create_cache_client()
        >>> gateway = create_gateway(registry, cache, create_fallback_store())
        >>> result = await gateway.fetch("WALCL")
    """
    settings = get_settings()
    provider_configs = load_provider_configs() if provider_configs is None else provider_configs
    adapters = create_provider_adapters(provider_configs) if adapters is None else adapters

    gateway = ProviderGateway(
        registry,
        adapters,
        cache,
        load_fallback_chains(),
        rate_limiter=create_rate_limiter(provider_configs),
        breakers=CircuitBreakerStore(
            failure_threshold=settings.CIRCUIT_BREAKER_THRESHOLD,
            cooldown_seconds=settings.CIRCUIT_BREAKER_COOLDOWN_SECONDS,
        ),
        fallback_store=fallback_store,
        default_ttl_seconds=settings.CACHE_DEFAULT_TTL_SECONDS,
        max_retries=settings.RETRY_MAX_ATTEMPTS,
        retry_base_delay=settings.RETRY_BASE_DELAY_SECONDS,
        request_timeout=settings.REQUEST_TIMEOUT_SECONDS,
        fallback_confidence_penalty=settings.FALLBACK_CONFIDENCE_PENALTY,
        breaker_scope=settings.CIRCUIT_BREAKER_SCOPE,
        inter_chunk_delays={
            provider_id: config.inter_chunk_delay_seconds for provider_id, config in provider_configs.items()
        },
    )
    logger.info(f"✓ Creating ProviderGateway ({len(adapters)} adapters)")
    return gateway


def create_calculation_engine(
    gateway: ProviderGateway,
    transforms: TransformRegistry | None = None,
) -> CalculationEngine:
    """
    Create the calculation engine sharing the gateway's registry, cache and store
    """
    settings = get_settings()
    logger.info("✓ Creating CalculationEngine")
    return CalculationEngine(
        gateway,
        gateway.registry,
        gateway.cache,
        transforms=transforms,
        fallback_store=gateway.fallback_store,
        cache_ttl_seconds=settings.CALCULATION_CACHE_TTL_SECONDS,
        fallback_confidence_penalty=settings.FALLBACK_CONFIDENCE_PENALTY,
    )
