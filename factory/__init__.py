"""Factory package - Dependency injection for the indicator data layer"""

from .client_factory import (
    PROVIDER_ADAPTERS,
    create_cache_client,
    create_calculation_engine,
    create_fallback_store,
    create_gateway,
    create_indicator_registry,
    create_provider_adapters,
    create_rate_limiter,
)

__all__ = [
    "PROVIDER_ADAPTERS",
    "create_cache_client",
    "create_fallback_store",
    "create_provider_adapters",
    "create_rate_limiter",
    "create_indicator_registry",
    "create_gateway",
    "create_calculation_engine",
]
