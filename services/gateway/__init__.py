"""
Provider gateway module

Exports:
- ProviderGateway: cached, coalesced, rate-limited, circuit-broken fetches
- RateLimiter: per-provider sliding window
- CircuitBreaker, CircuitBreakerStore, CircuitState
- GatewayMetrics
"""

from services.gateway.circuit_breaker import CircuitBreaker, CircuitBreakerStore, CircuitState
from services.gateway.gateway import ProviderGateway, cache_key
from services.gateway.metrics import GatewayMetrics
from services.gateway.rate_limiter import RateLimiter

__all__ = [
    "ProviderGateway",
    "RateLimiter",
    "CircuitBreaker",
    "CircuitBreakerStore",
    "CircuitState",
    "GatewayMetrics",
    "cache_key",
]
