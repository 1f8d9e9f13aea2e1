"""Interfaces module - Abstract base classes for providers, cache and fallback storage"""

from .cache import BaseCacheClient, CacheStats
from .fallback_store import BaseFallbackStore
from .provider import BaseProviderAdapter

__all__ = [
    "BaseProviderAdapter",
    "BaseCacheClient",
    "BaseFallbackStore",
    "CacheStats",
]
