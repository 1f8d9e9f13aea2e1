from abc import ABC, abstractmethod
from dataclasses import dataclass

from core.models.indicators import IndicatorValue


@dataclass(frozen=True)
class CacheStats:
    """Cache counters"""

    hits: int
    misses: int
    size: int

    @property
    def hit_rate(self) -> float:
        total = self.hits + self.misses
        return self.hits / total if total else 0.0


class BaseCacheClient(ABC):
    """
    Abstract interface for the indicator cache

    Key -> IndicatorValue with per-entry TTL. No entry is ever returned
    past its expiry.

    Implementations:
    - InMemoryCacheClient (providers/memory/cache.py)
    - RedisCacheClient (providers/opensource/redis_client.py)
    """

    @abstractmethod
    async def connect(self) -> None:
        """Establish connection to cache service"""

    @abstractmethod
    async def get(self, key: str) -> IndicatorValue | None:
        """
        Get value by key

        Args:
            key: Cache key

        Returns:
            Cached value, or None on miss / expiry
        """

    @abstractmethod
    async def set(self, key: str, value: IndicatorValue, ttl: float) -> bool:
        """
        Set key-value with TTL

        Args:
            key: Cache key
            value: Value to store
            ttl: Time to live in seconds

        Returns:
            True if successful
        """

    @abstractmethod
    async def delete(self, key: str) -> bool:
        """Delete key, True if it existed"""

    @abstractmethod
    async def invalidate_prefix(self, prefix: str) -> int:
        """
        Delete every key starting with prefix

        Returns:
            Number of keys deleted
        """

    @abstractmethod
    async def clear(self) -> None:
        """Drop all entries"""

    @abstractmethod
    async def sweep(self) -> int:
        """
        Evict expired entries

        Returns:
            Number of entries evicted
        """

    @abstractmethod
    async def stats(self) -> CacheStats:
        """Hit/miss counters and current size"""

    @abstractmethod
    async def close(self) -> None:
        """Close connection"""
