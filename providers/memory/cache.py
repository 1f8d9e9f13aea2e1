"""
In-process implementation of the indicator cache

Default backend for tests and single-process deployments.
"""

import logging
import time
from collections.abc import Callable

from core.interfaces.cache import BaseCacheClient, CacheStats
from core.models.indicators import IndicatorValue

logger = logging.getLogger(__name__)


class InMemoryCacheClient(BaseCacheClient):
    """
    Dict-backed TTL cache

    Features:
    - Per-entry TTL, checked on every read (expired entries are never returned)
    - Bounded size: when full, expired entries are swept first, then the
      entry closest to expiry is evicted
    - Hit/miss counters

    All operations complete without awaiting, so they are atomic within
    the event loop.
    """

    def __init__(self, max_size: int = 15000, clock: Callable[[], float] = time.monotonic):
        if max_size < 1:
            raise ValueError(f"max_size must be >= 1, got {max_size}")
        self.max_size = max_size
        self.clock = clock
        self._entries: dict[str, tuple[IndicatorValue, float]] = {}
        self._hits = 0
        self._misses = 0

    async def connect(self) -> None:
        logger.info(f"✓ In-memory cache ready (max_size={self.max_size})")

    async def get(self, key: str) -> IndicatorValue | None:
        entry = self._entries.get(key)
        if entry is None:
            self._misses += 1
            return None

        value, expires_at = entry
        if self.clock() >= expires_at:
            del self._entries[key]
            self._misses += 1
            return None

        self._hits += 1
        return value

    async def set(self, key: str, value: IndicatorValue, ttl: float) -> bool:
        if ttl <= 0:
            return False

        if key not in self._entries and len(self._entries) >= self.max_size:
            self._make_room()

        self._entries[key] = (value, self.clock() + ttl)
        return True

    async def delete(self, key: str) -> bool:
        return self._entries.pop(key, None) is not None

    async def invalidate_prefix(self, prefix: str) -> int:
        keys = [key for key in self._entries if key.startswith(prefix)]
        for key in keys:
            del self._entries[key]
        return len(keys)

    async def clear(self) -> None:
        self._entries.clear()

    async def sweep(self) -> int:
        return self._evict_expired()

    async def stats(self) -> CacheStats:
        return CacheStats(hits=self._hits, misses=self._misses, size=len(self._entries))

    async def close(self) -> None:
        self._entries.clear()

    def _evict_expired(self) -> int:
        now = self.clock()
        expired = [key for key, (_, expires_at) in self._entries.items() if now >= expires_at]
        for key in expired:
            del self._entries[key]
        if expired:
            logger.debug(f"Evicted {len(expired)} expired cache entries")
        return len(expired)

    def _make_room(self) -> None:
        if self._evict_expired():
            return
        oldest = min(self._entries, key=lambda key: self._entries[key][1])
        del self._entries[oldest]
        logger.debug(f"Cache full ({self.max_size}), evicted {oldest}")

    def __len__(self) -> int:
        return len(self._entries)
