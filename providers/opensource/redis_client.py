"""
Redis implementations of the indicator cache and last-known-good store

Values are stored as IndicatorValue JSON; TTLs are enforced by Redis.
"""

import logging

from pydantic import ValidationError
from redis.asyncio import Redis

from config.settings import get_settings
from core.interfaces.cache import BaseCacheClient, CacheStats
from core.interfaces.fallback_store import BaseFallbackStore
from core.models.indicators import IndicatorValue

logger = logging.getLogger(__name__)

SCAN_BATCH = 500


class RedisConnection:
    """Shared connect/close handling for Redis-backed components"""

    def __init__(self, url: str | None = None, key_prefix: str | None = None, client: Redis | None = None):
        settings = get_settings()
        self.url = url or settings.redis_url
        self.key_prefix = settings.REDIS_KEY_PREFIX if key_prefix is None else key_prefix
        self.client: Redis | None = client
        self._owns_client = client is None

    async def connect(self) -> None:
        """Connect to Redis"""
        if self.client is not None and not self._owns_client:
            return
        try:
            self.client = Redis.from_url(self.url, decode_responses=True)
            # Test connection
            await self.client.ping()
            logger.info(f"✓ Connected to Redis ({type(self).__name__})")
        except Exception as e:
            logger.error(f"✗ Failed to connect to Redis: {e}")
            raise

    async def close(self) -> None:
        """Close connection"""
        if self.client and self._owns_client:
            await self.client.aclose()
            self.client = None
            logger.info(f"✓ Redis connection closed ({type(self).__name__})")

    def _require_client(self) -> Redis:
        if not self.client:
            raise RuntimeError("Redis client not connected")
        return self.client

    def _decode(self, key: str, raw: str | None) -> IndicatorValue | None:
        if raw is None:
            return None
        try:
            return IndicatorValue.model_validate_json(raw)
        except ValidationError as e:
            logger.warning(f"Discarding unreadable Redis value at {key}: {e}")
            return None


class RedisCacheClient(RedisConnection, BaseCacheClient):
    """
    Redis cache implementation

    Features:
    - Shared across processes
    - Native per-key expiry (PX), so sweep() has nothing to do
    - All keys namespaced under key_prefix
    """

    def __init__(self, url: str | None = None, key_prefix: str | None = None, client: Redis | None = None):
        super().__init__(url, key_prefix, client)
        self._hits = 0
        self._misses = 0

    async def get(self, key: str) -> IndicatorValue | None:
        client = self._require_client()
        full_key = self._key(key)
        try:
            raw = await client.get(full_key)
        except Exception as e:
            logger.error(f"✗ Redis GET error: {e}")
            raise

        value = self._decode(full_key, raw)
        if value is None:
            self._misses += 1
            return None
        self._hits += 1
        return value

    async def set(self, key: str, value: IndicatorValue, ttl: float) -> bool:
        client = self._require_client()
        ttl_ms = int(ttl * 1000)
        if ttl_ms <= 0:
            return False
        try:
            return bool(await client.set(self._key(key), value.model_dump_json(), px=ttl_ms))
        except Exception as e:
            logger.error(f"✗ Redis SET error: {e}")
            raise

    async def delete(self, key: str) -> bool:
        client = self._require_client()
        try:
            return await client.delete(self._key(key)) > 0
        except Exception as e:
            logger.error(f"✗ Redis DELETE error: {e}")
            raise

    async def invalidate_prefix(self, prefix: str) -> int:
        client = self._require_client()
        keys = await self._scan(f"{self._key(prefix)}*")
        deleted = 0
        for i in range(0, len(keys), SCAN_BATCH):
            deleted += await client.delete(*keys[i : i + SCAN_BATCH])
        return deleted

    async def clear(self) -> None:
        deleted = await self.invalidate_prefix("")
        logger.info(f"✓ Cleared {deleted} Redis cache keys")

    async def sweep(self) -> int:
        # Redis expires keys itself
        return 0

    async def stats(self) -> CacheStats:
        keys = await self._scan(f"{self._key('')}*")
        return CacheStats(hits=self._hits, misses=self._misses, size=len(keys))

    async def _scan(self, pattern: str) -> list[str]:
        client = self._require_client()
        return [key async for key in client.scan_iter(match=pattern, count=SCAN_BATCH)]

    def _key(self, key: str) -> str:
        return f"{self.key_prefix}cache:{key}"


class RedisFallbackStore(RedisConnection, BaseFallbackStore):
    """
    Redis last-known-good store

    Values are kept for retention_seconds (default one week), well past
    the cache TTL.
    """

    def __init__(
        self,
        url: str | None = None,
        key_prefix: str | None = None,
        client: Redis | None = None,
        retention_seconds: int | None = None,
    ):
        super().__init__(url, key_prefix, client)
        self.retention_seconds = retention_seconds or get_settings().REDIS_LKG_TTL_SECONDS

    async def get_last_known_good(self, indicator_id: str) -> IndicatorValue | None:
        client = self._require_client()
        key = self._key(indicator_id)
        try:
            raw = await client.get(key)
        except Exception as e:
            logger.error(f"✗ Redis GET error: {e}")
            raise
        return self._decode(key, raw)

    async def save(self, indicator_id: str, value: IndicatorValue) -> None:
        client = self._require_client()
        try:
            await client.set(self._key(indicator_id), value.model_dump_json(), ex=self.retention_seconds)
        except Exception as e:
            logger.error(f"✗ Redis SET error: {e}")
            raise

    def _key(self, indicator_id: str) -> str:
        return f"{self.key_prefix}lkg:{indicator_id}"
