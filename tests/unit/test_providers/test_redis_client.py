"""
Unit tests for Redis cache and last-known-good store (mocked redis client)
"""

from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from providers.opensource.redis_client import RedisCacheClient, RedisFallbackStore
from tests.unit.fakes import make_value


def scan_results(keys):
    """scan_iter stand-in returning an async iterator over keys"""

    async def iterate():
        for key in keys:
            yield key

    return MagicMock(side_effect=lambda match=None, count=None: iterate())


@pytest.fixture(autouse=True)
def settings():
    with patch("providers.opensource.redis_client.get_settings") as mock_settings:
        mock_settings.return_value = MagicMock(
            redis_url="redis://localhost:6379/0",
            REDIS_KEY_PREFIX="idl:",
            REDIS_LKG_TTL_SECONDS=604800,
        )
        yield mock_settings


@pytest.fixture
def redis_client():
    client = MagicMock()
    client.get = AsyncMock(return_value=None)
    client.set = AsyncMock(return_value=True)
    client.delete = AsyncMock(return_value=1)
    client.ping = AsyncMock(return_value=True)
    client.aclose = AsyncMock()
    return client


@pytest.mark.unit
class TestRedisCacheClient:
    @pytest.mark.asyncio
    async def test_set_uses_prefixed_key_and_millisecond_ttl(self, redis_client):
        cache = RedisCacheClient(client=redis_client)
        value = make_value("WALCL", 7000.0)

        assert await cache.set("indicator:WALCL", value, ttl=1.5) is True

        redis_client.set.assert_awaited_once_with(
            "idl:cache:indicator:WALCL", value.model_dump_json(), px=1500
        )

    @pytest.mark.asyncio
    async def test_get_decodes_value(self, redis_client):
        value = make_value("WALCL", 7000.0)
        redis_client.get.return_value = value.model_dump_json()
        cache = RedisCacheClient(client=redis_client)

        assert await cache.get("indicator:WALCL") == value

    @pytest.mark.asyncio
    async def test_unreadable_value_is_a_miss(self, redis_client):
        redis_client.get.return_value = "{not json"
        cache = RedisCacheClient(client=redis_client)

        assert await cache.get("indicator:WALCL") is None

    @pytest.mark.asyncio
    async def test_non_positive_ttl_not_stored(self, redis_client):
        cache = RedisCacheClient(client=redis_client)

        assert await cache.set("k", make_value("X", 1.0), ttl=0) is False
        redis_client.set.assert_not_called()

    @pytest.mark.asyncio
    async def test_delete(self, redis_client):
        cache = RedisCacheClient(client=redis_client)

        assert await cache.delete("indicator:WALCL") is True
        redis_client.delete.assert_awaited_once_with("idl:cache:indicator:WALCL")

    @pytest.mark.asyncio
    async def test_invalidate_prefix(self, redis_client):
        redis_client.scan_iter = scan_results(["idl:cache:calc:A", "idl:cache:calc:B"])
        redis_client.delete.return_value = 2
        cache = RedisCacheClient(client=redis_client)

        assert await cache.invalidate_prefix("calc:") == 2

        redis_client.scan_iter.assert_called_once_with(match="idl:cache:calc:*", count=500)
        redis_client.delete.assert_awaited_once_with("idl:cache:calc:A", "idl:cache:calc:B")

    @pytest.mark.asyncio
    async def test_stats(self, redis_client):
        redis_client.scan_iter = scan_results(["idl:cache:indicator:A"])
        redis_client.get.return_value = None
        cache = RedisCacheClient(client=redis_client)
        await cache.get("indicator:B")

        stats = await cache.stats()

        assert (stats.hits, stats.misses, stats.size) == (0, 1, 1)

    @pytest.mark.asyncio
    async def test_sweep_is_noop(self, redis_client):
        assert await RedisCacheClient(client=redis_client).sweep() == 0

    @pytest.mark.asyncio
    async def test_requires_connection(self):
        cache = RedisCacheClient()

        with pytest.raises(RuntimeError, match="not connected"):
            await cache.get("k")

    @pytest.mark.asyncio
    async def test_connect_and_close(self, redis_client):
        with patch("providers.opensource.redis_client.Redis.from_url", return_value=redis_client) as from_url:
            cache = RedisCacheClient()
            await cache.connect()
            await cache.close()

        from_url.assert_called_once_with("redis://localhost:6379/0", decode_responses=True)
        redis_client.ping.assert_awaited_once()
        redis_client.aclose.assert_awaited_once()
        assert cache.client is None

    @pytest.mark.asyncio
    async def test_errors_propagate(self, redis_client):
        redis_client.get.side_effect = ConnectionError("refused")
        cache = RedisCacheClient(client=redis_client)

        with pytest.raises(ConnectionError):
            await cache.get("k")


@pytest.mark.unit
class TestRedisFallbackStore:
    @pytest.mark.asyncio
    async def test_save_uses_retention(self, redis_client):
        store = RedisFallbackStore(client=redis_client)
        value = make_value("WALCL", 7000.0)

        await store.save("WALCL", value)

        redis_client.set.assert_awaited_once_with("idl:lkg:WALCL", value.model_dump_json(), ex=604800)

    @pytest.mark.asyncio
    async def test_get_last_known_good(self, redis_client):
        value = make_value("WALCL", 7000.0)
        redis_client.get.return_value = value.model_dump_json()
        store = RedisFallbackStore(client=redis_client, key_prefix="", retention_seconds=60)

        assert await store.get_last_known_good("WALCL") == value
        redis_client.get.assert_awaited_once_with("lkg:WALCL")
