"""
Tests for the Redis cache backend against a mocked ``redis.asyncio`` client.
"""

from unittest.mock import AsyncMock, MagicMock

import pytest
from redis.exceptions import ConnectionError as RedisConnectionError

from interchat.cache import create_cache_store
from interchat.cache.cache_store import CacheError
from interchat.cache.memory_store import MemoryCacheStore
from interchat.cache.redis_store import RedisCacheStore
from interchat.configuration.settings_sections import StorageSettings


def make_client():
    client = MagicMock()
    client.ping = AsyncMock(return_value=True)
    client.aclose = AsyncMock()
    client.set = AsyncMock(return_value=True)
    client.get = AsyncMock(return_value="v")
    client.zadd = AsyncMock(return_value=1)
    client.mget = AsyncMock()
    return client


@pytest.mark.asyncio
async def test_set_passes_ttl_and_nx():
    client = make_client()
    store = RedisCacheStore("redis://localhost", client=client)

    assert await store.set("k", "v", ttl=30, nx=True)
    client.set.assert_awaited_once_with("k", "v", ex=30, nx=True)


@pytest.mark.asyncio
async def test_failed_nx_set_is_false():
    client = make_client()
    client.set.return_value = None
    store = RedisCacheStore("redis://localhost", client=client)

    assert await store.set("k", "v", nx=True) is False


@pytest.mark.asyncio
async def test_redis_errors_become_cache_errors():
    client = make_client()
    client.get.side_effect = RedisConnectionError("connection refused")
    store = RedisCacheStore("redis://localhost", client=client)

    with pytest.raises(CacheError):
        await store.get("k")


@pytest.mark.asyncio
async def test_connect_fails_when_unreachable():
    client = make_client()
    client.ping.side_effect = RedisConnectionError("connection refused")
    store = RedisCacheStore("redis://localhost", client=client)

    with pytest.raises(CacheError):
        await store.connect()


@pytest.mark.asyncio
async def test_use_before_connect_raises():
    store = RedisCacheStore("redis://localhost")
    with pytest.raises(CacheError):
        await store.get("k")


@pytest.mark.asyncio
async def test_close_drops_client():
    client = make_client()
    store = RedisCacheStore("redis://localhost", client=client)

    await store.close()

    client.aclose.assert_awaited_once()
    with pytest.raises(CacheError):
        _ = store.client


@pytest.mark.asyncio
async def test_empty_mget_skips_round_trip():
    client = make_client()
    store = RedisCacheStore("redis://localhost", client=client)

    assert await store.mget([]) == []
    client.mget.assert_not_awaited()


def test_create_cache_store_picks_backend():
    assert isinstance(create_cache_store(StorageSettings({})), MemoryCacheStore)
    assert isinstance(create_cache_store(StorageSettings({"cache_backend": "redis"})), RedisCacheStore)
    with pytest.raises(ValueError):
        create_cache_store(StorageSettings({"cache_backend": "memcached"}))
