"""
Redis-backed :class:`CacheStore` for sharded deployments.

All shards point at the same Redis instance, so queue claims (``SET NX``),
pipelined index writes and rate-limit counters stay correct across
processes. Every ``redis.RedisError`` is re-raised as :class:`CacheError`.
"""

from __future__ import annotations

import functools
from typing import Any, Awaitable, Callable, Dict, List, Mapping, Optional, Sequence, TypeVar

import redis.asyncio as redis
from redis.exceptions import RedisError

from interchat.cache.cache_store import CacheError, CachePipeline, CacheStore
from interchat.util.logger import get_logger

logger = get_logger("redis_cache_store")

T = TypeVar("T")


def _wrap_errors(func: Callable[..., Awaitable[T]]) -> Callable[..., Awaitable[T]]:
    @functools.wraps(func)
    async def wrapper(*args: Any, **kwargs: Any) -> T:
        try:
            return await func(*args, **kwargs)
        except RedisError as exc:
            raise CacheError(f"{func.__name__} failed: {exc}") from exc
    return wrapper


class RedisPipeline(CachePipeline):
    """Thin adapter over a transactional ``redis.asyncio`` pipeline."""

    def __init__(self, pipe: "redis.client.Pipeline") -> None:
        self._pipe = pipe

    def set(self, key: str, value: str, ttl: Optional[int] = None) -> "RedisPipeline":
        self._pipe.set(key, value, ex=ttl)
        return self

    def delete(self, *keys: str) -> "RedisPipeline":
        self._pipe.delete(*keys)
        return self

    def expire(self, key: str, ttl: int) -> "RedisPipeline":
        self._pipe.expire(key, ttl)
        return self

    def hset(self, key: str, mapping: Mapping[str, str]) -> "RedisPipeline":
        self._pipe.hset(key, mapping=dict(mapping))
        return self

    def hdel(self, key: str, *fields: str) -> "RedisPipeline":
        self._pipe.hdel(key, *fields)
        return self

    def sadd(self, key: str, *members: str) -> "RedisPipeline":
        self._pipe.sadd(key, *members)
        return self

    def srem(self, key: str, *members: str) -> "RedisPipeline":
        self._pipe.srem(key, *members)
        return self

    def zadd(self, key: str, mapping: Mapping[str, float]) -> "RedisPipeline":
        self._pipe.zadd(key, dict(mapping))
        return self

    def zrem(self, key: str, *members: str) -> "RedisPipeline":
        self._pipe.zrem(key, *members)
        return self

    @_wrap_errors
    async def execute(self) -> List[Any]:
        async with self._pipe as pipe:
            return await pipe.execute()


class RedisCacheStore(CacheStore):
    """Cache store talking to Redis through a shared connection pool."""

    def __init__(self, url: str, client: Optional[redis.Redis] = None) -> None:
        self._url = url
        self._client: Optional[redis.Redis] = client

    @property
    def client(self) -> redis.Redis:
        if self._client is None:
            raise CacheError("Redis client is not connected. Call await store.connect() at startup.")
        return self._client

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def connect(self) -> None:
        if self._client is None:
            self._client = redis.from_url(self._url, decode_responses=True)
        try:
            await self._client.ping()
        except RedisError as exc:
            raise CacheError(f"Could not reach Redis at {self._url}: {exc}") from exc
        logger.info("[REDIS CACHE] Connected to %s", self._url)

    async def close(self) -> None:
        if self._client is None:
            return
        try:
            await self._client.aclose()
        finally:
            self._client = None
            logger.info("[REDIS CACHE] Connection closed")

    # ------------------------------------------------------------------
    # Strings and keys
    # ------------------------------------------------------------------

    @_wrap_errors
    async def get(self, key: str) -> Optional[str]:
        return await self.client.get(key)

    @_wrap_errors
    async def mget(self, keys: Sequence[str]) -> List[Optional[str]]:
        if not keys:
            return []
        return await self.client.mget(list(keys))

    @_wrap_errors
    async def set(self, key: str, value: str, ttl: Optional[int] = None, nx: bool = False) -> bool:
        return bool(await self.client.set(key, value, ex=ttl, nx=nx))

    @_wrap_errors
    async def delete(self, *keys: str) -> int:
        if not keys:
            return 0
        return int(await self.client.delete(*keys))

    @_wrap_errors
    async def exists(self, key: str) -> bool:
        return bool(await self.client.exists(key))

    @_wrap_errors
    async def expire(self, key: str, ttl: int) -> bool:
        return bool(await self.client.expire(key, ttl))

    @_wrap_errors
    async def ttl(self, key: str) -> int:
        return int(await self.client.ttl(key))

    @_wrap_errors
    async def incr(self, key: str) -> int:
        return int(await self.client.incr(key))

    # ------------------------------------------------------------------
    # Hashes
    # ------------------------------------------------------------------

    @_wrap_errors
    async def hget(self, key: str, field: str) -> Optional[str]:
        return await self.client.hget(key, field)

    @_wrap_errors
    async def hmget(self, key: str, fields: Sequence[str]) -> List[Optional[str]]:
        if not fields:
            return []
        return await self.client.hmget(key, list(fields))

    @_wrap_errors
    async def hset(self, key: str, mapping: Mapping[str, str]) -> int:
        return int(await self.client.hset(key, mapping=dict(mapping)))

    @_wrap_errors
    async def hdel(self, key: str, *fields: str) -> int:
        if not fields:
            return 0
        return int(await self.client.hdel(key, *fields))

    @_wrap_errors
    async def hgetall(self, key: str) -> Dict[str, str]:
        return dict(await self.client.hgetall(key))

    @_wrap_errors
    async def hlen(self, key: str) -> int:
        return int(await self.client.hlen(key))

    # ------------------------------------------------------------------
    # Sets
    # ------------------------------------------------------------------

    @_wrap_errors
    async def sadd(self, key: str, *members: str) -> int:
        return int(await self.client.sadd(key, *members))

    @_wrap_errors
    async def srem(self, key: str, *members: str) -> int:
        return int(await self.client.srem(key, *members))

    @_wrap_errors
    async def smembers(self, key: str) -> set[str]:
        return set(await self.client.smembers(key))

    @_wrap_errors
    async def scard(self, key: str) -> int:
        return int(await self.client.scard(key))

    # ------------------------------------------------------------------
    # Sorted sets
    # ------------------------------------------------------------------

    @_wrap_errors
    async def zadd(self, key: str, mapping: Mapping[str, float], nx: bool = False) -> int:
        return int(await self.client.zadd(key, dict(mapping), nx=nx))

    @_wrap_errors
    async def zrem(self, key: str, *members: str) -> int:
        return int(await self.client.zrem(key, *members))

    @_wrap_errors
    async def zscore(self, key: str, member: str) -> Optional[float]:
        return await self.client.zscore(key, member)

    @_wrap_errors
    async def zrank(self, key: str, member: str) -> Optional[int]:
        return await self.client.zrank(key, member)

    @_wrap_errors
    async def zcard(self, key: str) -> int:
        return int(await self.client.zcard(key))

    @_wrap_errors
    async def zrange(self, key: str, start: int = 0, stop: int = -1) -> List[str]:
        return list(await self.client.zrange(key, start, stop))

    def pipeline(self) -> RedisPipeline:
        return RedisPipeline(self.client.pipeline(transaction=True))
