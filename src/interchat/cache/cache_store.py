"""
Key-value cache abstraction shared by the userphone and hub network layers.

The interface is a deliberately small subset of Redis semantics: strings
with TTL, hashes, sets, sorted sets, counters and pipelines. A pipeline
buffers writes and applies them together, so multi-key updates (a call's
channel index, a queue entry and its id lookup) become visible at once.

Two backends implement it:

- :class:`~interchat.cache.memory_store.MemoryCacheStore` keeps everything
  in the process. Correct for a single process; used by the test-suite.
- :class:`~interchat.cache.redis_store.RedisCacheStore` talks to Redis via
  ``redis.asyncio`` and is required once the bot runs as several shards.

Backend failures surface as :class:`CacheError` regardless of backend.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence


class CacheError(Exception):
    """Raised when the cache backend cannot complete an operation."""


class CachePipeline(ABC):
    """Buffered batch of write commands applied by :meth:`execute`.

    Command methods return the pipeline so calls can be chained. Results come
    back from :meth:`execute` in command order.
    """

    @abstractmethod
    def set(self, key: str, value: str, ttl: Optional[int] = None) -> "CachePipeline": ...

    @abstractmethod
    def delete(self, *keys: str) -> "CachePipeline": ...

    @abstractmethod
    def expire(self, key: str, ttl: int) -> "CachePipeline": ...

    @abstractmethod
    def hset(self, key: str, mapping: Mapping[str, str]) -> "CachePipeline": ...

    @abstractmethod
    def hdel(self, key: str, *fields: str) -> "CachePipeline": ...

    @abstractmethod
    def sadd(self, key: str, *members: str) -> "CachePipeline": ...

    @abstractmethod
    def srem(self, key: str, *members: str) -> "CachePipeline": ...

    @abstractmethod
    def zadd(self, key: str, mapping: Mapping[str, float]) -> "CachePipeline": ...

    @abstractmethod
    def zrem(self, key: str, *members: str) -> "CachePipeline": ...

    @abstractmethod
    async def execute(self) -> List[Any]: ...


class CacheStore(ABC):
    """Async key-value store with TTLs and Redis-like data structures."""

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def connect(self) -> None:
        """Open backend connections. No-op by default."""

    async def close(self) -> None:
        """Release backend connections. No-op by default."""

    # ------------------------------------------------------------------
    # Strings and keys
    # ------------------------------------------------------------------

    @abstractmethod
    async def get(self, key: str) -> Optional[str]: ...

    @abstractmethod
    async def mget(self, keys: Sequence[str]) -> List[Optional[str]]: ...

    @abstractmethod
    async def set(self, key: str, value: str, ttl: Optional[int] = None, nx: bool = False) -> bool:
        """Store a string. With ``nx`` the write only happens if the key is absent.

        Returns True if the value was written.
        """

    @abstractmethod
    async def delete(self, *keys: str) -> int: ...

    @abstractmethod
    async def exists(self, key: str) -> bool: ...

    @abstractmethod
    async def expire(self, key: str, ttl: int) -> bool: ...

    @abstractmethod
    async def ttl(self, key: str) -> int:
        """Remaining seconds; -1 when the key has no expiry, -2 when missing."""

    @abstractmethod
    async def incr(self, key: str) -> int: ...

    # ------------------------------------------------------------------
    # Hashes
    # ------------------------------------------------------------------

    @abstractmethod
    async def hget(self, key: str, field: str) -> Optional[str]: ...

    @abstractmethod
    async def hmget(self, key: str, fields: Sequence[str]) -> List[Optional[str]]: ...

    @abstractmethod
    async def hset(self, key: str, mapping: Mapping[str, str]) -> int: ...

    @abstractmethod
    async def hdel(self, key: str, *fields: str) -> int: ...

    @abstractmethod
    async def hgetall(self, key: str) -> Dict[str, str]: ...

    @abstractmethod
    async def hlen(self, key: str) -> int: ...

    # ------------------------------------------------------------------
    # Sets
    # ------------------------------------------------------------------

    @abstractmethod
    async def sadd(self, key: str, *members: str) -> int: ...

    @abstractmethod
    async def srem(self, key: str, *members: str) -> int: ...

    @abstractmethod
    async def smembers(self, key: str) -> set[str]: ...

    @abstractmethod
    async def scard(self, key: str) -> int: ...

    # ------------------------------------------------------------------
    # Sorted sets
    # ------------------------------------------------------------------

    @abstractmethod
    async def zadd(self, key: str, mapping: Mapping[str, float], nx: bool = False) -> int: ...

    @abstractmethod
    async def zrem(self, key: str, *members: str) -> int: ...

    @abstractmethod
    async def zscore(self, key: str, member: str) -> Optional[float]: ...

    @abstractmethod
    async def zrank(self, key: str, member: str) -> Optional[int]: ...

    @abstractmethod
    async def zcard(self, key: str) -> int: ...

    @abstractmethod
    async def zrange(self, key: str, start: int = 0, stop: int = -1) -> List[str]: ...

    # ------------------------------------------------------------------
    # Pipelines
    # ------------------------------------------------------------------

    @abstractmethod
    def pipeline(self) -> CachePipeline: ...


def chunked(items: Iterable[str], size: int) -> Iterable[List[str]]:
    """Yield lists of at most `size` items; keeps variadic commands bounded."""
    batch: List[str] = []
    for item in items:
        batch.append(item)
        if len(batch) >= size:
            yield batch
            batch = []
    if batch:
        yield batch
