"""
In-process implementation of :class:`CacheStore`.

Values live in a single dict keyed by cache key; expiries live in a second
dict and are checked lazily on access. Every public coroutine runs its
whole body without suspending, and a pipeline applies all of its buffered
commands in one such step, so multi-key writes are atomic with respect to
every other task on the event loop.
"""

from __future__ import annotations

import time
from typing import Any, Callable, Dict, List, Mapping, Optional, Sequence, Tuple

from interchat.cache.cache_store import CacheError, CachePipeline, CacheStore
from interchat.util.logger import get_logger

logger = get_logger("memory_cache_store")

Clock = Callable[[], float]


class MemoryPipeline(CachePipeline):
    """Buffers commands and replays them against the store in one step."""

    def __init__(self, store: "MemoryCacheStore") -> None:
        self._store = store
        self._commands: List[Tuple[str, tuple, dict]] = []

    def _queue(self, name: str, *args: Any, **kwargs: Any) -> "MemoryPipeline":
        self._commands.append((name, args, kwargs))
        return self

    def set(self, key: str, value: str, ttl: Optional[int] = None) -> "MemoryPipeline":
        return self._queue("set", key, value, ttl)

    def delete(self, *keys: str) -> "MemoryPipeline":
        return self._queue("delete", *keys)

    def expire(self, key: str, ttl: int) -> "MemoryPipeline":
        return self._queue("expire", key, ttl)

    def hset(self, key: str, mapping: Mapping[str, str]) -> "MemoryPipeline":
        return self._queue("hset", key, dict(mapping))

    def hdel(self, key: str, *fields: str) -> "MemoryPipeline":
        return self._queue("hdel", key, *fields)

    def sadd(self, key: str, *members: str) -> "MemoryPipeline":
        return self._queue("sadd", key, *members)

    def srem(self, key: str, *members: str) -> "MemoryPipeline":
        return self._queue("srem", key, *members)

    def zadd(self, key: str, mapping: Mapping[str, float]) -> "MemoryPipeline":
        return self._queue("zadd", key, dict(mapping))

    def zrem(self, key: str, *members: str) -> "MemoryPipeline":
        return self._queue("zrem", key, *members)

    async def execute(self) -> List[Any]:
        commands, self._commands = self._commands, []
        return self._store._apply(commands)


class MemoryCacheStore(CacheStore):
    """Dict-backed cache with Redis-compatible semantics.

    Args:
        clock: Returns the current time in seconds. Tests inject a fake
            clock to expire keys without sleeping.
    """

    def __init__(self, clock: Clock = time.monotonic) -> None:
        self._clock = clock
        self._data: Dict[str, Any] = {}
        self._expiry: Dict[str, float] = {}

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _alive(self, key: str) -> bool:
        deadline = self._expiry.get(key)
        if deadline is not None and deadline <= self._clock():
            self._data.pop(key, None)
            self._expiry.pop(key, None)
            return False
        return key in self._data

    def _read(self, key: str, kind: type) -> Any:
        if not self._alive(key):
            return None
        value = self._data[key]
        if type(value) is not kind:
            raise CacheError(f"WRONGTYPE key {key!r} holds {type(value).__name__}, not {kind.__name__}")
        return value

    def _container(self, key: str, kind: type) -> Any:
        value = self._read(key, kind)
        if value is None:
            value = kind()
            self._data[key] = value
        return value

    def _drop_if_empty(self, key: str) -> None:
        value = self._data.get(key)
        if isinstance(value, (dict, set)) and not value:
            self._data.pop(key, None)
            self._expiry.pop(key, None)

    def _apply(self, commands: List[Tuple[str, tuple, dict]]) -> List[Any]:
        return [getattr(self, f"_{name}")(*args, **kwargs) for name, args, kwargs in commands]

    # Synchronous primitives; the public coroutines and pipelines call these.

    def _set(self, key: str, value: str, ttl: Optional[int] = None, nx: bool = False) -> bool:
        if nx and self._alive(key):
            return False
        self._data[key] = str(value)
        if ttl is not None:
            self._expiry[key] = self._clock() + ttl
        else:
            self._expiry.pop(key, None)
        return True

    def _delete(self, *keys: str) -> int:
        removed = 0
        for key in keys:
            if self._alive(key):
                removed += 1
            self._data.pop(key, None)
            self._expiry.pop(key, None)
        return removed

    def _expire(self, key: str, ttl: int) -> bool:
        if not self._alive(key):
            return False
        self._expiry[key] = self._clock() + ttl
        return True

    def _hset(self, key: str, mapping: Mapping[str, str]) -> int:
        data = self._container(key, dict)
        added = sum(1 for field in mapping if field not in data)
        data.update({field: str(value) for field, value in mapping.items()})
        return added

    def _hdel(self, key: str, *fields: str) -> int:
        data = self._read(key, dict)
        if data is None:
            return 0
        removed = sum(1 for field in fields if data.pop(field, None) is not None)
        self._drop_if_empty(key)
        return removed

    def _sadd(self, key: str, *members: str) -> int:
        data = self._container(key, set)
        before = len(data)
        data.update(str(m) for m in members)
        return len(data) - before

    def _srem(self, key: str, *members: str) -> int:
        data = self._read(key, set)
        if data is None:
            return 0
        before = len(data)
        data.difference_update(members)
        removed = before - len(data)
        self._drop_if_empty(key)
        return removed

    def _zadd(self, key: str, mapping: Mapping[str, float], nx: bool = False) -> int:
        data = self._container(key, _SortedSet)
        added = 0
        for member, score in mapping.items():
            if member in data:
                if nx:
                    continue
            else:
                added += 1
            data[member] = float(score)
        self._drop_if_empty(key)
        return added

    def _zrem(self, key: str, *members: str) -> int:
        data = self._read(key, _SortedSet)
        if data is None:
            return 0
        removed = sum(1 for member in members if data.pop(member, None) is not None)
        self._drop_if_empty(key)
        return removed

    # ------------------------------------------------------------------
    # Strings and keys
    # ------------------------------------------------------------------

    async def get(self, key: str) -> Optional[str]:
        return self._read(key, str)

    async def mget(self, keys: Sequence[str]) -> List[Optional[str]]:
        result: List[Optional[str]] = []
        for key in keys:
            value = self._data.get(key) if self._alive(key) else None
            result.append(value if isinstance(value, str) else None)
        return result

    async def set(self, key: str, value: str, ttl: Optional[int] = None, nx: bool = False) -> bool:
        return self._set(key, value, ttl, nx)

    async def delete(self, *keys: str) -> int:
        return self._delete(*keys)

    async def exists(self, key: str) -> bool:
        return self._alive(key)

    async def expire(self, key: str, ttl: int) -> bool:
        return self._expire(key, ttl)

    async def ttl(self, key: str) -> int:
        if not self._alive(key):
            return -2
        deadline = self._expiry.get(key)
        if deadline is None:
            return -1
        return max(0, int(round(deadline - self._clock())))

    async def incr(self, key: str) -> int:
        current = self._read(key, str)
        try:
            value = int(current or 0) + 1
        except ValueError as exc:
            raise CacheError(f"value at {key!r} is not an integer") from exc
        self._data[key] = str(value)
        return value

    # ------------------------------------------------------------------
    # Hashes
    # ------------------------------------------------------------------

    async def hget(self, key: str, field: str) -> Optional[str]:
        data = self._read(key, dict)
        return None if data is None else data.get(field)

    async def hmget(self, key: str, fields: Sequence[str]) -> List[Optional[str]]:
        data = self._read(key, dict) or {}
        return [data.get(field) for field in fields]

    async def hset(self, key: str, mapping: Mapping[str, str]) -> int:
        return self._hset(key, mapping)

    async def hdel(self, key: str, *fields: str) -> int:
        return self._hdel(key, *fields)

    async def hgetall(self, key: str) -> Dict[str, str]:
        return dict(self._read(key, dict) or {})

    async def hlen(self, key: str) -> int:
        return len(self._read(key, dict) or {})

    # ------------------------------------------------------------------
    # Sets
    # ------------------------------------------------------------------

    async def sadd(self, key: str, *members: str) -> int:
        return self._sadd(key, *members)

    async def srem(self, key: str, *members: str) -> int:
        return self._srem(key, *members)

    async def smembers(self, key: str) -> set[str]:
        return set(self._read(key, set) or ())

    async def scard(self, key: str) -> int:
        return len(self._read(key, set) or ())

    # ------------------------------------------------------------------
    # Sorted sets
    # ------------------------------------------------------------------

    async def zadd(self, key: str, mapping: Mapping[str, float], nx: bool = False) -> int:
        return self._zadd(key, mapping, nx)

    async def zrem(self, key: str, *members: str) -> int:
        return self._zrem(key, *members)

    async def zscore(self, key: str, member: str) -> Optional[float]:
        data = self._read(key, _SortedSet)
        return None if data is None else data.get(member)

    async def zrank(self, key: str, member: str) -> Optional[int]:
        data = self._read(key, _SortedSet)
        if data is None or member not in data:
            return None
        return data.ordered().index(member)

    async def zcard(self, key: str) -> int:
        return len(self._read(key, _SortedSet) or ())

    async def zrange(self, key: str, start: int = 0, stop: int = -1) -> List[str]:
        data = self._read(key, _SortedSet)
        if data is None:
            return []
        ordered = data.ordered()
        size = len(ordered)
        if start < 0:
            start = max(0, size + start)
        if stop < 0:
            stop = size + stop
        return ordered[start:stop + 1]

    # ------------------------------------------------------------------
    # Pipelines / lifecycle
    # ------------------------------------------------------------------

    def pipeline(self) -> MemoryPipeline:
        return MemoryPipeline(self)

    async def close(self) -> None:
        self._data.clear()
        self._expiry.clear()
        logger.info("[MEMORY CACHE] Cleared on close")


class _SortedSet(dict):
    """member -> score mapping ordered like Redis: by score, then member."""

    def ordered(self) -> List[str]:
        return [member for member, _ in sorted(self.items(), key=lambda item: (item[1], item[0]))]
