"""
Cache layer for InterChat.

- **cache_store.py**: The ``CacheStore`` / ``CachePipeline`` interfaces and
  ``CacheError``.
- **memory_store.py**: In-process backend for single-process deployments and
  tests.
- **redis_store.py**: ``redis.asyncio`` backend shared by every shard.

``create_cache_store`` picks the backend named by ``storage.cache_backend``.
"""

from interchat.cache.cache_store import CacheError, CachePipeline, CacheStore
from interchat.cache.memory_store import MemoryCacheStore
from interchat.cache.redis_store import RedisCacheStore
from interchat.configuration.settings_sections import StorageSettings


def create_cache_store(settings: StorageSettings) -> CacheStore:
    """Build the cache backend configured in ``settings``.

    Raises:
        ValueError: If ``cache_backend`` names an unknown backend.
    """
    backend = settings.cache_backend
    if backend == "memory":
        return MemoryCacheStore()
    if backend == "redis":
        return RedisCacheStore(settings.redis_url)
    raise ValueError(f"Unknown cache backend {backend!r}; expected 'memory' or 'redis'")


__all__ = [
    "CacheError",
    "CachePipeline",
    "CacheStore",
    "MemoryCacheStore",
    "RedisCacheStore",
    "create_cache_store",
]
