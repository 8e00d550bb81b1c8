"""
Performance monitoring for database operations.

Repositories wrap each query in :meth:`DatabasePerformanceMonitor.measure`;
the monitor keeps per-query counters and logs slow queries.
"""

import time
from contextlib import asynccontextmanager
from typing import AsyncIterator, Dict

from interchat.util.logger import get_logger

logger = get_logger("database_perf_mon")


class DatabasePerformanceMonitor:
    """
    Tracks execution time per named query.

    Args:
        slow_query_threshold_ms: Queries slower than this are logged as warnings.
    """

    def __init__(self, slow_query_threshold_ms: float = 100.0):
        self._query_stats: Dict[str, Dict[str, float]] = {}
        self._slow_query_threshold = slow_query_threshold_ms / 1000.0

    def track(self, query_name: str, duration: float) -> None:
        """Record one execution of `query_name` that took `duration` seconds."""
        stats = self._query_stats.setdefault(
            query_name,
            {"count": 0, "errors": 0, "total_time": 0.0, "min_time": float("inf"), "max_time": 0.0},
        )
        stats["count"] += 1
        stats["total_time"] += duration
        stats["min_time"] = min(stats["min_time"], duration)
        stats["max_time"] = max(stats["max_time"], duration)

        if duration > self._slow_query_threshold:
            logger.warning("[PERFORMANCE] Slow query: %s took %.2fms", query_name, duration * 1000)

    def track_error(self, query_name: str) -> None:
        stats = self._query_stats.setdefault(
            query_name,
            {"count": 0, "errors": 0, "total_time": 0.0, "min_time": float("inf"), "max_time": 0.0},
        )
        stats["errors"] += 1

    @asynccontextmanager
    async def measure(self, query_name: str) -> AsyncIterator[None]:
        """Time the body of the ``async with`` block under `query_name`."""
        start = time.perf_counter()
        try:
            yield
        except Exception:
            self.track_error(query_name)
            raise
        self.track(query_name, time.perf_counter() - start)

    def get_statistics(self) -> Dict[str, Dict[str, float]]:
        """Return per-query count, errors and avg/min/max/total seconds."""
        result = {}
        for query_name, stats in self._query_stats.items():
            count = stats["count"]
            result[query_name] = {
                "count": count,
                "errors": stats["errors"],
                "total_time": stats["total_time"],
                "avg_time": stats["total_time"] / count if count > 0 else 0,
                "min_time": stats["min_time"] if stats["min_time"] != float("inf") else 0,
                "max_time": stats["max_time"],
            }
        return result

    def reset(self) -> None:
        """Reset all performance statistics."""
        self._query_stats.clear()
        logger.info("[PERFORMANCE] Statistics reset")
