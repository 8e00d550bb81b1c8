"""Periodic retention sweep for ended calls.

Ended calls are purged a fixed time after they end; calls with an open
report are kept until the report is resolved; ongoing calls are never
touched. The policy lives in :meth:`CallRepository.cleanup_expired_calls`,
this module only runs it on an interval and reports the outcome.
"""

from __future__ import annotations

import time
from typing import Dict

from interchat.configuration.settings_sections import StorageSettings
from interchat.repositories.call_repo import CallRepository
from interchat.scheduler.interval_task import IntervalTask
from interchat.util.logger import get_logger

logger = get_logger("call_cleanup_scheduler")

SLOW_CLEANUP_WARNING_SECS = 30.0


class CallCleanupScheduler:
    """Runs the call retention policy every ``cleanup_interval_secs``."""

    def __init__(self, calls: CallRepository, settings: StorageSettings) -> None:
        self._calls = calls
        self._settings = settings
        self._task = IntervalTask(
            "CALL CLEANUP",
            self.cleanup_once,
            lambda: self._settings.cleanup_interval_secs,
            run_immediately=False,
        )

    async def cleanup_once(self) -> Dict[str, int]:
        started = time.perf_counter()
        result = await self._calls.cleanup_expired_calls(self._settings.call_retention_minutes)
        duration = time.perf_counter() - started

        logger.info(
            "[CALL CLEANUP] Completed in %.0fms: deleted=%d protected=%d errors=%d",
            duration * 1000, result["deleted"], result["protected"], result["errors"],
        )
        if result["errors"]:
            logger.warning("[CALL CLEANUP] %d call(s) could not be deleted; see previous errors", result["errors"])
        if duration > SLOW_CLEANUP_WARNING_SECS:
            logger.warning("[CALL CLEANUP] Cleanup took %.1fs, longer than expected", duration)
        return result

    def start(self) -> None:
        self._task.start()

    async def shutdown(self) -> None:
        await self._task.shutdown()
