"""Generic runner for periodic background jobs on the bot's event loop.

Used for the matching sweep and for call retention cleanup. Handles the
start / shutdown lifecycle and standard error handling: a failing run is
logged and the loop keeps going; cancellation always propagates.
"""

from __future__ import annotations

import asyncio
from typing import Any, Awaitable, Callable

from interchat.util.logger import get_logger

logger = get_logger("interval_task")


class IntervalTask:
    """
    Calls a coroutine function every ``interval`` seconds until shut down.

    Args:
        name: Human-readable name for logging (e.g., "MATCHING", "CALL CLEANUP").
        job: Async callable taking no arguments.
        get_interval: Callable returning the interval in seconds (read at start).
        run_immediately: Run the job once before the first sleep.
    """

    def __init__(
        self,
        name: str,
        job: Callable[[], Awaitable[Any]],
        get_interval: Callable[[], float],
        run_immediately: bool = True,
    ) -> None:
        self._name = name
        self._job = job
        self._get_interval = get_interval
        self._run_immediately = run_immediately
        self._task: asyncio.Task | None = None

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def run_once(self) -> Any:
        """Run the job a single time, logging (not raising) ordinary failures."""
        try:
            return await self._job()
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            logger.error("[%s] Unexpected error during run: %s", self._name, exc, exc_info=True)
            return None

    async def _run_loop(self, interval: float) -> None:
        """Infinite loop: run, sleep, repeat."""
        logger.info("[%s] Starting periodic task (interval=%.1fs)", self._name, interval)
        try:
            if not self._run_immediately:
                await asyncio.sleep(interval)
            while True:
                await self.run_once()
                await asyncio.sleep(interval)
        except asyncio.CancelledError:
            logger.info("[%s] Periodic task cancelled", self._name)
            raise

    def start(self) -> None:
        """Start the background task if not already running."""
        if self.is_running:
            logger.warning("[%s] Task already running", self._name)
            return
        interval = self._get_interval()
        logger.info("[%s] Creating task with interval %.1fs", self._name, interval)
        self._task = asyncio.create_task(self._run_loop(interval), name=f"interval:{self._name}")

    async def shutdown(self) -> None:
        """Cancel the task and wait for it to finish."""
        if self._task and not self._task.done():
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
        self._task = None
        logger.info("[%s] Task shutdown complete", self._name)
