"""
Pairs queued channels into calls.

A background sweep (``IntervalTask``) walks the queue oldest first and pairs
each request with the first later candidate from another channel and guild
whose initiator was not recently matched with it. ``find_match`` runs the
same rule for a single request, which is how ``/call`` gets an immediate
match.

A pair is committed by re-checking that both requests are still queued,
reserving both channels (cache ``SET NX``), then claiming each request;
losing a reservation or a claim is a benign abort that the next sweep
retries. The reservation is held until the call is cached.
"""

from __future__ import annotations

import time
import uuid
from collections import deque
from typing import Any, Deque, Dict, List, Optional, Set

import aiosqlite

from interchat.cache.cache_store import CacheError
from interchat.configuration.settings_sections import CallingSettings
from interchat.datatypes.call_datatypes import ActiveCall, CallParticipant, CallRequest, CallStatus, MatchResult
from interchat.repositories.call_repo import CallRepository
from interchat.scheduler.interval_task import IntervalTask
from interchat.userphone.call_cache_manager import CallCacheManager
from interchat.userphone.call_events import CallEventBus, CallMatchedEvent
from interchat.userphone.queue_manager import QueueManager
from interchat.util.format_utils import now_ms
from interchat.util.logger import get_logger

logger = get_logger("matching_engine")

STATS_WINDOW = 100


class MatchingEngine:
    """Matches queued requests and creates the resulting calls."""

    def __init__(
        self,
        queue: QueueManager,
        cache_manager: CallCacheManager,
        calls: CallRepository,
        event_bus: CallEventBus,
        settings: CallingSettings,
    ) -> None:
        self._queue = queue
        self._cache_manager = cache_manager
        self._calls = calls
        self._event_bus = event_bus
        self._settings = settings
        self._match_times: Deque[float] = deque(maxlen=STATS_WINDOW)
        self._total_attempts = 0
        self._successful_matches = 0
        self._sweep = IntervalTask(
            "MATCHING ENGINE",
            self.process_queue,
            lambda: self._settings.background_interval_secs,
        )

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    @property
    def is_running(self) -> bool:
        return self._sweep.is_running

    def start(self) -> None:
        self._sweep.start()

    async def stop(self) -> None:
        await self._sweep.shutdown()

    # ------------------------------------------------------------------
    # Matching
    # ------------------------------------------------------------------

    async def find_match(self, request: CallRequest) -> MatchResult:
        """Try to pair `request` with any eligible queued request right now."""
        started = time.perf_counter()
        self._total_attempts += 1

        pending = await self._queue.get_pending_requests()
        if not any(r.id == request.id for r in pending):
            return MatchResult(matched=False)

        for candidate in pending:
            if candidate.id == request.id:
                continue
            if not await self._is_compatible(request, candidate):
                continue
            first, second = sorted((request, candidate), key=lambda r: r.timestamp)
            call = await self._commit(first, second)
            if call is not None:
                return await self._record_success(call, started)
            # the pair was raced away; stop if `request` itself is gone
            if not await self._queue.is_request_queued(request):
                break

        return MatchResult(matched=False)

    async def process_queue(self) -> int:
        """One sweep over the queue. Returns the number of calls created."""
        pending = await self._queue.get_pending_requests()
        if len(pending) < 2:
            return 0

        matched_channels: Set[str] = set()
        matches = 0
        for index, request in enumerate(pending):
            if request.channel_id in matched_channels:
                continue
            for candidate in pending[index + 1:]:
                if candidate.channel_id in matched_channels:
                    continue
                if not await self._is_compatible(request, candidate):
                    continue

                started = time.perf_counter()
                self._total_attempts += 1
                call = await self._commit(request, candidate)
                if call is None:
                    continue
                await self._record_success(call, started)
                matched_channels.update((request.channel_id, candidate.channel_id))
                matches += 1
                break

        if matches:
            logger.info("[MATCHING ENGINE] Sweep created %d call(s)", matches)
        return matches

    async def _is_compatible(self, first: CallRequest, second: CallRequest) -> bool:
        if first.channel_id == second.channel_id or first.guild_id == second.guild_id:
            return False
        if first.initiator_id == second.initiator_id:
            return False
        return not await self._cache_manager.has_recent_match(first.initiator_id, second.initiator_id)

    async def _commit(self, first: CallRequest, second: CallRequest) -> Optional[ActiveCall]:
        """Claim both requests and persist the call, or leave the queue as it was.

        Both channels stay reserved from before the claims until the call is
        cached, so neither looks idle while the call is being created.
        """
        if not (await self._queue.is_request_queued(first) and await self._queue.is_request_queued(second)):
            return None
        if not await self._cache_manager.reserve_for_match(first, second):
            return None

        try:
            return await self._claim_and_persist(first, second)
        finally:
            await self._cache_manager.release_match(first.channel_id, second.channel_id)

    async def _claim_and_persist(self, first: CallRequest, second: CallRequest) -> Optional[ActiveCall]:
        if not await self._queue.claim(first):
            return None
        if not await self._queue.claim(second):
            await self._queue.restore(first)
            logger.debug("[MATCHING ENGINE] Lost claim on %s, restored %s", second.id, first.id)
            return None

        call = ActiveCall(
            id=uuid.uuid4().hex,
            participants=[self._participant(first), self._participant(second)],
            created_at=now_ms(),
            status=CallStatus.ONGOING,
        )
        try:
            await self._calls.create_call(call)
            await self._cache_manager.cache_active_call(call)
            await self._cache_manager.record_recent_match(first.initiator_id, second.initiator_id)
        except (aiosqlite.Error, CacheError) as exc:
            logger.error("[MATCHING ENGINE] Failed to persist call for %s and %s: %s", first.channel_id, second.channel_id, exc)
            await self._rollback(call, first, second)
            return None

        logger.info("[MATCHING ENGINE] Matched channels %s and %s into call %s", first.channel_id, second.channel_id, call.id)
        return call

    async def _rollback(self, call: ActiveCall, first: CallRequest, second: CallRequest) -> None:
        try:
            await self._cache_manager.remove_active_call(first.channel_id)
            await self._queue.restore(first)
            await self._queue.restore(second)
        except CacheError as exc:
            logger.error("[MATCHING ENGINE] Rollback of call %s incomplete: %s", call.id, exc)
        try:
            await self._calls.update_call_status(call.id, CallStatus.ENDED, now_ms())
        except aiosqlite.Error as exc:
            logger.error("[MATCHING ENGINE] Could not close orphan call record %s: %s", call.id, exc)

    @staticmethod
    def _participant(request: CallRequest) -> CallParticipant:
        return CallParticipant(
            channel_id=request.channel_id,
            guild_id=request.guild_id,
            webhook_url=request.webhook_url,
            users={request.initiator_id},
        )

    async def _record_success(self, call: ActiveCall, started: float) -> MatchResult:
        match_time_ms = (time.perf_counter() - started) * 1000
        self._successful_matches += 1
        self._match_times.append(match_time_ms)
        await self._event_bus.publish(CallMatchedEvent(call=call, match_time_ms=match_time_ms))
        return MatchResult(
            matched=True,
            call_id=call.id,
            participants=list(call.participants),
            match_time_ms=match_time_ms,
        )

    # ------------------------------------------------------------------
    # Stats
    # ------------------------------------------------------------------

    async def get_matching_stats(self) -> Dict[str, Any]:
        times: List[float] = list(self._match_times)
        return {
            "average_match_time": sum(times) / len(times) if times else 0.0,
            "success_rate": self._successful_matches / self._total_attempts if self._total_attempts else 0.0,
            "queue_length": await self._queue.get_queue_length(),
        }
