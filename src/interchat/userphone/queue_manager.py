"""
Queue of channels waiting for a call partner.

Layout
------
``call:queue``                       sorted set of channel ids
``call:queue:request:{channel_id}``  serialised CallRequest (the channel's claim)
``call:queue:ids``                   hash request_id -> channel_id

Ordering: score = ``timestamp - priority * 1000``, so a higher priority
moves a request ahead by one second per point and equal priorities stay
FIFO. The request record is written with ``SET NX``: of two concurrent
enqueues for one channel only one wins.
"""

from __future__ import annotations

import json
from typing import Any, Dict, List, Optional, Tuple

from interchat.cache.cache_store import CacheStore
from interchat.configuration.settings_sections import CallingSettings
from interchat.datatypes.call_datatypes import CallError, CallErrorCode, CallRequest, QueueStatus
from interchat.userphone.call_cache_manager import CallCacheManager
from interchat.userphone.call_events import CallEventBus, CallQueuedEvent, QueueTimeoutEvent
from interchat.util.format_utils import now_ms
from interchat.util.logger import get_logger

logger = get_logger("queue_manager")

QUEUE_KEY = "call:queue"
REQUEST_KEY = "call:queue:request:{channel_id}"
REQUEST_IDS_KEY = "call:queue:ids"

# Request records outlive the queue timeout so eviction can still read them.
REQUEST_TTL_GRACE_SECS = 60


def queue_score(request: CallRequest) -> float:
    return float(request.timestamp - request.priority * 1000)


class QueueManager:
    """Enqueue, dequeue and inspect pending call requests."""

    def __init__(
        self,
        store: CacheStore,
        cache_manager: CallCacheManager,
        event_bus: CallEventBus,
        settings: CallingSettings,
    ) -> None:
        self._store = store
        self._cache_manager = cache_manager
        self._event_bus = event_bus
        self._timeout_ms = int(settings.queue_timeout_secs * 1000)
        self._request_ttl = int(settings.queue_timeout_secs) + REQUEST_TTL_GRACE_SECS
        self._max_queue_size = settings.max_queue_size

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------

    async def enqueue(self, request: CallRequest) -> QueueStatus:
        """
        Add `request` to the queue and publish ``CallQueuedEvent``.

        Raises:
            CallError: ``CHANNEL_ALREADY_IN_CALL``, ``CHANNEL_ALREADY_IN_QUEUE``
                or ``MATCHING_TIMEOUT`` when the queue is full.
        """
        if await self._cache_manager.is_busy(request.channel_id):
            raise self._already_in_call(request)

        if await self._store.zcard(QUEUE_KEY) >= self._max_queue_size:
            raise CallError(
                "The call queue is full",
                CallErrorCode.MATCHING_TIMEOUT,
                {"max_queue_size": self._max_queue_size},
            )

        claimed = await self._store.set(
            REQUEST_KEY.format(channel_id=request.channel_id),
            json.dumps(request.to_dict()),
            ttl=self._request_ttl,
            nx=True,
        )
        if not claimed:
            raise CallError(
                "Channel is already in the queue",
                CallErrorCode.CHANNEL_ALREADY_IN_QUEUE,
                {"channel_id": request.channel_id},
            )

        pipe = self._store.pipeline()
        pipe.zadd(QUEUE_KEY, {request.channel_id: queue_score(request)})
        pipe.hset(REQUEST_IDS_KEY, {request.id: request.channel_id})
        await pipe.execute()

        if await self._taken_by_earlier_match(request):
            await self._remove(request.channel_id, request.id)
            raise self._already_in_call(request)

        status = await self.get_queue_status(request.channel_id) or QueueStatus(position=1, queue_length=1)
        logger.info(
            "[QUEUE MANAGER] Queued request %s for channel %s (position %d of %d)",
            request.id, request.channel_id, status.position, status.queue_length,
        )
        await self._event_bus.publish(CallQueuedEvent(request=request, queue_status=status))
        return status

    async def dequeue(self, request_id: str) -> bool:
        """Remove a request by id. Returns True if this call removed it."""
        channel_id = await self._store.hget(REQUEST_IDS_KEY, request_id)
        if channel_id is None:
            return False
        return await self._remove(channel_id, request_id)

    async def dequeue_by_channel_id(self, channel_id: str) -> bool:
        request = await self._load_request(channel_id)
        if request is None:
            # clear a bare sorted-set member, if any
            return await self._remove(channel_id, None)
        return await self._remove(channel_id, request.id)

    async def claim(self, request: CallRequest) -> bool:
        """Take `request` out of the queue for matching.

        Succeeds only if this exact request (same id) is still queued and no
        other task removed it first.
        """
        if not await self.is_request_queued(request):
            return False
        return await self._remove(request.channel_id, request.id)

    async def restore(self, request: CallRequest) -> bool:
        """Put a previously claimed request back at its original position.

        Does nothing when the channel has queued again in the meantime.
        """
        restored = await self._store.set(
            REQUEST_KEY.format(channel_id=request.channel_id),
            json.dumps(request.to_dict()),
            ttl=self._request_ttl,
            nx=True,
        )
        if not restored:
            return False
        pipe = self._store.pipeline()
        pipe.zadd(QUEUE_KEY, {request.channel_id: queue_score(request)})
        pipe.hset(REQUEST_IDS_KEY, {request.id: request.channel_id})
        await pipe.execute()
        logger.debug("[QUEUE MANAGER] Restored request %s for channel %s", request.id, request.channel_id)
        return True

    async def evict_expired(self, now: Optional[int] = None) -> List[CallRequest]:
        """Remove requests older than the queue timeout, publishing ``QueueTimeoutEvent`` for each."""
        now = now if now is not None else now_ms()
        evicted: List[CallRequest] = []
        for channel_id, request in await self._scan():
            if request is None:
                continue
            if now - request.timestamp <= self._timeout_ms:
                continue
            if await self._remove(channel_id, request.id):
                evicted.append(request)

        for request in evicted:
            logger.info("[QUEUE MANAGER] Request %s for channel %s timed out", request.id, request.channel_id)
            await self._event_bus.publish(QueueTimeoutEvent(request=request))
        return evicted

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    async def get_pending_requests(self) -> List[CallRequest]:
        """Queued requests in service order, after evicting expired ones."""
        await self.evict_expired()
        return [request for _, request in await self._scan() if request is not None]

    async def get_queue_status(self, channel_id: str) -> Optional[QueueStatus]:
        rank = await self._store.zrank(QUEUE_KEY, channel_id)
        if rank is None:
            return None
        return QueueStatus(position=rank + 1, queue_length=await self._store.zcard(QUEUE_KEY))

    async def is_in_queue(self, channel_id: str) -> bool:
        return await self._store.zscore(QUEUE_KEY, channel_id) is not None

    async def is_request_queued(self, request: CallRequest) -> bool:
        """True when `request` itself (not a newer one for its channel) is still queued."""
        current = await self._load_request(request.channel_id)
        if current is None or current.id != request.id:
            return False
        return await self.is_in_queue(request.channel_id)

    async def get_queue_length(self) -> int:
        return await self._store.zcard(QUEUE_KEY)

    async def get_queue_stats(self) -> Dict[str, Any]:
        requests = [request for _, request in await self._scan() if request is not None]
        oldest_wait_ms = now_ms() - min(r.timestamp for r in requests) if requests else 0
        return {
            "queue_length": len(requests),
            "max_queue_size": self._max_queue_size,
            "oldest_wait_ms": oldest_wait_ms,
        }

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    async def _taken_by_earlier_match(self, request: CallRequest) -> bool:
        """True when a match for an older request of the channel committed
        while `request` was being written."""
        if not await self.is_request_queued(request):
            # already claimed by a match for `request` itself
            return False
        reserved = await self._cache_manager.get_match_reservation(request.channel_id)
        if reserved is not None:
            return reserved != request.id
        return await self._cache_manager.is_in_call(request.channel_id)

    @staticmethod
    def _already_in_call(request: CallRequest) -> CallError:
        return CallError(
            "Channel is already in an active call",
            CallErrorCode.CHANNEL_ALREADY_IN_CALL,
            {"channel_id": request.channel_id},
        )

    async def _load_request(self, channel_id: str) -> Optional[CallRequest]:
        raw = await self._store.get(REQUEST_KEY.format(channel_id=channel_id))
        return self._parse(channel_id, raw)

    @staticmethod
    def _parse(channel_id: str, raw: Optional[str]) -> Optional[CallRequest]:
        if raw is None:
            return None
        try:
            return CallRequest.from_dict(json.loads(raw))
        except (ValueError, KeyError, TypeError) as exc:
            logger.error("[QUEUE MANAGER] Unreadable request for channel %s: %s", channel_id, exc)
            return None

    async def _scan(self) -> List[Tuple[str, Optional[CallRequest]]]:
        """Every queued channel with its request; members without one are removed."""
        channel_ids = await self._store.zrange(QUEUE_KEY, 0, -1)
        if not channel_ids:
            return []
        raws = await self._store.mget([REQUEST_KEY.format(channel_id=c) for c in channel_ids])

        entries: List[Tuple[str, Optional[CallRequest]]] = []
        orphans: List[str] = []
        for channel_id, raw in zip(channel_ids, raws):
            request = self._parse(channel_id, raw)
            if request is None:
                orphans.append(channel_id)
            entries.append((channel_id, request))

        if orphans:
            await self._store.zrem(QUEUE_KEY, *orphans)
            logger.debug("[QUEUE MANAGER] Removed %d orphan queue member(s)", len(orphans))
        return entries

    async def _remove(self, channel_id: str, request_id: Optional[str]) -> bool:
        pipe = self._store.pipeline()
        pipe.zrem(QUEUE_KEY, channel_id)
        pipe.delete(REQUEST_KEY.format(channel_id=channel_id))
        if request_id is not None:
            pipe.hdel(REQUEST_IDS_KEY, request_id)
        results = await pipe.execute()
        return bool(results[0])
