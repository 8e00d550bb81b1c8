"""
Cache-side state of the call subsystem.

Layout
------
``call:cache:index``            hash   channel_id -> call_id (every participant)
``call:cache:data:{call_id}``   string serialised ActiveCall, TTL refreshed on write
``call:cache:id_set``           set    ids of cached calls
``call:recent:{a}:{b}``         string recent-match marker, user ids sorted
``call:matching:{channel_id}``  string held while a match for the channel is committed
``webhook:cache:{channel_id}``  string webhook URL (see ``WebhookCache``)

A lookup goes channel -> call id -> payload, so the payload is stored once
per call. Writes touching several keys go through one pipeline. An index
entry whose payload has expired is deleted on lookup.
"""

from __future__ import annotations

from typing import Dict, List, Optional

from interchat.cache.cache_store import CacheStore
from interchat.configuration.settings_sections import CallingSettings
from interchat.datatypes.call_datatypes import ActiveCall, CallRequest
from interchat.userphone.call_serialization import deserialize_call, serialize_call
from interchat.userphone.webhook_cache import WebhookCache, WebhookChannel
from interchat.util.logger import get_logger

logger = get_logger("call_cache_manager")

CALL_INDEX_KEY = "call:cache:index"
CALL_DATA_KEY = "call:cache:data:{call_id}"
CALL_ID_SET_KEY = "call:cache:id_set"
RECENT_MATCH_KEY = "call:recent:{first}:{second}"
MATCH_RESERVATION_KEY = "call:matching:{channel_id}"

# Upper bound on how long a match commit may hold its channels.
MATCH_RESERVATION_TTL_SECS = 30


def recent_match_key(user_a: str, user_b: str) -> str:
    first, second = sorted((str(user_a), str(user_b)))
    return RECENT_MATCH_KEY.format(first=first, second=second)


class CallCacheManager:
    """Active-call index, webhook cache and recent-match markers.

    Cache failures propagate as :class:`CacheError`; the call manager maps
    them to ``REDIS_ERROR`` results.
    """

    def __init__(self, store: CacheStore, settings: CallingSettings, webhook_cache: Optional[WebhookCache] = None) -> None:
        self._store = store
        self._call_ttl = settings.call_ttl_secs
        self._recent_match_ttl = settings.recent_match_ttl_secs
        self.webhooks = webhook_cache or WebhookCache(store, settings.webhook_ttl_secs, settings.webhook_name)

    # ------------------------------------------------------------------
    # Webhooks
    # ------------------------------------------------------------------

    async def get_webhook(self, channel_id: str) -> Optional[str]:
        return await self.webhooks.get_cached_webhook(channel_id)

    async def cache_webhook(self, channel_id: str, webhook_url: str) -> None:
        await self.webhooks.cache_webhook(channel_id, webhook_url)

    async def invalidate_webhook(self, channel_id: str) -> None:
        await self.webhooks.invalidate_webhook(channel_id)

    async def get_or_create_webhook(self, channel: WebhookChannel) -> Optional[str]:
        return await self.webhooks.get_or_create_webhook(channel)

    # ------------------------------------------------------------------
    # Active calls
    # ------------------------------------------------------------------

    async def get_active_call(self, channel_id: str) -> Optional[ActiveCall]:
        call_id = await self._store.hget(CALL_INDEX_KEY, channel_id)
        if call_id is None:
            return None

        raw = await self._store.get(CALL_DATA_KEY.format(call_id=call_id))
        if raw is not None:
            try:
                return deserialize_call(raw)
            except ValueError as exc:
                logger.error("[CALL CACHE] Dropping unreadable payload for call %s: %s", call_id, exc)

        await self._drop_index_entry(channel_id, call_id)
        return None

    async def is_in_call(self, channel_id: str) -> bool:
        return await self.get_active_call(channel_id) is not None

    async def cache_active_call(self, call: ActiveCall) -> None:
        """Write the payload, the membership marker and every participant's index entry at once."""
        pipe = self._store.pipeline()
        pipe.set(CALL_DATA_KEY.format(call_id=call.id), serialize_call(call), ttl=self._call_ttl)
        pipe.sadd(CALL_ID_SET_KEY, call.id)
        pipe.hset(CALL_INDEX_KEY, {channel_id: call.id for channel_id in call.channel_ids})
        await pipe.execute()
        logger.debug("[CALL CACHE] Cached call %s for channels %s", call.id, call.channel_ids)

    async def remove_active_call(self, channel_id: str) -> Optional[ActiveCall]:
        """Remove the call `channel_id` belongs to, for all of its participants.

        Index entries are only removed while they still point at this call.
        Returns the removed call when its payload was still cached.
        """
        call_id = await self._store.hget(CALL_INDEX_KEY, channel_id)
        if call_id is None:
            return None

        call: Optional[ActiveCall] = None
        raw = await self._store.get(CALL_DATA_KEY.format(call_id=call_id))
        if raw is not None:
            try:
                call = deserialize_call(raw)
            except ValueError as exc:
                logger.error("[CALL CACHE] Unreadable payload for call %s during removal: %s", call_id, exc)

        channels = set(call.channel_ids) if call else set()
        channels.add(channel_id)
        ordered = sorted(channels)
        current = await self._store.hmget(CALL_INDEX_KEY, ordered)
        stale = [ch for ch, mapped in zip(ordered, current) if mapped == call_id]

        pipe = self._store.pipeline()
        if stale:
            pipe.hdel(CALL_INDEX_KEY, *stale)
        pipe.delete(CALL_DATA_KEY.format(call_id=call_id))
        pipe.srem(CALL_ID_SET_KEY, call_id)
        await pipe.execute()

        logger.debug("[CALL CACHE] Removed call %s (channels %s)", call_id, stale)
        return call

    async def _drop_index_entry(self, channel_id: str, call_id: str) -> None:
        pipe = self._store.pipeline()
        pipe.hdel(CALL_INDEX_KEY, channel_id)
        pipe.srem(CALL_ID_SET_KEY, call_id)
        await pipe.execute()
        logger.info("[CALL CACHE] Removed orphan index entry %s -> %s", channel_id, call_id)

    # ------------------------------------------------------------------
    # Match reservations
    # ------------------------------------------------------------------

    async def reserve_for_match(self, *requests: CallRequest) -> bool:
        """Hold every request's channel for a match commit, or none of them.

        A held channel counts as busy even after its queue entry is gone and
        before its call is cached. The value is the request id being matched.
        """
        held: List[str] = []
        for request in requests:
            key = MATCH_RESERVATION_KEY.format(channel_id=request.channel_id)
            if not await self._store.set(key, request.id, ttl=MATCH_RESERVATION_TTL_SECS, nx=True):
                if held:
                    await self._store.delete(*held)
                return False
            held.append(key)
        return True

    async def release_match(self, *channel_ids: str) -> None:
        await self._store.delete(*(MATCH_RESERVATION_KEY.format(channel_id=c) for c in channel_ids))

    async def get_match_reservation(self, channel_id: str) -> Optional[str]:
        """Id of the request currently being matched for `channel_id`, if any."""
        return await self._store.get(MATCH_RESERVATION_KEY.format(channel_id=channel_id))

    async def is_busy(self, channel_id: str) -> bool:
        """In a call, or being matched into one. The reservation is read first:
        it is only released once the call is cached."""
        if await self.get_match_reservation(channel_id) is not None:
            return True
        return await self.is_in_call(channel_id)

    # ------------------------------------------------------------------
    # Recent matches
    # ------------------------------------------------------------------

    async def has_recent_match(self, user_a: str, user_b: str) -> bool:
        return await self._store.exists(recent_match_key(user_a, user_b))

    async def record_recent_match(self, user_a: str, user_b: str) -> None:
        await self._store.set(recent_match_key(user_a, user_b), "1", ttl=self._recent_match_ttl)

    # ------------------------------------------------------------------
    # Maintenance
    # ------------------------------------------------------------------

    async def get_cache_stats(self) -> Dict[str, int]:
        return {
            "active_calls": await self._store.scard(CALL_ID_SET_KEY),
            "indexed_channels": await self._store.hlen(CALL_INDEX_KEY),
        }

    async def clear_cache(self) -> int:
        """Drop every cached call and the whole index. Returns how many calls were dropped."""
        call_ids: List[str] = sorted(await self._store.smembers(CALL_ID_SET_KEY))
        pipe = self._store.pipeline()
        for call_id in call_ids:
            pipe.delete(CALL_DATA_KEY.format(call_id=call_id))
        pipe.delete(CALL_INDEX_KEY, CALL_ID_SET_KEY)
        await pipe.execute()
        logger.info("[CALL CACHE] Cleared %d cached call(s)", len(call_ids))
        return len(call_ids)
