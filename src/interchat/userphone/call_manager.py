"""
Call lifecycle: the entry point slash commands and listeners talk to.

Per channel the states are ``IDLE -> QUEUED -> IN_CALL -> IDLE``. The
cache is authoritative for routing; the repository is the fallback and
the durable record.

Command-style operations (``initiate_call``, ``hangup_call``, ``skip_call``,
``report_call``) always return a :class:`CallResult`. Participant and
message operations return a bool. Neither lets an exception escape.
"""

from __future__ import annotations

import uuid
from typing import Optional

import aiosqlite
import discord

from interchat.cache.cache_store import CacheError
from interchat.configuration.settings_sections import CallingSettings
from interchat.datatypes.call_datatypes import (
    ActiveCall,
    CallError,
    CallErrorCode,
    CallMessage,
    CallRequest,
    CallResult,
    CallStatus,
)
from interchat.gateway.webhook_gateway import WebhookGateway, build_payload, is_webhook_gone
from interchat.repositories.call_repo import CallRepository
from interchat.userphone.call_cache_manager import CallCacheManager
from interchat.userphone.call_events import (
    CallEndedEvent,
    CallEventBus,
    CallEventType,
    CallMatchedEvent,
    CallMessageEvent,
    CallStartedEvent,
    ParticipantJoinedEvent,
    ParticipantLeftEvent,
    QueueTimeoutEvent,
)
from interchat.userphone.matching_engine import MatchingEngine
from interchat.userphone.notification_service import NotificationService
from interchat.userphone.queue_manager import QueueManager
from interchat.util.format_utils import format_duration, now_ms, truncate
from interchat.util.logger import get_logger

logger = get_logger("call_manager")

MAX_RELAY_LENGTH = 2000
MAX_REPORT_REASON_LENGTH = 500

ERROR_MESSAGES = {
    CallErrorCode.CHANNEL_ALREADY_IN_CALL: "❌ This channel is already in an active call! Use `/hangup` to end it first.",
    CallErrorCode.CHANNEL_ALREADY_IN_QUEUE: "❌ This channel is already in the call queue! Please wait for a match.",
    CallErrorCode.WEBHOOK_CREATION_FAILED: "❌ Failed to create webhook for this channel. Please check bot permissions.",
    CallErrorCode.CALL_NOT_FOUND: "❌ This channel isn't in an active call. Use `/call` to start one!",
    CallErrorCode.MATCHING_TIMEOUT: "❌ The call queue is full right now. Please try again in a moment.",
    CallErrorCode.INVALID_CHANNEL: "❌ Calls can only be started from a text channel in a server.",
    CallErrorCode.PERMISSION_DENIED: "❌ You don't have permission to do that here.",
    CallErrorCode.DATABASE_ERROR: "❌ An error occurred while saving the call. Please try again.",
    CallErrorCode.REDIS_ERROR: "❌ The call service is temporarily unavailable. Please try again.",
}


def error_result(code: CallErrorCode, message: Optional[str] = None) -> CallResult:
    return CallResult.failure(code, message or ERROR_MESSAGES[code])


class CallManager:
    """Starts, relays, skips and ends calls."""

    def __init__(
        self,
        queue: QueueManager,
        matching: MatchingEngine,
        cache_manager: CallCacheManager,
        calls: CallRepository,
        notifications: NotificationService,
        gateway: WebhookGateway,
        event_bus: CallEventBus,
        settings: CallingSettings,
    ) -> None:
        self._queue = queue
        self._matching = matching
        self._cache_manager = cache_manager
        self._calls = calls
        self._notifications = notifications
        self._gateway = gateway
        self._event_bus = event_bus
        self._settings = settings

        event_bus.subscribe(CallEventType.MATCHED, self._on_call_matched)
        event_bus.subscribe(CallEventType.STARTED, self._on_call_started)
        event_bus.subscribe(CallEventType.QUEUE_TIMEOUT, self._on_queue_timeout)
        event_bus.subscribe(CallEventType.PARTICIPANT_JOINED, self._on_participant_joined)
        event_bus.subscribe(CallEventType.PARTICIPANT_LEFT, self._on_participant_left)

    # ------------------------------------------------------------------
    # Commands
    # ------------------------------------------------------------------

    async def initiate_call(self, channel: discord.abc.GuildChannel, user_id: str) -> CallResult:
        """Queue `channel` for a call and try to match it immediately."""
        if isinstance(channel, discord.Thread) or getattr(channel, "guild", None) is None:
            return error_result(CallErrorCode.INVALID_CHANNEL)

        channel_id = str(channel.id)
        try:
            if await self._cache_manager.is_busy(channel_id):
                return error_result(CallErrorCode.CHANNEL_ALREADY_IN_CALL)
            if await self._queue.is_in_queue(channel_id):
                return error_result(CallErrorCode.CHANNEL_ALREADY_IN_QUEUE)

            webhook_url = await self._cache_manager.get_or_create_webhook(channel)
            if not webhook_url:
                return error_result(CallErrorCode.WEBHOOK_CREATION_FAILED)

            request = self._new_request(channel_id, str(channel.guild.id), str(user_id), webhook_url)
            return await self._enqueue_and_match(request)
        except CallError as exc:
            return self._from_call_error(exc)
        except CacheError as exc:
            logger.error("[CALL MANAGER] Cache failure starting call in %s: %s", channel_id, exc)
            return error_result(CallErrorCode.REDIS_ERROR)
        except aiosqlite.Error as exc:
            logger.error("[CALL MANAGER] Database failure starting call in %s: %s", channel_id, exc)
            return error_result(CallErrorCode.DATABASE_ERROR)

    async def hangup_call(self, channel_id: str) -> CallResult:
        """End the call `channel_id` is in for both sides, or take it out of the queue."""
        try:
            call = await self._find_call(channel_id)
            if call is None:
                if await self._queue.dequeue_by_channel_id(channel_id):
                    logger.info("[CALL MANAGER] Channel %s left the queue", channel_id)
                    return CallResult(success=True, message="✅ **Removed from queue!** You're no longer waiting for a call match.")
                return error_result(CallErrorCode.CALL_NOT_FOUND)

            duration_ms = await self._end_call(call, ended_by=channel_id)
            return CallResult(
                success=True,
                message=f"📞 **Call ended!** Duration: {format_duration(duration_ms)}. Thanks for using InterChat!",
                call_id=call.id,
            )
        except CacheError as exc:
            logger.error("[CALL MANAGER] Cache failure ending call in %s: %s", channel_id, exc)
            return error_result(CallErrorCode.REDIS_ERROR)
        except aiosqlite.Error as exc:
            logger.error("[CALL MANAGER] Database failure ending call in %s: %s", channel_id, exc)
            return error_result(CallErrorCode.DATABASE_ERROR)

    async def skip_call(self, channel_id: str, user_id: str) -> CallResult:
        """End the current call and queue `channel_id` again, never with the same partner."""
        try:
            call = await self._find_call(channel_id)
            if call is None:
                return error_result(CallErrorCode.CALL_NOT_FOUND)

            own = call.get_participant(channel_id)
            other = call.get_other_participant(channel_id)
            if own is None or other is None:
                return error_result(CallErrorCode.CALL_NOT_FOUND)

            await self._end_call(call, ended_by=channel_id)

            # the pair stays excluded for a full window counted from now
            for user_a in own.users | {str(user_id)}:
                for user_b in other.users:
                    await self._cache_manager.record_recent_match(user_a, user_b)

            request = self._new_request(channel_id, own.guild_id, str(user_id), own.webhook_url)
            result = await self._enqueue_and_match(request)
        except CallError as exc:
            return self._from_call_error(exc, prefix="❌ Call ended but failed to start new match: ")
        except CacheError as exc:
            logger.error("[CALL MANAGER] Cache failure skipping call in %s: %s", channel_id, exc)
            return error_result(CallErrorCode.REDIS_ERROR)
        except aiosqlite.Error as exc:
            logger.error("[CALL MANAGER] Database failure skipping call in %s: %s", channel_id, exc)
            return error_result(CallErrorCode.DATABASE_ERROR)

        if result.call_id:
            return CallResult(success=True, message="⏭️ **Call skipped and new match found!**", call_id=result.call_id)
        status = result.queue_status
        position = f" You're #{status.position} in queue ({status.queue_length} total)." if status else ""
        return CallResult(
            success=True,
            message=f"⏭️ **Call skipped!** Looking for a new match...{position}",
            queue_status=status,
        )

    async def report_call(self, channel_id: str, user_id: str, reason: str) -> CallResult:
        """Report the call `channel_id` is in. An open report keeps the call out of retention cleanup."""
        try:
            call = await self._find_call(channel_id)
            if call is None:
                return error_result(CallErrorCode.CALL_NOT_FOUND)
            report_id = await self._calls.report_call(call.id, str(user_id), truncate(reason, MAX_REPORT_REASON_LENGTH))
        except CacheError as exc:
            logger.error("[CALL MANAGER] Cache failure reporting call in %s: %s", channel_id, exc)
            return error_result(CallErrorCode.REDIS_ERROR)
        except aiosqlite.Error as exc:
            logger.error("[CALL MANAGER] Database failure reporting call in %s: %s", channel_id, exc)
            return error_result(CallErrorCode.DATABASE_ERROR)

        logger.info("[CALL MANAGER] Report %d filed against call %s by %s", report_id, call.id, user_id)
        return CallResult(success=True, message="🚩 **Report sent.** Our moderators will review this call.", call_id=call.id)

    # ------------------------------------------------------------------
    # Lookups and participants
    # ------------------------------------------------------------------

    async def get_active_call(self, channel_id: str) -> Optional[ActiveCall]:
        try:
            return await self._find_call(channel_id)
        except (CacheError, aiosqlite.Error) as exc:
            logger.error("[CALL MANAGER] Failed to load active call for %s: %s", channel_id, exc)
            return None

    async def add_participant(self, channel_id: str, user_id: str) -> bool:
        """Add `user_id` to the channel's side of its call and announce the join."""
        user_id = str(user_id)
        try:
            call = await self._find_call(channel_id)
            participant = call.get_participant(channel_id) if call else None
            if call is None or participant is None:
                return False

            participant.users.add(user_id)
            await self._cache_manager.cache_active_call(call)
            await self._calls.add_user_to_participant(call.id, channel_id, user_id)
        except (CacheError, aiosqlite.Error) as exc:
            logger.error("[CALL MANAGER] Failed to add participant %s in %s: %s", user_id, channel_id, exc)
            return False

        logger.debug("[CALL MANAGER] User %s joined call %s in channel %s", user_id, call.id, channel_id)
        await self._event_bus.publish(ParticipantJoinedEvent(call_id=call.id, channel_id=channel_id, user_id=user_id))
        return True

    async def remove_participant(self, channel_id: str, user_id: str) -> bool:
        """Record that `user_id` left. The participant's ``users`` set keeps them."""
        user_id = str(user_id)
        try:
            call = await self._find_call(channel_id)
            if call is None or call.get_participant(channel_id) is None:
                return False
            await self._calls.mark_user_left(call.id, channel_id, user_id)
        except (CacheError, aiosqlite.Error) as exc:
            logger.error("[CALL MANAGER] Failed to remove participant %s in %s: %s", user_id, channel_id, exc)
            return False

        logger.debug("[CALL MANAGER] User %s left call %s in channel %s", user_id, call.id, channel_id)
        await self._event_bus.publish(ParticipantLeftEvent(call_id=call.id, channel_id=channel_id, user_id=user_id))
        return True

    async def update_call_message(
        self,
        channel_id: str,
        user_id: str,
        username: str,
        content: str,
        attachment_url: Optional[str] = None,
        avatar_url: Optional[str] = None,
    ) -> bool:
        """
        Log a message sent in `channel_id` and relay it to the other side.

        Returns True when the message was recorded and delivered.
        """
        user_id = str(user_id)
        try:
            call = await self._find_call(channel_id)
            participant = call.get_participant(channel_id) if call else None
            other = call.get_other_participant(channel_id) if call else None
            if call is None or participant is None or other is None:
                return False

            message = CallMessage(
                author_id=user_id,
                author_username=username,
                content=content,
                timestamp=now_ms(),
                attachment_url=attachment_url,
            )
            is_new_speaker = user_id not in participant.users
            participant.users.add(user_id)
            call.messages.append(message)
            limit = self._settings.max_cached_messages
            if len(call.messages) > limit:
                del call.messages[:-limit]

            await self._cache_manager.cache_active_call(call)
            if is_new_speaker:
                await self._calls.add_user_to_participant(call.id, channel_id, user_id)
            await self._calls.add_message(call.id, message, channel_id)
        except (CacheError, aiosqlite.Error, LookupError) as exc:
            logger.error("[CALL MANAGER] Failed to record message in %s: %s", channel_id, exc)
            return False

        if is_new_speaker:
            await self._event_bus.publish(ParticipantJoinedEvent(call_id=call.id, channel_id=channel_id, user_id=user_id))

        delivered = await self._relay(other.channel_id, other.webhook_url, message, avatar_url)
        await self._event_bus.publish(CallMessageEvent(call_id=call.id, channel_id=channel_id, message=message))
        return delivered

    async def handle_queue_timeout(self, request: CallRequest) -> None:
        logger.info("[CALL MANAGER] No match found for channel %s before timeout", request.channel_id)
        await self._notifications.notify_call_timeout(request.channel_id, webhook_url=request.webhook_url)

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _new_request(self, channel_id: str, guild_id: str, user_id: str, webhook_url: str) -> CallRequest:
        return CallRequest(
            id=f"req_{uuid.uuid4().hex}",
            channel_id=channel_id,
            guild_id=guild_id,
            initiator_id=user_id,
            webhook_url=webhook_url,
            timestamp=now_ms(),
            cluster_id=self._settings.cluster_id,
        )

    async def _enqueue_and_match(self, request: CallRequest) -> CallResult:
        status = await self._queue.enqueue(request)
        match = await self._matching.find_match(request)
        if match.matched:
            return CallResult(success=True, message="📞 **Call connected!** Say hello! 👋", call_id=match.call_id)
        return CallResult(
            success=True,
            message=f"🔍 **Looking for a match...** You're #{status.position} in queue ({status.queue_length} total).",
            queue_status=status,
        )

    async def _find_call(self, channel_id: str) -> Optional[ActiveCall]:
        """Cache first, then the repository; a repository hit is cached again."""
        call = await self._cache_manager.get_active_call(channel_id)
        if call is not None:
            return call

        call = await self._calls.get_active_call_by_channel(channel_id)
        if call is not None:
            logger.info("[CALL MANAGER] Call %s for %s recovered from the database", call.id, channel_id)
            await self._cache_manager.cache_active_call(call)
        return call

    async def _end_call(self, call: ActiveCall, ended_by: Optional[str] = None) -> int:
        """Mark the call ENDED, drop it from the cache and notify both sides. Returns the duration."""
        ended_at = now_ms()
        duration_ms = max(0, ended_at - call.created_at)

        # cache first: a call still ONGOING in the database is re-cached on the next lookup
        await self._cache_manager.remove_active_call(call.participants[0].channel_id)
        await self._calls.update_call_status(call.id, CallStatus.ENDED, ended_at)
        call.status = CallStatus.ENDED
        call.ended_at = ended_at

        stats = await self._calls.get_call_stats(call.id)
        message_count = max(stats.get("total_messages") or 0, len(call.messages))
        for participant in call.participants:
            await self._notifications.notify_call_ended(
                participant.channel_id, call.id, duration_ms, message_count, webhook_url=participant.webhook_url,
            )

        logger.info("[CALL MANAGER] Call %s ended after %s", call.id, format_duration(duration_ms))
        await self._event_bus.publish(CallEndedEvent(call=call, duration_ms=duration_ms, ended_by=ended_by))
        return duration_ms

    async def _relay(self, channel_id: str, webhook_url: str, message: CallMessage, avatar_url: Optional[str]) -> bool:
        text = message.content
        if message.attachment_url:
            text = f"{text}\n{message.attachment_url}" if text else message.attachment_url
        if not text:
            return False

        payload = build_payload(
            truncate(text, MAX_RELAY_LENGTH),
            username=message.author_username,
            avatar_url=avatar_url,
        )
        result = await self._gateway.send(webhook_url, payload)
        if result.ok:
            return True

        logger.warning("[CALL MANAGER] Relay to channel %s failed: %s", channel_id, result.error.message if result.error else "unknown")
        if is_webhook_gone(result.error):
            await self._cache_manager.invalidate_webhook(channel_id)
        return False

    @staticmethod
    def _from_call_error(exc: CallError, prefix: str = "") -> CallResult:
        message = ERROR_MESSAGES.get(exc.code, f"❌ {exc}")
        if prefix:
            message = prefix + message.removeprefix("❌ ")
        return error_result(exc.code, message)

    # ------------------------------------------------------------------
    # Event handlers
    # ------------------------------------------------------------------

    async def _on_call_matched(self, event: CallMatchedEvent) -> None:
        for participant in event.call.participants:
            await self._notifications.notify_call_matched(participant.channel_id, event.call)
        await self._event_bus.publish(CallStartedEvent(call=event.call))

    async def _on_call_started(self, event: CallStartedEvent) -> None:
        for participant in event.call.participants:
            await self._notifications.notify_call_started(participant.channel_id, event.call)

    async def _on_queue_timeout(self, event: QueueTimeoutEvent) -> None:
        await self.handle_queue_timeout(event.request)

    async def _on_participant_joined(self, event: ParticipantJoinedEvent) -> None:
        call = await self.get_active_call(event.channel_id)
        other = call.get_other_participant(event.channel_id) if call else None
        if other is not None:
            await self._notifications.notify_participant_joined(other.channel_id, other.webhook_url, f"<@{event.user_id}>")

    async def _on_participant_left(self, event: ParticipantLeftEvent) -> None:
        call = await self.get_active_call(event.channel_id)
        other = call.get_other_participant(event.channel_id) if call else None
        if other is not None:
            await self._notifications.notify_participant_left(other.channel_id, other.webhook_url, f"<@{event.user_id}>")
