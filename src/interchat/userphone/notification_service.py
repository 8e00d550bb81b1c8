"""
User-facing call notifications, delivered through each channel's webhook.

Every notification is rate limited per channel (``notification_rate_limit``
per ``notification_window_secs``, counted in the cache). Nothing here
raises: a notification that cannot be delivered is logged and dropped.
"""

from __future__ import annotations

from typing import Optional, Sequence

import discord

from interchat.cache.cache_store import CacheError, CacheStore
from interchat.configuration.settings_sections import CallingSettings
from interchat.datatypes.call_datatypes import ActiveCall
from interchat.gateway.webhook_gateway import WebhookGateway, build_payload
from interchat.ui import call_embeds
from interchat.userphone.call_cache_manager import CallCacheManager
from interchat.util.logger import get_logger

logger = get_logger("notification_service")

RATE_LIMIT_KEY = "call:notify:rate:{channel_id}"


class NotificationService:
    """Sends call lifecycle notices (embeds plus buttons) to call channels."""

    def __init__(
        self,
        gateway: WebhookGateway,
        cache_manager: CallCacheManager,
        store: CacheStore,
        settings: CallingSettings,
    ) -> None:
        self._gateway = gateway
        self._cache_manager = cache_manager
        self._store = store
        self._limit = settings.notification_rate_limit
        self._window = settings.notification_window_secs

    async def check_rate_limit(self, channel_id: str) -> bool:
        """Count one notification for `channel_id`; False once the window's limit is reached.

        Cache failures allow the notification.
        """
        key = RATE_LIMIT_KEY.format(channel_id=channel_id)
        try:
            count = await self._store.incr(key)
            if count == 1:
                await self._store.expire(key, self._window)
        except CacheError as exc:
            logger.warning("[NOTIFICATIONS] Rate limit check failed for channel %s: %s", channel_id, exc)
            return True

        if count > self._limit:
            logger.debug("[NOTIFICATIONS] Rate limited channel %s (%d in window)", channel_id, count)
            return False
        return True

    # ------------------------------------------------------------------
    # Call lifecycle
    # ------------------------------------------------------------------

    async def notify_call_matched(self, channel_id: str, call: ActiveCall) -> None:
        participant = call.get_participant(channel_id)
        if participant is None:
            logger.warning("[NOTIFICATIONS] Channel %s is not part of call %s", channel_id, call.id)
            return
        if not await self.check_rate_limit(channel_id):
            return
        embed, view = call_embeds.build_call_matched()
        await self._send(channel_id, participant.webhook_url, [embed], view)

    async def notify_call_started(self, channel_id: str, call: ActiveCall) -> None:
        """Matched already tells both sides the call is live; nothing extra is sent."""
        logger.debug("[NOTIFICATIONS] Call %s started for channel %s", call.id, channel_id)

    async def notify_call_ended(
        self,
        channel_id: str,
        call_id: str,
        duration_ms: Optional[int] = None,
        message_count: Optional[int] = None,
        webhook_url: Optional[str] = None,
    ) -> None:
        if not await self.check_rate_limit(channel_id):
            return
        embed, view = call_embeds.build_call_ended(duration_ms, message_count)
        await self._send(channel_id, webhook_url, [embed], view)
        logger.debug("[NOTIFICATIONS] Sent end notice for call %s to channel %s", call_id, channel_id)

    async def notify_call_timeout(self, channel_id: str, webhook_url: Optional[str] = None) -> None:
        if not await self.check_rate_limit(channel_id):
            return
        embed, view = call_embeds.build_call_timeout()
        await self._send(channel_id, webhook_url, [embed], view)

    async def notify_connection_error(
        self,
        channel_id: str,
        error_type: str,
        retryable: bool = True,
        webhook_url: Optional[str] = None,
    ) -> None:
        if not await self.check_rate_limit(channel_id):
            return
        logger.debug("[NOTIFICATIONS] Connection error (%s) for channel %s", error_type, channel_id)
        embed, view = call_embeds.build_connection_error(retryable)
        await self._send(channel_id, webhook_url, [embed], view)

    # ------------------------------------------------------------------
    # Participants and system messages
    # ------------------------------------------------------------------

    async def notify_participant_joined(self, channel_id: str, webhook_url: str, username: str, guild_name: Optional[str] = None) -> None:
        if not await self.check_rate_limit(channel_id):
            return
        embed = call_embeds.build_participant_notice(username, joined=True, guild_name=guild_name)
        await self._send(channel_id, webhook_url, [embed])

    async def notify_participant_left(self, channel_id: str, webhook_url: str, username: str, guild_name: Optional[str] = None) -> None:
        if not await self.check_rate_limit(channel_id):
            return
        embed = call_embeds.build_participant_notice(username, joined=False, guild_name=guild_name)
        await self._send(channel_id, webhook_url, [embed])

    async def send_system_message(self, channel_id: str, message: str, webhook_url: Optional[str] = None) -> None:
        if not await self.check_rate_limit(channel_id):
            return
        await self._send(channel_id, webhook_url, [call_embeds.build_system_message(message)])

    # ------------------------------------------------------------------
    # Delivery
    # ------------------------------------------------------------------

    async def _send(
        self,
        channel_id: str,
        webhook_url: Optional[str],
        embeds: Sequence[discord.Embed],
        view: Optional[discord.ui.View] = None,
    ) -> bool:
        url = webhook_url or await self._cache_manager.get_webhook(channel_id)
        if not url:
            logger.warning("[NOTIFICATIONS] No webhook known for channel %s, notice dropped", channel_id)
            return False

        result = await self._gateway.send(url, build_payload(embeds=embeds, view=view, username="InterChat Calls"))
        if not result.ok:
            logger.error(
                "[NOTIFICATIONS] Webhook send failed for channel %s: %s",
                channel_id, result.error.message if result.error else "unknown error",
            )
            return False
        return True
