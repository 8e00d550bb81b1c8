"""
Per-channel webhook URL cache.

Creating a webhook costs two Discord API calls (list, then create), so
call initiation reads the cached URL first and only falls back to Discord
on a miss. Threads use their parent channel's webhook.
"""

from __future__ import annotations

from typing import Optional, Union

import discord

from interchat.cache.cache_store import CacheError, CacheStore
from interchat.util.logger import get_logger

logger = get_logger("webhook_cache")

WEBHOOK_KEY = "webhook:cache:{channel_id}"

WebhookChannel = Union[discord.TextChannel, discord.Thread]


class WebhookCache:
    """Caches webhook URLs by channel id for ``ttl_secs`` seconds."""

    def __init__(self, store: CacheStore, ttl_secs: int = 24 * 60 * 60, webhook_name: str = "InterChat Calls") -> None:
        self._store = store
        self._ttl = ttl_secs
        self._webhook_name = webhook_name

    async def get_cached_webhook(self, channel_id: str) -> Optional[str]:
        try:
            return await self._store.get(WEBHOOK_KEY.format(channel_id=channel_id))
        except CacheError as exc:
            logger.error("[WEBHOOK CACHE] Failed to read webhook for channel %s: %s", channel_id, exc)
            return None

    async def cache_webhook(self, channel_id: str, webhook_url: str) -> None:
        try:
            await self._store.set(WEBHOOK_KEY.format(channel_id=channel_id), webhook_url, ttl=self._ttl)
            logger.debug("[WEBHOOK CACHE] Cached webhook for channel %s", channel_id)
        except CacheError as exc:
            logger.error("[WEBHOOK CACHE] Failed to cache webhook for channel %s: %s", channel_id, exc)

    async def invalidate_webhook(self, channel_id: str) -> None:
        try:
            await self._store.delete(WEBHOOK_KEY.format(channel_id=channel_id))
            logger.debug("[WEBHOOK CACHE] Invalidated webhook for channel %s", channel_id)
        except CacheError as exc:
            logger.error("[WEBHOOK CACHE] Failed to invalidate webhook for channel %s: %s", channel_id, exc)

    async def get_or_create_webhook(self, channel: WebhookChannel) -> Optional[str]:
        """Return a webhook URL for `channel`, creating the webhook when needed.

        Returns None when the bot lacks Manage Webhooks or Discord refuses.
        """
        channel_id = str(channel.id)
        cached = await self.get_cached_webhook(channel_id)
        if cached:
            logger.debug("[WEBHOOK CACHE] Hit for channel %s", channel_id)
            return cached

        logger.debug("[WEBHOOK CACHE] Miss for channel %s, fetching from Discord", channel_id)
        target = channel.parent if isinstance(channel, discord.Thread) else channel
        if target is None or not hasattr(target, "webhooks"):
            logger.warning("[WEBHOOK CACHE] Channel %s cannot host webhooks", channel_id)
            return None

        try:
            webhook = await self._find_existing(target)
            if webhook is None:
                avatar = await self._read_avatar(channel)
                webhook = await target.create_webhook(name=self._webhook_name, avatar=avatar)
                logger.info("[WEBHOOK CACHE] Created webhook in channel %s", target.id)
        except discord.Forbidden:
            logger.warning("[WEBHOOK CACHE] Missing Manage Webhooks permission in channel %s", target.id)
            return None
        except discord.HTTPException as exc:
            logger.error("[WEBHOOK CACHE] Discord refused webhook for channel %s: %s", target.id, exc)
            return None

        await self.cache_webhook(channel_id, webhook.url)
        return webhook.url

    async def _find_existing(self, channel: discord.TextChannel) -> Optional[discord.Webhook]:
        me = channel.guild.me if channel.guild else None
        for webhook in await channel.webhooks():
            if webhook.name != self._webhook_name or webhook.token is None:
                continue
            if me is None or webhook.user is None or webhook.user.id == me.id:
                return webhook
        return None

    @staticmethod
    async def _read_avatar(channel: WebhookChannel) -> Optional[bytes]:
        me = channel.guild.me if channel.guild else None
        if me is None:
            return None
        try:
            return await me.display_avatar.read()
        except discord.HTTPException:
            return None
