"""
Hub moderation log: who removed a relayed message, recorded durably and,
when the hub has a log webhook, posted there as well.
"""

from __future__ import annotations

import datetime
from typing import Any, Iterable, Optional

import aiosqlite
import discord

from interchat.datatypes.network_datatypes import Hub, ModLogEntry, OriginalMessage
from interchat.gateway.webhook_gateway import WebhookGateway, build_payload
from interchat.repositories.mod_log_repo import ModLogRepository
from interchat.util.format_utils import now_ms, to_unix_ms, truncate
from interchat.util.logger import get_logger

logger = get_logger("mod_logs")

ACTION_MESSAGE_DELETE = "MESSAGE_DELETE"


def resolve_deleted_by(
    entries: Iterable[Any],
    author_id: str,
    channel_id: str,
    now: Optional[int] = None,
    window_secs: float = 5.0,
) -> str:
    """
    Work out who deleted a message from ``MessageDelete`` audit log entries.

    Discord only writes an audit entry when someone other than the author
    deletes a message. The first entry (newest first) that targets the
    author, in the same channel, within `window_secs`, names the executor;
    otherwise the author deleted it.
    """
    now = now if now is not None else now_ms()
    cutoff = now - int(window_secs * 1000)
    for entry in entries:
        target = getattr(entry, "target", None)
        extra_channel = getattr(getattr(entry, "extra", None), "channel", None)
        executor = getattr(entry, "user", None)
        if target is None or extra_channel is None or executor is None:
            continue
        if str(target.id) != str(author_id) or str(extra_channel.id) != str(channel_id):
            continue
        if to_unix_ms(entry.created_at) <= cutoff:
            continue
        return str(executor.id)
    return str(author_id)


class ModLogWriter:
    """Writes moderation events to ``hub_mod_logs`` and the hub's log channel."""

    def __init__(self, repo: ModLogRepository, gateway: WebhookGateway) -> None:
        self._repo = repo
        self._gateway = gateway

    async def log_message_delete(
        self,
        hub: Hub,
        original: OriginalMessage,
        moderator_id: str,
        moderator_name: Optional[str] = None,
    ) -> Optional[int]:
        entry = ModLogEntry(
            hub_id=hub.id,
            original_id=original.id,
            action=ACTION_MESSAGE_DELETE,
            moderator_id=moderator_id,
            author_id=original.author_id,
            channel_id=original.channel_id,
            created_at=now_ms(),
            details=truncate(original.content, 1000),
        )
        try:
            entry_id = await self._repo.add(entry)
        except aiosqlite.Error as exc:
            logger.error("[MOD LOGS] Failed to record deletion of %s: %s", original.id, exc)
            entry_id = None

        if hub.log_webhook_url:
            embed = build_delete_log_embed(hub, original, moderator_id, moderator_name)
            result = await self._gateway.send(hub.log_webhook_url, build_payload(embeds=[embed], username="InterChat Logs"))
            if not result.ok:
                logger.warning("[MOD LOGS] Hub %s log webhook failed: %s", hub.id, result.error)
        return entry_id


def build_delete_log_embed(hub: Hub, original: OriginalMessage, moderator_id: str, moderator_name: Optional[str]) -> discord.Embed:
    embed = discord.Embed(
        title="🗑️ Message Deleted",
        description=truncate(original.content, 4000) or "*no text content*",
        color=discord.Color.red(),
        timestamp=datetime.datetime.now(datetime.timezone.utc),
    )
    embed.add_field(name="Author", value=f"<@{original.author_id}> (`{original.author_id}`)", inline=True)
    embed.add_field(name="Deleted By", value=moderator_name or f"<@{moderator_id}>", inline=True)
    embed.add_field(name="Channel", value=f"<#{original.channel_id}>", inline=True)
    if original.image_url:
        embed.set_image(url=original.image_url)
    embed.set_footer(text=f"Hub: {hub.name}")
    return embed
