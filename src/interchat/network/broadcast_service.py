"""
Hub fan-out: relay a message to every connected channel of its hub, and
propagate later edits and deletions through the stored broadcast mapping.

A failing recipient never blocks the others. Recipients whose webhook is
gone for good are flagged disconnected so later broadcasts skip them.
Edits and deletions of one original take a cache lock for the duration of
the propagation so a second request cannot interleave with the first.
"""

from __future__ import annotations

import asyncio
from typing import Any, Awaitable, Callable, Iterable, List, Optional, Tuple

import aiosqlite

from interchat.cache.cache_store import CacheError, CacheStore
from interchat.configuration.settings_sections import NetworkSettings
from interchat.datatypes.network_datatypes import (
    Broadcast,
    BroadcastResult,
    Connection,
    HubMessage,
    OriginalMessage,
    PropagationResult,
)
from interchat.gateway.webhook_gateway import SendResult, WebhookGateway, is_webhook_gone
from interchat.network.mod_logs import ModLogWriter, resolve_deleted_by
from interchat.repositories.connection_repo import ConnectionRepository, HubRepository
from interchat.repositories.message_repo import MessageRepository
from interchat.ui.hub_message import build_hub_payload
from interchat.util.format_utils import now_ms
from interchat.util.logger import get_logger

logger = get_logger("broadcast_service")

EDIT_LOCK_KEY = "hub:edit:lock:{original_id}"
DELETE_LOCK_KEY = "hub:delete:lock:{original_id}"


class BroadcastService:
    """Sends, edits and deletes hub messages across all connected channels."""

    def __init__(
        self,
        store: CacheStore,
        messages: MessageRepository,
        connections: ConnectionRepository,
        hubs: HubRepository,
        gateway: WebhookGateway,
        settings: NetworkSettings,
        mod_logs: Optional[ModLogWriter] = None,
    ) -> None:
        self._store = store
        self._messages = messages
        self._connections = connections
        self._hubs = hubs
        self._gateway = gateway
        self._settings = settings
        self._mod_logs = mod_logs

    # ------------------------------------------------------------------
    # Send
    # ------------------------------------------------------------------

    async def send_to_hub(self, hub_id: str, message: HubMessage, exclude_channel_id: Optional[str] = None) -> BroadcastResult:
        """Deliver `message` to every connected channel of `hub_id` except `exclude_channel_id`."""
        connections = [c for c in await self._connections.get_connected(hub_id) if c.channel_id != exclude_channel_id]
        outcomes = await asyncio.gather(*(self._deliver(c, message) for c in connections))

        delivered: List[Broadcast] = []
        failed: List[str] = []
        gone: List[str] = []
        for connection, result in outcomes:
            if result.ok and result.message_id:
                delivered.append(Broadcast(
                    message_id=result.message_id,
                    channel_id=connection.channel_id,
                    original_id=message.id,
                    hub_id=hub_id,
                    mode=connection.mode,
                ))
                continue
            failed.append(connection.channel_id)
            if is_webhook_gone(result.error):
                gone.append(connection.channel_id)
            else:
                logger.warning("[BROADCAST] Send to %s failed: %s", connection.channel_id, result.error)

        original = OriginalMessage(
            id=message.id,
            hub_id=hub_id,
            channel_id=message.channel_id,
            guild_id=message.guild_id,
            author_id=message.author_id,
            content=message.content,
            created_at=message.created_at,
            image_url=message.image_url,
        )
        try:
            await self._messages.store_original(original, delivered)
            if gone:
                await self._connections.mark_disconnected(gone)
            await self._connections.touch(message.channel_id, now_ms())
        except aiosqlite.Error as exc:
            logger.error("[BROADCAST] Failed to record broadcast of %s: %s", message.id, exc)

        logger.debug(
            "[BROADCAST] Message %s to hub %s: %d delivered, %d failed, %d disconnected",
            message.id, hub_id, len(delivered), len(failed), len(gone),
        )
        return BroadcastResult(delivered=delivered, failed_channel_ids=failed, disconnected_channel_ids=gone)

    async def relay_message(self, message: HubMessage) -> Optional[BroadcastResult]:
        """Broadcast a message posted in a connected channel to the rest of its hub."""
        connection = await self._connections.get_by_channel(message.channel_id)
        if connection is None or not connection.connected:
            return None
        return await self.send_to_hub(connection.hub_id, message, exclude_channel_id=message.channel_id)

    async def _deliver(self, connection: Connection, message: HubMessage) -> Tuple[Connection, SendResult]:
        payload = build_hub_payload(
            connection.mode,
            message.content,
            username=message.author_username,
            avatar_url=message.author_avatar_url,
            image_url=message.image_url,
            guild_name=message.guild_name,
        )
        result = await self._gateway.send(connection.webhook_url, payload, connection.thread_id)
        return connection, result

    # ------------------------------------------------------------------
    # Edit / delete
    # ------------------------------------------------------------------

    async def edit_message_in_hub(
        self,
        hub_id: str,
        original_id: str,
        content: str,
        image_url: Optional[str] = None,
    ) -> PropagationResult:
        """Re-render every copy of `original_id` with the new content."""
        original = await self._messages.get_original(original_id)
        if original is None or original.hub_id != hub_id:
            return PropagationResult(done=0, total=0)

        async def edit(connection: Connection, broadcast: Broadcast) -> SendResult:
            payload = build_hub_payload(connection.mode, content, image_url=image_url)
            return await self._gateway.edit_message(connection.webhook_url, broadcast.message_id, payload, connection.thread_id)

        result = await self._propagate(EDIT_LOCK_KEY.format(original_id=original_id), original_id, edit)
        if result is None:
            return PropagationResult(done=0, total=0)

        try:
            await self._messages.update_content(original_id, content, image_url)
        except aiosqlite.Error as exc:
            logger.error("[BROADCAST] Failed to store edit of %s: %s", original_id, exc)
        logger.info("[BROADCAST] Edited %d/%d copies of %s", result.done, result.total, original_id)
        return result

    async def delete_message_from_hub(self, hub_id: str, original_id: str) -> PropagationResult:
        """Delete every copy of `original_id`, then its stored record."""
        original = await self._messages.get_original(original_id)
        if original is None or original.hub_id != hub_id:
            return PropagationResult(done=0, total=0)

        async def delete(connection: Connection, broadcast: Broadcast) -> SendResult:
            return await self._gateway.delete_message(connection.webhook_url, broadcast.message_id, connection.thread_id)

        result = await self._propagate(DELETE_LOCK_KEY.format(original_id=original_id), original_id, delete)
        if result is None:
            return PropagationResult(done=0, total=0)

        try:
            await self._messages.delete_original(original_id)
        except aiosqlite.Error as exc:
            logger.error("[BROADCAST] Failed to remove record of %s: %s", original_id, exc)
        logger.info("[BROADCAST] Deleted %d/%d copies of %s", result.done, result.total, original_id)
        return result

    async def handle_message_edit(
        self,
        message_id: str,
        channel_id: str,
        content: str,
        image_url: Optional[str] = None,
    ) -> Optional[PropagationResult]:
        """An original hub message was edited in its own channel. Keeps the stored image unless a new one is given."""
        original = await self._messages.get_original(str(message_id))
        if original is None or original.channel_id != str(channel_id):
            return None
        image_url = image_url or original.image_url
        if content == original.content and image_url == original.image_url:
            return None
        return await self.edit_message_in_hub(original.hub_id, original.id, content, image_url)

    async def handle_message_delete(
        self,
        message_id: str,
        channel_id: str,
        author_id: Optional[str] = None,
        audit_entries: Iterable[Any] = (),
    ) -> Optional[PropagationResult]:
        """
        An original hub message was deleted in its own channel.

        Removes every copy and writes a mod log entry naming the deleter
        (see :func:`resolve_deleted_by`). Copies being deleted are ignored:
        webhook messages leave no usable audit trail.
        """
        original = await self._messages.get_original(str(message_id))
        if original is None or original.channel_id != str(channel_id):
            return None
        hub = await self._hubs.get(original.hub_id)
        if hub is None:
            return None

        entries = list(audit_entries)
        deleted_by = resolve_deleted_by(
            entries, author_id or original.author_id, channel_id, window_secs=self._settings.delete_audit_window_secs,
        )
        result = await self.delete_message_from_hub(hub.id, original.id)
        if self._mod_logs is not None:
            moderator_name = next(
                (e.user.name for e in entries if getattr(e, "user", None) is not None and str(e.user.id) == deleted_by),
                None,
            )
            await self._mod_logs.log_message_delete(hub, original, deleted_by, moderator_name)
        return result

    async def _propagate(
        self,
        lock_key: str,
        original_id: str,
        action: Callable[[Connection, Broadcast], Awaitable[SendResult]],
    ) -> Optional[PropagationResult]:
        """Run `action` on every reachable copy under `lock_key`. None if the lock is taken."""
        if not await self._acquire(lock_key):
            logger.info("[BROADCAST] Change to %s already in progress, skipping", original_id)
            return None
        try:
            broadcasts = await self._messages.get_broadcasts(original_id)

            async def run(broadcast: Broadcast) -> bool:
                connection = await self._connections.get_by_channel(broadcast.channel_id)
                if connection is None or not connection.connected:
                    return False
                outcome = await action(connection, broadcast)
                if not outcome.ok:
                    logger.debug("[BROADCAST] Copy %s in %s: %s", broadcast.message_id, broadcast.channel_id, outcome.error)
                return outcome.ok

            outcomes = await asyncio.gather(*(run(b) for b in broadcasts))
            return PropagationResult(done=sum(1 for ok in outcomes if ok), total=len(broadcasts))
        finally:
            await self._release(lock_key)

    async def _acquire(self, key: str) -> bool:
        try:
            return await self._store.set(key, "1", ttl=self._settings.edit_lock_ttl_secs, nx=True)
        except CacheError as exc:
            logger.warning("[BROADCAST] Lock %s unavailable, proceeding without it: %s", key, exc)
            return True

    async def _release(self, key: str) -> None:
        try:
            await self._store.delete(key)
        except CacheError as exc:
            logger.warning("[BROADCAST] Failed to release lock %s: %s", key, exc)
