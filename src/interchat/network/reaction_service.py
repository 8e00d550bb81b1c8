"""
Hub reactions: record who reacted with what on an original message and
mirror the result as a reaction button row on every copy.

Reactions are keyed by the original message; a reaction on any copy is
resolved to its original through the broadcast mapping. Each user gets a
short per-message cooldown (cache ``SET NX`` with a TTL) so button mashing
does not fan out a burst of edits. Every change is a read-modify-write of
the stored map inside one database transaction.
"""

from __future__ import annotations

import asyncio
import weakref
from typing import Any, Callable, Dict, Optional, TypeVar

import aiosqlite

from interchat.cache.cache_store import CacheError, CacheStore
from interchat.configuration.settings_sections import NetworkSettings
from interchat.datatypes.network_datatypes import Broadcast, OriginalMessage, PropagationResult, ReactionMap
from interchat.gateway.webhook_gateway import WebhookGateway, build_payload
from interchat.network import reactions as reaction_map
from interchat.repositories.connection_repo import ConnectionRepository, HubRepository
from interchat.repositories.message_repo import MessageRepository
from interchat.ui.reaction_buttons import build_reaction_row, replace_reaction_row
from interchat.util.logger import get_logger

logger = get_logger("reaction_service")

COOLDOWN_KEY = "reaction:cooldown:{original_id}:{user_id}"

T = TypeVar("T")


class ReactionService:
    """Applies reaction changes and re-renders the reaction row on every copy."""

    def __init__(
        self,
        store: CacheStore,
        messages: MessageRepository,
        connections: ConnectionRepository,
        hubs: HubRepository,
        gateway: WebhookGateway,
        settings: NetworkSettings,
    ) -> None:
        self._store = store
        self._messages = messages
        self._connections = connections
        self._hubs = hubs
        self._gateway = gateway
        self._settings = settings
        self._locks: weakref.WeakValueDictionary[str, asyncio.Lock] = weakref.WeakValueDictionary()

    # ------------------------------------------------------------------
    # Event entry points
    # ------------------------------------------------------------------

    async def handle_reaction_add(self, message_id: str, user_id: str, emoji: str) -> bool:
        """A user reacted on an original or a copy. Returns True if the reactions changed."""
        original = await self._resolve(message_id)
        if original is None or not await self._acquire_cooldown(original.id, user_id):
            return False

        max_emojis = self._settings.max_reaction_emojis
        changed = await self._change(original, lambda r: reaction_map.add_reaction(r, str(user_id), emoji, max_emojis))
        return bool(changed)

    async def handle_reaction_remove(self, message_id: str, user_id: str, emoji: str) -> bool:
        original = await self._resolve(message_id)
        if original is None:
            return False

        changed = await self._change(original, lambda r: reaction_map.remove_reaction(r, str(user_id), emoji))
        return bool(changed)

    async def toggle_reaction(self, message_id: str, user_id: str, emoji: str) -> Optional[bool]:
        """
        Reaction button click.

        Returns:
            True if added, False if removed, None when nothing changed
            (unknown message, cooldown, or the emoji cap was hit).
        """
        original = await self._resolve(message_id)
        if original is None or not await self._acquire_cooldown(original.id, user_id):
            return None

        max_emojis = self._settings.max_reaction_emojis
        return await self._change(original, lambda r: reaction_map.toggle_reaction(r, str(user_id), emoji, max_emojis))

    async def get_reactions(self, message_id: str) -> ReactionMap:
        """Reactions of the original behind `message_id`, empty if unknown."""
        original = await self._resolve(message_id)
        if original is None:
            return {}
        return reaction_map.normalize(original.reactions)

    # ------------------------------------------------------------------
    # Persistence and propagation
    # ------------------------------------------------------------------

    async def store_reactions(self, original_id: str, reactions: ReactionMap) -> bool:
        return await self._messages.store_reactions(original_id, reactions)

    async def update_reactions(self, original: OriginalMessage, reactions: ReactionMap) -> PropagationResult:
        """Replace the reaction row on every copy of `original`. Missing copies are skipped."""
        broadcasts = await self._messages.get_broadcasts(original.id)
        row = build_reaction_row(reactions)
        outcomes = await asyncio.gather(*(self._update_copy(b, row) for b in broadcasts))
        done = sum(1 for ok in outcomes if ok)
        logger.debug("[REACTIONS] Updated %d/%d copies of %s", done, len(broadcasts), original.id)
        return PropagationResult(done=done, total=len(broadcasts))

    async def _update_copy(self, broadcast: Broadcast, row: Optional[Dict[str, Any]]) -> bool:
        connection = await self._connections.get_by_channel(broadcast.channel_id)
        if connection is None or not connection.connected:
            return False

        fetched = await self._gateway.fetch_message(connection.webhook_url, broadcast.message_id, connection.thread_id)
        if not fetched.ok or fetched.message is None:
            return False

        components = replace_reaction_row(fetched.message.get("components") or [], row)
        payload = build_payload(components=components)
        edited = await self._gateway.edit_message(connection.webhook_url, broadcast.message_id, payload, connection.thread_id)
        if not edited.ok:
            logger.debug("[REACTIONS] Could not edit copy %s in %s: %s", broadcast.message_id, broadcast.channel_id, edited.error)
        return edited.ok

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    async def _resolve(self, message_id: str) -> Optional[OriginalMessage]:
        original = await self._messages.find_original(str(message_id))
        if original is None:
            return None
        hub = await self._hubs.get(original.hub_id)
        if hub is None or not hub.reactions_enabled:
            return None
        return original

    async def _acquire_cooldown(self, original_id: str, user_id: str) -> bool:
        key = COOLDOWN_KEY.format(original_id=original_id, user_id=user_id)
        try:
            return await self._store.set(key, "1", ttl=self._settings.reaction_cooldown_secs, nx=True)
        except CacheError as exc:
            logger.warning("[REACTIONS] Cooldown check failed, allowing reaction: %s", exc)
            return True

    async def _change(self, original: OriginalMessage, change: Callable[[ReactionMap], T]) -> Optional[T]:
        """Apply `change` to the stored map and re-render every copy.

        Changes to one original run one at a time, so the copies end up
        showing the latest stored map.
        """
        def normalized(reactions: ReactionMap) -> T:
            cleaned = reaction_map.normalize(reactions)
            reactions.clear()
            reactions.update(cleaned)
            return change(reactions)

        lock = self._locks.setdefault(original.id, asyncio.Lock())
        async with lock:
            try:
                reactions, outcome = await self._messages.modify_reactions(original.id, normalized)
            except aiosqlite.Error as exc:
                logger.error("[REACTIONS] Failed to store reactions for %s: %s", original.id, exc)
                return None
            if reactions is None:
                return outcome
            original.reactions = reactions
            await self.update_reactions(original, reactions)
            return outcome
