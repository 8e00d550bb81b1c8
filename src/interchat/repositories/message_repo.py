"""
Persistent storage for relayed hub messages and their broadcast mapping.

``messages`` holds one row per original message (with its reaction map as
JSON); ``broadcasts`` maps every delivered copy back to its original.
"""

from __future__ import annotations

import json
from typing import Callable, Iterable, List, Optional, Tuple, TypeVar

import aiosqlite

from interchat.database.db_connection import ConnectionManager
from interchat.database.db_perf_mon import DatabasePerformanceMonitor
from interchat.datatypes.network_datatypes import Broadcast, ConnectionMode, OriginalMessage, ReactionMap
from interchat.util.logger import get_logger

logger = get_logger("message_repo")

T = TypeVar("T")

_ORIGINAL_COLUMNS = "id, hub_id, channel_id, guild_id, author_id, content, created_at, image_url, reactions"


def _decode_reactions(raw: Optional[str]) -> ReactionMap:
    if not raw:
        return {}
    try:
        data = json.loads(raw)
    except json.JSONDecodeError:
        logger.warning("[MESSAGE REPO] Discarding unreadable reaction map: %r", raw[:80])
        return {}
    if not isinstance(data, dict):
        return {}
    return {str(emoji): [str(u) for u in users] for emoji, users in data.items() if isinstance(users, list)}


def _row_to_original(row: aiosqlite.Row) -> OriginalMessage:
    return OriginalMessage(
        id=row[0],
        hub_id=row[1],
        channel_id=row[2],
        guild_id=row[3],
        author_id=row[4],
        content=row[5],
        created_at=row[6],
        image_url=row[7],
        reactions=_decode_reactions(row[8]),
    )


class MessageRepository:
    """CRUD for ``messages`` and ``broadcasts``."""

    def __init__(self, db: ConnectionManager, perf_mon: DatabasePerformanceMonitor) -> None:
        self._db = db
        self._perf = perf_mon

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    async def store_original(self, original: OriginalMessage, broadcasts: Iterable[Broadcast] = ()) -> None:
        """Insert an original message and its delivered copies atomically."""
        async with self._perf.measure("messages.store_original"), self._db.transaction() as conn:
            await conn.execute(
                f"INSERT INTO messages ({_ORIGINAL_COLUMNS}) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?) "
                "ON CONFLICT(id) DO UPDATE SET content = excluded.content, image_url = excluded.image_url",
                (
                    original.id,
                    original.hub_id,
                    original.channel_id,
                    original.guild_id,
                    original.author_id,
                    original.content,
                    original.created_at,
                    original.image_url,
                    json.dumps(original.reactions),
                ),
            )
            await self._insert_broadcasts(conn, broadcasts)

    async def modify_reactions(
        self, original_id: str, change: Callable[[ReactionMap], T],
    ) -> Tuple[Optional[ReactionMap], Optional[T]]:
        """
        Read, change and write an original's reaction map in one write
        transaction, so concurrent changes never overwrite each other.

        `change` mutates the map in place and returns its outcome.

        Returns:
            ``(reactions, outcome)``; `reactions` is None when the map was
            left unchanged, and both are None when the original is unknown.
        """
        async with self._perf.measure("messages.modify_reactions"), self._db.transaction() as conn:
            cursor = await conn.execute("SELECT reactions FROM messages WHERE id = ?", (original_id,))
            row = await cursor.fetchone()
            if row is None:
                return None, None

            before = _decode_reactions(row[0])
            reactions = {emoji: list(users) for emoji, users in before.items()}
            outcome = change(reactions)
            if reactions == before:
                return None, outcome

            await conn.execute(
                "UPDATE messages SET reactions = ? WHERE id = ?",
                (json.dumps(reactions), original_id),
            )
            return reactions, outcome

    async def store_reactions(self, original_id: str, reactions: ReactionMap) -> bool:
        async with self._perf.measure("messages.store_reactions"), self._db.transaction() as conn:
            cursor = await conn.execute(
                "UPDATE messages SET reactions = ? WHERE id = ?",
                (json.dumps(reactions), original_id),
            )
            return cursor.rowcount > 0

    async def update_content(self, original_id: str, content: str, image_url: Optional[str] = None) -> bool:
        async with self._perf.measure("messages.update_content"), self._db.transaction() as conn:
            cursor = await conn.execute(
                "UPDATE messages SET content = ?, image_url = COALESCE(?, image_url) WHERE id = ?",
                (content, image_url, original_id),
            )
            return cursor.rowcount > 0

    async def delete_original(self, original_id: str) -> bool:
        """Delete an original; its broadcast rows cascade."""
        async with self._perf.measure("messages.delete_original"), self._db.transaction() as conn:
            cursor = await conn.execute("DELETE FROM messages WHERE id = ?", (original_id,))
            return cursor.rowcount > 0

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    async def get_original(self, original_id: str) -> Optional[OriginalMessage]:
        async with self._perf.measure("messages.get_original"), self._db.read() as conn:
            cursor = await conn.execute(
                f"SELECT {_ORIGINAL_COLUMNS} FROM messages WHERE id = ?",
                (original_id,),
            )
            row = await cursor.fetchone()
        return _row_to_original(row) if row else None

    async def find_original(self, message_id: str) -> Optional[OriginalMessage]:
        """Resolve an original from either its own id or the id of any copy."""
        original = await self.get_original(message_id)
        if original is not None:
            return original
        async with self._perf.measure("messages.find_by_copy"), self._db.read() as conn:
            cursor = await conn.execute(
                f"SELECT {', '.join('m.' + c.strip() for c in _ORIGINAL_COLUMNS.split(','))} "
                "FROM broadcasts b JOIN messages m ON m.id = b.original_id WHERE b.message_id = ?",
                (message_id,),
            )
            row = await cursor.fetchone()
        return _row_to_original(row) if row else None

    async def get_broadcasts(self, original_id: str) -> List[Broadcast]:
        async with self._perf.measure("messages.get_broadcasts"), self._db.read() as conn:
            cursor = await conn.execute(
                "SELECT message_id, channel_id, original_id, hub_id, mode FROM broadcasts WHERE original_id = ?",
                (original_id,),
            )
            rows = await cursor.fetchall()
        return [
            Broadcast(
                message_id=row[0],
                channel_id=row[1],
                original_id=row[2],
                hub_id=row[3],
                mode=ConnectionMode(row[4]),
            )
            for row in rows
        ]

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    @staticmethod
    async def _insert_broadcasts(conn: aiosqlite.Connection, broadcasts: Iterable[Broadcast]) -> None:
        await conn.executemany(
            "INSERT OR REPLACE INTO broadcasts (message_id, original_id, channel_id, hub_id, mode) VALUES (?, ?, ?, ?, ?)",
            [(b.message_id, b.original_id, b.channel_id, b.hub_id, int(b.mode)) for b in broadcasts],
        )
