"""
Persistent storage for hubs and their channel connections.
"""

from __future__ import annotations

from typing import Iterable, List, Optional

import aiosqlite

from interchat.database.db_connection import ConnectionManager
from interchat.database.db_perf_mon import DatabasePerformanceMonitor
from interchat.datatypes.network_datatypes import Connection, Hub
from interchat.util.logger import get_logger

logger = get_logger("connection_repo")

_CONNECTION_COLUMNS = "id, hub_id, channel_id, guild_id, webhook_url, connected, compact, parent_id, last_active"


def _row_to_connection(row: aiosqlite.Row) -> Connection:
    return Connection(
        id=row[0],
        hub_id=row[1],
        channel_id=row[2],
        guild_id=row[3],
        webhook_url=row[4],
        connected=bool(row[5]),
        compact=bool(row[6]),
        parent_id=row[7],
        last_active=row[8],
    )


class HubRepository:
    """CRUD for the ``hubs`` table."""

    def __init__(self, db: ConnectionManager, perf_mon: DatabasePerformanceMonitor) -> None:
        self._db = db
        self._perf = perf_mon

    async def upsert(self, hub: Hub) -> None:
        async with self._perf.measure("hubs.upsert"), self._db.transaction() as conn:
            await conn.execute(
                """
                INSERT INTO hubs (id, name, reactions_enabled, log_webhook_url)
                VALUES (?, ?, ?, ?)
                ON CONFLICT(id) DO UPDATE SET
                    name              = excluded.name,
                    reactions_enabled = excluded.reactions_enabled,
                    log_webhook_url   = excluded.log_webhook_url
                """,
                (hub.id, hub.name, int(hub.reactions_enabled), hub.log_webhook_url),
            )

    async def get(self, hub_id: str) -> Optional[Hub]:
        async with self._perf.measure("hubs.get"), self._db.read() as conn:
            cursor = await conn.execute(
                "SELECT id, name, reactions_enabled, log_webhook_url FROM hubs WHERE id = ?",
                (hub_id,),
            )
            row = await cursor.fetchone()
        if row is None:
            return None
        return Hub(id=row[0], name=row[1], reactions_enabled=bool(row[2]), log_webhook_url=row[3])

    async def delete(self, hub_id: str) -> bool:
        """Delete a hub; its connections and stored messages cascade."""
        async with self._perf.measure("hubs.delete"), self._db.transaction() as conn:
            cursor = await conn.execute("DELETE FROM hubs WHERE id = ?", (hub_id,))
            return cursor.rowcount > 0


class ConnectionRepository:
    """CRUD for the ``connections`` table (one row per connected channel)."""

    def __init__(self, db: ConnectionManager, perf_mon: DatabasePerformanceMonitor) -> None:
        self._db = db
        self._perf = perf_mon

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    async def upsert(
        self,
        hub_id: str,
        channel_id: str,
        guild_id: str,
        webhook_url: str,
        parent_id: Optional[str] = None,
        compact: bool = False,
    ) -> Connection:
        """Connect `channel_id` to `hub_id` (or refresh its webhook) and return the row."""
        async with self._perf.measure("connections.upsert"), self._db.transaction() as conn:
            await conn.execute(
                """
                INSERT INTO connections (hub_id, channel_id, guild_id, webhook_url, parent_id, compact, connected)
                VALUES (?, ?, ?, ?, ?, ?, 1)
                ON CONFLICT(channel_id) DO UPDATE SET
                    hub_id      = excluded.hub_id,
                    guild_id    = excluded.guild_id,
                    webhook_url = excluded.webhook_url,
                    parent_id   = excluded.parent_id,
                    compact     = excluded.compact,
                    connected   = 1
                """,
                (hub_id, channel_id, guild_id, webhook_url, parent_id, int(compact)),
            )
            cursor = await conn.execute(
                f"SELECT {_CONNECTION_COLUMNS} FROM connections WHERE channel_id = ?",
                (channel_id,),
            )
            row = await cursor.fetchone()
        logger.debug("[CONNECTION REPO] Channel %s connected to hub %s", channel_id, hub_id)
        return _row_to_connection(row)

    async def mark_disconnected(self, channel_ids: Iterable[str]) -> int:
        """Flag connections as disconnected; returns how many rows changed."""
        ids = list(dict.fromkeys(channel_ids))
        if not ids:
            return 0
        placeholders = ",".join("?" for _ in ids)
        async with self._perf.measure("connections.mark_disconnected"), self._db.transaction() as conn:
            cursor = await conn.execute(
                f"UPDATE connections SET connected = 0 WHERE channel_id IN ({placeholders}) AND connected = 1",
                ids,
            )
            changed = cursor.rowcount
        if changed:
            logger.info("[CONNECTION REPO] Marked %d connection(s) disconnected: %s", changed, ", ".join(ids))
        return changed

    async def touch(self, channel_id: str, last_active: int) -> None:
        """Record channel activity."""
        async with self._perf.measure("connections.touch"), self._db.transaction() as conn:
            await conn.execute(
                "UPDATE connections SET last_active = ? WHERE channel_id = ?",
                (last_active, channel_id),
            )

    async def delete(self, channel_id: str) -> bool:
        async with self._perf.measure("connections.delete"), self._db.transaction() as conn:
            cursor = await conn.execute("DELETE FROM connections WHERE channel_id = ?", (channel_id,))
            return cursor.rowcount > 0

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    async def get_by_channel(self, channel_id: str) -> Optional[Connection]:
        async with self._perf.measure("connections.get_by_channel"), self._db.read() as conn:
            cursor = await conn.execute(
                f"SELECT {_CONNECTION_COLUMNS} FROM connections WHERE channel_id = ?",
                (channel_id,),
            )
            row = await cursor.fetchone()
        return _row_to_connection(row) if row else None

    async def get_connected(self, hub_id: str) -> List[Connection]:
        """All connected channels of a hub, oldest connection first."""
        async with self._perf.measure("connections.get_connected"), self._db.read() as conn:
            cursor = await conn.execute(
                f"SELECT {_CONNECTION_COLUMNS} FROM connections WHERE hub_id = ? AND connected = 1 ORDER BY id",
                (hub_id,),
            )
            rows = await cursor.fetchall()
        return [_row_to_connection(row) for row in rows]
