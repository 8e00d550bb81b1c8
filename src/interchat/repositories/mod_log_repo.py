"""
Persistent storage for hub moderation log entries.
"""

from __future__ import annotations

from typing import List

from interchat.database.db_connection import ConnectionManager
from interchat.database.db_perf_mon import DatabasePerformanceMonitor
from interchat.datatypes.network_datatypes import ModLogEntry


class ModLogRepository:
    """Append-only access to ``hub_mod_logs``."""

    def __init__(self, db: ConnectionManager, perf_mon: DatabasePerformanceMonitor) -> None:
        self._db = db
        self._perf = perf_mon

    async def add(self, entry: ModLogEntry) -> int:
        async with self._perf.measure("mod_logs.add"), self._db.transaction() as conn:
            cursor = await conn.execute(
                """
                INSERT INTO hub_mod_logs (hub_id, original_id, action, moderator_id, author_id, channel_id, details, created_at)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    entry.hub_id,
                    entry.original_id,
                    entry.action,
                    entry.moderator_id,
                    entry.author_id,
                    entry.channel_id,
                    entry.details,
                    entry.created_at,
                ),
            )
            return int(cursor.lastrowid)

    async def list_for_hub(self, hub_id: str, limit: int = 50) -> List[ModLogEntry]:
        """Most recent entries first."""
        async with self._perf.measure("mod_logs.list"), self._db.read() as conn:
            cursor = await conn.execute(
                """
                SELECT hub_id, original_id, action, moderator_id, author_id, channel_id, created_at, details
                FROM hub_mod_logs WHERE hub_id = ? ORDER BY created_at DESC, id DESC LIMIT ?
                """,
                (hub_id, limit),
            )
            rows = await cursor.fetchall()
        return [
            ModLogEntry(
                hub_id=row[0],
                original_id=row[1],
                action=row[2],
                moderator_id=row[3],
                author_id=row[4],
                channel_id=row[5],
                created_at=row[6],
                details=row[7],
            )
            for row in rows
        ]
