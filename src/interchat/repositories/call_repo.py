"""
Persistent storage for calls, their participants, speakers, messages and reports.

The cache is authoritative for live routing; these tables are the system of
record used for cache misses, reporting and retention. Times are unix ms.
"""

from __future__ import annotations

from typing import Dict, List, Optional

import aiosqlite

from interchat.database.db_connection import ConnectionManager
from interchat.database.db_perf_mon import DatabasePerformanceMonitor
from interchat.datatypes.call_datatypes import (
    ActiveCall,
    CallMessage,
    CallParticipant,
    CallReport,
    CallStatus,
)
from interchat.util.format_utils import now_ms
from interchat.util.logger import get_logger

logger = get_logger("call_repo")

REPORT_OPEN = "OPEN"
REPORT_RESOLVED = "RESOLVED"


class CallRepository:
    """CRUD for the ``calls`` family of tables."""

    def __init__(self, db: ConnectionManager, perf_mon: DatabasePerformanceMonitor, message_history_limit: int = 100) -> None:
        self._db = db
        self._perf = perf_mon
        self._message_history_limit = message_history_limit

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    async def create_call(self, call: ActiveCall) -> None:
        """Insert a call with its participants (and any known speakers) in one transaction."""
        async with self._perf.measure("calls.create"), self._db.transaction() as conn:
            await conn.execute(
                "INSERT INTO calls (id, status, created_at, ended_at) VALUES (?, ?, ?, ?)",
                (call.id, call.status.value, call.created_at, call.ended_at),
            )
            for participant in call.participants:
                participant_id = await self._insert_participant(conn, call.id, participant, call.created_at)
                for user_id in participant.users:
                    await self._upsert_user(conn, participant_id, user_id, call.created_at)
        logger.debug("[CALL REPO] Created call %s for channels %s", call.id, call.channel_ids)

    async def add_participant(self, call_id: str, participant: CallParticipant) -> int:
        """Attach a participant row to an existing call; returns its row id."""
        async with self._perf.measure("calls.add_participant"), self._db.transaction() as conn:
            return await self._insert_participant(conn, call_id, participant, now_ms())

    async def update_call_status(self, call_id: str, status: CallStatus, ended_at: Optional[int] = None) -> bool:
        """Set the status (and end time, when given). Returns False for an unknown call."""
        async with self._perf.measure("calls.update_status"), self._db.transaction() as conn:
            if ended_at is not None:
                cursor = await conn.execute(
                    "UPDATE calls SET status = ?, ended_at = ? WHERE id = ?",
                    (status.value, ended_at, call_id),
                )
                await conn.execute(
                    "UPDATE call_participants SET left_at = ? WHERE call_id = ? AND left_at IS NULL",
                    (ended_at, call_id),
                )
            else:
                cursor = await conn.execute(
                    "UPDATE calls SET status = ? WHERE id = ?",
                    (status.value, call_id),
                )
            return cursor.rowcount > 0

    async def add_user_to_participant(self, call_id: str, channel_id: str, user_id: str) -> bool:
        """Record that `user_id` spoke from `channel_id`; re-joining clears ``left_at``."""
        async with self._perf.measure("calls.add_user"), self._db.transaction() as conn:
            participant_id = await self._participant_id(conn, call_id, channel_id)
            if participant_id is None:
                return False
            await self._upsert_user(conn, participant_id, user_id, now_ms())
            return True

    async def mark_user_left(self, call_id: str, channel_id: str, user_id: str) -> bool:
        """Stamp ``left_at`` on a speaker row. The row itself is kept."""
        async with self._perf.measure("calls.user_left"), self._db.transaction() as conn:
            participant_id = await self._participant_id(conn, call_id, channel_id)
            if participant_id is None:
                return False
            cursor = await conn.execute(
                "UPDATE call_participant_users SET left_at = ? "
                "WHERE participant_id = ? AND user_id = ? AND left_at IS NULL",
                (now_ms(), participant_id, user_id),
            )
            return cursor.rowcount > 0

    async def add_message(self, call_id: str, message: CallMessage, channel_id: Optional[str] = None) -> int:
        """
        Append a message to the call log and bump the sender side's message count.

        Raises:
            LookupError: If the call does not exist.
        """
        async with self._perf.measure("calls.add_message"), self._db.transaction() as conn:
            cursor = await conn.execute("SELECT 1 FROM calls WHERE id = ?", (call_id,))
            if await cursor.fetchone() is None:
                raise LookupError(f"Call {call_id} does not exist")

            cursor = await conn.execute(
                "INSERT INTO call_messages (call_id, author_id, author_username, content, attachment_url, timestamp) "
                "VALUES (?, ?, ?, ?, ?, ?)",
                (
                    call_id,
                    message.author_id,
                    message.author_username,
                    message.content,
                    message.attachment_url,
                    message.timestamp,
                ),
            )
            if channel_id is not None:
                await conn.execute(
                    "UPDATE call_participants SET message_count = message_count + 1 "
                    "WHERE call_id = ? AND channel_id = ?",
                    (call_id, channel_id),
                )
            return int(cursor.lastrowid)

    async def report_call(self, call_id: str, reporter_id: str, reason: str) -> int:
        """Open a report against a call, pinning it against retention cleanup."""
        async with self._perf.measure("calls.report"), self._db.transaction() as conn:
            cursor = await conn.execute(
                "INSERT INTO call_reports (call_id, reporter_id, reason, status, created_at) VALUES (?, ?, ?, ?, ?)",
                (call_id, reporter_id, reason, REPORT_OPEN, now_ms()),
            )
            report_id = int(cursor.lastrowid)
        logger.info("[CALL REPO] Call %s reported by %s (report %d)", call_id, reporter_id, report_id)
        return report_id

    async def resolve_report(self, report_id: int) -> bool:
        async with self._perf.measure("calls.resolve_report"), self._db.transaction() as conn:
            cursor = await conn.execute(
                "UPDATE call_reports SET status = ?, resolved_at = ? WHERE id = ? AND status = ?",
                (REPORT_RESOLVED, now_ms(), report_id, REPORT_OPEN),
            )
            return cursor.rowcount > 0

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    async def get_call(self, call_id: str) -> Optional[ActiveCall]:
        async with self._perf.measure("calls.get"), self._db.read() as conn:
            cursor = await conn.execute(
                "SELECT id, status, created_at, ended_at FROM calls WHERE id = ?",
                (call_id,),
            )
            row = await cursor.fetchone()
            if row is None:
                return None
            return await self._load_call(conn, row)

    async def get_active_call_by_channel(self, channel_id: str) -> Optional[ActiveCall]:
        """Return the ONGOING call `channel_id` takes part in, or None."""
        async with self._perf.measure("calls.get_active_by_channel"), self._db.read() as conn:
            cursor = await conn.execute(
                """
                SELECT c.id, c.status, c.created_at, c.ended_at
                FROM calls c
                JOIN call_participants p ON p.call_id = c.id
                WHERE c.status = ? AND p.channel_id = ? AND p.left_at IS NULL
                ORDER BY c.created_at DESC
                LIMIT 1
                """,
                (CallStatus.ONGOING.value, channel_id),
            )
            row = await cursor.fetchone()
            if row is None:
                return None
            return await self._load_call(conn, row)

    async def get_call_stats(self, call_id: str) -> Dict[str, Optional[int]]:
        """Return ``{total_messages, total_participants, duration_ms}``; zeros for an unknown call."""
        async with self._perf.measure("calls.stats"), self._db.read() as conn:
            cursor = await conn.execute(
                """
                SELECT c.created_at, c.ended_at,
                       (SELECT COUNT(*) FROM call_messages m WHERE m.call_id = c.id),
                       (SELECT COUNT(*) FROM call_participants p WHERE p.call_id = c.id)
                FROM calls c WHERE c.id = ?
                """,
                (call_id,),
            )
            row = await cursor.fetchone()
        if row is None:
            return {"total_messages": 0, "total_participants": 0, "duration_ms": None}
        created_at, ended_at, messages, participants = row[0], row[1], row[2], row[3]
        return {
            "total_messages": int(messages),
            "total_participants": int(participants),
            "duration_ms": int(ended_at - created_at) if ended_at is not None else None,
        }

    async def get_reports(self, call_id: str, open_only: bool = False) -> List[CallReport]:
        query = "SELECT id, call_id, reporter_id, reason, status, created_at, resolved_at FROM call_reports WHERE call_id = ?"
        params: tuple = (call_id,)
        if open_only:
            query += " AND status = ?"
            params = (call_id, REPORT_OPEN)
        async with self._perf.measure("calls.get_reports"), self._db.read() as conn:
            cursor = await conn.execute(query + " ORDER BY created_at", params)
            rows = await cursor.fetchall()
        return [
            CallReport(
                id=row[0],
                call_id=row[1],
                reporter_id=row[2],
                reason=row[3],
                status=row[4],
                created_at=row[5],
                resolved_at=row[6],
            )
            for row in rows
        ]

    async def has_open_report(self, call_id: str) -> bool:
        return bool(await self.get_reports(call_id, open_only=True))

    # ------------------------------------------------------------------
    # Retention
    # ------------------------------------------------------------------

    async def cleanup_expired_calls(self, retention_minutes: int = 30, now: Optional[int] = None) -> Dict[str, int]:
        """
        Purge ended calls whose end is older than the retention window.

        Calls with an open report are kept; ongoing calls are never touched.
        Participants, speakers and messages go with the call via cascade.

        Returns:
            ``{"deleted": n, "protected": n, "errors": n}``
        """
        cutoff = (now if now is not None else now_ms()) - retention_minutes * 60 * 1000
        stats = {"deleted": 0, "protected": 0, "errors": 0}

        async with self._db.read() as conn:
            cursor = await conn.execute(
                """
                SELECT c.id,
                       EXISTS (SELECT 1 FROM call_reports r WHERE r.call_id = c.id AND r.status = ?)
                FROM calls c
                WHERE c.status = ? AND c.ended_at IS NOT NULL AND c.ended_at < ?
                """,
                (REPORT_OPEN, CallStatus.ENDED.value, cutoff),
            )
            candidates = [(row[0], bool(row[1])) for row in await cursor.fetchall()]

        logger.info("[CALL REPO] Found %d expired calls to evaluate for cleanup", len(candidates))

        for call_id, reported in candidates:
            if reported:
                stats["protected"] += 1
                logger.info("[CALL REPO] Keeping call %s: it has an open report", call_id)
                continue
            try:
                async with self._perf.measure("calls.cleanup_delete"), self._db.transaction() as conn:
                    await conn.execute(
                        "DELETE FROM calls WHERE id = ? AND status = ?",
                        (call_id, CallStatus.ENDED.value),
                    )
                stats["deleted"] += 1
            except aiosqlite.Error as exc:
                stats["errors"] += 1
                logger.error("[CALL REPO] Failed to delete expired call %s: %s", call_id, exc)

        return stats

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    @staticmethod
    async def _insert_participant(conn: aiosqlite.Connection, call_id: str, participant: CallParticipant, joined_at: int) -> int:
        await conn.execute(
            """
            INSERT INTO call_participants (call_id, channel_id, guild_id, webhook_url, joined_at)
            VALUES (?, ?, ?, ?, ?)
            ON CONFLICT(call_id, channel_id) DO UPDATE SET
                webhook_url = excluded.webhook_url,
                left_at = NULL
            """,
            (call_id, participant.channel_id, participant.guild_id, participant.webhook_url, joined_at),
        )
        # lastrowid is stale after the UPDATE branch of an upsert
        participant_id = await CallRepository._participant_id(conn, call_id, participant.channel_id)
        return int(participant_id)

    @staticmethod
    async def _participant_id(conn: aiosqlite.Connection, call_id: str, channel_id: str) -> Optional[int]:
        cursor = await conn.execute(
            "SELECT id FROM call_participants WHERE call_id = ? AND channel_id = ?",
            (call_id, channel_id),
        )
        row = await cursor.fetchone()
        return int(row[0]) if row else None

    @staticmethod
    async def _upsert_user(conn: aiosqlite.Connection, participant_id: int, user_id: str, joined_at: int) -> None:
        await conn.execute(
            """
            INSERT INTO call_participant_users (participant_id, user_id, joined_at)
            VALUES (?, ?, ?)
            ON CONFLICT(participant_id, user_id) DO UPDATE SET left_at = NULL
            """,
            (participant_id, str(user_id), joined_at),
        )

    async def _load_call(self, conn: aiosqlite.Connection, row: aiosqlite.Row) -> ActiveCall:
        call_id = row[0]

        cursor = await conn.execute(
            "SELECT id, channel_id, guild_id, webhook_url FROM call_participants WHERE call_id = ? ORDER BY id",
            (call_id,),
        )
        participant_rows = await cursor.fetchall()

        participants: List[CallParticipant] = []
        for p in participant_rows:
            users_cursor = await conn.execute(
                "SELECT user_id FROM call_participant_users WHERE participant_id = ?",
                (p[0],),
            )
            users = {str(u[0]) for u in await users_cursor.fetchall()}
            participants.append(CallParticipant(channel_id=p[1], guild_id=p[2], webhook_url=p[3], users=users))

        # newest N, returned oldest first
        cursor = await conn.execute(
            """
            SELECT author_id, author_username, content, attachment_url, timestamp FROM (
                SELECT id, author_id, author_username, content, attachment_url, timestamp
                FROM call_messages WHERE call_id = ?
                ORDER BY timestamp DESC, id DESC LIMIT ?
            ) ORDER BY timestamp ASC, id ASC
            """,
            (call_id, self._message_history_limit),
        )
        messages = [
            CallMessage(author_id=m[0], author_username=m[1], content=m[2], attachment_url=m[3], timestamp=m[4])
            for m in await cursor.fetchall()
        ]

        return ActiveCall(
            id=call_id,
            participants=participants,
            created_at=row[2],
            status=CallStatus(row[1]),
            messages=messages,
            ended_at=row[3],
        )
