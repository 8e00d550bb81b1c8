"""
Database coordinator for InterChat's SQLite store.

The Database owns the single aiosqlite connection, applies the schema and
exposes one repository per table family:

- ``hubs`` / ``connections``: hub membership of channels
- ``messages``: relayed originals and their broadcast mapping
- ``mod_logs``: hub moderation log
- ``calls``: userphone calls, participants, messages and reports

Lifecycle:
    1. ``await database.initialize()`` at startup
    2. hand ``database`` (or its repositories) to the services
    3. ``await database.shutdown()`` at exit
"""

from __future__ import annotations

from pathlib import Path
from typing import Dict

import aiosqlite

from interchat.database.db_connection import ConnectionManager
from interchat.database.db_perf_mon import DatabasePerformanceMonitor
from interchat.database.db_schema import SchemaManager
from interchat.repositories.call_repo import CallRepository
from interchat.repositories.connection_repo import ConnectionRepository, HubRepository
from interchat.repositories.message_repo import MessageRepository
from interchat.repositories.mod_log_repo import ModLogRepository
from interchat.util.logger import get_logger

logger = get_logger("database")


class Database:
    """Central database coordinator. Constructed once in ``main``."""

    def __init__(self, db_path: Path, message_history_limit: int = 100):
        """
        Args:
            db_path: Path to the SQLite database file.
            message_history_limit: How many recent messages a loaded call carries.
        """
        self.db_path = db_path
        self._initialized = False

        self.connection_manager = ConnectionManager()
        self.db_perf_mon = DatabasePerformanceMonitor()

        self.hubs = HubRepository(self.connection_manager, self.db_perf_mon)
        self.connections = ConnectionRepository(self.connection_manager, self.db_perf_mon)
        self.messages = MessageRepository(self.connection_manager, self.db_perf_mon)
        self.mod_logs = ModLogRepository(self.connection_manager, self.db_perf_mon)
        self.calls = CallRepository(self.connection_manager, self.db_perf_mon, message_history_limit)

    @property
    def is_initialized(self) -> bool:
        return self._initialized

    async def initialize(self) -> bool:
        """
        Open the connection and create the schema.

        Returns:
            True if initialization succeeded, False otherwise
        """
        if self._initialized:
            logger.debug("[DATABASE] Already initialized, skipping")
            return True

        try:
            await self.connection_manager.open(self.db_path)
            await SchemaManager.initialize_schema(self.connection_manager.connection)
        except (aiosqlite.Error, OSError) as e:
            logger.error("[DATABASE] Database initialization failed: %s", e)
            await self.connection_manager.close()
            return False

        self._initialized = True
        logger.info("[DATABASE] Database initialized at %s", self.db_path)
        return True

    async def shutdown(self) -> None:
        """Close the connection. Safe to call more than once."""
        if not self._initialized:
            return
        await self.connection_manager.close()
        self._initialized = False
        logger.info("[DATABASE] Database shutdown complete")

    def get_db_performance_stats(self) -> Dict[str, Dict[str, float]]:
        """Per-query timing statistics collected by the repositories."""
        return self.db_perf_mon.get_statistics()
