"""
Database schema initialization and version tracking.

Discord snowflakes are stored as TEXT. Event times (call start/end,
message creation, activity) are INTEGER unix milliseconds so they compare
directly with the timestamps the cache layer carries.
"""

import aiosqlite

from interchat.util.logger import get_logger

logger = get_logger("database_schema")

SCHEMA_VERSION = 1


class SchemaManager:
    """Creates tables, indexes and triggers for hubs and calls."""

    @staticmethod
    async def initialize_schema(db: aiosqlite.Connection) -> None:
        """
        Create or update all database tables, indexes, and triggers.

        Args:
            db: Open database connection
        """
        await SchemaManager._create_tables(db)
        await SchemaManager._create_indexes(db)
        await SchemaManager._create_triggers(db)
        await SchemaManager._update_schema_version(db)
        await db.commit()
        logger.info("[SCHEMA] Database schema initialized (version %d)", SCHEMA_VERSION)

    @staticmethod
    async def _create_tables(db: aiosqlite.Connection) -> None:
        """Create all required database tables."""
        # Hub network
        await db.execute("""
            CREATE TABLE IF NOT EXISTS hubs (
                id TEXT PRIMARY KEY,
                name TEXT NOT NULL,
                reactions_enabled INTEGER NOT NULL DEFAULT 1,
                log_webhook_url TEXT,
                created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
                updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
            )
        """)

        await db.execute("""
            CREATE TABLE IF NOT EXISTS connections (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                hub_id TEXT NOT NULL,
                channel_id TEXT NOT NULL UNIQUE,
                guild_id TEXT NOT NULL,
                webhook_url TEXT NOT NULL,
                parent_id TEXT,
                connected INTEGER NOT NULL DEFAULT 1,
                compact INTEGER NOT NULL DEFAULT 0,
                last_active INTEGER NOT NULL DEFAULT 0,
                created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
                FOREIGN KEY (hub_id) REFERENCES hubs(id) ON DELETE CASCADE
            )
        """)

        await db.execute("""
            CREATE TABLE IF NOT EXISTS messages (
                id TEXT PRIMARY KEY,
                hub_id TEXT NOT NULL,
                channel_id TEXT NOT NULL,
                guild_id TEXT NOT NULL,
                author_id TEXT NOT NULL,
                content TEXT NOT NULL DEFAULT '',
                image_url TEXT,
                reactions TEXT NOT NULL DEFAULT '{}',
                created_at INTEGER NOT NULL,
                FOREIGN KEY (hub_id) REFERENCES hubs(id) ON DELETE CASCADE
            )
        """)

        await db.execute("""
            CREATE TABLE IF NOT EXISTS broadcasts (
                message_id TEXT PRIMARY KEY,
                original_id TEXT NOT NULL,
                channel_id TEXT NOT NULL,
                hub_id TEXT NOT NULL,
                mode INTEGER NOT NULL DEFAULT 1,
                FOREIGN KEY (original_id) REFERENCES messages(id) ON DELETE CASCADE
            )
        """)

        await db.execute("""
            CREATE TABLE IF NOT EXISTS hub_mod_logs (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                hub_id TEXT NOT NULL,
                original_id TEXT NOT NULL,
                action TEXT NOT NULL,
                moderator_id TEXT NOT NULL,
                author_id TEXT NOT NULL,
                channel_id TEXT NOT NULL,
                details TEXT NOT NULL DEFAULT '',
                created_at INTEGER NOT NULL
            )
        """)

        # Calls
        await db.execute("""
            CREATE TABLE IF NOT EXISTS calls (
                id TEXT PRIMARY KEY,
                status TEXT NOT NULL,
                created_at INTEGER NOT NULL,
                ended_at INTEGER
            )
        """)

        await db.execute("""
            CREATE TABLE IF NOT EXISTS call_participants (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                call_id TEXT NOT NULL,
                channel_id TEXT NOT NULL,
                guild_id TEXT NOT NULL,
                webhook_url TEXT NOT NULL,
                message_count INTEGER NOT NULL DEFAULT 0,
                joined_at INTEGER NOT NULL,
                left_at INTEGER,
                UNIQUE (call_id, channel_id),
                FOREIGN KEY (call_id) REFERENCES calls(id) ON DELETE CASCADE
            )
        """)

        await db.execute("""
            CREATE TABLE IF NOT EXISTS call_participant_users (
                participant_id INTEGER NOT NULL,
                user_id TEXT NOT NULL,
                joined_at INTEGER NOT NULL,
                left_at INTEGER,
                PRIMARY KEY (participant_id, user_id),
                FOREIGN KEY (participant_id) REFERENCES call_participants(id) ON DELETE CASCADE
            )
        """)

        await db.execute("""
            CREATE TABLE IF NOT EXISTS call_messages (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                call_id TEXT NOT NULL,
                author_id TEXT NOT NULL,
                author_username TEXT NOT NULL,
                content TEXT NOT NULL,
                attachment_url TEXT,
                timestamp INTEGER NOT NULL,
                FOREIGN KEY (call_id) REFERENCES calls(id) ON DELETE CASCADE
            )
        """)

        await db.execute("""
            CREATE TABLE IF NOT EXISTS call_reports (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                call_id TEXT NOT NULL,
                reporter_id TEXT NOT NULL,
                reason TEXT NOT NULL DEFAULT '',
                status TEXT NOT NULL DEFAULT 'OPEN',
                created_at INTEGER NOT NULL,
                resolved_at INTEGER,
                FOREIGN KEY (call_id) REFERENCES calls(id) ON DELETE CASCADE
            )
        """)

        await db.execute("""
            CREATE TABLE IF NOT EXISTS schema_version (
                version INTEGER PRIMARY KEY,
                applied_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
            )
        """)

    @staticmethod
    async def _create_indexes(db: aiosqlite.Connection) -> None:
        """Create indexes for the lookups the relay and call paths make."""
        await db.execute("CREATE INDEX IF NOT EXISTS idx_connections_hub ON connections(hub_id, connected)")
        await db.execute("CREATE INDEX IF NOT EXISTS idx_messages_hub ON messages(hub_id, created_at DESC)")
        await db.execute("CREATE INDEX IF NOT EXISTS idx_broadcasts_original ON broadcasts(original_id)")
        await db.execute("CREATE INDEX IF NOT EXISTS idx_broadcasts_channel ON broadcasts(channel_id)")
        await db.execute("CREATE INDEX IF NOT EXISTS idx_hub_mod_logs_hub ON hub_mod_logs(hub_id, created_at DESC)")
        await db.execute("CREATE INDEX IF NOT EXISTS idx_calls_status ON calls(status, ended_at)")
        await db.execute("CREATE INDEX IF NOT EXISTS idx_call_participants_channel ON call_participants(channel_id)")
        await db.execute("CREATE INDEX IF NOT EXISTS idx_call_messages_call ON call_messages(call_id, timestamp)")
        await db.execute("CREATE INDEX IF NOT EXISTS idx_call_reports_call ON call_reports(call_id, status)")

    @staticmethod
    async def _create_triggers(db: aiosqlite.Connection) -> None:
        """Create triggers for automatic timestamp updates."""
        await db.execute("""
            CREATE TRIGGER IF NOT EXISTS update_hubs_timestamp
            AFTER UPDATE ON hubs
            FOR EACH ROW
            BEGIN
                UPDATE hubs SET updated_at = CURRENT_TIMESTAMP
                WHERE id = NEW.id;
            END
        """)

    @staticmethod
    async def _update_schema_version(db: aiosqlite.Connection) -> None:
        """Update schema version tracking."""
        await db.execute("INSERT OR IGNORE INTO schema_version (version) VALUES (?)", (SCHEMA_VERSION,))
