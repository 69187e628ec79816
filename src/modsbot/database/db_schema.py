"""
Database schema initialization and version tracking.
"""

import aiosqlite
from modsbot.util.logger import get_logger

logger = get_logger("database_schema")

SCHEMA_VERSION = 1


class SchemaManager:
    """Creates the tables and indexes modsbot needs and records the schema version."""

    @staticmethod
    async def initialize_schema(db: aiosqlite.Connection) -> None:
        """
        Create or update all database tables and indexes.

        Args:
            db: Open database connection
        """
        await SchemaManager._create_tables(db)
        await SchemaManager._create_indexes(db)
        await SchemaManager._update_schema_version(db)
        await db.commit()
        logger.info("[SCHEMA] Database schema initialized (version %d)", SCHEMA_VERSION)

    @staticmethod
    async def _create_tables(db: aiosqlite.Connection) -> None:
        # Tags: key is stored lower-cased, unique per guild
        await db.execute("""
            CREATE TABLE IF NOT EXISTS tags (
                guild_id INTEGER NOT NULL,
                key TEXT NOT NULL,
                body TEXT NOT NULL,
                created_by INTEGER NOT NULL,
                created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
                updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
                PRIMARY KEY (guild_id, key)
            )
        """)

        # Reaction-role bindings: one row per (message, emoji)
        await db.execute("""
            CREATE TABLE IF NOT EXISTS reaction_role_bindings (
                message_id INTEGER NOT NULL,
                emoji TEXT NOT NULL,
                guild_id INTEGER NOT NULL,
                channel_id INTEGER NOT NULL,
                role_id INTEGER NOT NULL,
                created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
                PRIMARY KEY (message_id, emoji)
            )
        """)

        # Pending temporary bans; unban_at is unix seconds (UTC)
        await db.execute("""
            CREATE TABLE IF NOT EXISTS temporary_bans (
                guild_id INTEGER NOT NULL,
                user_id INTEGER NOT NULL,
                unban_at INTEGER NOT NULL,
                reason TEXT NOT NULL DEFAULT '',
                PRIMARY KEY (guild_id, user_id)
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
        await db.execute(
            "CREATE INDEX IF NOT EXISTS idx_bindings_guild ON reaction_role_bindings(guild_id)"
        )
        await db.execute(
            "CREATE INDEX IF NOT EXISTS idx_tempbans_unban_at ON temporary_bans(unban_at)"
        )

    @staticmethod
    async def _update_schema_version(db: aiosqlite.Connection) -> None:
        await db.execute(
            "INSERT OR IGNORE INTO schema_version (version) VALUES (?)",
            (SCHEMA_VERSION,),
        )
