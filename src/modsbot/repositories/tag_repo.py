"""
Low-level CRUD for the ``tags`` table.

Keys reaching this layer are already normalized by :mod:`modsbot.services.tag_store`.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import List, Optional

import aiosqlite


@dataclass
class TagRecord:
    """A single row from the ``tags`` table."""
    guild_id: int
    key: str
    body: str
    created_by: int


class TagRepo:
    """CRUD for the ``tags`` table (primary key = guild_id + key)."""

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    @staticmethod
    async def upsert(
        conn: aiosqlite.Connection,
        guild_id: int,
        key: str,
        body: str,
        created_by: int,
    ) -> None:
        """Insert a tag or replace the body of an existing one."""
        await conn.execute(
            """
            INSERT INTO tags (guild_id, key, body, created_by)
            VALUES (?, ?, ?, ?)
            ON CONFLICT(guild_id, key) DO UPDATE SET
                body       = excluded.body,
                created_by = excluded.created_by,
                updated_at = CURRENT_TIMESTAMP
            """,
            (guild_id, key, body, created_by),
        )

    @staticmethod
    async def delete(conn: aiosqlite.Connection, guild_id: int, key: str) -> bool:
        """Delete a tag; returns True if a row was removed."""
        cursor = await conn.execute(
            "DELETE FROM tags WHERE guild_id = ? AND key = ?",
            (guild_id, key),
        )
        return cursor.rowcount > 0

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    @staticmethod
    async def get(conn: aiosqlite.Connection, guild_id: int, key: str) -> Optional[TagRecord]:
        cursor = await conn.execute(
            "SELECT guild_id, key, body, created_by FROM tags WHERE guild_id = ? AND key = ? LIMIT 1",
            (guild_id, key),
        )
        row = await cursor.fetchone()
        if row is None:
            return None
        return TagRecord(guild_id=row[0], key=row[1], body=row[2], created_by=row[3])

    @staticmethod
    async def list_keys(conn: aiosqlite.Connection, guild_id: int) -> List[str]:
        cursor = await conn.execute(
            "SELECT key FROM tags WHERE guild_id = ? ORDER BY key",
            (guild_id,),
        )
        rows = await cursor.fetchall()
        return [row[0] for row in rows]
