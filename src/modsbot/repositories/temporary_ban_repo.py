"""
Persistent storage for scheduled temporary bans.

Timestamps are stored as INTEGER unix seconds so expiry checks are a plain
integer comparison with no timezone handling.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import List

import aiosqlite


@dataclass
class TemporaryBanRecord:
    """A single row from the ``temporary_bans`` table."""
    guild_id: int
    user_id: int
    unban_at: int   # unix seconds (UTC)
    reason: str


class TemporaryBanRepo:
    """Low-level CRUD for the ``temporary_bans`` table."""

    @staticmethod
    async def upsert(
        conn: aiosqlite.Connection,
        guild_id: int,
        user_id: int,
        unban_at: int,
        reason: str,
    ) -> None:
        """Insert or replace a tempban row (primary key = guild_id + user_id)."""
        await conn.execute(
            """
            INSERT INTO temporary_bans (guild_id, user_id, unban_at, reason)
            VALUES (?, ?, ?, ?)
            ON CONFLICT(guild_id, user_id) DO UPDATE SET
                unban_at = excluded.unban_at,
                reason   = excluded.reason
            """,
            (guild_id, user_id, unban_at, reason),
        )

    @staticmethod
    async def delete(conn: aiosqlite.Connection, guild_id: int, user_id: int) -> bool:
        """Remove a tempban row after the ban was lifted (by us or by a moderator)."""
        cursor = await conn.execute(
            "DELETE FROM temporary_bans WHERE guild_id = ? AND user_id = ?",
            (guild_id, user_id),
        )
        return cursor.rowcount > 0

    @staticmethod
    async def get_expired(conn: aiosqlite.Connection, now: int) -> List[TemporaryBanRecord]:
        """Return all rows where ``unban_at <= now`` (unix seconds)."""
        cursor = await conn.execute(
            "SELECT guild_id, user_id, unban_at, reason "
            "FROM temporary_bans WHERE unban_at <= ?",
            (now,),
        )
        rows = await cursor.fetchall()
        return [
            TemporaryBanRecord(guild_id=row[0], user_id=row[1], unban_at=row[2], reason=row[3])
            for row in rows
        ]

    @staticmethod
    async def exists(conn: aiosqlite.Connection, guild_id: int, user_id: int) -> bool:
        """Return True if a pending tempban exists for the given user."""
        cursor = await conn.execute(
            "SELECT 1 FROM temporary_bans WHERE guild_id = ? AND user_id = ? LIMIT 1",
            (guild_id, user_id),
        )
        return await cursor.fetchone() is not None
