"""
Persistent storage for reaction-role bindings.

A binding row is written before the CoC setup command reports success and is
read back on every READY so the tracker survives restarts.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import List

import aiosqlite


@dataclass(frozen=True)
class ReactionRoleBinding:
    """Reacting with ``emoji`` on ``message_id`` grants ``role_id``; removing the reaction revokes it."""
    guild_id: int
    channel_id: int
    message_id: int
    emoji: str
    role_id: int


class ReactionRoleRepo:
    """CRUD for the ``reaction_role_bindings`` table (primary key = message_id + emoji)."""

    @staticmethod
    async def insert(conn: aiosqlite.Connection, binding: ReactionRoleBinding) -> None:
        """
        Insert a binding.

        Raises:
            aiosqlite.IntegrityError: If ``(message_id, emoji)`` is already bound.
        """
        await conn.execute(
            """
            INSERT INTO reaction_role_bindings (message_id, emoji, guild_id, channel_id, role_id)
            VALUES (?, ?, ?, ?, ?)
            """,
            (binding.message_id, binding.emoji, binding.guild_id, binding.channel_id, binding.role_id),
        )

    @staticmethod
    async def delete_for_guild(conn: aiosqlite.Connection, guild_id: int) -> List[int]:
        """Remove every binding of a guild; returns the message ids that were unbound."""
        cursor = await conn.execute(
            "SELECT DISTINCT message_id FROM reaction_role_bindings WHERE guild_id = ?",
            (guild_id,),
        )
        message_ids = [row[0] for row in await cursor.fetchall()]
        await conn.execute("DELETE FROM reaction_role_bindings WHERE guild_id = ?", (guild_id,))
        return message_ids

    @staticmethod
    async def exists(conn: aiosqlite.Connection, message_id: int, emoji: str) -> bool:
        cursor = await conn.execute(
            "SELECT 1 FROM reaction_role_bindings WHERE message_id = ? AND emoji = ? LIMIT 1",
            (message_id, emoji),
        )
        return await cursor.fetchone() is not None

    @staticmethod
    async def get_all(conn: aiosqlite.Connection) -> List[ReactionRoleBinding]:
        cursor = await conn.execute(
            "SELECT guild_id, channel_id, message_id, emoji, role_id FROM reaction_role_bindings"
        )
        rows = await cursor.fetchall()
        return [
            ReactionRoleBinding(
                guild_id=row[0],
                channel_id=row[1],
                message_id=row[2],
                emoji=row[3],
                role_id=row[4],
            )
            for row in rows
        ]
