"""
Temporary bans: ban now, remember when to lift it, lift it from the job scheduler.

Rows live in ``temporary_bans``; a ban lifted by a moderator by hand is
forgotten when the gateway reports the GUILD_BAN_REMOVE.
"""

from __future__ import annotations

import time
from typing import Callable, Optional

import discord

from modsbot.database.db_connection import ConnectionManager
from modsbot.http.platform_api import PlatformApi
from modsbot.repositories.temporary_ban_repo import TemporaryBanRepo
from modsbot.util.logger import get_logger

logger = get_logger("ban_service")

HOUR = 3600
# Message history removed together with the ban
BAN_DELETE_MESSAGE_SECONDS = 7 * 24 * HOUR


def ban_message(reason: str, hours: int) -> str:
    """Text sent to the user by DM before the ban lands."""
    duration = f"for {hours} hour{'s' if hours != 1 else ''}" if hours > 0 else "permanently"
    return (
        f"You have been banned from the server {duration} for {reason}.\n"
        "If you believe this was a mistake, reply to a moderator once the ban has expired."
    )


class BanService:
    def __init__(self, api: PlatformApi, db: ConnectionManager, clock: Callable[[], float] = time.time) -> None:
        self._api = api
        self._db = db
        self._clock = clock

    async def ban(self, guild_id: int, user_id: int, hours: int, reason: str) -> Optional[int]:
        """
        Ban ``user_id``; with ``hours > 0`` schedule the unban.

        The DM is best effort: users who do not share a server with the bot or
        who block DMs are banned all the same.

        Returns:
            The unban time in unix seconds, or ``None`` for a permanent ban.
        """
        try:
            await self._api.send_direct_message(user_id, ban_message(reason, hours))
        except discord.HTTPException as exc:
            logger.info("[BAN SERVICE] Could not DM user %s before ban: %s", user_id, exc)

        await self._api.ban(
            guild_id,
            user_id,
            delete_message_seconds=BAN_DELETE_MESSAGE_SECONDS,
            reason=reason,
        )
        logger.info("[BAN SERVICE] Banned user %s from guild %s (%s hours)", user_id, guild_id, hours or "permanent")

        if hours <= 0:
            return None

        unban_at = int(self._clock()) + hours * HOUR
        async with self._db.transaction() as conn:
            await TemporaryBanRepo.upsert(conn, guild_id, user_id, unban_at, reason)
        return unban_at

    async def forget(self, guild_id: int, user_id: int) -> bool:
        """Drop a pending unban, e.g. after a moderator lifted the ban manually."""
        async with self._db.transaction() as conn:
            removed = await TemporaryBanRepo.delete(conn, guild_id, user_id)
        if removed:
            logger.info("[BAN SERVICE] Ban of user %s in guild %s lifted, pending unban removed", user_id, guild_id)
        return removed

    async def unban_expired(self) -> int:
        """Lift every temporary ban whose time is up; returns how many were lifted."""
        async with self._db.read() as conn:
            expired = await TemporaryBanRepo.get_expired(conn, int(self._clock()))

        lifted = 0
        for record in expired:
            try:
                await self._api.unban(record.guild_id, record.user_id, reason="Ban duration expired.")
                lifted += 1
                logger.info("[BAN SERVICE] Unbanned user %s in guild %s", record.user_id, record.guild_id)
            except discord.NotFound:
                logger.warning("[BAN SERVICE] User %s was no longer banned in guild %s", record.user_id, record.guild_id)
            except discord.HTTPException as exc:
                logger.error("[BAN SERVICE] Failed to unban user %s in guild %s: %s", record.user_id, record.guild_id, exc)
                continue

            async with self._db.transaction() as conn:
                await TemporaryBanRepo.delete(conn, record.guild_id, record.user_id)
        return lifted
