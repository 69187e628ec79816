"""
Reaction-role tracker behind the code-of-conduct acknowledgment.

A binding ties ``(message_id, emoji)`` to a role. Adding that reaction grants
the role, removing it revokes the role. Grant and revoke are plain
``PUT``/``DELETE`` calls on the member's role, which the platform treats as
idempotent, so duplicate or replayed reaction events need no local
bookkeeping. Per-user ordering of add/remove is provided by the dispatcher.

Bindings are persisted before they are used and reloaded on every READY, so
they survive restarts.
"""

from __future__ import annotations

from typing import Dict, List, Optional, Tuple

import aiosqlite
import discord

from modsbot.database.db_connection import ConnectionManager
from modsbot.datatypes.discord_datatypes import CHECK_MARK
from modsbot.errors import ExternalServiceError
from modsbot.http.platform_api import PlatformApi
from modsbot.repositories.reaction_role_repo import ReactionRoleBinding, ReactionRoleRepo
from modsbot.util.logger import get_logger

logger = get_logger("reaction_roles")

COC_MESSAGE = (
    "**Welcome!**\n\n"
    "This community follows a Code of Conduct: be friendly and patient, be welcoming, "
    "be considerate and respectful, and keep discussion on topic. Harassment of any kind "
    "is not tolerated and moderators will act on reports.\n\n"
    "React with \N{WHITE HEAVY CHECK MARK} below to confirm you have read and agree to the "
    "Code of Conduct. This unlocks the rest of the server."
)


class ReactionRoleTracker:
    def __init__(self, api: PlatformApi, db: ConnectionManager) -> None:
        self._api = api
        self._db = db
        self._bindings: Dict[Tuple[int, str], ReactionRoleBinding] = {}

    # ------------------------------------------------------------------
    # Cache
    # ------------------------------------------------------------------

    async def load_bindings(self) -> int:
        """Replace the in-memory bindings with what is persisted; returns the count."""
        async with self._db.read() as conn:
            bindings = await ReactionRoleRepo.get_all(conn)
        self._bindings = {(b.message_id, b.emoji): b for b in bindings}
        logger.info("[REACTION ROLES] Loaded %d bindings", len(self._bindings))
        return len(self._bindings)

    def binding_for(self, message_id: int, emoji: str) -> Optional[ReactionRoleBinding]:
        return self._bindings.get((message_id, emoji))

    def is_bound_message(self, message_id: int) -> bool:
        return any(key[0] == message_id for key in self._bindings)

    @property
    def bindings(self) -> List[ReactionRoleBinding]:
        return list(self._bindings.values())

    # ------------------------------------------------------------------
    # Reactions
    # ------------------------------------------------------------------

    async def on_reaction(
        self,
        guild_id: Optional[int],
        channel_id: int,
        message_id: int,
        emoji: str,
        user_id: int,
        added: bool,
    ) -> bool:
        """
        Apply one reaction transition; returns True if a role call was made.

        Reactions on unbound messages are ignored. A different emoji added to a
        bound message is removed again so the message only shows the check mark.
        """
        if user_id == self._api.bot_user_id:
            return False

        binding = self._bindings.get((message_id, emoji))
        if binding is None:
            if added and self.is_bound_message(message_id):
                await self._remove_foreign_reaction(channel_id, message_id, emoji, user_id)
            return False
        if guild_id is not None and guild_id != binding.guild_id:
            return False

        try:
            if added:
                logger.info("[REACTION ROLES] Granting role %s to user %s in guild %s", binding.role_id, user_id, binding.guild_id)
                await self._api.add_role(binding.guild_id, user_id, binding.role_id, reason="Accepted the code of conduct")
            else:
                logger.info("[REACTION ROLES] Revoking role %s from user %s in guild %s", binding.role_id, user_id, binding.guild_id)
                await self._api.remove_role(binding.guild_id, user_id, binding.role_id, reason="Withdrew code of conduct acceptance")
        except discord.NotFound:
            logger.info("[REACTION ROLES] User %s or role %s no longer exists in guild %s", user_id, binding.role_id, binding.guild_id)
            return False
        except discord.Forbidden:
            logger.error("[REACTION ROLES] Missing Manage Roles permission for role %s in guild %s", binding.role_id, binding.guild_id)
            return False
        return True

    async def _remove_foreign_reaction(self, channel_id: int, message_id: int, emoji: str, user_id: int) -> None:
        try:
            await self._api.remove_user_reaction(channel_id, message_id, emoji, user_id)
        except discord.HTTPException as exc:
            logger.debug("[REACTION ROLES] Could not remove reaction %s on %s: %s", emoji, message_id, exc)

    # ------------------------------------------------------------------
    # Setup
    # ------------------------------------------------------------------

    async def bind(
        self,
        guild_id: int,
        channel_id: int,
        role_id: int,
        *,
        content: str = COC_MESSAGE,
        emoji: str = CHECK_MARK,
    ) -> ReactionRoleBinding:
        """
        Post the acknowledgment message and bind its reaction to ``role_id``.

        The binding is committed before it is cached and before the bot adds
        its own reaction; previous bindings of the guild are replaced in the
        same transaction.

        Raises:
            ExternalServiceError: If the binding could not be persisted. The
                posted message is deleted again in that case.
        """
        message = await self._api.send_message(channel_id, content)
        message_id = int(message["id"])
        binding = ReactionRoleBinding(
            guild_id=guild_id,
            channel_id=channel_id,
            message_id=message_id,
            emoji=emoji,
            role_id=role_id,
        )

        try:
            async with self._db.transaction() as conn:
                if await ReactionRoleRepo.exists(conn, message_id, emoji):
                    raise ExternalServiceError(f"message {message_id} is already bound to {emoji}")
                replaced = await ReactionRoleRepo.delete_for_guild(conn, guild_id)
                await ReactionRoleRepo.insert(conn, binding)
        except (aiosqlite.Error, ExternalServiceError) as exc:
            logger.error("[REACTION ROLES] Failed to persist binding for message %s: %s", message_id, exc)
            try:
                await self._api.delete_message(channel_id, message_id)
            except discord.HTTPException:
                logger.warning("[REACTION ROLES] Could not delete unbound message %s", message_id)
            if isinstance(exc, ExternalServiceError):
                raise
            raise ExternalServiceError("could not persist reaction-role binding") from exc

        self._bindings = {k: b for k, b in self._bindings.items() if b.guild_id != guild_id}
        self._bindings[(message_id, emoji)] = binding
        if replaced:
            logger.info("[REACTION ROLES] Replaced bindings on messages %s in guild %s", replaced, guild_id)

        await self._api.add_reaction(channel_id, message_id, emoji)
        logger.info("[REACTION ROLES] Bound %s on message %s to role %s in guild %s", emoji, message_id, role_id, guild_id)
        return binding
