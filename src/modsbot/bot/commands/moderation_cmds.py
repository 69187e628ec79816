"""
Moderation commands, limited to the moderator roles.

Each command is re-authorized against the REST API right before the
destructive call, so a moderator whose role was just removed cannot slip one
last action through a stale cache.

    ?ban {user} [hours] [reason...]   Ban, optionally lifted after ``hours``.
    ?kick {user}                      Kick a member.
    ?slowmode {channel} {seconds}     Set (0 disables) slowmode on a channel.
"""

from __future__ import annotations

from typing import Tuple

from modsbot.bot.bot_state import BotServices
from modsbot.bot.permissions import Permission
from modsbot.bot.router import CommandContext, CommandDefinition, CommandRouter
from modsbot.datatypes.discord_datatypes import parse_channel_mention, parse_user_mention
from modsbot.errors import CommandUsageError
from modsbot.http.platform_api import PlatformApi
from modsbot.services.ban_service import BanService
from modsbot.util.logger import get_logger

logger = get_logger("moderation_commands")

DEFAULT_BAN_REASON = "violating the code of conduct"
MAX_SLOWMODE_SECONDS = 21600


def parse_ban_arguments(tail: str) -> Tuple[int, int, str]:
    """``{user} [hours] [reason...]`` -> ``(user_id, hours, reason)``; ``hours == 0`` is permanent."""
    parts = tail.strip().split(None, 1)
    if not parts:
        raise CommandUsageError()
    user_id = parse_user_mention(parts[0])
    if user_id is None:
        raise CommandUsageError(f"`{parts[0]}` is not a user mention or id.")

    rest = parts[1].strip() if len(parts) > 1 else ""
    hours = 0
    if rest:
        first, _, remainder = rest.partition(" ")
        if first.isdigit():
            hours = int(first)
            rest = remainder.strip()
    return user_id, hours, rest or DEFAULT_BAN_REASON


class ModerationCommands:
    def __init__(self, api: PlatformApi, bans: BanService) -> None:
        self.api = api
        self.bans = bans

    @staticmethod
    def _target(ctx: CommandContext, token: str) -> int:
        user_id = parse_user_mention(token)
        if user_id is None:
            raise CommandUsageError(f"`{token}` is not a user mention or id.")
        if user_id == ctx.author.id:
            raise CommandUsageError("You cannot perform moderation actions on yourself.")
        return user_id

    async def ban(self, ctx: CommandContext, tail: str) -> None:
        user_id, hours, reason = parse_ban_arguments(tail)
        self._target(ctx, str(user_id))
        await self.bans.ban(ctx.guild_id, user_id, hours, reason)
        await ctx.acknowledge()

    async def kick(self, ctx: CommandContext, tail: str) -> None:
        user_id = self._target(ctx, tail.split()[0])
        logger.info("[MODERATION] Kicking user %s from guild %s", user_id, ctx.guild_id)
        await self.api.kick(ctx.guild_id, user_id, reason=f"Kicked by {ctx.author.id}")
        await ctx.acknowledge()

    async def slowmode(self, ctx: CommandContext, tail: str) -> None:
        channel_token, seconds_token = tail.split()[:2]
        channel_id = parse_channel_mention(channel_token)
        if channel_id is None:
            raise CommandUsageError(f"`{channel_token}` is not a channel mention or id.")
        if not seconds_token.isdigit() or int(seconds_token) > MAX_SLOWMODE_SECONDS:
            raise CommandUsageError(f"Seconds must be a whole number between 0 and {MAX_SLOWMODE_SECONDS}.")

        seconds = int(seconds_token)
        logger.info("[MODERATION] Setting slowmode of channel %s to %ss", channel_id, seconds)
        await self.api.set_slowmode(channel_id, seconds, reason=f"Requested by {ctx.author.id}")
        await ctx.acknowledge()


def setup(router: CommandRouter, services: BotServices) -> None:
    commands = ModerationCommands(services.api, services.bans)

    router.register(CommandDefinition(
        name="ban",
        handler=commands.ban,
        required_permission=Permission.MODERATOR,
        arity=1,
        usage="ban {user} {hours} reason...",
        description="Ban a user, for a number of hours if given",
        confirm=True,
    ))
    router.register(CommandDefinition(
        name="kick",
        handler=commands.kick,
        required_permission=Permission.MODERATOR,
        arity=1,
        usage="kick {user}",
        description="Kick a user from the guild",
        confirm=True,
    ))
    router.register(CommandDefinition(
        name="slowmode",
        handler=commands.slowmode,
        required_permission=Permission.MODERATOR,
        arity=2,
        usage="slowmode {channel} {seconds}",
        description="Set slowmode on a channel",
        confirm=True,
    ))
    logger.info("Moderation commands loaded")
