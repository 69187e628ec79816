"""Code-of-conduct setup: ``?CoC {channel}`` posts the message and binds its ✅ to the talk role."""

from __future__ import annotations

from typing import Optional

from modsbot.bot.bot_state import BotServices
from modsbot.bot.permissions import Permission
from modsbot.bot.reaction_roles import ReactionRoleTracker
from modsbot.bot.router import CommandContext, CommandDefinition, CommandRouter
from modsbot.datatypes.discord_datatypes import parse_channel_mention
from modsbot.errors import CommandUsageError, NotFoundError
from modsbot.util.logger import get_logger

logger = get_logger("welcome_commands")


class WelcomeCommands:
    def __init__(self, tracker: ReactionRoleTracker, talk_role_id: Optional[int]) -> None:
        self.tracker = tracker
        self.talk_role_id = talk_role_id

    async def post_code_of_conduct(self, ctx: CommandContext, tail: str) -> None:
        token = tail.split()[0]
        channel_id = parse_channel_mention(token)
        if channel_id is None:
            raise CommandUsageError(f"`{token}` is not a channel mention or id.")
        if self.talk_role_id is None:
            raise NotFoundError("No talk role is configured. Set `roles.talk_role_id` in app_config.yml.")

        logger.info("[WELCOME] Posting code of conduct to channel %s in guild %s", channel_id, ctx.guild_id)
        await self.tracker.bind(ctx.guild_id, channel_id, self.talk_role_id)
        await ctx.acknowledge()


def setup(router: CommandRouter, services: BotServices) -> None:
    commands = WelcomeCommands(services.tracker, services.roles.talk_role_id)
    router.register(CommandDefinition(
        name="CoC",
        handler=commands.post_code_of_conduct,
        required_permission=Permission.MODERATOR,
        arity=1,
        usage="CoC {channel}",
        description="Post the code of conduct message to a channel",
        confirm=True,
    ))
    logger.info("Welcome commands loaded")
