"""``?help`` and ``?help {command}``, showing only what the author may run."""

from __future__ import annotations

from modsbot.bot.bot_state import BotServices
from modsbot.bot.permissions import PermissionResolver
from modsbot.bot.router import CommandContext, CommandDefinition, CommandRouter
from modsbot.errors import NotFoundError
from modsbot.util.logger import get_logger

logger = get_logger("help_commands")


class HelpCommands:
    def __init__(self, router: CommandRouter, resolver: PermissionResolver) -> None:
        self.router = router
        self.resolver = resolver

    def _allowed(self, ctx: CommandContext, definition: CommandDefinition) -> bool:
        return self.resolver.has_permission(
            ctx.guild_id, ctx.author.id, definition.required_permission, ctx.member_roles
        )

    def _visible(self, ctx: CommandContext):
        for definition in self.router.commands.values():
            if definition.name == "help":
                continue
            if self._allowed(ctx, definition):
                yield definition
            for sub in definition.subcommands.values():
                if self._allowed(ctx, sub):
                    yield sub

    async def help(self, ctx: CommandContext, tail: str) -> None:
        query = tail.strip()
        if query:
            await self._command_help(ctx, query)
            return

        lines = ["Commands:"]
        for definition in self._visible(ctx):
            lines.append(f"\t{self.router.usage_line(definition):<32}{definition.description}")
        lines.append(f"\t{self.router.prefix + 'help':<32}This menu")
        lines.append(f"\nType {self.router.prefix}help command for more info on a command.")
        lines.append("\nAdditional Info:")
        lines.append("\tYou can edit your message to the bot and the bot will edit its response.")
        await ctx.reply("```\n" + "\n".join(lines) + "\n```")

    async def _command_help(self, ctx: CommandContext, query: str) -> None:
        name = query.lstrip(self.router.prefix).split(None, 1)
        definition = self.router.lookup(name[0]) if name else None
        if definition is not None and len(name) > 1:
            definition = definition.subcommands.get(name[1].split()[0].lower(), definition)
        if definition is None or not self._allowed(ctx, definition):
            raise NotFoundError(f"No command named `{query}`")

        text = f"{definition.description}\n```\n{self.router.usage_line(definition)}\n```"
        subs = [sub for sub in definition.subcommands.values() if self._allowed(ctx, sub)]
        if subs:
            text += "```\n" + "\n".join(
                f"{self.router.usage_line(sub):<32}{sub.description}" for sub in subs
            ) + "\n```"
        await ctx.reply(text)


def setup(router: CommandRouter, services: BotServices) -> None:
    commands = HelpCommands(router, services.resolver)
    router.register(CommandDefinition(
        name="help",
        handler=commands.help,
        usage="help [command]",
        description="This menu",
    ))
    logger.info("Help command loaded")
