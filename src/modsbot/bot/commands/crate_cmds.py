"""
Package registry commands.

    ?crate {query...}    Search crates.io and show the best match.
    ?docs {query...}     Link to the documentation of a crate or ``crate::item``.
"""

from __future__ import annotations

import discord

from modsbot.bot.bot_state import BotServices
from modsbot.bot.router import CommandContext, CommandDefinition, CommandRouter
from modsbot.errors import NotFoundError
from modsbot.services.registry_client import CrateSummary, RegistryClient
from modsbot.util.logger import get_logger

logger = get_logger("crate_commands")

CRATE_COLOR = 0xDEA584


def build_crate_embed(crate: CrateSummary) -> dict:
    embed = discord.Embed(
        title=crate.name,
        url=crate.url,
        description=crate.description or None,
        color=CRATE_COLOR,
        timestamp=crate.updated_at,
    )
    embed.add_field(name="Version", value=crate.version)
    embed.add_field(name="Downloads", value=f"{crate.downloads:,}")
    if crate.documentation:
        embed.add_field(name="Docs", value=crate.documentation, inline=False)
    embed.set_footer(text="Last updated")
    return embed.to_dict()


class CrateCommands:
    def __init__(self, registry: RegistryClient) -> None:
        self.registry = registry

    async def crate(self, ctx: CommandContext, tail: str) -> None:
        query = tail.strip()
        results = await self.registry.search(query)
        if not results:
            raise NotFoundError(f"No crates found for `{query}`")
        await ctx.reply(embed=build_crate_embed(results[0]))

    async def docs(self, ctx: CommandContext, tail: str) -> None:
        query = tail.strip()
        link = await self.registry.fetch_doc_link(query)
        if link is None:
            raise NotFoundError(f"No crates found for `{query}`")
        await ctx.reply(link)


def setup(router: CommandRouter, services: BotServices) -> None:
    commands = CrateCommands(services.registry)
    router.register(CommandDefinition(
        name="crate",
        handler=commands.crate,
        arity=1,
        usage="crate {query...}",
        description="Lookup crates on crates.io",
    ))
    router.register(CommandDefinition(
        name="docs",
        handler=commands.docs,
        arity=1,
        usage="docs {query...}",
        description="Lookup documentation",
    ))
    logger.info("Crate commands loaded")
