"""
Tag commands: a per-guild key/value store for canned answers.

    ?tag {key}                     Show a tag.
    ?tags                          List all tags.
    ?tags create {key} value...    Create or replace a tag.   (privileged)
    ?tags update {key} value...    Replace an existing tag.   (privileged)
    ?tags delete {key}             Delete a tag.              (privileged)
"""

from __future__ import annotations

from typing import Optional, Tuple

from modsbot.bot.bot_state import BotServices
from modsbot.bot.permissions import Permission
from modsbot.bot.router import CommandContext, CommandDefinition, CommandRouter
from modsbot.errors import CommandUsageError, NotFoundError
from modsbot.http.platform_api import MAX_MESSAGE_LENGTH
from modsbot.services.tag_store import TagStore
from modsbot.util.logger import get_logger

logger = get_logger("tag_commands")

# Room for the code fence around the listing
LISTING_BUDGET = MAX_MESSAGE_LENGTH - 20


def split_key_value(tail: str) -> Tuple[str, str]:
    parts = tail.strip().split(None, 1)
    if len(parts) < 2 or not parts[1].strip():
        raise CommandUsageError()
    return parts[0], parts[1].strip()


def format_listing(keys: list[str]) -> str:
    listing = ""
    for key in keys:
        if len(listing) + len(key) + 1 > LISTING_BUDGET:
            break
        listing += key + "\n"
    return f"All tags: ```\n{listing}```"


def _require_guild(ctx: CommandContext) -> int:
    if ctx.guild_id is None:
        raise NotFoundError("Tags are only available inside a server.")
    return ctx.guild_id


class TagCommands:
    def __init__(self, store: TagStore) -> None:
        self.store = store

    async def show(self, ctx: CommandContext, tail: str) -> None:
        key = tail.split()[0]
        body: Optional[str] = await self.store.get(_require_guild(ctx), key)
        if body is None:
            raise NotFoundError(f"Tag not found for `{key}`")
        await ctx.reply(body)

    async def list(self, ctx: CommandContext, tail: str) -> None:
        keys = await self.store.list(_require_guild(ctx))
        if not keys:
            await ctx.reply("No tags found")
            return
        await ctx.reply(format_listing(keys))

    async def create(self, ctx: CommandContext, tail: str) -> None:
        key, body = split_key_value(tail)
        await self.store.set(_require_guild(ctx), key, body, ctx.author.id)
        await ctx.acknowledge()

    async def update(self, ctx: CommandContext, tail: str) -> None:
        key, body = split_key_value(tail)
        guild_id = _require_guild(ctx)
        if await self.store.get(guild_id, key) is None:
            raise NotFoundError(f"Tag not found for `{key}`")
        await self.store.set(guild_id, key, body, ctx.author.id)
        await ctx.acknowledge()

    async def delete(self, ctx: CommandContext, tail: str) -> None:
        key = tail.split()[0]
        if not await self.store.delete(_require_guild(ctx), key):
            raise NotFoundError(f"Tag not found for `{key}`")
        await ctx.acknowledge()


def setup(router: CommandRouter, services: BotServices) -> None:
    """Register the tag commands with ``router``."""
    commands = TagCommands(services.tags)

    router.register(CommandDefinition(
        name="tag",
        handler=commands.show,
        arity=1,
        usage="tag {key}",
        description="Show a tag",
    ))
    router.register(CommandDefinition(
        name="tags",
        handler=commands.list,
        usage="tags",
        description="A key value store",
        subcommands={
            "create": CommandDefinition(
                name="tags create",
                handler=commands.create,
                required_permission=Permission.PRIVILEGED,
                arity=2,
                usage="tags create {key} value...",
                description="Create a tag. Limited to WG & Teams.",
            ),
            "update": CommandDefinition(
                name="tags update",
                handler=commands.update,
                required_permission=Permission.PRIVILEGED,
                arity=2,
                usage="tags update {key} value...",
                description="Update a tag. Limited to WG & Teams.",
            ),
            "delete": CommandDefinition(
                name="tags delete",
                handler=commands.delete,
                required_permission=Permission.PRIVILEGED,
                arity=1,
                usage="tags delete {key}",
                description="Delete a tag. Limited to WG & Teams.",
            ),
        },
    ))
    logger.info("Tag commands loaded")
