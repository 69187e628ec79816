"""
Prefix command router.

``route()`` turns a raw message into at most one handler invocation:

1. Text must start with the prefix; the command name runs up to the first
   whitespace and is matched case-insensitively against the command table.
   Everything after it is handed to the handler untouched.
2. Unknown names are ignored silently.
3. The author's cached roles are checked against the command's tier. A denial
   gets exactly one reply.
4. The handler runs once under ``handler_timeout``. Errors are mapped to
   replies by type; nothing is retried.
"""

from __future__ import annotations

import asyncio
import enum
from dataclasses import dataclass, field
from typing import Awaitable, Callable, Dict, FrozenSet, Mapping, Optional, Tuple

import discord

from modsbot.bot.command_history import CommandHistory
from modsbot.bot.permissions import Permission, PermissionResolver
from modsbot.datatypes.discord_datatypes import CHECK_MARK
from modsbot.errors import CommandUsageError, ExternalServiceError, NotFoundError, PermissionDenied
from modsbot.gateway.events import Author
from modsbot.http.platform_api import PlatformApi
from modsbot.util.logger import get_logger

logger = get_logger("router")

PERMISSION_DENIED_REPLY = "You do not have permission to use this command."
GENERIC_FAILURE_REPLY = "Something went wrong while running this command."

Handler = Callable[["CommandContext", str], Awaitable[None]]


class RouteOutcome(enum.Enum):
    IGNORED = "ignored"
    HANDLED = "handled"
    DENIED = "denied"
    NOT_FOUND = "not_found"
    USAGE_ERROR = "usage_error"
    TIMED_OUT = "timed_out"
    FAILED = "failed"


@dataclass(frozen=True)
class CommandDefinition:
    """
    One entry of the command table.

    ``arity`` is the minimum number of whitespace-separated words the tail
    must contain. ``confirm`` asks the resolver for an authoritative REST
    check before the handler runs. ``timeout`` overrides the router-wide
    handler timeout.
    """
    name: str
    handler: Handler
    required_permission: Permission = Permission.NONE
    arity: int = 0
    usage: str = ""
    description: str = ""
    confirm: bool = False
    timeout: Optional[float] = None
    subcommands: Mapping[str, "CommandDefinition"] = field(default_factory=dict)


@dataclass
class CommandContext:
    """Everything a handler needs to answer the message that invoked it."""
    api: PlatformApi
    guild_id: Optional[int]
    channel_id: int
    author: Author
    message_id: Optional[int] = None
    member_roles: Optional[FrozenSet[int]] = None
    history: Optional[CommandHistory] = None
    prefix: str = "?"

    async def reply(self, content: str | None = None, *, embed: dict | None = None) -> None:
        """Post a reply, or edit the previous reply when the command was edited and re-run."""
        if self.history is not None and self.message_id is not None:
            existing = self.history.response_for(self.message_id)
            if existing is not None:
                try:
                    await self.api.edit_message(self.channel_id, existing, content, embed=embed)
                    return
                except discord.NotFound:
                    self.history.pop(self.message_id)

        message = await self.api.send_message(self.channel_id, content, embed=embed)
        if self.history is not None and self.message_id is not None and message:
            self.history.record(self.message_id, self.channel_id, int(message["id"]))

    async def acknowledge(self) -> None:
        """React with a check mark on the invoking message."""
        if self.message_id is not None:
            await self.api.add_reaction(self.channel_id, self.message_id, CHECK_MARK)


class CommandRouter:
    def __init__(
        self,
        api: PlatformApi,
        resolver: PermissionResolver,
        *,
        prefix: str = "?",
        handler_timeout: float = 15.0,
        history: Optional[CommandHistory] = None,
    ) -> None:
        self._api = api
        self._resolver = resolver
        self.prefix = prefix
        self.handler_timeout = handler_timeout
        self.history = history
        self._commands: Dict[str, CommandDefinition] = {}

    # ------------------------------------------------------------------
    # Command table
    # ------------------------------------------------------------------

    def register(self, definition: CommandDefinition) -> None:
        name = definition.name.lower()
        if name in self._commands:
            raise ValueError(f"command {name!r} is already registered")
        self._commands[name] = definition
        logger.debug("[ROUTER] Registered command %s%s", self.prefix, name)

    @property
    def commands(self) -> Mapping[str, CommandDefinition]:
        return dict(self._commands)

    def lookup(self, name: str) -> Optional[CommandDefinition]:
        return self._commands.get(name.lower())

    def usage_line(self, definition: CommandDefinition) -> str:
        return f"{self.prefix}{definition.usage or definition.name}"

    def parse(self, raw_text: str) -> Optional[Tuple[str, str]]:
        """Split ``raw_text`` into ``(name, tail)``; ``None`` if it is not a command."""
        if not raw_text.startswith(self.prefix):
            return None
        body = raw_text[len(self.prefix):]
        if not body or body[0].isspace():
            return None
        parts = body.split(None, 1)
        return parts[0].lower(), (parts[1] if len(parts) > 1 else "")

    @staticmethod
    def _resolve_subcommand(definition: CommandDefinition, tail: str) -> Tuple[CommandDefinition, str]:
        if not definition.subcommands or not tail:
            return definition, tail
        parts = tail.split(None, 1)
        sub = definition.subcommands.get(parts[0].lower())
        if sub is None:
            return definition, tail
        return sub, (parts[1] if len(parts) > 1 else "")

    # ------------------------------------------------------------------
    # Routing
    # ------------------------------------------------------------------

    async def route(
        self,
        raw_text: str,
        author: Author,
        guild_id: Optional[int],
        channel_id: int,
        message_id: Optional[int] = None,
        member_roles: Optional[FrozenSet[int]] = None,
    ) -> RouteOutcome:
        parsed = self.parse(raw_text)
        if parsed is None:
            return RouteOutcome.IGNORED

        name, tail = parsed
        definition = self._commands.get(name)
        if definition is None:
            logger.debug("[ROUTER] Ignoring unknown command %r", name)
            return RouteOutcome.IGNORED
        definition, tail = self._resolve_subcommand(definition, tail)

        ctx = CommandContext(
            api=self._api,
            guild_id=guild_id,
            channel_id=channel_id,
            author=author,
            message_id=message_id,
            member_roles=member_roles,
            history=self.history,
            prefix=self.prefix,
        )

        if not self._resolver.has_permission(guild_id, author.id, definition.required_permission, member_roles):
            logger.info("[ROUTER] Denied %s to user %s in guild %s", definition.name, author.id, guild_id)
            await self._safe_reply(ctx, PERMISSION_DENIED_REPLY)
            return RouteOutcome.DENIED

        logger.info("[ROUTER] Running %s for user %s in guild %s", definition.name, author.id, guild_id)
        timeout = definition.timeout if definition.timeout is not None else self.handler_timeout
        try:
            await asyncio.wait_for(self._invoke(definition, ctx, tail), timeout=timeout)
        except asyncio.TimeoutError:
            logger.warning("[ROUTER] %s timed out after %.1fs", definition.name, timeout)
            await self._safe_reply(ctx, GENERIC_FAILURE_REPLY)
            return RouteOutcome.TIMED_OUT
        except PermissionDenied:
            await self._safe_reply(ctx, PERMISSION_DENIED_REPLY)
            return RouteOutcome.DENIED
        except NotFoundError as exc:
            await self._safe_reply(ctx, str(exc))
            return RouteOutcome.NOT_FOUND
        except CommandUsageError as exc:
            detail = f"{exc}\n" if str(exc) else ""
            await self._safe_reply(ctx, f"{detail}Usage: `{self.usage_line(definition)}`")
            return RouteOutcome.USAGE_ERROR
        except ExternalServiceError as exc:
            logger.error("[ROUTER] %s failed: %s", definition.name, exc)
            await self._safe_reply(ctx, GENERIC_FAILURE_REPLY)
            return RouteOutcome.FAILED
        except Exception:
            logger.exception("[ROUTER] Unexpected error in %s", definition.name)
            await self._safe_reply(ctx, GENERIC_FAILURE_REPLY)
            return RouteOutcome.FAILED

        return RouteOutcome.HANDLED

    async def _invoke(self, definition: CommandDefinition, ctx: CommandContext, tail: str) -> None:
        if len(tail.split()) < definition.arity:
            raise CommandUsageError()
        if definition.confirm and not await self._resolver.confirm(
            ctx.guild_id, ctx.author.id, definition.required_permission
        ):
            raise PermissionDenied(definition.name)
        await definition.handler(ctx, tail)

    async def _safe_reply(self, ctx: CommandContext, content: str) -> None:
        try:
            await ctx.reply(content)
        except discord.HTTPException as exc:
            logger.warning("[ROUTER] Could not post reply in channel %s: %s", ctx.channel_id, exc)
