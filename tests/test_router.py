import asyncio
from unittest.mock import AsyncMock

import discord
import pytest

from modsbot.bot.command_history import CommandHistory
from modsbot.bot.permissions import GuildRoleCache, Permission, PermissionResolver
from modsbot.bot.router import (
    GENERIC_FAILURE_REPLY,
    PERMISSION_DENIED_REPLY,
    CommandDefinition,
    CommandRouter,
    RouteOutcome,
)
from modsbot.configuration.app_configuration import RoleSettings
from modsbot.errors import CommandUsageError, ExternalServiceError, NotFoundError
from modsbot.gateway.events import Author

GUILD = 100
CHANNEL = 200
MOD_ROLE = 300
WG_ROLE = 301
MEMBER = Author(id=1, name="member")
MODERATOR = Author(id=2, name="moderator")
TEAM = Author(id=3, name="team")


def make_router(timeout=1.0, history=None):
    api = AsyncMock()
    api.send_message.return_value = {"id": "9000"}
    cache = GuildRoleCache()
    cache.replace_guild(
        GUILD,
        {MOD_ROLE: "Mod", WG_ROLE: "WG & Teams"},
        {MEMBER.id: frozenset(), MODERATOR.id: frozenset({MOD_ROLE}), TEAM.id: frozenset({WG_ROLE})},
    )
    resolver = PermissionResolver(cache, RoleSettings(), api)
    router = CommandRouter(api, resolver, prefix="?", handler_timeout=timeout, history=history)
    return router, api


def replies(api):
    return [call.args[1] for call in api.send_message.await_args_list]


def test_parse_splits_name_and_keeps_raw_tail():
    router, _ = make_router()

    assert router.parse("?TAGS create  rules  Be  excellent") == ("tags", "create  rules  Be  excellent")
    assert router.parse("?help") == ("help", "")
    assert router.parse("? help") is None
    assert router.parse("?") is None
    assert router.parse("hello ?help") is None


def test_register_rejects_duplicates_case_insensitively():
    router, _ = make_router()
    router.register(CommandDefinition(name="tag", handler=AsyncMock()))

    with pytest.raises(ValueError):
        router.register(CommandDefinition(name="TAG", handler=AsyncMock()))
    assert router.lookup("Tag") is not None


@pytest.mark.asyncio
async def test_handler_receives_tail_verbatim():
    router, api = make_router()
    handler = AsyncMock()
    router.register(CommandDefinition(name="echo", handler=handler))

    outcome = await router.route("?Echo   spaced  out ", MEMBER, GUILD, CHANNEL, message_id=5)

    assert outcome is RouteOutcome.HANDLED
    ctx, tail = handler.await_args.args
    assert tail == "spaced  out "
    assert ctx.guild_id == GUILD and ctx.author == MEMBER
    api.send_message.assert_not_awaited()


@pytest.mark.asyncio
async def test_unknown_and_non_commands_are_silent():
    router, api = make_router()

    assert await router.route("?nope", MEMBER, GUILD, CHANNEL) is RouteOutcome.IGNORED
    assert await router.route("just chatting", MEMBER, GUILD, CHANNEL) is RouteOutcome.IGNORED
    api.send_message.assert_not_awaited()


@pytest.mark.asyncio
async def test_denied_command_replies_once_and_skips_handler():
    router, api = make_router()
    handler = AsyncMock()
    router.register(CommandDefinition(name="kick", handler=handler, required_permission=Permission.MODERATOR))

    outcome = await router.route("?kick <@5>", MEMBER, GUILD, CHANNEL)

    assert outcome is RouteOutcome.DENIED
    handler.assert_not_awaited()
    assert replies(api) == [PERMISSION_DENIED_REPLY]


@pytest.mark.asyncio
async def test_subcommand_uses_its_own_permission():
    router, api = make_router()
    show, create = AsyncMock(), AsyncMock()
    router.register(CommandDefinition(
        name="tags",
        handler=show,
        subcommands={"create": CommandDefinition(name="tags create", handler=create,
                                                 required_permission=Permission.PRIVILEGED)},
    ))

    assert await router.route("?tags", MEMBER, GUILD, CHANNEL) is RouteOutcome.HANDLED
    assert await router.route("?tags CREATE rules x", MEMBER, GUILD, CHANNEL) is RouteOutcome.DENIED
    assert await router.route("?tags create rules x", MODERATOR, GUILD, CHANNEL) is RouteOutcome.DENIED
    assert await router.route("?tags create rules x", TEAM, GUILD, CHANNEL) is RouteOutcome.HANDLED
    assert create.await_args.args[1] == "rules x"
    show.assert_awaited_once()


@pytest.mark.asyncio
async def test_timeout_gets_generic_reply():
    router, api = make_router(timeout=0.05)

    async def slow(ctx, tail):
        await asyncio.sleep(5)

    router.register(CommandDefinition(name="slow", handler=slow))

    assert await router.route("?slow", MEMBER, GUILD, CHANNEL) is RouteOutcome.TIMED_OUT
    assert replies(api) == [GENERIC_FAILURE_REPLY]


@pytest.mark.asyncio
async def test_command_timeout_overrides_router_timeout():
    router, api = make_router(timeout=0.05)

    async def patient(ctx, tail):
        await asyncio.sleep(0.1)
        await ctx.reply("done")

    router.register(CommandDefinition(name="patient", handler=patient, timeout=1.0))
    router.register(CommandDefinition(name="hasty", handler=patient, timeout=0.01))

    assert await router.route("?patient", MEMBER, GUILD, CHANNEL) is RouteOutcome.HANDLED
    assert await router.route("?hasty", MEMBER, GUILD, CHANNEL) is RouteOutcome.TIMED_OUT
    assert replies(api) == ["done", GENERIC_FAILURE_REPLY]


@pytest.mark.asyncio
async def test_handler_errors_map_to_replies_without_retry():
    router, api = make_router()
    failing = AsyncMock(side_effect=RuntimeError("boom"))
    missing = AsyncMock(side_effect=NotFoundError("Tag not found for `x`"))
    broken = AsyncMock(side_effect=ExternalServiceError("registry down"))
    router.register(CommandDefinition(name="fail", handler=failing))
    router.register(CommandDefinition(name="tag", handler=missing))
    router.register(CommandDefinition(name="crate", handler=broken))

    assert await router.route("?fail", MEMBER, GUILD, CHANNEL) is RouteOutcome.FAILED
    assert await router.route("?tag x", MEMBER, GUILD, CHANNEL) is RouteOutcome.NOT_FOUND
    assert await router.route("?crate serde", MEMBER, GUILD, CHANNEL) is RouteOutcome.FAILED

    assert failing.await_count == 1
    assert replies(api) == [GENERIC_FAILURE_REPLY, "Tag not found for `x`", GENERIC_FAILURE_REPLY]


@pytest.mark.asyncio
async def test_missing_arguments_show_usage():
    router, api = make_router()
    handler = AsyncMock()
    router.register(CommandDefinition(name="tag", handler=handler, arity=1, usage="tag {key}"))

    assert await router.route("?tag", MEMBER, GUILD, CHANNEL) is RouteOutcome.USAGE_ERROR
    handler.assert_not_awaited()
    assert replies(api) == ["Usage: `?tag {key}`"]


@pytest.mark.asyncio
async def test_usage_error_from_handler_includes_detail():
    router, api = make_router()
    router.register(CommandDefinition(
        name="slowmode", handler=AsyncMock(side_effect=CommandUsageError("Seconds must be a number")),
        usage="slowmode {channel} {seconds}",
    ))

    await router.route("?slowmode <#1> soon", MEMBER, GUILD, CHANNEL)

    assert replies(api) == ["Seconds must be a number\nUsage: `?slowmode {channel} {seconds}`"]


@pytest.mark.asyncio
async def test_confirm_rechecks_before_destructive_handler():
    router, api = make_router()
    # Role was removed on the server but the cache has not caught up yet
    api.get_member.return_value = {"roles": []}
    handler = AsyncMock()
    router.register(CommandDefinition(
        name="ban", handler=handler, required_permission=Permission.MODERATOR, confirm=True,
    ))

    assert await router.route("?ban <@5>", MODERATOR, GUILD, CHANNEL) is RouteOutcome.DENIED
    handler.assert_not_awaited()
    assert replies(api) == [PERMISSION_DENIED_REPLY]


@pytest.mark.asyncio
async def test_reply_failure_is_not_raised():
    router, api = make_router()
    response = type("Response", (), {"status": 500, "reason": "Server Error"})()
    api.send_message.side_effect = discord.HTTPException(response, "down")
    router.register(CommandDefinition(name="fail", handler=AsyncMock(side_effect=RuntimeError())))

    assert await router.route("?fail", MEMBER, GUILD, CHANNEL) is RouteOutcome.FAILED


@pytest.mark.asyncio
async def test_reply_edits_previous_response_for_same_command():
    history = CommandHistory(max_age_seconds=3600)
    router, api = make_router(history=history)

    async def answer(ctx, tail):
        await ctx.reply(f"echo {tail}")

    router.register(CommandDefinition(name="echo", handler=answer))

    await router.route("?echo one", MEMBER, GUILD, CHANNEL, message_id=42)
    await router.route("?echo two", MEMBER, GUILD, CHANNEL, message_id=42)

    api.send_message.assert_awaited_once()
    api.edit_message.assert_awaited_once_with(CHANNEL, 9000, "echo two", embed=None)
    assert history.response_for(42) == 9000


@pytest.mark.asyncio
async def test_reply_falls_back_to_new_message_when_response_was_deleted():
    history = CommandHistory(max_age_seconds=3600)
    history.record(42, CHANNEL, 8000)
    router, api = make_router(history=history)
    response = type("Response", (), {"status": 404, "reason": "Not Found"})()
    api.edit_message.side_effect = discord.NotFound(response, "gone")

    async def answer(ctx, tail):
        await ctx.reply("again")

    router.register(CommandDefinition(name="echo", handler=answer))
    await router.route("?echo", MEMBER, GUILD, CHANNEL, message_id=42)

    api.send_message.assert_awaited_once()
    assert history.response_for(42) == 9000
