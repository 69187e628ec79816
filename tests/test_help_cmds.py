from unittest.mock import AsyncMock, MagicMock

import pytest

from modsbot.bot.commands import help_cmds, moderation_cmds, tag_cmds
from modsbot.bot.permissions import GuildRoleCache, PermissionResolver
from modsbot.bot.router import CommandRouter, RouteOutcome
from modsbot.configuration.app_configuration import RoleSettings
from modsbot.gateway.events import Author

GUILD = 100
CHANNEL = 200
MOD_ROLE = 300
WG_ROLE = 301
MEMBER = Author(id=1, name="member")
MODERATOR = Author(id=2, name="moderator")
TEAM = Author(id=3, name="team")


def build():
    api = AsyncMock()
    api.send_message.return_value = {"id": "9000"}
    cache = GuildRoleCache()
    cache.replace_guild(
        GUILD,
        {MOD_ROLE: "Mod", WG_ROLE: "WG & Teams"},
        {MEMBER.id: frozenset(), MODERATOR.id: frozenset({MOD_ROLE}), TEAM.id: frozenset({WG_ROLE})},
    )
    resolver = PermissionResolver(cache, RoleSettings(), api)
    router = CommandRouter(api, resolver, prefix="?")
    services = MagicMock()
    services.resolver = resolver
    for module in (tag_cmds, moderation_cmds, help_cmds):
        module.setup(router, services)
    return router, api


def last_reply(api):
    return api.send_message.await_args.args[1]


@pytest.mark.asyncio
async def test_help_lists_only_permitted_commands():
    router, api = build()

    await router.route("?help", MEMBER, GUILD, CHANNEL)
    member_text = last_reply(api)
    await router.route("?help", MODERATOR, GUILD, CHANNEL)
    moderator_text = last_reply(api)
    await router.route("?help", TEAM, GUILD, CHANNEL)
    team_text = last_reply(api)

    assert "?tag {key}" in member_text
    assert "?ban" not in member_text
    assert "?tags create" not in member_text
    assert "?ban {user} {hours} reason..." in moderator_text
    assert "?tags create" not in moderator_text
    assert "?tags create {key} value..." in team_text
    assert "?ban" not in team_text
    assert "This menu" in member_text


@pytest.mark.asyncio
async def test_help_for_single_command():
    router, api = build()

    await router.route("?help tags", TEAM, GUILD, CHANNEL)

    text = last_reply(api)
    assert text.startswith("A key value store")
    assert "?tags delete {key}" in text


@pytest.mark.asyncio
async def test_help_hides_commands_the_author_cannot_run():
    router, api = build()

    assert await router.route("?help kick", MEMBER, GUILD, CHANNEL) is RouteOutcome.NOT_FOUND
    assert last_reply(api) == "No command named `kick`"
    assert await router.route("?help frobnicate", MEMBER, GUILD, CHANNEL) is RouteOutcome.NOT_FOUND
