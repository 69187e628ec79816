import asyncio
from unittest.mock import AsyncMock, patch

import discord
import pytest

from modsbot.bot import permissions
from modsbot.bot.permissions import GuildRoleCache, Permission, PermissionResolver
from modsbot.configuration.app_configuration import RoleSettings

GUILD = 100
MOD_ROLE = 300
WG_ROLE = 301
OTHER_ROLE = 302


def resolver_for(roles=None, names=None, members=None, api=None):
    cache = GuildRoleCache()
    cache.replace_guild(
        GUILD,
        names if names is not None else {MOD_ROLE: "mod", WG_ROLE: "WG & Teams", OTHER_ROLE: "Rustacean"},
        members or {},
    )
    return PermissionResolver(cache, roles or RoleSettings(), api or AsyncMock())


def test_names_resolve_case_insensitively():
    resolver = resolver_for()

    assert resolver.resolve_roles(GUILD, Permission.MODERATOR) == frozenset({MOD_ROLE})
    assert resolver.resolve_roles(GUILD, Permission.PRIVILEGED) == frozenset({WG_ROLE})


def test_ids_only_count_when_the_role_exists():
    roles = RoleSettings(moderator_ids=frozenset({OTHER_ROLE, 999}), moderator_names=frozenset())
    resolver = resolver_for(roles=roles)

    assert resolver.resolve_roles(GUILD, Permission.MODERATOR) == frozenset({OTHER_ROLE})


def test_a_role_listed_in_both_tiers_grants_both():
    roles = RoleSettings(privileged_names=frozenset({"WG & Teams", "mod"}))
    resolver = resolver_for(roles=roles, members={3: frozenset({MOD_ROLE})})

    assert resolver.has_privilege(GUILD, 3)
    assert resolver.has_permission(GUILD, 3, Permission.MODERATOR)


def test_tiers():
    resolver = resolver_for(members={
        1: frozenset(),
        2: frozenset({WG_ROLE}),
        3: frozenset({MOD_ROLE}),
    })

    assert resolver.has_permission(GUILD, 1, Permission.NONE)
    assert not resolver.has_permission(GUILD, 1, Permission.PRIVILEGED)
    assert resolver.has_permission(GUILD, 2, Permission.PRIVILEGED)
    assert not resolver.has_permission(GUILD, 2, Permission.MODERATOR)
    assert resolver.has_permission(GUILD, 3, Permission.MODERATOR)
    assert not resolver.has_privilege(GUILD, 3)
    assert resolver.has_privilege(GUILD, 2)
    # Unknown member
    assert not resolver.has_permission(GUILD, 4, Permission.PRIVILEGED)


def test_explicit_member_roles_override_cache():
    resolver = resolver_for(members={1: frozenset()})

    assert resolver.has_permission(GUILD, 1, Permission.MODERATOR, frozenset({MOD_ROLE}))


def test_direct_messages_have_no_privileges():
    resolver = resolver_for()

    assert resolver.has_permission(None, 1, Permission.NONE)
    assert not resolver.has_permission(None, 1, Permission.PRIVILEGED)


def test_misconfigured_guild_denies_everyone_and_warns_once():
    resolver = resolver_for(names={OTHER_ROLE: "Rustacean"}, members={1: frozenset({OTHER_ROLE})})

    with patch.object(permissions.logger, "warning") as warning:
        assert not resolver.has_permission(GUILD, 1, Permission.MODERATOR)
        assert not resolver.has_permission(GUILD, 1, Permission.MODERATOR)
        assert not resolver.has_permission(GUILD, 1, Permission.PRIVILEGED)

    # Once per guild and tier
    assert warning.call_count == 2


def test_cache_updates_replace_whole_values():
    cache = GuildRoleCache()
    cache.replace_guild(GUILD, {MOD_ROLE: "Mod"}, {1: frozenset({MOD_ROLE})})
    before = cache.member_roles(GUILD, 1)

    cache.set_member(GUILD, 1, frozenset())
    cache.set_role(GUILD, WG_ROLE, "WG & Teams")
    cache.set_role(GUILD, MOD_ROLE, None)

    assert before == frozenset({MOD_ROLE})
    assert cache.member_roles(GUILD, 1) == frozenset()
    assert dict(cache.role_names(GUILD)) == {WG_ROLE: "WG & Teams"}

    cache.set_member(GUILD, 1, None)
    assert cache.member_roles(GUILD, 1) is None

    cache.drop_guild(GUILD)
    assert cache.role_names(GUILD) == {}


@pytest.mark.asyncio
async def test_confirm_uses_fresh_member_roles():
    api = AsyncMock()
    api.get_member.return_value = {"roles": [str(MOD_ROLE)]}
    resolver = resolver_for(members={1: frozenset()}, api=api)

    assert await resolver.confirm(GUILD, 1, Permission.MODERATOR)
    # The cache belongs to the dispatcher
    assert resolver.cache.member_roles(GUILD, 1) == frozenset()
    api.get_guild_roles.assert_not_awaited()


@pytest.mark.asyncio
async def test_confirm_denies_when_role_was_removed():
    api = AsyncMock()
    api.get_member.return_value = {"roles": []}
    resolver = resolver_for(members={1: frozenset({MOD_ROLE})}, api=api)

    assert not await resolver.confirm(GUILD, 1, Permission.MODERATOR)


@pytest.mark.asyncio
async def test_confirm_fetches_role_names_when_unknown():
    api = AsyncMock()
    api.get_member.return_value = {"roles": [str(MOD_ROLE)]}
    api.get_guild_roles.return_value = [{"id": str(MOD_ROLE), "name": "Mod"}]
    resolver = PermissionResolver(GuildRoleCache(), RoleSettings(), api)

    assert await resolver.confirm(GUILD, 1, Permission.MODERATOR)
    api.get_guild_roles.assert_awaited_once_with(GUILD)
    assert resolver.cache.role_names(GUILD) == {}


@pytest.mark.asyncio
async def test_confirm_member_gone():
    api = AsyncMock()
    response = type("Response", (), {"status": 404, "reason": "Not Found"})()
    api.get_member.side_effect = discord.NotFound(response, "Unknown Member")
    resolver = resolver_for(members={1: frozenset({MOD_ROLE})}, api=api)

    assert not await resolver.confirm(GUILD, 1, Permission.MODERATOR)
    assert resolver.cache.member_roles(GUILD, 1) == frozenset({MOD_ROLE})


@pytest.mark.asyncio
async def test_confirm_without_guild_or_tier():
    resolver = resolver_for()

    assert await resolver.confirm(GUILD, 1, Permission.NONE)
    assert not await resolver.confirm(None, 1, Permission.MODERATOR)


@pytest.mark.asyncio
async def test_confirm_keeps_member_updates_applied_while_fetching():
    fetched = asyncio.Event()
    release = asyncio.Event()

    async def get_member(guild_id, user_id):
        fetched.set()
        await release.wait()
        return {"roles": [str(MOD_ROLE)]}

    api = AsyncMock()
    api.get_member.side_effect = get_member
    resolver = resolver_for(members={7: frozenset({MOD_ROLE})}, api=api)

    task = asyncio.create_task(resolver.confirm(GUILD, 7, Permission.MODERATOR))
    await fetched.wait()
    resolver.cache.set_member(GUILD, 7, frozenset())
    release.set()

    assert await task
    assert resolver.cache.member_roles(GUILD, 7) == frozenset()
