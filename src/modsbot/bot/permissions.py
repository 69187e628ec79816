"""
Role-based permission checks for text commands.

Two tiers sit above everyone:

* ``PRIVILEGED`` - the "WG & Teams" roles, allowed to mutate tags. A role
  that should count for both tiers is listed under both.
* ``MODERATOR`` - the "Mod" roles, allowed to ban, kick, set slowmode and
  post the code-of-conduct message.

Roles are configured by id and/or by name; names are resolved against the
role list the gateway delivered for each guild. When nothing resolves the
guild is treated as misconfigured: every privileged command is denied and a
warning is logged once for that guild and tier.
"""

from __future__ import annotations

import enum
from typing import Dict, FrozenSet, Mapping, Optional, Set, Tuple

import discord

from modsbot.configuration.app_configuration import RoleSettings
from modsbot.datatypes.discord_datatypes import to_snowflake
from modsbot.http.platform_api import PlatformApi
from modsbot.util.logger import get_logger

logger = get_logger("permissions")


class Permission(enum.Enum):
    NONE = "none"
    PRIVILEGED = "privileged"
    MODERATOR = "moderator"


class GuildRoleCache:
    """
    Member role sets and role names per guild, as last seen on the gateway.

    Every write replaces a whole value (a ``frozenset`` or a fresh dict), so a
    reader holding the previous value never sees a partial update.
    """

    def __init__(self) -> None:
        self._members: Dict[Tuple[int, int], FrozenSet[int]] = {}
        self._role_names: Dict[int, Mapping[int, str]] = {}

    def replace_guild(
        self,
        guild_id: int,
        role_names: Mapping[int, str],
        member_roles: Mapping[int, FrozenSet[int]],
    ) -> None:
        self.drop_guild(guild_id)
        self._role_names[guild_id] = dict(role_names)
        for user_id, roles in member_roles.items():
            self._members[(guild_id, user_id)] = frozenset(roles)

    def drop_guild(self, guild_id: int) -> None:
        self._role_names.pop(guild_id, None)
        for key in [k for k in self._members if k[0] == guild_id]:
            del self._members[key]

    def set_role(self, guild_id: int, role_id: int, name: Optional[str]) -> None:
        names = dict(self._role_names.get(guild_id, {}))
        if name is None:
            names.pop(role_id, None)
        else:
            names[role_id] = name
        self._role_names[guild_id] = names

    def set_member(self, guild_id: int, user_id: int, role_ids: Optional[FrozenSet[int]]) -> None:
        if role_ids is None:
            self._members.pop((guild_id, user_id), None)
        else:
            self._members[(guild_id, user_id)] = frozenset(role_ids)

    def member_roles(self, guild_id: int, user_id: int) -> Optional[FrozenSet[int]]:
        return self._members.get((guild_id, user_id))

    def role_names(self, guild_id: int) -> Mapping[int, str]:
        return self._role_names.get(guild_id, {})

    def clear(self) -> None:
        self._members.clear()
        self._role_names.clear()


class PermissionResolver:
    """Answers "may this user run a command of this tier in this guild"."""

    def __init__(self, cache: GuildRoleCache, roles: RoleSettings, api: PlatformApi) -> None:
        self.cache = cache
        self._roles = roles
        self._api = api
        self._warned: Set[Tuple[int, Permission]] = set()

    def resolve_roles(
        self,
        guild_id: int,
        permission: Permission,
        role_names: Optional[Mapping[int, str]] = None,
    ) -> FrozenSet[int]:
        """Role ids of ``guild_id`` that grant ``permission``; empty when misconfigured."""
        known = role_names if role_names is not None else self.cache.role_names(guild_id)

        def tier(ids: FrozenSet[int], names: FrozenSet[str]) -> Set[int]:
            wanted = {name.casefold() for name in names}
            matched = {rid for rid in ids if rid in known}
            matched.update(rid for rid, name in known.items() if name.casefold() in wanted)
            return matched

        if permission is Permission.PRIVILEGED:
            return frozenset(tier(self._roles.privileged_ids, self._roles.privileged_names))
        return frozenset(tier(self._roles.moderator_ids, self._roles.moderator_names))

    def has_permission(
        self,
        guild_id: Optional[int],
        user_id: int,
        permission: Permission,
        member_roles: Optional[FrozenSet[int]] = None,
        role_names: Optional[Mapping[int, str]] = None,
    ) -> bool:
        """
        Check against cached roles (or ``member_roles``/``role_names`` when the
        caller has fresher ones).

        Pure apart from the one-time misconfiguration warning.
        """
        if permission is Permission.NONE:
            return True
        if guild_id is None:
            return False

        required = self.resolve_roles(guild_id, permission, role_names)
        if not required:
            self._warn_misconfigured(guild_id, permission)
            return False

        held = member_roles if member_roles is not None else self.cache.member_roles(guild_id, user_id)
        return bool(held and held & required)

    def has_privilege(self, guild_id: Optional[int], user_id: int) -> bool:
        return self.has_permission(guild_id, user_id, Permission.PRIVILEGED)

    async def confirm(self, guild_id: Optional[int], user_id: int, permission: Permission) -> bool:
        """
        Re-check ``permission`` against the member as the REST API reports it now.

        Used right before destructive actions so a role removed moments ago
        (and not yet seen on the gateway) cannot be used. The cache is left to
        the dispatcher: a REST snapshot taken here may already be older than a
        member update it applied meanwhile.
        """
        if permission is Permission.NONE:
            return True
        if guild_id is None:
            return False

        try:
            member = await self._api.get_member(guild_id, user_id)
        except discord.NotFound:
            return False

        roles = frozenset(rid for rid in (to_snowflake(r) for r in member.get("roles", [])) if rid is not None)
        role_names = self.cache.role_names(guild_id)
        if not role_names:
            payload = await self._api.get_guild_roles(guild_id)
            role_names = {int(role["id"]): str(role.get("name", "")) for role in payload if "id" in role}

        allowed = self.has_permission(guild_id, user_id, permission, roles, role_names)
        if not allowed:
            logger.info("[PERMISSIONS] Authoritative check denied %s for user %s in guild %s", permission.name, user_id, guild_id)
        return allowed

    def _warn_misconfigured(self, guild_id: int, permission: Permission) -> None:
        key = (guild_id, permission)
        if key in self._warned:
            return
        self._warned.add(key)
        logger.warning(
            "[PERMISSIONS] No configured %s role exists in guild %s; denying %s commands to everyone. "
            "Check the roles section of app_config.yml.",
            permission.name.lower(), guild_id, permission.name.lower(),
        )
