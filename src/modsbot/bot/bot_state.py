"""
Handles shared by the command modules.

Built once in ``main`` and passed to each command module's ``setup()``;
nothing here is a module-level singleton.
"""

from __future__ import annotations

from dataclasses import dataclass

from modsbot.bot.permissions import PermissionResolver
from modsbot.bot.reaction_roles import ReactionRoleTracker
from modsbot.configuration.app_configuration import FeatureSettings, RoleSettings
from modsbot.http.platform_api import PlatformApi
from modsbot.services.ban_service import BanService
from modsbot.services.playground_client import PlaygroundClient
from modsbot.services.registry_client import RegistryClient
from modsbot.services.tag_store import TagStore


@dataclass
class BotServices:
    api: PlatformApi
    resolver: PermissionResolver
    tags: TagStore
    registry: RegistryClient
    playground: PlaygroundClient
    tracker: ReactionRoleTracker
    bans: BanService
    roles: RoleSettings
    features: FeatureSettings
