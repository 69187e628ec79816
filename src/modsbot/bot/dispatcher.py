"""
Single consumer of the gateway event queue.

The dispatcher reads events in the order the session produced them. Cache
updates (guild roles, member roles) are applied inline, which makes it the
only writer of the role cache. Everything that talks to the network is
handed to the :class:`WorkerPool`:

* commands, keyed by message id so an edit re-run queues behind the original;
* reactions, keyed by ``(message_id, user_id)`` so an add and the following
  remove of one user are applied in order.

Command executions are de-duplicated on ``(message_id, edited_timestamp)``.
"""

from __future__ import annotations

import asyncio
from collections import OrderedDict
from datetime import datetime
from typing import Hashable, Optional, Tuple

import discord

from modsbot.bot.command_history import CommandHistory
from modsbot.bot.permissions import GuildRoleCache
from modsbot.bot.reaction_roles import ReactionRoleTracker
from modsbot.bot.router import CommandRouter
from modsbot.bot.worker_pool import WorkerPool
from modsbot.gateway.events import (
    BanRemoved,
    GatewayEvent,
    GuildAvailable,
    GuildUnavailable,
    MemberRolesChanged,
    MessageCreate,
    MessageDelete,
    MessageUpdate,
    ReactionEvent,
    Ready,
    Resumed,
    RoleChanged,
)
from modsbot.http.platform_api import PlatformApi
from modsbot.services.ban_service import BanService
from modsbot.util.logger import get_logger

logger = get_logger("dispatcher")

SEEN_COMMANDS_LIMIT = 2048


class EventDispatcher:
    def __init__(
        self,
        events: asyncio.Queue[GatewayEvent],
        *,
        api: PlatformApi,
        cache: GuildRoleCache,
        router: CommandRouter,
        tracker: ReactionRoleTracker,
        pool: WorkerPool,
        history: CommandHistory,
        bans: BanService,
    ) -> None:
        self._events = events
        self._api = api
        self._cache = cache
        self._router = router
        self._tracker = tracker
        self._pool = pool
        self._history = history
        self._bans = bans
        self._seen: "OrderedDict[Tuple[int, Optional[datetime]], None]" = OrderedDict()
        self._task: asyncio.Task[None] | None = None

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def start(self) -> None:
        if self._task is not None and not self._task.done():
            logger.warning("[DISPATCHER] Already running")
            return
        self._task = asyncio.create_task(self.run(), name="modsbot-dispatcher")

    async def run(self) -> None:
        logger.info("[DISPATCHER] Consuming gateway events")
        while True:
            event = await self._events.get()
            try:
                await self.handle(event)
            except asyncio.CancelledError:
                raise
            except Exception:
                logger.exception("[DISPATCHER] Failed to handle %s", type(event).__name__)
            finally:
                self._events.task_done()

    async def stop(self, grace: float) -> None:
        """Stop consuming, then let the pool finish in-flight work within ``grace`` seconds."""
        if self._task is not None:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None
        await self._pool.drain(grace)
        logger.info("[DISPATCHER] Stopped")

    # ------------------------------------------------------------------
    # Event handling
    # ------------------------------------------------------------------

    async def handle(self, event: GatewayEvent) -> None:
        if isinstance(event, Ready):
            self._api.bot_user_id = event.user_id
            self._cache.clear()
            logger.info("[DISPATCHER] Session ready in %d guilds", len(event.guild_ids))
        elif isinstance(event, Resumed):
            logger.info("[DISPATCHER] Session resumed")
        elif isinstance(event, GuildAvailable):
            self._cache.replace_guild(event.guild_id, event.role_names, event.member_roles)
        elif isinstance(event, GuildUnavailable):
            self._cache.drop_guild(event.guild_id)
        elif isinstance(event, RoleChanged):
            self._cache.set_role(event.guild_id, event.role_id, event.name)
        elif isinstance(event, MemberRolesChanged):
            self._cache.set_member(event.guild_id, event.user_id, event.role_ids)
        elif isinstance(event, BanRemoved):
            self._submit(self._bans.forget(event.guild_id, event.user_id), name="ban-removed")
        elif isinstance(event, MessageCreate):
            self._on_message_create(event)
        elif isinstance(event, MessageUpdate):
            self._on_message_update(event)
        elif isinstance(event, MessageDelete):
            self._on_message_delete(event)
        elif isinstance(event, ReactionEvent):
            self._on_reaction(event)

    def _on_message_create(self, event: MessageCreate) -> None:
        if event.author.bot or event.author.id == self._api.bot_user_id:
            return
        if event.guild_id is not None and event.member_roles is not None:
            self._cache.set_member(event.guild_id, event.author.id, event.member_roles)
        if self._router.parse(event.content) is None:
            return
        if not self._first_time((event.message_id, None)):
            return
        self._submit(
            self._router.route(
                event.content,
                event.author,
                event.guild_id,
                event.channel_id,
                event.message_id,
                event.member_roles,
            ),
            key=("message", event.message_id),
            name=f"command-{event.message_id}",
        )

    def _on_message_update(self, event: MessageUpdate) -> None:
        # Embed unfurls also arrive as updates; only real edits carry new content + edit time
        if event.content is None or event.author is None or event.edited_timestamp is None:
            return
        if event.author.bot or event.author.id == self._api.bot_user_id:
            return
        if event.guild_id is not None and event.member_roles is not None:
            self._cache.set_member(event.guild_id, event.author.id, event.member_roles)
        if self._router.parse(event.content) is None:
            return
        if not self._history.is_fresh(event.timestamp):
            logger.debug("[DISPATCHER] Ignoring edit of old command %s", event.message_id)
            return
        if not self._first_time((event.message_id, event.edited_timestamp)):
            return
        self._submit(
            self._router.route(
                event.content,
                event.author,
                event.guild_id,
                event.channel_id,
                event.message_id,
                event.member_roles,
            ),
            key=("message", event.message_id),
            name=f"command-edit-{event.message_id}",
        )

    def _on_message_delete(self, event: MessageDelete) -> None:
        entry = self._history.pop(event.message_id)
        if entry is None:
            return
        self._submit(
            self._delete_response(entry.channel_id, entry.response_message_id),
            key=("message", event.message_id),
            name=f"delete-response-{entry.response_message_id}",
        )

    async def _delete_response(self, channel_id: int, message_id: int) -> None:
        try:
            await self._api.delete_message(channel_id, message_id)
        except discord.NotFound:
            pass

    def _on_reaction(self, event: ReactionEvent) -> None:
        if event.guild_id is not None and event.member_roles is not None:
            self._cache.set_member(event.guild_id, event.user_id, event.member_roles)
        self._submit(
            self._tracker.on_reaction(
                event.guild_id,
                event.channel_id,
                event.message_id,
                event.emoji,
                event.user_id,
                event.added,
            ),
            key=("reaction", event.message_id, event.user_id),
            name=f"reaction-{event.message_id}-{event.user_id}",
        )

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _first_time(self, key: Tuple[int, Optional[datetime]]) -> bool:
        if key in self._seen:
            logger.debug("[DISPATCHER] Skipping duplicate command delivery %s", key)
            return False
        self._seen[key] = None
        while len(self._seen) > SEEN_COMMANDS_LIMIT:
            self._seen.popitem(last=False)
        return True

    def _submit(self, coro, *, key: Hashable = None, name: str | None = None) -> None:
        if self._pool.submit(coro, key=key, name=name) is None:
            logger.debug("[DISPATCHER] Dropped %s during shutdown", name)
