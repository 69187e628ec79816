"""
REST access to the chat platform.

Every call goes through py-cord's :class:`discord.http.HTTPClient`, which owns
the aiohttp session, the bot token header, per-route rate limiting and the
mapping of error statuses onto ``discord.Forbidden`` / ``discord.NotFound`` /
``discord.HTTPException``. The same client opens the gateway websocket so
both transports share one connection pool.

Role grants and revokes map onto ``PUT``/``DELETE`` of a member role, which
the platform treats as idempotent: granting a held role or revoking a missing
one succeeds without change.
"""

from __future__ import annotations

from typing import Any, Dict, List, Optional

from discord.http import HTTPClient, Route

from modsbot.util.logger import get_logger

logger = get_logger("platform_api")

GATEWAY_VERSION = 10
# Suppress @everyone / role pings in anything the bot echoes back (tag bodies, errors)
NO_MENTIONS = {"parse": []}
MAX_MESSAGE_LENGTH = 2000


class PlatformApi:
    """Typed wrappers around the REST routes the bot uses."""

    def __init__(self, http: HTTPClient | None = None) -> None:
        self.http = http or HTTPClient()
        self.bot_user_id: Optional[int] = None

    # ------------------------------------------------------------------
    # Session lifecycle
    # ------------------------------------------------------------------

    async def login(self, token: str) -> Dict[str, Any]:
        """Validate the token and remember the bot's own user id.

        Raises:
            discord.LoginFailure: If the platform rejects the token.
        """
        user = await self.http.static_login(token)
        self.bot_user_id = int(user["id"])
        logger.info("[PLATFORM API] Logged in as %s (ID: %s)", user.get("username"), self.bot_user_id)
        return user

    @property
    def token(self) -> Optional[str]:
        return self.http.token

    async def close(self) -> None:
        await self.http.close()

    async def gateway_url(self) -> str:
        """Fetch the websocket URL and append version/encoding parameters."""
        data = await self.http.request(Route("GET", "/gateway/bot"))
        return with_gateway_params(data["url"])

    async def open_websocket(self, url: str) -> Any:
        return await self.http.ws_connect(url)

    # ------------------------------------------------------------------
    # Messages and reactions
    # ------------------------------------------------------------------

    async def send_message(
        self,
        channel_id: int,
        content: str | None = None,
        *,
        embed: Dict[str, Any] | None = None,
    ) -> Dict[str, Any]:
        payload: Dict[str, Any] = {"allowed_mentions": NO_MENTIONS}
        if content is not None:
            payload["content"] = truncate(content)
        if embed is not None:
            payload["embeds"] = [embed]
        route = Route("POST", "/channels/{channel_id}/messages", channel_id=channel_id)
        return await self.http.request(route, json=payload)

    async def edit_message(
        self,
        channel_id: int,
        message_id: int,
        content: str | None = None,
        *,
        embed: Dict[str, Any] | None = None,
    ) -> Dict[str, Any]:
        payload: Dict[str, Any] = {"allowed_mentions": NO_MENTIONS, "content": truncate(content or "")}
        payload["embeds"] = [embed] if embed is not None else []
        route = Route(
            "PATCH",
            "/channels/{channel_id}/messages/{message_id}",
            channel_id=channel_id,
            message_id=message_id,
        )
        return await self.http.request(route, json=payload)

    async def delete_message(self, channel_id: int, message_id: int) -> None:
        route = Route(
            "DELETE",
            "/channels/{channel_id}/messages/{message_id}",
            channel_id=channel_id,
            message_id=message_id,
        )
        await self.http.request(route)

    async def add_reaction(self, channel_id: int, message_id: int, emoji: str) -> None:
        route = Route(
            "PUT",
            "/channels/{channel_id}/messages/{message_id}/reactions/{emoji}/@me",
            channel_id=channel_id,
            message_id=message_id,
            emoji=emoji,
        )
        await self.http.request(route)

    async def remove_user_reaction(self, channel_id: int, message_id: int, emoji: str, user_id: int) -> None:
        route = Route(
            "DELETE",
            "/channels/{channel_id}/messages/{message_id}/reactions/{emoji}/{member_id}",
            channel_id=channel_id,
            message_id=message_id,
            emoji=emoji,
            member_id=user_id,
        )
        await self.http.request(route)

    async def send_direct_message(self, user_id: int, content: str) -> Dict[str, Any]:
        channel = await self.http.request(
            Route("POST", "/users/@me/channels"), json={"recipient_id": user_id}
        )
        return await self.send_message(int(channel["id"]), content)

    # ------------------------------------------------------------------
    # Members and roles
    # ------------------------------------------------------------------

    async def get_member(self, guild_id: int, user_id: int) -> Dict[str, Any]:
        route = Route(
            "GET", "/guilds/{guild_id}/members/{member_id}", guild_id=guild_id, member_id=user_id
        )
        return await self.http.request(route)

    async def get_guild_roles(self, guild_id: int) -> List[Dict[str, Any]]:
        return await self.http.request(Route("GET", "/guilds/{guild_id}/roles", guild_id=guild_id))

    async def add_role(self, guild_id: int, user_id: int, role_id: int, *, reason: str | None = None) -> None:
        route = Route(
            "PUT",
            "/guilds/{guild_id}/members/{user_id}/roles/{role_id}",
            guild_id=guild_id,
            user_id=user_id,
            role_id=role_id,
        )
        await self.http.request(route, reason=reason)

    async def remove_role(self, guild_id: int, user_id: int, role_id: int, *, reason: str | None = None) -> None:
        route = Route(
            "DELETE",
            "/guilds/{guild_id}/members/{user_id}/roles/{role_id}",
            guild_id=guild_id,
            user_id=user_id,
            role_id=role_id,
        )
        await self.http.request(route, reason=reason)

    # ------------------------------------------------------------------
    # Moderation
    # ------------------------------------------------------------------

    async def kick(self, guild_id: int, user_id: int, *, reason: str | None = None) -> None:
        route = Route(
            "DELETE", "/guilds/{guild_id}/members/{user_id}", guild_id=guild_id, user_id=user_id
        )
        await self.http.request(route, reason=reason)

    async def ban(
        self,
        guild_id: int,
        user_id: int,
        *,
        delete_message_seconds: int = 0,
        reason: str | None = None,
    ) -> None:
        route = Route("PUT", "/guilds/{guild_id}/bans/{user_id}", guild_id=guild_id, user_id=user_id)
        await self.http.request(
            route, json={"delete_message_seconds": delete_message_seconds}, reason=reason
        )

    async def unban(self, guild_id: int, user_id: int, *, reason: str | None = None) -> None:
        route = Route("DELETE", "/guilds/{guild_id}/bans/{user_id}", guild_id=guild_id, user_id=user_id)
        await self.http.request(route, reason=reason)

    async def set_slowmode(self, channel_id: int, seconds: int, *, reason: str | None = None) -> None:
        route = Route("PATCH", "/channels/{channel_id}", channel_id=channel_id)
        await self.http.request(route, json={"rate_limit_per_user": seconds}, reason=reason)


def with_gateway_params(url: str) -> str:
    """Append the API version and JSON encoding the session decoder expects."""
    url = url.rstrip("/")
    return f"{url}/?v={GATEWAY_VERSION}&encoding=json"


def truncate(content: str, limit: int = MAX_MESSAGE_LENGTH) -> str:
    if len(content) <= limit:
        return content
    return content[: limit - 1] + "\N{HORIZONTAL ELLIPSIS}"
