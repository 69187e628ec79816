"""
Typed gateway events.

Dispatch frames (op 0) are decoded into one of the frozen dataclasses below by
:func:`decode_dispatch`. The set is closed: dispatch types without a decoder
return ``None`` and are dropped by the session; they are not errors.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable, Dict, FrozenSet, Mapping, Optional, Tuple, Union

from modsbot.datatypes.discord_datatypes import emoji_key, to_snowflake


def _parse_timestamp(value: Any) -> Optional[datetime]:
    if not value:
        return None
    try:
        return datetime.fromisoformat(str(value).replace("Z", "+00:00"))
    except ValueError:
        return None


def _role_ids(values: Any) -> FrozenSet[int]:
    if not isinstance(values, list):
        return frozenset()
    return frozenset(rid for rid in (to_snowflake(v) for v in values) if rid is not None)


def _member_roles(data: Mapping[str, Any]) -> Optional[FrozenSet[int]]:
    member = data.get("member")
    if not isinstance(member, dict) or "roles" not in member:
        return None
    return _role_ids(member["roles"])


@dataclass(frozen=True)
class Author:
    id: int
    name: str = ""
    bot: bool = False

    @classmethod
    def from_payload(cls, payload: Mapping[str, Any] | None) -> "Author":
        payload = payload or {}
        return cls(
            id=to_snowflake(payload.get("id")) or 0,
            name=str(payload.get("global_name") or payload.get("username") or ""),
            bot=bool(payload.get("bot", False)),
        )


# ----------------------------------------------------------------------
# Session lifecycle
# ----------------------------------------------------------------------

@dataclass(frozen=True)
class Ready:
    session_id: str
    resume_gateway_url: Optional[str]
    user_id: int
    guild_ids: Tuple[int, ...] = ()


@dataclass(frozen=True)
class Resumed:
    pass


# ----------------------------------------------------------------------
# Guild state (feeds the role cache)
# ----------------------------------------------------------------------

@dataclass(frozen=True)
class GuildAvailable:
    guild_id: int
    role_names: Mapping[int, str] = field(default_factory=dict)
    member_roles: Mapping[int, FrozenSet[int]] = field(default_factory=dict)


@dataclass(frozen=True)
class GuildUnavailable:
    guild_id: int


@dataclass(frozen=True)
class RoleChanged:
    guild_id: int
    role_id: int
    name: Optional[str]  # None when the role was deleted


@dataclass(frozen=True)
class MemberRolesChanged:
    guild_id: int
    user_id: int
    role_ids: Optional[FrozenSet[int]]  # None when the member left


@dataclass(frozen=True)
class BanRemoved:
    guild_id: int
    user_id: int


# ----------------------------------------------------------------------
# Messages and reactions
# ----------------------------------------------------------------------

@dataclass(frozen=True)
class MessageCreate:
    message_id: int
    channel_id: int
    guild_id: Optional[int]
    author: Author
    content: str
    member_roles: Optional[FrozenSet[int]] = None
    timestamp: Optional[datetime] = None


@dataclass(frozen=True)
class MessageUpdate:
    message_id: int
    channel_id: int
    guild_id: Optional[int]
    author: Optional[Author]
    content: Optional[str]
    member_roles: Optional[FrozenSet[int]] = None
    timestamp: Optional[datetime] = None
    edited_timestamp: Optional[datetime] = None


@dataclass(frozen=True)
class MessageDelete:
    message_id: int
    channel_id: int
    guild_id: Optional[int]


@dataclass(frozen=True)
class ReactionEvent:
    added: bool
    guild_id: Optional[int]
    channel_id: int
    message_id: int
    user_id: int
    emoji: str
    member_roles: Optional[FrozenSet[int]] = None


GatewayEvent = Union[
    Ready, Resumed, GuildAvailable, GuildUnavailable, RoleChanged, MemberRolesChanged,
    BanRemoved, MessageCreate, MessageUpdate, MessageDelete, ReactionEvent,
]


# ----------------------------------------------------------------------
# Decoders
# ----------------------------------------------------------------------

def _ready(d: Mapping[str, Any]) -> Ready:
    return Ready(
        session_id=str(d["session_id"]),
        resume_gateway_url=d.get("resume_gateway_url"),
        user_id=to_snowflake((d.get("user") or {}).get("id")) or 0,
        guild_ids=tuple(
            gid for gid in (to_snowflake(g.get("id")) for g in d.get("guilds", []) if isinstance(g, dict))
            if gid is not None
        ),
    )


def _guild_create(d: Mapping[str, Any]) -> Optional[GuildAvailable]:
    if d.get("unavailable"):
        return None
    guild_id = to_snowflake(d.get("id"))
    if guild_id is None:
        return None
    role_names = {
        rid: str(role.get("name", ""))
        for role in d.get("roles", []) if isinstance(role, dict)
        for rid in [to_snowflake(role.get("id"))] if rid is not None
    }
    member_roles = {}
    for member in d.get("members", []):
        if not isinstance(member, dict):
            continue
        user_id = to_snowflake((member.get("user") or {}).get("id"))
        if user_id is not None:
            member_roles[user_id] = _role_ids(member.get("roles"))
    return GuildAvailable(guild_id=guild_id, role_names=role_names, member_roles=member_roles)


def _guild_delete(d: Mapping[str, Any]) -> Optional[GuildUnavailable]:
    guild_id = to_snowflake(d.get("id"))
    return GuildUnavailable(guild_id) if guild_id is not None else None


def _role_upsert(d: Mapping[str, Any]) -> Optional[RoleChanged]:
    role = d.get("role") or {}
    guild_id, role_id = to_snowflake(d.get("guild_id")), to_snowflake(role.get("id"))
    if guild_id is None or role_id is None:
        return None
    return RoleChanged(guild_id=guild_id, role_id=role_id, name=str(role.get("name", "")))


def _role_delete(d: Mapping[str, Any]) -> Optional[RoleChanged]:
    guild_id, role_id = to_snowflake(d.get("guild_id")), to_snowflake(d.get("role_id"))
    if guild_id is None or role_id is None:
        return None
    return RoleChanged(guild_id=guild_id, role_id=role_id, name=None)


def _member_upsert(d: Mapping[str, Any]) -> Optional[MemberRolesChanged]:
    guild_id, user_id = to_snowflake(d.get("guild_id")), to_snowflake((d.get("user") or {}).get("id"))
    if guild_id is None or user_id is None:
        return None
    return MemberRolesChanged(guild_id=guild_id, user_id=user_id, role_ids=_role_ids(d.get("roles")))


def _member_remove(d: Mapping[str, Any]) -> Optional[MemberRolesChanged]:
    guild_id, user_id = to_snowflake(d.get("guild_id")), to_snowflake((d.get("user") or {}).get("id"))
    if guild_id is None or user_id is None:
        return None
    return MemberRolesChanged(guild_id=guild_id, user_id=user_id, role_ids=None)


def _ban_remove(d: Mapping[str, Any]) -> Optional[BanRemoved]:
    guild_id, user_id = to_snowflake(d.get("guild_id")), to_snowflake((d.get("user") or {}).get("id"))
    if guild_id is None or user_id is None:
        return None
    return BanRemoved(guild_id=guild_id, user_id=user_id)


def _message_create(d: Mapping[str, Any]) -> Optional[MessageCreate]:
    message_id, channel_id = to_snowflake(d.get("id")), to_snowflake(d.get("channel_id"))
    if message_id is None or channel_id is None:
        return None
    return MessageCreate(
        message_id=message_id,
        channel_id=channel_id,
        guild_id=to_snowflake(d.get("guild_id")),
        author=Author.from_payload(d.get("author")),
        content=str(d.get("content") or ""),
        member_roles=_member_roles(d),
        timestamp=_parse_timestamp(d.get("timestamp")),
    )


def _message_update(d: Mapping[str, Any]) -> Optional[MessageUpdate]:
    message_id, channel_id = to_snowflake(d.get("id")), to_snowflake(d.get("channel_id"))
    if message_id is None or channel_id is None:
        return None
    return MessageUpdate(
        message_id=message_id,
        channel_id=channel_id,
        guild_id=to_snowflake(d.get("guild_id")),
        author=Author.from_payload(d["author"]) if isinstance(d.get("author"), dict) else None,
        content=d.get("content"),
        member_roles=_member_roles(d),
        timestamp=_parse_timestamp(d.get("timestamp")),
        edited_timestamp=_parse_timestamp(d.get("edited_timestamp")),
    )


def _message_delete(d: Mapping[str, Any]) -> Optional[MessageDelete]:
    message_id, channel_id = to_snowflake(d.get("id")), to_snowflake(d.get("channel_id"))
    if message_id is None or channel_id is None:
        return None
    return MessageDelete(message_id=message_id, channel_id=channel_id, guild_id=to_snowflake(d.get("guild_id")))


def _reaction(added: bool) -> Callable[[Mapping[str, Any]], Optional[ReactionEvent]]:
    def decode(d: Mapping[str, Any]) -> Optional[ReactionEvent]:
        ids = [to_snowflake(d.get(k)) for k in ("channel_id", "message_id", "user_id")]
        if any(v is None for v in ids):
            return None
        channel_id, message_id, user_id = ids
        return ReactionEvent(
            added=added,
            guild_id=to_snowflake(d.get("guild_id")),
            channel_id=channel_id,
            message_id=message_id,
            user_id=user_id,
            emoji=emoji_key(d.get("emoji")),
            member_roles=_member_roles(d),
        )
    return decode


DECODERS: Dict[str, Callable[[Mapping[str, Any]], Optional[GatewayEvent]]] = {
    "READY": _ready,
    "RESUMED": lambda d: Resumed(),
    "GUILD_CREATE": _guild_create,
    "GUILD_DELETE": _guild_delete,
    "GUILD_ROLE_CREATE": _role_upsert,
    "GUILD_ROLE_UPDATE": _role_upsert,
    "GUILD_ROLE_DELETE": _role_delete,
    "GUILD_MEMBER_ADD": _member_upsert,
    "GUILD_MEMBER_UPDATE": _member_upsert,
    "GUILD_MEMBER_REMOVE": _member_remove,
    "GUILD_BAN_REMOVE": _ban_remove,
    "MESSAGE_CREATE": _message_create,
    "MESSAGE_UPDATE": _message_update,
    "MESSAGE_DELETE": _message_delete,
    "MESSAGE_REACTION_ADD": _reaction(True),
    "MESSAGE_REACTION_REMOVE": _reaction(False),
}


def decode_dispatch(event_type: Optional[str], data: Any) -> Optional[GatewayEvent]:
    """Decode a dispatch payload; unknown types and malformed payloads yield ``None``."""
    decoder = DECODERS.get(event_type or "")
    if decoder is None or not isinstance(data, dict):
        return None
    try:
        return decoder(data)
    except (KeyError, TypeError, ValueError):
        return None
