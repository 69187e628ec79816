"""
Helpers for the raw identifiers that appear in gateway payloads and command text.

Discord snowflakes arrive as JSON strings; everything inside modsbot works with
``int``. Mentions typed by users (``<@123>``, ``<@!123>``, ``<#456>``,
``<@&789>``) or bare ids are accepted wherever a command expects a user,
channel or role.
"""

from __future__ import annotations

import re
from typing import Any, Mapping, Optional

USER_MENTION = re.compile(r"^<@!?(\d{15,21})>$")
CHANNEL_MENTION = re.compile(r"^<#(\d{15,21})>$")
ROLE_MENTION = re.compile(r"^<@&(\d{15,21})>$")
RAW_SNOWFLAKE = re.compile(r"^\d{15,21}$")

CHECK_MARK = "\N{WHITE HEAVY CHECK MARK}"


def to_snowflake(value: Any) -> Optional[int]:
    """Convert a payload id (``"123"``/``123``/``None``) to ``int`` or ``None``."""
    if value is None or value == "":
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


def _parse(text: str, pattern: re.Pattern) -> Optional[int]:
    text = text.strip()
    match = pattern.match(text)
    if match:
        return int(match.group(1))
    if RAW_SNOWFLAKE.match(text):
        return int(text)
    return None


def parse_user_mention(text: str) -> Optional[int]:
    """
    Extract a user id from ``<@id>``, ``<@!id>`` or a bare id.

    Example:
        >>> parse_user_mention("<@!80351110224678912>")
        80351110224678912
    """
    return _parse(text, USER_MENTION)


def parse_channel_mention(text: str) -> Optional[int]:
    """Extract a channel id from ``<#id>`` or a bare id."""
    return _parse(text, CHANNEL_MENTION)


def parse_role_mention(text: str) -> Optional[int]:
    """Extract a role id from ``<@&id>`` or a bare id."""
    return _parse(text, ROLE_MENTION)


def emoji_key(emoji: Mapping[str, Any] | None) -> str:
    """
    Normalize a gateway emoji object into the string stored in bindings.

    Unicode emoji are stored as the character itself (``"✅"``); custom emoji as
    ``name:id``, which is also the form the REST API expects in reaction routes.
    """
    if not emoji:
        return ""
    name = emoji.get("name") or ""
    emoji_id = emoji.get("id")
    if emoji_id:
        return f"{name}:{emoji_id}"
    return name
