"""
Map of command message -> the bot's reply to it.

Lets an edited command update the existing reply instead of posting a second
one, and lets the reply be deleted together with the command.
"""

from __future__ import annotations

import time
from collections import OrderedDict
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Callable, Optional

from modsbot.util.logger import get_logger

logger = get_logger("command_history")


@dataclass
class HistoryEntry:
    command_message_id: int
    channel_id: int
    response_message_id: int
    recorded_at: float


class CommandHistory:
    def __init__(self, max_age_seconds: float, clock: Callable[[], float] = time.time) -> None:
        self.max_age_seconds = max_age_seconds
        self._clock = clock
        self._entries: "OrderedDict[int, HistoryEntry]" = OrderedDict()

    def __len__(self) -> int:
        return len(self._entries)

    def response_for(self, command_message_id: int) -> Optional[int]:
        entry = self._entries.get(command_message_id)
        return entry.response_message_id if entry else None

    def record(self, command_message_id: int, channel_id: int, response_message_id: int) -> None:
        self._entries[command_message_id] = HistoryEntry(
            command_message_id=command_message_id,
            channel_id=channel_id,
            response_message_id=response_message_id,
            recorded_at=self._clock(),
        )
        self._entries.move_to_end(command_message_id)

    def pop(self, command_message_id: int) -> Optional[HistoryEntry]:
        return self._entries.pop(command_message_id, None)

    def is_fresh(self, created_at: Optional[datetime]) -> bool:
        """Whether a command created at ``created_at`` may still be re-run after an edit."""
        if created_at is None:
            return False
        if created_at.tzinfo is None:
            created_at = created_at.replace(tzinfo=timezone.utc)
        return self._clock() - created_at.timestamp() <= self.max_age_seconds

    def trim(self) -> int:
        """Forget everything except the newest entry; returns how many entries were dropped."""
        dropped = 0
        while len(self._entries) > 1:
            self._entries.popitem(last=False)
            dropped += 1
        if dropped:
            logger.debug("[COMMAND HISTORY] Trimmed %d entries", dropped)
        return dropped
