"""Guild-scoped key/value store behind the ``?tag`` / ``?tags`` commands."""

from __future__ import annotations

from typing import List, Optional

from modsbot.database.db_connection import ConnectionManager
from modsbot.errors import ExternalServiceError
from modsbot.repositories.tag_repo import TagRepo
from modsbot.util.logger import get_logger

logger = get_logger("tag_store")


def normalize_key(key: str) -> str:
    """Tag keys are case-insensitive; store and look them up lower-cased."""
    return key.strip().lower()


class TagStore:
    """
    The narrow get/set/delete/list contract the command handlers depend on.

    Storage failures surface as :class:`ExternalServiceError` so the router
    answers with the generic failure reply.
    """

    def __init__(self, db: ConnectionManager) -> None:
        self._db = db

    async def get(self, guild_id: int, key: str) -> Optional[str]:
        try:
            async with self._db.read() as conn:
                record = await TagRepo.get(conn, guild_id, normalize_key(key))
        except Exception as exc:
            raise ExternalServiceError(f"tag lookup failed for {key!r}") from exc
        return record.body if record else None

    async def set(self, guild_id: int, key: str, body: str, author_id: int) -> None:
        key = normalize_key(key)
        try:
            async with self._db.transaction() as conn:
                await TagRepo.upsert(conn, guild_id, key, body, author_id)
        except Exception as exc:
            raise ExternalServiceError(f"tag write failed for {key!r}") from exc
        logger.info("[TAGS] Guild %s: tag %r set by %s", guild_id, key, author_id)

    async def delete(self, guild_id: int, key: str) -> bool:
        key = normalize_key(key)
        try:
            async with self._db.transaction() as conn:
                existed = await TagRepo.delete(conn, guild_id, key)
        except Exception as exc:
            raise ExternalServiceError(f"tag delete failed for {key!r}") from exc
        if existed:
            logger.info("[TAGS] Guild %s: tag %r deleted", guild_id, key)
        return existed

    async def list(self, guild_id: int) -> List[str]:
        try:
            async with self._db.read() as conn:
                return await TagRepo.list_keys(conn, guild_id)
        except Exception as exc:
            raise ExternalServiceError("tag listing failed") from exc
