from unittest.mock import AsyncMock

import discord
import pytest

from modsbot.database.db_connection import ConnectionManager
from modsbot.repositories.temporary_ban_repo import TemporaryBanRepo
from modsbot.services.ban_service import BAN_DELETE_MESSAGE_SECONDS, HOUR, BanService, ban_message

GUILD = 100
USER = 1
START = 1_700_000_000


class Clock:
    def __init__(self, now):
        self.now = now

    def __call__(self):
        return self.now


def http_error(cls, status):
    response = type("Response", (), {"status": status, "reason": "x"})()
    return cls(response, "error")


async def open_db(tmp_path):
    db = ConnectionManager()
    await db.open(tmp_path / "bans.db")
    return db


def test_ban_message_wording():
    assert "for 1 hour for spam" in ban_message("spam", 1)
    assert "for 3 hours" in ban_message("spam", 3)
    assert "permanently" in ban_message("spam", 0)


@pytest.mark.asyncio
async def test_temporary_ban_is_scheduled(tmp_path):
    db = await open_db(tmp_path)
    try:
        api = AsyncMock()
        service = BanService(api, db, clock=Clock(START))

        unban_at = await service.ban(GUILD, USER, 2, "spam")

        assert unban_at == START + 2 * HOUR
        api.send_direct_message.assert_awaited_once()
        api.ban.assert_awaited_once_with(GUILD, USER, delete_message_seconds=BAN_DELETE_MESSAGE_SECONDS, reason="spam")
        async with db.read() as conn:
            assert await TemporaryBanRepo.exists(conn, GUILD, USER)
    finally:
        await db.close()


@pytest.mark.asyncio
async def test_permanent_ban_is_not_scheduled_and_dm_failure_is_tolerated(tmp_path):
    db = await open_db(tmp_path)
    try:
        api = AsyncMock()
        api.send_direct_message.side_effect = http_error(discord.Forbidden, 403)
        service = BanService(api, db, clock=Clock(START))

        assert await service.ban(GUILD, USER, 0, "raid") is None

        api.ban.assert_awaited_once()
        async with db.read() as conn:
            assert not await TemporaryBanRepo.exists(conn, GUILD, USER)
    finally:
        await db.close()


@pytest.mark.asyncio
async def test_unban_expired_lifts_due_bans_only(tmp_path):
    db = await open_db(tmp_path)
    try:
        api = AsyncMock()
        clock = Clock(START)
        service = BanService(api, db, clock=clock)
        await service.ban(GUILD, 1, 1, "spam")
        await service.ban(GUILD, 2, 5, "spam")

        clock.now = START + 2 * HOUR
        assert await service.unban_expired() == 1

        api.unban.assert_awaited_once_with(GUILD, 1, reason="Ban duration expired.")
        async with db.read() as conn:
            assert not await TemporaryBanRepo.exists(conn, GUILD, 1)
            assert await TemporaryBanRepo.exists(conn, GUILD, 2)
    finally:
        await db.close()


@pytest.mark.asyncio
async def test_unban_of_user_no_longer_banned_clears_row(tmp_path):
    db = await open_db(tmp_path)
    try:
        api = AsyncMock()
        api.unban.side_effect = http_error(discord.NotFound, 404)
        clock = Clock(START)
        service = BanService(api, db, clock=clock)
        await service.ban(GUILD, USER, 1, "spam")

        clock.now = START + HOUR
        assert await service.unban_expired() == 0
        async with db.read() as conn:
            assert not await TemporaryBanRepo.exists(conn, GUILD, USER)
    finally:
        await db.close()


@pytest.mark.asyncio
async def test_failed_unban_is_retried_next_run(tmp_path):
    db = await open_db(tmp_path)
    try:
        api = AsyncMock()
        api.unban.side_effect = http_error(discord.HTTPException, 500)
        clock = Clock(START)
        service = BanService(api, db, clock=clock)
        await service.ban(GUILD, USER, 1, "spam")

        clock.now = START + HOUR
        assert await service.unban_expired() == 0
        async with db.read() as conn:
            assert await TemporaryBanRepo.exists(conn, GUILD, USER)

        api.unban.side_effect = None
        assert await service.unban_expired() == 1
    finally:
        await db.close()


@pytest.mark.asyncio
async def test_forget_drops_pending_unban(tmp_path):
    db = await open_db(tmp_path)
    try:
        service = BanService(AsyncMock(), db, clock=Clock(START))
        await service.ban(GUILD, USER, 1, "spam")

        assert await service.forget(GUILD, USER) is True
        assert await service.forget(GUILD, USER) is False
    finally:
        await db.close()
