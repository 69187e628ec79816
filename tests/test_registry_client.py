from unittest.mock import AsyncMock, MagicMock

import aiohttp
import pytest

from modsbot.bot.commands.crate_cmds import CRATE_COLOR, CrateCommands, build_crate_embed
from modsbot.configuration.app_configuration import RegistrySettings
from modsbot.errors import ExternalServiceError, NotFoundError
from modsbot.services.registry_client import CrateSummary, RegistryClient

SERDE = {
    "id": "serde",
    "name": "serde",
    "max_stable_version": "1.0.197",
    "downloads": 312345678,
    "description": "A generic serialization/deserialization framework\n",
    "documentation": "https://docs.rs/serde",
    "updated_at": "2024-02-20T12:00:00.000000+00:00",
}


def fake_session(payload=None, error=None):
    response = MagicMock()
    response.raise_for_status = MagicMock(side_effect=error)
    response.json = AsyncMock(return_value=payload)
    session = MagicMock()
    session.closed = False
    session.get.return_value.__aenter__.return_value = response
    session.get.return_value.__aexit__.return_value = False
    return session


def test_crate_summary_from_payload():
    crate = CrateSummary.from_payload(SERDE)

    assert crate.version == "1.0.197"
    assert crate.description == "A generic serialization/deserialization framework"
    assert crate.url == "https://crates.io/crates/serde"
    assert crate.updated_at.year == 2024


@pytest.mark.asyncio
async def test_search_queries_registry():
    session = fake_session({"crates": [SERDE, "junk"]})
    client = RegistryClient(RegistrySettings(base_url="https://registry.test/api/v1"), session=session)

    results = await client.search(" serde ")

    assert [c.name for c in results] == ["serde"]
    args, kwargs = session.get.call_args
    assert args[0] == "https://registry.test/api/v1/crates"
    assert kwargs["params"] == {"q": "serde"}


@pytest.mark.asyncio
async def test_search_failure_is_external_service_error():
    session = fake_session(error=aiohttp.ClientError("boom"))
    client = RegistryClient(RegistrySettings(), session=session)

    with pytest.raises(ExternalServiceError):
        await client.search("serde")


@pytest.mark.asyncio
async def test_doc_links():
    session = fake_session({"crates": [SERDE]})
    client = RegistryClient(RegistrySettings(), session=session)

    assert await client.fetch_doc_link("std::vec::Vec") == "https://doc.rust-lang.org/stable/std/?search=vec::Vec"
    assert await client.fetch_doc_link("serde::Deserialize") == "https://docs.rs/serde?search=Deserialize"
    session.get.assert_called_once()

    assert await client.fetch_doc_link("std::fmt#Display") == "https://doc.rust-lang.org/stable/std/?search=fmt%23Display"
    assert await client.fetch_doc_link("std::a&b") == "https://doc.rust-lang.org/stable/std/?search=a%26b"

    empty = RegistryClient(RegistrySettings(), session=fake_session({"crates": []}))
    assert await empty.fetch_doc_link("nonexistent-crate") is None


@pytest.mark.asyncio
async def test_close_leaves_injected_session_open():
    session = fake_session({"crates": []})
    session.close = AsyncMock()

    await RegistryClient(RegistrySettings(), session=session).close()

    session.close.assert_not_awaited()


def test_crate_embed():
    embed = build_crate_embed(CrateSummary.from_payload(SERDE))

    assert embed["title"] == "serde"
    assert embed["url"] == "https://crates.io/crates/serde"
    assert embed["color"] == CRATE_COLOR
    fields = {f["name"]: f["value"] for f in embed["fields"]}
    assert fields == {"Version": "1.0.197", "Downloads": "312,345,678", "Docs": "https://docs.rs/serde"}


@pytest.mark.asyncio
async def test_crate_command_not_found():
    registry = MagicMock()
    registry.search = AsyncMock(return_value=[])
    registry.fetch_doc_link = AsyncMock(return_value=None)
    commands = CrateCommands(registry)
    ctx = MagicMock()
    ctx.reply = AsyncMock()

    with pytest.raises(NotFoundError, match="No crates found for `nope`"):
        await commands.crate(ctx, "nope")
    with pytest.raises(NotFoundError):
        await commands.docs(ctx, "nope::thing")
    ctx.reply.assert_not_awaited()


@pytest.mark.asyncio
async def test_crate_command_replies_with_embed():
    registry = MagicMock()
    registry.search = AsyncMock(return_value=[CrateSummary.from_payload(SERDE)])
    ctx = MagicMock()
    ctx.reply = AsyncMock()

    await CrateCommands(registry).crate(ctx, "serde")

    embed = ctx.reply.await_args.kwargs["embed"]
    assert embed["title"] == "serde"
