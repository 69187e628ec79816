import asyncio
import sys
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from modsbot import main
from modsbot.configuration.app_configuration import AppConfig, FeatureSettings
from modsbot.errors import FatalGatewayError


def test_resolve_base_dir_env_overrides(tmp_path, monkeypatch):
    monkeypatch.setenv("MODSBOT_HOME", str(tmp_path))

    assert main.resolve_base_dir() == tmp_path.resolve()


def test_resolve_base_dir_compiled(tmp_path, monkeypatch):
    monkeypatch.delenv("MODSBOT_HOME", raising=False)
    monkeypatch.setattr(sys, "frozen", True, raising=False)
    monkeypatch.setattr(sys, "argv", [str(tmp_path / "modsbot.exe")])

    assert main.resolve_base_dir() == (tmp_path / "modsbot.exe").resolve().parent


def test_resolve_base_dir_source(monkeypatch):
    monkeypatch.delenv("MODSBOT_HOME", raising=False)
    monkeypatch.setattr(sys, "frozen", False, raising=False)
    monkeypatch.setattr(sys, "compiled", False, raising=False)

    assert main.resolve_base_dir() == main.Path(main.__file__).resolve().parents[2]


def test_load_environment_requires_token(monkeypatch):
    monkeypatch.delenv("DISCORD_BOT_TOKEN", raising=False)

    with patch.object(main, "load_dotenv"), pytest.raises(SystemExit) as excinfo:
        main.load_environment()

    assert excinfo.value.code == 1


def test_load_environment_returns_token(monkeypatch):
    monkeypatch.setenv("DISCORD_BOT_TOKEN", "abc.def")

    with patch.object(main, "load_dotenv"):
        assert main.load_environment() == "abc.def"


def test_build_intents():
    intents = main.build_intents()

    assert intents.message_content
    assert intents.members
    assert intents.reactions
    assert intents.guilds


def test_load_commands_honours_feature_flags():
    router = MagicMock()
    services = MagicMock()
    services.features = FeatureSettings(tags=False, crates=True, playground=True)
    services.playground.timeout_seconds = 30.0

    main.load_commands(router, services)

    names = [call.args[0].name for call in router.register.call_args_list]
    assert "tag" not in names and "tags" not in names
    assert {"crate", "docs", "play", "eval", "ban", "kick", "slowmode", "CoC", "help"} <= set(names)


def test_load_commands_can_disable_playground():
    router = MagicMock()
    services = MagicMock()
    services.features = FeatureSettings(playground=False)

    main.load_commands(router, services)

    names = {call.args[0].name for call in router.register.call_args_list}
    assert "play" not in names and "eval" not in names
    assert "tag" in names


@pytest.mark.asyncio
async def test_build_runtime_registers_all_commands():
    api = AsyncMock()
    runtime = main.build_runtime("token", api, MagicMock(), config=AppConfig(data={}))

    router = runtime.dispatcher._router
    assert set(router.commands) == {"tag", "tags", "crate", "docs", "play", "eval", "ban", "kick", "slowmode", "coc", "help"}
    assert router.prefix == "?"
    assert runtime.session.state.name == "DISCONNECTED"


def fake_runtime(connect):
    runtime = MagicMock()
    runtime.session.connect = connect
    runtime.gateway_task = None
    return runtime


@pytest.mark.asyncio
async def test_run_session_fatal_gateway_error_exits_1():
    runtime = fake_runtime(AsyncMock(side_effect=FatalGatewayError("Authentication failed", close_code=4004)))

    assert await main.run_session(runtime, asyncio.Event()) == 1
    runtime.dispatcher.start.assert_called_once()
    runtime.jobs.start.assert_called_once()


@pytest.mark.asyncio
async def test_run_session_stop_signal_exits_0():
    async def forever():
        await asyncio.sleep(3600)

    runtime = fake_runtime(forever)
    stop = asyncio.Event()
    stop.set()

    assert await main.run_session(runtime, stop) == 0

    runtime.gateway_task.cancel()
    await asyncio.gather(runtime.gateway_task, return_exceptions=True)


@pytest.mark.asyncio
async def test_shutdown_runtime_order():
    order = []

    def recorder(name):
        async def record(*args, **kwargs):
            order.append(name)
        return record

    runtime = MagicMock()
    runtime.gateway_task = None
    runtime.jobs.shutdown = recorder("jobs")
    runtime.dispatcher.stop = recorder("dispatcher")
    runtime.session.close = recorder("session")
    runtime.registry.close = recorder("registry")
    runtime.playground.close = recorder("playground")
    runtime.api.close = recorder("api")
    runtime.db.close = recorder("db")

    await main.shutdown_runtime(runtime, grace=1)

    assert order == ["jobs", "dispatcher", "session", "registry", "playground", "api", "db"]


def test_main_maps_system_exit_to_exit_code():
    def fake_run(coro):
        coro.close()
        raise SystemExit(1)

    with patch.object(main.asyncio, "run", fake_run):
        assert main.main() == 1


def test_main_keyboard_interrupt_is_clean_exit():
    def fake_run(coro):
        coro.close()
        raise KeyboardInterrupt

    with patch.object(main.asyncio, "run", fake_run):
        assert main.main() == 0
