"""
modsbot
=======

Moderation and utility bot for a Discord community: tags, crate lookups,
moderation commands and the code-of-conduct role gate, driven by a raw
gateway session.
"""

import os
import sys
from pathlib import Path


def resolve_base_dir() -> Path:
    """Determine the base directory of the project.

    Resolution order:
    1. MODSBOT_HOME environment variable, if set.
    2. If running in a frozen/compiled context, use the executable's directory.
    3. Otherwise, assume running from source and use the grandparent of this file's directory.
    """
    if env_home := os.getenv("MODSBOT_HOME"):
        return Path(env_home).resolve()

    if getattr(sys, "frozen", False) or getattr(sys, "compiled", False):
        return Path(sys.argv[0]).resolve().parent

    return Path(__file__).resolve().parents[2]


BASE_DIR = resolve_base_dir()
os.chdir(BASE_DIR)

import asyncio
import signal
from dataclasses import dataclass

import discord
from dotenv import load_dotenv

from modsbot.bot.bot_state import BotServices
from modsbot.bot.command_history import CommandHistory
from modsbot.bot.commands import crate_cmds, help_cmds, moderation_cmds, playground_cmds, tag_cmds, welcome_cmds
from modsbot.bot.dispatcher import EventDispatcher
from modsbot.bot.permissions import GuildRoleCache, PermissionResolver
from modsbot.bot.reaction_roles import ReactionRoleTracker
from modsbot.bot.router import CommandRouter
from modsbot.bot.worker_pool import WorkerPool
from modsbot.configuration.app_configuration import AppConfig, app_config
from modsbot.database.db_connection import ConnectionManager
from modsbot.errors import FatalGatewayError
from modsbot.gateway.events import Ready
from modsbot.gateway.session import GatewaySession
from modsbot.http.platform_api import PlatformApi
from modsbot.scheduler.job_scheduler import JobScheduler
from modsbot.services.ban_service import BanService
from modsbot.services.playground_client import PlaygroundClient
from modsbot.services.registry_client import RegistryClient
from modsbot.services.tag_store import TagStore
from modsbot.util.logger import get_logger, handle_exception, set_console_level

logger = get_logger("main")


def load_environment() -> str:
    """Load environment variables and return the Discord bot token.

    Raises
    ------
    SystemExit
        If the required ``DISCORD_BOT_TOKEN`` variable is missing.
    """
    load_dotenv(dotenv_path=BASE_DIR / ".env")
    token = os.getenv("DISCORD_BOT_TOKEN")
    if not token:
        logger.critical("'DISCORD_BOT_TOKEN' environment variable not set. Bot cannot start.")
        sys.exit(1)
    return token


def build_intents() -> discord.Intents:
    """Intents for guild/role state, message commands (with content) and reactions."""
    intents = discord.Intents.default()
    intents.message_content = True
    intents.guilds = True
    intents.messages = True
    intents.reactions = True
    intents.members = True
    return intents


def load_commands(router: CommandRouter, services: BotServices) -> None:
    """Register every command module enabled in the configuration."""
    if services.features.tags:
        tag_cmds.setup(router, services)
    if services.features.crates:
        crate_cmds.setup(router, services)
    if services.features.playground:
        playground_cmds.setup(router, services)
    moderation_cmds.setup(router, services)
    welcome_cmds.setup(router, services)
    help_cmds.setup(router, services)

    logger.info("All commands loaded successfully.")


@dataclass
class Runtime:
    """Every long-lived object of one bot run, in the order they are shut down."""
    dispatcher: EventDispatcher
    jobs: JobScheduler
    session: GatewaySession
    registry: RegistryClient
    playground: PlaygroundClient
    api: PlatformApi
    db: ConnectionManager
    gateway_task: asyncio.Task | None = None


def build_runtime(token: str, api: PlatformApi, db: ConnectionManager, config: AppConfig = app_config) -> Runtime:
    cache = GuildRoleCache()
    resolver = PermissionResolver(cache, config.roles, api)
    history = CommandHistory(config.command_history_max_age)
    router = CommandRouter(
        api,
        resolver,
        prefix=config.command_prefix,
        handler_timeout=config.handler_timeout,
        history=history,
    )
    tracker = ReactionRoleTracker(api, db)
    registry = RegistryClient(config.registry)
    playground = PlaygroundClient(config.playground)
    bans = BanService(api, db)

    services = BotServices(
        api=api,
        resolver=resolver,
        tags=TagStore(db),
        registry=registry,
        playground=playground,
        tracker=tracker,
        bans=bans,
        roles=config.roles,
        features=config.features,
    )
    load_commands(router, services)

    async def on_ready(ready: Ready) -> None:
        await tracker.load_bindings()

    session = GatewaySession(
        token=token,
        intents=build_intents().value,
        settings=config.gateway,
        open_websocket=api.open_websocket,
        fetch_gateway_url=api.gateway_url,
        on_ready=on_ready,
    )
    dispatcher = EventDispatcher(
        session.events,
        api=api,
        cache=cache,
        router=router,
        tracker=tracker,
        pool=WorkerPool(config.max_workers),
        history=history,
        bans=bans,
    )

    async def trim_history() -> int:
        return history.trim()

    jobs = JobScheduler(
        config.jobs_interval,
        [("unban_expired", bans.unban_expired), ("trim_command_history", trim_history)],
    )
    return Runtime(
        dispatcher=dispatcher,
        jobs=jobs,
        session=session,
        registry=registry,
        playground=playground,
        api=api,
        db=db,
    )


async def shutdown_runtime(runtime: Runtime, grace: float) -> None:
    """Stop accepting events, drain handlers, then close the gateway, HTTP client and database."""
    await runtime.jobs.shutdown()
    await runtime.dispatcher.stop(grace)
    await runtime.session.close()
    if runtime.gateway_task is not None:
        await asyncio.gather(runtime.gateway_task, return_exceptions=True)

    try:
        await runtime.registry.close()
    except Exception as exc:
        logger.exception("Error while closing registry client: %s", exc)
    try:
        await runtime.playground.close()
    except Exception as exc:
        logger.exception("Error while closing playground client: %s", exc)
    await runtime.api.close()
    await runtime.db.close()

    logger.info("Shutdown complete.")


def install_signal_handlers(stop: asyncio.Event) -> None:
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, stop.set)
        except (NotImplementedError, RuntimeError):
            # Not available on every platform; Ctrl+C still raises KeyboardInterrupt
            pass


async def run_session(runtime: Runtime, stop: asyncio.Event) -> int:
    """Run the gateway until a stop signal or a fatal gateway error, returning an exit code."""
    runtime.dispatcher.start()
    runtime.jobs.start()

    gateway_task = runtime.gateway_task = asyncio.create_task(runtime.session.connect(), name="modsbot-gateway")
    stop_task = asyncio.create_task(stop.wait(), name="modsbot-stop")
    try:
        done, _ = await asyncio.wait({gateway_task, stop_task}, return_when=asyncio.FIRST_COMPLETED)
    finally:
        stop_task.cancel()

    if gateway_task not in done:
        logger.info("Stop requested; shutting down")
        return 0

    exc = gateway_task.exception()
    if isinstance(exc, FatalGatewayError):
        logger.critical("Gateway session cannot continue: %s", exc)
        return 1
    if exc is not None:
        logger.critical("Gateway session crashed: %r", exc)
        return 1
    return 0


async def async_main() -> int:
    """Bootstrap storage, REST and gateway, returning an exit code."""
    token = load_environment()
    set_console_level(app_config.log_level)

    db = ConnectionManager()
    try:
        logger.info("Opening database at %s", app_config.database_path)
        await db.open(app_config.database_path)
    except Exception as exc:
        logger.critical("Failed to initialize database: %s", exc)
        return 1

    api = PlatformApi()
    try:
        await api.login(token)
    except discord.LoginFailure as exc:
        logger.critical("Discord rejected the bot token: %s", exc)
        await api.close()
        await db.close()
        return 1

    runtime = build_runtime(token, api, db)
    stop = asyncio.Event()
    install_signal_handlers(stop)

    try:
        exit_code = await run_session(runtime, stop)
    finally:
        await shutdown_runtime(runtime, app_config.shutdown_grace)
    return exit_code


def main() -> int:
    """Entrypoint that runs the async runtime and returns the process code."""
    logger.info("Starting modsbot…")
    try:
        return asyncio.run(async_main())
    except KeyboardInterrupt:
        logger.info("Shutdown requested by user.")
        return 0
    except SystemExit as exit_exc:
        code = exit_exc.code
        if isinstance(code, int):
            return code
        return 1 if code is not None else 0
    except Exception as exc:
        logger.critical("An unexpected error occurred while running the bot: %s", exc)
        return 1


if __name__ == "__main__":
    sys.excepthook = handle_exception
    sys.exit(main())
