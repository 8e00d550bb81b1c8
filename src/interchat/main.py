"""
InterChat Bot
=============

A Discord bot that connects channels across servers: random userphone calls
between two servers and hubs whose channels mirror each other.
"""

import os
import sys
from pathlib import Path

def resolve_base_dir() -> Path:
    """Determine the base directory of the project. Designed for compiled/bundled execution.
    Resolution order:
    1. INTERCHAT_HOME environment variable, if set.
    2. If running in a frozen/compiled context (e.g., PyInstaller, Nuitka), use the executable's directory.
    3. Otherwise, assume running from source and use the grandparent of this file's directory.
    """
    if env_home := os.getenv("INTERCHAT_HOME"):
        return Path(env_home).resolve()

    if getattr(sys, "frozen", False) or getattr(sys, "compiled", False):
        return Path(sys.argv[0]).resolve().parent

    return Path(__file__).resolve().parents[2]

BASE_DIR = resolve_base_dir()
os.chdir(BASE_DIR)

import asyncio
from dataclasses import dataclass

import discord
from dotenv import load_dotenv

from interchat.cache import CacheError, CacheStore, create_cache_store
from interchat.configuration.app_configuration import AppConfig
from interchat.database.database import Database
from interchat.gateway.webhook_gateway import WebhookGateway
from interchat.network.broadcast_service import BroadcastService
from interchat.network.mod_logs import ModLogWriter
from interchat.network.reaction_service import ReactionService
from interchat.ui.console import ConsoleControl, close_bot_instance, console_session
from interchat.userphone.calling_library import CallingLibrary
from interchat.util.logger import get_logger, handle_exception


logger = get_logger("main")


@dataclass
class Runtime:
    """Everything built at startup and torn down at exit."""
    config: AppConfig
    store: CacheStore
    database: Database
    gateway: WebhookGateway
    calling: CallingLibrary
    broadcasts: BroadcastService
    reactions: ReactionService


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
    """Intents for guild messages, their content and reactions."""
    intents = discord.Intents.default()
    intents.message_content = True
    intents.guilds = True
    intents.messages = True
    intents.reactions = True
    return intents


async def build_runtime(config: AppConfig) -> Runtime:
    """Connect the cache and the database and wire every service.

    Raises
    ------
    CacheError
        If the cache backend cannot be reached.
    RuntimeError
        If the database cannot be opened.
    """
    store = create_cache_store(config.storage)
    await store.connect()

    database = Database(config.storage.database_path, config.calling.max_cached_messages)
    if not await database.initialize():
        await store.close()
        raise RuntimeError(f"Could not open database at {config.storage.database_path}")

    gateway = WebhookGateway()
    calling = CallingLibrary(store, database, gateway, config.calling, config.storage)
    mod_logs = ModLogWriter(database.mod_logs, gateway)
    broadcasts = BroadcastService(
        store, database.messages, database.connections, database.hubs, gateway, config.network, mod_logs,
    )
    reactions = ReactionService(
        store, database.messages, database.connections, database.hubs, gateway, config.network,
    )
    return Runtime(config, store, database, gateway, calling, broadcasts, reactions)


def load_cogs(discord_bot_instance: discord.Bot, runtime: Runtime) -> None:
    """Register all operational cogs with the provided Discord bot instance."""
    from interchat.bot.cogs import events_listener, network_listener, userphone_cmds

    events_listener.setup(discord_bot_instance, runtime.calling)
    userphone_cmds.setup(discord_bot_instance, runtime.calling)
    network_listener.setup(discord_bot_instance, runtime.broadcasts, runtime.reactions)

    logger.info("All cogs loaded successfully.")


def create_bot(runtime: Runtime) -> discord.Bot:
    """Instantiate the Discord bot and register all cogs."""
    bot = discord.Bot(intents=build_intents())
    load_cogs(bot, runtime)
    return bot


async def start_bot(bot: discord.Bot, token: str) -> None:
    """Start the Discord bot and handle lifecycle logging around the connection."""
    logger.info("Attempting to connect to Discord…")
    try:
        await bot.start(token)
    except asyncio.CancelledError:
        logger.info("Discord bot start cancelled; shutting down")
    finally:
        logger.info("Discord bot start routine finished.")


async def shutdown_runtime(runtime: Runtime, bot: discord.Bot | None = None) -> None:
    """Stop the bot, the userphone sweeps, and close every connection."""
    await close_bot_instance(bot, log_close=True)

    try:
        await runtime.calling.shutdown()
    except Exception as exc:
        logger.exception("Error during userphone shutdown: %s", exc)

    await runtime.gateway.close()

    try:
        await runtime.store.close()
    except CacheError as exc:
        logger.error("Error while closing cache: %s", exc)

    await runtime.database.shutdown()
    logger.info("Shutdown complete.")


async def run_bot_session(bot: discord.Bot, token: str, control: ConsoleControl, runtime: Runtime) -> int:
    """Run the bot alongside the console, returning an exit code."""
    control.set_bot(bot)
    exit_code = 0

    try:
        async with console_session(control):
            try:
                await start_bot(bot, token)
            except asyncio.CancelledError:
                logger.info("Bot start cancelled; proceeding to shutdown")
            except Exception as exc:
                logger.critical("Discord bot runtime error: %s", exc)
                exit_code = 1
    finally:
        control.set_bot(None)
        await shutdown_runtime(runtime, bot)

    return exit_code


async def async_main() -> int:
    """Bootstrap storage, services, the bot and the console, returning an exit code."""
    token = load_environment()
    config = AppConfig()

    try:
        logger.info("Connecting cache (%s) and database...", config.storage.cache_backend)
        runtime = await build_runtime(config)
    except (CacheError, RuntimeError, ValueError) as exc:
        logger.critical("Failed to initialize storage: %s", exc)
        return 1

    try:
        bot = create_bot(runtime)
    except Exception as exc:
        logger.critical("Failed to initialize Discord bot: %s", exc)
        await shutdown_runtime(runtime)
        return 1

    control = ConsoleControl(calling=runtime.calling, database=runtime.database)
    return await run_bot_session(bot, token, control, runtime)


def main() -> int:
    """Entrypoint that orchestrates the async runtime and returns the process code."""
    logger.info("Starting InterChat…")
    try:
        return asyncio.run(async_main())
    except KeyboardInterrupt:
        logger.info("Shutdown requested by user.")
        return 0
    except SystemExit as exit_exc:
        code = exit_exc.code
        if isinstance(code, int):
            return code
        if code is None:
            return 1
        try:
            return int(code)
        except (ValueError, TypeError):
            logger.warning("SystemExit.code is not an int (%r); defaulting to 1", code)
            return 1
    except Exception as exc:
        logger.critical("An unexpected error occurred while running the bot: %s", exc)
        return 1


if __name__ == "__main__":
    sys.excepthook = handle_exception
    print(f"Exited with code: {main()}")
