"""Interactive operator console for the running InterChat bot."""

from __future__ import annotations

import asyncio
from collections.abc import AsyncIterator, Awaitable, Callable
from contextlib import asynccontextmanager
from dataclasses import dataclass, field

import discord
from prompt_toolkit import print_formatted_text
from prompt_toolkit.formatted_text import FormattedText
from prompt_toolkit.patch_stdout import patch_stdout
from prompt_toolkit.shortcuts import PromptSession

from interchat.database.database import Database
from interchat.userphone.calling_library import CallingLibrary
from interchat.util.logger import get_logger

BOX_WIDTH = 45

logger = get_logger("console")

CommandHandler = Callable[["ConsoleControl", list[str]], Awaitable[None]]


def box_title(title: str) -> list[str]:
    inner_width = BOX_WIDTH - 2
    pad_left = (inner_width - len(title)) // 2
    pad_right = inner_width - len(title) - pad_left
    return [
        f"╔{'═' * inner_width}╗",
        f"║{' ' * pad_left}{title}{' ' * pad_right}║",
        f"╚{'═' * inner_width}╝",
    ]


@dataclass
class Command:
    """A console command and its aliases."""
    name: str
    handler: CommandHandler
    aliases: list[str] = field(default_factory=list)
    description: str = ""

    def matches(self, input_cmd: str) -> bool:
        return input_cmd == self.name or input_cmd in self.aliases


def console_print(message: str, style: str = "") -> None:
    """Render text via prompt_toolkit without breaking the active prompt."""
    formatted: FormattedText | str = FormattedText([(style, message)]) if style else message
    print_formatted_text(formatted)


class ConsoleControl:
    """What the console can inspect and the shutdown switch it can flip."""

    def __init__(self, calling: CallingLibrary | None = None, database: Database | None = None) -> None:
        self.shutdown_event = asyncio.Event()
        self.calling = calling
        self.database = database
        self._bot: discord.Bot | None = None

    def set_bot(self, bot: discord.Bot | None) -> None:
        self._bot = bot

    @property
    def bot(self) -> discord.Bot | None:
        return self._bot

    def request_shutdown(self) -> None:
        self.shutdown_event.set()

    def is_shutdown_requested(self) -> bool:
        return self.shutdown_event.is_set()


async def close_bot_instance(bot: discord.Bot | None, *, log_close: bool = False) -> None:
    """Close the Discord bot instance if it is active."""
    if bot is None or bot.is_closed():
        return
    try:
        await bot.close()
        if log_close:
            logger.info("Discord bot connection closed.")
    except discord.DiscordException as exc:
        logger.error("Error while closing Discord bot: %s", exc)


# ==================== Command Handlers ====================

async def cmd_help(control: ConsoleControl, args: list[str]) -> None:
    for line in box_title("Console Commands"):
        console_print(line, "ansigreen")
    for cmd in COMMANDS:
        aliases = f" (aliases: {', '.join(cmd.aliases)})" if cmd.aliases else ""
        console_print(f"  {cmd.name}{aliases}", "ansicyan")
        console_print(f"    {cmd.description}")
    console_print("")


async def cmd_status(control: ConsoleControl, args: list[str]) -> None:
    for line in box_title("Bot Status"):
        console_print(line, "ansiblue")

    if control.bot:
        state = "🟢 Connected" if not control.bot.is_closed() else "🔴 Disconnected"
        console_print(f"  Bot:        {state}")
        console_print(f"  Guilds:     {len(control.bot.guilds)}")
        console_print(f"  Latency:    {control.bot.latency * 1000:.0f}ms")
    else:
        console_print("  Bot:        🔴 Not initialized")

    if control.calling:
        running = "🟢 Running" if control.calling.is_running else "🔴 Stopped"
        console_print(f"  Userphone:  {running}")
    console_print("")


async def cmd_calls(control: ConsoleControl, args: list[str]) -> None:
    """Queue, matching and cache figures of the userphone."""
    if control.calling is None:
        console_print("Userphone is not initialized.", "ansiyellow")
        return

    stats = await control.calling.get_stats()
    for line in box_title("Userphone"):
        console_print(line, "ansiblue")
    console_print(f"  Queue:         {stats['queue']['queue_length']} / {stats['queue']['max_queue_size']}")
    console_print(f"  Oldest wait:   {stats['queue']['oldest_wait_ms'] / 1000:.0f}s")
    console_print(f"  Active calls:  {stats['cache']['active_calls']}")
    console_print(f"  Avg match:     {stats['matching']['average_match_time']:.1f}ms")
    console_print(f"  Success rate:  {stats['matching']['success_rate'] * 100:.0f}%")
    console_print("")


async def cmd_db(control: ConsoleControl, args: list[str]) -> None:
    """Per-query database timings."""
    if control.database is None:
        console_print("Database is not initialized.", "ansiyellow")
        return

    stats = control.database.get_db_performance_stats()
    if not stats:
        console_print("No queries recorded yet.", "ansibrightblack")
        return
    for line in box_title("Database Timings"):
        console_print(line, "ansiblue")
    for name, figures in sorted(stats.items()):
        console_print(f"  {name:<32} n={figures['count']:<6.0f} avg={figures['avg_time'] * 1000:.1f}ms err={figures['errors']:.0f}")
    console_print("")


async def cmd_shutdown(control: ConsoleControl, args: list[str]) -> None:
    console_print("Shutdown requested.", "ansiyellow")
    control.request_shutdown()
    await close_bot_instance(control.bot)


COMMANDS: list[Command] = [
    Command("help", cmd_help, ["h", "?"], "Show this help message"),
    Command("status", cmd_status, ["stat", "info"], "Display bot connection and userphone state"),
    Command("calls", cmd_calls, ["queue", "q"], "Show queue length, active calls and matching stats"),
    Command("db", cmd_db, ["database"], "Show per-query database timings"),
    Command("shutdown", cmd_shutdown, ["stop", "quit", "exit"], "Gracefully shut down the bot"),
]


# ==================== Command Dispatcher ====================

async def handle_console_command(command: str, control: ConsoleControl) -> bool:
    """Execute one console line. Returns False for an unknown command."""
    parts = command.strip().split()
    if not parts:
        return True

    cmd_name, args = parts[0].lower(), parts[1:]
    for cmd in COMMANDS:
        if cmd.matches(cmd_name):
            try:
                await cmd.handler(control, args)
            except Exception as exc:
                logger.exception("Error executing command '%s': %s", cmd_name, exc)
                console_print(f"Error executing command: {exc}", "ansired")
            return True

    console_print(f"Unknown command '{cmd_name}'. Type 'help' for available commands.", "ansired")
    return False


async def run_console(control: ConsoleControl) -> None:
    """Read commands until shutdown is requested."""
    session = PromptSession("> ")
    for line in box_title("InterChat Console"):
        console_print(line, "ansigreen")
    console_print("Type 'help' for available commands or 'exit' to quit.\n", "ansibrightblack")

    with patch_stdout():
        while not control.is_shutdown_requested():
            try:
                line = await session.prompt_async()
            except (EOFError, KeyboardInterrupt):
                console_print("\nShutdown requested by user.", "ansiyellow")
                control.request_shutdown()
                await close_bot_instance(control.bot)
                break
            await handle_console_command(line, control)


@asynccontextmanager
async def console_session(control: ConsoleControl) -> AsyncIterator[ConsoleControl]:
    """Run the console alongside the bot, cleaning up automatically."""
    console_task = asyncio.create_task(run_console(control))
    try:
        yield control
    finally:
        control.request_shutdown()
        console_task.cancel()
        try:
            await console_task
        except asyncio.CancelledError:
            pass
