"""Tests for console.py module."""
import pytest
from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock, patch

from interchat.ui import console


@pytest.fixture
def printed(monkeypatch):
    lines = []
    monkeypatch.setattr(console, "console_print", lambda message, style="": lines.append(message))
    return lines


def make_calling(running=True):
    calling = MagicMock()
    calling.is_running = running
    calling.get_stats = AsyncMock(return_value={
        "queue": {"queue_length": 3, "max_queue_size": 100, "oldest_wait_ms": 12_000},
        "matching": {"average_match_time": 4.25, "success_rate": 0.5},
        "cache": {"active_calls": 7},
    })
    return calling


def test_console_print_without_style():
    with patch("interchat.ui.console.print_formatted_text") as mock_print:
        console.console_print("Test message")
        mock_print.assert_called_once_with("Test message")


def test_box_title_width():
    lines = console.box_title("Title")
    assert all(len(line) == console.BOX_WIDTH for line in lines)
    assert "Title" in lines[1]


def test_console_control_shutdown_flag():
    control = console.ConsoleControl()
    assert not control.is_shutdown_requested()
    control.request_shutdown()
    assert control.is_shutdown_requested()


@pytest.mark.asyncio
async def test_close_bot_instance_when_none():
    await console.close_bot_instance(None, log_close=True)


@pytest.mark.asyncio
async def test_close_bot_instance_closes_open_bot():
    bot = SimpleNamespace(is_closed=lambda: False, close=AsyncMock())
    await console.close_bot_instance(bot)
    bot.close.assert_awaited_once()


@pytest.mark.asyncio
async def test_empty_command_is_accepted(printed):
    assert await console.handle_console_command("   ", console.ConsoleControl())
    assert printed == []


@pytest.mark.asyncio
async def test_unknown_command(printed):
    assert not await console.handle_console_command("frobnicate", console.ConsoleControl())
    assert "Unknown command 'frobnicate'" in printed[-1]


@pytest.mark.asyncio
async def test_aliases_resolve(printed):
    control = console.ConsoleControl(calling=make_calling())
    assert await console.handle_console_command("Q", control)
    assert any("Active calls:  7" in line for line in printed)


@pytest.mark.asyncio
async def test_calls_output(printed):
    control = console.ConsoleControl(calling=make_calling())

    await console.handle_console_command("calls", control)

    assert any("Queue:         3 / 100" in line for line in printed)
    assert any("Oldest wait:   12s" in line for line in printed)
    assert any("Success rate:  50%" in line for line in printed)


@pytest.mark.asyncio
async def test_calls_without_userphone(printed):
    await console.handle_console_command("calls", console.ConsoleControl())
    assert printed == ["Userphone is not initialized."]


@pytest.mark.asyncio
async def test_db_output(printed):
    database = MagicMock()
    database.get_db_performance_stats.return_value = {
        "calls.get": {"count": 4, "avg_time": 0.002, "errors": 0},
    }
    control = console.ConsoleControl(database=database)

    await console.handle_console_command("db", control)

    assert any("calls.get" in line and "avg=2.0ms" in line for line in printed)


@pytest.mark.asyncio
async def test_status_without_bot(printed):
    control = console.ConsoleControl(calling=make_calling(running=False))

    await console.handle_console_command("status", control)

    assert any("Not initialized" in line for line in printed)
    assert any("Stopped" in line for line in printed)


@pytest.mark.asyncio
async def test_handler_errors_are_reported(printed):
    calling = make_calling()
    calling.get_stats.side_effect = RuntimeError("cache down")
    control = console.ConsoleControl(calling=calling)

    assert await console.handle_console_command("calls", control)
    assert printed[-1] == "Error executing command: cache down"


@pytest.mark.asyncio
async def test_shutdown_command(printed):
    bot = SimpleNamespace(is_closed=lambda: False, close=AsyncMock())
    control = console.ConsoleControl()
    control.set_bot(bot)

    await console.handle_console_command("exit", control)

    assert control.is_shutdown_requested()
    bot.close.assert_awaited_once()
