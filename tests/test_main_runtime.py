import asyncio
from contextlib import asynccontextmanager
from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock

import pytest

from interchat import main
from interchat.cache import CacheError
from interchat.cache.memory_store import MemoryCacheStore
from interchat.configuration.app_configuration import AppConfig


def write_config(tmp_path, backend="memory"):
    config_file = tmp_path / "app_config.yml"
    config_file.write_text(
        "storage:\n"
        f"  cache_backend: {backend}\n"
        f"  database_path: {tmp_path / 'data' / 'interchat.db'}\n",
        encoding="utf-8",
    )
    return AppConfig(config_file)


class FakeBot:
    def __init__(self, *args, **kwargs) -> None:
        self._closed = False
        self.close = AsyncMock(side_effect=self._mark_closed)

    async def _mark_closed(self) -> None:
        self._closed = True

    def is_closed(self) -> bool:
        return self._closed


@pytest.mark.asyncio
async def test_build_runtime_wires_services(tmp_path):
    runtime = await main.build_runtime(write_config(tmp_path))
    try:
        assert isinstance(runtime.store, MemoryCacheStore)
        assert runtime.database.is_initialized
        assert not runtime.calling.is_running
    finally:
        await main.shutdown_runtime(runtime)

    assert not runtime.database.is_initialized


@pytest.mark.asyncio
async def test_build_runtime_rejects_unknown_backend(tmp_path):
    with pytest.raises(ValueError):
        await main.build_runtime(write_config(tmp_path, backend="memcached"))


@pytest.mark.asyncio
async def test_shutdown_runtime_closes_everything():
    runtime = SimpleNamespace(
        calling=SimpleNamespace(shutdown=AsyncMock()),
        gateway=SimpleNamespace(close=AsyncMock()),
        store=SimpleNamespace(close=AsyncMock(side_effect=CacheError("gone"))),
        database=SimpleNamespace(shutdown=AsyncMock()),
    )
    bot = FakeBot()

    await main.shutdown_runtime(runtime, bot)

    bot.close.assert_awaited_once()
    runtime.calling.shutdown.assert_awaited_once()
    runtime.gateway.close.assert_awaited_once()
    runtime.database.shutdown.assert_awaited_once()


@pytest.mark.asyncio
async def test_async_main_storage_failure(monkeypatch, tmp_path):
    monkeypatch.setattr(main, "load_environment", lambda: "token")
    monkeypatch.setattr(main, "AppConfig", lambda: write_config(tmp_path))
    monkeypatch.setattr(main, "build_runtime", AsyncMock(side_effect=CacheError("redis unreachable")))

    assert await main.async_main() == 1


@pytest.mark.asyncio
async def test_async_main_successful_shutdown(monkeypatch, tmp_path):
    runtime = SimpleNamespace(calling=MagicMock(), database=MagicMock())
    monkeypatch.setattr(main, "load_environment", lambda: "token")
    monkeypatch.setattr(main, "AppConfig", lambda: write_config(tmp_path))
    monkeypatch.setattr(main, "build_runtime", AsyncMock(return_value=runtime))
    monkeypatch.setattr(main, "create_bot", lambda rt: FakeBot())

    @asynccontextmanager
    async def fake_console_session(control):
        yield control

    monkeypatch.setattr(main, "console_session", fake_console_session)
    shutdown_mock = AsyncMock()
    monkeypatch.setattr(main, "shutdown_runtime", shutdown_mock)
    start_bot_mock = AsyncMock(side_effect=asyncio.CancelledError())
    monkeypatch.setattr(main, "start_bot", start_bot_mock)

    result = await main.async_main()

    assert result == 0
    start_bot_mock.assert_awaited_once()
    shutdown_mock.assert_awaited_once()


@pytest.mark.asyncio
async def test_run_bot_session_reports_runtime_error(monkeypatch):
    @asynccontextmanager
    async def fake_console_session(control):
        yield control

    monkeypatch.setattr(main, "console_session", fake_console_session)
    monkeypatch.setattr(main, "start_bot", AsyncMock(side_effect=RuntimeError("login failed")))
    monkeypatch.setattr(main, "shutdown_runtime", AsyncMock())
    control = main.ConsoleControl()

    assert await main.run_bot_session(FakeBot(), "token", control, SimpleNamespace()) == 1
    assert control.bot is None


def test_main_maps_system_exit(monkeypatch):
    async def fake_async_main():
        raise SystemExit("3")

    monkeypatch.setattr(main, "async_main", fake_async_main)
    assert main.main() == 3


def test_build_intents():
    intents = main.build_intents()
    assert intents.message_content
    assert intents.reactions
