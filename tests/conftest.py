"""
Pytest configuration and fixtures for InterChat tests.
"""

import sys
from pathlib import Path

import pytest
import pytest_asyncio

# Add src directory to path so imports work
src_path = Path(__file__).parent.parent / "src"
sys.path.insert(0, str(src_path))

from interchat.cache.memory_store import MemoryCacheStore  # noqa: E402
from interchat.configuration.settings_sections import CallingSettings, NetworkSettings  # noqa: E402


class FakeClock:
    """Monotonic clock the memory store reads; advanced by hand."""

    def __init__(self, start: float = 1000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def store(clock):
    return MemoryCacheStore(clock=clock)


@pytest.fixture
def calling_settings():
    return CallingSettings({"queue_timeout_secs": 60, "max_queue_size": 10, "max_cached_messages": 5})


@pytest.fixture
def network_settings():
    return NetworkSettings({})


@pytest_asyncio.fixture
async def database(tmp_path):
    """A real Database on a temporary SQLite file."""
    from interchat.database.database import Database

    db = Database(tmp_path / "interchat.db")
    assert await db.initialize()
    yield db
    await db.shutdown()
