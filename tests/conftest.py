"""
Pytest configuration and fixtures for hiztery tests.

This module provides shared fixtures used across unit and integration
tests.
"""

import tempfile
from pathlib import Path
from typing import AsyncGenerator, Callable, Generator

import pytest
import pytest_asyncio

from hiztery.config import Settings, get_settings
from hiztery.schema import HistoryItem
from hiztery.store import SqliteHistory

# Commands used by the search tests
SEARCH_CORPUS = [
    "ls /home/ellie",
    "ls /home/frank",
    "cd /home/ellie",
    "/home/ellie/.bin/rustup",
]

BASE_TS = 1_700_000_000_000_000_000


@pytest.fixture(autouse=True)
def clear_settings_cache() -> Generator[None, None, None]:
    """Make every test read settings fresh from its own environment."""
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


@pytest.fixture
def temp_dir() -> Generator[Path, None, None]:
    """Create a temporary directory for test files."""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir)


@pytest.fixture
def settings() -> Settings:
    """Settings with a small pool and a short busy timeout."""
    return Settings(pool_size=4, busy_timeout=5.0, wal_mode=True, session_id=0)


@pytest.fixture
def make_item() -> Callable[..., HistoryItem]:
    """Factory for history items with sensible defaults."""

    def _make(
        command: str,
        timestamp: int = BASE_TS,
        cwd: str = "/home/ellie",
        duration: int = 1,
        exit_status: int = 0,
        session_id: int = 1,
        **kwargs,
    ) -> HistoryItem:
        return HistoryItem(
            timestamp=timestamp,
            duration=duration,
            exit_status=exit_status,
            command=command,
            cwd=cwd,
            session_id=session_id,
            **kwargs,
        )

    return _make


@pytest_asyncio.fixture
async def store(settings: Settings) -> AsyncGenerator[SqliteHistory, None]:
    """An in-memory history store."""
    db = await SqliteHistory.open(":memory:", settings)
    yield db
    await db.close()


@pytest_asyncio.fixture
async def file_store(
    temp_dir: Path,
    settings: Settings,
) -> AsyncGenerator[SqliteHistory, None]:
    """A history store backed by a file in a temporary directory."""
    db = await SqliteHistory.open(temp_dir / "history.db", settings)
    yield db
    await db.close()


@pytest_asyncio.fixture
async def corpus_store(
    store: SqliteHistory,
    make_item: Callable[..., HistoryItem],
) -> SqliteHistory:
    """In-memory store holding the search corpus, one second apart."""
    for offset, command in enumerate(SEARCH_CORPUS):
        await store.save(make_item(command, timestamp=BASE_TS + offset * 1_000_000_000))
    return store
