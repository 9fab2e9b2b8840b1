"""
Abstract interface for history stores.

Callers (the CLI, the importer, anything embedding hiztery) depend on
HistoryDatabase rather than on a concrete backend. SqliteHistory is the
production implementation.

Ordering contract for every read that returns a list:
    - list, before, search: newest first
    - range: oldest first
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from datetime import datetime
from typing import Any, Sequence

from hiztery.schema import HistoryItem, SearchMode


class HistoryDatabase(ABC):
    """
    Abstract base class for history stores.

    All methods are coroutines. Failures are raised as HizteryError
    subclasses and never swallowed.
    """

    @abstractmethod
    async def save(self, item: HistoryItem) -> None:
        """Store one item; an identical (timestamp, cwd, command) is a no-op."""

    @abstractmethod
    async def save_bulk(self, items: Sequence[HistoryItem]) -> None:
        """Store many items in one transaction, all or nothing."""

    @abstractmethod
    async def load(self, history_id: int) -> HistoryItem:
        """Fetch one item by id, raising NotFoundError if absent."""

    @abstractmethod
    async def list(self, max: int | None = None, unique: bool = False) -> list[HistoryItem]:
        """List items newest first, optionally capped and deduplicated by command."""

    @abstractmethod
    async def range(
        self,
        start: datetime | int,
        end: datetime | int,
    ) -> list[HistoryItem]:
        """Items with start <= timestamp <= end, oldest first."""

    @abstractmethod
    async def update(self, item: HistoryItem) -> None:
        """Replace the row addressed by item.history_id."""

    @abstractmethod
    async def delete(self, history_id: int) -> None:
        """Remove one row and its dependent performance rows."""

    @abstractmethod
    async def history_count(self) -> int:
        """Total number of stored rows."""

    @abstractmethod
    async def first(self) -> HistoryItem:
        """Oldest row with a known duration."""

    @abstractmethod
    async def last(self) -> HistoryItem:
        """Newest row with a known duration."""

    @abstractmethod
    async def before(self, timestamp: datetime | int, count: int) -> list[HistoryItem]:
        """Up to count rows strictly older than timestamp, newest first."""

    @abstractmethod
    async def search(
        self,
        query: str,
        mode: SearchMode | str = SearchMode.PREFIX,
        limit: int | None = None,
    ) -> list[HistoryItem]:
        """Newest row per distinct matching command, newest first."""

    @abstractmethod
    async def query_history(
        self,
        sql: str,
        params: Sequence[Any] = (),
    ) -> list[HistoryItem]:
        """Run a caller-supplied read-only query returning history rows."""

    @abstractmethod
    async def close(self) -> None:
        """Release all resources held by the store."""

    async def __aenter__(self) -> "HistoryDatabase":
        """Enter async context manager."""
        return self

    async def __aexit__(self, *args: Any) -> None:
        """Exit async context manager."""
        await self.close()
