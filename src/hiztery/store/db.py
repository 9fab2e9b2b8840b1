"""
SQLite storage for hiztery.

This module provides persistent storage for shell command history. All rows
live in a single SQLite database file opened in WAL mode, so readers are not
blocked while a write is in flight.

Design Principles:
    - Idempotent: re-saving an identical (timestamp, cwd, command) is a no-op
    - Atomic: bulk inserts commit as one transaction or not at all
    - Parameterized: user text is always bound, never formatted into SQL
    - Newest wins: deduplicated reads keep the latest row per command

Tables:
    - history_items: One row per executed command
    - performance_items: Latency samples keyed to a history row
"""

from __future__ import annotations

import logging
import sqlite3
from contextlib import asynccontextmanager
from datetime import datetime
from pathlib import Path
from typing import Any, AsyncIterator, Sequence

import aiosqlite
from pydantic import ValidationError

from hiztery.config import Settings, get_settings
from hiztery.errors import (
    InvalidArgumentError,
    NotFoundError,
    StorageReadError,
    StorageUnavailableError,
    StorageWriteError,
    TransactionFailedError,
)
from hiztery.schema import HistoryItem, PerformanceItem, SearchMode, check_int64, to_nanos
from hiztery.store.base import HistoryDatabase
from hiztery.store.pool import MEMORY, ConnectionPool
from hiztery.store.search import SearchRequest

logger = logging.getLogger(__name__)

# SQL for creating tables
CREATE_TABLES_SQL = """
CREATE TABLE IF NOT EXISTS history_items (
    history_id   INTEGER PRIMARY KEY NOT NULL,
    timestamp    INTEGER NOT NULL,
    duration     INTEGER NOT NULL,
    exit_status  INTEGER NOT NULL,
    command      TEXT NOT NULL CHECK (command <> ''),
    cwd          TEXT NOT NULL,
    session_id   INTEGER NOT NULL,
    hostname     TEXT,
    tag          TEXT,

    UNIQUE(timestamp, cwd, command)
);

CREATE INDEX IF NOT EXISTS idx_history_timestamp ON history_items(timestamp);
CREATE INDEX IF NOT EXISTS idx_history_command ON history_items(command);

CREATE TABLE IF NOT EXISTS performance_items (
    perf_id     INTEGER PRIMARY KEY NOT NULL,
    metrics     FLOAT NOT NULL,
    history_id  INTEGER NOT NULL
        REFERENCES history_items(history_id) ON DELETE CASCADE ON UPDATE CASCADE
);

CREATE INDEX IF NOT EXISTS idx_performance_history ON performance_items(history_id);
"""

HISTORY_COLUMNS = (
    "h.history_id, h.timestamp, h.duration, h.exit_status, "
    "h.command, h.cwd, h.session_id, h.hostname, h.tag"
)

SELECT_HISTORY = f"SELECT {HISTORY_COLUMNS} FROM history_items h"

INSERT_HISTORY = """
INSERT INTO history_items (
    timestamp, duration, exit_status, command, cwd, session_id, hostname, tag
) VALUES (?, ?, ?, ?, ?, ?, ?, ?)
ON CONFLICT (timestamp, cwd, command) DO NOTHING
"""

# Keeps only the newest row for each distinct command; history_id breaks
# timestamp ties so exactly one row survives.
NEWEST_PER_COMMAND = """
h.history_id = (
    SELECT n.history_id FROM history_items n
    WHERE n.command = h.command
    ORDER BY n.timestamp DESC, n.history_id DESC
    LIMIT 1
)
"""

NEWEST_FIRST = " ORDER BY h.timestamp DESC, h.history_id DESC"
OLDEST_FIRST = " ORDER BY h.timestamp ASC, h.history_id ASC"


def _item_params(item: HistoryItem) -> tuple[Any, ...]:
    """Insert parameters for an item, in INSERT_HISTORY column order."""
    return (
        item.timestamp,
        item.duration,
        item.exit_status,
        item.command,
        item.cwd,
        item.session_id,
        item.hostname,
        item.tag,
    )


def _row_to_item(row: sqlite3.Row) -> HistoryItem:
    """Map a history_items row to a HistoryItem."""
    keys = row.keys()
    return HistoryItem(
        history_id=row["history_id"],
        timestamp=row["timestamp"],
        duration=row["duration"],
        exit_status=row["exit_status"],
        command=row["command"],
        cwd=row["cwd"],
        session_id=row["session_id"],
        hostname=row["hostname"] if "hostname" in keys else None,
        tag=row["tag"] if "tag" in keys else None,
    )


class SqliteHistory(HistoryDatabase):
    """
    SQLite-backed history store.

    Usage:
        db = await SqliteHistory.open("history.db")
        await db.save(item)
        recent = await db.search("git", SearchMode.FUZZY, limit=10)
        await db.close()

    Or use as async context manager:
        async with await SqliteHistory.open("history.db") as db:
            ...
    """

    def __init__(self, pool: ConnectionPool, db_path: str) -> None:
        """
        Wrap an already configured pool. Use SqliteHistory.open() instead.

        Args:
            pool: Connection pool for the database
            db_path: Path of the database file, or ":memory:"
        """
        self._pool = pool
        self.db_path = db_path

    @classmethod
    async def open(
        cls,
        location: str | Path,
        settings: Settings | None = None,
    ) -> SqliteHistory:
        """
        Open or create a history database and ensure its schema exists.

        Args:
            location: Database file path, or ":memory:"
            settings: Pool and journal settings (defaults to get_settings())

        Returns:
            A ready-to-use store

        Raises:
            StorageUnavailableError: If the file cannot be created, opened
                or initialized
        """
        settings = settings or get_settings()
        db_path = str(location)
        logger.debug("opening sqlite database at %s", db_path)

        if db_path != MEMORY:
            path = Path(db_path).expanduser()
            db_path = str(path)
            try:
                path.parent.mkdir(parents=True, exist_ok=True)
            except OSError as e:
                raise StorageUnavailableError(
                    db_path=db_path,
                    operation="open",
                    underlying_error=str(e),
                ) from e

        pool = ConnectionPool(
            db_path,
            max_size=settings.pool_size,
            busy_timeout=settings.busy_timeout,
            wal_mode=settings.wal_mode,
        )
        store = cls(pool, db_path)
        try:
            await store._init_schema()
        except (sqlite3.Error, OSError) as e:
            await pool.close()
            raise StorageUnavailableError(
                db_path=db_path,
                operation="init_schema",
                underlying_error=str(e),
            ) from e
        return store

    async def _init_schema(self) -> None:
        """Create tables and indexes if they don't exist."""
        logger.debug("running sqlite database setup")
        async with self._pool.connection() as conn:
            await conn.executescript(CREATE_TABLES_SQL)

    async def close(self) -> None:
        """Close all pooled connections."""
        await self._pool.close()

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[aiosqlite.Connection]:
        """
        Run a block inside one write transaction.

        Commits when the block exits normally, rolls back on any exception.
        BEGIN IMMEDIATE takes the write lock up front so concurrent writers
        queue on SQLite's busy timeout instead of failing mid-transaction.
        """
        async with self._pool.connection() as conn:
            try:
                await conn.execute("BEGIN IMMEDIATE")
                yield conn
                await conn.execute("COMMIT")
            except BaseException:
                if conn.in_transaction:
                    await conn.execute("ROLLBACK")
                raise

    # =========================================================================
    # Read Helpers
    # =========================================================================

    async def _fetch_all(
        self,
        operation: str,
        sql: str,
        params: Sequence[Any] = (),
    ) -> list[HistoryItem]:
        """Run a read query and map every row."""
        try:
            async with self._pool.connection() as conn:
                async with conn.execute(sql, tuple(params)) as cursor:
                    rows = await cursor.fetchall()
        except sqlite3.Error as e:
            raise StorageReadError(
                operation=operation,
                underlying_error=str(e),
            ) from e
        return [_row_to_item(row) for row in rows]

    async def _fetch_one(
        self,
        operation: str,
        sql: str,
        params: Sequence[Any] = (),
        history_id: int | None = None,
    ) -> HistoryItem:
        """Run a read query expected to match one row."""
        items = await self._fetch_all(operation, sql, params)
        if not items:
            raise NotFoundError(history_id=history_id, operation=operation)
        return items[0]

    # =========================================================================
    # Write Operations
    # =========================================================================

    async def save(self, item: HistoryItem) -> None:
        """
        Store one history item.

        A row with the same (timestamp, cwd, command) already stored makes
        this a no-op. The assigned id can be discovered with lookup().

        Raises:
            StorageWriteError: If the insert fails for any other reason
        """
        logger.debug("saving history item to sqlite")
        try:
            async with self.transaction() as conn:
                await conn.execute(INSERT_HISTORY, _item_params(item))
        except (sqlite3.Error, OverflowError) as e:
            raise StorageWriteError(
                operation="save",
                underlying_error=str(e),
            ) from e

    async def save_bulk(self, items: Sequence[HistoryItem]) -> None:
        """
        Store many history items in a single transaction.

        Rows already stored (or repeated within the batch) are skipped. Any
        other failure discards the whole batch.

        Raises:
            TransactionFailedError: If the batch could not be committed
        """
        if not items:
            return
        logger.debug("saving %d history items to sqlite", len(items))
        try:
            async with self.transaction() as conn:
                await conn.executemany(INSERT_HISTORY, [_item_params(i) for i in items])
        except (sqlite3.Error, OverflowError) as e:
            raise TransactionFailedError(
                operation="save_bulk",
                batch_size=len(items),
                underlying_error=str(e),
            ) from e

    async def update(self, item: HistoryItem) -> None:
        """
        Replace every column of the row addressed by item.history_id.

        Raises:
            InvalidArgumentError: If the item has no history_id
            NotFoundError: If no row has that id
            StorageWriteError: If the update violates a constraint
        """
        if item.history_id is None:
            raise InvalidArgumentError(
                argument="history_id",
                value=None,
                message="Cannot update a history item that has no history_id",
            )
        logger.debug("updating history item %d", item.history_id)
        try:
            async with self.transaction() as conn:
                cursor = await conn.execute(
                    """
                    UPDATE history_items
                    SET timestamp = ?, duration = ?, exit_status = ?, command = ?,
                        cwd = ?, session_id = ?, hostname = ?, tag = ?
                    WHERE history_id = ?
                    """,
                    (*_item_params(item), item.history_id),
                )
                if cursor.rowcount == 0:
                    raise NotFoundError(history_id=item.history_id, operation="update")
        except (sqlite3.Error, OverflowError) as e:
            raise StorageWriteError(
                operation="update",
                underlying_error=str(e),
            ) from e

    async def delete(self, history_id: int) -> None:
        """
        Delete one row; its performance samples go with it.

        Raises:
            NotFoundError: If no row has that id
        """
        check_int64(history_id, "history_id")
        logger.debug("deleting history item %d", history_id)
        try:
            async with self.transaction() as conn:
                cursor = await conn.execute(
                    "DELETE FROM history_items WHERE history_id = ?",
                    (history_id,),
                )
                if cursor.rowcount == 0:
                    raise NotFoundError(history_id=history_id, operation="delete")
        except sqlite3.Error as e:
            raise StorageWriteError(
                operation="delete",
                underlying_error=str(e),
            ) from e

    # =========================================================================
    # Point Reads
    # =========================================================================

    async def load(self, history_id: int) -> HistoryItem:
        """
        Get a history item by id.

        Raises:
            NotFoundError: If no row has that id
        """
        logger.debug("loading history item %s", history_id)
        check_int64(history_id, "history_id")
        return await self._fetch_one(
            "load",
            f"{SELECT_HISTORY} WHERE h.history_id = ?",
            (history_id,),
            history_id=history_id,
        )

    async def lookup(self, item: HistoryItem) -> HistoryItem:
        """
        Get the stored row with the same (timestamp, cwd, command) as item.

        Raises:
            NotFoundError: If no such row is stored
        """
        return await self._fetch_one(
            "lookup",
            f"{SELECT_HISTORY} WHERE h.timestamp = ? AND h.cwd = ? AND h.command = ?",
            item.identity,
        )

    async def history_count(self) -> int:
        """Total number of history rows."""
        try:
            async with self._pool.connection() as conn:
                async with conn.execute("SELECT COUNT(1) FROM history_items") as cursor:
                    row = await cursor.fetchone()
        except sqlite3.Error as e:
            raise StorageReadError(
                operation="history_count",
                underlying_error=str(e),
            ) from e
        return row[0]

    async def first(self) -> HistoryItem:
        """
        Oldest row whose duration is known (duration >= 0).

        Raises:
            NotFoundError: If there is no such row
        """
        return await self._fetch_one(
            "first",
            f"{SELECT_HISTORY} WHERE h.duration >= 0{OLDEST_FIRST} LIMIT 1",
        )

    async def last(self) -> HistoryItem:
        """
        Newest row whose duration is known (duration >= 0).

        Raises:
            NotFoundError: If there is no such row
        """
        return await self._fetch_one(
            "last",
            f"{SELECT_HISTORY} WHERE h.duration >= 0{NEWEST_FIRST} LIMIT 1",
        )

    # =========================================================================
    # List Reads
    # =========================================================================

    async def list(self, max: int | None = None, unique: bool = False) -> list[HistoryItem]:
        """
        List history, newest first.

        Args:
            max: Maximum number of rows, or None for all
            unique: Keep only the newest row for each distinct command

        Raises:
            InvalidArgumentError: If max is negative
        """
        logger.debug("listing history (max=%s, unique=%s)", max, unique)
        if max is not None and max < 0:
            raise InvalidArgumentError(argument="max", value=max)
        if max is not None:
            check_int64(max, "max")

        sql = SELECT_HISTORY
        params: list[Any] = []
        if unique:
            sql += f" WHERE {NEWEST_PER_COMMAND}"
        sql += NEWEST_FIRST
        if max is not None:
            sql += " LIMIT ?"
            params.append(max)

        return await self._fetch_all("list", sql, params)

    async def range(
        self,
        start: datetime | int,
        end: datetime | int,
    ) -> list[HistoryItem]:
        """
        Rows with start <= timestamp <= end, oldest first.

        Raises:
            InvalidArgumentError: If a bound is not a time or start > end
        """
        start_ns = to_nanos(start, "start")
        end_ns = to_nanos(end, "end")
        logger.debug("listing history from %s to %s", start_ns, end_ns)
        if start_ns > end_ns:
            raise InvalidArgumentError(
                argument="range",
                value=f"{start} > {end}",
                message="Range start must not be after range end",
            )
        return await self._fetch_all(
            "range",
            f"{SELECT_HISTORY} WHERE h.timestamp >= ? AND h.timestamp <= ?{OLDEST_FIRST}",
            (start_ns, end_ns),
        )

    async def before(self, timestamp: datetime | int, count: int) -> list[HistoryItem]:
        """
        Up to count rows strictly older than timestamp, newest first.

        Raises:
            InvalidArgumentError: If count is negative
        """
        ts = to_nanos(timestamp)
        if count < 0:
            raise InvalidArgumentError(argument="count", value=count)
        check_int64(count, "count")
        return await self._fetch_all(
            "before",
            f"{SELECT_HISTORY} WHERE h.timestamp < ?{NEWEST_FIRST} LIMIT ?",
            (ts, count),
        )

    async def search(
        self,
        query: str,
        mode: SearchMode | str = SearchMode.PREFIX,
        limit: int | None = None,
    ) -> list[HistoryItem]:
        """
        Search command text, returning the newest row per distinct command.

        Args:
            query: Query text; "*" matches any sequence of characters
            mode: Prefix, full-text or fuzzy matching
            limit: Maximum rows to return, applied after ordering

        Raises:
            InvalidArgumentError: On an unknown mode or negative limit
        """
        request = SearchRequest.create(query, mode, limit)
        logger.debug("searching history (%s): %r", request.mode.value, request.query)

        sql = f"{SELECT_HISTORY} WHERE h.command GLOB ? AND {NEWEST_PER_COMMAND}{NEWEST_FIRST}"
        params: list[Any] = [request.pattern]
        if request.limit is not None:
            sql += " LIMIT ?"
            params.append(request.limit)

        return await self._fetch_all("search", sql, params)

    async def query_history(
        self,
        sql: str,
        params: Sequence[Any] = (),
    ) -> list[HistoryItem]:
        """
        Run a caller-supplied query for ad-hoc inspection.

        The connection is switched to query_only for the duration of the
        call, so SQLite refuses any statement that would write.

        Raises:
            InvalidArgumentError: If the statement is rejected or its rows
                are not history rows
        """
        logger.debug("running ad-hoc query: %s", sql)
        async with self._pool.connection() as conn:
            await conn.execute("PRAGMA query_only=ON")
            try:
                async with conn.execute(sql, tuple(params)) as cursor:
                    rows = await cursor.fetchall()
            except sqlite3.Error as e:
                raise InvalidArgumentError(
                    argument="sql",
                    value=sql,
                    message=f"Query rejected: {e}",
                ) from e
            finally:
                if conn.in_transaction:
                    await conn.execute("ROLLBACK")
                await conn.execute("PRAGMA query_only=OFF")

        try:
            return [_row_to_item(row) for row in rows]
        except (IndexError, ValidationError) as e:
            raise InvalidArgumentError(
                argument="sql",
                value=sql,
                message=f"Query did not return history rows: {e}",
            ) from e

    # =========================================================================
    # Performance Samples
    # =========================================================================

    async def save_performance(self, history_id: int, metrics: float) -> int:
        """
        Record a latency sample (milliseconds) for a history row.

        Returns:
            The new perf_id

        Raises:
            NotFoundError: If the history row does not exist
        """
        check_int64(history_id, "history_id")
        try:
            async with self.transaction() as conn:
                async with conn.execute(
                    "SELECT 1 FROM history_items WHERE history_id = ?",
                    (history_id,),
                ) as cursor:
                    if await cursor.fetchone() is None:
                        raise NotFoundError(history_id=history_id, operation="save_performance")
                cursor = await conn.execute(
                    "INSERT INTO performance_items (metrics, history_id) VALUES (?, ?)",
                    (metrics, history_id),
                )
                return cursor.lastrowid
        except sqlite3.Error as e:
            raise StorageWriteError(
                operation="save_performance",
                underlying_error=str(e),
            ) from e

    async def performance(self, history_id: int) -> list[PerformanceItem]:
        """Latency samples for a history row, oldest first."""
        check_int64(history_id, "history_id")
        try:
            async with self._pool.connection() as conn:
                async with conn.execute(
                    """
                    SELECT perf_id, metrics, history_id FROM performance_items
                    WHERE history_id = ?
                    ORDER BY perf_id
                    """,
                    (history_id,),
                ) as cursor:
                    rows = await cursor.fetchall()
        except sqlite3.Error as e:
            raise StorageReadError(
                operation="performance",
                underlying_error=str(e),
            ) from e
        return [
            PerformanceItem(
                perf_id=row["perf_id"],
                metrics=row["metrics"],
                history_id=row["history_id"],
            )
            for row in rows
        ]
