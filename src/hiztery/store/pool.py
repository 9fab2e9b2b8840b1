"""
Bounded aiosqlite connection pool.

Connections are opened lazily up to max_size and handed out one task at a
time. Every connection is configured the same way: autocommit mode (the
store issues BEGIN/COMMIT itself), foreign keys on, a busy timeout, and WAL
journaling for file databases.
"""

import asyncio
import logging
import sqlite3
from contextlib import asynccontextmanager
from typing import AsyncIterator

import aiosqlite

from hiztery.errors import StorageUnavailableError

logger = logging.getLogger(__name__)

MEMORY = ":memory:"


class ConnectionPool:
    """
    A fixed-capacity pool of aiosqlite connections to one database.

    Usage:
        pool = ConnectionPool("history.db", max_size=4)
        async with pool.connection() as conn:
            await conn.execute("SELECT 1")
        await pool.close()

    An in-memory database is pinned to a single connection, since every
    SQLite ":memory:" connection is a separate database.
    """

    def __init__(
        self,
        database: str,
        max_size: int = 4,
        busy_timeout: float = 5.0,
        wal_mode: bool = True,
    ) -> None:
        self.database = database
        self.max_size = 1 if database == MEMORY else max(1, max_size)
        self.busy_timeout = busy_timeout
        self.wal_mode = wal_mode and database != MEMORY
        self._idle: asyncio.Queue[aiosqlite.Connection] = asyncio.Queue()
        self._all: list[aiosqlite.Connection] = []
        self._lock = asyncio.Lock()
        self._closed = False

    @property
    def size(self) -> int:
        """Number of connections opened so far."""
        return len(self._all)

    async def _open(self) -> aiosqlite.Connection:
        """Open and configure one connection."""
        conn = await aiosqlite.connect(
            self.database,
            timeout=self.busy_timeout,
            isolation_level=None,
        )
        try:
            conn.row_factory = aiosqlite.Row
            if self.wal_mode:
                await conn.execute("PRAGMA journal_mode=WAL")
            await conn.execute("PRAGMA foreign_keys=ON")
            await conn.execute(f"PRAGMA busy_timeout={int(self.busy_timeout * 1000)}")
        except Exception:
            await conn.close()
            raise
        logger.debug("opened connection %d to %s", len(self._all) + 1, self.database)
        return conn

    async def acquire(self) -> aiosqlite.Connection:
        """Take an idle connection, opening a new one while under capacity."""
        if self._closed:
            raise StorageUnavailableError(
                db_path=self.database,
                operation="acquire",
                underlying_error="connection pool is closed",
            )
        try:
            return self._idle.get_nowait()
        except asyncio.QueueEmpty:
            pass

        async with self._lock:
            if len(self._all) < self.max_size:
                conn = await self._open()
                self._all.append(conn)
                return conn

        return await self._idle.get()

    def release(self, conn: aiosqlite.Connection) -> None:
        """Return a connection to the pool."""
        if not self._closed:
            self._idle.put_nowait(conn)

    async def _recycle(self, conn: aiosqlite.Connection) -> None:
        """
        Return a connection to the pool with no transaction left open.

        Statements run in order on the connection's worker thread, so once a
        trivial query completes, anything a cancelled caller queued before it
        (such as a BEGIN still waiting for the write lock) has finished too.
        A connection that cannot be reset is closed instead of reused.
        """
        if self._closed:
            return
        try:
            async with conn.execute("SELECT 1"):
                pass
            if conn.in_transaction:
                logger.debug("rolling back abandoned transaction on %s", self.database)
                await conn.execute("ROLLBACK")
        except sqlite3.Error as e:
            logger.warning("discarding connection to %s: %s", self.database, e)
            self._all.remove(conn)
            await conn.close()
            return
        self.release(conn)

    @asynccontextmanager
    async def connection(self) -> AsyncIterator[aiosqlite.Connection]:
        """Context manager that acquires and releases a connection."""
        conn = await self.acquire()
        try:
            yield conn
        finally:
            # Shielded so a cancelled caller still hands back a clean connection
            await asyncio.shield(self._recycle(conn))

    async def close(self) -> None:
        """Close every connection the pool has opened."""
        if self._closed:
            return
        self._closed = True
        for conn in self._all:
            await conn.close()
        logger.debug("closed %d connections to %s", len(self._all), self.database)
        self._all.clear()
