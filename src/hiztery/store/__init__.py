"""
Storage module for hiztery.

This module provides SQLite-based persistence and search for shell command
history. All history lives in one SQLite file in WAL mode.

Tables:
    - history_items: One row per executed command, unique on
      (timestamp, cwd, command)
    - performance_items: Latency samples keyed to a history row

Callers should program against HistoryDatabase; SqliteHistory is the
production implementation.
"""

from hiztery.store.base import HistoryDatabase
from hiztery.store.db import SqliteHistory
from hiztery.store.pool import ConnectionPool
from hiztery.store.search import SearchRequest, build_pattern

__all__ = [
    "ConnectionPool",
    "HistoryDatabase",
    "SearchRequest",
    "SqliteHistory",
    "build_pattern",
]
