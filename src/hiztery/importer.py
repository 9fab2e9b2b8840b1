"""
Import of line-oriented shell history files.

Each non-blank line becomes one HistoryItem. Plain history files carry no
timing information, so timestamps are synthesized: the first line gets the
import time and every following line is one second older. Duration and exit
status are stored as unknown (-1), which also keeps imported rows out of
first()/last().
"""

import logging
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path

from hiztery.errors import InvalidArgumentError
from hiztery.schema import UNKNOWN, HistoryItem, now_nanos, to_nanos
from hiztery.store.base import HistoryDatabase

logger = logging.getLogger(__name__)

NANOS_PER_SECOND = 1_000_000_000
UNKNOWN_CWD = "unknown"


@dataclass
class ImportResult:
    """
    Outcome of a history import.

    Attributes:
        lines: Lines in the source file
        parsed: History items built from non-blank lines
        imported: Rows actually added (duplicates are skipped)
        total: Rows in the store after the import
    """

    lines: int
    parsed: int
    imported: int
    total: int


def _read_lines(path: Path) -> list[str]:
    """Read a text file, mapping I/O failures to InvalidArgumentError."""
    try:
        with path.open(encoding="utf-8", errors="replace") as f:
            return f.readlines()
    except OSError as e:
        raise InvalidArgumentError(
            argument="path",
            value=str(path),
            message=f"Cannot read history file {path}: {e}",
        ) from e


def count_lines(path: Path | str) -> int:
    """Number of lines in a history file."""
    return len(_read_lines(Path(path)))


def parse_history_lines(
    lines: list[str],
    session_id: int,
    now: datetime | int | None = None,
    cwd: str = UNKNOWN_CWD,
) -> list[HistoryItem]:
    """
    Build history items from raw history lines.

    Args:
        lines: Lines in file order
        session_id: Session id to assign to every item
        now: Timestamp for the first line (defaults to the current time)
        cwd: Working directory to record

    Returns:
        One item per non-blank line, timestamps strictly decreasing
    """
    base = now_nanos() if now is None else to_nanos(now)
    items = []
    for idx, line in enumerate(lines):
        command = line.rstrip()
        if not command:
            continue
        items.append(
            HistoryItem(
                timestamp=base - idx * NANOS_PER_SECOND,
                duration=UNKNOWN,
                exit_status=UNKNOWN,
                command=command,
                cwd=cwd,
                session_id=session_id,
            )
        )
    return items


def read_history_file(
    path: Path | str,
    session_id: int,
    now: datetime | int | None = None,
    cwd: str = UNKNOWN_CWD,
) -> list[HistoryItem]:
    """
    Read a line-oriented history file into history items.

    Raises:
        InvalidArgumentError: If the file cannot be read
    """
    return parse_history_lines(_read_lines(Path(path)), session_id, now=now, cwd=cwd)


async def import_history(
    db: HistoryDatabase,
    path: Path | str,
    session_id: int,
    now: datetime | int | None = None,
) -> ImportResult:
    """
    Import a history file into a store with a single bulk save.

    Raises:
        InvalidArgumentError: If the file cannot be read
        TransactionFailedError: If the batch could not be committed
    """
    path = Path(path)
    logger.debug("importing history from %s", path)
    lines = _read_lines(path)
    items = parse_history_lines(lines, session_id, now=now)
    logger.debug("lines: %d, items: %d", len(lines), len(items))

    before = await db.history_count()
    await db.save_bulk(items)
    total = await db.history_count()

    logger.info("imported %d history entries from %s", total - before, path)
    return ImportResult(
        lines=len(lines),
        parsed=len(items),
        imported=total - before,
        total=total,
    )
