"""
Unit tests for history file import.

Tests cover:
- Line parsing and synthesized timestamps
- Reading files
- Bulk import into a store
"""

from pathlib import Path

import pytest

from hiztery.errors import InvalidArgumentError, NotFoundError
from hiztery.importer import (
    NANOS_PER_SECOND,
    UNKNOWN_CWD,
    count_lines,
    import_history,
    parse_history_lines,
    read_history_file,
)
from hiztery.schema import UNKNOWN
from hiztery.store import SqliteHistory

NOW = 1_700_000_000_000_000_000


@pytest.fixture
def history_file(temp_dir: Path) -> Path:
    """A small bash-style history file with a blank line."""
    path = temp_dir / ".bash_history"
    path.write_text("ls -la\ncd /tmp\n\ngit status   \nls -la\n")
    return path


class TestParseHistoryLines:
    """Tests for parse_history_lines."""

    def test_one_item_per_line(self) -> None:
        """Every non-blank line becomes an item."""
        items = parse_history_lines(["ls\n", "pwd\n"], session_id=7, now=NOW)
        assert [i.command for i in items] == ["ls", "pwd"]
        assert all(i.session_id == 7 for i in items)

    def test_timestamps_step_back(self) -> None:
        """The first line gets now, each later line one second less."""
        items = parse_history_lines(["a\n", "b\n", "c\n"], session_id=1, now=NOW)
        assert [i.timestamp for i in items] == [
            NOW,
            NOW - NANOS_PER_SECOND,
            NOW - 2 * NANOS_PER_SECOND,
        ]

    def test_blank_lines_skipped(self) -> None:
        """Blank lines produce no item but still use up a second."""
        items = parse_history_lines(["a\n", "   \n", "b\n"], session_id=1, now=NOW)
        assert [i.command for i in items] == ["a", "b"]
        assert items[1].timestamp == NOW - 2 * NANOS_PER_SECOND

    def test_unknown_metadata(self) -> None:
        """Imported rows have unknown duration, exit status and cwd."""
        [item] = parse_history_lines(["ls\n"], session_id=1, now=NOW)
        assert item.duration == UNKNOWN
        assert item.exit_status == UNKNOWN
        assert item.cwd == UNKNOWN_CWD

    def test_trailing_whitespace_stripped(self) -> None:
        """Trailing whitespace is dropped; leading whitespace kept."""
        [item] = parse_history_lines(["  echo hi  \r\n"], session_id=1, now=NOW)
        assert item.command == "  echo hi"

    def test_default_now(self) -> None:
        """Without now, the current time is used."""
        [item] = parse_history_lines(["ls\n"], session_id=1)
        assert item.timestamp > NOW


class TestReadHistoryFile:
    """Tests for reading history files."""

    def test_read(self, history_file: Path) -> None:
        """A file is parsed line by line."""
        items = read_history_file(history_file, session_id=3, now=NOW)
        assert [i.command for i in items] == ["ls -la", "cd /tmp", "git status", "ls -la"]

    def test_count_lines(self, history_file: Path) -> None:
        """count_lines counts every line including blanks."""
        assert count_lines(history_file) == 5

    def test_missing_file(self, temp_dir: Path) -> None:
        """A missing file is an invalid argument."""
        with pytest.raises(InvalidArgumentError) as exc_info:
            read_history_file(temp_dir / "nope", session_id=1)
        assert exc_info.value.argument == "path"


class TestImportHistory:
    """Tests for import_history."""

    @pytest.mark.asyncio
    async def test_import(self, store: SqliteHistory, history_file: Path) -> None:
        """All parsed lines are stored."""
        result = await import_history(store, history_file, session_id=3, now=NOW)
        assert result.lines == 5
        assert result.parsed == 4
        assert result.imported == 4
        assert result.total == 4

        items = await store.list()
        assert items[0].command == "ls -la"
        assert items[0].timestamp == NOW

    @pytest.mark.asyncio
    async def test_reimport_skips_existing(self, store: SqliteHistory, history_file: Path) -> None:
        """Importing the same file at the same time adds nothing."""
        await import_history(store, history_file, session_id=3, now=NOW)
        result = await import_history(store, history_file, session_id=3, now=NOW)
        assert result.imported == 0
        assert result.total == 4

    @pytest.mark.asyncio
    async def test_imported_rows_not_first_or_last(
        self,
        store: SqliteHistory,
        history_file: Path,
    ) -> None:
        """Imported rows have unknown duration and stay out of first/last."""
        await import_history(store, history_file, session_id=3, now=NOW)
        with pytest.raises(NotFoundError):
            await store.first()

    @pytest.mark.asyncio
    async def test_empty_file(self, store: SqliteHistory, temp_dir: Path) -> None:
        """An empty file imports nothing."""
        path = temp_dir / "empty"
        path.write_text("")
        result = await import_history(store, path, session_id=1, now=NOW)
        assert result.imported == 0
        assert result.total == 0
