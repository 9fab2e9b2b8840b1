"""
CLI entry point for hiztery.

This module provides the Typer-based command-line interface for hiztery.
Every command opens the store, makes one or a few HistoryDatabase calls and
renders the result.

Commands:
    insert      Record a command (optionally several times, with timing)
    update      Replace the command text of a stored row
    delete      Delete a stored row
    list        List recent history (alias: select)
    all         List every stored row
    search      Prefix, full-text or fuzzy search
    count       Number of stored rows
    first/last  Oldest / newest row with a known duration
    load        Show one row by id
    range       Rows between two times
    before      Rows older than a time
    query       Read-only ad-hoc SQL returning history rows
    import      Bulk import a line-oriented history file

Architecture Note:
    The CLI is thin. All behaviour lives in the store, which can be used
    programmatically without the CLI.
"""

import asyncio
import json
import logging
import socket
import time
from datetime import datetime
from pathlib import Path
from typing import Annotated, Any, Coroutine, Optional

import typer
from pydantic import ValidationError
from rich.console import Console
from rich.logging import RichHandler
from rich.markup import escape
from rich.table import Table

from hiztery import __version__
from hiztery.config import get_settings
from hiztery.errors import HizteryError, InvalidArgumentError
from hiztery.importer import import_history
from hiztery.schema import HistoryItem, SearchMode, now_nanos, to_nanos
from hiztery.store import SqliteHistory

# Initialize Typer app with metadata
app = typer.Typer(
    name="hiztery",
    help="Record and search your shell command history.",
    add_completion=False,
    no_args_is_help=True,
)

# Rich console for formatted output
console = Console()

logger = logging.getLogger(__name__)


# =============================================================================
# Shared Options
# =============================================================================

DbOption = Annotated[
    Optional[Path],
    typer.Option(
        "--db",
        help="Path to the history database. Defaults to HIZTERY_DB_PATH.",
    ),
]

JsonOption = Annotated[
    bool,
    typer.Option(
        "--json",
        help="Output results in JSON format.",
    ),
]

SessionOption = Annotated[
    Optional[int],
    typer.Option(
        "--session-id",
        help="Session id to record. Defaults to HIZTERY_SESSION_ID.",
    ),
]


def version_callback(value: bool) -> None:
    """Print version and exit."""
    if value:
        console.print(f"[bold]hiztery[/bold] version {__version__}")
        raise typer.Exit()


def configure_logging(verbose: bool = False, log_file: Path | None = None) -> None:
    """
    Send hiztery's logs to stderr, and optionally to a file.

    Handlers are replaced on every call so repeated invocations in one
    process don't stack them.
    """
    settings = get_settings()
    level = logging.DEBUG if verbose else getattr(logging, settings.log_level)

    root = logging.getLogger("hiztery")
    for handler in list(root.handlers):
        root.removeHandler(handler)
        handler.close()
    root.setLevel(level)
    root.propagate = False

    root.addHandler(
        RichHandler(console=Console(stderr=True), show_path=False, rich_tracebacks=verbose)
    )
    log_file = log_file or settings.log_file
    if log_file is not None:
        log_file.parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(log_file, encoding="utf-8")
        file_handler.setFormatter(
            logging.Formatter("%(asctime)s %(levelname)s %(name)s: %(message)s")
        )
        root.addHandler(file_handler)


@app.callback()
def main(
    version: Annotated[
        Optional[bool],
        typer.Option(
            "--version",
            "-V",
            help="Show version and exit.",
            callback=version_callback,
            is_eager=True,
        ),
    ] = None,
    verbose: Annotated[
        bool,
        typer.Option(
            "--verbose",
            "-v",
            help="Enable debug logging.",
        ),
    ] = False,
    log_file: Annotated[
        Optional[Path],
        typer.Option(
            "--log-file",
            help="Also write logs to this file. Defaults to HIZTERY_LOG_FILE.",
        ),
    ] = None,
) -> None:
    """
    hiztery - Personal shell command history.

    Stores executed commands in a local SQLite database and searches them by
    prefix, substring or fuzzy subsequence.
    """
    configure_logging(verbose, log_file)


# =============================================================================
# Helpers
# =============================================================================


def _db_path(db: Path | None) -> Path:
    """Resolve the database path from the option or settings."""
    return db or get_settings().db_path


def _session_id(session_id: int | None) -> int:
    """Resolve the session id from the option or settings."""
    return get_settings().session_id if session_id is None else session_id


def _execute(action: Coroutine[Any, Any, Any], json_output: bool = False) -> Any:
    """
    Run an async store action, turning store errors into exit code 1.
    """
    try:
        return asyncio.run(action)
    except (HizteryError, ValidationError) as e:
        if json_output:
            _output_json_error(e)
        else:
            console.print(f"[red]{escape(str(e))}[/red]")
        raise typer.Exit(code=1)


def _parse_when(value: str, argument: str) -> int:
    """
    Parse an ISO-8601 time or integer nanoseconds.

    Raises:
        InvalidArgumentError: If the value is neither
    """
    text = value.strip()
    if text.lstrip("-").isdigit():
        return to_nanos(int(text), argument)
    try:
        when = datetime.fromisoformat(text)
    except ValueError as e:
        raise InvalidArgumentError(
            argument=argument,
            value=value,
            message=f"Invalid time for {argument}: {value!r}",
            suggestion="Use ISO-8601 (e.g. 2024-05-01T12:00:00) or integer nanoseconds",
        ) from e
    return to_nanos(when, argument)


def _item_dict(item: HistoryItem) -> dict[str, Any]:
    """JSON-ready representation of a history item."""
    data = item.model_dump(mode="json")
    data["started_at"] = item.started_at.isoformat()
    return data


def _format_duration(duration: int) -> str:
    """Render a microsecond duration for display."""
    if duration < 0:
        return "-"
    if duration < 1000:
        return f"{duration}µs"
    if duration < 1_000_000:
        return f"{duration / 1000:.1f}ms"
    return f"{duration / 1_000_000:.2f}s"


def _display_items(items: list[HistoryItem], title: str | None = None) -> None:
    """Display history items as a table."""
    if not items:
        console.print("[dim]No history found.[/dim]")
        return

    table = Table(show_header=True, header_style="bold", title=title)
    table.add_column("ID", style="cyan", justify="right")
    table.add_column("Time")
    table.add_column("Duration", justify="right")
    table.add_column("Exit", justify="right")
    table.add_column("Session", justify="right", style="dim")
    table.add_column("Cwd", style="dim")
    table.add_column("Command")

    for item in items:
        if item.exit_status == 0:
            exit_display = "[green]0[/green]"
        elif item.exit_status < 0:
            exit_display = "[dim]?[/dim]"
        else:
            exit_display = f"[red]{item.exit_status}[/red]"

        table.add_row(
            str(item.history_id),
            item.started_at.strftime("%Y-%m-%d %H:%M:%S"),
            _format_duration(item.duration),
            exit_display,
            str(item.session_id),
            escape(item.cwd),
            escape(item.command),
        )

    console.print(table)


def _output_items(items: list[HistoryItem], json_output: bool, title: str | None = None) -> None:
    """Render items as JSON or a table."""
    if json_output:
        print(json.dumps({"items": [_item_dict(i) for i in items], "count": len(items)}, indent=2))
    else:
        _display_items(items, title)


def _output_item(item: HistoryItem, json_output: bool) -> None:
    """Render a single item as JSON or a table."""
    if json_output:
        print(json.dumps(_item_dict(item), indent=2))
    else:
        _display_items([item])


def _output_json_error(error: Exception) -> None:
    """Output an error in JSON format."""
    if isinstance(error, HizteryError):
        output = {"error": True, **error.to_dict()}
    else:
        output = {
            "error": True,
            "error_type": error.__class__.__name__,
            "message": str(error),
        }
    print(json.dumps(output, indent=2, default=str))


# =============================================================================
# Write Commands
# =============================================================================


@app.command()
def insert(
    command: Annotated[
        str,
        typer.Argument(help="The command text to record."),
    ],
    count: Annotated[
        int,
        typer.Option(
            "--count",
            "-n",
            help="How many rows to insert.",
            min=1,
        ),
    ] = 1,
    cwd: Annotated[
        Optional[str],
        typer.Option(
            "--cwd",
            help="Working directory to record. Defaults to the current directory.",
        ),
    ] = None,
    duration: Annotated[
        int,
        typer.Option(
            "--duration",
            help="Execution time in microseconds (-1 = unknown).",
        ),
    ] = -1,
    exit_status: Annotated[
        int,
        typer.Option(
            "--exit-status",
            help="Process exit code (-1 = unknown).",
        ),
    ] = -1,
    session_id: SessionOption = None,
    db: DbOption = None,
) -> None:
    """
    Record a command, timing each insert into the performance table.

    Example:
        $ hiztery insert "ls -la" --count 5 --exit-status 0
    """
    db_path = _db_path(db)
    session = _session_id(session_id)
    workdir = cwd if cwd is not None else str(Path.cwd())
    hostname = socket.gethostname()

    async def _insert() -> None:
        async with await SqliteHistory.open(db_path) as store:
            last_ts = 0
            for _ in range(count):
                # Timestamps must differ or the rows collapse into one
                last_ts = max(now_nanos(), last_ts + 1)
                item = HistoryItem(
                    timestamp=last_ts,
                    duration=duration,
                    exit_status=exit_status,
                    command=command,
                    cwd=workdir,
                    session_id=session,
                    hostname=hostname,
                )
                started = time.perf_counter()
                await store.save(item)
                insert_ms = (time.perf_counter() - started) * 1000.0

                stored = await store.lookup(item)
                perf_id = await store.save_performance(stored.history_id, insert_ms)
                logger.debug("perf row %d: %.3f ms", perf_id, insert_ms)
                console.print(
                    f"Inserted history item [bold]{stored.history_id}[/bold] "
                    f"in {insert_ms:.3f} ms: {escape(command)}"
                )

    _execute(_insert())


@app.command()
def update(
    history_id: Annotated[
        int,
        typer.Argument(help="Id of the row to update."),
    ],
    command: Annotated[
        str,
        typer.Argument(help="The new command text."),
    ],
    db: DbOption = None,
    json_output: JsonOption = False,
) -> None:
    """
    Replace the command text of a stored row.

    Example:
        $ hiztery update 42 "git status"
    """
    db_path = _db_path(db)

    async def _update() -> HistoryItem:
        async with await SqliteHistory.open(db_path) as store:
            item = await store.load(history_id)
            await store.update(item.model_copy(update={"command": command}))
            return await store.load(history_id)

    item = _execute(_update(), json_output)
    if json_output:
        _output_item(item, json_output)
    else:
        console.print(f"Updated history item [bold]{history_id}[/bold]: {escape(item.command)}")


@app.command()
def delete(
    history_id: Annotated[
        int,
        typer.Argument(help="Id of the row to delete."),
    ],
    db: DbOption = None,
    json_output: JsonOption = False,
) -> None:
    """
    Delete a stored row and its performance samples.

    Example:
        $ hiztery delete 42
    """
    db_path = _db_path(db)

    async def _delete() -> None:
        async with await SqliteHistory.open(db_path) as store:
            await store.delete(history_id)

    _execute(_delete(), json_output)
    if json_output:
        print(json.dumps({"deleted": history_id}))
    else:
        console.print(f"Deleted history item [bold]{history_id}[/bold]")


@app.command("import")
def import_cmd(
    history_file: Annotated[
        Path,
        typer.Argument(help="Line-oriented history file (one command per line)."),
    ],
    session_id: SessionOption = None,
    db: DbOption = None,
    json_output: JsonOption = False,
) -> None:
    """
    Bulk import a history file in a single transaction.

    The first line is treated as the newest; each following line is one
    second older.

    Example:
        $ hiztery import ~/.config/nushell/history.txt
    """
    db_path = _db_path(db)
    session = _session_id(session_id)

    async def _import():
        async with await SqliteHistory.open(db_path) as store:
            return await import_history(store, history_file, session)

    result = _execute(_import(), json_output)
    if json_output:
        print(json.dumps({
            "lines": result.lines,
            "parsed": result.parsed,
            "imported": result.imported,
            "total": result.total,
        }, indent=2))
    else:
        console.print(
            f"Imported [bold]{result.imported}[/bold] of {result.parsed} entries "
            f"from {escape(str(history_file))}"
        )
        console.print(f"[dim]Lines: {result.lines} | Total rows: {result.total}[/dim]")


# =============================================================================
# Read Commands
# =============================================================================


def list_history(
    limit: Annotated[
        int,
        typer.Option(
            "--limit",
            "-n",
            help="Maximum number of rows to show.",
            min=0,
        ),
    ] = 20,
    unique: Annotated[
        bool,
        typer.Option(
            "--unique",
            "-u",
            help="Show only the newest row for each distinct command.",
        ),
    ] = False,
    db: DbOption = None,
    json_output: JsonOption = False,
) -> None:
    """
    List recent history, newest first.

    Example:
        $ hiztery list --limit 50 --unique
    """
    db_path = _db_path(db)

    async def _list() -> list[HistoryItem]:
        async with await SqliteHistory.open(db_path) as store:
            return await store.list(max=limit, unique=unique)

    _output_items(_execute(_list(), json_output), json_output)


app.command("list")(list_history)
app.command("select")(list_history)


@app.command("all")
def all_history(
    db: DbOption = None,
    json_output: JsonOption = False,
) -> None:
    """
    List every stored row, newest first.

    Example:
        $ hiztery all --json
    """
    db_path = _db_path(db)

    async def _all() -> list[HistoryItem]:
        async with await SqliteHistory.open(db_path) as store:
            return await store.list()

    _output_items(_execute(_all(), json_output), json_output)


@app.command()
def search(
    query: Annotated[
        str,
        typer.Argument(help="Search text; '*' matches any sequence."),
    ],
    mode: Annotated[
        str,
        typer.Option(
            "--mode",
            "-m",
            help="Matching mode: prefix, fulltext or fuzzy.",
        ),
    ] = SearchMode.PREFIX.value,
    limit: Annotated[
        Optional[int],
        typer.Option(
            "--limit",
            "-n",
            help="Maximum number of results.",
        ),
    ] = None,
    db: DbOption = None,
    json_output: JsonOption = False,
) -> None:
    """
    Search history; one row (the newest) per distinct command.

    Example:
        $ hiztery search "git co" --mode fuzzy --limit 10
    """
    db_path = _db_path(db)

    async def _search() -> list[HistoryItem]:
        async with await SqliteHistory.open(db_path) as store:
            return await store.search(query, mode, limit)

    _output_items(_execute(_search(), json_output), json_output)


@app.command()
def count(
    db: DbOption = None,
    json_output: JsonOption = False,
) -> None:
    """
    Show the number of stored rows.

    Example:
        $ hiztery count
    """
    db_path = _db_path(db)

    async def _count() -> int:
        async with await SqliteHistory.open(db_path) as store:
            return await store.history_count()

    total = _execute(_count(), json_output)
    if json_output:
        print(json.dumps({"count": total}))
    else:
        console.print(f"{total} history items")


@app.command()
def first(
    db: DbOption = None,
    json_output: JsonOption = False,
) -> None:
    """Show the oldest row with a known duration."""
    db_path = _db_path(db)

    async def _first() -> HistoryItem:
        async with await SqliteHistory.open(db_path) as store:
            return await store.first()

    _output_item(_execute(_first(), json_output), json_output)


@app.command()
def last(
    db: DbOption = None,
    json_output: JsonOption = False,
) -> None:
    """Show the newest row with a known duration."""
    db_path = _db_path(db)

    async def _last() -> HistoryItem:
        async with await SqliteHistory.open(db_path) as store:
            return await store.last()

    _output_item(_execute(_last(), json_output), json_output)


@app.command()
def load(
    history_id: Annotated[
        int,
        typer.Argument(help="Id of the row to show."),
    ],
    db: DbOption = None,
    json_output: JsonOption = False,
) -> None:
    """Show one row by id."""
    db_path = _db_path(db)

    async def _load() -> HistoryItem:
        async with await SqliteHistory.open(db_path) as store:
            return await store.load(history_id)

    _output_item(_execute(_load(), json_output), json_output)


@app.command("range")
def range_history(
    start: Annotated[
        str,
        typer.Argument(help="Range start, ISO-8601 or nanoseconds (inclusive)."),
    ],
    end: Annotated[
        str,
        typer.Argument(help="Range end, ISO-8601 or nanoseconds (inclusive)."),
    ],
    db: DbOption = None,
    json_output: JsonOption = False,
) -> None:
    """
    Show rows between two times, oldest first.

    Example:
        $ hiztery range 2024-05-01 2024-05-02T00:00:00
    """
    db_path = _db_path(db)

    async def _range() -> list[HistoryItem]:
        start_ns = _parse_when(start, "start")
        end_ns = _parse_when(end, "end")
        async with await SqliteHistory.open(db_path) as store:
            return await store.range(start_ns, end_ns)

    _output_items(_execute(_range(), json_output), json_output)


@app.command()
def before(
    when: Annotated[
        str,
        typer.Argument(help="Upper bound, ISO-8601 or nanoseconds (exclusive)."),
    ],
    count: Annotated[
        int,
        typer.Option(
            "--count",
            "-n",
            help="Maximum number of rows.",
            min=0,
        ),
    ] = 10,
    db: DbOption = None,
    json_output: JsonOption = False,
) -> None:
    """
    Show rows older than a time, newest first.

    Example:
        $ hiztery before 2024-05-01T12:00:00 --count 5
    """
    db_path = _db_path(db)

    async def _before() -> list[HistoryItem]:
        ts = _parse_when(when, "when")
        async with await SqliteHistory.open(db_path) as store:
            return await store.before(ts, count)

    _output_items(_execute(_before(), json_output), json_output)


@app.command()
def query(
    sql: Annotated[
        str,
        typer.Argument(help="A single read-only SQL statement returning history rows."),
    ],
    db: DbOption = None,
    json_output: JsonOption = False,
) -> None:
    """
    Run a read-only ad-hoc query against history_items.

    Example:
        $ hiztery query "SELECT * FROM history_items WHERE exit_status <> 0"
    """
    db_path = _db_path(db)

    async def _query() -> list[HistoryItem]:
        async with await SqliteHistory.open(db_path) as store:
            return await store.query_history(sql)

    _output_items(_execute(_query(), json_output), json_output)


if __name__ == "__main__":
    app()
