"""
hiztery - A personal shell command-history store.

hiztery records executed shell commands (text, timing, exit status, working
directory, session) in a local SQLite database and answers listing, ranged
and search queries against it:
- Prefix, full-text and fuzzy search, newest row per distinct command
- Idempotent inserts and all-or-nothing bulk import
- A single async interface (HistoryDatabase) over the storage backend

Example usage:
    $ hiztery import ~/.config/nushell/history.txt
    $ hiztery search "git co" --mode fuzzy --limit 10
    $ hiztery list --unique
"""

__version__ = "0.1.0"
__author__ = "hiztery Contributors"

__all__ = [
    "__version__",
    "__author__",
]
