"""
Search pattern building for history queries.

Every mode is answered by a single GLOB predicate on history_items.command.
GLOB is case-sensitive, and the pattern is always bound as a parameter, so
user text never becomes SQL text.

Pattern rules:
    - "*" in a query is the any-sequence wildcard in every mode
    - "?" and "[" are matched literally
    - PREFIX:   "<query>*"
    - FULLTEXT: "*<query>*"
    - FUZZY:    characters joined by "*"; each space in the query splits a
                fragment and must be matched by a space in the command
"""

from dataclasses import dataclass

from hiztery.errors import InvalidArgumentError
from hiztery.schema import SearchMode, check_int64


WILDCARD = "*"

# GLOB metacharacters other than the wildcard, with their literal forms
_GLOB_LITERALS = {
    "?": "[?]",
    "[": "[[]",
}


def escape_glob(text: str) -> str:
    """Escape GLOB metacharacters in text, keeping '*' as a wildcard."""
    return "".join(_GLOB_LITERALS.get(ch, ch) for ch in text)


def fuzzy_fragment(fragment: str) -> str:
    """Pattern matching the characters of a fragment as a subsequence."""
    return WILDCARD.join(escape_glob(ch) for ch in fragment)


def build_pattern(query: str, mode: SearchMode) -> str:
    """
    Build the GLOB pattern for a query in the given mode.

    Args:
        query: Raw query text (not trimmed)
        mode: Matching strategy

    Returns:
        A GLOB pattern to bind against the command column
    """
    if mode is SearchMode.PREFIX:
        return escape_glob(query) + WILDCARD
    if mode is SearchMode.FULLTEXT:
        return WILDCARD + escape_glob(query) + WILDCARD

    # Fuzzy: fragments must appear in order, each separated by a space
    fragments = [fuzzy_fragment(part) for part in query.split(" ")]
    return WILDCARD + f"{WILDCARD} {WILDCARD}".join(fragments) + WILDCARD


@dataclass(frozen=True)
class SearchRequest:
    """
    A validated search call.

    Attributes:
        query: Raw query text
        mode: Resolved search mode
        limit: Maximum rows to return, or None for all
    """

    query: str
    mode: SearchMode
    limit: int | None = None

    @classmethod
    def create(
        cls,
        query: str,
        mode: SearchMode | str = SearchMode.PREFIX,
        limit: int | None = None,
    ) -> "SearchRequest":
        """
        Validate search arguments before any query runs.

        Raises:
            InvalidArgumentError: On an unknown mode, a negative limit or a
                non-string query
        """
        resolved = SearchMode.parse(mode)
        if not isinstance(query, str):
            raise InvalidArgumentError(argument="query", value=query)
        if limit is not None and limit < 0:
            raise InvalidArgumentError(
                argument="limit",
                value=limit,
                message=f"Search limit must be non-negative, got {limit}",
            )
        if limit is not None:
            check_int64(limit, "limit")
        return cls(query=query, mode=resolved, limit=limit)

    @property
    def pattern(self) -> str:
        """GLOB pattern for this request."""
        return build_pattern(self.query, self.mode)
