"""
Schema definitions for hiztery.

This module defines the models exchanged between the store and its callers:
- HistoryItem: One executed shell command
- PerformanceItem: A latency sample recorded against a history row
- SearchMode: How a search query is matched against command text

Timestamps are integers counting nanoseconds since the Unix epoch (UTC),
which is also how they are stored. Helpers convert to and from aware
datetimes at the edges.
"""

import time
from datetime import UTC, datetime, timedelta
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator

from hiztery.errors import InvalidArgumentError


EPOCH = datetime(1970, 1, 1, tzinfo=UTC)

# SQLite INTEGER is a signed 64-bit value
INT64_MIN = -(2**63)
INT64_MAX = 2**63 - 1

# Sentinel for duration and exit status when the real value is not known,
# e.g. rows created by a history import.
UNKNOWN = -1


# =============================================================================
# Time Helpers
# =============================================================================


def _datetime_nanos(value: datetime) -> int:
    """Nanoseconds since the epoch for a datetime, naive taken as UTC."""
    if value.tzinfo is None:
        value = value.replace(tzinfo=UTC)
    return (value - EPOCH) // timedelta(microseconds=1) * 1000


def check_int64(value: int, argument: str) -> int:
    """
    Ensure an integer fits a SQLite INTEGER column.

    Raises:
        InvalidArgumentError: If the value is outside the signed 64-bit range
    """
    if not INT64_MIN <= value <= INT64_MAX:
        raise InvalidArgumentError(
            argument=argument,
            value=value,
            message=f"{argument} out of range for a 64-bit integer: {value}",
        )
    return value


def to_nanos(value: Any, argument: str = "timestamp") -> int:
    """
    Convert a datetime or nanosecond integer to nanoseconds since the epoch.

    Naive datetimes are taken to be UTC. The result must fit in a signed
    64-bit integer, which covers roughly the years 1677 to 2262.

    Raises:
        InvalidArgumentError: If the value is neither a datetime nor an int,
            or falls outside the representable range
    """
    if isinstance(value, datetime):
        return check_int64(_datetime_nanos(value), argument)
    if isinstance(value, int) and not isinstance(value, bool):
        return check_int64(value, argument)
    raise InvalidArgumentError(argument=argument, value=value)


def from_nanos(ns: int) -> datetime:
    """Convert nanoseconds since the epoch to an aware UTC datetime."""
    return EPOCH + timedelta(microseconds=ns // 1000)


def now_nanos() -> int:
    """Current wall-clock time in nanoseconds since the epoch."""
    return time.time_ns()


# =============================================================================
# Enums
# =============================================================================


class SearchMode(str, Enum):
    """
    Matching strategy for history search.

    PREFIX matches commands that start with the query, FULLTEXT matches the
    query anywhere in the command, FUZZY matches the query's characters as an
    ordered subsequence.
    """

    PREFIX = "prefix"
    FULLTEXT = "fulltext"
    FUZZY = "fuzzy"

    @classmethod
    def parse(cls, value: "SearchMode | str") -> "SearchMode":
        """
        Resolve a mode from a member or a case-insensitive name.

        Raises:
            InvalidArgumentError: If the value names no mode
        """
        if isinstance(value, cls):
            return value
        if isinstance(value, str):
            key = value.strip().lower().replace("-", "").replace("_", "")
            for mode in cls:
                if mode.value == key:
                    return mode
        raise InvalidArgumentError(
            argument="search_mode",
            value=value,
            suggestion=f"Use one of: {', '.join(m.value for m in cls)}",
        )


# =============================================================================
# History Models
# =============================================================================


class HistoryItem(BaseModel):
    """
    One row of executed-command history.

    Rows are unique on (timestamp, cwd, command); saving the same triple
    twice stores it once. The history_id is assigned by the store and is
    the only way to address a row for update or delete.

    Attributes:
        history_id: Surrogate key, None until the row has been stored
        timestamp: When the command ran, nanoseconds since the epoch (UTC)
        duration: Execution time in microseconds, -1 if unknown
        exit_status: Process exit code, -1 if unknown
        command: The literal command text
        cwd: Working directory at invocation time
        session_id: Shell session the command belongs to
        hostname: Optional host the command ran on
        tag: Optional free-form label
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    history_id: int | None = Field(
        default=None,
        description="Surrogate key assigned by the store",
        ge=INT64_MIN,
        le=INT64_MAX,
    )
    timestamp: int = Field(
        ...,
        description="Nanoseconds since the Unix epoch (UTC)",
        ge=INT64_MIN,
        le=INT64_MAX,
    )
    duration: int = Field(
        default=UNKNOWN,
        description="Execution time in microseconds (-1 = unknown)",
        ge=UNKNOWN,
        le=INT64_MAX,
    )
    exit_status: int = Field(
        default=UNKNOWN,
        description="Process exit code (-1 = unknown)",
        ge=INT64_MIN,
        le=INT64_MAX,
    )
    command: str = Field(
        ...,
        description="Literal command text",
        min_length=1,
    )
    cwd: str = Field(
        ...,
        description="Working directory at invocation time",
    )
    session_id: int = Field(
        ...,
        description="Shell session id",
        ge=INT64_MIN,
        le=INT64_MAX,
    )
    hostname: str | None = Field(default=None, description="Host the command ran on")
    tag: str | None = Field(default=None, description="Free-form label")

    @field_validator("timestamp", mode="before")
    @classmethod
    def coerce_timestamp(cls, v: Any) -> Any:
        """Accept datetimes and convert them to nanoseconds."""
        if isinstance(v, datetime):
            return _datetime_nanos(v)
        return v

    @property
    def identity(self) -> tuple[int, str, str]:
        """The (timestamp, cwd, command) uniqueness key."""
        return (self.timestamp, self.cwd, self.command)

    @property
    def started_at(self) -> datetime:
        """Timestamp as an aware UTC datetime (microsecond precision)."""
        return from_nanos(self.timestamp)

    def same_entry(self, other: "HistoryItem") -> bool:
        """Whether both items describe the same stored history entry."""
        return self.identity == other.identity


class PerformanceItem(BaseModel):
    """
    A latency sample for a history row.

    Attributes:
        perf_id: Surrogate key
        metrics: Measured time in milliseconds
        history_id: The history row this sample belongs to
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    perf_id: int = Field(..., description="Surrogate key")
    metrics: float = Field(..., description="Measured time in milliseconds")
    history_id: int = Field(..., description="History row this sample belongs to")
