"""
Exception hierarchy for hiztery.

All hiztery exceptions inherit from HizteryError, allowing callers to catch
every store failure with a single except clause and decide for themselves
whether it is fatal or worth retrying.

Exception Categories:
    - InvalidArgumentError: Bad search mode, bounds, limits or ad-hoc query
    - NotFoundError: Point lookup, update or delete on an absent row
    - StorageUnavailableError: Database cannot be opened, or the pool is closed
    - StorageWriteError / StorageReadError: A single statement failed
    - TransactionFailedError: A bulk insert could not commit

Codes are grouped by range: 3xxx for caller arguments, 4xxx for missing
rows, 5xxx for storage. Storage errors name the failing operation in
context and chain the sqlite3 exception that caused them. The store raises
and leaves retrying to the caller.
"""

from dataclasses import dataclass, field
from typing import Any


# =============================================================================
# Error Codes
# =============================================================================

# Argument errors: 3xxx
ERROR_INVALID_ARGUMENT = 3001

# Lookup errors: 4xxx
ERROR_NOT_FOUND = 4001

# Storage errors: 5xxx
ERROR_STORAGE_UNAVAILABLE = 5001
ERROR_STORAGE_WRITE = 5002
ERROR_STORAGE_READ = 5003
ERROR_TRANSACTION_FAILED = 5004


# =============================================================================
# Base Exception
# =============================================================================


@dataclass
class HizteryError(Exception):
    """
    Base exception for all hiztery errors.

    Attributes:
        message: Human-readable error description
        code: Numeric error code for programmatic handling
        suggestion: Optional hint for how to resolve the error
        context: Optional dict with additional debugging info
    """

    message: str = ""
    code: int = 0
    suggestion: str | None = None
    context: dict[str, Any] = field(default_factory=dict)

    def __str__(self) -> str:
        """Format error for display."""
        parts = [f"[E{self.code}] {self.message}"]
        if self.suggestion:
            parts.append(f"\nSuggestion: {self.suggestion}")
        return "".join(parts)

    def __repr__(self) -> str:
        """Format error for debugging."""
        return (
            f"{self.__class__.__name__}("
            f"message={self.message!r}, "
            f"code={self.code}, "
            f"context={self.context!r})"
        )

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return {
            "error_type": self.__class__.__name__,
            "message": self.message,
            "code": self.code,
            "suggestion": self.suggestion,
            "context": self.context,
        }


# =============================================================================
# Caller Errors
# =============================================================================


@dataclass
class InvalidArgumentError(HizteryError):
    """
    Raised when a caller passes a value the store cannot act on.

    Attributes:
        argument: Name of the offending parameter
        value: The rejected value (stringified for display)
    """

    argument: str = ""
    value: Any = None

    def __post_init__(self) -> None:
        """Set defaults after dataclass init."""
        if not self.message:
            self.message = f"Invalid value for {self.argument}: {self.value!r}"
        if self.code == 0:
            self.code = ERROR_INVALID_ARGUMENT
        self.context.update({
            "argument": self.argument,
            "value": None if self.value is None else str(self.value),
        })


@dataclass
class NotFoundError(HizteryError):
    """
    Raised when a row addressed by id (or identity) does not exist.

    Attributes:
        history_id: The id that was looked up, if the lookup was by id
        operation: The store operation that failed to find a row
    """

    history_id: int | None = None
    operation: str = ""

    def __post_init__(self) -> None:
        """Set defaults after dataclass init."""
        if not self.message:
            if self.history_id is not None:
                self.message = f"History item not found: {self.history_id}"
            else:
                self.message = "No matching history item"
        if self.code == 0:
            self.code = ERROR_NOT_FOUND
        self.context.update({
            "history_id": self.history_id,
            "operation": self.operation,
        })


# =============================================================================
# Storage Errors
# =============================================================================


@dataclass
class StorageError(HizteryError):
    """
    Base class for storage/database errors.

    Attributes:
        operation: The operation that failed (e.g., "save", "range")
    """

    operation: str = ""

    def __post_init__(self) -> None:
        """Set defaults after dataclass init."""
        self.context["operation"] = self.operation


@dataclass
class StorageUnavailableError(StorageError):
    """Raised when the database cannot be opened or its pool is closed."""

    db_path: str = ""
    underlying_error: str = ""

    def __post_init__(self) -> None:
        """Set defaults after dataclass init."""
        if not self.message:
            self.message = f"Database unavailable: {self.db_path}"
            if self.underlying_error:
                self.message += f" ({self.underlying_error})"
        if self.code == 0:
            self.code = ERROR_STORAGE_UNAVAILABLE
        if not self.suggestion:
            self.suggestion = "Check that the database path is writable and not corrupted"
        super().__post_init__()
        self.context.update({
            "db_path": self.db_path,
            "underlying_error": self.underlying_error,
        })


@dataclass
class StorageWriteError(StorageError):
    """Raised when a write operation fails."""

    underlying_error: str = ""

    def __post_init__(self) -> None:
        """Set defaults after dataclass init."""
        if not self.message:
            self.message = f"Database write failed: {self.underlying_error}"
        if self.code == 0:
            self.code = ERROR_STORAGE_WRITE
        super().__post_init__()
        self.context["underlying_error"] = self.underlying_error


@dataclass
class StorageReadError(StorageError):
    """Raised when a read operation fails."""

    underlying_error: str = ""

    def __post_init__(self) -> None:
        """Set defaults after dataclass init."""
        if not self.message:
            self.message = f"Database read failed: {self.underlying_error}"
        if self.code == 0:
            self.code = ERROR_STORAGE_READ
        super().__post_init__()
        self.context["underlying_error"] = self.underlying_error


@dataclass
class TransactionFailedError(StorageError):
    """
    Raised when a multi-row transaction cannot commit.

    The whole batch has been rolled back when this is raised.

    Attributes:
        batch_size: Number of rows that were in the discarded batch
    """

    batch_size: int = 0
    underlying_error: str = ""

    def __post_init__(self) -> None:
        """Set defaults after dataclass init."""
        if not self.message:
            self.message = (
                f"Transaction failed, {self.batch_size} rows discarded: "
                f"{self.underlying_error}"
            )
        if self.code == 0:
            self.code = ERROR_TRANSACTION_FAILED
        if not self.suggestion:
            self.suggestion = "Fix the offending rows and resubmit the batch; stored rows are skipped"
        super().__post_init__()
        self.context.update({
            "batch_size": self.batch_size,
            "underlying_error": self.underlying_error,
        })
