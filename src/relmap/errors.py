"""Error taxonomy for the mapping engine.

Every error carries the table and the attempted operation so that callers
never see a raw backing-store failure without context.
"""

from typing import Iterable, List, Optional


class RelmapError(Exception):
    """Base class for all engine errors."""

    def __init__(
        self,
        message: str,
        *,
        table: Optional[str] = None,
        operation: Optional[str] = None,
    ) -> None:
        """Attach table/operation context and build the user-facing message."""
        self.table = table
        self.operation = operation
        self.detail = message
        super().__init__(_with_context(message, table, operation))


def _with_context(message: str, table: Optional[str], operation: Optional[str]) -> str:
    if table and operation:
        return f"[{table}] {operation}: {message}"
    if table:
        return f"[{table}] {message}"
    if operation:
        return f"{operation}: {message}"
    return message


class SchemaError(RelmapError):
    """Malformed or missing table configuration."""


class RelationConfigurationError(SchemaError):
    """Unknown relation name or a relation lacking required configuration."""


class RecordValidationError(RelmapError):
    """Caller data failed validation before any statement was issued."""

    def __init__(
        self,
        message: str,
        *,
        table: Optional[str] = None,
        operation: Optional[str] = None,
        missing_fields: Iterable[str] = (),
        invalid_fields: Iterable[str] = (),
    ) -> None:
        """Record exactly which fields were missing or not declared."""
        self.missing_fields: List[str] = sorted(missing_fields)
        self.invalid_fields: List[str] = sorted(invalid_fields)
        super().__init__(message, table=table, operation=operation)


class RecordNotFoundError(RelmapError):
    """A by-key write targeted a row that does not exist."""

    def __init__(self, key, *, table: Optional[str] = None, operation: Optional[str] = None):
        """Keep the missing key for callers."""
        self.key = key
        super().__init__(f"Record with key {key!r} not found", table=table, operation=operation)


class ExecutionError(RelmapError):
    """The backing store rejected a statement."""

    def __init__(
        self,
        message: str,
        *,
        table: Optional[str] = None,
        operation: Optional[str] = None,
        category: str = "unknown",
        sqlstate: Optional[str] = None,
        is_retryable: bool = False,
    ) -> None:
        """Attach classification details from the underlying failure."""
        self.category = category
        self.sqlstate = sqlstate
        self.is_retryable = is_retryable
        super().__init__(message, table=table, operation=operation)


class StatementTimeoutError(ExecutionError, TimeoutError):
    """A statement exceeded its deadline."""

    def __init__(
        self,
        timeout_seconds: Optional[float],
        *,
        table: Optional[str] = None,
        operation: Optional[str] = None,
    ) -> None:
        """Initialize timeout details with table/operation context."""
        self.timeout_seconds = timeout_seconds
        timeout_display = "unknown"
        if isinstance(timeout_seconds, (int, float)):
            timeout_display = f"{float(timeout_seconds):g}"
        super().__init__(
            f"statement timed out after {timeout_display}s",
            table=table,
            operation=operation,
            category="timeout",
            is_retryable=True,
        )


class TransactionError(RelmapError):
    """A unit of work could not be committed."""
