from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Optional

from relmap.errors import ExecutionError, RelmapError, StatementTimeoutError

logger = logging.getLogger(__name__)

_TIMEOUT_TYPES = (TimeoutError, asyncio.TimeoutError)

RETRYABLE_CATEGORIES = frozenset({"timeout", "connectivity", "deadlock", "serialization"})

# SQLSTATE class (first two characters) -> category.
_SQLSTATE_CLASSES: dict[str, str] = {
    "08": "connectivity",
    "23": "constraint",
    "28": "auth",
    "42": "syntax",
    "53": "resource_exhausted",
    "57": "connectivity",
}

# Exact SQLSTATE codes that refine the class mapping.
_SQLSTATE_CODES: dict[str, str] = {
    "40001": "serialization",
    "40P01": "deadlock",
    "42P01": "undefined_object",
    "42703": "undefined_object",
    "42501": "auth",
    "57014": "timeout",
}


@dataclass(frozen=True)
class ErrorClassification:
    """Backing-store error category with retryability."""

    category: str
    sqlstate: Optional[str]
    is_retryable: bool


def classify_error(exc: BaseException) -> str:
    """Classify an error into a stable category."""
    return classify_error_info(exc).category


def classify_error_info(exc: BaseException) -> ErrorClassification:
    """Classify using the SQLSTATE when available, falling back to message patterns."""
    sqlstate = getattr(exc, "sqlstate", None)
    if not isinstance(sqlstate, str):
        sqlstate = None

    if isinstance(exc, _TIMEOUT_TYPES):
        return _classification("timeout", sqlstate)

    if sqlstate:
        category = _SQLSTATE_CODES.get(sqlstate) or _SQLSTATE_CLASSES.get(sqlstate[:2])
        if category:
            return _classification(category, sqlstate)

    message = str(exc).lower()
    class_name = exc.__class__.__name__.lower()

    if _matches_any(message, ("timeout", "timed out")):
        return _classification("timeout", sqlstate)
    if isinstance(exc, (ConnectionError, OSError)) or _matches_any(
        message,
        ("could not connect", "connection refused", "connection reset", "connection was closed"),
    ):
        return _classification("connectivity", sqlstate)
    if _matches_any(message, ("deadlock detected",)):
        return _classification("deadlock", sqlstate)
    if _matches_any(message, ("could not serialize", "serialization failure")):
        return _classification("serialization", sqlstate)
    if _matches_any(message, ("violates", "duplicate key")):
        return _classification("constraint", sqlstate)
    if _matches_any(message, ("syntax error",)) or "syntax" in class_name:
        return _classification("syntax", sqlstate)
    if _matches_any(message, ("permission denied", "password authentication failed")):
        return _classification("auth", sqlstate)

    return _classification("unknown", sqlstate)


def wrap_execution_error(exc: Exception, *, table: str, operation: str) -> RelmapError:
    """Return an engine error carrying table/operation context for ``exc``.

    Engine errors pass through untouched; timeouts become
    ``StatementTimeoutError``; everything else becomes ``ExecutionError``.
    """
    if isinstance(exc, RelmapError):
        return exc
    info = classify_error_info(exc)
    logger.error(
        "relmap_statement_failed table=%s operation=%s category=%s error_type=%s",
        table,
        operation,
        info.category,
        exc.__class__.__name__,
    )
    if info.category == "timeout" and isinstance(exc, _TIMEOUT_TYPES):
        return StatementTimeoutError(None, table=table, operation=operation)
    return ExecutionError(
        str(exc) or exc.__class__.__name__,
        table=table,
        operation=operation,
        category=info.category,
        sqlstate=info.sqlstate,
        is_retryable=info.is_retryable,
    )


def _matches_any(text: str, fragments: tuple[str, ...]) -> bool:
    return any(fragment in text for fragment in fragments)


def _classification(category: str, sqlstate: Optional[str]) -> ErrorClassification:
    return ErrorClassification(
        category=category,
        sqlstate=sqlstate,
        is_retryable=category in RETRYABLE_CATEGORIES,
    )
