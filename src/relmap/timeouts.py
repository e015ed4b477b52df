import asyncio
import logging
from typing import Awaitable, Callable, Optional, TypeVar

from relmap.errors import StatementTimeoutError

T = TypeVar("T")
logger = logging.getLogger(__name__)


async def run_with_timeout(
    operation: Callable[[], Awaitable[T]],
    timeout_seconds: Optional[float],
    *,
    table: Optional[str] = None,
    operation_name: str = "statement",
) -> T:
    """Run an awaitable operation with a deadline.

    Cancelling an in-flight asyncpg call makes the driver cancel the
    server-side command, so no separate cancellation hook is needed.
    """
    if not timeout_seconds or timeout_seconds <= 0:
        return await operation()
    try:
        return await asyncio.wait_for(operation(), timeout=timeout_seconds)
    except asyncio.TimeoutError as exc:
        logger.warning(
            "relmap_statement_timeout table=%s operation=%s timeout_seconds=%s",
            table,
            operation_name,
            timeout_seconds,
        )
        raise StatementTimeoutError(
            timeout_seconds,
            table=table,
            operation=operation_name,
        ) from exc
