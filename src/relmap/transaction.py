"""Transaction coordinator.

Checks one connection out of the pool, runs a unit of work inside a
transaction on that connection, and always returns the connection.
"""

import logging
from contextlib import AsyncExitStack, asynccontextmanager
from typing import Any, Optional

from relmap.error_classification import wrap_execution_error
from relmap.errors import RelmapError, TransactionError

logger = logging.getLogger(__name__)


@asynccontextmanager
async def transaction_scope(
    pool: Any, *, table: Optional[str] = None, operation: Optional[str] = None
):
    """Yield a dedicated connection inside BEGIN ... COMMIT.

    Failing to check out a connection or to BEGIN raises the wrapped engine
    error. Any error raised by the unit of work rolls the transaction back and
    is re-raised unchanged. A failed commit is raised as TransactionError.
    """
    if pool is None:
        raise RuntimeError("Connection pool not initialized. Call Engine.connect() first.")

    async with AsyncExitStack() as stack:
        try:
            conn = await stack.enter_async_context(pool.acquire())
            transaction = conn.transaction()
            await transaction.start()
        except RelmapError:
            raise
        except Exception as exc:
            raise wrap_execution_error(
                exc, table=table or "*", operation=operation or "transaction"
            ) from exc

        try:
            yield conn
        except BaseException as exc:
            logger.warning(
                "relmap_transaction_rollback table=%s operation=%s error_type=%s",
                table,
                operation,
                exc.__class__.__name__,
            )
            try:
                await transaction.rollback()
            except Exception as rollback_exc:
                logger.error(
                    "relmap_transaction_rollback_failed table=%s operation=%s error=%s",
                    table,
                    operation,
                    rollback_exc,
                )
            raise
        else:
            try:
                await transaction.commit()
            except Exception as exc:
                if isinstance(exc, RelmapError):
                    raise
                raise TransactionError(
                    f"commit failed: {exc}", table=table, operation=operation
                ) from exc
