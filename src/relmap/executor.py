from contextlib import asynccontextmanager
from typing import Any, Callable, Dict, List, Optional

from relmap.error_classification import wrap_execution_error
from relmap.errors import RelmapError
from relmap.statements import Statement
from relmap.timeouts import run_with_timeout
from relmap.tracing import trace_statement
from relmap.transaction import transaction_scope


def parse_row_count(status: Any) -> int:
    """Return the affected-row count from an asyncpg command status such as 'DELETE 3'."""
    if isinstance(status, int):
        return status
    if not status:
        return 0
    tail = str(status).rsplit(" ", 1)[-1]
    try:
        return int(tail)
    except ValueError:
        return 0


class StatementExecutor:
    """Runs statements against an asyncpg pool or a single checked-out connection.

    A pool-backed executor checks a connection out per statement; a
    connection-backed executor belongs to one unit of work and runs every
    statement on that connection in submission order.
    """

    def __init__(
        self,
        target: Any,
        *,
        in_transaction: bool = False,
        statement_timeout: Optional[float] = None,
    ) -> None:
        """Wrap a pool (shared) or a connection already inside a transaction."""
        self._target = target
        self._in_transaction = in_transaction
        self._statement_timeout = statement_timeout
        # hooks deferred until the owning unit of work commits; None runs them at once
        self._commit_hooks: Optional[List[Callable[[], Any]]] = None

    @property
    def in_transaction(self) -> bool:
        """Return True when statements share one transaction-scoped connection."""
        return self._in_transaction

    @property
    def statement_timeout(self) -> Optional[float]:
        """Return the per-statement deadline in seconds."""
        return self._statement_timeout

    @property
    def closed(self) -> bool:
        return self._target is None

    def detach(self) -> None:
        """Forget the pool so later statements fail fast instead of hitting a closed pool."""
        self._target = None

    def bound_to(self, conn: Any) -> "StatementExecutor":
        """Return an executor for a transaction-scoped connection."""
        return StatementExecutor(
            conn, in_transaction=True, statement_timeout=self._statement_timeout
        )

    def after_commit(self, hook: Callable[[], Any]) -> None:
        """Run ``hook`` once the owning unit of work commits.

        Executors that do not own a pending commit (pool-backed ones, and
        connections bound by the caller) run the hook immediately.
        """
        if self._commit_hooks is None:
            hook()
        else:
            self._commit_hooks.append(hook)

    def _target_or_raise(self) -> Any:
        if self._target is None:
            raise RuntimeError("Connection pool not initialized. Call Engine.connect() first.")
        return self._target

    async def _run(self, method: str, statement: Statement, table: str, operation: str):
        call = getattr(self._target_or_raise(), method)

        async def _operation():
            return await call(statement.sql, *statement.params)

        try:
            return await trace_statement(
                table,
                operation,
                statement.sql,
                run_with_timeout(
                    _operation,
                    self._statement_timeout,
                    table=table,
                    operation_name=operation,
                ),
            )
        except RelmapError:
            raise
        except Exception as exc:
            raise wrap_execution_error(exc, table=table, operation=operation) from exc

    async def fetch(
        self, statement: Statement, *, table: str, operation: str
    ) -> List[Dict[str, Any]]:
        """Fetch all rows as dicts."""
        rows = await self._run("fetch", statement, table, operation)
        return [dict(row) for row in rows or []]

    async def fetchrow(
        self, statement: Statement, *, table: str, operation: str
    ) -> Optional[Dict[str, Any]]:
        """Fetch the first row as a dict, or None."""
        row = await self._run("fetchrow", statement, table, operation)
        return dict(row) if row is not None else None

    async def fetchval(self, statement: Statement, *, table: str, operation: str) -> Any:
        """Fetch the first column of the first row."""
        return await self._run("fetchval", statement, table, operation)

    async def execute(self, statement: Statement, *, table: str, operation: str) -> int:
        """Execute a statement and return the affected-row count."""
        status = await self._run("execute", statement, table, operation)
        return parse_row_count(status)

    @asynccontextmanager
    async def transaction(self, *, table: Optional[str] = None, operation: Optional[str] = None):
        """Yield an executor whose statements form one atomic unit of work.

        An executor that is already transaction-bound joins the enclosing
        unit of work instead of starting a new one. Hooks registered with
        ``after_commit`` run only after the outermost commit succeeds.
        """
        if self._in_transaction:
            yield self
            return
        async with transaction_scope(self._target, table=table, operation=operation) as conn:
            bound = self.bound_to(conn)
            bound._commit_hooks = []
            yield bound
        for hook in bound._commit_hooks:
            hook()
