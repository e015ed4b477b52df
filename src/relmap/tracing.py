import hashlib
import logging
import os
import time
from typing import Awaitable, Optional

from relmap.config import get_env_bool

logger = logging.getLogger(__name__)


def trace_enabled() -> bool:
    """Return True when statement tracing is enabled or an OTEL exporter is configured."""
    raw = os.getenv("RELMAP_TRACE_STATEMENTS")
    if raw is not None:
        try:
            return get_env_bool("RELMAP_TRACE_STATEMENTS", False) is True
        except ValueError:
            logger.warning("Invalid RELMAP_TRACE_STATEMENTS value '%s'; tracing disabled.", raw)
            return False
    return bool(os.getenv("OTEL_EXPORTER_OTLP_ENDPOINT"))


def _hash_sql(sql: str) -> str:
    return hashlib.sha256(sql.encode("utf-8")).hexdigest()


async def trace_statement(
    table: str,
    operation: str,
    sql: Optional[str],
    statement: Awaitable,
):
    """Await a statement, emitting an OTEL span when tracing is enabled."""
    started = time.perf_counter()
    try:
        if not trace_enabled():
            return await statement

        from opentelemetry import trace

        tracer = trace.get_tracer("relmap")
        with tracer.start_as_current_span("relmap.statement") as span:
            span.set_attribute("db.system", "postgresql")
            span.set_attribute("db.table", table)
            span.set_attribute("db.operation", operation)
            if sql:
                span.set_attribute("db.statement_hash", _hash_sql(sql))
            try:
                result = await statement
                span.set_attribute("db.status", "ok")
                return result
            except Exception:
                span.set_attribute("db.status", "error")
                raise
    finally:
        logger.debug(
            "relmap_statement table=%s operation=%s elapsed_ms=%.2f",
            table,
            operation,
            (time.perf_counter() - started) * 1000,
        )
