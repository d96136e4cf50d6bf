from __future__ import annotations

import re
from time import perf_counter
from typing import Any

import structlog
from opentelemetry.trace import SpanKind, Status, StatusCode
from sqlalchemy import event
from sqlalchemy.engine import Engine

from app.observability.metrics import get_metrics
from app.observability.telemetry import get_instruments, get_tracer


logger = structlog.get_logger(__name__)

_OPERATIONS = ("SELECT", "INSERT", "UPDATE", "DELETE", "CREATE", "DROP", "ALTER")

# Order matters: `INSERT INTO a ... SELECT ... FROM b` belongs to `a`.
_TABLE_PATTERNS = (
    re.compile(r"^\s*INSERT\s+INTO\s+[`\"]?(\w+)", re.IGNORECASE),
    re.compile(r"^\s*UPDATE\s+[`\"]?(\w+)", re.IGNORECASE),
    re.compile(r"^\s*DELETE\s+FROM\s+[`\"]?(\w+)", re.IGNORECASE),
    re.compile(r"^\s*(?:CREATE|DROP|ALTER)\s+TABLE\s+(?:IF\s+(?:NOT\s+)?EXISTS\s+)?[`\"]?(\w+)", re.IGNORECASE),
    re.compile(r"\bFROM\s+[`\"]?(\w+)", re.IGNORECASE),
)

_DB_SYSTEMS = {"postgresql": "postgresql", "mysql": "mysql", "mariadb": "mariadb", "sqlite": "sqlite"}


def extract_operation(statement: str) -> str:
    head = statement.lstrip().upper()
    for op in _OPERATIONS:
        if head.startswith(op):
            return op
    return "OTHER"


def extract_table(statement: str) -> str | None:
    for pattern in _TABLE_PATTERNS:
        match = pattern.search(statement)
        if match:
            return match.group(1).lower()
    return None


def _before_cursor_execute(conn, cursor, statement, parameters, context, executemany) -> None:
    if context is None:
        return
    operation = extract_operation(statement)
    table = extract_table(statement) or "unknown"
    span = get_tracer().start_span(
        "db.query",
        kind=SpanKind.CLIENT,
        attributes={
            "db.system": _DB_SYSTEMS.get(conn.engine.dialect.name, conn.engine.dialect.name),
            "db.operation": operation,
            "db.sql.table": table,
            "db.statement": statement,
        },
    )
    context._telemetry = (span, perf_counter(), operation, table)


def _observe(operation: str, table: str, started: float, failed: bool) -> None:
    elapsed = perf_counter() - started
    get_metrics().observe_db_query(operation, table, elapsed * 1000.0, failed=failed)
    instruments = get_instruments()
    labels = {"operation": operation, "table": table}
    instruments.db_queries.add(1, labels)
    instruments.db_query_duration.record(elapsed, labels)


def _after_cursor_execute(conn, cursor, statement, parameters, context, executemany) -> None:
    state = getattr(context, "_telemetry", None)
    if state is None:
        return
    context._telemetry = None
    span, started, operation, table = state
    rowcount = getattr(cursor, "rowcount", -1)
    if isinstance(rowcount, int) and rowcount >= 0:
        span.set_attribute("db.rows_affected", rowcount)
    span.set_status(Status(StatusCode.OK))
    span.end()
    _observe(operation, table, started, failed=False)


def _handle_error(exception_context: Any) -> None:
    context = exception_context.execution_context
    state = getattr(context, "_telemetry", None) if context is not None else None
    if state is None:
        return
    context._telemetry = None
    span, started, operation, table = state
    exc = exception_context.original_exception
    span.record_exception(exc)
    span.set_status(Status(StatusCode.ERROR, str(exc) or "Database query failed"))
    span.end()
    _observe(operation, table, started, failed=True)
    logger.error(
        "db.query.failed",
        operation=operation,
        table=table,
        statement=exception_context.statement,
        error=str(exc),
    )


def instrument_engine(engine: Engine) -> Engine:
    """Trace and meter every statement executed through `engine`."""

    if not event.contains(engine, "before_cursor_execute", _before_cursor_execute):
        event.listen(engine, "before_cursor_execute", _before_cursor_execute)
        event.listen(engine, "after_cursor_execute", _after_cursor_execute)
        event.listen(engine, "handle_error", _handle_error)
    return engine
