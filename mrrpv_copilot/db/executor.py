"""
Read-only SQL executor.

All compiled queries run through `execute_readonly`, which:
  1. Opens a connection (READ ONLY transaction on Postgres)
  2. Sets an engine-side statement timeout where the dialect has one
  3. Binds every value through text() parameters, expanding IN lists
  4. Waits on a per-query worker thread; on timeout the running statement
     is cancelled through the driver and QueryTimeout is raised
  5. Converts Decimal/date/datetime to JSON-safe Python types
"""
from __future__ import annotations

import datetime
import decimal
import math
from concurrent.futures import ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeout
from typing import Any, Iterable

from sqlalchemy import bindparam, text
from sqlalchemy.engine import Connection
from sqlalchemy.exc import SQLAlchemyError

from mrrpv_copilot.core.config import get_settings
from mrrpv_copilot.core.errors import ExecutionError, QueryTimeout
from mrrpv_copilot.core.logging import get_logger
from mrrpv_copilot.db.connection import readonly_connection

logger = get_logger(__name__)


def _serialise_value(val: Any) -> Any:
    """Convert DB types to JSON-serialisable Python types."""
    if isinstance(val, decimal.Decimal):
        return float(val)
    if isinstance(val, (datetime.date, datetime.datetime)):
        return val.isoformat()
    if isinstance(val, datetime.timedelta):
        return str(val)
    return val


def _set_statement_timeout(conn: Connection, timeout: float) -> None:
    dialect = conn.dialect.name
    if dialect == "postgresql":
        conn.execute(text(f"SET LOCAL statement_timeout = {int(timeout * 1000)}"))
    elif dialect == "databricks":
        conn.execute(text(f"SET STATEMENT_TIMEOUT = {max(1, math.ceil(timeout))}"))


def _cancel(handle: dict[str, Any]) -> None:
    """Ask the driver to abort the statement running on the worker's connection."""
    conn: Connection | None = handle.get("conn")
    if conn is None:
        return
    try:
        dbapi_conn = conn.connection.dbapi_connection
        if hasattr(dbapi_conn, "cancel"):  # psycopg2
            dbapi_conn.cancel()
        elif hasattr(dbapi_conn, "interrupt"):  # sqlite3
            dbapi_conn.interrupt()
        else:
            logger.warning("Driver cannot cancel; relying on the engine-side statement timeout")
    except Exception as exc:
        logger.warning("Cancelling timed-out query failed: %s", exc)


def _run(
    sql: str,
    params: dict[str, Any],
    expanding: Iterable[str],
    timeout: float | None = None,
    handle: dict[str, Any] | None = None,
) -> tuple[list[str], list[list[Any]]]:
    stmt = text(sql)
    names = list(expanding)
    if names:
        stmt = stmt.bindparams(*(bindparam(n, expanding=True) for n in names))
    with readonly_connection() as conn:
        if handle is not None:
            handle["conn"] = conn
        if timeout:
            _set_statement_timeout(conn, timeout)
        result = conn.execute(stmt, params)
        columns = list(result.keys())
        rows = [[_serialise_value(v) for v in row] for row in result.fetchall()]
    return columns, rows


def execute_readonly(
    sql: str,
    params: dict[str, Any] | None = None,
    expanding: Iterable[str] = (),
    timeout: float | None = None,
) -> tuple[list[str], list[list[Any]]]:
    """Execute a read-only SQL query and return ``(columns, rows)``.

    Each query gets its own worker thread, so a hung statement never
    delays the next one.

    Raises
    ------
    QueryTimeout
        The engine did not answer within *timeout* seconds.
    ExecutionError
        The engine rejected or failed the query (message verbatim).
    """
    if timeout is None:
        timeout = get_settings().query_timeout_seconds
    logger.info("Executing SQL (%d chars, %d params)", len(sql), len(params or {}))

    handle: dict[str, Any] = {}
    worker = ThreadPoolExecutor(max_workers=1, thread_name_prefix="mrrpv-sql")
    future = worker.submit(_run, sql, dict(params or {}), tuple(expanding), timeout, handle)
    try:
        columns, rows = future.result(timeout=timeout)
    except FutureTimeout:
        logger.warning("Query exceeded %.1fs timeout; cancelling", timeout)
        _cancel(handle)
        raise QueryTimeout(
            f"Query did not finish within {timeout:g} seconds. Try a narrower time_window."
        ) from None
    except SQLAlchemyError as exc:
        detail = str(getattr(exc, "orig", None) or exc)
        logger.error("SQL execution failed: %s", detail)
        raise ExecutionError(f"Query failed: {detail}") from exc
    finally:
        worker.shutdown(wait=False)

    logger.info("Returned %d rows", len(rows))
    return columns, rows
