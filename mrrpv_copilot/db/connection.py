"""SQLAlchemy engine factory.

Single shared engine with connection pooling.  All copilot queries run
through `execute_readonly`; on Postgres the transaction is additionally
set to READ ONLY before executing.
"""
from __future__ import annotations

from contextlib import contextmanager
from typing import Generator

from sqlalchemy import create_engine, text
from sqlalchemy.engine import Connection, Engine, make_url

from mrrpv_copilot.core.config import get_settings
from mrrpv_copilot.core.logging import get_logger

logger = get_logger(__name__)

_engine: Engine | None = None


def get_engine() -> Engine:
    """Return the shared SQLAlchemy engine (lazy-created, cached)."""
    global _engine
    if _engine is None:
        settings = get_settings()
        url = make_url(settings.database_url)
        _engine = create_engine(url, pool_pre_ping=True, echo=False)
        logger.info("DB engine created  dialect=%s  host=%s", url.get_backend_name(), url.host or "-")
    return _engine


def set_engine(engine: Engine | None) -> None:
    """Replace the shared engine (tests, embedding).  None resets to lazy creation."""
    global _engine
    _engine = engine


@contextmanager
def readonly_connection() -> Generator[Connection, None, None]:
    """Yield a connection; READ ONLY transaction mode where the dialect supports it.

    The connection is returned to the pool on exit.
    """
    engine = get_engine()
    conn = engine.connect()
    try:
        if engine.dialect.name == "postgresql":
            conn.execute(text("SET TRANSACTION READ ONLY"))
        yield conn
    finally:
        conn.close()
