"""Database helpers for executing raw SQL via SQLAlchemy."""

from __future__ import annotations

from typing import Any, Dict, List, Tuple

from sqlalchemy import create_engine, text
from sqlalchemy.engine import Engine

from app.core.config import get_settings, require
from app.core.logging import get_logger

logger = get_logger(__name__)


_engine: Engine | None = None


def get_engine() -> Engine:
    """Return a singleton SQLAlchemy engine for ``DATABASE_URL``."""
    global _engine
    if _engine is None:
        settings = get_settings().database
        url = require(settings.url, "DATABASE_URL")
        logger.info("Initialising SQLAlchemy engine (pool_size=%s)", settings.pool_size)
        options: dict[str, Any] = {"pool_pre_ping": True}
        if not url.startswith("sqlite"):
            options.update(pool_size=settings.pool_size, max_overflow=settings.max_overflow)
        _engine = create_engine(url, **options)
    return _engine


def fetch_rows(query: str, params: dict[str, Any] | None = None) -> Tuple[List[str], List[Dict[str, Any]] | None]:
    """Execute ``query`` and return ``(columns, rows)``.

    ``rows`` is ``None`` when the statement produced no result set (DDL/DML);
    the caller decides how to report that.
    """
    engine = get_engine()
    with engine.begin() as connection:
        result = connection.execute(text(query), params or {})
        if not result.returns_rows:
            return [], None
        columns = list(result.keys())
        return columns, [dict(zip(columns, row)) for row in result.fetchall()]
