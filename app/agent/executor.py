"""Query executors: direct SQLAlchemy execution or a remote HTTP query proxy.

Whatever the backend returns is tagged exactly once, here, as one of
``Rows``, ``Scalar`` or ``Text``. Downstream code (schema discovery, the
agent tool) matches on the tag instead of sniffing shapes again.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Protocol, Union

import httpx
from sqlalchemy.exc import SQLAlchemyError

from app.core.config import Settings, get_settings
from app.core.db import fetch_rows
from app.core.logging import get_logger, log_structured

logger = get_logger(__name__)


class ExecutionError(RuntimeError):
    """Raised when a query cannot be executed or the backend reports an error."""


@dataclass(frozen=True)
class Rows:
    columns: List[str]
    records: List[Dict[str, Any]] = field(default_factory=list)


@dataclass(frozen=True)
class Scalar:
    value: Any


@dataclass(frozen=True)
class Text:
    text: str


QueryResult = Union[Rows, Scalar, Text]


class QueryExecutor(Protocol):
    def execute(self, sql: str) -> QueryResult:
        ...


def to_query_result(payload: Any) -> QueryResult:
    """Tag a decoded backend payload.

    A list of mappings is a row set; ``{"rows": [...]}`` envelopes are
    unwrapped; ``{"error": ...}`` is an error shape and raises.
    """
    if isinstance(payload, dict):
        if payload.get("error"):
            raise ExecutionError(str(payload["error"]))
        if isinstance(payload.get("rows"), list):
            return to_query_result(payload["rows"])
        if isinstance(payload.get("recordset"), list):
            return to_query_result(payload["recordset"])
        return Text(json.dumps(payload, default=str))
    if isinstance(payload, list):
        if all(isinstance(item, dict) for item in payload):
            columns: List[str] = []
            for record in payload:
                for key in record:
                    if key not in columns:
                        columns.append(key)
            return Rows(columns=columns, records=list(payload))
        return Text(json.dumps(payload, default=str))
    if isinstance(payload, str):
        return Text(payload)
    return Scalar(payload)


class DirectQueryExecutor:
    """Execute SQL against ``DATABASE_URL`` with SQLAlchemy."""

    def __init__(self, settings: Settings | None = None) -> None:
        self._log_sql = (settings or get_settings()).log_sql_text

    def execute(self, sql: str) -> QueryResult:
        log_structured(logger, logging.INFO, "sql_execute", backend="direct", sql=sql if self._log_sql else None)
        try:
            columns, rows = fetch_rows(sql)
        except SQLAlchemyError as exc:
            raise ExecutionError(f"Database error: {exc.__cause__ or exc}") from exc
        if rows is None:
            return Text("Statement executed; no rows returned.")
        return Rows(columns=columns, records=rows)


class HttpQueryExecutor:
    """POST ``{"query": sql}`` to a remote query proxy and tag its JSON reply."""

    def __init__(self, settings: Settings | None = None, *, client: httpx.Client | None = None) -> None:
        settings = settings or get_settings()
        self._url = settings.query_api.url
        self._log_sql = settings.log_sql_text
        self._client = client or httpx.Client(timeout=settings.query_api.timeout_seconds)

    def execute(self, sql: str) -> QueryResult:
        log_structured(logger, logging.INFO, "sql_execute", backend="api", url=self._url, sql=sql if self._log_sql else None)
        try:
            response = self._client.post(
                self._url,
                json={"query": sql},
                headers={"Content-Type": "application/json"},
            )
        except httpx.HTTPError as exc:
            raise ExecutionError(f"Query API request failed: {exc}") from exc

        if response.is_error:
            raise ExecutionError(f"API error: {response.reason_phrase or response.status_code}")

        try:
            payload = response.json()
        except ValueError as exc:
            raise ExecutionError("Query API returned invalid JSON.") from exc
        return to_query_result(payload)

    def close(self) -> None:
        self._client.close()


def build_executor(settings: Settings | None = None) -> QueryExecutor:
    """Pick the executor named by ``QUERY_EXECUTOR``."""
    settings = settings or get_settings()
    mode = settings.query_executor
    if mode == "direct" or (mode == "auto" and settings.database.url):
        logger.info("Using direct database executor")
        return DirectQueryExecutor(settings)
    if mode in {"api", "auto"}:
        logger.info("Using HTTP query executor at %s", settings.query_api.url)
        return HttpQueryExecutor(settings)
    raise RuntimeError(f"Unsupported QUERY_EXECUTOR '{mode}'. Use 'auto', 'direct' or 'api'.")
