"""Schema discovery cache.

Discovers the queryable catalog (databases, base tables, columns) with a fixed
sequence of catalog queries and renders it as a text block that is prefixed
to the agent's system prompt.

Discovery is best effort: a failure while listing databases, the tables of
one database, or the columns of one table is recorded in the discovery log
and that branch is skipped. ``discover_catalog`` never raises.

``SchemaCache`` owns the single in-flight discovery task. Callers that arrive
while a pass is running await that same task; a pass is never started twice.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from enum import Enum
from time import perf_counter
from typing import Any, Dict, List, Mapping, Optional, Sequence, Tuple

from app.agent.executor import ExecutionError, QueryExecutor, QueryResult, Rows, build_executor
from app.core.logging import get_logger, log_structured

logger = get_logger(__name__)

SUMMARY_HEADER = "Database schema overview:"
DISCOVERY_LOG_HEADER = "[Schema discovery log:]"
SCHEMA_LOADING_PLACEHOLDER = "Schema is loading in background..."


def quote_identifier(name: str) -> str:
    """Bracket-quote a T-SQL identifier."""
    return "[" + name.replace("]", "]]") + "]"


def quote_literal(value: str) -> str:
    return "'" + value.replace("'", "''") + "'"


@dataclass(frozen=True)
class CatalogQueries:
    """Catalog query templates. Defaults target SQL Server."""

    databases: str = "SELECT [name] FROM [master].[sys].[databases];"
    tables: str = (
        "SELECT TABLE_SCHEMA, TABLE_NAME FROM {database}.INFORMATION_SCHEMA.TABLES "
        "WHERE TABLE_TYPE = 'BASE TABLE';"
    )
    columns: str = (
        "SELECT COLUMN_NAME FROM {database}.INFORMATION_SCHEMA.COLUMNS "
        "WHERE TABLE_NAME = {table} AND TABLE_SCHEMA = {schema};"
    )

    def list_tables(self, database: str) -> str:
        return self.tables.format(database=quote_identifier(database))

    def list_columns(self, database: str, schema: str, table: str) -> str:
        return self.columns.format(
            database=quote_identifier(database),
            schema=quote_literal(schema),
            table=quote_literal(table),
        )


@dataclass(frozen=True)
class CatalogEntry:
    database: str
    schema: str
    table: str
    columns: Tuple[str, ...] = ()

    def describe(self) -> str:
        return f"- [{self.database}].[{self.schema}].[{self.table}] columns: {', '.join(self.columns)}"


def render_summary(entries: Sequence[CatalogEntry], log: Sequence[str]) -> str:
    lines = [SUMMARY_HEADER]
    lines.extend(entry.describe() for entry in entries)
    summary = "\n".join(lines)
    if log:
        summary += f"\n\n{DISCOVERY_LOG_HEADER}\n" + "\n".join(log)
    return summary


@dataclass(frozen=True)
class DiscoveryResult:
    entries: Tuple[CatalogEntry, ...] = ()
    log: Tuple[str, ...] = ()
    databases_listed: bool = True

    @property
    def summary(self) -> str:
        return render_summary(self.entries, self.log)


def _field(record: Mapping[str, Any], name: str) -> Optional[str]:
    """Case-insensitive field lookup; drivers disagree on catalog column casing."""
    if name in record:
        value = record[name]
    else:
        lowered = name.lower()
        value = next((v for k, v in record.items() if str(k).lower() == lowered), None)
    return None if value is None else str(value)


def _records(result: QueryResult) -> List[Dict[str, Any]]:
    if isinstance(result, Rows):
        return result.records
    raise ExecutionError(f"Expected a row set from catalog query, got {type(result).__name__.lower()}")


def discover_catalog(executor: QueryExecutor, queries: CatalogQueries | None = None) -> DiscoveryResult:
    """Run one discovery pass. Never raises."""
    queries = queries or CatalogQueries()
    log: List[str] = []
    entries: List[CatalogEntry] = []

    databases: List[str] = []
    databases_listed = True
    try:
        records = _records(executor.execute(queries.databases))
        databases = [name for name in (_field(record, "name") for record in records) if name]
        log.append(f"Databases found: {', '.join(databases)}")
    except Exception as exc:
        databases_listed = False
        log.append(f"Failed to fetch databases: {exc}")
        logger.warning("Schema discovery could not list databases: %s", exc)

    for database in databases:
        try:
            records = _records(executor.execute(queries.list_tables(database)))
            tables = [
                (_field(record, "TABLE_SCHEMA") or "", _field(record, "TABLE_NAME") or "")
                for record in records
            ]
            tables = [(schema, table) for schema, table in tables if table]
            log.append(f"Tables in {database}: {', '.join(table for _, table in tables)}")
        except Exception as exc:
            log.append(f"Failed to fetch tables for {database}: {exc}")
            logger.warning("Schema discovery skipped database %s: %s", database, exc)
            continue

        for schema, table in tables:
            qualified = f"{database}.{schema}.{table}"
            try:
                records = _records(executor.execute(queries.list_columns(database, schema, table)))
                columns = tuple(name for name in (_field(record, "COLUMN_NAME") for record in records) if name)
                log.append(f"Columns in {qualified}: {', '.join(columns)}")
            except Exception as exc:
                log.append(f"Failed to fetch columns for {qualified}: {exc}")
                logger.warning("Schema discovery skipped table %s: %s", qualified, exc)
                continue
            entries.append(CatalogEntry(database=database, schema=schema, table=table, columns=columns))

    return DiscoveryResult(entries=tuple(entries), log=tuple(log), databases_listed=databases_listed)


class CacheStatus(str, Enum):
    EMPTY = "empty"
    POPULATED = "populated"
    REFRESHING = "refreshing"


class SchemaCache:
    """Holds the latest schema summary and the single in-flight discovery task."""

    def __init__(
        self,
        executor: QueryExecutor | None = None,
        *,
        queries: CatalogQueries | None = None,
    ) -> None:
        self._executor = executor
        self._queries = queries or CatalogQueries()
        self._summary: str | None = None
        self._task: asyncio.Task[str | None] | None = None
        self._passes = 0

    @property
    def status(self) -> CacheStatus:
        if self._task is not None and not self._task.done():
            return CacheStatus.REFRESHING
        return CacheStatus.POPULATED if self._summary is not None else CacheStatus.EMPTY

    @property
    def passes(self) -> int:
        """Number of discovery passes started so far."""
        return self._passes

    def peek(self) -> str:
        """Return the cached summary, or the placeholder, without waiting."""
        return self._summary if self._summary is not None else SCHEMA_LOADING_PLACEHOLDER

    async def get_summary(self, timeout: float | None = None) -> str:
        """Return the cached summary, joining or starting a discovery pass if there is none.

        With ``timeout`` the caller stops waiting after that many seconds and
        receives the placeholder; the pass itself keeps running and populates
        the cache for later callers.
        """
        if self._summary is not None:
            return self._summary
        task = self._ensure_pass()
        try:
            summary = await asyncio.wait_for(asyncio.shield(task), timeout)
        except asyncio.TimeoutError:
            log_structured(logger, logging.INFO, "schema_summary_wait_timeout", timeout=timeout)
            return SCHEMA_LOADING_PLACEHOLDER
        return summary or self.peek()

    async def refresh(self) -> str:
        """Run a discovery pass (or join the running one) and return the resulting summary.

        A failed pass leaves the previous summary in place.
        """
        summary = await asyncio.shield(self._ensure_pass())
        return summary or self.peek()

    def _ensure_pass(self) -> "asyncio.Task[str | None]":
        # No await between the check and the assignment.
        if self._task is None or self._task.done():
            self._passes += 1
            self._task = asyncio.get_running_loop().create_task(self._run_pass(self._passes))
            self._task.add_done_callback(self._clear_task)
        return self._task

    def _clear_task(self, task: "asyncio.Task[str | None]") -> None:
        if self._task is task:
            self._task = None

    async def _run_pass(self, number: int) -> str | None:
        started = perf_counter()
        try:
            if self._executor is None:
                self._executor = build_executor()
            result = await asyncio.to_thread(discover_catalog, self._executor, self._queries)
        except Exception as exc:
            log_structured(
                logger,
                logging.ERROR,
                "schema_discovery_failed",
                discovery_pass=number,
                error=str(exc),
                kept_previous=self._summary is not None,
            )
            return None

        if not result.databases_listed and self._summary is not None:
            # Database listing failed outright; keep the last good catalog.
            log_structured(
                logger,
                logging.WARNING,
                "schema_refresh_degraded",
                discovery_pass=number,
                log=list(result.log),
            )
            return self._summary

        self._summary = result.summary
        log_structured(
            logger,
            logging.INFO,
            "schema_discovery_complete",
            discovery_pass=number,
            tables=len(result.entries),
            log_lines=len(result.log),
            elapsed_ms=round((perf_counter() - started) * 1000, 2),
        )
        return self._summary


class SchemaRefresher:
    """Background task: one discovery pass at startup, then one per interval."""

    def __init__(self, cache: SchemaCache, interval_seconds: float) -> None:
        self._cache = cache
        self._interval = interval_seconds
        self._task: asyncio.Task[None] | None = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        if self.running:
            return
        logger.info("Starting schema refresher (interval=%ss)", self._interval)
        self._task = asyncio.get_running_loop().create_task(self._run())

    async def stop(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None

    async def _run(self) -> None:
        while True:
            try:
                await self._cache.refresh()
            except Exception:
                logger.exception("Schema refresh failed")
            await asyncio.sleep(self._interval)


_schema_cache: SchemaCache | None = None


def get_schema_cache() -> SchemaCache:
    """Return the process-wide schema cache."""
    global _schema_cache
    if _schema_cache is None:
        _schema_cache = SchemaCache()
    return _schema_cache
