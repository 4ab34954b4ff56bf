from __future__ import annotations

import json

import httpx
import pytest
from sqlalchemy import create_engine, text

from app.agent.executor import (
    DirectQueryExecutor,
    ExecutionError,
    HttpQueryExecutor,
    Rows,
    Scalar,
    Text,
    build_executor,
    to_query_result,
)
from app.core import db as db_module
from app.core.config import (
    AzureOpenAISettings,
    DatabaseSettings,
    QueryApiSettings,
    SchemaCacheSettings,
    Settings,
)

API_URL = "http://query-proxy.test/api/query"


def _settings(*, database_url: str | None = None, mode: str = "auto") -> Settings:
    return Settings(
        azure_openai=AzureOpenAISettings(),
        database=DatabaseSettings(url=database_url),
        query_api=QueryApiSettings(url=API_URL, timeout_seconds=5),
        schema_cache=SchemaCacheSettings(),
        query_executor=mode,
    )


def test_row_list_is_tagged_as_rows():
    result = to_query_result([{"id": 1}, {"id": 2, "name": "b"}])

    assert result == Rows(columns=["id", "name"], records=[{"id": 1}, {"id": 2, "name": "b"}])


def test_rows_envelope_is_unwrapped():
    assert to_query_result({"rows": [{"id": 1}]}) == Rows(columns=["id"], records=[{"id": 1}])
    assert to_query_result({"recordset": []}) == Rows(columns=[], records=[])


def test_error_shape_raises():
    with pytest.raises(ExecutionError, match="Invalid object name"):
        to_query_result({"error": "Invalid object name 'x'."})


@pytest.mark.parametrize(
    "payload, expected",
    [
        ("done", Text("done")),
        (42, Scalar(42)),
        (None, Scalar(None)),
        ([1, 2], Text("[1, 2]")),
        ({"count": 3}, Text('{"count": 3}')),
    ],
)
def test_other_payloads(payload, expected):
    assert to_query_result(payload) == expected


def _http_executor(handler) -> HttpQueryExecutor:
    client = httpx.Client(transport=httpx.MockTransport(handler))
    return HttpQueryExecutor(_settings(mode="api"), client=client)


def test_http_executor_posts_query_and_tags_rows():
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["url"] = str(request.url)
        seen["body"] = json.loads(request.content)
        return httpx.Response(200, json=[{"name": "master"}])

    result = _http_executor(handler).execute("SELECT [name] FROM [master].[sys].[databases];")

    assert seen == {"url": API_URL, "body": {"query": "SELECT [name] FROM [master].[sys].[databases];"}}
    assert result == Rows(columns=["name"], records=[{"name": "master"}])


def test_http_executor_raises_on_error_status():
    executor = _http_executor(lambda request: httpx.Response(500, text="boom"))

    with pytest.raises(ExecutionError, match="API error: Internal Server Error"):
        executor.execute("SELECT 1")


def test_http_executor_raises_on_invalid_json():
    executor = _http_executor(lambda request: httpx.Response(200, text="<html>"))

    with pytest.raises(ExecutionError, match="invalid JSON"):
        executor.execute("SELECT 1")


def test_http_executor_wraps_transport_errors():
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused", request=request)

    with pytest.raises(ExecutionError, match="connection refused"):
        _http_executor(handler).execute("SELECT 1")


@pytest.fixture
def sqlite_settings(monkeypatch: pytest.MonkeyPatch, tmp_path) -> Settings:
    url = f"sqlite:///{tmp_path / 'chat.db'}"
    engine = create_engine(url)
    with engine.begin() as connection:
        connection.execute(text("CREATE TABLE people (id INTEGER PRIMARY KEY, name TEXT)"))
        connection.execute(text("INSERT INTO people (id, name) VALUES (1, 'Ada'), (2, 'Grace')"))
    engine.dispose()

    settings = _settings(database_url=url)
    monkeypatch.setattr(db_module, "_engine", None)
    monkeypatch.setattr(db_module, "get_settings", lambda: settings)
    return settings


def test_direct_executor_returns_rows(sqlite_settings):
    result = DirectQueryExecutor(sqlite_settings).execute("SELECT id, name FROM people ORDER BY id")

    assert result == Rows(columns=["id", "name"], records=[{"id": 1, "name": "Ada"}, {"id": 2, "name": "Grace"}])


def test_direct_executor_wraps_database_errors(sqlite_settings):
    with pytest.raises(ExecutionError, match="Database error"):
        DirectQueryExecutor(sqlite_settings).execute("SELECT * FROM missing_table")


def test_direct_executor_reports_statements_without_rows(sqlite_settings):
    result = DirectQueryExecutor(sqlite_settings).execute("UPDATE people SET name = 'Ada L.' WHERE id = 1")

    assert isinstance(result, Text)


def test_build_executor_prefers_database_url():
    assert isinstance(build_executor(_settings(database_url="sqlite://")), DirectQueryExecutor)
    assert isinstance(build_executor(_settings()), HttpQueryExecutor)
    assert isinstance(build_executor(_settings(database_url="sqlite://", mode="api")), HttpQueryExecutor)


def test_build_executor_rejects_unknown_mode():
    with pytest.raises(RuntimeError, match="QUERY_EXECUTOR"):
        build_executor(_settings(mode="odbc"))
