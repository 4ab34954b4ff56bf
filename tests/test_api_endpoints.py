from __future__ import annotations

from typing import List

import pytest
from fastapi.testclient import TestClient

from app.agent.executor import Rows
from app.agent.llm import AgentError
from app.agent.schema_cache import SCHEMA_LOADING_PLACEHOLDER, CatalogQueries, SchemaCache
from app.agent.service import ChatMessage
from app.api.main import app, service as service_instance


class CatalogExecutor:
    def __init__(self) -> None:
        queries = CatalogQueries()
        self.responses = {
            queries.databases: Rows(columns=["name"], records=[{"name": "sales"}]),
            queries.list_tables("sales"): Rows(
                columns=["TABLE_SCHEMA", "TABLE_NAME"], records=[{"TABLE_SCHEMA": "dbo", "TABLE_NAME": "orders"}]
            ),
            queries.list_columns("sales", "dbo", "orders"): Rows(columns=["COLUMN_NAME"], records=[{"COLUMN_NAME": "id"}]),
        }

    def execute(self, sql: str):
        return self.responses[sql]


@pytest.fixture
def client() -> TestClient:
    return TestClient(app)


@pytest.fixture
def received(monkeypatch: pytest.MonkeyPatch) -> List[List[ChatMessage]]:
    calls: List[List[ChatMessage]] = []

    async def fake_reply(messages):
        calls.append(list(messages))
        return "<table><tr><td>1</td></tr></table>"

    monkeypatch.setattr(service_instance, "reply", fake_reply)
    return calls


def test_message_returns_result(client: TestClient, received):
    payload = {"messages": [{"role": "user", "content": "show orders"}]}

    response = client.post("/message", json=payload)

    assert response.status_code == 200
    assert response.json() == {"result": "<table><tr><td>1</td></tr></table>"}
    assert received == [[ChatMessage(role="user", content="show orders")]]


def test_message_forwards_full_history(client: TestClient, received):
    payload = {
        "messages": [
            {"role": "system", "content": "Be brief."},
            {"role": "user", "content": "show orders"},
            {"role": "assistant", "content": "<table></table>"},
            {"role": "user", "content": "now as csv"},
        ]
    }

    response = client.post("/message", json=payload)

    assert response.status_code == 200
    assert [message.role for message in received[0]] == ["system", "user", "assistant", "user"]


def test_agent_failure_returns_error_body(client: TestClient, monkeypatch: pytest.MonkeyPatch):
    async def failing_reply(messages):
        raise AgentError("Agent invocation failed: rate limited")

    monkeypatch.setattr(service_instance, "reply", failing_reply)

    response = client.post("/message", json={"messages": [{"role": "user", "content": "hi"}]})

    assert response.status_code == 500
    assert response.json() == {"error": "Agent invocation failed: rate limited"}


def test_missing_configuration_returns_error_body(client: TestClient, monkeypatch: pytest.MonkeyPatch):
    async def unconfigured_reply(messages):
        raise RuntimeError("AZURE_OPENAI_ENDPOINT environment variable is required")

    monkeypatch.setattr(service_instance, "reply", unconfigured_reply)

    response = client.post("/message", json={"messages": [{"role": "user", "content": "hi"}]})

    assert response.status_code == 500
    assert "AZURE_OPENAI_ENDPOINT" in response.json()["error"]


@pytest.mark.parametrize(
    "payload",
    [
        {"messages": []},
        {"messages": [{"role": "tool", "content": "x"}]},
        {"prompt": "hello"},
    ],
)
def test_invalid_payload_is_rejected(client: TestClient, received, payload):
    response = client.post("/message", json=payload)

    assert response.status_code == 422
    assert received == []


def test_schema_reports_placeholder_without_waiting(client: TestClient, monkeypatch: pytest.MonkeyPatch):
    monkeypatch.setattr(service_instance, "_schema_cache", SchemaCache(CatalogExecutor()))

    response = client.get("/schema")

    assert response.status_code == 200
    assert response.json() == {"status": "empty", "summary": SCHEMA_LOADING_PLACEHOLDER}


def test_schema_waits_for_discovery(client: TestClient, monkeypatch: pytest.MonkeyPatch):
    monkeypatch.setattr(service_instance, "_schema_cache", SchemaCache(CatalogExecutor()))

    response = client.get("/schema", params={"wait": 5})

    body = response.json()
    assert body["status"] == "populated"
    assert body["summary"].startswith("Database schema overview:\n- [sales].[dbo].[orders] columns: id")


def test_health_echoes_request_id(client: TestClient):
    response = client.get("/health", headers={"x-request-id": "abc-123"})

    assert response.json() == {"status": "ok"}
    assert response.headers["x-request-id"] == "abc-123"
