from __future__ import annotations

from types import SimpleNamespace
from typing import List

import pytest
from fastapi.testclient import TestClient

from app.agent import service as service_module
from app.agent.executor import Rows
from app.agent.schema_cache import SchemaCache
from app.agent.service import TOOL_NAME, SqlChatService
from app.api import main as api_main
from app.render.classifier import DownloadLink, HtmlTable, classify
from app.render.export import ExportAction, export

ORDERS = Rows(columns=["id", "total"], records=[{"id": 1, "total": 10}, {"id": 2, "total": 7}])


class StubExecutor:
    def __init__(self) -> None:
        self.calls: List[str] = []

    def execute(self, sql: str):
        self.calls.append(sql)
        return ORDERS


class StubAgent:
    """Issues one fixed query through the tool and echoes its output."""

    def __init__(self, tools) -> None:
        self._tools = {tool.name: tool for tool in tools}

    async def ainvoke(self, state, config=None):
        output = self._tools[TOOL_NAME].invoke({"sql": "SELECT [id], [total] FROM [sales].[dbo].[orders]"})
        return {"messages": [*state["messages"], SimpleNamespace(content=output)]}


@pytest.fixture
def client(monkeypatch: pytest.MonkeyPatch) -> TestClient:
    settings = SimpleNamespace(
        sql_read_only=True,
        log_sql_text=False,
        agent_recursion_limit=5,
        schema_cache=SimpleNamespace(request_wait_seconds=0.0),
    )
    monkeypatch.setattr(service_module, "get_settings", lambda: settings)
    service = SqlChatService(
        executor=StubExecutor(),
        schema_cache=SchemaCache(StubExecutor()),
        agent_factory=StubAgent,
    )
    monkeypatch.setattr(api_main, "service", service)
    return TestClient(api_main.app)


def test_message_round_trip_to_csv_export(client: TestClient):
    response = client.post("/message", json={"messages": [{"role": "user", "content": "show orders"}]})

    assert response.status_code == 200
    decision = classify(response.json()["result"])
    assert isinstance(decision, HtmlTable)

    exported = export(decision, ExportAction.CSV)
    assert exported.data.decode("utf-8") == '"id","total"\r\n"1","10"\r\n"2","7"'


def test_download_request_yields_download_link(client: TestClient):
    response = client.post("/message", json={"messages": [{"role": "user", "content": "download orders as csv"}]})

    assert response.status_code == 200
    decision = classify(response.json()["result"])
    assert isinstance(decision, DownloadLink)
