"""Chat service: schema-aware conversation handling around the SQL agent."""

from __future__ import annotations

import json
import logging
import time
from dataclasses import dataclass
from typing import Any, Callable, List, Sequence

from langchain_core.messages import AIMessage, BaseMessage, HumanMessage, SystemMessage, ToolMessage
from langchain_core.tools import BaseTool, StructuredTool
from pydantic import BaseModel, Field

from app.agent.executor import ExecutionError, QueryExecutor, Rows, Scalar, build_executor
from app.agent.formatting import NO_DATA_HTML, csv_download_link, rows_to_csv, rows_to_html_table, wants_download
from app.agent.guardrails import GuardrailViolation, ensure_read_only, first_table_name
from app.agent.llm import AgentError, build_agent, build_chat_model
from app.agent.prompts import TOOL_DESCRIPTION, TOOL_SQL_ARGUMENT, build_system_message
from app.agent.schema_cache import SchemaCache, get_schema_cache
from app.core.config import get_settings
from app.core.logging import get_logger, log_structured

logger = get_logger(__name__)

TOOL_NAME = "get_from_db"

_ROLE_TO_MESSAGE = {
    "system": SystemMessage,
    "user": HumanMessage,
    "human": HumanMessage,
    "assistant": AIMessage,
    "ai": AIMessage,
}


@dataclass(frozen=True)
class ChatMessage:
    role: str
    content: str


class GetFromDbInput(BaseModel):
    sql: str = Field(..., description=TOOL_SQL_ARGUMENT)


AgentFactory = Callable[[Sequence[BaseTool]], Any]


def build_conversation(messages: Sequence[ChatMessage], schema_summary: str) -> List[BaseMessage]:
    """Convert transport messages and prefix the schema summary to the system message.

    A default system message is inserted when the history does not start with one.
    """
    if not messages:
        raise ValueError("Conversation must contain at least one message.")

    converted: List[BaseMessage] = []
    for message in messages:
        message_cls = _ROLE_TO_MESSAGE.get(message.role.lower())
        if message_cls is None:
            raise ValueError(f"Unsupported message role '{message.role}'.")
        converted.append(message_cls(content=message.content))

    if isinstance(converted[0], SystemMessage):
        converted[0] = SystemMessage(content=build_system_message(schema_summary, str(converted[0].content)))
    else:
        converted.insert(0, SystemMessage(content=build_system_message(schema_summary)))
    return converted


def _last_user_content(messages: Sequence[ChatMessage]) -> str:
    for message in reversed(messages):
        if message.role.lower() in {"user", "human"}:
            return message.content
    return ""


def _message_text(message: BaseMessage) -> str:
    content = message.content
    if isinstance(content, str):
        return content
    parts = []
    for part in content:
        if isinstance(part, str):
            parts.append(part)
        elif isinstance(part, dict) and part.get("type") == "text":
            parts.append(str(part.get("text", "")))
    return "".join(parts)


class SqlChatService:
    """Main entrypoint for serving chat requests."""

    def __init__(
        self,
        *,
        executor: QueryExecutor | None = None,
        schema_cache: SchemaCache | None = None,
        agent_factory: AgentFactory | None = None,
    ) -> None:
        self._executor = executor
        self._schema_cache = schema_cache
        self._agent_factory = agent_factory
        self._model: Any | None = None

    @property
    def schema_cache(self) -> SchemaCache:
        if self._schema_cache is None:
            self._schema_cache = get_schema_cache()
        return self._schema_cache

    def _get_executor(self) -> QueryExecutor:
        if self._executor is None:
            self._executor = build_executor()
        return self._executor

    def _create_agent(self, tools: Sequence[BaseTool]) -> Any:
        if self._agent_factory is not None:
            return self._agent_factory(tools)
        if self._model is None:
            self._model = build_chat_model()
        return build_agent(tools, self._model)

    # ------------------------------------------------------------------
    # Database tool
    # ------------------------------------------------------------------
    def run_sql_tool(self, sql: str, *, download: bool = False) -> str:
        """Execute ``sql`` for the agent and format the result as text.

        Failures come back as ``Error: ...`` text so the agent can react and
        the conversation continues.
        """
        settings = get_settings()
        log_structured(
            logger,
            logging.INFO,
            "tool_get_from_db",
            download=download,
            sql=sql if settings.log_sql_text else None,
        )
        try:
            if settings.sql_read_only:
                ensure_read_only(sql)
            result = self._get_executor().execute(sql)
        except (GuardrailViolation, ExecutionError) as exc:
            log_structured(logger, logging.WARNING, "tool_get_from_db_failed", error=str(exc))
            return f"Error: {exc}"

        if isinstance(result, Rows):
            if not result.records:
                return NO_DATA_HTML
            if download:
                return csv_download_link(rows_to_csv(result.columns, result.records), first_table_name(sql))
            return rows_to_html_table(result.columns, result.records)
        if isinstance(result, Scalar):
            return json.dumps(result.value, default=str)
        return result.text

    def build_tools(self, *, download: bool = False) -> List[BaseTool]:
        def get_from_db(sql: str) -> str:
            return self.run_sql_tool(sql, download=download)

        return [
            StructuredTool.from_function(
                func=get_from_db,
                name=TOOL_NAME,
                description=TOOL_DESCRIPTION,
                args_schema=GetFromDbInput,
            )
        ]

    # ------------------------------------------------------------------
    # Conversation
    # ------------------------------------------------------------------
    async def reply(self, messages: Sequence[ChatMessage]) -> str:
        """Run the agent over the conversation and return the final assistant text."""
        settings = get_settings()
        cache = self.schema_cache
        # Joins (or starts) the single discovery pass; falls back to the placeholder after the wait.
        wait = settings.schema_cache.request_wait_seconds
        schema_summary = await cache.get_summary(timeout=wait) if wait > 0 else cache.peek()
        conversation = build_conversation(messages, schema_summary)
        download = wants_download(_last_user_content(messages))
        started = time.perf_counter()
        log_structured(
            logger,
            logging.INFO,
            "agent_reply_start",
            message_count=len(messages),
            download=download,
            schema_status=cache.status.value,
        )

        agent = self._create_agent(self.build_tools(download=download))
        try:
            state = await agent.ainvoke(
                {"messages": conversation},
                config={"recursion_limit": settings.agent_recursion_limit},
            )
        except Exception as exc:
            log_structured(logger, logging.ERROR, "agent_reply_failed", error=str(exc))
            raise AgentError(f"Agent invocation failed: {exc}") from exc

        result_messages = state.get("messages") or []
        if not result_messages:
            raise AgentError("Agent returned no messages.")
        reply = _message_text(result_messages[-1])
        log_structured(
            logger,
            logging.INFO,
            "agent_reply_complete",
            tool_calls=sum(1 for message in result_messages if isinstance(message, ToolMessage)),
            reply_length=len(reply),
            elapsed_ms=round((time.perf_counter() - started) * 1000, 2),
        )
        return reply
