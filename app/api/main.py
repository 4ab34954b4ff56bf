"""FastAPI application exposing the chat message endpoint."""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from time import perf_counter
from typing import List, Literal
from uuid import uuid4

from fastapi import FastAPI, Request, Response
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from app.agent.llm import AgentError
from app.agent.schema_cache import SchemaRefresher
from app.agent.service import ChatMessage, SqlChatService
from app.core.config import get_settings
from app.core.logging import (
    configure_logging,
    get_logger,
    log_structured,
    reset_request_id,
    set_request_id,
)

configure_logging()
logger = get_logger(__name__)

service = SqlChatService()


@asynccontextmanager
async def lifespan(_: FastAPI):
    settings = get_settings().schema_cache
    refresher: SchemaRefresher | None = None
    if settings.refresh_enabled:
        refresher = SchemaRefresher(service.schema_cache, settings.refresh_interval_seconds)
        refresher.start()
    else:
        logger.info("Schema refresh disabled; discovery runs on the first chat request.")
    try:
        yield
    finally:
        if refresher is not None:
            await refresher.stop()


app = FastAPI(title="SQL Chat Assistant", lifespan=lifespan)


@app.middleware("http")
async def request_context(request: Request, call_next):
    """Tag logs with a request id (client supplied or generated) and time the request."""
    request_id = request.headers.get("x-request-id") or uuid4().hex
    token = set_request_id(request_id)
    started = perf_counter()
    status = 500
    try:
        response: Response = await call_next(request)
        status = response.status_code
        response.headers["x-request-id"] = request_id
        return response
    finally:
        log_structured(
            logger,
            logging.INFO if status < 500 else logging.ERROR,
            "request",
            method=request.method,
            path=request.url.path,
            status=status,
            elapsed_ms=round((perf_counter() - started) * 1000, 2),
        )
        reset_request_id(token)


class MessageIn(BaseModel):
    role: Literal["system", "user", "assistant"]
    content: str


class MessageRequest(BaseModel):
    messages: List[MessageIn] = Field(..., min_length=1, description="Full conversation, newest message last.")


class MessageResponse(BaseModel):
    result: str


class ErrorResponse(BaseModel):
    error: str


class SchemaResponse(BaseModel):
    status: str
    summary: str


@app.post(
    "/message",
    response_model=MessageResponse,
    responses={500: {"model": ErrorResponse}},
)
async def message(request: MessageRequest):
    logger.info("Received message request (%d messages)", len(request.messages))
    history = [ChatMessage(role=item.role, content=item.content) for item in request.messages]
    try:
        result = await service.reply(history)
    except AgentError as exc:
        log_structured(logger, logging.ERROR, "agent_error", error=str(exc))
        return JSONResponse(status_code=500, content={"error": str(exc)})
    except (ValueError, RuntimeError) as exc:
        log_structured(logger, logging.ERROR, "message_failed", error=str(exc))
        return JSONResponse(status_code=500, content={"error": str(exc) or "Unknown error"})
    return MessageResponse(result=result)


@app.get("/schema", response_model=SchemaResponse)
async def schema(wait: float = 0.0) -> SchemaResponse:
    """Current schema summary; ``wait`` seconds to wait for a first discovery pass."""
    cache = service.schema_cache
    summary = await cache.get_summary(timeout=wait) if wait > 0 else cache.peek()
    return SchemaResponse(status=cache.status.value, summary=summary)


@app.get("/health")
async def health() -> dict:
    return {"status": "ok"}
