"""Logging setup shared by the API, the UI and the schema CLI.

Every record carries the current request id (``-`` outside a request).
``log_structured`` appends a JSON payload of fields to an event name; field
values that look like credentials are masked before they are serialised.
"""

from __future__ import annotations

import json
import logging
import re
from contextvars import ContextVar, Token
from typing import Any, Mapping, Optional

_NO_REQUEST = "-"
_MASK = "***"

_request_id: ContextVar[str] = ContextVar("request_id", default=_NO_REQUEST)

_SECRET_FIELD = re.compile(r"password|passwd|pwd|api_key|secret|token", re.IGNORECASE)
# user:password@host in URLs, and PWD=...; in ODBC connection strings
_URL_CREDENTIALS = re.compile(r"(?<=://)([^/\s:@]+):[^/\s@]+(?=@)")
_ODBC_PASSWORD = re.compile(r"(?i)\b(pwd|password)=[^;]*")


class RequestIdFilter(logging.Filter):
    def filter(self, record: logging.LogRecord) -> bool:
        record.request_id = _request_id.get()
        return True


def configure_logging(level: Optional[str] = None) -> None:
    """Install a stream handler on the root logger unless the host already did."""
    root = logging.getLogger()
    if root.handlers:
        # uvicorn / streamlit configure their own handlers
        for handler in root.handlers:
            if not any(isinstance(f, RequestIdFilter) for f in handler.filters):
                handler.addFilter(RequestIdFilter())
        return

    if level is None:
        from app.core.config import get_settings

        level = get_settings().log_level
    handler = logging.StreamHandler()
    handler.addFilter(RequestIdFilter())
    handler.setFormatter(
        logging.Formatter(
            "%(asctime)s | %(levelname)s | %(name)s | %(request_id)s | %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S",
        )
    )
    root.addHandler(handler)
    root.setLevel(level.upper())


def get_logger(name: Optional[str] = None) -> logging.Logger:
    return logging.getLogger(name)


def set_request_id(request_id: str) -> Token:
    return _request_id.set(request_id or _NO_REQUEST)


def get_request_id() -> str:
    return _request_id.get()


def reset_request_id(token: Token | None) -> None:
    if token is not None:
        _request_id.reset(token)


def mask_credentials(text: str) -> str:
    """Hide passwords embedded in database URLs and connection strings."""
    text = _URL_CREDENTIALS.sub(lambda match: f"{match.group(1)}:{_MASK}", text)
    return _ODBC_PASSWORD.sub(lambda match: f"{match.group(1)}={_MASK}", text)


def redact(value: Any, key: str = "") -> Any:
    if key and _SECRET_FIELD.search(key) and value is not None:
        return _MASK
    if isinstance(value, str):
        return mask_credentials(value)
    if isinstance(value, Mapping):
        return {k: redact(v, str(k)) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [redact(item) for item in value]
    return value


def log_structured(logger: logging.Logger, level: int, event: str, **fields: Any) -> None:
    """Log ``event`` with ``fields`` as sorted JSON; ``None`` fields are dropped."""
    if not logger.isEnabledFor(level):
        return
    payload = {key: redact(value, key) for key, value in fields.items() if value is not None}
    logger.log(level, "%s | %s", event, json.dumps(payload, default=str, sort_keys=True))
