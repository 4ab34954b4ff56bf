"""Typed settings read from the environment (and a local ``.env`` file).

Nothing is required at import time: the API and the UI must start even when
the database or the model endpoint is not configured yet. Components check
the values they need when they are built, via ``require``.
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from functools import lru_cache

from dotenv import load_dotenv

load_dotenv()

_TRUTHY = {"true", "1", "yes", "on"}


def _env(name: str, default: str | None = None) -> str | None:
    value = os.getenv(name)
    return default if value is None or value.strip() == "" else value.strip()


def _env_flag(name: str, default: bool) -> bool:
    value = _env(name)
    return default if value is None else value.lower() in _TRUTHY


def _env_number(name: str, default: float, cast=float):
    value = _env(name)
    if value is None:
        return default
    try:
        return cast(value)
    except ValueError as exc:
        raise RuntimeError(f"Environment variable '{name}' must be a number, got {value!r}.") from exc


def require(value: str | None, name: str) -> str:
    """Return ``value`` or raise naming the environment variable that should hold it."""
    if not value:
        raise RuntimeError(f"Environment variable '{name}' must be set.")
    return value


@dataclass(frozen=True)
class AzureOpenAISettings:
    endpoint: str | None = None
    api_key: str | None = None
    deployment_name: str | None = None
    api_version: str = "2024-02-01"
    temperature: float = 0.0

    @classmethod
    def from_env(cls) -> "AzureOpenAISettings":
        return cls(
            endpoint=_env("AZURE_OPENAI_ENDPOINT"),
            api_key=_env("AZURE_OPENAI_API_KEY"),
            deployment_name=_env("AZURE_OPENAI_DEPLOYMENT_NAME"),
            api_version=_env("AZURE_OPENAI_API_VERSION", cls.api_version),
            temperature=_env_number("LLM_TEMPERATURE", cls.temperature),
        )

    @property
    def is_configured(self) -> bool:
        return bool(self.endpoint and self.api_key and self.deployment_name)


@dataclass(frozen=True)
class DatabaseSettings:
    """Direct SQLAlchemy connection; unset means queries go through the HTTP proxy."""

    url: str | None = None
    pool_size: int = 5
    max_overflow: int = 5

    @classmethod
    def from_env(cls) -> "DatabaseSettings":
        return cls(
            url=_env("DATABASE_URL"),
            pool_size=_env_number("DATABASE_POOL_SIZE", cls.pool_size, int),
            max_overflow=_env_number("DATABASE_MAX_OVERFLOW", cls.max_overflow, int),
        )


@dataclass(frozen=True)
class QueryApiSettings:
    url: str = "http://localhost:5000/api/query"
    timeout_seconds: float = 30.0

    @classmethod
    def from_env(cls) -> "QueryApiSettings":
        return cls(
            url=_env("QUERY_API_URL", cls.url),
            timeout_seconds=_env_number("QUERY_API_TIMEOUT_SECONDS", cls.timeout_seconds),
        )


@dataclass(frozen=True)
class SchemaCacheSettings:
    refresh_interval_seconds: float = 30 * 60
    refresh_enabled: bool = True
    # how long a chat request waits for a first discovery pass
    request_wait_seconds: float = 5.0

    @classmethod
    def from_env(cls) -> "SchemaCacheSettings":
        return cls(
            refresh_interval_seconds=_env_number("SCHEMA_REFRESH_INTERVAL_SECONDS", cls.refresh_interval_seconds),
            refresh_enabled=_env_flag("SCHEMA_REFRESH_ENABLED", cls.refresh_enabled),
            request_wait_seconds=_env_number("SCHEMA_WAIT_SECONDS", cls.request_wait_seconds),
        )


@dataclass(frozen=True)
class Settings:
    azure_openai: AzureOpenAISettings
    database: DatabaseSettings
    query_api: QueryApiSettings
    schema_cache: SchemaCacheSettings
    # auto | direct | api; auto uses the database when DATABASE_URL is set
    query_executor: str = "auto"
    agent_recursion_limit: int = 25
    sql_read_only: bool = True
    log_sql_text: bool = False
    log_level: str = "INFO"


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Settings for this process, read once."""
    return Settings(
        azure_openai=AzureOpenAISettings.from_env(),
        database=DatabaseSettings.from_env(),
        query_api=QueryApiSettings.from_env(),
        schema_cache=SchemaCacheSettings.from_env(),
        query_executor=(_env("QUERY_EXECUTOR", "auto") or "auto").lower(),
        agent_recursion_limit=_env_number("AGENT_RECURSION_LIMIT", 25, int),
        sql_read_only=_env_flag("SQL_READ_ONLY", True),
        log_sql_text=_env_flag("LOG_SQL_TEXT", False),
        log_level=_env("LOG_LEVEL", "INFO") or "INFO",
    )
