"""Application configuration and data source connection settings."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
import os
from typing import Optional

from dotenv import load_dotenv

load_dotenv(override=True)


class Dialect(str, Enum):
    """Supported relational engines."""
    POSTGRESQL = "postgresql"
    MYSQL = "mysql"

    @property
    def default_schema(self) -> str | None:
        """Schema assumed for unqualified table names (MySQL has none)."""
        return "public" if self is Dialect.POSTGRESQL else None


@dataclass(frozen=True)
class ConnectionConfig:
    """Decrypted connection parameters for one workspace data source."""
    dialect: Dialect
    host: str
    port: int
    database: str
    user: str
    password: str = field(default="", repr=False)
    ssl: bool = False
    connect_timeout: int = 10

    @classmethod
    def from_dict(cls, payload: dict) -> "ConnectionConfig":
        """Build a config from a plain mapping (catalog files, providers)."""
        dialect = Dialect(str(payload.get("dialect") or payload.get("type") or "").lower())
        default_port = 5432 if dialect is Dialect.POSTGRESQL else 3306
        return cls(
            dialect=dialect,
            host=str(payload.get("host", "localhost")),
            port=int(payload.get("port") or default_port),
            database=str(payload.get("database", "")),
            user=str(payload.get("user", "")),
            password=str(payload.get("password", "")),
            ssl=bool(payload.get("ssl", False)),
            connect_timeout=int(payload.get("connect_timeout", 10)),
        )


def _env_bool(name: str, default: str) -> bool:
    return os.getenv(name, default).lower() in ("1", "true", "yes", "y")


@dataclass(frozen=True)
class Settings:
    """Application settings."""
    # LLM settings
    llm_base_url: str
    llm_model: str
    llm_api_key: str
    llm_max_tokens: int
    llm_endpoints: tuple[str, ...]
    llm_retries: int
    llm_retry_backoff_ms: int
    request_timeout: int

    # Guard and execution settings
    query_timeout_ms: int
    force_limit: int
    max_rows: int
    max_json_bytes: int
    forbid_free_joins: bool
    sql_repair_enabled: bool

    # Request handling
    rate_limit_requests: int
    rate_limit_window_seconds: int
    max_prompt_length: int

    # Storage paths
    workspace_catalog_path: str
    request_store_path: str

    cors_origins: tuple[str, ...] = ("http://localhost:5173",)


def get_settings() -> Settings:
    """Load settings from environment variables."""
    base_dir = os.path.abspath(os.path.join(os.path.dirname(__file__), "..", ".."))
    default_catalog = os.path.join(base_dir, "config", "workspaces.yaml")

    endpoints = tuple(
        item.strip()
        for item in os.getenv("LLM_ENDPOINTS", "chat,completions").split(",")
        if item.strip()
    )

    return Settings(
        # LLM
        llm_base_url=os.getenv("LLM_BASE_URL", "http://localhost:11434").rstrip("/"),
        llm_model=os.getenv("LLM_MODEL", "qwen2.5-coder:14b"),
        llm_api_key=os.getenv("LLM_API_KEY", ""),
        llm_max_tokens=int(os.getenv("LLM_MAX_TOKENS", "1024")),
        llm_endpoints=endpoints or ("chat",),
        llm_retries=int(os.getenv("LLM_RETRIES", "2")),
        llm_retry_backoff_ms=int(os.getenv("LLM_RETRY_BACKOFF_MS", "500")),
        request_timeout=int(os.getenv("REQUEST_TIMEOUT", "60")),

        # Guard and execution
        query_timeout_ms=int(os.getenv("QUERY_TIMEOUT_MS", "10000")),
        force_limit=int(os.getenv("FORCE_LIMIT", "101")),
        max_rows=int(os.getenv("MAX_ROWS", "100")),
        max_json_bytes=int(os.getenv("MAX_JSON_BYTES", str(200 * 1024))),
        forbid_free_joins=_env_bool("FORBID_FREE_JOINS", "yes"),
        sql_repair_enabled=_env_bool("SQL_REPAIR_ENABLED", "no"),

        # Request handling
        rate_limit_requests=int(os.getenv("RATE_LIMIT_REQUESTS", "30")),
        rate_limit_window_seconds=int(os.getenv("RATE_LIMIT_WINDOW_SECONDS", "60")),
        max_prompt_length=int(os.getenv("MAX_PROMPT_LENGTH", "1000")),

        # Paths
        workspace_catalog_path=os.getenv("WORKSPACE_CATALOG_PATH", default_catalog),
        request_store_path=os.getenv("REQUEST_STORE_PATH", ""),

        cors_origins=tuple(
            origin.strip()
            for origin in os.getenv("CORS_ORIGINS", "http://localhost:5173").split(",")
            if origin.strip()
        ),
    )


# Singleton for caching settings
_settings_cache: Optional[Settings] = None


def get_cached_settings() -> Settings:
    """Get cached settings (loads once)."""
    global _settings_cache
    if _settings_cache is None:
        _settings_cache = get_settings()
    return _settings_cache


def clear_settings_cache() -> None:
    """Clear the settings cache (useful for testing)."""
    global _settings_cache
    _settings_cache = None
