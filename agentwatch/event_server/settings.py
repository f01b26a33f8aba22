"""Service configuration loaded from AGENTWATCH_* environment variables."""

from __future__ import annotations

import re
from typing import Literal

from pydantic import BaseModel, Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

DEFAULT_REDACT_PATTERNS = [r"api[_-]?key", r"password", r"secret", r"token(?!s$)", r"authorization"]
"""Payload key patterns (case-insensitive) whose values are replaced before commit."""

DEFAULT_REDACT_VALUE_PATTERNS = [
    r"(?i)bearer\s+[a-z0-9._\-]+",
    r"sk-[A-Za-z0-9_\-]{16,}",
    r"AKIA[0-9A-Z]{16}",
]
"""Value patterns for secrets that show up inside free text (prompts, tool output)."""

_PROTECTED_FIELDS = frozenset(
    {"id", "platform", "source_app", "session_id", "event_type", "event_category", "timestamp", "ingested_at"}
)


class ServerSection(BaseModel):
    url: str = "http://localhost:8000"
    """Public URL advertised to adapters."""

    protocol: Literal["http", "stream"] = "http"


class EventsSection(BaseModel):
    sampling_rate: float = Field(default=1.0, ge=0.0, le=1.0)
    batch_size: int = Field(default=100, ge=1)
    """Maximum number of items accepted in one batch request."""

    flush_interval_ms: int = Field(default=1000, ge=0)
    """Client flush interval hint, advertised through the platform schema endpoint."""

    max_payload_size_kb: int = Field(default=64, ge=1)
    max_pending_commits: int = Field(default=256, ge=1)
    """Size of the gateway's bounded commit buffer."""


class RateLimitSection(BaseModel):
    per_second: float = Field(default=0.0, ge=0.0)
    """Sustained events/second allowed per ``source_app``.  ``0`` disables limiting."""

    burst: int = Field(default=200, ge=1)


class StreamSection(BaseModel):
    queue_size: int = Field(default=1000, ge=1)
    """Per-subscriber outbound queue capacity (drop-oldest on overflow)."""


class QuerySection(BaseModel):
    default_window_hours: float = Field(default=24.0, gt=0)
    max_window_hours: float = Field(default=24.0 * 31, gt=0)
    max_page_size: int = Field(default=500, ge=1)
    default_page_size: int = Field(default=100, ge=1)

    @model_validator(mode="after")
    def _check_windows(self) -> QuerySection:
        if self.default_window_hours > self.max_window_hours:
            msg = "query.default_window_hours must not exceed query.max_window_hours"
            raise ValueError(msg)
        return self


class ExportSection(BaseModel):
    max_rows: int = Field(default=50_000, ge=1)


class AgentWatchSettings(BaseSettings):
    """agentwatch event server settings.

    All fields are read from environment variables with the ``AGENTWATCH_``
    prefix.  Nested sections use ``__`` as delimiter, e.g.
    ``AGENTWATCH_EVENTS__SAMPLING_RATE=0.5`` maps to ``events.sampling_rate``
    and ``AGENTWATCH_CAPTURE__LLM=false`` disables the ``llm`` category.
    """

    model_config = SettingsConfigDict(
        env_prefix="AGENTWATCH_",
        env_file=".env",
        env_file_encoding="utf-8",
        env_nested_delimiter="__",
        case_sensitive=False,
    )

    # -- Logging ---------------------------------------------------------------
    log_level: str = "INFO"
    log_format: Literal["text", "json"] = "text"
    """``json`` emits one serialized record per line for log shippers."""

    # -- Infrastructure --------------------------------------------------------
    database_url: str = "sqlite+aiosqlite:///./agentwatch.db"
    """Async SQLAlchemy URL.  PostgreSQL (``postgresql+psycopg://``) in production."""

    redis_url: str | None = None
    """Redis connection string.  Enables cross-instance stream relay when set."""

    auto_create_schema: bool = False
    """Create tables directly from metadata instead of running Alembic migrations."""

    # -- Server ----------------------------------------------------------------
    host: str = "0.0.0.0"  # noqa: S104
    port: int = 8000
    graceful_shutdown_timeout: int = 30
    """Seconds to wait for in-flight commits to finish during shutdown."""

    server: ServerSection = Field(default_factory=ServerSection)

    # -- Ingestion -------------------------------------------------------------
    events: EventsSection = Field(default_factory=EventsSection)
    capture: dict[str, bool] = Field(default_factory=dict)
    """Per-category enable flags.  Categories not listed are captured."""

    redact_patterns: list[str] = Field(default_factory=lambda: list(DEFAULT_REDACT_PATTERNS))
    redact_value_patterns: list[str] = Field(default_factory=lambda: list(DEFAULT_REDACT_VALUE_PATTERNS))
    exclude_fields: list[str] = Field(default_factory=list)
    """Dotted field paths dropped before commit, e.g. ``payload.input.prompt``."""

    retry_attempts: int = Field(default=3, ge=1)
    retry_backoff_ms: int = Field(default=50, ge=0)
    timeout_ms: int = Field(default=10_000, ge=1)
    rate_limit: RateLimitSection = Field(default_factory=RateLimitSection)

    # -- Read side -------------------------------------------------------------
    stream: StreamSection = Field(default_factory=StreamSection)
    query: QuerySection = Field(default_factory=QuerySection)
    export: ExportSection = Field(default_factory=ExportSection)

    @field_validator("redact_patterns", "redact_value_patterns")
    @classmethod
    def _check_patterns(cls, patterns: list[str]) -> list[str]:
        for pattern in patterns:
            try:
                re.compile(pattern)
            except re.error as exc:
                msg = f"invalid pattern {pattern!r}: {exc}"
                raise ValueError(msg) from exc
        return patterns

    @field_validator("exclude_fields")
    @classmethod
    def _check_exclude_fields(cls, paths: list[str]) -> list[str]:
        for path in paths:
            if path.split(".", 1)[0] in _PROTECTED_FIELDS:
                msg = f"exclude_fields cannot remove required or server-assigned field {path!r}"
                raise ValueError(msg)
        return paths

    @field_validator("capture")
    @classmethod
    def _normalise_capture(cls, capture: dict[str, bool]) -> dict[str, bool]:
        return {key.lower(): value for key, value in capture.items()}

    # -- Helpers ---------------------------------------------------------------

    def category_enabled(self, category: str) -> bool:
        return self.capture.get(category.lower(), True)


def get_settings() -> AgentWatchSettings:
    """Return a cached settings instance.

    Reads from environment variables and ``.env`` on first call, then returns
    the same object.  Call ``_get_settings_cached.cache_clear()`` in tests to force a
    re-read after overriding env vars.
    """
    return _get_settings_cached()


def _get_settings_cached() -> AgentWatchSettings:
    """Inner function wrapped by lru_cache (allows type-safe cache_clear)."""
    return AgentWatchSettings()


# Apply lru_cache at runtime so the function is only called once.
from functools import lru_cache  # noqa: E402

_get_settings_cached = lru_cache(maxsize=1)(_get_settings_cached)
