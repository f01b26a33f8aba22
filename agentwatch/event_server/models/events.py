"""Canonical event models.

``CanonicalEvent`` is the normalized, platform-agnostic record every adapter
produces and the validator emits.  ``StoredEvent`` is the same record after
commit, carrying its ``sequence``.  Stream messages wrap stored events for
live subscribers.
"""

from __future__ import annotations

from datetime import UTC, datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator

from agentwatch.event_server.models.enums import Severity, SourceType, StreamMessageType, WarningCode


class TokenUsage(BaseModel):
    """Token telemetry for model calls."""

    input: int | None = Field(default=None, ge=0)
    output: int | None = Field(default=None, ge=0)
    total: int | None = Field(default=None, ge=0)


class CanonicalEvent(BaseModel):
    """A validated event ready for commit (no ``sequence`` yet)."""

    model_config = ConfigDict(from_attributes=True)

    id: str
    platform: str
    platform_version: str | None = None
    source_app: str
    source_type: SourceType = SourceType.AGENT
    agent_id: str | None = None
    session_id: str
    parent_event_id: str | None = None
    event_type: str
    event_category: str
    timestamp: datetime
    ingested_at: datetime
    duration_ms: float | None = None
    payload: dict[str, Any] = Field(default_factory=dict)
    model: str | None = None
    tokens: TokenUsage | None = None
    severity: Severity = Severity.INFO
    tags: list[str] = Field(default_factory=list)
    extensions: dict[str, Any] = Field(default_factory=dict)

    @field_validator("timestamp", "ingested_at")
    @classmethod
    def _as_utc(cls, value: datetime) -> datetime:
        # Some backends (SQLite) hand back naive datetimes; everything is stored as UTC.
        if value.tzinfo is None:
            return value.replace(tzinfo=UTC)
        return value.astimezone(UTC)


class StoredEvent(CanonicalEvent):
    """A committed event with its store-assigned sequence number."""

    sequence: int


class IngestWarning(BaseModel):
    """Non-fatal condition attached to an otherwise successful submit."""

    code: WarningCode
    field: str | None = None
    message: str


class FieldError(BaseModel):
    """A single offending field in a rejected event."""

    field: str
    reason: str


# ---------------------------------------------------------------------------
# Stream
# ---------------------------------------------------------------------------


class StreamMessage(BaseModel):
    """Wire-format message sent over WebSocket / SSE streams."""

    type: StreamMessageType
    subscription_id: str | None = None
    event: StoredEvent | None = None
    dropped: int | None = None
    """Cumulative number of events dropped for this subscriber (``overrun`` only)."""
