"""API request / response schemas.

These thin schemas sit between HTTP and the managers / store.  Event
submission bodies are deliberately untyped (``dict``): the validator owns the
canonical schema so that every violation is reported together, and unknown
fields survive into ``extensions``.

- **Create** schemas validate admin input and provide defaults.
- **Update** schemas allow partial updates via ``exclude_unset``.
- **Response** schemas serialize ORM rows via ``from_attributes``.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from agentwatch.event_server.models.enums import ExportFormat, IngestStatus, Severity
from agentwatch.event_server.models.events import FieldError, IngestWarning, StoredEvent

# ---------------------------------------------------------------------------
# Ingestion
# ---------------------------------------------------------------------------


class EventBatch(BaseModel):
    """Enveloped batch submission body; a bare JSON array is accepted too."""

    events: list[Any] = Field(description="Raw event objects; each is validated independently.")


class SubmitResponse(BaseModel):
    """Successful single submit."""

    id: str
    sequence: int
    warnings: list[IngestWarning] = Field(default_factory=list)


class BatchItemResult(BaseModel):
    """Outcome of one batch item.  ``ok`` is true only for committed events.

    A failed item carries ``error``, a one-line reason, next to the
    structured ``errors`` of a rejection.
    """

    index: int
    ok: bool
    status: IngestStatus
    id: str | None = None
    sequence: int | None = None
    error: str | None = None
    warnings: list[IngestWarning] = Field(default_factory=list)
    errors: list[FieldError] = Field(default_factory=list)
    retryable: bool = False
    message: str | None = None


# ---------------------------------------------------------------------------
# Query
# ---------------------------------------------------------------------------


class EventPageResponse(BaseModel):
    events: list[StoredEvent]
    next_cursor: str | None = None


class ExportQuery(BaseModel):
    """Body of ``POST /v1/export/query``."""

    platform: str | None = None
    source_app: str | None = None
    session_id: str | None = None
    agent_id: str | None = None
    event_type: str | None = None
    event_category: str | None = None
    severity: list[Severity] = Field(default_factory=list)
    start: datetime | None = None
    end: datetime | None = None
    format: ExportFormat = ExportFormat.JSON


class ExportResponse(BaseModel):
    """JSON export body.  ``truncated`` is set when ``export.max_rows`` cut the result short."""

    events: list[StoredEvent]
    count: int
    truncated: bool = False


# ---------------------------------------------------------------------------
# Platform
# ---------------------------------------------------------------------------


class PlatformCreate(BaseModel):
    """Input for registering a platform."""

    name: str = Field(min_length=1, pattern=r"^[A-Za-z0-9_.\-]+$")
    display_name: str
    version: str | None = None
    schema_version: str = "1.0"
    enabled: bool = True
    config: dict[str, Any] = Field(default_factory=dict)


class PlatformUpdate(BaseModel):
    """Partial platform update -- only fields explicitly set are applied."""

    display_name: str | None = None
    version: str | None = None
    schema_version: str | None = None
    enabled: bool | None = None
    config: dict[str, Any] | None = None


class PlatformResponse(BaseModel):
    """Serialized registry entry."""

    model_config = ConfigDict(from_attributes=True)

    name: str
    display_name: str
    version: str | None = None
    schema_version: str
    enabled: bool
    config: dict[str, Any]
    created_at: datetime
    updated_at: datetime


class ClientHints(BaseModel):
    """Ingestion settings adapters should honor when talking to this server."""

    server_url: str
    protocol: str
    batch_size: int
    flush_interval_ms: int
    max_payload_size_kb: int
    sampling_rate: float


class PlatformSchemaResponse(BaseModel):
    platform: PlatformResponse
    required_fields: list[str]
    recommended_event_types: list[str]
    client: ClientHints
