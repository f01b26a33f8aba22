"""Schema validation and normalization of submitted events.

``normalize_event`` is a pure function: given a raw submitted record, the
normalizer configuration and a platform registry snapshot, it either returns
a ``NormalizedEvent`` (canonical event + warnings) or raises
``EventValidationError`` listing every offending field at once.

Order of operations:

1. Structural validation (pydantic) -- all violations collected together.
2. Unknown top-level fields moved under ``extensions``.
3. ``event_category`` derived from the ``event_type`` prefix.
4. Configured ``exclude_fields`` dropped.
5. Redaction of ``payload`` and ``extensions``.
6. Payload size enforcement (truncation).
7. ``id`` assigned when absent; ``ingested_at`` always assigned.
"""

from __future__ import annotations

import json
import uuid
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any

from loguru import logger
from pydantic import BaseModel, ConfigDict, Field, ValidationError, ValidationInfo, field_validator

from agentwatch.event_server.models.enums import KNOWN_EVENT_TYPES, Severity, SourceType, WarningCode
from agentwatch.event_server.models.events import CanonicalEvent, FieldError, IngestWarning, TokenUsage
from agentwatch.event_server.validation.redaction import Redactor, drop_path

if TYPE_CHECKING:
    from agentwatch.event_server.models.platform import RegistrySnapshot
    from agentwatch.event_server.settings import AgentWatchSettings

SERVER_ASSIGNED_FIELDS = frozenset({"sequence", "ingested_at"})
"""Fields a caller may send but which are always overwritten by the server."""

_PREVIEW_OVERHEAD = 256


class EventValidationError(ValueError):
    """Raised when a submitted event violates the canonical schema."""

    def __init__(self, errors: list[FieldError]) -> None:
        self.errors = errors
        fields = ", ".join(e.field for e in errors)
        super().__init__(f"Invalid event ({len(errors)} error(s)): {fields}")


@dataclass
class NormalizerConfig:
    """Ingest-time normalization settings, compiled once at startup."""

    redactor: Redactor = field(default_factory=Redactor)
    exclude_fields: list[str] = field(default_factory=list)
    max_payload_bytes: int = 64 * 1024

    @classmethod
    def from_settings(cls, settings: AgentWatchSettings) -> NormalizerConfig:
        return cls(
            redactor=Redactor(settings.redact_patterns, settings.redact_value_patterns),
            exclude_fields=list(settings.exclude_fields),
            max_payload_bytes=settings.events.max_payload_size_kb * 1024,
        )


@dataclass
class NormalizedEvent:
    event: CanonicalEvent
    warnings: list[IngestWarning] = field(default_factory=list)
    redacted_fields: int = 0


class _SubmittedEvent(BaseModel):
    """Structural schema for an incoming event.  Extra keys are kept for ``extensions``."""

    model_config = ConfigDict(extra="allow", str_strip_whitespace=True)

    id: str | None = Field(default=None, min_length=1)
    platform: str = Field(min_length=1)
    platform_version: str | None = None
    source_app: str = Field(min_length=1)
    source_type: SourceType = SourceType.AGENT
    agent_id: str | None = None
    session_id: str = Field(min_length=1)
    parent_event_id: str | None = None
    event_type: str = Field(min_length=1)
    event_category: str | None = None
    timestamp: datetime
    duration_ms: float | None = Field(default=None, ge=0)
    payload: dict[str, Any] = Field(default_factory=dict)
    model: str | None = None
    tokens: TokenUsage | None = None
    severity: Severity = Severity.INFO
    tags: list[str] = Field(default_factory=list)
    extensions: dict[str, Any] = Field(default_factory=dict)

    @field_validator("source_type", "severity", mode="before")
    @classmethod
    def _lower_enum(cls, value: Any) -> Any:
        return value.lower() if isinstance(value, str) else value

    @field_validator("payload", "extensions", "tags", mode="before")
    @classmethod
    def _null_as_empty(cls, value: Any, info: ValidationInfo) -> Any:
        if value is None:
            return [] if info.field_name == "tags" else {}
        return value


REQUIRED_FIELDS: tuple[str, ...] = tuple(
    name for name, info in _SubmittedEvent.model_fields.items() if info.is_required()
)
"""Fields every submitted event must carry."""


def derive_category(event_type: str) -> str:
    """``tool.invoked`` -> ``tool``; a type without a dot is its own category."""
    return event_type.split(".", 1)[0].lower()


def normalize_event(
    raw: Any,
    *,
    config: NormalizerConfig,
    registry: RegistrySnapshot,
    now: datetime | None = None,
) -> NormalizedEvent:
    """Validate *raw* and turn it into a canonical event.

    Raises ``EventValidationError`` with the full list of offending fields.
    """
    if not isinstance(raw, dict):
        raise EventValidationError([FieldError(field="$", reason="event must be a JSON object")])

    data = {k: v for k, v in raw.items() if k not in SERVER_ASSIGNED_FIELDS}
    errors: list[FieldError] = []
    submitted: _SubmittedEvent | None = None
    try:
        submitted = _SubmittedEvent.model_validate(data)
    except ValidationError as exc:
        errors.extend(_field_errors(exc))

    # Disabled platforms are refused; unknown ones are merely flagged below.
    platform = submitted.platform if submitted is not None else data.get("platform")
    info = registry.get(platform) if isinstance(platform, str) else None
    if info is not None and not info.enabled:
        errors.append(FieldError(field="platform", reason=f"platform '{platform}' is disabled"))

    if errors or submitted is None:
        raise EventValidationError(errors)

    warnings: list[IngestWarning] = []
    event_data = submitted.model_dump(exclude={"id"}, exclude_none=False)

    # -- Forward compatibility: unknown top-level fields -> extensions ----------
    extras = dict(submitted.model_extra or {})
    for key in list(event_data):
        if key in extras:
            event_data.pop(key)
    if extras:
        event_data["extensions"] = {**extras, **event_data["extensions"]}

    # -- Category / taxonomy ---------------------------------------------------
    if not event_data.get("event_category"):
        event_data["event_category"] = derive_category(submitted.event_type)
    if submitted.event_type not in KNOWN_EVENT_TYPES:
        warnings.append(
            IngestWarning(
                code=WarningCode.UNKNOWN_EVENT_TYPE,
                field="event_type",
                message=f"event_type '{submitted.event_type}' is not in the recommended taxonomy",
            )
        )
    if info is None:
        warnings.append(
            IngestWarning(
                code=WarningCode.UNKNOWN_PLATFORM,
                field="platform",
                message=f"platform '{submitted.platform}' is not registered",
            )
        )

    # -- Exclusion and redaction ---------------------------------------------
    for path in config.exclude_fields:
        drop_path(event_data, path)

    event_data["payload"], redacted = config.redactor.redact(event_data.get("payload") or {})
    event_data["extensions"], redacted_ext = config.redactor.redact(event_data.get("extensions") or {})

    # -- Size enforcement ------------------------------------------------------
    truncated = truncate_payload(event_data["payload"], config.max_payload_bytes)
    if truncated is not None:
        event_data["payload"], dropped = truncated
        logger.warning(
            "Payload truncated for event_type={} session={} ({} bytes dropped)",
            submitted.event_type,
            submitted.session_id,
            dropped,
        )
        warnings.append(
            IngestWarning(
                code=WarningCode.PAYLOAD_TRUNCATED,
                field="payload",
                message=f"payload exceeded {config.max_payload_bytes} bytes; {dropped} bytes dropped",
            )
        )

    # -- Derived and server-assigned fields ----------------------------------
    tokens = event_data.get("tokens")
    if tokens and tokens.get("total") is None and (tokens.get("input") is not None or tokens.get("output") is not None):
        tokens["total"] = (tokens.get("input") or 0) + (tokens.get("output") or 0)
    event_data["tags"] = sorted(set(event_data.get("tags") or []))
    event_data["id"] = submitted.id or uuid.uuid4().hex
    event_data["ingested_at"] = now or datetime.now(UTC)

    event = CanonicalEvent.model_validate(event_data)
    return NormalizedEvent(event=event, warnings=warnings, redacted_fields=redacted + redacted_ext)


def truncate_payload(payload: dict[str, Any], max_bytes: int) -> tuple[dict[str, Any], int] | None:
    """Return ``(replacement, dropped_bytes)`` if *payload* is over budget, else ``None``.

    The replacement keeps a prefix of the JSON encoding as a string preview so
    the event stays inspectable, with markers recording the original size.
    """
    encoded = json.dumps(payload, separators=(",", ":"), ensure_ascii=False, default=str)
    size = len(encoded.encode("utf-8"))
    if size <= max_bytes:
        return None

    budget = max(max_bytes - _PREVIEW_OVERHEAD, 0)
    preview = encoded.encode("utf-8")[:budget].decode("utf-8", errors="ignore")
    kept = len(preview.encode("utf-8"))
    return (
        {
            "_truncated": True,
            "_original_bytes": size,
            "_dropped_bytes": size - kept,
            "preview": preview,
        },
        size - kept,
    )


def _field_errors(exc: ValidationError) -> list[FieldError]:
    """Flatten pydantic errors into one ``FieldError`` per offending location."""
    seen: dict[str, str] = {}
    for err in exc.errors():
        loc = ".".join(str(part) for part in err["loc"]) or "$"
        reason = "missing required field" if err["type"] == "missing" else err["msg"]
        seen.setdefault(loc, reason)
    return [FieldError(field=loc, reason=reason) for loc, reason in seen.items()]
