"""Shared enumerations used across the event server."""

from __future__ import annotations

from enum import StrEnum

# -- Event -------------------------------------------------------------------


class SourceType(StrEnum):
    """Kind of actor that produced an event."""

    AGENT = "agent"
    TOOL = "tool"
    HUMAN = "human"
    SYSTEM = "system"


class Severity(StrEnum):
    DEBUG = "debug"
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"
    CRITICAL = "critical"

    @property
    def is_error(self) -> bool:
        return self in (Severity.ERROR, Severity.CRITICAL)


ERROR_SEVERITIES = (Severity.ERROR, Severity.CRITICAL)


# -- Ingestion ---------------------------------------------------------------


class IngestStatus(StrEnum):
    """Per-event outcome of a submit call."""

    ACCEPTED = "accepted"
    REJECTED = "rejected"
    SAMPLED_OUT = "sampled_out"
    FILTERED = "filtered"
    RATE_LIMITED = "rate_limited"
    UNAVAILABLE = "unavailable"


class WarningCode(StrEnum):
    """Non-fatal conditions attached to an accepted event."""

    UNKNOWN_EVENT_TYPE = "unknown_event_type"
    UNKNOWN_PLATFORM = "unknown_platform"
    PAYLOAD_TRUNCATED = "payload_truncated"
    DANGLING_PARENT = "dangling_parent"
    DUPLICATE_EVENT = "duplicate_event"


# -- Stream ------------------------------------------------------------------


class StreamMessageType(StrEnum):
    SUBSCRIBED = "subscribed"
    EVENT = "event"
    OVERRUN = "overrun"


# -- Export ------------------------------------------------------------------


class ExportFormat(StrEnum):
    JSON = "json"
    NDJSON = "ndjson"


# -- Taxonomy ----------------------------------------------------------------

KNOWN_EVENT_TYPES: frozenset[str] = frozenset(
    {
        # Session lifecycle
        "session.created",
        "session.ended",
        # Agent lifecycle
        "agent.started",
        "agent.completed",
        "agent.failed",
        "agent.handoff",
        # Sub-agents
        "subagent.spawned",
        "subagent.completed",
        "subagent.failed",
        # Tools
        "tool.invoked",
        "tool.completed",
        "tool.failed",
        # Model calls
        "llm.request",
        "llm.response",
        "llm.stream.chunk",
        # Conversation
        "chat.message",
        "chat.user_prompt",
        "chat.assistant_response",
        # Humans in the loop
        "human.input",
        "human.approval",
        # Errors / system
        "error.occurred",
        "system.notification",
        "system.log",
    }
)
"""Recommended taxonomy.  Event types outside it are accepted with a warning."""
