"""Data models for the event server."""

from agentwatch.event_server.models.analytics import (
    ActivitySummary,
    AgentAnalytics,
    AgentPerformance,
    CostAnalytics,
    ErrorAnalytics,
    SessionAnalytics,
    SessionSummary,
    TokenTotals,
)
from agentwatch.event_server.models.api import (
    BatchItemResult,
    EventBatch,
    EventPageResponse,
    ExportQuery,
    ExportResponse,
    PlatformCreate,
    PlatformResponse,
    PlatformSchemaResponse,
    PlatformUpdate,
    SubmitResponse,
)
from agentwatch.event_server.models.enums import (
    ExportFormat,
    IngestStatus,
    Severity,
    SourceType,
    StreamMessageType,
    WarningCode,
)
from agentwatch.event_server.models.events import (
    CanonicalEvent,
    FieldError,
    IngestWarning,
    StoredEvent,
    StreamMessage,
    TokenUsage,
)
from agentwatch.event_server.models.platform import PlatformInfo, RegistrySnapshot

__all__ = [
    # Analytics
    "ActivitySummary",
    "AgentAnalytics",
    "AgentPerformance",
    # API schemas
    "BatchItemResult",
    # Events
    "CanonicalEvent",
    "CostAnalytics",
    "ErrorAnalytics",
    "EventBatch",
    "EventPageResponse",
    # Enums
    "ExportFormat",
    "ExportQuery",
    "ExportResponse",
    "FieldError",
    "IngestStatus",
    "IngestWarning",
    "PlatformCreate",
    # Platform
    "PlatformInfo",
    "PlatformResponse",
    "PlatformSchemaResponse",
    "PlatformUpdate",
    "RegistrySnapshot",
    "SessionAnalytics",
    "SessionSummary",
    "Severity",
    "SourceType",
    "StoredEvent",
    "StreamMessage",
    "StreamMessageType",
    "SubmitResponse",
    "TokenTotals",
    "TokenUsage",
    "WarningCode",
]
