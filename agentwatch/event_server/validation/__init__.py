"""Schema validation, normalization and redaction of submitted events."""

from agentwatch.event_server.validation.normalizer import (
    REQUIRED_FIELDS,
    EventValidationError,
    NormalizedEvent,
    NormalizerConfig,
    derive_category,
    normalize_event,
)
from agentwatch.event_server.validation.redaction import REDACTION_MARKER, Redactor

__all__ = [
    "REDACTION_MARKER",
    "REQUIRED_FIELDS",
    "EventValidationError",
    "NormalizedEvent",
    "NormalizerConfig",
    "Redactor",
    "derive_category",
    "normalize_event",
]
