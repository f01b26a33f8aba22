"""Unit tests for event validation, normalization and redaction."""

from __future__ import annotations

from datetime import UTC, datetime

import pytest

from agentwatch.event_server.models.enums import Severity, WarningCode
from agentwatch.event_server.models.platform import PlatformInfo, RegistrySnapshot
from agentwatch.event_server.validation import (
    REDACTION_MARKER,
    EventValidationError,
    NormalizerConfig,
    Redactor,
    derive_category,
    normalize_event,
)
from agentwatch.event_server.validation.redaction import drop_path

REGISTRY = RegistrySnapshot(
    [
        PlatformInfo(name="langchain", display_name="LangChain"),
        PlatformInfo(name="retired", display_name="Retired", enabled=False),
    ]
)


@pytest.fixture
def config() -> NormalizerConfig:
    return NormalizerConfig(redactor=Redactor([r"api[_-]?key", r"password"], [r"sk-[A-Za-z0-9]{16,}"]))


def _codes(result) -> set[WarningCode]:
    return {w.code for w in result.warnings}


# ---------------------------------------------------------------------------
# Structural validation
# ---------------------------------------------------------------------------


def test_valid_event_is_normalized(make_event, config) -> None:
    now = datetime(2026, 1, 1, tzinfo=UTC)
    result = normalize_event(make_event(), config=config, registry=REGISTRY, now=now)

    event = result.event
    assert event.event_category == "tool"
    assert event.ingested_at == now
    assert event.severity == Severity.INFO
    assert len(event.id) == 32
    assert result.warnings == []


def test_all_violations_reported_together(config) -> None:
    raw = {"platform": "langchain", "timestamp": "not-a-date", "duration_ms": -5}

    with pytest.raises(EventValidationError) as exc_info:
        normalize_event(raw, config=config, registry=REGISTRY)

    fields = {e.field for e in exc_info.value.errors}
    assert {"source_app", "session_id", "event_type", "timestamp", "duration_ms"} <= fields
    reasons = {e.field: e.reason for e in exc_info.value.errors}
    assert reasons["session_id"] == "missing required field"


def test_non_object_rejected(config) -> None:
    with pytest.raises(EventValidationError) as exc_info:
        normalize_event(["not", "an", "object"], config=config, registry=REGISTRY)
    assert exc_info.value.errors[0].field == "$"


def test_blank_required_field_rejected(make_event, config) -> None:
    with pytest.raises(EventValidationError) as exc_info:
        normalize_event(make_event(session_id="   "), config=config, registry=REGISTRY)
    assert [e.field for e in exc_info.value.errors] == ["session_id"]


def test_invalid_severity_rejected(make_event, config) -> None:
    with pytest.raises(EventValidationError) as exc_info:
        normalize_event(make_event(severity="fatal"), config=config, registry=REGISTRY)
    assert exc_info.value.errors[0].field == "severity"


def test_severity_is_case_insensitive(make_event, config) -> None:
    result = normalize_event(make_event(severity="ERROR"), config=config, registry=REGISTRY)
    assert result.event.severity == Severity.ERROR


def test_disabled_platform_rejected(make_event, config) -> None:
    with pytest.raises(EventValidationError) as exc_info:
        normalize_event(make_event(platform="retired"), config=config, registry=REGISTRY)
    assert exc_info.value.errors[0].field == "platform"


# ---------------------------------------------------------------------------
# Warnings and forward compatibility
# ---------------------------------------------------------------------------


def test_unknown_platform_and_type_warn(make_event, config) -> None:
    raw = make_event(platform="homegrown", event_type="planner.replanned")
    result = normalize_event(raw, config=config, registry=REGISTRY)

    assert _codes(result) == {WarningCode.UNKNOWN_PLATFORM, WarningCode.UNKNOWN_EVENT_TYPE}
    assert result.event.event_category == "planner"


def test_unknown_fields_preserved_in_extensions(make_event, config) -> None:
    raw = make_event(trace_id="abc", extensions={"run": 1})
    result = normalize_event(raw, config=config, registry=REGISTRY)

    assert result.event.extensions == {"trace_id": "abc", "run": 1}
    assert "trace_id" not in result.event.model_dump()


def test_server_assigned_fields_overwritten(make_event, config) -> None:
    now = datetime(2026, 5, 5, tzinfo=UTC)
    raw = make_event(sequence=999, ingested_at="2000-01-01T00:00:00Z")
    result = normalize_event(raw, config=config, registry=REGISTRY, now=now)

    assert result.event.ingested_at == now
    assert "sequence" not in result.event.extensions


def test_caller_id_kept(make_event, config) -> None:
    result = normalize_event(make_event(id="evt-123"), config=config, registry=REGISTRY)
    assert result.event.id == "evt-123"


def test_token_total_derived(make_event, config) -> None:
    raw = make_event(event_type="llm.response", tokens={"input": 100, "output": 20})
    result = normalize_event(raw, config=config, registry=REGISTRY)
    assert result.event.tokens is not None
    assert result.event.tokens.total == 120


def test_naive_timestamp_treated_as_utc(make_event, config) -> None:
    result = normalize_event(make_event(timestamp="2026-03-01T12:00:00"), config=config, registry=REGISTRY)
    assert result.event.timestamp == datetime(2026, 3, 1, 12, tzinfo=UTC)


def test_derive_category() -> None:
    assert derive_category("tool.invoked") == "tool"
    assert derive_category("llm.stream.chunk") == "llm"
    assert derive_category("heartbeat") == "heartbeat"


# ---------------------------------------------------------------------------
# Redaction, exclusion and truncation
# ---------------------------------------------------------------------------


def test_redaction_replaces_matching_keys(make_event, config) -> None:
    raw = make_event(payload={"api_key": "abc123", "nested": {"Password": "hunter2", "query": "weather"}})
    result = normalize_event(raw, config=config, registry=REGISTRY)

    payload = result.event.payload
    assert payload["api_key"] == REDACTION_MARKER
    assert payload["nested"]["Password"] == REDACTION_MARKER
    assert payload["nested"]["query"] == "weather"
    assert result.redacted_fields == 2
    assert "abc123" not in result.event.model_dump_json()


def test_default_patterns_redact_token_keys_but_not_token_counts(make_event, settings) -> None:
    payload = {"token_value": "t1", "refresh_token_raw": "t2", "tokens": 512, "query": "q"}
    config = NormalizerConfig.from_settings(settings)
    result = normalize_event(make_event(payload=payload), config=config, registry=REGISTRY)

    assert result.event.payload == {
        "token_value": REDACTION_MARKER,
        "refresh_token_raw": REDACTION_MARKER,
        "tokens": 512,
        "query": "q",
    }
    assert result.redacted_fields == 2


def test_redaction_of_values_in_free_text(make_event, config) -> None:
    raw = make_event(payload={"prompt": "use key sk-abcdefghijklmnopqrstu please"})
    result = normalize_event(raw, config=config, registry=REGISTRY)
    assert result.event.payload["prompt"] == f"use key {REDACTION_MARKER} please"


def test_redaction_covers_extensions(make_event, config) -> None:
    result = normalize_event(make_event(api_key="leak"), config=config, registry=REGISTRY)
    assert result.event.extensions["api_key"] == REDACTION_MARKER


def test_redaction_does_not_mutate_input(make_event, config) -> None:
    raw = make_event(payload={"api_key": "abc123"})
    normalize_event(raw, config=config, registry=REGISTRY)
    assert raw["payload"]["api_key"] == "abc123"


def test_exclude_fields_dropped(make_event) -> None:
    config = NormalizerConfig(exclude_fields=["payload.input.prompt", "model"])
    raw = make_event(model="gpt-x", payload={"input": {"prompt": "secret plans", "n": 1}})
    result = normalize_event(raw, config=config, registry=REGISTRY)

    assert result.event.payload == {"input": {"n": 1}}
    assert result.event.model is None


def test_oversized_payload_truncated(make_event) -> None:
    config = NormalizerConfig(max_payload_bytes=1024)
    raw = make_event(payload={"blob": "x" * 5000})
    result = normalize_event(raw, config=config, registry=REGISTRY)

    payload = result.event.payload
    assert payload["_truncated"] is True
    assert payload["_original_bytes"] > 5000
    assert payload["_dropped_bytes"] > 0
    assert len(payload["preview"].encode()) <= 1024
    assert WarningCode.PAYLOAD_TRUNCATED in _codes(result)


def test_drop_path_missing_is_noop() -> None:
    data = {"payload": {"a": 1}}
    assert drop_path(data, "payload.b.c") is False
    assert drop_path(data, "payload.a") is True
    assert data == {"payload": {}}
