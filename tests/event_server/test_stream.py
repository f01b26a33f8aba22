"""Live stream tests over WebSocket, run against the full app lifespan."""

from __future__ import annotations

import json
import time
from collections.abc import Iterator
from pathlib import Path

import pytest
from fastapi.testclient import TestClient
from starlette.websockets import WebSocketDisconnect

from agentwatch.event_server.app import app
from agentwatch.event_server.settings import _get_settings_cached


@pytest.fixture
def live_client(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Iterator[TestClient]:
    """TestClient with the lifespan running on a throwaway SQLite database."""
    monkeypatch.setenv("AGENTWATCH_DATABASE_URL", f"sqlite+aiosqlite:///{tmp_path / 'stream.db'}")
    monkeypatch.setenv("AGENTWATCH_AUTO_CREATE_SCHEMA", "true")
    monkeypatch.delenv("AGENTWATCH_REDIS_URL", raising=False)
    _get_settings_cached.cache_clear()

    with TestClient(app) as client:
        yield client

    _get_settings_cached.cache_clear()


def test_websocket_receives_committed_events(live_client: TestClient, make_event) -> None:
    with live_client.websocket_connect("/v1/stream") as ws:
        hello = json.loads(ws.receive_text())
        assert hello["type"] == "subscribed"
        assert hello["subscription_id"]

        for i in range(3):
            resp = live_client.post("/v1/events", json=make_event(payload={"i": i}))
            assert resp.status_code == 201

        messages = [json.loads(ws.receive_text()) for _ in range(3)]

    assert [m["type"] for m in messages] == ["event", "event", "event"]
    assert [m["event"]["payload"]["i"] for m in messages] == [0, 1, 2]
    sequences = [m["event"]["sequence"] for m in messages]
    assert sequences == sorted(sequences)


def test_filtered_stream_only_gets_matches(live_client: TestClient, make_event) -> None:
    with live_client.websocket_connect("/v1/stream/filtered?session_id=watched&event_type=tool.*") as ws:
        json.loads(ws.receive_text())

        live_client.post("/v1/events", json=make_event(session_id="other"))
        live_client.post("/v1/events", json=make_event(session_id="watched", event_type="llm.request"))
        live_client.post("/v1/events", json=make_event(session_id="watched", event_type="tool.completed"))

        message = json.loads(ws.receive_text())

    assert message["event"]["session_id"] == "watched"
    assert message["event"]["event_type"] == "tool.completed"


def test_rejected_events_are_not_streamed(live_client: TestClient, make_event) -> None:
    with live_client.websocket_connect("/v1/stream") as ws:
        json.loads(ws.receive_text())

        assert live_client.post("/v1/events", json={"platform": "langchain"}).status_code == 422
        live_client.post("/v1/events", json=make_event(id="good"))

        message = json.loads(ws.receive_text())

    assert message["event"]["id"] == "good"


def test_invalid_filter_closes_socket(live_client: TestClient) -> None:
    with pytest.raises(WebSocketDisconnect) as exc_info:
        with live_client.websocket_connect("/v1/stream/filtered?severity=loud") as ws:
            ws.receive_text()
    assert exc_info.value.code == 1008


def test_disconnect_releases_subscription(live_client: TestClient) -> None:
    with live_client.websocket_connect("/v1/stream") as ws:
        json.loads(ws.receive_text())
        assert live_client.get("/health").json()["subscribers"] == 1

    # The server notices the close on its next receive; health reflects it.
    for _ in range(50):
        if live_client.get("/health").json()["subscribers"] == 0:
            break
        time.sleep(0.02)
    assert live_client.get("/health").json()["subscribers"] == 0


def test_sse_rejects_invalid_filter(live_client: TestClient) -> None:
    resp = live_client.get("/v1/stream/sse", params={"severity": "loud"})
    assert resp.status_code == 422
