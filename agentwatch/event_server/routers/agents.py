"""Agent endpoints."""

from __future__ import annotations

from datetime import datetime

from fastapi import APIRouter, HTTPException, status

from agentwatch.event_server.deps import Store
from agentwatch.event_server.models.events import StoredEvent
from agentwatch.event_server.store.base import TimeRange

router = APIRouter(prefix="/agents", tags=["agents"])


@router.get("/{agent_id}/events", response_model=list[StoredEvent])
async def get_agent_events(
    agent_id: str,
    store: Store,
    start: datetime | None = None,
    end: datetime | None = None,
) -> list[StoredEvent]:
    """Events of one agent in commit order, optionally limited to ``[start, end)``."""
    try:
        time_range = TimeRange(start=start, end=end)
    except ValueError as exc:
        raise HTTPException(status.HTTP_422_UNPROCESSABLE_ENTITY, detail=str(exc)) from None
    return await store.query_by_agent(agent_id, time_range)
