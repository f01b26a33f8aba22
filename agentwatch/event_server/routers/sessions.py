"""Session endpoints.

Thin HTTP adapter -- reads go through the session index of the event store.
"""

from __future__ import annotations

from fastapi import APIRouter, HTTPException, status

from agentwatch.event_server.deps import Store
from agentwatch.event_server.managers.query import SessionNotFoundError, session_summary
from agentwatch.event_server.models.analytics import SessionSummary
from agentwatch.event_server.models.events import StoredEvent

router = APIRouter(prefix="/sessions", tags=["sessions"])


@router.get("/{session_id}/events", response_model=list[StoredEvent])
async def get_session_events(session_id: str, store: Store) -> list[StoredEvent]:
    """All events of a session in commit order (empty for an unknown session)."""
    return await store.query_session(session_id)


@router.get("/{session_id}/summary", response_model=SessionSummary)
async def get_session_summary(session_id: str, store: Store) -> SessionSummary:
    try:
        return await session_summary(store, session_id)
    except SessionNotFoundError:
        raise HTTPException(status.HTTP_404_NOT_FOUND, detail=f"Session '{session_id}' not found.") from None
