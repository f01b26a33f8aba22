"""Bulk export of stored events as JSON or newline-delimited JSON.

Exports read from the same indexes as queries and never return more than
``export.max_rows`` events; a JSON export reports ``truncated`` when the cap
cut it short.  NDJSON exports are streamed page by page.
"""

from __future__ import annotations

from collections.abc import AsyncIterator

from fastapi import APIRouter, HTTPException, Query, status
from fastapi.responses import StreamingResponse

from agentwatch.event_server.deps import Settings, Store
from agentwatch.event_server.managers.query import QueryRangeError, resolve_time_range
from agentwatch.event_server.models.api import ExportQuery, ExportResponse
from agentwatch.event_server.models.enums import ExportFormat
from agentwatch.event_server.models.events import StoredEvent
from agentwatch.event_server.store.base import EventFilter, EventStore, TimeRange

router = APIRouter(prefix="/export", tags=["export"])

NDJSON_MEDIA_TYPE = "application/x-ndjson"
_EXPORT_PAGE_SIZE = 500


async def _iter_pages(
    store: EventStore,
    time_range: TimeRange,
    filters: EventFilter,
    max_rows: int,
) -> AsyncIterator[list[StoredEvent]]:
    remaining = max_rows
    cursor: str | None = None
    while remaining > 0:
        page = await store.query_range(time_range, filters, cursor=cursor, limit=min(_EXPORT_PAGE_SIZE, remaining))
        if page.events:
            yield page.events
        remaining -= len(page.events)
        if page.next_cursor is None:
            return
        cursor = page.next_cursor


async def _ndjson(pages: AsyncIterator[list[StoredEvent]]) -> AsyncIterator[str]:
    async for events in pages:
        yield "".join(event.model_dump_json() + "\n" for event in events)


def _ndjson_response(lines: AsyncIterator[str], filename: str) -> StreamingResponse:
    return StreamingResponse(
        lines,
        media_type=NDJSON_MEDIA_TYPE,
        headers={"Content-Disposition": f'attachment; filename="{filename}.ndjson"'},
    )


async def _single_page(events: list[StoredEvent]) -> AsyncIterator[list[StoredEvent]]:
    yield events


@router.get("/session/{session_id}", response_model=ExportResponse)
async def export_session(
    session_id: str,
    store: Store,
    settings: Settings,
    format: ExportFormat = Query(ExportFormat.JSON),  # noqa: A002
):
    """Export all events of a session in commit order."""
    events = await store.query_session(session_id)
    if not events:
        raise HTTPException(status.HTTP_404_NOT_FOUND, detail=f"Session '{session_id}' not found.")

    max_rows = settings.export.max_rows
    truncated = len(events) > max_rows
    events = events[:max_rows]
    if format == ExportFormat.NDJSON:
        return _ndjson_response(_ndjson(_single_page(events)), f"session-{session_id}")
    return ExportResponse(events=events, count=len(events), truncated=truncated)


@router.post("/query", response_model=ExportResponse)
async def export_query(body: ExportQuery, store: Store, settings: Settings):
    """Export events matching filters over a bounded time window."""
    try:
        time_range = resolve_time_range(body.start, body.end, settings.query)
    except QueryRangeError as exc:
        raise HTTPException(status.HTTP_422_UNPROCESSABLE_ENTITY, detail=str(exc)) from None

    filters = EventFilter(
        platform=body.platform,
        source_app=body.source_app,
        session_id=body.session_id,
        agent_id=body.agent_id,
        event_type=body.event_type,
        event_category=body.event_category,
        severity=tuple(body.severity),
    )
    max_rows = settings.export.max_rows
    if body.format == ExportFormat.NDJSON:
        return _ndjson_response(_ndjson(_iter_pages(store, time_range, filters, max_rows)), "events")

    # One extra row tells whether the cap was hit.
    events: list[StoredEvent] = []
    async for page in _iter_pages(store, time_range, filters, max_rows + 1):
        events.extend(page)
    truncated = len(events) > max_rows
    events = events[:max_rows]
    return ExportResponse(events=events, count=len(events), truncated=truncated)
