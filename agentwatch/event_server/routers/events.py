"""Event ingestion and query endpoints.

Thin HTTP adapter -- submission goes through the ingest gateway, reads go
straight to the event store.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any

from fastapi import APIRouter, Body, HTTPException, Query, status
from fastapi.responses import JSONResponse

from agentwatch.event_server.deps import Gateway, Settings, Store
from agentwatch.event_server.managers.ingest import BatchTooLargeError, IngestOutcome
from agentwatch.event_server.managers.query import QueryRangeError, resolve_time_range
from agentwatch.event_server.models.api import (
    BatchItemResult,
    EventBatch,
    EventPageResponse,
    SubmitResponse,
)
from agentwatch.event_server.models.enums import IngestStatus, Severity
from agentwatch.event_server.models.events import StoredEvent
from agentwatch.event_server.store.base import EventFilter, EventNotFoundError, InvalidCursorError

router = APIRouter(prefix="/events", tags=["events"])

_STATUS_CODES = {
    IngestStatus.ACCEPTED: status.HTTP_201_CREATED,
    IngestStatus.REJECTED: status.HTTP_422_UNPROCESSABLE_ENTITY,
    IngestStatus.SAMPLED_OUT: status.HTTP_202_ACCEPTED,
    IngestStatus.FILTERED: status.HTTP_202_ACCEPTED,
    IngestStatus.RATE_LIMITED: status.HTTP_429_TOO_MANY_REQUESTS,
    IngestStatus.UNAVAILABLE: status.HTTP_503_SERVICE_UNAVAILABLE,
}


def _outcome_response(outcome: IngestOutcome) -> JSONResponse:
    """Map a single-submit outcome onto its HTTP status and body."""
    code = _STATUS_CODES[outcome.status]
    if outcome.ok:
        body: dict[str, Any] = SubmitResponse(
            id=outcome.id,  # type: ignore[arg-type]
            sequence=outcome.sequence,  # type: ignore[arg-type]
            warnings=outcome.warnings,
        ).model_dump(mode="json")
    elif outcome.status == IngestStatus.REJECTED:
        body = {"errors": [e.model_dump() for e in outcome.errors]}
    else:
        body = {"status": outcome.status.value, "detail": outcome.message}

    headers = {"Retry-After": "1"} if outcome.retryable else None
    return JSONResponse(status_code=code, content=body, headers=headers)


@router.post(
    "",
    status_code=status.HTTP_201_CREATED,
    response_model=SubmitResponse,
    responses={202: {}, 422: {}, 429: {}, 503: {}},
)
async def submit_event(gateway: Gateway, body: Any = Body(...)) -> JSONResponse:
    """Validate and commit one event."""
    return _outcome_response(await gateway.submit_one(body))


def _item_error(outcome: IngestOutcome) -> str | None:
    if outcome.ok:
        return None
    if outcome.errors:
        return "; ".join(f"{e.field}: {e.reason}" for e in outcome.errors)
    return outcome.message or outcome.status.value


@router.post("/batch", response_model=list[BatchItemResult], response_model_exclude_none=True)
async def submit_batch(gateway: Gateway, body: list[Any] | EventBatch = Body(...)) -> list[BatchItemResult]:
    """Submit many events; each item succeeds or fails on its own.

    The body is a JSON array of events (or ``{"events": [...]}``); the
    response is an array of per-item outcomes in submission order.
    """
    raws = body.events if isinstance(body, EventBatch) else body
    try:
        outcomes = await gateway.submit_batch(raws)
    except BatchTooLargeError as exc:
        raise HTTPException(status.HTTP_413_REQUEST_ENTITY_TOO_LARGE, detail=str(exc)) from None

    return [
        BatchItemResult(
            index=i,
            ok=o.ok,
            status=o.status,
            id=o.id,
            sequence=o.sequence,
            error=_item_error(o),
            warnings=o.warnings,
            errors=o.errors,
            retryable=o.retryable,
            message=o.message,
        )
        for i, o in enumerate(outcomes)
    ]


@router.get("/{event_id}", response_model=StoredEvent)
async def get_event(event_id: str, store: Store) -> StoredEvent:
    try:
        return await store.get(event_id)
    except EventNotFoundError:
        raise HTTPException(status.HTTP_404_NOT_FOUND, detail=f"Event '{event_id}' not found.") from None


@router.get("", response_model=EventPageResponse)
async def query_events(
    store: Store,
    settings: Settings,
    platform: str | None = None,
    source_app: str | None = None,
    session_id: str | None = None,
    agent_id: str | None = None,
    event_type: str | None = None,
    event_category: str | None = None,
    severity: list[Severity] | None = Query(None),
    start: datetime | None = None,
    end: datetime | None = None,
    cursor: str | None = Query(None, description="Opaque token from a previous page's next_cursor."),
    limit: int | None = Query(None, ge=1),
) -> EventPageResponse:
    """Filtered history, ordered by ``(timestamp, sequence)``.

    Without ``start``/``end`` the query covers the default window ending now.
    """
    try:
        time_range = resolve_time_range(start, end, settings.query)
    except QueryRangeError as exc:
        raise HTTPException(status.HTTP_422_UNPROCESSABLE_ENTITY, detail=str(exc)) from None

    filters = EventFilter(
        platform=platform,
        source_app=source_app,
        session_id=session_id,
        agent_id=agent_id,
        event_type=event_type,
        event_category=event_category,
        severity=tuple(severity or ()),
    )
    page_size = min(limit or settings.query.default_page_size, settings.query.max_page_size)
    try:
        page = await store.query_range(time_range, filters, cursor=cursor, limit=page_size)
    except InvalidCursorError as exc:
        raise HTTPException(status.HTTP_422_UNPROCESSABLE_ENTITY, detail=str(exc)) from None
    return EventPageResponse(events=page.events, next_cursor=page.next_cursor)
