"""Aggregated analytics over a bounded time window.

Every endpoint accepts optional ``start``/``end``.  Without them the window
is the configured default ending now; wider windows than
``query.max_window_hours`` are rejected with 422.
"""

from __future__ import annotations

from datetime import datetime

from fastapi import APIRouter, HTTPException, Query, status

from agentwatch.event_server.deps import Settings, Store
from agentwatch.event_server.managers import query
from agentwatch.event_server.models.analytics import AgentAnalytics, CostAnalytics, ErrorAnalytics, SessionAnalytics
from agentwatch.event_server.settings import AgentWatchSettings
from agentwatch.event_server.store.base import TimeRange

router = APIRouter(prefix="/analytics", tags=["analytics"])


def _time_range(start: datetime | None, end: datetime | None, settings: AgentWatchSettings) -> TimeRange:
    try:
        return query.resolve_time_range(start, end, settings.query)
    except query.QueryRangeError as exc:
        raise HTTPException(status.HTTP_422_UNPROCESSABLE_ENTITY, detail=str(exc)) from None


@router.get("/sessions", response_model=SessionAnalytics)
async def sessions(
    store: Store,
    settings: Settings,
    start: datetime | None = None,
    end: datetime | None = None,
    limit: int = Query(100, ge=1, le=1000),
) -> SessionAnalytics:
    """Per-session activity, busiest sessions first."""
    return await query.session_analytics(store, _time_range(start, end, settings), limit=limit)


@router.get("/agents", response_model=AgentAnalytics)
async def agents(
    store: Store,
    settings: Settings,
    start: datetime | None = None,
    end: datetime | None = None,
    limit: int = Query(50, ge=1, le=500),
) -> AgentAnalytics:
    """Per-agent performance summaries."""
    return await query.agent_performance(store, _time_range(start, end, settings), limit=limit)


@router.get("/costs", response_model=CostAnalytics)
async def costs(
    store: Store,
    settings: Settings,
    start: datetime | None = None,
    end: datetime | None = None,
    group_by: str = Query("model", description="model, platform, agent_id, session_id or source_app"),
) -> CostAnalytics:
    """Token usage totals, broken down by ``group_by``."""
    time_range = _time_range(start, end, settings)
    try:
        return await query.cost_analytics(store, time_range, group_by=group_by)
    except query.UnsupportedGroupingError as exc:
        raise HTTPException(status.HTTP_422_UNPROCESSABLE_ENTITY, detail=str(exc)) from None


@router.get("/errors", response_model=ErrorAnalytics)
async def errors(
    store: Store,
    settings: Settings,
    start: datetime | None = None,
    end: datetime | None = None,
    recent: int = Query(20, ge=0, le=200),
) -> ErrorAnalytics:
    """Error counts by event type and platform plus the latest error events."""
    return await query.error_analytics(store, _time_range(start, end, settings), recent=recent)
