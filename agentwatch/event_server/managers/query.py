"""Query engine -- filtered reads and aggregations over the event store.

Every query goes through a store index (session, agent, time, or a grouped
SQL aggregate); nothing here scans the whole log.  Aggregations over time
are bounded: a request without a range gets the configured default window,
and a range wider than the configured maximum is refused.

Start/completion pairing: a completion event (``*.completed``, ``*.failed``,
``*.ended``, ``*.response``) whose ``parent_event_id`` points at a start
event (``*.invoked``, ``*.started``, ``*.request``, ``*.spawned``,
``*.created``) in the same result set forms a pair.  Its duration is the
completion's ``duration_ms``, else the start's, else the timestamp gap.
"""

from __future__ import annotations

from collections import Counter
from datetime import UTC, datetime, timedelta
from typing import TYPE_CHECKING

from agentwatch.event_server.models.analytics import (
    ActivitySummary,
    AgentAnalytics,
    AgentPerformance,
    CostAnalytics,
    CostBreakdown,
    ErrorAnalytics,
    ErrorCount,
    SessionActivity,
    SessionAnalytics,
    SessionSummary,
    TimeWindow,
    TokenTotals,
)
from agentwatch.event_server.models.enums import ERROR_SEVERITIES
from agentwatch.event_server.store.base import EventFilter, TimeRange, _utc

if TYPE_CHECKING:
    from collections.abc import Sequence

    from agentwatch.event_server.models.events import StoredEvent
    from agentwatch.event_server.settings import QuerySection
    from agentwatch.event_server.store.base import EventStore

START_SUFFIXES = frozenset({"invoked", "started", "request", "spawned", "created"})
END_SUFFIXES = frozenset({"completed", "failed", "ended", "response"})

COST_GROUPS = frozenset({"model", "platform", "agent_id", "session_id", "source_app"})


class QueryRangeError(ValueError):
    """Raised for an invalid or over-wide time range."""


class SessionNotFoundError(LookupError):
    """Raised when a session has no events."""


class UnsupportedGroupingError(ValueError):
    """Raised for a ``group_by`` the cost breakdown does not support."""


# ---------------------------------------------------------------------------
# Time range bounding
# ---------------------------------------------------------------------------


def resolve_time_range(
    start: datetime | None,
    end: datetime | None,
    limits: QuerySection,
    *,
    now: datetime | None = None,
) -> TimeRange:
    """Turn optional request bounds into a bounded ``TimeRange``.

    Missing bounds are filled from the default window (ending now, or ending
    at *end*, or starting at *start*).  Bounds without a timezone are taken
    as UTC.  Raises ``QueryRangeError`` if the range is inverted or wider
    than ``max_window_hours``.
    """
    now = now or datetime.now(UTC)
    start, end = _utc(start), _utc(end)
    default = timedelta(hours=limits.default_window_hours)
    if start is None and end is None:
        end = now
        start = now - default
    elif start is None:
        start = end - default  # type: ignore[operator]
    elif end is None:
        end = max(now, start)

    try:
        time_range = TimeRange(start=start, end=end)
    except ValueError as exc:
        raise QueryRangeError(str(exc)) from exc

    width = time_range.end - time_range.start  # type: ignore[operator]
    if width > timedelta(hours=limits.max_window_hours):
        msg = f"time range of {width} exceeds the maximum of {limits.max_window_hours} hours"
        raise QueryRangeError(msg)
    return time_range


def _window(time_range: TimeRange) -> TimeWindow:
    return TimeWindow(start=time_range.start, end=time_range.end)  # type: ignore[arg-type]


# ---------------------------------------------------------------------------
# Summaries
# ---------------------------------------------------------------------------


def _suffix(event_type: str) -> str:
    return event_type.rsplit(".", 1)[-1]


def pair_durations(events: Sequence[StoredEvent]) -> list[float]:
    """Durations (ms) of matched start/completion pairs within *events*."""
    starts = {e.id: e for e in events if _suffix(e.event_type) in START_SUFFIXES}
    durations: list[float] = []
    for event in events:
        if _suffix(event.event_type) not in END_SUFFIXES or not event.parent_event_id:
            continue
        start = starts.get(event.parent_event_id)
        if start is None:
            continue
        if event.duration_ms is not None:
            durations.append(event.duration_ms)
        elif start.duration_ms is not None:
            durations.append(start.duration_ms)
        else:
            gap = (event.timestamp - start.timestamp).total_seconds() * 1000
            durations.append(max(gap, 0.0))
    return durations


def summarize(events: Sequence[StoredEvent]) -> ActivitySummary:
    """Compute the activity summary of an ordered event list."""
    categories: Counter[str] = Counter(e.event_category for e in events)
    durations = pair_durations(events)
    tokens = TokenTotals()
    for e in events:
        if e.tokens is None:
            continue
        tokens.input += e.tokens.input or 0
        tokens.output += e.tokens.output or 0
        tokens.total += e.tokens.total or 0
    timestamps = [e.timestamp for e in events]
    return ActivitySummary(
        event_count=len(events),
        events_by_category=dict(sorted(categories.items())),
        total_duration_ms=sum(durations),
        paired_operations=len(durations),
        tokens=tokens,
        error_count=sum(1 for e in events if e.severity in ERROR_SEVERITIES),
        first_event_at=min(timestamps) if timestamps else None,
        last_event_at=max(timestamps) if timestamps else None,
    )


async def session_summary(store: EventStore, session_id: str) -> SessionSummary:
    """Summary of one session.  Raises ``SessionNotFoundError`` if it has no events.

    The session index bounds the cost, so no time window applies here.
    """
    events = await store.query_session(session_id)
    if not events:
        raise SessionNotFoundError(session_id)
    summary = summarize(events)
    return SessionSummary(
        session_id=session_id,
        agents=sorted({e.agent_id for e in events if e.agent_id}),
        platforms=sorted({e.platform for e in events}),
        **summary.model_dump(),
    )


async def agent_performance(store: EventStore, time_range: TimeRange, *, limit: int = 50) -> AgentAnalytics:
    """Per-agent summaries for the busiest *limit* agents in *time_range*."""
    groups = await store.aggregate("agent_id", time_range)
    agents: list[AgentPerformance] = []
    for group in groups:
        if group.key is None:
            continue
        events = await store.query_by_agent(group.key, time_range)
        summary = summarize(events)
        agents.append(
            AgentPerformance(
                agent_id=group.key,
                sessions=len({e.session_id for e in events}),
                **summary.model_dump(),
            )
        )
        if len(agents) >= limit:
            break
    return AgentAnalytics(window=_window(time_range), agents=agents)


async def session_analytics(store: EventStore, time_range: TimeRange, *, limit: int = 100) -> SessionAnalytics:
    groups = await store.aggregate("session_id", time_range)
    sessions = [
        SessionActivity(
            session_id=g.key or "",
            event_count=g.events,
            error_count=g.errors,
            duration_ms=g.duration_ms,
            tokens_total=g.tokens_total,
            first_event_at=g.first_at,
            last_event_at=g.last_at,
        )
        for g in groups[:limit]
    ]
    return SessionAnalytics(window=_window(time_range), sessions=sessions)


async def cost_analytics(store: EventStore, time_range: TimeRange, *, group_by: str = "model") -> CostAnalytics:
    """Token totals over *time_range*, broken down by *group_by*."""
    if group_by not in COST_GROUPS:
        msg = f"group_by must be one of {sorted(COST_GROUPS)}"
        raise UnsupportedGroupingError(msg)
    groups = await store.aggregate(group_by, time_range)
    breakdown = [
        CostBreakdown(
            key=g.key,
            events=g.events,
            tokens=TokenTotals(input=g.tokens_input, output=g.tokens_output, total=g.tokens_total),
        )
        for g in groups
        if g.tokens_input or g.tokens_output or g.tokens_total
    ]
    totals = TokenTotals(
        input=sum(b.tokens.input for b in breakdown),
        output=sum(b.tokens.output for b in breakdown),
        total=sum(b.tokens.total for b in breakdown),
    )
    breakdown.sort(key=lambda b: b.tokens.total, reverse=True)
    return CostAnalytics(window=_window(time_range), group_by=group_by, totals=totals, breakdown=breakdown)


async def error_analytics(store: EventStore, time_range: TimeRange, *, recent: int = 20) -> ErrorAnalytics:
    errors_only = EventFilter(severity=ERROR_SEVERITIES)
    by_type = await store.aggregate("event_type", time_range, errors_only)
    by_platform = await store.aggregate("platform", time_range, errors_only)
    latest = await store.latest(time_range, errors_only, limit=recent)
    return ErrorAnalytics(
        window=_window(time_range),
        total_errors=sum(g.events for g in by_type),
        by_event_type=[ErrorCount(key=g.key, count=g.events) for g in by_type],
        by_platform=[ErrorCount(key=g.key, count=g.events) for g in by_platform],
        recent=latest,
    )
