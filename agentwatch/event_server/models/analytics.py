"""Read-side aggregate models returned by the query engine."""

from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, Field

from agentwatch.event_server.models.events import StoredEvent


class TokenTotals(BaseModel):
    input: int = 0
    output: int = 0
    total: int = 0


class TimeWindow(BaseModel):
    start: datetime
    end: datetime


class ActivitySummary(BaseModel):
    """Shape shared by session summaries and per-agent performance."""

    event_count: int = 0
    events_by_category: dict[str, int] = Field(default_factory=dict)
    total_duration_ms: float = 0.0
    """Sum of durations of matched start/completion pairs."""

    paired_operations: int = 0
    tokens: TokenTotals = Field(default_factory=TokenTotals)
    error_count: int = 0
    first_event_at: datetime | None = None
    last_event_at: datetime | None = None


class SessionSummary(ActivitySummary):
    session_id: str
    agents: list[str] = Field(default_factory=list)
    platforms: list[str] = Field(default_factory=list)


class AgentPerformance(ActivitySummary):
    agent_id: str
    sessions: int = 0


class AgentAnalytics(BaseModel):
    window: TimeWindow
    agents: list[AgentPerformance]


class SessionActivity(BaseModel):
    session_id: str
    event_count: int
    error_count: int
    duration_ms: float
    tokens_total: int
    first_event_at: datetime | None = None
    last_event_at: datetime | None = None


class SessionAnalytics(BaseModel):
    window: TimeWindow
    sessions: list[SessionActivity]


class CostBreakdown(BaseModel):
    key: str | None
    events: int
    tokens: TokenTotals


class CostAnalytics(BaseModel):
    window: TimeWindow
    group_by: str
    totals: TokenTotals
    breakdown: list[CostBreakdown]


class ErrorCount(BaseModel):
    key: str | None
    count: int


class ErrorAnalytics(BaseModel):
    window: TimeWindow
    total_errors: int
    by_event_type: list[ErrorCount]
    by_platform: list[ErrorCount]
    recent: list[StoredEvent]
