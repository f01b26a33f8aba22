"""Durable event storage."""

from agentwatch.event_server.store.base import (
    Cursor,
    DuplicateEventError,
    EventFilter,
    EventNotFoundError,
    EventPage,
    EventStore,
    GroupStats,
    InvalidCursorError,
    StoreUnavailableError,
    TimeRange,
)
from agentwatch.event_server.store.sql import SqlEventStore

__all__ = [
    "Cursor",
    "DuplicateEventError",
    "EventFilter",
    "EventNotFoundError",
    "EventPage",
    "EventStore",
    "GroupStats",
    "InvalidCursorError",
    "SqlEventStore",
    "StoreUnavailableError",
    "TimeRange",
]
