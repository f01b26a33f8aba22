"""Event store interface.

The event store is a durable, append-only log of canonical events with
secondary indexes by session, agent, event type and time.  ``commit`` is the
only mutation and is serialized into one logical writer; reads never wait on
that serialization beyond the instant of a single append.

Commit listeners are called synchronously, in commit order, right after each
durable commit.  They must not block (the broadcast hub only enqueues).
"""

from __future__ import annotations

import base64
import binascii
from collections.abc import Callable, Iterable
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Protocol, runtime_checkable

from agentwatch.event_server.models.enums import Severity
from agentwatch.event_server.models.events import CanonicalEvent, StoredEvent

CommitListener = Callable[[StoredEvent], None]


class EventNotFoundError(LookupError):
    """Raised when no event exists with the requested id."""


class StoreUnavailableError(RuntimeError):
    """Transient failure: the store could not accept a commit right now.

    The ingest gateway retries these with backoff before surfacing them.
    """


class DuplicateEventError(ValueError):
    """Raised when committing an event whose id is already stored."""


class InvalidCursorError(ValueError):
    """Raised when a pagination cursor cannot be decoded."""


@dataclass(frozen=True)
class TimeRange:
    """Half-open ``[start, end)`` interval; either bound may be open."""

    start: datetime | None = None
    end: datetime | None = None

    def __post_init__(self) -> None:
        object.__setattr__(self, "start", _utc(self.start))
        object.__setattr__(self, "end", _utc(self.end))
        if self.start is not None and self.end is not None and self.start > self.end:
            msg = "time range start must not be after end"
            raise ValueError(msg)

    @property
    def bounded(self) -> bool:
        return self.start is not None and self.end is not None


@dataclass(frozen=True)
class EventFilter:
    """Equality filters over indexed columns; ``None`` means unconstrained."""

    platform: str | None = None
    source_app: str | None = None
    session_id: str | None = None
    agent_id: str | None = None
    event_type: str | None = None
    event_category: str | None = None
    severity: tuple[Severity, ...] = ()
    """Any-of match; empty means unconstrained."""


@dataclass(frozen=True)
class Cursor:
    """Position after the last event of a page, ordered by ``(timestamp, sequence)``."""

    timestamp: datetime
    sequence: int

    def encode(self) -> str:
        raw = f"{self.timestamp.astimezone(UTC).isoformat()}|{self.sequence}"
        return base64.urlsafe_b64encode(raw.encode()).decode().rstrip("=")

    @classmethod
    def decode(cls, token: str) -> Cursor:
        try:
            padded = token + "=" * (-len(token) % 4)
            raw = base64.urlsafe_b64decode(padded.encode()).decode()
            ts, seq = raw.rsplit("|", 1)
            return cls(timestamp=datetime.fromisoformat(ts).astimezone(UTC), sequence=int(seq))
        except (ValueError, UnicodeDecodeError, binascii.Error) as exc:
            msg = f"invalid cursor {token!r}"
            raise InvalidCursorError(msg) from exc


@dataclass
class EventPage:
    events: list[StoredEvent] = field(default_factory=list)
    next_cursor: str | None = None


GROUPABLE_COLUMNS = frozenset(
    {"session_id", "agent_id", "platform", "source_app", "event_type", "event_category", "model", "severity"}
)


@dataclass
class GroupStats:
    """Aggregate over all events sharing one value of the grouping column."""

    key: str | None
    events: int = 0
    errors: int = 0
    duration_ms: float = 0.0
    tokens_input: int = 0
    tokens_output: int = 0
    tokens_total: int = 0
    first_at: datetime | None = None
    last_at: datetime | None = None


@runtime_checkable
class EventStore(Protocol):
    """Async protocol for the durable event log."""

    def add_listener(self, listener: CommitListener) -> None:
        """Register a callback invoked after every durable commit, in commit order."""
        ...

    async def commit(self, event: CanonicalEvent) -> StoredEvent:
        """Assign the next sequence and persist.  Raises ``StoreUnavailableError``."""
        ...

    async def get(self, event_id: str) -> StoredEvent:
        """Fetch one event.  Raises ``EventNotFoundError`` if missing."""
        ...

    async def existing_ids(self, event_ids: Iterable[str]) -> set[str]:
        """Return the subset of *event_ids* already stored."""
        ...

    async def query_session(self, session_id: str) -> list[StoredEvent]:
        """All events of a session, ordered by sequence."""
        ...

    async def query_by_agent(self, agent_id: str, time_range: TimeRange | None = None) -> list[StoredEvent]:
        """All events of an agent (optionally within *time_range*), ordered by sequence."""
        ...

    async def query_range(
        self,
        time_range: TimeRange,
        filters: EventFilter | None = None,
        cursor: str | None = None,
        limit: int = 100,
    ) -> EventPage:
        """One page of events ordered by ``(timestamp, sequence)``."""
        ...

    async def latest(
        self,
        time_range: TimeRange,
        filters: EventFilter | None = None,
        limit: int = 20,
    ) -> list[StoredEvent]:
        """Most recent events first."""
        ...

    async def aggregate(
        self,
        group_by: str,
        time_range: TimeRange | None = None,
        filters: EventFilter | None = None,
    ) -> list[GroupStats]:
        """Grouped counts, error counts, duration and token sums over *group_by*."""
        ...

    async def last_sequence(self) -> int:
        """Highest committed sequence (``0`` for an empty store)."""
        ...

    async def close(self) -> None: ...


def _utc(value: datetime | None) -> datetime | None:
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value.astimezone(UTC)
