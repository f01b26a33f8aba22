"""SQLAlchemy event store.

All commits go through one ``asyncio.Lock``: inside it a single transaction
reads ``max(sequence)`` and inserts the new row with ``max + 1``.  The
sequence is the primary key, so a second server process racing on the same
database hits a unique violation instead of producing a duplicate; that
conflict is reported as ``StoreUnavailableError`` and retried by the
gateway.  A rolled-back transaction consumes no sequence number, which keeps
the series gap-free.

Reads open their own sessions and never take the lock.
"""

from __future__ import annotations

import asyncio
from collections.abc import Iterable
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any

from loguru import logger
from sqlalchemy import Select, and_, case, func, or_, select
from sqlalchemy.exc import DBAPIError, IntegrityError

from agentwatch.event_server.db.tables import Event as EventRow
from agentwatch.event_server.models.enums import ERROR_SEVERITIES
from agentwatch.event_server.models.events import CanonicalEvent, StoredEvent, TokenUsage
from agentwatch.event_server.store.base import (
    GROUPABLE_COLUMNS,
    CommitListener,
    Cursor,
    DuplicateEventError,
    EventFilter,
    EventNotFoundError,
    EventPage,
    GroupStats,
    StoreUnavailableError,
    TimeRange,
)

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker


class SqlEventStore:
    """``EventStore`` implementation on an async SQLAlchemy session factory."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._session_factory = session_factory
        self._write_lock = asyncio.Lock()
        self._listeners: list[CommitListener] = []

    def add_listener(self, listener: CommitListener) -> None:
        self._listeners.append(listener)

    # -- Write -----------------------------------------------------------------

    async def commit(self, event: CanonicalEvent) -> StoredEvent:
        async with self._write_lock:
            try:
                async with self._session_factory() as db, db.begin():
                    last = await db.scalar(select(func.max(EventRow.sequence)))
                    sequence = (last or 0) + 1
                    db.add(_event_to_row(event, sequence))
            except IntegrityError as exc:
                if await self._id_exists(event.id):
                    raise DuplicateEventError(event.id) from exc
                msg = "sequence conflict with a concurrent writer"
                raise StoreUnavailableError(msg) from exc
            except DBAPIError as exc:
                msg = f"event store unavailable: {exc}"
                raise StoreUnavailableError(msg) from exc

            stored = StoredEvent(**event.model_dump(), sequence=sequence)
            logger.debug("Store: committed {} as sequence {}", stored.id, sequence)
            self._notify(stored)
        return stored

    def _notify(self, stored: StoredEvent) -> None:
        for listener in self._listeners:
            try:
                listener(stored)
            except Exception:
                # The commit is durable; a failing listener only loses its own delivery.
                logger.exception("Store: commit listener {!r} failed for sequence {}", listener, stored.sequence)

    # -- Read ------------------------------------------------------------------

    async def get(self, event_id: str) -> StoredEvent:
        async with self._session_factory() as db:
            row = await db.scalar(select(EventRow).where(EventRow.event_id == event_id))
        if row is None:
            raise EventNotFoundError(event_id)
        return _row_to_event(row)

    async def existing_ids(self, event_ids: Iterable[str]) -> set[str]:
        ids = {i for i in event_ids if i}
        if not ids:
            return set()
        try:
            async with self._session_factory() as db:
                result = await db.scalars(select(EventRow.event_id).where(EventRow.event_id.in_(ids)))
                return set(result.all())
        except DBAPIError as exc:
            msg = f"event store unavailable: {exc}"
            raise StoreUnavailableError(msg) from exc

    async def _id_exists(self, event_id: str) -> bool:
        return bool(await self.existing_ids([event_id]))

    async def query_session(self, session_id: str) -> list[StoredEvent]:
        stmt = select(EventRow).where(EventRow.session_id == session_id).order_by(EventRow.sequence)
        return await self._fetch(stmt)

    async def query_by_agent(self, agent_id: str, time_range: TimeRange | None = None) -> list[StoredEvent]:
        stmt = select(EventRow).where(EventRow.agent_id == agent_id)
        stmt = _apply_time_range(stmt, time_range).order_by(EventRow.sequence)
        return await self._fetch(stmt)

    async def query_range(
        self,
        time_range: TimeRange,
        filters: EventFilter | None = None,
        cursor: str | None = None,
        limit: int = 100,
    ) -> EventPage:
        stmt = _apply_filters(select(EventRow), filters)
        stmt = _apply_time_range(stmt, time_range)
        if cursor:
            after = Cursor.decode(cursor)
            stmt = stmt.where(
                or_(
                    EventRow.timestamp > after.timestamp,
                    and_(EventRow.timestamp == after.timestamp, EventRow.sequence > after.sequence),
                )
            )
        stmt = stmt.order_by(EventRow.timestamp, EventRow.sequence).limit(limit + 1)
        events = await self._fetch(stmt)

        next_cursor = None
        if len(events) > limit:
            events = events[:limit]
            last = events[-1]
            next_cursor = Cursor(timestamp=last.timestamp, sequence=last.sequence).encode()
        return EventPage(events=events, next_cursor=next_cursor)

    async def latest(
        self,
        time_range: TimeRange,
        filters: EventFilter | None = None,
        limit: int = 20,
    ) -> list[StoredEvent]:
        stmt = _apply_time_range(_apply_filters(select(EventRow), filters), time_range)
        stmt = stmt.order_by(EventRow.timestamp.desc(), EventRow.sequence.desc()).limit(limit)
        return await self._fetch(stmt)

    async def aggregate(
        self,
        group_by: str,
        time_range: TimeRange | None = None,
        filters: EventFilter | None = None,
    ) -> list[GroupStats]:
        if group_by not in GROUPABLE_COLUMNS:
            msg = f"cannot group by {group_by!r}"
            raise ValueError(msg)
        column = getattr(EventRow, group_by)
        is_error = case((EventRow.severity.in_([s.value for s in ERROR_SEVERITIES]), 1), else_=0)
        stmt = select(
            column.label("key"),
            func.count().label("events"),
            func.coalesce(func.sum(is_error), 0).label("errors"),
            func.coalesce(func.sum(EventRow.duration_ms), 0.0).label("duration_ms"),
            func.coalesce(func.sum(EventRow.tokens_input), 0).label("tokens_input"),
            func.coalesce(func.sum(EventRow.tokens_output), 0).label("tokens_output"),
            func.coalesce(func.sum(EventRow.tokens_total), 0).label("tokens_total"),
            func.min(EventRow.timestamp).label("first_at"),
            func.max(EventRow.timestamp).label("last_at"),
        )
        stmt = _apply_time_range(_apply_filters(stmt, filters), time_range)
        stmt = stmt.group_by(column).order_by(func.count().desc(), column)

        async with self._session_factory() as db:
            rows = (await db.execute(stmt)).all()
        return [
            GroupStats(
                key=row.key,
                events=int(row.events),
                errors=int(row.errors),
                duration_ms=float(row.duration_ms),
                tokens_input=int(row.tokens_input),
                tokens_output=int(row.tokens_output),
                tokens_total=int(row.tokens_total),
                first_at=_aware(row.first_at),
                last_at=_aware(row.last_at),
            )
            for row in rows
        ]

    async def last_sequence(self) -> int:
        async with self._session_factory() as db:
            return int(await db.scalar(select(func.coalesce(func.max(EventRow.sequence), 0))) or 0)

    async def close(self) -> None:
        # Wait for an in-flight commit to finish; the engine itself is owned by the app.
        async with self._write_lock:
            self._listeners.clear()

    async def _fetch(self, stmt: Select[Any]) -> list[StoredEvent]:
        async with self._session_factory() as db:
            rows = (await db.scalars(stmt)).all()
        return [_row_to_event(row) for row in rows]


# -- Row mapping ----------------------------------------------------------------


def _event_to_row(event: CanonicalEvent, sequence: int) -> EventRow:
    tokens = event.tokens or TokenUsage()
    return EventRow(
        sequence=sequence,
        event_id=event.id,
        platform=event.platform,
        platform_version=event.platform_version,
        source_app=event.source_app,
        source_type=event.source_type.value,
        agent_id=event.agent_id,
        session_id=event.session_id,
        parent_event_id=event.parent_event_id,
        event_type=event.event_type,
        event_category=event.event_category,
        timestamp=event.timestamp,
        ingested_at=event.ingested_at,
        duration_ms=event.duration_ms,
        payload=event.payload,
        model=event.model,
        tokens_input=tokens.input,
        tokens_output=tokens.output,
        tokens_total=tokens.total,
        severity=event.severity.value,
        tags=list(event.tags),
        extensions=event.extensions,
    )


def _row_to_event(row: EventRow) -> StoredEvent:
    tokens = None
    if any(v is not None for v in (row.tokens_input, row.tokens_output, row.tokens_total)):
        tokens = TokenUsage(input=row.tokens_input, output=row.tokens_output, total=row.tokens_total)
    return StoredEvent(
        id=row.event_id,
        sequence=row.sequence,
        platform=row.platform,
        platform_version=row.platform_version,
        source_app=row.source_app,
        source_type=row.source_type,
        agent_id=row.agent_id,
        session_id=row.session_id,
        parent_event_id=row.parent_event_id,
        event_type=row.event_type,
        event_category=row.event_category,
        timestamp=row.timestamp,
        ingested_at=row.ingested_at,
        duration_ms=row.duration_ms,
        payload=row.payload or {},
        model=row.model,
        tokens=tokens,
        severity=row.severity,
        tags=list(row.tags or []),
        extensions=row.extensions or {},
    )


def _apply_filters(stmt: Select[Any], filters: EventFilter | None) -> Select[Any]:
    if filters is None:
        return stmt
    for name in ("platform", "source_app", "session_id", "agent_id", "event_type", "event_category"):
        value = getattr(filters, name)
        if value is not None:
            stmt = stmt.where(getattr(EventRow, name) == value)
    if filters.severity:
        stmt = stmt.where(EventRow.severity.in_([s.value for s in filters.severity]))
    return stmt


def _apply_time_range(stmt: Select[Any], time_range: TimeRange | None) -> Select[Any]:
    if time_range is None:
        return stmt
    if time_range.start is not None:
        stmt = stmt.where(EventRow.timestamp >= time_range.start)
    if time_range.end is not None:
        stmt = stmt.where(EventRow.timestamp < time_range.end)
    return stmt


def _aware(value: datetime | None) -> datetime | None:
    # SQLite hands back naive datetimes.
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value
