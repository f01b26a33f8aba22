"""SQLAlchemy ORM models.

These are the single source of truth for the database schema. Alembic reads
``Base.metadata`` to autogenerate migration scripts.

JSON columns use ``JSONB`` on PostgreSQL and plain ``JSON`` elsewhere, so the
same schema runs on SQLite for local development and tests.

Uses SQLAlchemy 2.0 declarative style with ``Mapped`` type annotations.
"""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import JSON, BigInteger, DateTime, Float, Index, Text, UniqueConstraint, func, true
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

# Timezone-aware timestamp type for all datetime columns.
TimestampTZ = DateTime(timezone=True)

JSONType = JSON().with_variant(JSONB(), "postgresql")


class Base(DeclarativeBase):
    """Declarative base with naming convention for constraints."""

    pass


# Apply naming convention to the metadata for deterministic constraint names.
Base.metadata.naming_convention = {
    "ix": "ix_%(column_0_label)s",
    "uq": "uq_%(table_name)s_%(column_0_name)s",
    "ck": "ck_%(table_name)s_%(constraint_name)s",
    "fk": "fk_%(table_name)s_%(column_0_name)s_%(referred_table_name)s",
    "pk": "pk_%(table_name)s",
}


class Event(Base):
    """Append-only event log.

    ``sequence`` is the primary key and the commit order.  Secondary indexes
    live on the same row, so an insert updates log and indexes atomically.
    """

    __tablename__ = "events"
    __table_args__ = (
        UniqueConstraint("event_id", name="uq_events_event_id"),
        Index("ix_events_session_id_sequence", "session_id", "sequence"),
        Index("ix_events_agent_id_sequence", "agent_id", "sequence"),
        Index("ix_events_event_type", "event_type"),
        Index("ix_events_timestamp_sequence", "timestamp", "sequence"),
        Index("ix_events_platform", "platform"),
        Index("ix_events_source_app", "source_app"),
        Index("ix_events_severity", "severity"),
    )

    sequence: Mapped[int] = mapped_column(BigInteger, primary_key=True, autoincrement=False)
    event_id: Mapped[str] = mapped_column(Text, nullable=False)
    platform: Mapped[str] = mapped_column(Text, nullable=False)
    platform_version: Mapped[str | None] = mapped_column(Text)
    source_app: Mapped[str] = mapped_column(Text, nullable=False)
    source_type: Mapped[str] = mapped_column(Text, nullable=False, server_default="agent")
    agent_id: Mapped[str | None] = mapped_column(Text)
    session_id: Mapped[str] = mapped_column(Text, nullable=False)
    parent_event_id: Mapped[str | None] = mapped_column(Text)
    event_type: Mapped[str] = mapped_column(Text, nullable=False)
    event_category: Mapped[str] = mapped_column(Text, nullable=False)
    timestamp: Mapped[datetime] = mapped_column(TimestampTZ, nullable=False)
    ingested_at: Mapped[datetime] = mapped_column(TimestampTZ, nullable=False)
    duration_ms: Mapped[float | None] = mapped_column(Float)
    payload: Mapped[dict] = mapped_column(JSONType, nullable=False)
    model: Mapped[str | None] = mapped_column(Text)
    tokens_input: Mapped[int | None] = mapped_column(BigInteger)
    tokens_output: Mapped[int | None] = mapped_column(BigInteger)
    tokens_total: Mapped[int | None] = mapped_column(BigInteger)
    severity: Mapped[str] = mapped_column(Text, nullable=False, server_default="info")
    tags: Mapped[list] = mapped_column(JSONType, nullable=False)
    extensions: Mapped[dict] = mapped_column(JSONType, nullable=False)


class Platform(Base):
    __tablename__ = "platforms"

    name: Mapped[str] = mapped_column(Text, primary_key=True)
    display_name: Mapped[str] = mapped_column(Text, nullable=False)
    version: Mapped[str | None] = mapped_column(Text)
    schema_version: Mapped[str] = mapped_column(Text, nullable=False, server_default="1.0")
    enabled: Mapped[bool] = mapped_column(default=True, server_default=true())
    config: Mapped[dict] = mapped_column(JSONType, nullable=False, default=dict)
    created_at: Mapped[datetime] = mapped_column(TimestampTZ, server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(TimestampTZ, server_default=func.now(), onupdate=func.now())
