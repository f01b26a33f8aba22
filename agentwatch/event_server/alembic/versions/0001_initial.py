"""events and platforms tables

Revision ID: 0001
Revises:
Create Date: 2026-10-19 00:00:00
"""

from __future__ import annotations

from collections.abc import Sequence

import sqlalchemy as sa
from alembic import op
from sqlalchemy.dialects import postgresql

revision: str = "0001"
down_revision: str | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None

JSONType = sa.JSON().with_variant(postgresql.JSONB(), "postgresql")


def upgrade() -> None:
    op.create_table(
        "events",
        sa.Column("sequence", sa.BigInteger(), autoincrement=False, nullable=False),
        sa.Column("event_id", sa.Text(), nullable=False),
        sa.Column("platform", sa.Text(), nullable=False),
        sa.Column("platform_version", sa.Text(), nullable=True),
        sa.Column("source_app", sa.Text(), nullable=False),
        sa.Column("source_type", sa.Text(), server_default="agent", nullable=False),
        sa.Column("agent_id", sa.Text(), nullable=True),
        sa.Column("session_id", sa.Text(), nullable=False),
        sa.Column("parent_event_id", sa.Text(), nullable=True),
        sa.Column("event_type", sa.Text(), nullable=False),
        sa.Column("event_category", sa.Text(), nullable=False),
        sa.Column("timestamp", sa.DateTime(timezone=True), nullable=False),
        sa.Column("ingested_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("duration_ms", sa.Float(), nullable=True),
        sa.Column("payload", JSONType, nullable=False),
        sa.Column("model", sa.Text(), nullable=True),
        sa.Column("tokens_input", sa.BigInteger(), nullable=True),
        sa.Column("tokens_output", sa.BigInteger(), nullable=True),
        sa.Column("tokens_total", sa.BigInteger(), nullable=True),
        sa.Column("severity", sa.Text(), server_default="info", nullable=False),
        sa.Column("tags", JSONType, nullable=False),
        sa.Column("extensions", JSONType, nullable=False),
        sa.PrimaryKeyConstraint("sequence", name=op.f("pk_events")),
        sa.UniqueConstraint("event_id", name="uq_events_event_id"),
    )
    op.create_index("ix_events_session_id_sequence", "events", ["session_id", "sequence"])
    op.create_index("ix_events_agent_id_sequence", "events", ["agent_id", "sequence"])
    op.create_index("ix_events_event_type", "events", ["event_type"])
    op.create_index("ix_events_timestamp_sequence", "events", ["timestamp", "sequence"])
    op.create_index("ix_events_platform", "events", ["platform"])
    op.create_index("ix_events_source_app", "events", ["source_app"])
    op.create_index("ix_events_severity", "events", ["severity"])

    op.create_table(
        "platforms",
        sa.Column("name", sa.Text(), nullable=False),
        sa.Column("display_name", sa.Text(), nullable=False),
        sa.Column("version", sa.Text(), nullable=True),
        sa.Column("schema_version", sa.Text(), server_default="1.0", nullable=False),
        sa.Column("enabled", sa.Boolean(), server_default=sa.true(), nullable=False),
        sa.Column("config", JSONType, nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.PrimaryKeyConstraint("name", name=op.f("pk_platforms")),
    )


def downgrade() -> None:
    op.drop_table("platforms")
    op.drop_index("ix_events_severity", table_name="events")
    op.drop_index("ix_events_source_app", table_name="events")
    op.drop_index("ix_events_platform", table_name="events")
    op.drop_index("ix_events_timestamp_sequence", table_name="events")
    op.drop_index("ix_events_event_type", table_name="events")
    op.drop_index("ix_events_agent_id_sequence", table_name="events")
    op.drop_index("ix_events_session_id_sequence", table_name="events")
    op.drop_table("events")
