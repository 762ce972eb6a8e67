"""Initial schema: raw_events, daily_aggregates, insights, stream_cursors.

Revision ID: 5d1c0e7a9b21
Revises:
Create Date: 2026-10-19 12:00:00.000000+00:00
"""

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# Revision identifiers
revision: str = "5d1c0e7a9b21"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def _timestamps(*names: str) -> list[sa.Column]:
    return [
        sa.Column(name, sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now())
        for name in names
    ]


def _metric(name: str, type_: sa.types.TypeEngine) -> sa.Column:
    return sa.Column(name, type_, nullable=False, server_default="0")


def upgrade() -> None:
    # Raw events
    op.create_table(
        "raw_events",
        sa.Column("event_id", sa.String(64), primary_key=True),
        sa.Column("user_id", sa.String(255), nullable=False),
        sa.Column("event_type", sa.String(32), nullable=False),
        sa.Column(
            "payload", postgresql.JSONB(), nullable=False,
            comment="Enriched event exactly as it came off the stream",
        ),
        sa.Column("occurred_at", sa.DateTime(timezone=True), nullable=False, comment="Client timestamp"),
        sa.Column("received_at", sa.DateTime(timezone=True), nullable=True, comment="Gateway ingestion time"),
        sa.Column("source", sa.String(512), nullable=True),
        *_timestamps("created_at"),
    )
    op.create_index("ix_raw_events_user_occurred", "raw_events", ["user_id", "occurred_at"])
    op.create_index("ix_raw_events_user_type", "raw_events", ["user_id", "event_type"])

    # Daily aggregates
    op.create_table(
        "daily_aggregates",
        sa.Column("user_id", sa.String(255), primary_key=True),
        sa.Column("date", sa.Date(), primary_key=True),
        _metric("focus_time", sa.Float()),
        _metric("idle_time", sa.Float()),
        _metric("study_sessions", sa.Float()),
        _metric("tab_switches", sa.Integer()),
        _metric("app_opens", sa.Integer()),
        _metric("whatsapp_messages", sa.Integer()),
        _metric("event_count", sa.Integer()),
        *_timestamps("created_at", "updated_at"),
    )

    # Insights
    op.create_table(
        "insights",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("user_id", sa.String(255), nullable=False),
        sa.Column("date", sa.Date(), nullable=False),
        sa.Column("insight_type", sa.String(64), nullable=False),
        sa.Column("insight", sa.Text(), nullable=False),
        sa.Column("input_data", postgresql.JSONB(), nullable=False),
        sa.Column("model", sa.String(128), nullable=False),
        sa.Column("tokens_used", sa.Integer(), nullable=False, server_default="0"),
        sa.Column(
            "processing_time", sa.Integer(), nullable=False, server_default="0",
            comment="Generation latency in milliseconds",
        ),
        *_timestamps("created_at"),
        sa.UniqueConstraint("user_id", "date", "insight_type", name="uq_insights_user_date_type"),
    )
    op.create_index("ix_insights_user_created", "insights", ["user_id", "created_at"])

    # Consumer cursors
    op.create_table(
        "stream_cursors",
        sa.Column("consumer", sa.String(64), primary_key=True),
        sa.Column("topic", sa.String(128), nullable=False),
        sa.Column("last_id", sa.String(64), nullable=False),
        *_timestamps("updated_at"),
    )


def downgrade() -> None:
    op.drop_table("stream_cursors")
    op.drop_index("ix_insights_user_created", table_name="insights")
    op.drop_table("insights")
    op.drop_table("daily_aggregates")
    op.drop_index("ix_raw_events_user_type", table_name="raw_events")
    op.drop_index("ix_raw_events_user_occurred", table_name="raw_events")
    op.drop_table("raw_events")
