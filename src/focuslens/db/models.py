"""focuslens database models.

Design principles:
- Raw events are immutable and keyed by their gateway-assigned event_id
- Daily aggregates are only ever incremented (additive upserts)
- Insights keep one row per (user, day, type); a new generation overwrites it
- Consumer cursors live next to the data they describe
"""

from __future__ import annotations

import datetime as dt
import json
from decimal import Decimal
from enum import Enum
from typing import Any

from sqlalchemy import (
    JSON,
    Date,
    DateTime,
    Float,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
    func,
)
from sqlalchemy.dialects.postgresql import JSONB as _JSONB
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column
from sqlalchemy.types import TypeDecorator


class JSONB(TypeDecorator):
    """JSONB on PostgreSQL, plain JSON elsewhere; serializes dates, Decimals and Enums."""

    impl = JSON
    cache_ok = True

    def load_dialect_impl(self, dialect: Any) -> Any:
        if dialect.name == "postgresql":
            return dialect.type_descriptor(_JSONB())
        return dialect.type_descriptor(JSON())

    def process_bind_param(self, value: Any, dialect: Any) -> Any:
        """Convert Python objects to JSON-serializable format before storing."""
        if value is None:
            return None
        return json.loads(json.dumps(value, default=self._json_default))

    @staticmethod
    def _json_default(obj: Any) -> Any:
        if isinstance(obj, (dt.datetime, dt.date)):
            return obj.isoformat()
        if isinstance(obj, Decimal):
            return float(obj)
        if isinstance(obj, Enum):
            return obj.value
        raise TypeError(f"Object of type {type(obj).__name__} is not JSON serializable")


def _utcnow() -> dt.datetime:
    return dt.datetime.now(dt.timezone.utc)


class Base(DeclarativeBase):
    """Declarative base; maps dict columns to JSONB and datetimes to timestamptz."""

    type_annotation_map = {
        dict[str, Any]: JSONB,
        dt.datetime: DateTime(timezone=True),
    }


# ═══════════════════════════════════════════════════════════════════════════════
# RAW EVENTS
# ═══════════════════════════════════════════════════════════════════════════════

class RawEvent(Base):
    """Every ingested event, stored once per event_id."""

    __tablename__ = "raw_events"
    __table_args__ = (
        Index("ix_raw_events_user_occurred", "user_id", "occurred_at"),
        Index("ix_raw_events_user_type", "user_id", "event_type"),
    )

    event_id: Mapped[str] = mapped_column(String(64), primary_key=True)
    user_id: Mapped[str] = mapped_column(String(255), nullable=False)
    event_type: Mapped[str] = mapped_column(String(32), nullable=False)
    payload: Mapped[dict[str, Any]] = mapped_column(
        JSONB, nullable=False,
        comment="Enriched event exactly as it came off the stream"
    )
    occurred_at: Mapped[dt.datetime] = mapped_column(
        DateTime(timezone=True), nullable=False,
        comment="Client timestamp"
    )
    received_at: Mapped[dt.datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True,
        comment="Gateway ingestion time"
    )
    source: Mapped[str | None] = mapped_column(String(512), nullable=True)
    created_at: Mapped[dt.datetime] = mapped_column(
        DateTime(timezone=True), default=_utcnow, server_default=func.now(), nullable=False
    )


# ═══════════════════════════════════════════════════════════════════════════════
# DAILY AGGREGATES
# ═══════════════════════════════════════════════════════════════════════════════

class DailyAggregate(Base):
    """Per-user, per-UTC-day running totals."""

    __tablename__ = "daily_aggregates"

    user_id: Mapped[str] = mapped_column(String(255), primary_key=True)
    date: Mapped[dt.date] = mapped_column(Date, primary_key=True)

    # Minute sums
    focus_time: Mapped[float] = mapped_column(Float, default=0, server_default="0", nullable=False)
    idle_time: Mapped[float] = mapped_column(Float, default=0, server_default="0", nullable=False)
    study_sessions: Mapped[float] = mapped_column(Float, default=0, server_default="0", nullable=False)

    # Occurrence counts
    tab_switches: Mapped[int] = mapped_column(Integer, default=0, server_default="0", nullable=False)
    app_opens: Mapped[int] = mapped_column(Integer, default=0, server_default="0", nullable=False)
    whatsapp_messages: Mapped[int] = mapped_column(Integer, default=0, server_default="0", nullable=False)
    event_count: Mapped[int] = mapped_column(Integer, default=0, server_default="0", nullable=False)

    created_at: Mapped[dt.datetime] = mapped_column(
        DateTime(timezone=True), default=_utcnow, server_default=func.now(), nullable=False
    )
    updated_at: Mapped[dt.datetime] = mapped_column(
        DateTime(timezone=True), default=_utcnow, server_default=func.now(), nullable=False
    )


METRIC_COLUMNS: tuple[str, ...] = (
    "focus_time",
    "idle_time",
    "tab_switches",
    "app_opens",
    "whatsapp_messages",
    "study_sessions",
    "event_count",
)


# ═══════════════════════════════════════════════════════════════════════════════
# INSIGHTS
# ═══════════════════════════════════════════════════════════════════════════════

class Insight(Base):
    """Latest generated insight per (user, day, type)."""

    __tablename__ = "insights"
    __table_args__ = (
        UniqueConstraint("user_id", "date", "insight_type", name="uq_insights_user_date_type"),
        Index("ix_insights_user_created", "user_id", "created_at"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_id: Mapped[str] = mapped_column(String(255), nullable=False)
    date: Mapped[dt.date] = mapped_column(Date, nullable=False)
    insight_type: Mapped[str] = mapped_column(String(64), nullable=False)
    insight: Mapped[str] = mapped_column(Text, nullable=False)
    input_data: Mapped[dict[str, Any]] = mapped_column(JSONB, nullable=False)
    model: Mapped[str] = mapped_column(String(128), nullable=False)
    tokens_used: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    processing_time: Mapped[int] = mapped_column(
        Integer, default=0, nullable=False,
        comment="Generation latency in milliseconds"
    )
    created_at: Mapped[dt.datetime] = mapped_column(
        DateTime(timezone=True), default=_utcnow, server_default=func.now(), nullable=False
    )


# ═══════════════════════════════════════════════════════════════════════════════
# STREAM CURSORS
# ═══════════════════════════════════════════════════════════════════════════════

class StreamCursor(Base):
    """Last stream record a named consumer has consumed."""

    __tablename__ = "stream_cursors"

    consumer: Mapped[str] = mapped_column(String(64), primary_key=True)
    topic: Mapped[str] = mapped_column(String(128), nullable=False)
    last_id: Mapped[str] = mapped_column(String(64), nullable=False)
    updated_at: Mapped[dt.datetime] = mapped_column(
        DateTime(timezone=True), default=_utcnow, server_default=func.now(), nullable=False
    )
