"""Storage operations used by the pipeline and the read API.

Every write is a single INSERT ... ON CONFLICT statement so concurrent
writers are serialized by the database, never by application code.
"""

from __future__ import annotations

import datetime as dt
from typing import Any

from sqlalchemy import Table, func, select
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.ext.asyncio import AsyncSession

from focuslens.db.models import (
    METRIC_COLUMNS,
    DailyAggregate,
    Insight,
    RawEvent,
    StreamCursor,
)
from focuslens.schemas import DailyStats, EnrichedEvent

_INSERTS = {
    "postgresql": pg_insert,
    "sqlite": sqlite_insert,
}


def _utcnow() -> dt.datetime:
    return dt.datetime.now(dt.timezone.utc)


def stats_from_row(row: DailyAggregate) -> DailyStats:
    return DailyStats(**{column: getattr(row, column) for column in METRIC_COLUMNS})


class ActivityRepository:
    """Thin query layer bound to one session; the caller owns the transaction."""

    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    def _insert(self, table: Table) -> Any:
        dialect = self._session.get_bind().dialect.name
        try:
            return _INSERTS[dialect](table)
        except KeyError:
            raise NotImplementedError(f"Upserts are not supported on {dialect}") from None

    # ------------------------------------------------------------------
    # Raw events
    # ------------------------------------------------------------------

    async def insert_raw_event(self, event: EnrichedEvent) -> bool:
        """Store the event once. Returns False when event_id was already stored."""
        stmt = (
            self._insert(RawEvent.__table__)
            .values(
                event_id=event.event_id,
                user_id=event.user_id,
                event_type=event.event_type.value,
                payload=event.to_wire(),
                occurred_at=event.occurred_at,
                received_at=dt.datetime.fromtimestamp(event.received_at / 1000, tz=dt.timezone.utc),
                source=event.source,
                created_at=_utcnow(),
            )
            .on_conflict_do_nothing(index_elements=["event_id"])
            .returning(RawEvent.__table__.c.event_id)
        )
        result = await self._session.execute(stmt)
        return result.first() is not None

    async def count_events(self, user_id: str) -> int:
        result = await self._session.execute(
            select(func.count()).select_from(RawEvent).where(RawEvent.user_id == user_id)
        )
        return int(result.scalar_one())

    async def event_type_breakdown(self, user_id: str) -> list[tuple[str, int]]:
        count = func.count().label("count")
        result = await self._session.execute(
            select(RawEvent.event_type, count)
            .where(RawEvent.user_id == user_id)
            .group_by(RawEvent.event_type)
            .order_by(count.desc())
        )
        return [(event_type, int(n)) for event_type, n in result.all()]

    async def recent_events(self, user_id: str, limit: int = 20) -> list[RawEvent]:
        result = await self._session.execute(
            select(RawEvent)
            .where(RawEvent.user_id == user_id)
            .order_by(RawEvent.occurred_at.desc())
            .limit(limit)
        )
        return list(result.scalars().all())

    # ------------------------------------------------------------------
    # Daily aggregates
    # ------------------------------------------------------------------

    async def add_to_daily_aggregate(
        self,
        user_id: str,
        day: dt.date,
        column: str,
        amount: float,
    ) -> None:
        """Additive upsert: ``column += amount`` and ``event_count += 1``.

        The increment is computed inside the ON CONFLICT clause.
        """
        if column not in METRIC_COLUMNS or column == "event_count":
            raise ValueError(f"Unknown aggregate column {column!r}")

        table = DailyAggregate.__table__
        now = _utcnow()
        values: dict[str, Any] = {name: 0 for name in METRIC_COLUMNS}
        values[column] = amount
        values["event_count"] = 1

        stmt = self._insert(table).values(
            user_id=user_id,
            date=day,
            created_at=now,
            updated_at=now,
            **values,
        )
        stmt = stmt.on_conflict_do_update(
            index_elements=["user_id", "date"],
            set_={
                column: table.c[column] + stmt.excluded[column],
                "event_count": table.c.event_count + 1,
                "updated_at": now,
            },
        )
        await self._session.execute(stmt)

    async def get_daily_aggregate(self, user_id: str, day: dt.date) -> DailyAggregate | None:
        result = await self._session.execute(
            select(DailyAggregate)
            .where(
                DailyAggregate.user_id == user_id,
                DailyAggregate.date == day,
            )
            # Core upserts bypass the identity map
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def get_daily_stats(self, user_id: str, day: dt.date) -> DailyStats | None:
        row = await self.get_daily_aggregate(user_id, day)
        return stats_from_row(row) if row is not None else None

    async def daily_history(self, user_id: str, days: int) -> list[DailyAggregate]:
        """Most recent ``days`` rows, returned oldest first."""
        result = await self._session.execute(
            select(DailyAggregate)
            .where(DailyAggregate.user_id == user_id)
            .order_by(DailyAggregate.date.desc())
            .limit(days)
        )
        rows = list(result.scalars().all())
        rows.reverse()
        return rows

    # ------------------------------------------------------------------
    # Insights
    # ------------------------------------------------------------------

    async def upsert_insight(
        self,
        user_id: str,
        day: dt.date,
        insight_type: str,
        text: str,
        input_data: dict[str, Any],
        model: str,
        tokens_used: int,
        processing_time: int,
    ) -> None:
        """Insert or fully overwrite the insight for (user, day, type)."""
        table = Insight.__table__
        stmt = self._insert(table).values(
            user_id=user_id,
            date=day,
            insight_type=insight_type,
            insight=text,
            input_data=input_data,
            model=model,
            tokens_used=tokens_used,
            processing_time=processing_time,
            created_at=_utcnow(),
        )
        stmt = stmt.on_conflict_do_update(
            index_elements=["user_id", "date", "insight_type"],
            set_={
                "insight": stmt.excluded.insight,
                "input_data": stmt.excluded.input_data,
                "model": stmt.excluded.model,
                "tokens_used": stmt.excluded.tokens_used,
                "processing_time": stmt.excluded.processing_time,
                "created_at": stmt.excluded.created_at,
            },
        )
        await self._session.execute(stmt)

    async def get_insight(self, user_id: str, day: dt.date, insight_type: str) -> Insight | None:
        result = await self._session.execute(
            select(Insight)
            .where(
                Insight.user_id == user_id,
                Insight.date == day,
                Insight.insight_type == insight_type,
            )
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def recent_insights(self, user_id: str, limit: int = 10) -> list[Insight]:
        result = await self._session.execute(
            select(Insight)
            .where(Insight.user_id == user_id)
            .order_by(Insight.created_at.desc())
            .limit(limit)
        )
        return list(result.scalars().all())

    # ------------------------------------------------------------------
    # Cursors
    # ------------------------------------------------------------------

    async def load_cursor(self, consumer: str) -> str | None:
        result = await self._session.execute(
            select(StreamCursor.last_id).where(StreamCursor.consumer == consumer)
        )
        return result.scalar_one_or_none()

    async def save_cursor(self, consumer: str, topic: str, last_id: str) -> None:
        table = StreamCursor.__table__
        now = _utcnow()
        stmt = self._insert(table).values(
            consumer=consumer,
            topic=topic,
            last_id=last_id,
            updated_at=now,
        )
        stmt = stmt.on_conflict_do_update(
            index_elements=["consumer"],
            set_={"topic": topic, "last_id": last_id, "updated_at": now},
        )
        await self._session.execute(stmt)
