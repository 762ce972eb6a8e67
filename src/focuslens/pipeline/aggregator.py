"""Event stream consumer: raw storage, daily aggregation, alert rules."""

from __future__ import annotations

import structlog
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from focuslens.config import Settings, settings as default_settings
from focuslens.db.repository import ActivityRepository
from focuslens.db.session import db_session
from focuslens.errors import TransientInfraError
from focuslens.observability.metrics import MetricsCollector
from focuslens.pipeline.consumer import StreamConsumer
from focuslens.pipeline.cursors import CursorStore
from focuslens.pipeline.patterns import AlertRules, evaluate_rules
from focuslens.schemas import AlertTask, DailyStats, EnrichedEvent, TaskType
from focuslens.streams import codec
from focuslens.streams.base import EventStream, StreamRecord

logger = structlog.get_logger()


class AggregationEngine(StreamConsumer):
    """Consumes the event stream and keeps ``daily_aggregates`` current.

    Per event, in one transaction: store the raw event, add it to the
    (user, day) aggregate, re-read the row. Events whose ``event_id`` is
    already stored stop after the raw insert. Rules run on the re-read
    row and each firing rule queues one LOW_PRODUCTIVITY_ALERT.
    """

    name = "aggregator"

    def __init__(
        self,
        stream: EventStream,
        session_factory: async_sessionmaker[AsyncSession],
        settings: Settings | None = None,
        cursors: CursorStore | None = None,
        rules: AlertRules | None = None,
        metrics: MetricsCollector | None = None,
    ) -> None:
        settings = settings or default_settings
        super().__init__(
            stream,
            settings.events_topic,
            cursors=cursors,
            batch_size=settings.aggregator_batch_size,
            idle_interval=settings.aggregator_idle_interval,
            error_backoff=settings.error_backoff,
            cursor_start=settings.cursor_start,
            metrics=metrics,
        )
        self.session_factory = session_factory
        self.tasks_topic = settings.tasks_topic
        self.rules = rules or AlertRules.from_settings(settings)

    async def handle(self, record: StreamRecord) -> None:
        event = codec.decode_event(record.fields)
        async with self.metrics.timer("event_processing_ms"):
            stats = await self._store(event)
            if stats is None:
                return
            for rule in evaluate_rules(stats, self.rules):
                await self._queue_alert(event, stats, rule)

    async def _store(self, event: EnrichedEvent) -> DailyStats | None:
        """Write the event; None when it had already been stored."""
        async with db_session(self.session_factory) as db:
            repo = ActivityRepository(db)
            if not await repo.insert_raw_event(event):
                logger.info(
                    "event_duplicate_skipped",
                    event_id=event.event_id,
                    user_id=event.user_id,
                )
                await self.metrics.event_processed(duplicate=True)
                return None

            await repo.add_to_daily_aggregate(
                event.user_id,
                event.day,
                event.aggregate_column,
                event.aggregate_amount,
            )
            stats = await repo.get_daily_stats(event.user_id, event.day)

        await self.metrics.event_processed(duplicate=False)
        logger.info(
            "event_aggregated",
            event_id=event.event_id,
            user_id=event.user_id,
            event_type=event.event_type.value,
            date=event.day.isoformat(),
        )
        return stats

    async def _queue_alert(self, event: EnrichedEvent, stats: DailyStats, rule: str) -> None:
        task = AlertTask(
            type=TaskType.LOW_PRODUCTIVITY_ALERT.value,
            user_id=event.user_id,
            date=event.day,
            snapshot=stats,
            rule=rule,
        )
        try:
            task_id = await self.stream.append(self.tasks_topic, codec.encode(task))
        except TransientInfraError as e:
            logger.error(
                "alert_queue_failed",
                user_id=event.user_id,
                rule=rule,
                error=str(e),
            )
            return
        await self.metrics.alert_queued(rule)
        logger.info(
            "alert_queued",
            user_id=event.user_id,
            date=event.day.isoformat(),
            rule=rule,
            task_id=task_id,
        )
