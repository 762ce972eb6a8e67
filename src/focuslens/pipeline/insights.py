"""Task stream consumer: rate-limited insight generation."""

from __future__ import annotations

import datetime as dt
import time

import structlog
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from focuslens.config import LLMPresets, Settings, settings as default_settings
from focuslens.db.repository import ActivityRepository
from focuslens.db.session import db_session
from focuslens.llm.client import CompletionClient
from focuslens.llm.prompts import EMPTY_INSIGHT, build_insight_prompt
from focuslens.observability.metrics import MetricsCollector
from focuslens.pipeline.consumer import StreamConsumer
from focuslens.pipeline.cursors import CursorStore
from focuslens.schemas import AlertTask, DailyStats, TaskType, utc_today
from focuslens.streams import codec
from focuslens.streams.base import EventStream, StreamRecord

logger = structlog.get_logger()


class InsightWorker(StreamConsumer):
    """Turns alert and summary tasks into stored insights.

    LOW_PRODUCTIVITY_ALERT uses the snapshot carried by the task.
    DAILY_SUMMARY loads the stored aggregate for (user, day). Anything
    else, or a summary with no aggregate, is logged and skipped.
    """

    name = "insight_worker"

    def __init__(
        self,
        stream: EventStream,
        session_factory: async_sessionmaker[AsyncSession],
        completion: CompletionClient,
        settings: Settings | None = None,
        cursors: CursorStore | None = None,
        metrics: MetricsCollector | None = None,
    ) -> None:
        settings = settings or default_settings
        super().__init__(
            stream,
            settings.tasks_topic,
            cursors=cursors,
            batch_size=settings.insight_batch_size,
            idle_interval=settings.insight_idle_interval,
            error_backoff=settings.error_backoff,
            cursor_start=settings.cursor_start,
            metrics=metrics,
        )
        self.session_factory = session_factory
        self.completion = completion

    async def handle(self, record: StreamRecord) -> None:
        task = codec.decode_task(record.fields)
        day = task.date or utc_today()
        stats = await self._resolve_stats(task, day)
        if stats is None:
            return
        await self.generate(task, day, stats)

    async def _resolve_stats(self, task: AlertTask, day: dt.date) -> DailyStats | None:
        if task.type == TaskType.LOW_PRODUCTIVITY_ALERT.value:
            if task.snapshot is None:
                await self._skip(task, "missing_snapshot")
            return task.snapshot

        if task.type == TaskType.DAILY_SUMMARY.value:
            async with db_session(self.session_factory) as db:
                stats = await ActivityRepository(db).get_daily_stats(task.user_id, day)
            if stats is None:
                await self._skip(task, "no_aggregate", date=day.isoformat())
            return stats

        await self._skip(task, "unknown_type")
        return None

    async def _skip(self, task: AlertTask, reason: str, **context: str) -> None:
        logger.info(
            "task_skipped",
            task_type=task.type,
            user_id=task.user_id,
            reason=reason,
            **context,
        )
        await self.metrics.task_skipped(reason)

    async def generate(self, task: AlertTask, day: dt.date, stats: DailyStats) -> None:
        """Call the completion API and overwrite the (user, day, type) insight."""
        t0 = time.monotonic()
        response = await self.completion.complete(
            build_insight_prompt(stats),
            preset=LLMPresets.INSIGHT,
        )
        elapsed_ms = round((time.monotonic() - t0) * 1000)
        text = response.content.strip() or EMPTY_INSIGHT

        async with db_session(self.session_factory) as db:
            await ActivityRepository(db).upsert_insight(
                user_id=task.user_id,
                day=day,
                insight_type=task.type,
                text=text,
                input_data=stats.to_wire(),
                model=response.model,
                tokens_used=response.total_tokens,
                processing_time=elapsed_ms,
            )

        await self.metrics.insight_generated(elapsed_ms)
        logger.info(
            "insight_generated",
            user_id=task.user_id,
            date=day.isoformat(),
            insight_type=task.type,
            rule=task.rule,
            tokens_used=response.total_tokens,
            processing_ms=elapsed_ms,
        )
