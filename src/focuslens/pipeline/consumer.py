"""Cursor-based polling consumer shared by the aggregator and the insight worker.

Loop discipline:
- Read up to ``batch_size`` records strictly after the cursor
- Handle records one at a time, in stream order
- Advance and persist the cursor after every record, handled or not
- Empty batch: idle wait. Read or cursor failure: error backoff
- The stop event is checked between records and ends both waits early
"""

from __future__ import annotations

import asyncio
from abc import ABC, abstractmethod
from typing import Literal

import structlog

from focuslens.errors import TaskHandlingError
from focuslens.observability.metrics import MetricsCollector, get_metrics
from focuslens.pipeline.cursors import CursorStore, MemoryCursorStore
from focuslens.streams.base import EventStream, StreamRecord

logger = structlog.get_logger()


async def wait_or_stop(stop: asyncio.Event, seconds: float) -> bool:
    """Sleep up to ``seconds``; return True if the stop event fired first."""
    try:
        await asyncio.wait_for(stop.wait(), timeout=seconds)
    except asyncio.TimeoutError:
        return False
    return True


class StreamConsumer(ABC):
    """One sequential reader of one topic."""

    name: str = "consumer"

    def __init__(
        self,
        stream: EventStream,
        topic: str,
        *,
        cursors: CursorStore | None = None,
        batch_size: int = 10,
        idle_interval: float = 1.0,
        error_backoff: float = 5.0,
        cursor_start: Literal["beginning", "latest"] = "beginning",
        metrics: MetricsCollector | None = None,
    ) -> None:
        self.stream = stream
        self.topic = topic
        self.cursors = cursors or MemoryCursorStore()
        self.batch_size = batch_size
        self.idle_interval = idle_interval
        self.error_backoff = error_backoff
        self.cursor_start = cursor_start
        self.metrics = metrics or get_metrics()
        self.cursor: str | None = None
        self._cursor_loaded = False

    @abstractmethod
    async def handle(self, record: StreamRecord) -> None:
        """Process one record. Errors are logged by the caller and the record is consumed."""

    async def _load_cursor(self) -> None:
        if self._cursor_loaded:
            return
        cursor = await self.cursors.load(self.name)
        if cursor is None and self.cursor_start == "latest":
            cursor = await self.stream.last_id(self.topic)
        self.cursor = cursor
        self._cursor_loaded = True
        logger.info(
            "consumer_cursor_loaded",
            consumer=self.name,
            topic=self.topic,
            cursor=cursor,
            start=self.cursor_start,
        )

    async def _advance(self, record_id: str) -> None:
        self.cursor = record_id
        await self.cursors.save(self.name, self.topic, record_id)

    async def consume(self, record: StreamRecord) -> None:
        """Handle one record, then advance the cursor past it regardless of outcome."""
        try:
            await self.handle(record)
        except TaskHandlingError as e:
            logger.warning(
                "record_handling_failed",
                consumer=self.name,
                record_id=record.id,
                error_type=type(e).__name__,
                error=str(e),
            )
            await self.metrics.record_failed(self.name)
        except Exception as e:
            logger.error(
                "record_handling_error",
                consumer=self.name,
                record_id=record.id,
                error_type=type(e).__name__,
                error=str(e),
                exc_info=True,
            )
            await self.metrics.record_failed(self.name)
        finally:
            await self._advance(record.id)

    async def poll_once(self, stop: asyncio.Event | None = None) -> int:
        """Read one batch and consume it. Returns the number of records consumed."""
        await self._load_cursor()
        records = await self.stream.read_range(self.topic, self.cursor, self.batch_size)
        consumed = 0
        for record in records:
            if stop is not None and stop.is_set():
                break
            await self.consume(record)
            consumed += 1
        return consumed

    async def run(self, stop: asyncio.Event) -> None:
        logger.info("consumer_started", consumer=self.name, topic=self.topic)
        while not stop.is_set():
            try:
                consumed = await self.poll_once(stop)
            except Exception as e:
                logger.error(
                    "consumer_poll_failed",
                    consumer=self.name,
                    error_type=type(e).__name__,
                    error=str(e),
                    backoff_seconds=self.error_backoff,
                )
                await wait_or_stop(stop, self.error_backoff)
                continue
            if consumed == 0:
                await wait_or_stop(stop, self.idle_interval)
        logger.info("consumer_stopped", consumer=self.name, cursor=self.cursor)
