"""StreamConsumer loop: cursor discipline, backoff, stop signal."""

from __future__ import annotations

import asyncio

import pytest

from focuslens.errors import StreamUnavailableError, TaskHandlingError
from focuslens.pipeline.consumer import StreamConsumer, wait_or_stop
from focuslens.pipeline.cursors import MemoryCursorStore
from focuslens.streams.base import StreamRecord
from focuslens.streams.memory import MemoryEventStream


class RecordingConsumer(StreamConsumer):
    name = "recorder"

    def __init__(self, stream, fail_on: set[str] | None = None, **kw) -> None:
        kw.setdefault("idle_interval", 0.01)
        kw.setdefault("error_backoff", 0.01)
        super().__init__(stream, "t", **kw)
        self.seen: list[str] = []
        self.fail_on = fail_on or set()

    async def handle(self, record: StreamRecord) -> None:
        self.seen.append(record.fields["n"])
        if record.fields["n"] in self.fail_on:
            raise TaskHandlingError("bad record")


class FlakyStream(MemoryEventStream):
    """Fails the first ``failures`` reads."""

    def __init__(self, failures: int) -> None:
        super().__init__()
        self.failures = failures
        self.reads = 0

    async def read_range(self, topic, after_id, limit):
        self.reads += 1
        if self.reads <= self.failures:
            raise StreamUnavailableError("connection reset")
        return await super().read_range(topic, after_id, limit)


async def fill(stream, n: int) -> None:
    for i in range(n):
        await stream.append("t", {"n": str(i)})


async def test_batches_respect_limit_and_order(metrics):
    stream = MemoryEventStream()
    await fill(stream, 5)
    consumer = RecordingConsumer(stream, batch_size=2, metrics=metrics)
    assert await consumer.poll_once() == 2
    assert await consumer.poll_once() == 2
    assert await consumer.poll_once() == 1
    assert await consumer.poll_once() == 0
    assert consumer.seen == ["0", "1", "2", "3", "4"]


async def test_failed_record_still_advances_cursor(metrics):
    stream = MemoryEventStream()
    await fill(stream, 3)
    cursors = MemoryCursorStore()
    consumer = RecordingConsumer(stream, fail_on={"1"}, cursors=cursors, metrics=metrics)
    await consumer.poll_once()
    assert consumer.seen == ["0", "1", "2"]
    assert await cursors.load("recorder") == await stream.last_id("t")
    assert await consumer.poll_once() == 0


async def test_unexpected_error_is_contained(metrics):
    class Exploding(RecordingConsumer):
        async def handle(self, record):
            raise RuntimeError("boom")

    stream = MemoryEventStream()
    await fill(stream, 2)
    consumer = Exploding(stream, metrics=metrics)
    assert await consumer.poll_once() == 2
    assert metrics.snapshot_sync()["labeled_counters"]["records_failed_total"] == {"recorder": 2}


async def test_stop_checked_between_records(metrics):
    stream = MemoryEventStream()
    await fill(stream, 5)
    stop = asyncio.Event()

    class StopAfterFirst(RecordingConsumer):
        async def handle(self, record):
            await super().handle(record)
            stop.set()

    consumer = StopAfterFirst(stream, metrics=metrics)
    assert await consumer.poll_once(stop) == 1


async def test_run_recovers_from_read_failures(metrics):
    stream = FlakyStream(failures=2)
    await fill(stream, 3)
    consumer = RecordingConsumer(stream, metrics=metrics)
    stop = asyncio.Event()

    task = asyncio.create_task(consumer.run(stop))
    for _ in range(200):
        if len(consumer.seen) == 3:
            break
        await asyncio.sleep(0.01)
    stop.set()
    await asyncio.wait_for(task, timeout=1)

    assert consumer.seen == ["0", "1", "2"]
    assert stream.reads >= 3


async def test_stop_interrupts_idle_wait(metrics):
    consumer = RecordingConsumer(MemoryEventStream(), idle_interval=30, metrics=metrics)
    stop = asyncio.Event()
    task = asyncio.create_task(consumer.run(stop))
    await asyncio.sleep(0.05)
    stop.set()
    await asyncio.wait_for(task, timeout=1)


@pytest.mark.parametrize("preset, expected", [(False, False), (True, True)])
async def test_wait_or_stop(preset, expected):
    stop = asyncio.Event()
    if preset:
        stop.set()
    assert await wait_or_stop(stop, 0.01) is expected
