"""In-process stream backend for tests and single-process development."""

from __future__ import annotations

import asyncio
import time
from collections import defaultdict

from focuslens.streams.base import EventStream, StreamRecord, parse_stream_id


class MemoryEventStream(EventStream):
    """Keeps every topic as an ordered list; IDs follow Redis' ``<ms>-<seq>`` form."""

    def __init__(self) -> None:
        self._topics: dict[str, list[StreamRecord]] = defaultdict(list)
        self._last: dict[str, tuple[int, int]] = {}
        self._lock = asyncio.Lock()

    def _next_id(self, topic: str) -> str:
        now_ms = int(time.time() * 1000)
        last_ms, last_seq = self._last.get(topic, (0, -1))
        if now_ms > last_ms:
            new = (now_ms, 0)
        else:
            new = (last_ms, last_seq + 1)
        self._last[topic] = new
        return f"{new[0]}-{new[1]}"

    async def append(self, topic: str, fields: dict[str, str]) -> str:
        async with self._lock:
            record_id = self._next_id(topic)
            self._topics[topic].append(StreamRecord(id=record_id, fields=dict(fields)))
            return record_id

    async def read_range(
        self,
        topic: str,
        after_id: str | None,
        limit: int,
    ) -> list[StreamRecord]:
        records = self._topics.get(topic, [])
        if after_id is not None:
            floor = parse_stream_id(after_id)
            records = [r for r in records if parse_stream_id(r.id) > floor]
        return list(records[:limit])

    async def length(self, topic: str) -> int:
        return len(self._topics.get(topic, []))

    async def last_id(self, topic: str) -> str | None:
        records = self._topics.get(topic)
        return records[-1].id if records else None

    async def ping(self) -> bool:
        return True
