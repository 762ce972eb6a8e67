"""Event and task streams."""

from __future__ import annotations

from focuslens.config import Settings, settings as default_settings
from focuslens.streams.base import EventStream, StreamRecord
from focuslens.streams.memory import MemoryEventStream

__all__ = ["EventStream", "MemoryEventStream", "StreamRecord", "create_stream"]


def create_stream(settings: Settings | None = None) -> EventStream:
    """Build the stream backend selected by ``stream_backend``."""
    settings = settings or default_settings
    if settings.stream_backend == "memory":
        return MemoryEventStream()

    from focuslens.streams.redis_stream import RedisEventStream

    return RedisEventStream(url=settings.redis_url)
