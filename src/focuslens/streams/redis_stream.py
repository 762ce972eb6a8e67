"""Redis Streams backend (XADD / XRANGE / XLEN)."""

from __future__ import annotations

import redis.asyncio as redis
import structlog

from focuslens.errors import StreamUnavailableError
from focuslens.streams.base import EventStream, StreamRecord

logger = structlog.get_logger()


class RedisEventStream(EventStream):
    """Event stream stored in Redis Streams.

    Range reads use the exclusive ``(id`` start bound (Redis >= 6.2), so a
    consumer only ever passes its last consumed ID.
    """

    def __init__(self, url: str | None = None, client: redis.Redis | None = None) -> None:
        if client is None:
            if not url:
                raise ValueError("RedisEventStream needs a url or a client")
            client = redis.Redis.from_url(
                url,
                decode_responses=True,
                socket_timeout=5.0,
                socket_connect_timeout=5.0,
                retry_on_timeout=True,
                health_check_interval=30,
            )
        self._client = client

    async def append(self, topic: str, fields: dict[str, str]) -> str:
        try:
            record_id = await self._client.xadd(topic, fields)
        except (redis.RedisError, OSError) as e:
            logger.warning("redis_xadd_error", topic=topic, error=str(e))
            raise StreamUnavailableError(f"Failed to append to {topic}: {e}") from e
        return str(record_id)

    async def read_range(
        self,
        topic: str,
        after_id: str | None,
        limit: int,
    ) -> list[StreamRecord]:
        start = f"({after_id}" if after_id else "-"
        try:
            entries = await self._client.xrange(topic, min=start, max="+", count=limit)
        except (redis.RedisError, OSError) as e:
            logger.warning("redis_xrange_error", topic=topic, error=str(e))
            raise StreamUnavailableError(f"Failed to read {topic}: {e}") from e
        return [
            StreamRecord(id=str(record_id), fields=dict(fields or {}))
            for record_id, fields in entries
        ]

    async def length(self, topic: str) -> int:
        try:
            return int(await self._client.xlen(topic))
        except (redis.RedisError, OSError) as e:
            raise StreamUnavailableError(f"Failed to measure {topic}: {e}") from e

    async def last_id(self, topic: str) -> str | None:
        try:
            entries = await self._client.xrevrange(topic, max="+", min="-", count=1)
        except (redis.RedisError, OSError) as e:
            raise StreamUnavailableError(f"Failed to read head of {topic}: {e}") from e
        return str(entries[0][0]) if entries else None

    async def ping(self) -> bool:
        try:
            return bool(await self._client.ping())
        except (redis.RedisError, OSError) as e:
            raise StreamUnavailableError(f"Redis ping failed: {e}") from e

    async def close(self) -> None:
        await self._client.aclose()
        logger.info("redis_stream_closed")
