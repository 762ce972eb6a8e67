"""Ingestion gateway: validate, enrich, append to the event stream."""

from __future__ import annotations

import time
import uuid
from dataclasses import dataclass
from typing import Any, Callable

import structlog
from pydantic import ValidationError

from focuslens.config import Settings, settings as default_settings
from focuslens.errors import EventValidationError, IngestionError, TransientInfraError
from focuslens.observability.metrics import MetricsCollector, get_metrics
from focuslens.schemas import EnrichedEvent, EventIn, validation_issues
from focuslens.streams import codec
from focuslens.streams.base import EventStream

logger = structlog.get_logger()


@dataclass(frozen=True)
class SubmitResult:
    event_id: str
    stream_id: str


class IngestionGateway:
    def __init__(
        self,
        stream: EventStream,
        settings: Settings | None = None,
        metrics: MetricsCollector | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.stream = stream
        self.topic = (settings or default_settings).events_topic
        self.metrics = metrics or get_metrics()
        self._clock = clock

    async def submit(self, payload: Any, source: str | None = None) -> SubmitResult:
        """Validate and enqueue one event.

        Raises:
            EventValidationError: payload does not match the event schema;
                nothing was appended.
            IngestionError: the stream rejected the append.
        """
        if not isinstance(payload, dict):
            raise EventValidationError(
                [{"field": "body", "message": "Request body must be a JSON object"}]
            )
        try:
            event_in = EventIn.model_validate(payload)
        except ValidationError as e:
            issues = validation_issues(e)
            logger.info("event_rejected", error_count=len(issues), fields=[i["field"] for i in issues])
            raise EventValidationError(issues) from e

        event = EnrichedEvent(
            **event_in.model_dump(),
            event_id=str(uuid.uuid4()),
            received_at=int(self._clock() * 1000),
            source=source or "unknown",
        )

        try:
            stream_id = await self.stream.append(self.topic, codec.encode(event))
        except TransientInfraError as e:
            logger.error("event_enqueue_failed", event_id=event.event_id, error=str(e))
            raise IngestionError("Failed to enqueue event") from e

        await self.metrics.event_ingested()
        logger.info(
            "event_ingested",
            event_id=event.event_id,
            user_id=event.user_id,
            event_type=event.event_type.value,
            stream_id=stream_id,
        )
        return SubmitResult(event_id=event.event_id, stream_id=stream_id)
