"""Wire models shared by the gateway, the stream consumers and the API.

Field names are snake_case in Python and camelCase on the wire
(``userId``, ``eventType`` ...), matching what producers send.
"""

from __future__ import annotations

import datetime as dt
from enum import Enum
from typing import Annotated, Any

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator
from pydantic.alias_generators import to_camel


class EventType(str, Enum):
    """Closed set of activity events a producer may submit."""
    FOCUS_SESSION = "FOCUS_SESSION"
    TAB_SWITCH = "TAB_SWITCH"
    APP_OPEN = "APP_OPEN"
    WHATSAPP_MESSAGE = "WHATSAPP_MESSAGE"
    STUDY_SESSION = "STUDY_SESSION"
    IDLE_TIME = "IDLE_TIME"


class TaskType(str, Enum):
    """Task types carried on the task stream."""
    LOW_PRODUCTIVITY_ALERT = "LOW_PRODUCTIVITY_ALERT"
    DAILY_SUMMARY = "DAILY_SUMMARY"


# eventType -> daily aggregate column. Duration-bearing types add the
# event's duration, the rest add one occurrence.
AGGREGATE_COLUMNS: dict[EventType, str] = {
    EventType.FOCUS_SESSION: "focus_time",
    EventType.IDLE_TIME: "idle_time",
    EventType.STUDY_SESSION: "study_sessions",
    EventType.TAB_SWITCH: "tab_switches",
    EventType.APP_OPEN: "app_opens",
    EventType.WHATSAPP_MESSAGE: "whatsapp_messages",
}

DURATION_EVENT_TYPES = frozenset({
    EventType.FOCUS_SESSION,
    EventType.IDLE_TIME,
    EventType.STUDY_SESSION,
})


# Last millisecond of 9999-12-31 UTC, the largest instant a datetime can hold.
MAX_TIMESTAMP_MS = 253_402_300_799_999


def utc_day(timestamp_ms: float) -> dt.date:
    """UTC calendar day of an epoch-milliseconds timestamp."""
    return dt.datetime.fromtimestamp(timestamp_ms / 1000, tz=dt.timezone.utc).date()


def utc_today() -> dt.date:
    return dt.datetime.now(dt.timezone.utc).date()


class WireModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    def to_wire(self) -> dict[str, Any]:
        """JSON-safe dict with camelCase keys, ``None`` fields dropped."""
        return self.model_dump(by_alias=True, mode="json", exclude_none=True)


class EventIn(WireModel):
    """Event as submitted by a producer."""

    user_id: str = Field(min_length=1)
    event_type: EventType
    timestamp: float = Field(gt=0, le=MAX_TIMESTAMP_MS, strict=True)
    duration: Annotated[float, Field(gt=0, strict=True)] | None = None
    metadata: dict[str, str] | None = None

    @field_validator("metadata", mode="before")
    @classmethod
    def _blank_missing_values(cls, value: Any) -> Any:
        if isinstance(value, dict):
            return {key: (" " if item is None else item) for key, item in value.items()}
        return value


class EnrichedEvent(EventIn):
    """Event after the gateway assigned identity and provenance."""

    event_id: str = Field(min_length=1)
    received_at: int
    source: str = "unknown"

    @property
    def day(self) -> dt.date:
        return utc_day(self.timestamp)

    @property
    def occurred_at(self) -> dt.datetime:
        return dt.datetime.fromtimestamp(self.timestamp / 1000, tz=dt.timezone.utc)

    @property
    def aggregate_column(self) -> str:
        return AGGREGATE_COLUMNS[self.event_type]

    @property
    def aggregate_amount(self) -> float:
        if self.event_type in DURATION_EVENT_TYPES:
            return self.duration or 0
        return 1


class DailyStats(WireModel):
    """The seven per-day metrics used for rules and insight prompts."""

    focus_time: float = 0
    idle_time: float = 0
    tab_switches: int = 0
    app_opens: int = 0
    whatsapp_messages: int = 0
    study_sessions: float = 0
    event_count: int = 0

    @classmethod
    def wire_keys(cls) -> tuple[str, ...]:
        return tuple(to_camel(name) for name in cls.model_fields)


class AlertTask(WireModel):
    """Message on the task stream.

    ``type`` is kept as a plain string so that tasks with an unknown type
    still decode and can be skipped by the worker.
    """

    type: str
    user_id: str = Field(min_length=1)
    date: dt.date | None = None
    snapshot: DailyStats | None = None
    rule: str | None = None

    @classmethod
    def from_legacy(cls, body: dict[str, Any]) -> AlertTask:
        """Build a task from the untagged shape, where metrics sit flat on the task."""
        metric_keys = DailyStats.wire_keys()
        flat = {key: body[key] for key in metric_keys if key in body}
        task = {key: value for key, value in body.items() if key not in metric_keys}
        if flat and "snapshot" not in task:
            task["snapshot"] = flat
        return cls.model_validate(task)


def validation_issues(exc: ValidationError) -> list[dict[str, str]]:
    """Flatten a pydantic error into ``[{field, message}]`` entries."""
    return [
        {
            "field": ".".join(str(part) for part in err["loc"]),
            "message": err["msg"],
        }
        for err in exc.errors()
    ]
