"""Record encoding for both streams.

Every record written by this package is ``{"v": "1", "payload": <json>}``.
Untagged records come from older producers and are tagged on read:
``{"payload": <json>}`` is ``"0"``, and a bare field map carrying the
event itself (``{"eventId": ..., "userId": ..., "timestamp": "..."}``) is
``"flat"``. Each tag has its own decoder.
"""

from __future__ import annotations

import json
from dataclasses import dataclass
from typing import Any, Callable

from pydantic import ValidationError

from focuslens.errors import RecordDecodeError
from focuslens.schemas import AlertTask, EnrichedEvent, WireModel

WIRE_VERSION = "1"
LEGACY_VERSION = "0"
FLAT_VERSION = "flat"

# Field-map values are strings; these carry JSON numbers or objects.
_FLAT_JSON_FIELDS = frozenset({"timestamp", "duration", "receivedAt", "metadata"})


@dataclass(frozen=True)
class Envelope:
    """Decoded record body with the wire version it was written in."""

    version: str
    body: dict[str, Any]


def encode(model: WireModel) -> dict[str, str]:
    return {
        "v": WIRE_VERSION,
        "payload": json.dumps(model.to_wire(), separators=(",", ":")),
    }


def _load_json_object(raw: str | None) -> dict[str, Any]:
    if raw is None:
        raise RecordDecodeError("record has no payload field")
    try:
        body = json.loads(raw)
    except json.JSONDecodeError as e:
        raise RecordDecodeError(f"payload is not valid JSON: {e}") from e
    if not isinstance(body, dict):
        raise RecordDecodeError(f"payload must be a JSON object, got {type(body).__name__}")
    return body


def _decode_v1(fields: dict[str, str]) -> Envelope:
    return Envelope(WIRE_VERSION, _load_json_object(fields.get("payload")))


def _decode_legacy(fields: dict[str, str]) -> Envelope:
    return Envelope(LEGACY_VERSION, _load_json_object(fields.get("payload")))


def _decode_flat(fields: dict[str, str]) -> Envelope:
    body: dict[str, Any] = {}
    for key, value in fields.items():
        if key in _FLAT_JSON_FIELDS and isinstance(value, str):
            try:
                value = json.loads(value)
            except json.JSONDecodeError as e:
                raise RecordDecodeError(f"field {key!r} is not valid JSON: {e}") from e
        body[key] = value
    return Envelope(FLAT_VERSION, body)


_DECODERS: dict[str, Callable[[dict[str, str]], Envelope]] = {
    WIRE_VERSION: _decode_v1,
    LEGACY_VERSION: _decode_legacy,
    FLAT_VERSION: _decode_flat,
}


def _record_tag(fields: dict[str, str]) -> str:
    if "v" in fields:
        return fields["v"]
    if "payload" in fields:
        return LEGACY_VERSION
    return FLAT_VERSION


def decode(fields: dict[str, str]) -> Envelope:
    version = _record_tag(fields)
    decoder = _DECODERS.get(version)
    if decoder is None:
        raise RecordDecodeError(f"unsupported wire version {version!r}")
    return decoder(fields)


def decode_event(fields: dict[str, str]) -> EnrichedEvent:
    envelope = decode(fields)
    try:
        return EnrichedEvent.model_validate(envelope.body)
    except ValidationError as e:
        raise RecordDecodeError(f"invalid event payload: {e.error_count()} error(s)") from e


def decode_task(fields: dict[str, str]) -> AlertTask:
    envelope = decode(fields)
    try:
        if envelope.version in (LEGACY_VERSION, FLAT_VERSION):
            return AlertTask.from_legacy(envelope.body)
        return AlertTask.model_validate(envelope.body)
    except ValidationError as e:
        raise RecordDecodeError(f"invalid task payload: {e.error_count()} error(s)") from e
