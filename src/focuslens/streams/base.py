"""Append-only, ordered log abstraction shared by the event and task streams."""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass


@dataclass(frozen=True)
class StreamRecord:
    """One stream entry: server-assigned ID plus its raw field map."""

    id: str
    fields: dict[str, str]


def parse_stream_id(record_id: str) -> tuple[int, int]:
    """Split a ``<ms>-<seq>`` stream ID into a sortable tuple."""
    ms, _, seq = record_id.partition("-")
    return int(ms), int(seq or 0)


class EventStream(ABC):
    """Durable, strictly ordered log per named topic.

    IDs increase monotonically within a topic. The stream keeps no
    consumer bookkeeping; each consumer tracks its own cursor.
    """

    @abstractmethod
    async def append(self, topic: str, fields: dict[str, str]) -> str:
        """Append a record and return its assigned ID."""

    @abstractmethod
    async def read_range(
        self,
        topic: str,
        after_id: str | None,
        limit: int,
    ) -> list[StreamRecord]:
        """Return up to ``limit`` records with IDs strictly greater than ``after_id``.

        ``after_id=None`` reads from the start of the topic.
        """

    @abstractmethod
    async def length(self, topic: str) -> int:
        """Number of records currently held in the topic."""

    @abstractmethod
    async def last_id(self, topic: str) -> str | None:
        """ID of the newest record, or None for an empty topic."""

    @abstractmethod
    async def ping(self) -> bool:
        """Connectivity probe; raises StreamUnavailableError when unreachable."""

    async def close(self) -> None:
        return None
