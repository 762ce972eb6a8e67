"""Consumer cursor persistence."""

from __future__ import annotations

from abc import ABC, abstractmethod

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from focuslens.db.repository import ActivityRepository
from focuslens.db.session import db_session


class CursorStore(ABC):
    @abstractmethod
    async def load(self, consumer: str) -> str | None:
        """Last consumed record ID, or None if the consumer never ran."""

    @abstractmethod
    async def save(self, consumer: str, topic: str, last_id: str) -> None:
        ...


class DatabaseCursorStore(CursorStore):
    """Cursors in the ``stream_cursors`` table, one short transaction per save."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._session_factory = session_factory

    async def load(self, consumer: str) -> str | None:
        async with db_session(self._session_factory) as db:
            return await ActivityRepository(db).load_cursor(consumer)

    async def save(self, consumer: str, topic: str, last_id: str) -> None:
        async with db_session(self._session_factory) as db:
            await ActivityRepository(db).save_cursor(consumer, topic, last_id)


class MemoryCursorStore(CursorStore):
    def __init__(self) -> None:
        self._cursors: dict[str, str] = {}

    async def load(self, consumer: str) -> str | None:
        return self._cursors.get(consumer)

    async def save(self, consumer: str, topic: str, last_id: str) -> None:
        self._cursors[consumer] = last_id
