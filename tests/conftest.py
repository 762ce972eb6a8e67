"""Pytest configuration and shared fixtures.

Run with:
    pytest tests/                        # Run all tests
    pytest tests/test_aggregator.py -v   # Run specific test file

Storage runs on in-memory SQLite (aiosqlite, one shared connection) and the
streams on the in-process backend, so no external service is needed.
"""

from __future__ import annotations

import datetime as dt
import json
from typing import Any, AsyncGenerator, Callable

import httpx
import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from focuslens.config import Settings
from focuslens.db.models import Base
from focuslens.db.session import create_session_factory
from focuslens.infra.rate_limiter import FixedWindowRateLimiter
from focuslens.llm.client import CompletionClient
from focuslens.observability.metrics import MetricsCollector
from focuslens.schemas import EnrichedEvent, EventType
from focuslens.streams.memory import MemoryEventStream

TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"

# 2024-01-15T10:00:00Z
T0_MS = 1705312800000
T0_DAY = dt.date(2024, 1, 15)


@pytest_asyncio.fixture
async def engine() -> AsyncGenerator[AsyncEngine, None]:
    """Fresh in-memory database per test."""
    engine = create_async_engine(
        TEST_DATABASE_URL,
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return create_session_factory(engine)


@pytest_asyncio.fixture
async def db(session_factory) -> AsyncGenerator[AsyncSession, None]:
    async with session_factory() as session:
        yield session
        await session.rollback()


@pytest.fixture
def test_settings() -> Settings:
    return Settings(
        database_url=TEST_DATABASE_URL,
        stream_backend="memory",
        llm_api_key="test-key",
        llm_base_url="https://llm.test/v1",
        aggregator_idle_interval=0.01,
        insight_idle_interval=0.01,
        error_backoff=0.01,
        allowed_origins=["http://localhost:5173"],
    )


@pytest.fixture
def stream() -> MemoryEventStream:
    return MemoryEventStream()


@pytest.fixture
def metrics() -> MetricsCollector:
    return MetricsCollector()


def make_event(
    event_type: EventType = EventType.FOCUS_SESSION,
    user_id: str = "u1",
    duration: float | None = None,
    timestamp: float = T0_MS,
    event_id: str = "evt-1",
    **extra: Any,
) -> EnrichedEvent:
    return EnrichedEvent(
        user_id=user_id,
        event_type=event_type,
        timestamp=timestamp,
        duration=duration,
        event_id=event_id,
        received_at=int(timestamp) + 5,
        source="pytest",
        **extra,
    )


def completion_reply(
    content: str | None = "- Observation\n- Risk\n- Action",
    total_tokens: int = 87,
    model: str = "llama-3.3-70b-versatile",
) -> dict[str, Any]:
    return {
        "id": "chatcmpl-test",
        "model": model,
        "choices": [{"index": 0, "message": {"role": "assistant", "content": content}}],
        "usage": {"prompt_tokens": 70, "completion_tokens": total_tokens - 70, "total_tokens": total_tokens},
    }


class FakeCompletionAPI:
    """Scripted /chat/completions endpoint for httpx.MockTransport."""

    def __init__(self, *responses: httpx.Response | dict[str, Any]) -> None:
        self._responses = list(responses) or [completion_reply()]
        self.requests: list[dict[str, Any]] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(json.loads(request.content))
        reply = self._responses.pop(0) if len(self._responses) > 1 else self._responses[0]
        if isinstance(reply, httpx.Response):
            return reply
        return httpx.Response(200, json=reply)


@pytest.fixture
def make_completion_client(test_settings) -> Callable[..., CompletionClient]:
    def _make(
        api: FakeCompletionAPI,
        limiter: FixedWindowRateLimiter | None = None,
        max_attempts: int = 1,
    ) -> CompletionClient:
        return CompletionClient(
            limiter or FixedWindowRateLimiter(max_requests=100, window_seconds=60),
            settings=test_settings,
            transport=httpx.MockTransport(api),
            max_attempts=max_attempts,
        )

    return _make
