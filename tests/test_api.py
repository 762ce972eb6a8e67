"""HTTP surface via httpx.ASGITransport (lifespan not run)."""

from __future__ import annotations

import datetime as dt
from typing import AsyncGenerator
from unittest.mock import AsyncMock

import httpx
import pytest
import pytest_asyncio
from sqlalchemy.exc import OperationalError

from conftest import T0_DAY, T0_MS, make_event
from focuslens.api.dashboard import get_repository
from focuslens.app import create_app
from focuslens.db.repository import ActivityRepository
from focuslens.errors import StreamUnavailableError
from focuslens.schemas import EventType, utc_today


@pytest.fixture
def app(stream, session_factory, test_settings, metrics):
    return create_app(stream=stream, session_factory=session_factory, settings=test_settings, metrics=metrics)


@pytest_asyncio.fixture
async def client(app) -> AsyncGenerator[httpx.AsyncClient, None]:
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as c:
        yield c


# ─────────────────────────────────────────────────────────────────────────────
# POST /events
# ─────────────────────────────────────────────────────────────────────────────

async def test_accepts_valid_event(client, stream):
    resp = await client.post(
        "/events",
        json={"userId": "u1", "eventType": "FOCUS_SESSION", "timestamp": T0_MS, "duration": 45},
        headers={"User-Agent": "focus-extension/1.0"},
    )
    assert resp.status_code == 202
    body = resp.json()
    assert body["status"] == "accepted"
    assert body["eventId"]
    assert body["streamId"] == await stream.last_id("events-stream")


async def test_rejects_invalid_event(client, stream):
    resp = await client.post("/events", json={"userId": "u1", "eventType": "NAP", "timestamp": T0_MS})
    assert resp.status_code == 400
    body = resp.json()
    assert body["status"] == "error"
    assert body["message"] == "Validation failed"
    assert body["errors"][0]["field"] == "eventType"
    assert await stream.length("events-stream") == 0


async def test_rejects_timestamp_beyond_calendar(client, stream):
    resp = await client.post("/events", json={"userId": "u1", "eventType": "TAB_SWITCH", "timestamp": 1e300})
    assert resp.status_code == 400
    assert [e["field"] for e in resp.json()["errors"]] == ["timestamp"]
    assert await stream.length("events-stream") == 0


@pytest.mark.parametrize("content", [b"not json", b"[1, 2, 3]", b""])
async def test_rejects_non_object_body(client, content):
    resp = await client.post("/events", content=content, headers={"Content-Type": "application/json"})
    assert resp.status_code == 400
    assert resp.json()["message"] == "Validation failed"


async def test_stream_failure_is_500(session_factory, test_settings, metrics):
    broken = AsyncMock()
    broken.append.side_effect = StreamUnavailableError("redis down")
    app = create_app(stream=broken, session_factory=session_factory, settings=test_settings, metrics=metrics)
    async with httpx.AsyncClient(transport=httpx.ASGITransport(app=app), base_url="http://test") as c:
        resp = await c.post("/events", json={"userId": "u1", "eventType": "APP_OPEN", "timestamp": T0_MS})
    assert resp.status_code == 500
    assert resp.json() == {"status": "error", "message": "Internal server error"}


async def test_cors_allow_list(client):
    resp = await client.options(
        "/events",
        headers={"Origin": "http://localhost:5173", "Access-Control-Request-Method": "POST"},
    )
    assert resp.headers["access-control-allow-origin"] == "http://localhost:5173"

    resp = await client.options(
        "/events",
        headers={"Origin": "http://evil.example", "Access-Control-Request-Method": "POST"},
    )
    assert "access-control-allow-origin" not in resp.headers


# ─────────────────────────────────────────────────────────────────────────────
# Health and metrics
# ─────────────────────────────────────────────────────────────────────────────

async def test_health_ok(client):
    resp = await client.get("/health")
    assert resp.status_code == 200
    body = resp.json()
    assert body["status"] == "healthy"
    assert body["stream"] == "connected"
    assert "timestamp" in body and "uptime" in body


async def test_health_degraded(session_factory, test_settings, metrics):
    broken = AsyncMock()
    broken.ping.side_effect = StreamUnavailableError("redis down")
    app = create_app(stream=broken, session_factory=session_factory, settings=test_settings, metrics=metrics)
    async with httpx.AsyncClient(transport=httpx.ASGITransport(app=app), base_url="http://test") as c:
        resp = await c.get("/health")
    assert resp.status_code == 503
    body = resp.json()
    assert body["status"] == "degraded"
    assert body["stream"] == "disconnected"
    assert "redis down" in body["error"]


async def test_metrics_snapshot(client):
    await client.post("/events", json={"userId": "u1", "eventType": "APP_OPEN", "timestamp": T0_MS})
    resp = await client.get("/metrics")
    assert resp.status_code == 200
    snap = resp.json()
    assert snap["counters"]["events_ingested_total"] == 1
    assert "event_processing_ms" in snap["histograms"]


# ─────────────────────────────────────────────────────────────────────────────
# Dashboard read API
# ─────────────────────────────────────────────────────────────────────────────

async def test_user_metrics_requires_user(client):
    resp = await client.get("/api/metrics")
    assert resp.status_code == 400
    assert resp.json() == {"error": "userId required"}


async def test_user_metrics_empty_user(client):
    resp = await client.get("/api/metrics", params={"userId": "nobody"})
    assert resp.status_code == 200
    body = resp.json()
    assert body["today"]["focus_time"] == 0
    assert body["today"]["event_count"] == 0
    assert body["history"] == []
    assert body["totalEvents"] == 0
    assert body["breakdown"] == []


async def test_user_metrics(client, session_factory):
    today = utc_today()
    async with session_factory() as db:
        repo = ActivityRepository(db)
        await repo.add_to_daily_aggregate("u1", today, "focus_time", 50)
        await repo.add_to_daily_aggregate("u1", today - dt.timedelta(days=1), "tab_switches", 1)
        await repo.insert_raw_event(make_event(EventType.FOCUS_SESSION, duration=50, event_id="a"))
        await repo.insert_raw_event(make_event(EventType.TAB_SWITCH, event_id="b"))
        await db.commit()

    resp = await client.get("/api/metrics", params={"userId": "u1", "days": 7})
    body = resp.json()
    assert body["today"]["focus_time"] == 50
    assert body["today"]["date"] == today.isoformat()
    assert [h["date"] for h in body["history"]] == [
        (today - dt.timedelta(days=1)).isoformat(),
        today.isoformat(),
    ]
    assert body["totalEvents"] == 2
    assert {b["event_type"] for b in body["breakdown"]} == {"FOCUS_SESSION", "TAB_SWITCH"}


async def test_insights_listing(client, session_factory):
    async with session_factory() as db:
        await ActivityRepository(db).upsert_insight(
            user_id="u1",
            day=T0_DAY,
            insight_type="LOW_PRODUCTIVITY_ALERT",
            text="- take a break",
            input_data={"focusTime": 40},
            model="m",
            tokens_used=50,
            processing_time=300,
        )
        await db.commit()

    resp = await client.get("/api/insights/u1")
    insights = resp.json()["insights"]
    assert len(insights) == 1
    assert insights[0]["insight"] == "- take a break"
    assert insights[0]["date"] == "2024-01-15"
    assert insights[0]["insight_type"] == "LOW_PRODUCTIVITY_ALERT"
    assert insights[0]["tokens_used"] == 50


async def test_recent_events(client, session_factory):
    async with session_factory() as db:
        await ActivityRepository(db).insert_raw_event(make_event(EventType.APP_OPEN, event_id="x1"))
        await db.commit()
    resp = await client.get("/api/events/u1/recent")
    events = resp.json()["events"]
    assert [e["event_id"] for e in events] == ["x1"]
    assert events[0]["event_type"] == "APP_OPEN"


async def test_stream_info(client, stream):
    await stream.append("events-stream", {"payload": "{}"})
    await stream.append("events-stream", {"payload": "{}"})
    await stream.append("ai-queue", {"payload": "{}"})
    resp = await client.get("/api/stream/info")
    assert resp.json() == {"eventsStream": 2, "aiQueue": 1}


async def test_history_window_is_not_capped(client, session_factory):
    async with session_factory() as db:
        await ActivityRepository(db).add_to_daily_aggregate("u1", T0_DAY, "focus_time", 5)
        await db.commit()
    resp = await client.get("/api/metrics", params={"userId": "u1", "days": 3650})
    assert resp.status_code == 200
    assert [h["date"] for h in resp.json()["history"]] == ["2024-01-15"]


async def test_database_failure_is_json_500(app, client):
    broken = AsyncMock()
    broken.recent_insights.side_effect = OperationalError("SELECT", {}, ConnectionRefusedError("down"))
    app.dependency_overrides[get_repository] = lambda: broken
    resp = await client.get("/api/insights/u1")
    assert resp.status_code == 500
    assert resp.json() == {"error": "Internal error"}
