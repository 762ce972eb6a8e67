"""InsightWorker dispatch, generation and persistence."""

from __future__ import annotations

import httpx
import pytest

from conftest import T0_DAY, FakeCompletionAPI, completion_reply
from focuslens.db.repository import ActivityRepository
from focuslens.llm.prompts import EMPTY_INSIGHT
from focuslens.pipeline.insights import InsightWorker
from focuslens.schemas import AlertTask, DailyStats, TaskType, utc_today
from focuslens.streams import codec

ALERT = TaskType.LOW_PRODUCTIVITY_ALERT.value
SUMMARY = TaskType.DAILY_SUMMARY.value


@pytest.fixture
def make_worker(stream, session_factory, test_settings, metrics, make_completion_client):
    def _make(api: FakeCompletionAPI) -> InsightWorker:
        return InsightWorker(
            stream,
            session_factory,
            make_completion_client(api),
            settings=test_settings,
            metrics=metrics,
        )

    return _make


async def enqueue(stream, task: AlertTask) -> None:
    await stream.append("ai-queue", codec.encode(task))


async def load_insight(session_factory, insight_type, user_id="u1", day=T0_DAY):
    async with session_factory() as db:
        return await ActivityRepository(db).get_insight(user_id, day, insight_type)


def alert(**stats) -> AlertTask:
    return AlertTask(
        type=ALERT,
        user_id="u1",
        date=T0_DAY,
        snapshot=DailyStats(**stats),
        rule="low_focus",
    )


async def test_alert_uses_task_snapshot(make_worker, stream, session_factory):
    api = FakeCompletionAPI(completion_reply("- focus is low", total_tokens=64))
    worker = make_worker(api)
    await enqueue(stream, alert(focus_time=40, event_count=12))

    assert await worker.poll_once() == 1

    row = await load_insight(session_factory, ALERT)
    assert row.insight == "- focus is low"
    assert row.tokens_used == 64
    assert row.model == "llama-3.3-70b-versatile"
    assert row.processing_time >= 0
    assert row.input_data["focusTime"] == 40
    assert row.input_data["eventCount"] == 12
    prompt = api.requests[0]["messages"][0]["content"]
    assert "- Focus Time: 40 minutes" in prompt
    assert "- Total Events: 12" in prompt


async def test_second_generation_overwrites(make_worker, stream, session_factory):
    api = FakeCompletionAPI(completion_reply("first", total_tokens=10), completion_reply("second", total_tokens=20))
    worker = make_worker(api)
    await enqueue(stream, alert(focus_time=40, event_count=12))
    await enqueue(stream, alert(focus_time=35, event_count=14))
    await worker.poll_once()

    row = await load_insight(session_factory, ALERT)
    assert row.insight == "second"
    assert row.tokens_used == 20
    assert row.input_data["focusTime"] == 35


async def test_daily_summary_reads_stored_aggregate(make_worker, stream, session_factory):
    async with session_factory() as db:
        repo = ActivityRepository(db)
        await repo.add_to_daily_aggregate("u1", T0_DAY, "study_sessions", 90)
        await db.commit()

    api = FakeCompletionAPI()
    worker = make_worker(api)
    await enqueue(stream, AlertTask(type=SUMMARY, user_id="u1", date=T0_DAY))
    await worker.poll_once()

    row = await load_insight(session_factory, SUMMARY)
    assert row is not None
    assert row.input_data["studySessions"] == 90
    assert "- Study Sessions: 90" in api.requests[0]["messages"][0]["content"]


async def test_daily_summary_without_aggregate_is_skipped(make_worker, stream, session_factory, metrics):
    api = FakeCompletionAPI()
    worker = make_worker(api)
    await enqueue(stream, AlertTask(type=SUMMARY, user_id="ghost", date=T0_DAY))

    assert await worker.poll_once() == 1
    assert api.requests == []
    assert await load_insight(session_factory, SUMMARY, user_id="ghost") is None
    assert metrics.snapshot_sync()["labeled_counters"]["tasks_skipped_total"] == {"no_aggregate": 1}
    assert worker.cursor is not None


async def test_summary_without_date_uses_today(make_worker, stream, session_factory):
    today = utc_today()
    async with session_factory() as db:
        await ActivityRepository(db).add_to_daily_aggregate("u1", today, "app_opens", 1)
        await db.commit()

    worker = make_worker(FakeCompletionAPI())
    await enqueue(stream, AlertTask(type=SUMMARY, user_id="u1"))
    await worker.poll_once()
    assert await load_insight(session_factory, SUMMARY, day=today) is not None


async def test_unknown_task_type_is_skipped(make_worker, stream, metrics):
    api = FakeCompletionAPI()
    worker = make_worker(api)
    await enqueue(stream, AlertTask(type="WEEKLY_DIGEST", user_id="u1", date=T0_DAY))
    await worker.poll_once()
    assert api.requests == []
    assert metrics.snapshot_sync()["labeled_counters"]["tasks_skipped_total"] == {"unknown_type": 1}


async def test_empty_completion_stores_placeholder(make_worker, stream, session_factory):
    worker = make_worker(FakeCompletionAPI(completion_reply(content="")))
    await enqueue(stream, alert(focus_time=40, event_count=12))
    await worker.poll_once()
    assert (await load_insight(session_factory, ALERT)).insight == EMPTY_INSIGHT


async def test_generation_failure_advances_cursor(make_worker, stream, session_factory, metrics):
    api = FakeCompletionAPI(
        httpx.Response(401, json={"error": "invalid key"}),
        completion_reply("recovered"),
    )
    worker = make_worker(api)
    await enqueue(stream, alert(focus_time=40, event_count=12))
    await enqueue(stream, AlertTask(type=ALERT, user_id="u2", date=T0_DAY, snapshot=DailyStats()))

    assert await worker.poll_once() == 2
    assert await load_insight(session_factory, ALERT) is None
    assert (await load_insight(session_factory, ALERT, user_id="u2")).insight == "recovered"
    assert metrics.snapshot_sync()["labeled_counters"]["records_failed_total"] == {"insight_worker": 1}
    assert worker.cursor == (await stream.last_id("ai-queue"))


async def test_legacy_task_shape(make_worker, stream, session_factory):
    legacy = (
        '{"type":"LOW_PRODUCTIVITY_ALERT","userId":"harjas","date":"2024-01-15",'
        '"focusTime":25,"idleTime":120,"tabSwitches":47,"appOpens":15,'
        '"whatsappMessages":32,"studySessions":1,"eventCount":95}'
    )
    await stream.append("ai-queue", {"payload": legacy})
    worker = make_worker(FakeCompletionAPI())
    await worker.poll_once()
    row = await load_insight(session_factory, ALERT, user_id="harjas")
    assert row.input_data["tabSwitches"] == 47
