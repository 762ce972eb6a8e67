"""focuslens command line.

Usage:
    focuslens serve                      # HTTP API (ingestion, health, dashboard)
    focuslens aggregate                  # Event stream consumer
    focuslens insights                   # Task stream consumer
    focuslens aggregate --once           # Process one batch and exit
    focuslens init-db                    # Create tables from metadata (development)
    focuslens stream-info                # Depth and head record of both topics
    focuslens enqueue-summary --user u1 --date 2024-01-15
    focuslens enqueue-sample-alert       # Queue a demo LOW_PRODUCTIVITY_ALERT
"""

from __future__ import annotations

import argparse
import asyncio
import datetime as dt
import json
import signal
import sys
from typing import Any, Awaitable, Callable

import structlog
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker

from focuslens.config import Settings, settings
from focuslens.db.session import check_connection, create_engine, create_session_factory, init_db
from focuslens.errors import FatalStartupError, TransientInfraError
from focuslens.infra.rate_limiter import FixedWindowRateLimiter
from focuslens.llm.client import CompletionClient
from focuslens.observability.logging import configure_logging
from focuslens.observability.metrics import get_metrics
from focuslens.pipeline.aggregator import AggregationEngine
from focuslens.pipeline.consumer import StreamConsumer
from focuslens.pipeline.cursors import DatabaseCursorStore
from focuslens.pipeline.insights import InsightWorker
from focuslens.schemas import AlertTask, DailyStats, TaskType, utc_today
from focuslens.streams import EventStream, codec, create_stream

logger = structlog.get_logger()

SAMPLE_ALERT_STATS = DailyStats(
    focus_time=25,
    idle_time=120,
    tab_switches=47,
    app_opens=15,
    whatsapp_messages=32,
    study_sessions=1,
    event_count=95,
)


# ═══════════════════════════════════════════════════════════════════════════════
# STARTUP CHECKS
# ═══════════════════════════════════════════════════════════════════════════════

async def check_dependencies(stream: EventStream, engine: AsyncEngine | None = None) -> None:
    """Fail fast when the database or the stream backend is unreachable."""
    if engine is not None:
        try:
            await check_connection(engine)
        except (SQLAlchemyError, OSError) as e:
            raise FatalStartupError(f"Database unreachable: {e}") from e

    try:
        reachable = await stream.ping()
    except TransientInfraError as e:
        raise FatalStartupError(f"Stream backend unreachable: {e}") from e
    if not reachable:
        raise FatalStartupError("Stream backend did not answer ping")
    logger.info("dependencies_ok", stream_backend=settings.stream_backend)


# ═══════════════════════════════════════════════════════════════════════════════
# COMMANDS
# ═══════════════════════════════════════════════════════════════════════════════

def cmd_serve(args: argparse.Namespace) -> int:
    import uvicorn

    from focuslens.app import create_app

    async def _probe() -> None:
        stream = create_stream(settings)
        engine = create_engine()
        try:
            await check_dependencies(stream, engine)
        finally:
            await stream.close()
            await engine.dispose()

    asyncio.run(_probe())

    port = args.port or settings.port
    logger.info("starting_focuslens", mode="http", host=settings.host, port=port)
    uvicorn.run(create_app(settings=settings), host=settings.host, port=port, log_config=None)
    return 0


ConsumerFactory = Callable[
    [EventStream, async_sessionmaker[AsyncSession], Settings], StreamConsumer
]


def _build_aggregator(
    stream: EventStream,
    session_factory: async_sessionmaker[AsyncSession],
    settings: Settings,
) -> StreamConsumer:
    return AggregationEngine(
        stream,
        session_factory,
        settings=settings,
        cursors=DatabaseCursorStore(session_factory),
    )


def _build_insight_worker(
    stream: EventStream,
    session_factory: async_sessionmaker[AsyncSession],
    settings: Settings,
) -> StreamConsumer:
    limiter = FixedWindowRateLimiter(
        max_requests=settings.rate_limit_max_requests,
        window_seconds=settings.rate_limit_window,
        on_wait=get_metrics().rate_limit_waited,
    )
    return InsightWorker(
        stream,
        session_factory,
        CompletionClient(limiter, settings=settings),
        settings=settings,
        cursors=DatabaseCursorStore(session_factory),
    )


async def run_consumer(build: ConsumerFactory, once: bool = False) -> int:
    """Run one consumer until SIGINT/SIGTERM, then release every handle."""
    stream = create_stream(settings)
    engine = create_engine()
    session_factory = create_session_factory(engine)
    consumer: StreamConsumer | None = None
    try:
        await check_dependencies(stream, engine)
        consumer = build(stream, session_factory, settings)

        if once:
            consumed = await consumer.poll_once()
            logger.info("consumer_run_once", consumer=consumer.name, consumed=consumed)
            return 0

        stop = asyncio.Event()
        loop = asyncio.get_running_loop()

        def _request_stop(sig: signal.Signals) -> None:
            logger.info("shutdown_signal_received", signal=sig.name)
            stop.set()

        for sig in (signal.SIGINT, signal.SIGTERM):
            loop.add_signal_handler(sig, _request_stop, sig)

        await consumer.run(stop)
        return 0
    finally:
        if isinstance(consumer, InsightWorker):
            await consumer.completion.close()
        await stream.close()
        await engine.dispose()


async def cmd_init_db(args: argparse.Namespace) -> int:
    engine = create_engine()
    try:
        await init_db(engine)
    finally:
        await engine.dispose()
    logger.info("database_initialized")
    return 0


async def _topic_info(stream: EventStream, topic: str, head: int) -> dict[str, Any]:
    records = await stream.read_range(topic, None, head)
    return {
        "topic": topic,
        "length": await stream.length(topic),
        "lastId": await stream.last_id(topic),
        "head": [{"id": r.id, "fields": r.fields} for r in records],
    }


async def cmd_stream_info(args: argparse.Namespace) -> int:
    stream = create_stream(settings)
    try:
        info = {
            "eventsStream": await _topic_info(stream, settings.events_topic, args.head),
            "aiQueue": await _topic_info(stream, settings.tasks_topic, args.head),
        }
    finally:
        await stream.close()
    print(json.dumps(info, indent=2))
    return 0


async def _enqueue_task(task: AlertTask) -> str:
    stream = create_stream(settings)
    try:
        task_id = await stream.append(settings.tasks_topic, codec.encode(task))
    finally:
        await stream.close()
    logger.info("task_enqueued", task_type=task.type, user_id=task.user_id, task_id=task_id)
    print(task_id)
    return task_id


async def cmd_enqueue_summary(args: argparse.Namespace) -> int:
    day = dt.date.fromisoformat(args.date) if args.date else utc_today()
    await _enqueue_task(
        AlertTask(type=TaskType.DAILY_SUMMARY.value, user_id=args.user, date=day)
    )
    return 0


async def cmd_enqueue_sample_alert(args: argparse.Namespace) -> int:
    await _enqueue_task(
        AlertTask(
            type=TaskType.LOW_PRODUCTIVITY_ALERT.value,
            user_id=args.user,
            date=utc_today(),
            snapshot=SAMPLE_ALERT_STATS,
            rule="sample",
        )
    )
    return 0


# ═══════════════════════════════════════════════════════════════════════════════
# MAIN ENTRY POINT
# ═══════════════════════════════════════════════════════════════════════════════

def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="focuslens",
        description="Activity event pipeline: ingestion, aggregation, insights",
    )
    sub = parser.add_subparsers(dest="command", required=True)

    serve = sub.add_parser("serve", help="Run the HTTP API")
    serve.add_argument("--port", type=int, default=None, help="Override FOCUSLENS_PORT")

    aggregate = sub.add_parser("aggregate", help="Run the event stream consumer")
    aggregate.add_argument("--once", action="store_true", help="Process one batch and exit")

    insights = sub.add_parser("insights", help="Run the insight worker")
    insights.add_argument("--once", action="store_true", help="Process one batch and exit")

    sub.add_parser("init-db", help="Create tables from metadata")

    info = sub.add_parser("stream-info", help="Show depth and head records of both topics")
    info.add_argument("--head", type=int, default=3, help="Records to show per topic (default: 3)")

    summary = sub.add_parser("enqueue-summary", help="Queue a DAILY_SUMMARY task")
    summary.add_argument("--user", required=True, help="User ID")
    summary.add_argument("--date", default=None, help="YYYY-MM-DD, UTC (default: today)")

    sample = sub.add_parser("enqueue-sample-alert", help="Queue a demo LOW_PRODUCTIVITY_ALERT")
    sample.add_argument("--user", default="demo-user", help="User ID (default: demo-user)")

    return parser


_ASYNC_COMMANDS: dict[str, Callable[[argparse.Namespace], Awaitable[int]]] = {
    "aggregate": lambda args: run_consumer(_build_aggregator, once=args.once),
    "insights": lambda args: run_consumer(_build_insight_worker, once=args.once),
    "init-db": cmd_init_db,
    "stream-info": cmd_stream_info,
    "enqueue-summary": cmd_enqueue_summary,
    "enqueue-sample-alert": cmd_enqueue_sample_alert,
}


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    configure_logging(settings)

    try:
        if args.command == "serve":
            return cmd_serve(args)
        return asyncio.run(_ASYNC_COMMANDS[args.command](args))
    except FatalStartupError as e:
        logger.error("fatal_startup_error", command=args.command, error=str(e))
        return 1
    except TransientInfraError as e:
        logger.error("command_failed", command=args.command, error=str(e))
        return 1
    except KeyboardInterrupt:
        logger.info("shutting_down", reason="keyboard_interrupt")
        return 0


if __name__ == "__main__":
    sys.exit(main())
