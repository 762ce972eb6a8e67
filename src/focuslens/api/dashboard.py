"""Read-only dashboard API.

Response keys mirror the column names (snake_case) except for the
top-level envelope, which the dashboard reads in camelCase.
"""

from __future__ import annotations

from typing import Any, AsyncGenerator

import structlog
from fastapi import APIRouter, Depends, Query, Request
from fastapi.encoders import jsonable_encoder
from fastapi.responses import JSONResponse
from sqlalchemy.exc import SQLAlchemyError

from focuslens.config import Settings
from focuslens.db.models import METRIC_COLUMNS, DailyAggregate
from focuslens.db.repository import ActivityRepository
from focuslens.db.session import db_session
from focuslens.errors import TransientInfraError
from focuslens.schemas import utc_today
from focuslens.streams.base import EventStream

logger = structlog.get_logger()

router = APIRouter(prefix="/api")


async def get_repository(request: Request) -> AsyncGenerator[ActivityRepository, None]:
    async with db_session(request.app.state.session_factory) as db:
        yield ActivityRepository(db)


async def database_error_handler(request: Request, exc: SQLAlchemyError) -> JSONResponse:
    logger.error("dashboard_query_failed", path=request.url.path, error=str(exc))
    return JSONResponse(status_code=500, content={"error": "Internal error"})


def _aggregate_dict(row: DailyAggregate) -> dict[str, Any]:
    return {
        "user_id": row.user_id,
        "date": row.date,
        **{column: getattr(row, column) for column in METRIC_COLUMNS},
        "updated_at": row.updated_at,
    }


@router.get("/metrics")
async def user_metrics(
    user_id: str | None = Query(default=None, alias="userId"),
    days: int = Query(default=30, ge=1),
    repo: ActivityRepository = Depends(get_repository),
) -> JSONResponse:
    if not user_id:
        return JSONResponse(status_code=400, content={"error": "userId required"})

    today = await repo.get_daily_aggregate(user_id, utc_today())
    history = await repo.daily_history(user_id, days)
    total_events = await repo.count_events(user_id)
    breakdown = await repo.event_type_breakdown(user_id)

    return JSONResponse(content=jsonable_encoder({
        "today": _aggregate_dict(today) if today else {c: 0 for c in METRIC_COLUMNS},
        "history": [_aggregate_dict(row) for row in history],
        "totalEvents": total_events,
        "breakdown": [{"event_type": t, "count": n} for t, n in breakdown],
    }))


@router.get("/insights/{user_id}")
async def user_insights(
    user_id: str,
    repo: ActivityRepository = Depends(get_repository),
) -> JSONResponse:
    rows = await repo.recent_insights(user_id, limit=10)
    return JSONResponse(content=jsonable_encoder({
        "insights": [
            {
                "date": row.date,
                "insight_type": row.insight_type,
                "insight": row.insight,
                "tokens_used": row.tokens_used,
                "processing_time": row.processing_time,
                "created_at": row.created_at,
            }
            for row in rows
        ],
    }))


@router.get("/events/{user_id}/recent")
async def recent_events(
    user_id: str,
    repo: ActivityRepository = Depends(get_repository),
) -> JSONResponse:
    rows = await repo.recent_events(user_id, limit=20)
    return JSONResponse(content=jsonable_encoder({
        "events": [
            {
                "event_id": row.event_id,
                "event_type": row.event_type,
                "occurred_at": row.occurred_at,
                "created_at": row.created_at,
            }
            for row in rows
        ],
    }))


@router.get("/stream/info")
async def stream_info(request: Request) -> JSONResponse:
    """Current depth of both topics."""
    stream: EventStream = request.app.state.stream
    settings: Settings = request.app.state.settings
    try:
        events = await stream.length(settings.events_topic)
        tasks = await stream.length(settings.tasks_topic)
    except TransientInfraError as e:
        logger.warning("stream_info_failed", error=str(e))
        return JSONResponse(status_code=503, content={"error": "stream unavailable"})
    return JSONResponse(content={"eventsStream": events, "aiQueue": tasks})
