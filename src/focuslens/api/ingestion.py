"""Producer-facing routes: event submission and health."""

from __future__ import annotations

import datetime as dt

import structlog
from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse

from focuslens.errors import EventValidationError, IngestionError, TransientInfraError
from focuslens.observability.metrics import MetricsCollector
from focuslens.pipeline.gateway import IngestionGateway
from focuslens.streams.base import EventStream

logger = structlog.get_logger()

router = APIRouter()


def _internal_error() -> JSONResponse:
    return JSONResponse(
        status_code=500,
        content={"status": "error", "message": "Internal server error"},
    )


@router.post("/events", status_code=202)
async def ingest_event(request: Request) -> JSONResponse:
    """Accept one activity event and append it to the event stream."""
    gateway: IngestionGateway = request.app.state.gateway
    try:
        payload = await request.json()
    except ValueError:
        payload = None

    try:
        result = await gateway.submit(payload, source=request.headers.get("user-agent"))
    except EventValidationError as e:
        return JSONResponse(
            status_code=400,
            content={"status": "error", "message": "Validation failed", "errors": e.errors},
        )
    except IngestionError:
        return _internal_error()
    except Exception as e:
        logger.error("ingest_unexpected_error", error=str(e), exc_info=True)
        return _internal_error()

    return JSONResponse(
        status_code=202,
        content={"status": "accepted", "eventId": result.event_id, "streamId": result.stream_id},
    )


@router.get("/health")
async def health(request: Request) -> JSONResponse:
    """Stream connectivity check."""
    stream: EventStream = request.app.state.stream
    metrics: MetricsCollector = request.app.state.metrics
    try:
        connected = await stream.ping()
        error = None if connected else "ping returned no reply"
    except TransientInfraError as e:
        connected, error = False, str(e)

    if not connected:
        logger.warning("health_check_failed", error=error)
        return JSONResponse(
            status_code=503,
            content={"status": "degraded", "stream": "disconnected", "error": error},
        )
    return JSONResponse(
        status_code=200,
        content={
            "status": "healthy",
            "timestamp": dt.datetime.now(dt.timezone.utc).isoformat(),
            "uptime": metrics.uptime_seconds,
            "stream": "connected",
        },
    )
