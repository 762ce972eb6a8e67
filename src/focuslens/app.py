"""focuslens HTTP entry point.

Architecture:
- FastAPI serves ingestion, health, metrics and the dashboard read API
- The event stream and the session factory live on ``app.state``
- Consumers run as separate processes (see focuslens.cli)
"""

from __future__ import annotations

from contextlib import asynccontextmanager
from typing import Any, AsyncIterator

import structlog
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from focuslens import __version__
from focuslens.api import dashboard_router, ingestion_router
from focuslens.api.dashboard import database_error_handler
from focuslens.config import Settings, settings as default_settings
from focuslens.db.session import close_db, get_session_factory
from focuslens.observability.metrics import MetricsCollector, get_metrics
from focuslens.pipeline.gateway import IngestionGateway
from focuslens.streams import EventStream, create_stream

logger = structlog.get_logger()


def create_app(
    stream: EventStream | None = None,
    session_factory: async_sessionmaker[AsyncSession] | None = None,
    settings: Settings | None = None,
    metrics: MetricsCollector | None = None,
) -> FastAPI:
    """Build the app. Anything not injected is created from settings and closed on shutdown."""
    settings = settings or default_settings
    metrics = metrics or get_metrics()
    owns_stream = stream is None
    owns_db = session_factory is None
    stream = stream or create_stream(settings)
    session_factory = session_factory or get_session_factory()

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        logger.info("app_starting", env=settings.env, stream_backend=settings.stream_backend)
        yield
        logger.info("app_shutting_down")
        if owns_stream:
            await stream.close()
        if owns_db:
            await close_db()

    app = FastAPI(
        title="focuslens",
        version=__version__,
        description="Activity event ingestion, daily aggregation and insight generation",
        lifespan=lifespan,
    )
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.allowed_origins,
        allow_methods=["GET", "POST", "OPTIONS"],
        allow_headers=["*"],
    )

    app.state.settings = settings
    app.state.stream = stream
    app.state.session_factory = session_factory
    app.state.metrics = metrics
    app.state.gateway = IngestionGateway(stream, settings=settings, metrics=metrics)

    app.include_router(ingestion_router)
    app.include_router(dashboard_router)
    app.add_exception_handler(SQLAlchemyError, database_error_handler)

    @app.get("/metrics")
    async def metrics_endpoint() -> dict[str, Any]:
        """Live pipeline metrics snapshot: counters and latency histograms."""
        return await metrics.snapshot()

    return app
