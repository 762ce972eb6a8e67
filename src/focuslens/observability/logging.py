"""structlog setup shared by the HTTP app and the consumer processes."""

from __future__ import annotations

import logging

import structlog

from focuslens.config import Settings, settings as default_settings


def configure_logging(settings: Settings | None = None) -> None:
    """ISO timestamps everywhere; JSON lines in production, console otherwise."""
    settings = settings or default_settings
    level = logging.getLevelName(settings.log_level.upper())
    if not isinstance(level, int):
        level = logging.INFO

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.JSONRenderer()
            if settings.env == "production"
            else structlog.dev.ConsoleRenderer(),
        ],
        wrapper_class=structlog.make_filtering_bound_logger(level),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(),
        cache_logger_on_first_use=False,
    )
