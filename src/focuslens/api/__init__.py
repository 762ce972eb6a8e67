"""HTTP routers."""

from focuslens.api.dashboard import router as dashboard_router
from focuslens.api.ingestion import router as ingestion_router

__all__ = ["dashboard_router", "ingestion_router"]
