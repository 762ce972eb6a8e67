"""Database module for focuslens.

Exports:
- Base: SQLAlchemy declarative base
- ActivityRepository: queries used by the pipeline and the read API
- session helpers: lazy engine, session factory, db_session
"""

from focuslens.db.models import Base
from focuslens.db.repository import ActivityRepository
from focuslens.db.session import db_session, get_engine, get_session_factory

__all__ = ["ActivityRepository", "Base", "db_session", "get_engine", "get_session_factory"]
