"""
Database engine and session helpers.

The engine is created lazily from DATABASE_URL so that importing the
package never requires a database.
"""

import os
import logging
from typing import Callable, Generator, Optional

from fastapi import Request
from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker

from sellerdesk.platform.errors import ConfigurationError

logger = logging.getLogger(__name__)

SessionFactory = Callable[[], Session]

_engine: Optional[Engine] = None
_session_factory: Optional[sessionmaker] = None


def _database_url() -> str:
    database_url = os.getenv("DATABASE_URL")
    if not database_url:
        raise ConfigurationError(
            "Database is not configured. DATABASE_URL must be set.",
            missing=["DATABASE_URL"],
        )
    # Heroku/Render style URLs
    if database_url.startswith("postgres://"):
        database_url = database_url.replace("postgres://", "postgresql://", 1)
    return database_url


def get_engine() -> Engine:
    """Return the process-wide engine, creating it on first use."""
    global _engine
    if _engine is None:
        _engine = create_engine(_database_url(), pool_pre_ping=True)
        logger.info("Database engine created")
    return _engine


def get_session_factory() -> sessionmaker:
    global _session_factory
    if _session_factory is None:
        _session_factory = sessionmaker(autocommit=False, autoflush=False, bind=get_engine())
    return _session_factory


def get_db_session(request: Request) -> Generator[Session, None, None]:
    """
    FastAPI dependency yielding a request-scoped session.

    Uses the factory installed on the application (see create_app) so tests
    can point the whole app at a throwaway database.
    """
    factory: SessionFactory = getattr(request.app.state, "session_factory", None) or get_session_factory()
    session = factory()
    try:
        yield session
    finally:
        session.close()
