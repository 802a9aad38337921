"""Database engine and unit-of-work wiring.

The engine and session factory are created on startup and disposed on
shutdown (see app.core.app_factory). Each request gets its own unit of work
through the ``get_repository_manager`` dependency.
"""

from __future__ import annotations

import logging
from typing import Iterator

from fastapi import Request
from sqlalchemy import Engine, create_engine
from sqlalchemy.orm import Session, sessionmaker

from app.core.config import DatabaseSettings, settings
from app.models.entities import Base
from app.repositories.manager import RepositoryManager

logger = logging.getLogger(__name__)


def build_engine(db_settings: DatabaseSettings | None = None) -> Engine:
    """Create the SQLAlchemy engine from settings."""

    cfg = db_settings or settings.db
    engine = create_engine(cfg.url, echo=cfg.echo, future=True)
    logger.info("db.engine_created", extra={"dialect": engine.dialect.name})
    return engine


def build_session_factory(engine: Engine) -> sessionmaker[Session]:
    """Session factory for units of work.

    autoflush is off so staged changes never reach the database before an
    explicit save; expire_on_commit is off so committed entities stay readable
    after the session is closed.
    """

    return sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)


def init_schema(engine: Engine) -> None:
    """Create missing tables."""

    Base.metadata.create_all(engine)


def get_repository_manager(request: Request) -> Iterator[RepositoryManager]:
    """FastAPI dependency providing one unit of work per request.

    The unit of work is closed when the response has been produced; anything
    not saved explicitly is discarded.
    """

    db_settings = request.app.state.settings.db
    manager = RepositoryManager(
        request.app.state.session_factory,
        commit_timeout_seconds=db_settings.commit_timeout_seconds,
        query_timeout_seconds=db_settings.query_timeout_seconds,
    )
    try:
        yield manager
    finally:
        manager.close()
