from __future__ import annotations

import logging

from fastapi import APIRouter, Request
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError

logger = logging.getLogger(__name__)

router = APIRouter(tags=["Health"])


@router.get("/health")
def health_check(request: Request) -> dict:
    """Health check endpoint.

    Verifies the database answers a trivial query. Not subject to
    versioning, rate limiting or conditional caching.

    Returns:
        dict: ``status`` plus the database state, ``"ok"`` or ``"unavailable"``.
    """

    database = "ok"
    try:
        with request.app.state.engine.connect() as connection:
            connection.execute(text("SELECT 1"))
    except SQLAlchemyError as exc:
        logger.warning("health.database_unavailable", extra={"error_type": type(exc).__name__})
        database = "unavailable"

    return {"status": "ok" if database == "ok" else "degraded", "database": database}
