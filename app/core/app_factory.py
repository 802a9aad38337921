"""Application factory for FastAPI app.

Centralizes app construction (metadata, storage, request governance,
middleware, handlers, routers) so tests can build isolated instances from
their own settings.
"""

from __future__ import annotations

from contextlib import asynccontextmanager
from typing import AsyncIterator

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from app.api.routes import (
    companies,
    companies_router,
    employees,
    employees_router,
    health_router,
)
from app.core.config import Settings, settings
from app.core.database import build_engine, build_session_factory, init_schema
from app.core.exception_handlers import setup_exception_handlers
from app.core.governance import GovernanceState
from app.core.http_cache import cache_stage
from app.core.logging import configure_logging
from app.core.middleware import request_id_middleware
from app.core.openapi import apply_openapi_customizations
from app.core.pipeline import GovernancePipeline, version_stage
from app.core.rate_limit import rate_limit_stage
from app.core.versioning import VersionRouter


def build_version_router() -> VersionRouter:
    version_router = VersionRouter()
    companies.register_versions(version_router)
    employees.register_versions(version_router)
    return version_router


def create_app(cfg: Settings | None = None) -> FastAPI:
    """Create and configure the FastAPI application instance.

    Args:
        cfg: Settings to build from; defaults to the process-wide settings.

    Returns:
        Configured FastAPI app with middleware, handlers, routers and docs.
    """
    cfg = cfg or settings
    # Logging first so subsequent init logs are formatted as desired
    configure_logging(cfg.log)

    engine = build_engine(cfg.db)
    session_factory = build_session_factory(engine)
    governance = GovernanceState.from_settings(cfg, build_version_router())

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        if cfg.db.create_schema:
            init_schema(engine)
        await governance.start()
        try:
            yield
        finally:
            await governance.stop()
            engine.dispose()

    app = FastAPI(
        title=cfg.app.name,
        description=(
            "Companies and their employees over REST. Responses are versioned "
            "through the api-version header, rate limited per client and "
            "served with ETag/Last-Modified validators for conditional requests."
        ),
        version="0.1.0",
        debug=cfg.app.debug,
        license_info={
            "name": "MIT License",
            "url": "https://opensource.org/licenses/MIT",
        },
        lifespan=lifespan,
    )
    app.state.settings = cfg
    app.state.engine = engine
    app.state.session_factory = session_factory
    app.state.governance = governance

    # Middleware: the last one added runs first, so request ids wrap governance
    app.middleware("http")(
        GovernancePipeline(
            [version_stage, rate_limit_stage, cache_stage],
            exempt_paths=cfg.app.exempt_paths,
        )
    )
    app.middleware("http")(request_id_middleware)
    if cfg.cors.enabled:
        # Outermost, so preflights and rejected requests still carry CORS headers
        app.add_middleware(
            CORSMiddleware,
            allow_origins=cfg.cors.allow_origins,
            allow_methods=cfg.cors.allow_methods,
            allow_headers=cfg.cors.allow_headers,
            expose_headers=cfg.cors.expose_headers,
        )

    # Exception handlers
    setup_exception_handlers(app)

    # Routers
    app.include_router(companies_router)
    app.include_router(employees_router)
    app.include_router(health_router)

    # OpenAPI customizations (version header, tags)
    apply_openapi_customizations(app)

    return app
