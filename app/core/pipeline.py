"""Request-governance pipeline.

An explicit, ordered chain of stages wrapped around the route handler:

    version -> rate limit -> conditional cache -> handler

Every stage has the middleware signature ``async (request, call_next) ->
Response`` and may return early instead of calling ``call_next``. Domain
errors raised by a stage are rendered here, because stages run outside
FastAPI's exception handlers.

Usage:
    app.middleware("http")(GovernancePipeline([version_stage, ...]))
"""

from __future__ import annotations

import logging
from typing import Awaitable, Callable, Sequence

from fastapi import Request, Response

from app.core.errors import AppError
from app.core.exception_handlers import build_error_response

logger = logging.getLogger(__name__)

CallNext = Callable[[Request], Awaitable[Response]]
Stage = Callable[[Request, CallNext], Awaitable[Response]]


def _bind(stage: Stage, call_next: CallNext) -> CallNext:
    async def run(request: Request) -> Response:
        return await stage(request, call_next)

    return run


class GovernancePipeline:
    """Compose stages into one HTTP middleware."""

    def __init__(self, stages: Sequence[Stage], *, exempt_paths: Sequence[str] = ()) -> None:
        self._stages = tuple(stages)
        self._exempt_paths = tuple(p.rstrip("/") or "/" for p in exempt_paths)

    @property
    def stages(self) -> tuple[Stage, ...]:
        return self._stages

    def is_exempt(self, path: str) -> bool:
        normalized = path.rstrip("/") or "/"
        return any(
            normalized == exempt or normalized.startswith(exempt + "/")
            for exempt in self._exempt_paths
        )

    async def __call__(self, request: Request, call_next: CallNext) -> Response:
        if self.is_exempt(request.url.path):
            return await call_next(request)

        handler = call_next
        for stage in reversed(self._stages):
            handler = _bind(stage, handler)

        try:
            return await handler(request)
        except AppError as exc:
            return build_error_response(exc)


async def version_stage(request: Request, call_next: CallNext) -> Response:
    """Reject unknown api-version values before any quota is consumed."""

    governance = request.app.state.governance
    cfg = governance.settings.versioning
    router = governance.version_router

    request.state.api_version = router.negotiate(request.headers.get(cfg.header_name))
    response = await call_next(request)

    if cfg.report_api_versions:
        # Handler-level version errors already name the versions of that handler
        supported = ", ".join(str(v) for v in router.supported_versions())
        response.headers.setdefault("api-supported-versions", supported)
    return response
