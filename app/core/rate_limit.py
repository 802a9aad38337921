"""Rate limiting stage of the governance pipeline.

This module wires the rate limit processor into the HTTP layer.

Rate limiting strategy:
- Client key: X-ClientId header when present, otherwise the client IP
  (first X-Forwarded-For hop when forwarded headers are trusted).
- Most specific matching rule per client; fixed window by default.
- Denied requests short-circuit with 429, Retry-After and X-RateLimit-*.
"""

from __future__ import annotations

from fastapi import Request, Response
from fastapi.concurrency import run_in_threadpool

from app.core.config import RateLimitSettings
from app.core.exception_handlers import build_error_response
from app.core.pipeline import CallNext
from app.services.rate_limit_processor import ClientRequest


def resolve_client_key(request: Request, cfg: RateLimitSettings) -> str:
    """Build the limiter key for the current request.

    Args:
        request: FastAPI request.
        cfg: Rate limit settings.

    Returns:
        str: Client id or IP, e.g. ``mobile-app`` or ``10.0.0.1``.
            Whitelists and per-client overrides are keyed by the same value.
    """

    client_id = request.headers.get(cfg.client_id_header)
    if client_id and client_id.strip():
        return client_id.strip()

    if cfg.trust_forwarded_headers:
        forwarded = request.headers.get("x-forwarded-for")
        if forwarded:
            first_hop = forwarded.split(",")[0].strip()
            if first_hop:
                return first_hop
        real_ip = request.headers.get("x-real-ip")
        if real_ip and real_ip.strip():
            return real_ip.strip()

    client_host = request.client.host if request.client else "unknown"
    return client_host


async def rate_limit_stage(request: Request, call_next: CallNext) -> Response:
    """Count the request against the client's quota; deny with 429 when exceeded."""

    governance = request.app.state.governance
    cfg = governance.settings.rate_limit
    if not cfg.enabled:
        return await call_next(request)

    client_key = resolve_client_key(request, cfg)
    # Counter entries use blocking locks with a timeout; keep them off the event loop
    decision = await run_in_threadpool(
        governance.rate_limit_processor.process,
        ClientRequest(client_key=client_key, method=request.method, path=request.url.path),
    )
    headers = decision.headers() if cfg.include_headers else {}

    if not decision.allowed:
        return build_error_response(decision.to_error(), headers=headers)

    response = await call_next(request)
    for name, value in headers.items():
        response.headers[name] = value
    return response
