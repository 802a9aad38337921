"""Conditional caching stage of the governance pipeline.

Safe methods: the handler runs, the validator is computed from the body, and
the response is either the full representation with ETag/Last-Modified/
Cache-Control/Expires/Vary or a bodyless 304. With ``trust_validator_store``
a matching If-None-Match is answered from the remembered validator without
running the handler.

Unsafe methods: If-Match/If-Unmodified-Since are checked against the last
validator served for the resource (412 on mismatch); successful writes
forget the validators of the resource, its ancestors and descendants.
"""

from __future__ import annotations

import logging

from fastapi import Request, Response

from app.core.errors import PreconditionFailedError
from app.core.pipeline import CallNext
from app.services.cache_validator import (
    SAFE_METHODS,
    CacheDecision,
    CacheValidationToken,
    CacheValidator,
    ConditionalHeaders,
    build_resource_key,
)

logger = logging.getLogger(__name__)


def _vary(version_header: str) -> str:
    return f"Accept, Accept-Encoding, {version_header}"


def _not_modified(
    validator: CacheValidator,
    token: CacheValidationToken,
    path: str,
    version_header: str,
) -> Response:
    headers = validator.headers_for(token, path)
    headers["Vary"] = _vary(version_header)
    logger.info("cache.not_modified", extra={"path": path, "etag": token.etag})
    return Response(status_code=304, headers=headers)


async def cache_stage(request: Request, call_next: CallNext) -> Response:
    governance = request.app.state.governance
    cfg = governance.settings.cache
    if not cfg.enabled:
        return await call_next(request)

    validator: CacheValidator = governance.cache_validator
    version_header = governance.settings.versioning.header_name
    method = request.method.upper()
    path = request.url.path
    version = str(getattr(request.state, "api_version", ""))
    conditions = ConditionalHeaders.from_headers(request.headers)

    if method not in SAFE_METHODS:
        return await _guard_write(request, call_next, validator, conditions, version)

    profile = validator.profile_for(path)
    if profile.no_store:
        response = await call_next(request)
        response.headers["Cache-Control"] = profile.cache_control()
        return response

    resource_key = build_resource_key(version, path, request.url.query)

    if cfg.trust_validator_store and conditions.is_conditional:
        stored = validator.stored_token(resource_key)
        if validator.evaluate(stored, conditions, method) is CacheDecision.NOT_MODIFIED:
            return _not_modified(validator, stored, path, version_header)

    response = await call_next(request)
    if response.status_code != 200:
        return response

    body = b"".join([chunk async for chunk in response.body_iterator])
    token = validator.issue_token(resource_key, path, body)

    if validator.evaluate(token, conditions, method) is CacheDecision.NOT_MODIFIED:
        return _not_modified(validator, token, path, version_header)

    full = Response(content=body, status_code=response.status_code)
    # Same body, so the handler's headers (content-length included) still apply
    full.raw_headers = list(response.raw_headers)
    for name, value in validator.headers_for(token, path).items():
        full.headers[name] = value
    full.headers["Vary"] = _vary(version_header)
    return full


async def _guard_write(
    request: Request,
    call_next: CallNext,
    validator: CacheValidator,
    conditions: ConditionalHeaders,
    version: str,
) -> Response:
    path = request.url.path
    stored = validator.stored_token(build_resource_key(version, path))
    if validator.evaluate(stored, conditions, request.method) is CacheDecision.PRECONDITION_FAILED:
        raise PreconditionFailedError(
            code="precondition_failed",
            message="The resource has changed since it was last retrieved",
            details={"etag": stored.etag},
        )

    response = await call_next(request)
    if 200 <= response.status_code < 300:
        validator.invalidate(path)
    return response
