"""Application-level exception types.

This module defines domain errors used across repositories, services and the
request-governance pipeline, enabling consistent error handling, logging, and
API responses.

Taxonomy:
- ValidationAppError: bad input (client fault, reported, never retried)
- NotFoundAppError: requested entity does not exist
- StorageAppError: backing store failure (5xx)
    - StorageTimeoutError: deadline exceeded, retryable by the caller
    - StorageIntegrityError: constraint/corruption failure, not retryable
- QuotaExceededError: rate limit hit, reported with a retry-after hint
- UnsupportedVersionError: unknown or malformed api-version (client fault)
- PreconditionFailedError: conditional write against a stale validator
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, NotRequired, TypedDict


class ErrorDetails(TypedDict, total=False):
    """Structured error context for observability and clients.

    Fields are optional so each error only carries what is relevant.
    """

    hint: str
    field: str
    max_length: int
    entity: str
    entity_id: str
    limit: int
    period: str
    retry_after: int
    requested_version: str
    supported_versions: list[str]
    timeout_seconds: float
    retryable: bool
    etag: str
    context: NotRequired[dict[str, Any]]


@dataclass
class AppError(Exception):
    """Base error for application/domain failures.

    Attributes:
        code: Stable, machine-readable error code.
        message: Human-readable error message.
        details: Optional structured details for debugging/observability.
    """

    code: str
    message: str
    details: ErrorDetails | None = None

    def __post_init__(self) -> None:
        # Populate Exception args so str(error) is useful in logs/tracebacks.
        super().__init__(self.message)


class ValidationAppError(AppError):
    """Raised when input/config validation fails."""


class NotFoundAppError(AppError):
    """Raised when a requested entity does not exist."""


class StorageAppError(AppError):
    """Raised when the backing store fails; the unit of work is rolled back."""


class StorageTimeoutError(StorageAppError):
    """Raised when a storage call exceeds its deadline (retryable)."""


class StorageIntegrityError(StorageAppError):
    """Raised on constraint violations detected by the store (not retryable)."""


class QuotaExceededError(AppError):
    """Raised when a client exceeds its rate limit quota."""


class UnsupportedVersionError(AppError):
    """Raised when the requested API version is unknown or malformed."""


class PreconditionFailedError(AppError):
    """Raised when If-Match/If-Unmodified-Since does not hold."""
