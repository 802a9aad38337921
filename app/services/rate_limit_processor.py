"""Per-request rate limit evaluation.

Each request moves from *unchecked* to *allowed* or *denied*:

1. Whitelisted clients/endpoints are allowed without being counted.
2. The most specific rule for ``(client_key, method, path)`` is resolved from
   one policy snapshot; no rule means allowed.
3. The counter for ``(client_key, rule)`` is incremented under that key's
   lock. Denied requests are counted too.
4. ``count > limit`` denies with a retry-after hint.

If the key lock stays contended for every attempt the decision degrades to
allow (fail-open) or deny (fail-closed) as configured, and the decision is
flagged ``degraded``.
"""

from __future__ import annotations

import logging
import math
import time
from dataclasses import dataclass
from typing import Callable, Literal

from app.adapters.rate_limit.base import AbstractRateLimitCounterStore, CounterLockTimeout
from app.adapters.rate_limit.policy import RateLimitPolicyStore, RateLimitRule
from app.core.errors import QuotaExceededError
from app.core.logging import hash_identifier

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ClientRequest:
    client_key: str
    method: str
    path: str


@dataclass(frozen=True)
class RateLimitDecision:
    """Outcome of evaluating one request.

    Attributes:
        allowed: Whether the request may proceed.
        rule: Rule that governed the request (None when no rule applied).
        remaining: Requests left in the current window.
        reset_at: UNIX epoch seconds when the window resets.
        retry_after_seconds: Suggested wait when denied.
        degraded: True when the decision came from the contention policy.
        whitelisted: True when the request bypassed counting.
    """

    allowed: bool
    rule: RateLimitRule | None = None
    remaining: int | None = None
    reset_at: int | None = None
    retry_after_seconds: int | None = None
    degraded: bool = False
    whitelisted: bool = False

    @property
    def limit(self) -> int | None:
        return self.rule.limit if self.rule else None

    def headers(self) -> dict[str, str]:
        """X-RateLimit-* (and Retry-After when denied) for the response."""

        if self.rule is None or self.degraded:
            return {}
        headers = {
            "X-RateLimit-Limit": str(self.rule.limit),
            "X-RateLimit-Remaining": str(self.remaining or 0),
            "X-RateLimit-Reset": str(self.reset_at),
        }
        if not self.allowed and self.retry_after_seconds is not None:
            headers["Retry-After"] = str(self.retry_after_seconds)
        return headers

    def to_error(self) -> QuotaExceededError:
        rule = self.rule
        limit = rule.limit if rule else 0
        period = rule.period if rule else ""
        return QuotaExceededError(
            code="quota_exceeded",
            message=f"API calls quota exceeded! maximum admitted {limit} per {period}.",
            details={
                "limit": limit,
                "period": period,
                "retry_after": self.retry_after_seconds or 0,
            },
        )


class RateLimitProcessor:
    """Evaluate requests against the policy store and counter store."""

    def __init__(
        self,
        policy_store: RateLimitPolicyStore,
        counter_store: AbstractRateLimitCounterStore,
        *,
        lock_timeout_seconds: float = 0.05,
        lock_retry_attempts: int = 3,
        on_lock_contention: Literal["allow", "deny"] = "allow",
        clock: Callable[[], float] = time.time,
    ) -> None:
        if lock_retry_attempts < 1:
            raise ValueError("lock_retry_attempts must be >= 1")
        if on_lock_contention not in ("allow", "deny"):
            raise ValueError("on_lock_contention must be 'allow' or 'deny'")

        self._policy_store = policy_store
        self._counter_store = counter_store
        self._lock_timeout = lock_timeout_seconds
        self._lock_retry_attempts = lock_retry_attempts
        self._on_lock_contention = on_lock_contention
        self._clock = clock

    @property
    def counter_store(self) -> AbstractRateLimitCounterStore:
        return self._counter_store

    @property
    def policy_store(self) -> RateLimitPolicyStore:
        return self._policy_store

    def process(self, request: ClientRequest) -> RateLimitDecision:
        policy = self._policy_store.snapshot()

        if policy.is_whitelisted(request.client_key, request.method, request.path):
            return RateLimitDecision(allowed=True, whitelisted=True)

        rule = policy.resolve_rule(request.client_key, request.method, request.path)
        if rule is None:
            return RateLimitDecision(allowed=True)

        counter = None
        for attempt in range(1, self._lock_retry_attempts + 1):
            try:
                counter = self._counter_store.increment(
                    request.client_key,
                    rule,
                    mode=policy.window_mode,
                    lock_timeout=self._lock_timeout,
                )
                break
            except CounterLockTimeout:
                logger.debug(
                    "rate_limit.lock_retry",
                    extra={"rule": rule.key, "attempt": attempt},
                )

        if counter is None:
            return self._degraded(request, rule)

        reset_at = int(math.ceil(counter.reset_at))
        remaining = max(0, rule.limit - counter.count)

        if counter.count <= rule.limit:
            logger.debug(
                "rate_limit.allowed",
                extra={
                    "key_hash": hash_identifier(request.client_key),
                    "rule": rule.key,
                    "count": counter.count,
                    "remaining": remaining,
                },
            )
            return RateLimitDecision(
                allowed=True,
                rule=rule,
                remaining=remaining,
                reset_at=reset_at,
            )

        retry_after = max(1, int(math.ceil(counter.reset_at - self._clock())))
        logger.warning(
            "rate_limit.exceeded",
            extra={
                "key_hash": hash_identifier(request.client_key),
                "rule": rule.key,
                "limit": rule.limit,
                "count": counter.count,
                "retry_after_s": retry_after,
            },
        )
        return RateLimitDecision(
            allowed=False,
            rule=rule,
            remaining=0,
            reset_at=reset_at,
            retry_after_seconds=retry_after,
        )

    def enforce(self, request: ClientRequest) -> RateLimitDecision:
        """Like process(), but raises QuotaExceededError on denial."""

        decision = self.process(request)
        if not decision.allowed:
            raise decision.to_error()
        return decision

    def _degraded(self, request: ClientRequest, rule: RateLimitRule) -> RateLimitDecision:
        allowed = self._on_lock_contention == "allow"
        logger.warning(
            "rate_limit.degraded",
            extra={
                "key_hash": hash_identifier(request.client_key),
                "rule": rule.key,
                "attempts": self._lock_retry_attempts,
                "decision": "allow" if allowed else "deny",
            },
        )
        if allowed:
            return RateLimitDecision(allowed=True, rule=rule, degraded=True)
        return RateLimitDecision(
            allowed=False,
            rule=rule,
            remaining=0,
            retry_after_seconds=max(1, int(math.ceil(self._lock_timeout * self._lock_retry_attempts))),
            degraded=True,
        )

    def purge_expired(self) -> int:
        removed = self._counter_store.purge_expired()
        if removed:
            logger.info("rate_limit.swept", extra={"removed": removed})
        return removed
