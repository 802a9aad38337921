"""Rate limit counter store interfaces.

The processor depends on this abstraction (not the concrete implementation)
so counters can later live in a shared store (e.g., Redis) without changing
the request pipeline.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass

from app.adapters.rate_limit.policy import RateLimitRule, WindowMode


class CounterLockTimeout(Exception):
    """Raised when the lock of one counter key could not be acquired in time."""

    def __init__(self, rule_key: str) -> None:
        super().__init__(f"Timed out waiting for rate limit counter lock ({rule_key})")
        self.rule_key = rule_key


@dataclass(frozen=True)
class RateLimitCounter:
    """Counter state right after an increment.

    Attributes:
        client_key: Client the counter belongs to.
        rule_key: Rule the counter belongs to.
        window_start: UNIX seconds at which the counted window began.
        count: Requests counted in the window, including the current one.
        reset_at: UNIX seconds at which the client may be allowed again
            (fixed: window end; rolling: when enough requests leave the window).
    """

    client_key: str
    rule_key: str
    window_start: float
    count: int
    reset_at: float


class AbstractRateLimitCounterStore(ABC):
    """Interface for rate limit counter stores."""

    @abstractmethod
    def increment(
        self,
        client_key: str,
        rule: RateLimitRule,
        *,
        mode: WindowMode = WindowMode.FIXED,
        lock_timeout: float | None = None,
    ) -> RateLimitCounter:
        """Atomically count one request for ``(client_key, rule)``.

        Args:
            client_key: Client identifier (client id or IP).
            rule: Matched rule; its period defines the window.
            mode: Fixed or rolling window.
            lock_timeout: Max seconds to wait for the key lock (None waits forever).

        Returns:
            Counter state after the increment.

        Raises:
            CounterLockTimeout: If the key lock was not acquired in time.
        """
        raise NotImplementedError

    @abstractmethod
    def purge_expired(self) -> int:
        """Drop counters whose window has ended; returns how many were removed."""
        raise NotImplementedError

    @abstractmethod
    def reset(self, client_key: str, rule: RateLimitRule) -> bool:
        """Forget the counter for ``(client_key, rule)``."""
        raise NotImplementedError
