"""In-memory rate limit counter store with per-key locking.

Notes:
- Per-process only: running multiple workers multiplies the effective limit.
- Counters live in a sharded map. A shard lock is held only to find or create
  the entry of one key; the increment itself runs under that entry's own
  lock, so requests for different keys never wait for each other.
- Fixed windows reset lazily on the next access to the same key; rolling
  windows keep the last ``limit + 1`` timestamps, which is enough to decide
  whether more than ``limit`` requests fall inside the window.
"""

from __future__ import annotations

import math
import threading
import time
from collections import deque
from dataclasses import dataclass, field
from typing import Callable

from app.adapters.rate_limit.base import (
    AbstractRateLimitCounterStore,
    CounterLockTimeout,
    RateLimitCounter,
)
from app.adapters.rate_limit.policy import RateLimitRule, WindowMode

_CounterKey = tuple[str, str]


@dataclass
class _CounterEntry:
    period: float
    window_start: float = 0.0
    count: int = 0
    hits: deque[float] | None = None
    retired: bool = False
    lock: threading.Lock = field(default_factory=threading.Lock)

    def expired(self, now: float) -> bool:
        if self.hits is not None:
            return not self.hits or self.hits[-1] <= now - self.period
        return now >= self.window_start + self.period


@dataclass
class _Shard:
    lock: threading.Lock = field(default_factory=threading.Lock)
    entries: dict[_CounterKey, _CounterEntry] = field(default_factory=dict)


class InMemoryRateLimitCounterStore(AbstractRateLimitCounterStore):
    """Thread-safe counter store keyed by ``(client_key, rule_key)``."""

    def __init__(
        self,
        *,
        shards: int = 64,
        clock: Callable[[], float] = time.time,
    ) -> None:
        """Initialize the store.

        Args:
            shards: Number of map shards guarding entry creation/removal.
            clock: Time source returning UNIX time in seconds.

        Raises:
            ValueError: If shards is invalid.
        """
        if shards < 1:
            raise ValueError("shards must be >= 1")

        self._shards = [_Shard() for _ in range(shards)]
        self._clock = clock

    def __len__(self) -> int:
        total = 0
        for shard in self._shards:
            with shard.lock:
                total += len(shard.entries)
        return total

    def _shard_for(self, key: _CounterKey) -> _Shard:
        return self._shards[hash(key) % len(self._shards)]

    def _get_or_create_entry(self, key: _CounterKey, period: float) -> _CounterEntry:
        shard = self._shard_for(key)
        with shard.lock:
            entry = shard.entries.get(key)
            if entry is None:
                entry = _CounterEntry(period=period)
                shard.entries[key] = entry
            return entry

    def key_lock(self, client_key: str, rule: RateLimitRule) -> threading.Lock:
        """Lock guarding one counter key (exposed for diagnostics and tests)."""
        return self._get_or_create_entry((client_key, rule.key), rule.period_seconds).lock

    @staticmethod
    def _count_fixed(entry: _CounterEntry, now: float) -> tuple[float, int, float]:
        window_start = math.floor(now / entry.period) * entry.period
        if entry.hits is not None or entry.window_start != window_start:
            entry.hits = None
            entry.window_start = window_start
            entry.count = 0
        entry.count += 1
        return window_start, entry.count, window_start + entry.period

    @staticmethod
    def _count_rolling(entry: _CounterEntry, now: float, limit: int) -> tuple[float, int, float]:
        if entry.hits is None or entry.hits.maxlen != limit + 1:
            entry.hits = deque(entry.hits or (), maxlen=limit + 1)
        hits = entry.hits
        while hits and hits[0] <= now - entry.period:
            hits.popleft()
        hits.append(now)
        count = len(hits)
        entry.count = count
        entry.window_start = hits[0]
        # Allowed again once enough of the counted hits have left the window
        reset_at = hits[max(0, count - limit)] + entry.period
        return hits[0], count, reset_at

    def increment(
        self,
        client_key: str,
        rule: RateLimitRule,
        *,
        mode: WindowMode = WindowMode.FIXED,
        lock_timeout: float | None = None,
    ) -> RateLimitCounter:
        if not client_key:
            raise ValueError("client_key must be a non-empty string")

        key = (client_key, rule.key)
        while True:
            entry = self._get_or_create_entry(key, rule.period_seconds)
            acquired = entry.lock.acquire(timeout=-1 if lock_timeout is None else lock_timeout)
            if not acquired:
                raise CounterLockTimeout(rule.key)
            try:
                if entry.retired:
                    # Purged between lookup and lock; take the fresh entry
                    continue
                now = self._clock()
                if mode is WindowMode.ROLLING:
                    window_start, count, reset_at = self._count_rolling(entry, now, rule.limit)
                else:
                    window_start, count, reset_at = self._count_fixed(entry, now)
                return RateLimitCounter(
                    client_key=client_key,
                    rule_key=rule.key,
                    window_start=window_start,
                    count=count,
                    reset_at=reset_at,
                )
            finally:
                entry.lock.release()

    def purge_expired(self) -> int:
        now = self._clock()
        removed = 0
        for shard in self._shards:
            with shard.lock:
                for key, entry in list(shard.entries.items()):
                    # Busy entries are in use right now; the next sweep gets them
                    if not entry.lock.acquire(blocking=False):
                        continue
                    try:
                        if entry.expired(now):
                            entry.retired = True
                            del shard.entries[key]
                            removed += 1
                    finally:
                        entry.lock.release()
        return removed

    def reset(self, client_key: str, rule: RateLimitRule) -> bool:
        key = (client_key, rule.key)
        shard = self._shard_for(key)
        with shard.lock:
            entry = shard.entries.pop(key, None)
        if entry is None:
            return False
        with entry.lock:
            entry.retired = True
        return True
