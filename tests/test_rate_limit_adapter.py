"""Unit tests for the in-memory rate limit counter store."""

import threading
from unittest.mock import Mock

import pytest

from app.adapters.rate_limit.base import CounterLockTimeout
from app.adapters.rate_limit.in_memory import InMemoryRateLimitCounterStore
from app.adapters.rate_limit.policy import RateLimitRule, WindowMode


@pytest.fixture
def clock() -> Mock:
    return Mock(return_value=1000.0)


@pytest.fixture
def store(clock: Mock) -> InMemoryRateLimitCounterStore:
    return InMemoryRateLimitCounterStore(clock=clock)


def test_counts_within_fixed_window(store) -> None:
    rule = RateLimitRule.create("*", 3, "1m")

    counts = [store.increment("k", rule).count for _ in range(4)]

    assert counts == [1, 2, 3, 4]


def test_fixed_window_is_aligned_and_resets(store, clock) -> None:
    rule = RateLimitRule.create("*", 1, "10s")

    first = store.increment("k", rule)
    assert first.window_start == 1000.0
    assert first.reset_at == 1010.0
    assert store.increment("k", rule).count == 2

    clock.return_value = 1010.0
    assert store.increment("k", rule).count == 1


def test_isolated_by_key_and_rule(store) -> None:
    minute = RateLimitRule.create("*", 1, "1m")
    hour = RateLimitRule.create("*", 1, "1h")

    store.increment("k1", minute)

    assert store.increment("k2", minute).count == 1
    assert store.increment("k1", hour).count == 1


def test_rolling_window_drops_old_hits(store, clock) -> None:
    rule = RateLimitRule.create("*", 2, "10s")

    clock.return_value = 1000.0
    store.increment("k", rule, mode=WindowMode.ROLLING)
    clock.return_value = 1005.0
    store.increment("k", rule, mode=WindowMode.ROLLING)
    clock.return_value = 1009.0
    over = store.increment("k", rule, mode=WindowMode.ROLLING)
    assert over.count == 3
    # Allowed again once the hit at 1005 leaves the window
    assert over.reset_at == 1015.0

    clock.return_value = 1010.5
    assert store.increment("k", rule, mode=WindowMode.ROLLING).count == 3


def test_rolling_window_has_no_boundary_burst(store, clock) -> None:
    rule = RateLimitRule.create("*", 2, "10s")

    clock.return_value = 1009.0
    store.increment("k", rule, mode=WindowMode.ROLLING)
    store.increment("k", rule, mode=WindowMode.ROLLING)
    clock.return_value = 1010.0

    assert store.increment("k", rule, mode=WindowMode.ROLLING).count == 3


def test_lock_timeout_raises(store) -> None:
    rule = RateLimitRule.create("*", 5, "1m")
    lock = store.key_lock("busy", rule)

    with lock:
        with pytest.raises(CounterLockTimeout):
            store.increment("busy", rule, lock_timeout=0.01)


def test_busy_key_does_not_block_other_keys(store) -> None:
    rule = RateLimitRule.create("*", 5, "1m")
    result: dict = {}

    with store.key_lock("busy", rule):
        worker = threading.Thread(
            target=lambda: result.setdefault("count", store.increment("free", rule).count)
        )
        worker.start()
        worker.join(timeout=2)

    assert result == {"count": 1}


def test_concurrent_increments_are_not_lost(store) -> None:
    rule = RateLimitRule.create("*", 1000, "1m")

    def hammer() -> None:
        for _ in range(100):
            store.increment("k", rule)

    threads = [threading.Thread(target=hammer) for _ in range(8)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    assert store.increment("k", rule).count == 801


def test_purge_expired_removes_stale_entries(store, clock) -> None:
    rule = RateLimitRule.create("*", 1, "10s")
    store.increment("old", rule)
    clock.return_value = 1005.0
    store.increment("fresh", rule, mode=WindowMode.ROLLING)

    clock.return_value = 1012.0
    removed = store.purge_expired()

    assert removed == 1
    assert len(store) == 1


def test_purge_skips_busy_entries(store, clock) -> None:
    rule = RateLimitRule.create("*", 1, "10s")
    store.increment("k", rule)
    clock.return_value = 2000.0

    with store.key_lock("k", rule):
        assert store.purge_expired() == 0
    assert store.purge_expired() == 1


def test_reset_forgets_counter(store) -> None:
    rule = RateLimitRule.create("*", 1, "1m")
    store.increment("k", rule)

    assert store.reset("k", rule) is True
    assert store.reset("k", rule) is False
    assert store.increment("k", rule).count == 1


def test_invalid_arguments() -> None:
    with pytest.raises(ValueError):
        InMemoryRateLimitCounterStore(shards=0)

    with pytest.raises(ValueError):
        InMemoryRateLimitCounterStore().increment("", RateLimitRule.create("*", 1, "1m"))
