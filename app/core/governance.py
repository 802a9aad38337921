"""Shared request-governance state and its lifecycle.

``GovernanceState`` owns every piece of mutable state shared between
requests: rate limit policy and counters, remembered cache validators and the
version bindings. It is built once per application in ``create_app``,
attached to ``app.state.governance``, started and stopped by the lifespan,
and reached by pipeline stages through the request.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
from dataclasses import dataclass, field

from app.adapters.rate_limit.in_memory import InMemoryRateLimitCounterStore
from app.adapters.rate_limit.policy import RateLimitPolicyStore
from app.core.config import Settings
from app.core.versioning import VersionRouter
from app.services.cache_validator import CacheValidator
from app.services.rate_limit_processor import RateLimitProcessor

logger = logging.getLogger(__name__)


@dataclass
class GovernanceState:
    settings: Settings
    policy_store: RateLimitPolicyStore
    counter_store: InMemoryRateLimitCounterStore
    rate_limit_processor: RateLimitProcessor
    cache_validator: CacheValidator
    version_router: VersionRouter
    _sweeper: asyncio.Task | None = field(default=None, repr=False)

    @classmethod
    def from_settings(cls, cfg: Settings, version_router: VersionRouter) -> "GovernanceState":
        policy_store = RateLimitPolicyStore.from_settings(cfg.rate_limit)
        counter_store = InMemoryRateLimitCounterStore()
        processor = RateLimitProcessor(
            policy_store,
            counter_store,
            lock_timeout_seconds=cfg.rate_limit.lock_timeout_seconds,
            lock_retry_attempts=cfg.rate_limit.lock_retry_attempts,
            on_lock_contention=cfg.rate_limit.on_lock_contention,
        )
        return cls(
            settings=cfg,
            policy_store=policy_store,
            counter_store=counter_store,
            rate_limit_processor=processor,
            cache_validator=CacheValidator.from_settings(cfg.cache),
            version_router=version_router,
        )

    @property
    def running(self) -> bool:
        return self._sweeper is not None and not self._sweeper.done()

    async def start(self) -> None:
        """Freeze version bindings and start the periodic counter sweep."""

        self.version_router.freeze()
        if self.settings.rate_limit.enabled and not self.running:
            self._sweeper = asyncio.create_task(
                self._sweep_forever(self.settings.rate_limit.sweep_interval_seconds),
                name="rate-limit-sweeper",
            )
        logger.info(
            "governance.started",
            extra={
                "rate_limit_enabled": self.settings.rate_limit.enabled,
                "window_mode": self.settings.rate_limit.window_mode,
                "cache_enabled": self.settings.cache.enabled,
                "versions": [str(v) for v in self.version_router.supported_versions()],
            },
        )

    async def stop(self) -> None:
        if self._sweeper is not None:
            self._sweeper.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._sweeper
            self._sweeper = None
        self.cache_validator.clear()
        logger.info("governance.stopped")

    async def _sweep_forever(self, interval: float) -> None:
        while True:
            await asyncio.sleep(interval)
            self.rate_limit_processor.purge_expired()
