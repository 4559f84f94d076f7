"""
Per-identifier limiter registry.
"""

import time
from typing import Callable, Dict, Optional

from shared.config import RateLimitSettings, get_settings
from shared.errors import ConfigurationError
from shared.logging import get_logger
from shared.metrics import MetricsCollector

from .limiter import FixedWindowRateLimiter, RateLimitResult
from .store import CounterStore


class LimiterRegistry:
    """Builds one limiter per storage key and reuses it.

    Reusing the instance keeps call serialization and the fast exhaustion
    path working across calls for the same identifier. Limiters whose window
    has expired and that have no call in flight are evicted lazily, at most
    once per sweep interval; the shared counter carries their state.
    """

    def __init__(self,
                 store: CounterStore,
                 settings: Optional[RateLimitSettings] = None,
                 metrics: Optional[MetricsCollector] = None,
                 clock: Callable[[], float] = time.time,
                 sweep_interval_ms: int = 1000):
        self.store = store
        self.settings = settings or get_settings()
        self.metrics = metrics
        self.clock = clock
        self.sweep_interval_ms = sweep_interval_ms
        self.limiters: Dict[str, FixedWindowRateLimiter] = {}
        self.logger = get_logger("ratelimiter.registry")
        self._last_sweep = clock()

    def get(self,
            identifier: str,
            limit: int,
            duration_ms: int,
            namespace: Optional[str] = None) -> FixedWindowRateLimiter:
        """Get or create the limiter for an identifier."""
        self.sweep()
        storage_key = (self.settings.namespace if namespace is None else namespace) + str(identifier)
        limiter = self.limiters.get(storage_key)

        if limiter is None:
            limiter = FixedWindowRateLimiter(
                identifier,
                limit,
                duration_ms,
                self.store,
                namespace=namespace,
                settings=self.settings,
                metrics=self.metrics,
                clock=self.clock
            )
            self.limiters[storage_key] = limiter
            self.logger.info("Created limiter", storage_key=storage_key, limit=limit, duration_ms=duration_ms)
        elif limiter.limit != limit or limiter.duration_ms != duration_ms:
            raise ConfigurationError(
                f"Limiter '{storage_key}' already registered with different options",
                details={
                    "storage_key": storage_key,
                    "limit": limiter.limit,
                    "duration_ms": limiter.duration_ms
                }
            )

        return limiter

    def sweep(self, force: bool = False) -> int:
        """Evict idle limiters; returns how many were dropped."""
        now = self.clock()
        if not force and (now - self._last_sweep) * 1000 < self.sweep_interval_ms:
            return 0
        self._last_sweep = now

        idle = [key for key, limiter in self.limiters.items() if limiter.is_idle()]
        for key in idle:
            del self.limiters[key]
        if idle:
            self.logger.debug("Evicted idle limiters", count=len(idle), remaining=len(self.limiters))
        return len(idle)

    async def withdraw(self,
                       identifier: str,
                       limit: int,
                       duration_ms: int,
                       namespace: Optional[str] = None) -> RateLimitResult:
        """Withdraw one token for an identifier."""
        return await self.get(identifier, limit, duration_ms, namespace).withdraw()

    def __len__(self) -> int:
        return len(self.limiters)

    async def close(self) -> None:
        """Drop all limiters and close the store."""
        self.limiters.clear()
        await self.store.close()
