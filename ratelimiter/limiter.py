"""
Distributed fixed-window rate limiter.

Each call to withdraw() reconciles the local window with a counter held in
a shared store. Processes exclude each other with a short-lived lock key
taken by SET NX inside the same transaction that reads the counter; the lock
is released in the transaction that writes the counter back. A holder that
crashes leaves the lock to expire after the lock TTL.
"""

import asyncio
import time
from datetime import datetime, timedelta, timezone
from typing import Callable, NamedTuple, Optional

from pydantic import BaseModel, Field, ValidationError

from shared.config import RateLimitSettings, get_settings
from shared.errors import ConfigurationError, ContentionExceeded, RateLimiterException
from shared.logging import bind_storage_key, get_logger, reset_storage_key
from shared.metrics import MetricsCollector, get_metrics_collector
from shared.retry import calculate_delay

from .store import CounterSnapshot, CounterStore
from .window import WindowState


class RateLimitResult(NamedTuple):
    """Outcome of one withdrawal.

    `remaining` is negative once the limit is exceeded; it is never clamped.
    """

    limit: int
    remaining: int
    reset_at: datetime

    @property
    def exceeded(self) -> bool:
        return self.remaining < 0

    def reset_in_ms(self, now: Optional[datetime] = None) -> int:
        """Milliseconds until the window resets."""
        now = now or datetime.now(timezone.utc)
        return max(0, int((self.reset_at - now).total_seconds() * 1000))


class LimiterOptions(BaseModel):
    """Validated construction options."""

    identifier: str = Field(..., min_length=1, strict=True)
    limit: int = Field(..., gt=0, strict=True)
    duration_ms: int = Field(..., gt=0, strict=True)
    namespace: str = Field(..., strict=True)


class FixedWindowRateLimiter:
    """Fixed-window limiter for one identifier, shared across processes."""

    def __init__(self,
                 identifier: Optional[str] = None,
                 limit: Optional[int] = None,
                 duration_ms: Optional[int] = None,
                 store: Optional[CounterStore] = None,
                 *,
                 namespace: Optional[str] = None,
                 settings: Optional[RateLimitSettings] = None,
                 metrics: Optional[MetricsCollector] = None,
                 clock: Callable[[], float] = time.time):
        settings = settings or get_settings()
        try:
            options = LimiterOptions(
                identifier=identifier,
                limit=limit,
                duration_ms=duration_ms,
                namespace=settings.namespace if namespace is None else namespace,
            )
        except ValidationError as e:
            raise ConfigurationError(
                "Invalid rate limiter options",
                details={"errors": e.errors(include_url=False, include_context=False)}
            ) from e
        if store is None:
            raise ConfigurationError("A counter store is required")

        self.identifier = options.identifier
        self.limit = options.limit
        self.duration_ms = options.duration_ms
        self.storage_key = options.namespace + options.identifier
        self.lock_key = self.storage_key + ":lock"

        self.store = store
        self.lock_ttl_ms = settings.lock_ttl_ms
        self.retry_config = settings.retry_config()
        self.metrics = metrics or get_metrics_collector()
        self.logger = get_logger("ratelimiter.limiter")

        self._clock = clock
        self._window = WindowState(limit=self.limit, duration_ms=self.duration_ms)
        # Resolves with None on success or with the raised error
        self._pending: Optional[asyncio.Future] = None

    @property
    def remaining(self) -> int:
        return self._window.remaining

    @property
    def reset_at(self) -> Optional[datetime]:
        return self._window.reset_at

    def _now(self) -> datetime:
        # Whole milliseconds, the resolution of store TTLs
        ms = int(round(self._clock() * 1000))
        return datetime.fromtimestamp(ms // 1000, tz=timezone.utc) + timedelta(milliseconds=ms % 1000)

    def is_idle(self) -> bool:
        """True when no call is in flight and the local window has expired."""
        return self._pending is None and self._window.is_expired(self._now())

    def _result(self, remaining: int) -> RateLimitResult:
        return RateLimitResult(self.limit, remaining, self._window.reset_at)

    async def withdraw(self) -> RateLimitResult:
        """Withdraw one token and report the window's state.

        Raises:
            ContentionExceeded: the counter lock stayed taken for every retry.
            StoreError: the store failed; the local window is unchanged.
        """
        while self._pending is not None:
            error = await asyncio.shield(self._pending)
            if error is not None:
                raise error

        now = self._now()
        if self._window.is_depleted(now):
            # Depleted inside an unexpired window; reset_at cannot move earlier
            self.metrics.record_withdrawal("short_circuit")
            return self._result(self._window.remaining - 1)

        pending = asyncio.get_running_loop().create_future()
        self._pending = pending
        previous = self._window.snapshot()
        token = bind_storage_key(self.storage_key)
        try:
            if self._window.is_expired(now):
                self._window.start(now)
            with self.metrics.time_operation("ratelimiter_reconcile_duration_seconds"):
                await self._reconcile()
        except asyncio.CancelledError:
            # Queued callers re-evaluate instead of inheriting the cancellation
            self._window.restore(previous)
            pending.set_result(None)
            raise
        except Exception as e:
            self._window.restore(previous)
            self.metrics.record_error(e.code if isinstance(e, RateLimiterException) else type(e).__name__)
            pending.set_result(e)
            raise
        else:
            pending.set_result(None)
        finally:
            self._pending = None
            reset_storage_key(token)

        result = self._result(self._window.remaining)
        self.metrics.record_withdrawal("exceeded" if result.exceeded else "allowed")
        return result

    async def _reconcile(self) -> None:
        """Read, decrement and persist the shared counter."""
        snapshot = await self._acquire()
        now = self._now()

        if not snapshot.alive:
            self._window.start(now)
            self._window.remaining -= 1
            self.metrics.record_rollover()
            self.logger.info("Started new window", limit=self.limit, duration_ms=self.duration_ms)
        else:
            self._window.sync((snapshot.value or 0) - 1, snapshot.ttl_ms, now)

        # PX must be positive; a window ending right now expires in 1 ms
        ttl_ms = max(1, self._window.ttl_ms(now))
        await self.store.commit(self.storage_key, self.lock_key, max(0, self._window.remaining), ttl_ms)

        self.logger.debug(
            "Reconciled counter",
            remaining=self._window.remaining,
            ttl_ms=ttl_ms
        )

    async def _acquire(self) -> CounterSnapshot:
        """Run the reserve batch until the lock is ours or retries run out."""
        retries = 0
        while True:
            snapshot = await self.store.reserve(self.storage_key, self.lock_key, self.lock_ttl_ms)
            if snapshot.locked:
                return snapshot

            self.metrics.record_contention()
            if retries >= self.retry_config.max_retries:
                self.logger.warning("Counter lock contention exceeded retries", retries=retries)
                raise ContentionExceeded(details={
                    "storage_key": self.storage_key,
                    "retries": retries
                })

            retries += 1
            delay = calculate_delay(retries, self.retry_config)
            self.logger.warning("Counter locked, retrying", retry=retries, delay=delay)
            await asyncio.sleep(delay)
