"""
Distributed fixed-window rate limiting.

Limiters in different processes share one counter per identifier in Redis
and exclude each other with a TTL'd lock key while they reconcile it.

Structure:
- ratelimiter.limiter: FixedWindowRateLimiter and its result type.
- ratelimiter.window: Process-local window cache.
- ratelimiter.store: Redis and in-memory counter stores.
- ratelimiter.registry: One limiter per identifier.
"""

from .limiter import FixedWindowRateLimiter, RateLimitResult
from .registry import LimiterRegistry
from .store import CounterSnapshot, CounterStore, InMemoryCounterStore, RedisCounterStore
from .window import WindowState

__all__ = [
    "FixedWindowRateLimiter",
    "RateLimitResult",
    "LimiterRegistry",
    "CounterSnapshot",
    "CounterStore",
    "InMemoryCounterStore",
    "RedisCounterStore",
    "WindowState",
]
