"""
Integration tests for the limiter against a real Redis server.

Set RATELIMIT_REDIS_URL to point at a disposable database; the tests skip
when it is unreachable.
"""

import asyncio
import os
from datetime import datetime, timedelta, timezone

import pytest
import pytest_asyncio
import redis.asyncio as redis
from redis.exceptions import RedisError

from ratelimiter.limiter import FixedWindowRateLimiter
from ratelimiter.store import RedisCounterStore
from shared.config import load_settings

pytestmark = pytest.mark.integration

REDIS_URL = os.getenv("RATELIMIT_REDIS_URL", "redis://localhost:6379/15")
NAMESPACE = "ratelimit-test:"
ID = "testlimiter"
LIMIT = 10
DURATION = 30000


async def clear_keys(client: redis.Redis) -> None:
    keys = await client.keys(f"{NAMESPACE}*")
    if keys:
        await client.delete(*keys)


@pytest_asyncio.fixture
async def redis_client():
    """Redis client on a clean namespace, or skip."""
    client = redis.from_url(REDIS_URL)
    try:
        await client.ping()
    except (RedisError, OSError) as e:
        await client.aclose()
        pytest.skip(f"Redis unavailable at {REDIS_URL}: {e}")

    await clear_keys(client)
    yield client
    await clear_keys(client)
    await client.aclose()


@pytest.fixture
def settings():
    return load_settings(_env_file=None, namespace=NAMESPACE)


def make_limiter(client, settings, duration_ms=DURATION, metrics=None):
    return FixedWindowRateLimiter(
        ID, LIMIT, duration_ms, RedisCounterStore(client=client), settings=settings, metrics=metrics
    )


class TestRedisLimiter:
    """End-to-end withdrawals against Redis."""

    @pytest.mark.asyncio
    async def test_counts_down_and_exceeds(self, redis_client, settings, metrics):
        """Test 9..0 then -1 within one window."""
        limiter = make_limiter(redis_client, settings, metrics=metrics)

        for i in range(1, LIMIT + 1):
            limit, remaining, reset_at = await limiter.withdraw()
            now = datetime.now(timezone.utc)

            assert limit == LIMIT
            assert remaining == LIMIT - i
            assert reset_at >= now + timedelta(milliseconds=DURATION - 500)

        result = await limiter.withdraw()
        assert result.remaining == -1
        assert int(await redis_client.get(limiter.storage_key)) == 0
        assert await redis_client.exists(limiter.lock_key) == 0

    @pytest.mark.asyncio
    async def test_resets_after_timeout(self, redis_client, settings, metrics):
        """Test a new window starts once the duration elapses."""
        limiter = make_limiter(redis_client, settings, duration_ms=500, metrics=metrics)

        first = await limiter.withdraw()
        assert first.remaining == LIMIT - 1

        await asyncio.sleep(0.6)
        second = await limiter.withdraw()

        assert second.limit == LIMIT
        assert second.remaining == LIMIT - 1
        assert second.reset_at < datetime.now(timezone.utc) + timedelta(milliseconds=DURATION)

    @pytest.mark.asyncio
    async def test_concurrent_instances(self, redis_client, settings, metrics):
        """Test concurrent instances never grant more than the limit."""
        fast_retry = load_settings(_env_file=None, namespace=NAMESPACE, max_retries=50, retry_delay_ms=5)
        limiters = [make_limiter(redis_client, fast_retry, metrics=metrics) for _ in range(5)]

        results = await asyncio.gather(
            *(limiter.withdraw() for limiter in limiters for _ in range(4)),
            return_exceptions=True
        )

        granted = [r for r in results if not isinstance(r, Exception) and r.remaining >= 0]
        assert len(granted) <= LIMIT
        assert int(await redis_client.get(limiters[0].storage_key)) == 0
