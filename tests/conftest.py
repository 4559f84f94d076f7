"""
Shared fixtures for limiter tests.
"""

import pytest
from prometheus_client import CollectorRegistry

from ratelimiter.store import InMemoryCounterStore
from shared.config import load_settings
from shared.metrics import MetricsCollector


class FakeClock:
    """Manually driven epoch clock in seconds."""

    def __init__(self, start: float = 1_700_000_000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, ms: float) -> None:
        self.now += ms / 1000.0


@pytest.fixture
def clock():
    """Fake clock shared by limiters and the in-memory store."""
    return FakeClock()


@pytest.fixture
def store(clock):
    """In-memory counter store driven by the fake clock."""
    return InMemoryCounterStore(clock=clock)


@pytest.fixture
def settings():
    """Default settings, independent of the environment."""
    return load_settings(_env_file=None)


@pytest.fixture
def registry():
    """Isolated Prometheus registry."""
    return CollectorRegistry()


@pytest.fixture
def metrics(registry):
    """Metrics collector on an isolated registry."""
    return MetricsCollector(registry=registry)
