"""
Shared fixtures for Admission service tests.
"""

import fakeredis
import pytest
from prometheus_client import CollectorRegistry

from shared.metrics import MetricsCollector
from service_admission.app.adapters.redis_store import RedisStore


class FakeClock:
    """Manually advanced wall clock."""

    def __init__(self, start: float = 1_700_000_000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float):
        self.now += seconds


@pytest.fixture
def fake_redis():
    """Isolated in-memory Redis with Lua support."""
    return fakeredis.FakeAsyncRedis(server=fakeredis.FakeServer(), decode_responses=True)


@pytest.fixture
def metrics():
    """Metrics collector on a private registry."""
    return MetricsCollector("admission", CollectorRegistry())


@pytest.fixture
def store(fake_redis, metrics):
    """RedisStore bound to the in-memory server."""
    return RedisStore("redis://fake:6379/0", metrics=metrics, client=fake_redis)


@pytest.fixture
def clock():
    return FakeClock()
