"""
Pytest configuration for activeorm tests.

Every test gets a fresh repository over an in-memory backend and an
in-memory cache driven by a fake clock, so TTL and eviction behavior can be
stepped deterministically.
"""

import pytest

from activeorm import Connection, InMemoryBackend, InMemoryCache, Repository, Settings


def pytest_configure(config):
    """Configure pytest-anyio to use only asyncio backend (trio not installed)."""
    config.option.anyio_backends = ["asyncio"]


@pytest.fixture
def anyio_backend():
    return "asyncio"


class FakeClock:
    """Callable clock for InMemoryCache; only moves when told to."""

    def __init__(self, start: float = 1_000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def backend():
    return InMemoryBackend()


@pytest.fixture
def cache(clock):
    return InMemoryCache(clock=clock)


@pytest.fixture
def settings():
    return Settings()


@pytest.fixture
def connection(backend, cache, settings):
    return Connection(backend, cache, settings)


@pytest.fixture
def repo(connection):
    return Repository(connection)


@pytest.fixture
def make_repo(connection):
    """Build another repository on the same backend and cache (fresh identity maps)."""
    def factory(*definitions):
        other = Repository(connection)
        for definition in definitions:
            other.register(definition)
        return other
    return factory
