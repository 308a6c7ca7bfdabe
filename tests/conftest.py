"""Shared fixtures for refresh-guard tests."""

from __future__ import annotations

import pytest

from refresh_guard import runtime
from refresh_guard.cache.memory import DatasetMemoryCache
from refresh_guard.cache.models import DatasetSpec
from refresh_guard.cache.snapshot import SnapshotPaths, SnapshotWriter
from refresh_guard.cache.tiered import TieredCache
from refresh_guard.core.config import LockConfig
from refresh_guard.persistence.memory_store import MemoryObjectStore
from refresh_guard.refresh.coordinator import RefreshCoordinator
from refresh_guard.resilience.circuit_breaker import CircuitBreakerRegistry
from refresh_guard.resilience.rate_limiter import RateLimiter
from tests.fakes.fake_clock import FakeClock
from tests.fakes.fake_stores import FlakyObjectStore


@pytest.fixture(autouse=True)
def _isolated_runtime():
    """Make sure no test leaks the process-wide runtime into the next."""
    runtime.reset_runtime()
    yield
    runtime.reset_runtime()


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def store() -> FlakyObjectStore:
    return FlakyObjectStore()


@pytest.fixture
def memory_store() -> MemoryObjectStore:
    return MemoryObjectStore()


@pytest.fixture
def limiter(clock: FakeClock) -> RateLimiter:
    return RateLimiter(clock=clock)


@pytest.fixture
def breaker(limiter: RateLimiter, clock: FakeClock) -> CircuitBreakerRegistry:
    return CircuitBreakerRegistry(limiter, clock=clock)


@pytest.fixture
def paths() -> SnapshotPaths:
    return SnapshotPaths("datasets/")


@pytest.fixture
def cache(store: FlakyObjectStore, breaker: CircuitBreakerRegistry, paths: SnapshotPaths, clock: FakeClock) -> TieredCache:
    return TieredCache(
        store,
        breaker,
        paths,
        memory=DatasetMemoryCache(max_entries=10),
        freshness_ttl_ms=60_000,
        clock=clock,
    )


@pytest.fixture
def writer(store: FlakyObjectStore, paths: SnapshotPaths, clock: FakeClock) -> SnapshotWriter:
    return SnapshotWriter(store, paths, clock=clock)


@pytest.fixture
def coordinator(
    store: FlakyObjectStore,
    cache: TieredCache,
    writer: SnapshotWriter,
    breaker: CircuitBreakerRegistry,
    clock: FakeClock,
) -> RefreshCoordinator:
    return RefreshCoordinator(
        store,
        cache,
        writer,
        breaker,
        LockConfig(ttl_ms=60_000, max_retries=0, cleanup_interval_ms=60_000),
        holder_id="test-holder",
        clock=clock,
    )


@pytest.fixture
def books() -> list[dict]:
    return [
        {"id": "b1", "title": "The Pragmatic Programmer"},
        {"id": "b2", "title": "Designing Data-Intensive Applications"},
    ]


@pytest.fixture
def books_spec(books: list[dict]) -> DatasetSpec:
    async def fetch_books() -> list[dict]:
        return list(books)

    return DatasetSpec(key="books", fetch_origin=fetch_books)
