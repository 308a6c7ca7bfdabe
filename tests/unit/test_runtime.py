"""Tests for process-wide wiring and the module-level operations."""

from __future__ import annotations

import pytest

from refresh_guard import runtime
from refresh_guard.cache.models import CacheSource, DatasetSpec
from refresh_guard.core.background import drain_background
from refresh_guard.core.config import AppSettings, CircuitSettings, StoreConfig
from refresh_guard.exceptions import ConfigurationFault
from refresh_guard.persistence.memory_store import MemoryObjectStore
from refresh_guard.refresh.coordinator import RefreshStatus
from refresh_guard.resilience.models import CircuitBreakerConfig, CircuitState, RateLimitConfig


@pytest.fixture
def rt() -> runtime.Runtime:
    built = runtime.build_runtime(
        AppSettings(
            store=StoreConfig(backend="memory"),
            circuit=CircuitSettings(failure_threshold=2),
        )
    )
    runtime.set_runtime(built)
    return built


@pytest.fixture(autouse=True)
async def _settle_background():
    yield
    await drain_background()


class TestSingleton:
    def test_set_runtime_is_returned(self, rt: runtime.Runtime) -> None:
        assert runtime.get_runtime() is rt

    def test_reset_forgets_instance(self, rt: runtime.Runtime, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("REFRESH_GUARD_STORE_BACKEND", "memory")
        runtime.reset_runtime()

        rebuilt = runtime.get_runtime()
        assert rebuilt is not rt
        assert runtime.get_runtime() is rebuilt

    def test_build_uses_given_store(self) -> None:
        store = MemoryObjectStore()
        built = runtime.build_runtime(AppSettings(store=StoreConfig(backend="memory")), store=store)
        assert built.store is store

    def test_build_rejects_invalid_settings(self) -> None:
        with pytest.raises(ValueError, match="S3_BUCKET"):
            runtime.build_runtime(AppSettings(store=StoreConfig(backend="s3")))

    def test_settings_flow_into_breaker_defaults(self, rt: runtime.Runtime) -> None:
        runtime.record_operation_failure("api", "ctx")
        runtime.record_operation_failure("api", "ctx")
        assert runtime.get_circuit_breaker_state("api", "ctx").state == CircuitState.OPEN


class TestLockOperations:
    async def test_acquire_release_cycle(self, rt: runtime.Runtime) -> None:
        first = await runtime.acquire_lock("locks/job.lock", "worker-a")
        assert first.success is True
        assert first.entry is not None
        assert first.entry.ttl_ms == rt.settings.lock.ttl_ms

        second = await runtime.acquire_lock("locks/job.lock", "worker-b", max_retries=0)
        assert second.success is False
        assert second.holder == "worker-a"

        await runtime.release_lock("locks/job.lock", "worker-a")
        assert await rt.store.get("locks/job.lock") is None

    async def test_cleanup_lock_on_live_lock_is_noop(self, rt: runtime.Runtime) -> None:
        await runtime.acquire_lock("locks/job.lock", "worker-a", ttl_ms=60_000)
        assert await runtime.cleanup_lock("locks/job.lock") is False
        assert await rt.store.get("locks/job.lock") is not None


class TestLimiterAndBreakerOperations:
    def test_rate_limit(self, rt: runtime.Runtime) -> None:
        config = RateLimitConfig(max_requests=2, window_ms=60_000)
        assert runtime.is_operation_allowed("api", "user-1", config) is True
        assert runtime.is_operation_allowed("api", "user-1", config) is True
        assert runtime.is_operation_allowed("api", "user-1", config) is False
        assert runtime.is_operation_allowed("api", "user-2", config) is True

    def test_invalid_config_raises(self, rt: runtime.Runtime) -> None:
        with pytest.raises(ConfigurationFault):
            runtime.is_operation_allowed("api", "user-1", RateLimitConfig(max_requests=0, window_ms=1000))

    async def test_wait_for_permit_returns_when_allowed(self, rt: runtime.Runtime) -> None:
        await runtime.wait_for_permit("api", "user-1", RateLimitConfig(max_requests=1, window_ms=60_000))

    async def test_persisted_counts_reload(self, rt: runtime.Runtime) -> None:
        config = RateLimitConfig(max_requests=1, window_ms=60_000)
        assert runtime.increment_and_persist("github-refresh", "ip-1", config, "rate-limits/github.json") is True
        await drain_background()

        restarted = runtime.build_runtime(rt.settings, store=rt.store)
        runtime.set_runtime(restarted)
        assert await runtime.load_rate_limits("github-refresh", "rate-limits/github.json") == 1
        assert runtime.is_operation_allowed("github-refresh", "ip-1", config) is False

    def test_breaker_lifecycle(self, rt: runtime.Runtime) -> None:
        limit = RateLimitConfig(max_requests=100, window_ms=60_000)
        circuit = CircuitBreakerConfig(failure_threshold=1, reset_timeout_ms=60_000)

        assert runtime.is_operation_allowed_with_circuit_breaker("origin", "books", limit, circuit) is True
        runtime.record_operation_failure("origin", "books", circuit)
        assert runtime.is_operation_allowed_with_circuit_breaker("origin", "books", limit, circuit) is False

        runtime.reset_circuit_breaker("origin", "books")
        assert runtime.get_circuit_breaker_state("origin", "books").state == CircuitState.CLOSED
        assert runtime.is_operation_allowed_with_circuit_breaker("origin", "books", limit, circuit) is True

    def test_success_clears_failure_count(self, rt: runtime.Runtime) -> None:
        runtime.record_operation_failure("origin", "books")
        runtime.record_operation_success("origin", "books")
        assert runtime.get_circuit_breaker_state("origin", "books").failures == 0


class TestDatasetOperations:
    async def test_register_refresh_and_read(self, rt: runtime.Runtime) -> None:
        books = [{"id": "b1", "title": "Dune"}]

        async def fetch() -> list[dict]:
            return books

        runtime.register_dataset(DatasetSpec(key="books", fetch_origin=fetch))

        empty = await runtime.get_with_fallback("books")
        assert empty.value == []

        result = await runtime.refresh_dataset("books")
        assert result.status == RefreshStatus.REFRESHED

        read = await runtime.get_with_fallback("books")
        assert read.value == books
        assert read.source == CacheSource.SNAPSHOT
        assert read.is_fallback is False

        await runtime.clear_cache("books")
        again = await runtime.get_with_fallback("books")
        assert again.value == books
