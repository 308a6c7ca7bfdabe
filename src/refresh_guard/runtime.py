"""Process-wide wiring and the module-level operations built on it.

Every component is an explicitly constructed object; this module only holds
the one instance set the process uses::

    from refresh_guard import runtime

    runtime.register_dataset(DatasetSpec(key="books", fetch_origin=fetch_books))
    result = await runtime.get_with_fallback("books")

Tests build their own ``Runtime`` with ``build_runtime`` (or install one with
``set_runtime``) and call ``reset_runtime`` afterwards.
"""

from __future__ import annotations

import dataclasses
import logging
from typing import Any

from refresh_guard.cache.memory import DatasetMemoryCache
from refresh_guard.cache.models import DatasetSpec, FallbackResult
from refresh_guard.cache.snapshot import SnapshotPaths, SnapshotWriter
from refresh_guard.cache.tiered import TieredCache
from refresh_guard.core.config import AppSettings
from refresh_guard.core.startup_checks import validate_settings
from refresh_guard.locking import distributed_lock
from refresh_guard.locking.models import LockResult
from refresh_guard.persistence import create_object_store
from refresh_guard.persistence.protocols import IObjectStore
from refresh_guard.refresh.coordinator import RefreshCoordinator, RefreshResult
from refresh_guard.resilience.circuit_breaker import CircuitBreakerRegistry
from refresh_guard.resilience.models import CircuitBreakerConfig, CircuitBreakerState, RateLimitConfig
from refresh_guard.resilience.rate_limiter import RateLimiter

log = logging.getLogger(__name__)


@dataclasses.dataclass
class Runtime:
    settings: AppSettings
    store: IObjectStore
    limiter: RateLimiter
    breaker: CircuitBreakerRegistry
    cache: TieredCache
    writer: SnapshotWriter
    coordinator: RefreshCoordinator


def build_runtime(settings: AppSettings | None = None, store: IObjectStore | None = None) -> Runtime:
    """Wire every component from ``settings``, optionally over a given store."""
    settings = settings or AppSettings()
    validate_settings(settings)
    store = store if store is not None else create_object_store(settings.store)

    origin_rate_limit = RateLimitConfig(
        max_requests=settings.rate_limit.origin_max_requests,
        window_ms=settings.rate_limit.origin_window_ms,
    )
    limiter = RateLimiter(default_poll_interval_ms=settings.rate_limit.poll_interval_ms, store=store)
    breaker = CircuitBreakerRegistry(
        limiter,
        default_config=CircuitBreakerConfig(
            failure_threshold=settings.circuit.failure_threshold,
            reset_timeout_ms=settings.circuit.reset_timeout_ms,
            half_open_requests=settings.circuit.half_open_requests,
        ),
    )
    paths = SnapshotPaths(settings.cache.snapshot_prefix)
    cache = TieredCache(
        store,
        breaker,
        paths,
        memory=DatasetMemoryCache(max_entries=settings.cache.max_entries),
        freshness_ttl_ms=settings.cache.freshness_ttl_ms,
        origin_rate_limit=origin_rate_limit,
    )
    writer = SnapshotWriter(store, paths)
    coordinator = RefreshCoordinator(
        store,
        cache,
        writer,
        breaker,
        settings.lock,
        origin_rate_limit=origin_rate_limit,
    )
    log.info("Runtime ready (store backend=%s, holder=%s)", settings.store.backend, coordinator.holder_id)
    return Runtime(
        settings=settings,
        store=store,
        limiter=limiter,
        breaker=breaker,
        cache=cache,
        writer=writer,
        coordinator=coordinator,
    )


# ── Module-level singleton ──────────────────────────────────────────

_runtime: Runtime | None = None


def get_runtime() -> Runtime:
    """Return the process runtime, building it from the environment on first call."""
    global _runtime
    if _runtime is None:
        _runtime = build_runtime()
    return _runtime


def set_runtime(rt: Runtime) -> None:
    global _runtime
    _runtime = rt


def reset_runtime() -> None:
    """Forget the process runtime; the next ``get_runtime`` builds a new one."""
    global _runtime
    _runtime = None


# ── Lock operations ─────────────────────────────────────────────────


async def acquire_lock(
    lock_key: str,
    holder_id: str,
    ttl_ms: int | None = None,
    max_retries: int | None = None,
) -> LockResult:
    """Take ``lock_key`` for ``holder_id`` (TTL and retries default to ``LockConfig``)."""
    rt = get_runtime()
    return await distributed_lock.acquire_lock(
        rt.store,
        lock_key,
        holder_id,
        ttl_ms if ttl_ms is not None else rt.settings.lock.ttl_ms,
        max_retries if max_retries is not None else rt.settings.lock.max_retries,
    )


async def release_lock(lock_key: str, holder_id: str, force: bool = False) -> None:
    await distributed_lock.release_lock(get_runtime().store, lock_key, holder_id, force)


async def cleanup_lock(lock_key: str) -> bool:
    return await distributed_lock.cleanup_stale_lock(get_runtime().store, lock_key)


# ── Rate limiting and circuit breaking ──────────────────────────────


def is_operation_allowed(store_name: str, context_id: str, config: RateLimitConfig) -> bool:
    return get_runtime().limiter.is_operation_allowed(store_name, context_id, config)


async def wait_for_permit(
    store_name: str,
    context_id: str,
    config: RateLimitConfig,
    poll_interval_ms: int | None = None,
    timeout_ms: int | None = None,
) -> None:
    await get_runtime().limiter.wait_for_permit(store_name, context_id, config, poll_interval_ms, timeout_ms)


def increment_and_persist(store_name: str, context_id: str, config: RateLimitConfig, persist_key: str) -> bool:
    return get_runtime().limiter.increment_and_persist(store_name, context_id, config, persist_key)


async def load_rate_limits(store_name: str, persist_key: str) -> int:
    """Seed the limiter namespace ``store_name`` from ``persist_key`` (call once at startup)."""
    return await get_runtime().limiter.load_namespace(store_name, persist_key)


def is_operation_allowed_with_circuit_breaker(
    store_name: str,
    context_id: str,
    rate_limit_config: RateLimitConfig,
    circuit_config: CircuitBreakerConfig | None = None,
) -> bool:
    return get_runtime().breaker.is_operation_allowed(store_name, context_id, rate_limit_config, circuit_config)


def record_operation_failure(
    store_name: str,
    context_id: str,
    circuit_config: CircuitBreakerConfig | None = None,
) -> None:
    get_runtime().breaker.record_operation_failure(store_name, context_id, circuit_config)


def record_operation_success(store_name: str, context_id: str) -> None:
    get_runtime().breaker.record_operation_success(store_name, context_id)


def reset_circuit_breaker(store_name: str, context_id: str) -> None:
    get_runtime().breaker.reset(store_name, context_id)


def get_circuit_breaker_state(store_name: str, context_id: str) -> CircuitBreakerState:
    return get_runtime().breaker.get_state(store_name, context_id)


# ── Datasets ────────────────────────────────────────────────────────


def register_dataset(spec: DatasetSpec[Any]) -> None:
    get_runtime().cache.register_dataset(spec)


async def get_with_fallback(dataset_key: str) -> FallbackResult[Any]:
    return await get_runtime().cache.get_with_fallback(dataset_key)


async def clear_cache(dataset_key: str) -> None:
    await get_runtime().cache.clear_cache(dataset_key)


async def refresh_dataset(dataset_key: str, force: bool = False) -> RefreshResult:
    return await get_runtime().coordinator.refresh(dataset_key, force)
