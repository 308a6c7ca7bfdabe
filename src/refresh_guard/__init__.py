"""refresh-guard: coordinated dataset refreshes over a shared object store.

A small infrastructure layer for horizontally scaled processes that share
expensive or rate-limited datasets::

    from refresh_guard import DatasetSpec, get_with_fallback, refresh_dataset, register_dataset

    register_dataset(DatasetSpec(key="books", fetch_origin=fetch_books))
    await refresh_dataset("books")          # one process at a time, via a distributed lock
    result = await get_with_fallback("books")
    if result.is_fallback:
        ...  # every upstream tier failed; result.value is the last known value

Components (all usable on their own):

- ``refresh_guard.persistence``: object stores (memory, file, S3)
- ``refresh_guard.locking``: distributed lock
- ``refresh_guard.resilience``: rate limiter and circuit breaker
- ``refresh_guard.cache``: tiered cache and snapshots
- ``refresh_guard.refresh``: refresh coordinator
"""

from __future__ import annotations

from refresh_guard.cache import DatasetSpec, FallbackResult
from refresh_guard.core.config import AppSettings
from refresh_guard.exceptions import (
    ConfigurationFault,
    ContentionFailure,
    RefreshGuardError,
    SnapshotDecodeError,
    TimeoutFault,
    TransportFailure,
)
from refresh_guard.locking import DistributedLock, LockEntry, LockResult
from refresh_guard.refresh import RefreshResult, RefreshStatus
from refresh_guard.resilience import (
    API_ENDPOINT_RATE_LIMIT,
    API_ENDPOINT_STORE_NAME,
    ORIGIN_FETCH_CONTEXT,
    ORIGIN_FETCH_RATE_LIMIT,
    ORIGIN_FETCH_STORE_NAME,
    CircuitBreakerConfig,
    CircuitBreakerState,
    CircuitState,
    RateLimitConfig,
)
from refresh_guard.runtime import (
    acquire_lock,
    cleanup_lock,
    clear_cache,
    get_circuit_breaker_state,
    get_runtime,
    get_with_fallback,
    increment_and_persist,
    is_operation_allowed,
    is_operation_allowed_with_circuit_breaker,
    load_rate_limits,
    record_operation_failure,
    record_operation_success,
    refresh_dataset,
    register_dataset,
    release_lock,
    reset_circuit_breaker,
    reset_runtime,
    wait_for_permit,
)

__version__ = "0.1.0"

__all__ = [
    "API_ENDPOINT_RATE_LIMIT",
    "API_ENDPOINT_STORE_NAME",
    "ORIGIN_FETCH_CONTEXT",
    "ORIGIN_FETCH_RATE_LIMIT",
    "ORIGIN_FETCH_STORE_NAME",
    "AppSettings",
    "CircuitBreakerConfig",
    "CircuitBreakerState",
    "CircuitState",
    "ConfigurationFault",
    "ContentionFailure",
    "DatasetSpec",
    "DistributedLock",
    "FallbackResult",
    "LockEntry",
    "LockResult",
    "RateLimitConfig",
    "RefreshGuardError",
    "RefreshResult",
    "RefreshStatus",
    "SnapshotDecodeError",
    "TimeoutFault",
    "TransportFailure",
    "acquire_lock",
    "cleanup_lock",
    "clear_cache",
    "get_circuit_breaker_state",
    "get_runtime",
    "get_with_fallback",
    "increment_and_persist",
    "is_operation_allowed",
    "is_operation_allowed_with_circuit_breaker",
    "load_rate_limits",
    "record_operation_failure",
    "record_operation_success",
    "refresh_dataset",
    "register_dataset",
    "release_lock",
    "reset_circuit_breaker",
    "reset_runtime",
    "wait_for_permit",
]
