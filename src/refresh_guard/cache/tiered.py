"""Read path: in-process cache, then durable snapshot, then (optionally) origin.

``get_with_fallback`` never raises for store or origin trouble. When every
tier fails, the caller gets the last value this process knew (or the
dataset's empty value) with ``is_fallback=True`` so it can decide how to
present stale data.
"""

from __future__ import annotations

import logging
from typing import Any, Awaitable, Callable

from refresh_guard.cache.memory import DatasetMemoryCache
from refresh_guard.cache.models import (
    CacheEntry,
    CacheSource,
    DatasetSpec,
    FallbackResult,
    SnapshotPointer,
)
from refresh_guard.cache.snapshot import SnapshotPaths
from refresh_guard.core.clock import monotonic_ms
from refresh_guard.exceptions import SnapshotDecodeError, TransportFailure
from refresh_guard.persistence.json_io import read_model
from refresh_guard.persistence.protocols import IObjectStore
from refresh_guard.resilience.circuit_breaker import CircuitBreakerRegistry
from refresh_guard.resilience.models import ORIGIN_FETCH_RATE_LIMIT, ORIGIN_FETCH_STORE_NAME, RateLimitConfig

log = logging.getLogger(__name__)


class TieredCache:
    """Per-dataset read path with an explicit fallback signal."""

    def __init__(
        self,
        store: IObjectStore,
        breaker: CircuitBreakerRegistry,
        paths: SnapshotPaths,
        *,
        memory: DatasetMemoryCache | None = None,
        freshness_ttl_ms: int = 5 * 60 * 1000,
        origin_rate_limit: RateLimitConfig = ORIGIN_FETCH_RATE_LIMIT,
        clock: Callable[[], int] = monotonic_ms,
    ) -> None:
        self._store = store
        self._breaker = breaker
        self._paths = paths
        self._memory = memory if memory is not None else DatasetMemoryCache()
        self._freshness_ttl_ms = freshness_ttl_ms
        self._origin_rate_limit = origin_rate_limit
        self._clock = clock
        self._datasets: dict[str, DatasetSpec[Any]] = {}

    # ── Registry ────────────────────────────────────────────────────

    def register_dataset(self, spec: DatasetSpec[Any]) -> None:
        if spec.key in self._datasets:
            log.warning("Dataset %s already registered; replacing", spec.key)
        self._datasets[spec.key] = spec

    def get_spec(self, dataset_key: str) -> DatasetSpec[Any]:
        try:
            return self._datasets[dataset_key]
        except KeyError:
            raise KeyError(f"Unknown dataset: {dataset_key!r}") from None

    def dataset_keys(self) -> list[str]:
        return sorted(self._datasets)

    # ── Read path ───────────────────────────────────────────────────

    async def get_with_fallback(self, dataset_key: str) -> FallbackResult[Any]:
        """Return the dataset value from the first tier that can serve it.

        Raises:
            KeyError: ``dataset_key`` was never registered.
        """
        spec = self.get_spec(dataset_key)
        now = self._clock()
        entry = await self._memory.get(dataset_key)
        ttl = spec.freshness_ttl_ms if spec.freshness_ttl_ms is not None else self._freshness_ttl_ms
        if entry is not None and entry.is_fresh(now, ttl):
            return FallbackResult.from_entry(entry)

        try:
            pointer = await read_model(self._store, self._paths.pointer(dataset_key), SnapshotPointer)
            if pointer is None:
                # Nothing published yet: a normal state on first deploy.
                if entry is not None:
                    return FallbackResult.from_entry(entry)
                log.debug("No snapshot published for %s yet", dataset_key)
                return FallbackResult(value=spec.empty(), is_fallback=False)

            if entry is not None and entry.version == pointer.version:
                await self._memory.touch(dataset_key, now)
                entry.fetched_at = now
                return FallbackResult.from_entry(entry)

            loaded = await self._load_snapshot(spec, pointer, now)
        except (TransportFailure, SnapshotDecodeError) as e:
            log.warning("Snapshot read failed for %s: %s", dataset_key, e)
            return await self._fallback(spec, entry)

        await self._memory.put(loaded)
        return FallbackResult.from_entry(loaded)

    async def clear_cache(self, dataset_key: str) -> None:
        """Drop the in-process entry so the next read consults the snapshot."""
        await self._memory.invalidate(dataset_key)

    async def _load_snapshot(
        self,
        spec: DatasetSpec[Any],
        pointer: SnapshotPointer,
        now: int,
    ) -> CacheEntry[Any]:
        raw = await self._store.get(pointer.key)
        if raw is None:
            raise SnapshotDecodeError(pointer.key, "pointer names a missing snapshot")
        try:
            value = spec.decode(raw)
        except Exception as e:
            # decode is caller code; any failure means an unusable snapshot.
            raise SnapshotDecodeError(pointer.key, str(e)) from e
        return CacheEntry(
            dataset_key=spec.key,
            value=value,
            fetched_at=now,
            source=CacheSource.SNAPSHOT,
            version=pointer.version,
        )

    async def _fallback(self, spec: DatasetSpec[Any], entry: CacheEntry[Any] | None) -> FallbackResult[Any]:
        if spec.fetch_origin is not None:
            fetched = await self._fetch_origin(spec, spec.fetch_origin)
            if fetched is not None:
                return FallbackResult.from_entry(fetched)

        if entry is None:
            log.warning("Serving empty fallback for %s: no value known to this process", spec.key)
            return FallbackResult(value=spec.empty(), is_fallback=True)

        age = entry.age_ms(self._clock())
        if spec.max_staleness_ms is not None and age > spec.max_staleness_ms:
            log.error(
                "Serving %s from fallback %dms old, beyond max staleness of %dms",
                spec.key,
                age,
                spec.max_staleness_ms,
            )
        else:
            log.warning("Serving %s from fallback (%dms old)", spec.key, age)
        return FallbackResult.from_entry(entry, is_fallback=True)

    async def _fetch_origin(
        self,
        spec: DatasetSpec[Any],
        fetch: Callable[[], Awaitable[Any]],
    ) -> CacheEntry[Any] | None:
        rate_limit = spec.rate_limit or self._origin_rate_limit
        if not self._breaker.is_operation_allowed(
            ORIGIN_FETCH_STORE_NAME, spec.context_id, rate_limit, spec.circuit
        ):
            log.info("Origin fetch for %s rejected by circuit breaker", spec.key)
            return None

        try:
            value = await fetch()
        except Exception as e:
            # Origin fetchers are caller code; any failure degrades to fallback.
            log.warning("Origin fetch for %s failed: %s", spec.key, e, exc_info=True)
            self._breaker.record_operation_failure(ORIGIN_FETCH_STORE_NAME, spec.context_id, spec.circuit)
            return None

        self._breaker.record_operation_success(ORIGIN_FETCH_STORE_NAME, spec.context_id)
        entry = CacheEntry(
            dataset_key=spec.key,
            value=value,
            fetched_at=self._clock(),
            source=CacheSource.ORIGIN,
        )
        await self._memory.put(entry)
        return entry
