"""Refresh coordinator: one process at a time rewrites each dataset snapshot.

Flow for ``refresh(dataset)``::

    acquire lock -> breaker check -> origin fetch -> publish snapshot
    -> invalidate in-process cache -> release lock -> heartbeat (background)

Lock contention skips the cycle instead of queuing behind the holder.
"""

from __future__ import annotations

import asyncio
import contextlib
import dataclasses
import logging
import os
from enum import Enum
from typing import Any, Callable

import structlog

from refresh_guard.cache.models import DatasetSpec, Heartbeat
from refresh_guard.cache.snapshot import SnapshotWriter
from refresh_guard.cache.tiered import TieredCache
from refresh_guard.core.background import spawn_background
from refresh_guard.core.clock import monotonic_ms
from refresh_guard.core.config import LockConfig
from refresh_guard.exceptions import TransportFailure
from refresh_guard.locking.distributed_lock import DistributedLock, cleanup_stale_lock, release_lock
from refresh_guard.persistence.protocols import IObjectStore
from refresh_guard.resilience.circuit_breaker import CircuitBreakerRegistry
from refresh_guard.resilience.models import ORIGIN_FETCH_RATE_LIMIT, ORIGIN_FETCH_STORE_NAME, RateLimitConfig

log = logging.getLogger(__name__)


class RefreshStatus(str, Enum):
    REFRESHED = "refreshed"
    UNCHANGED = "unchanged"
    SKIPPED = "skipped"  # another process holds the lock, or the breaker said no
    FAILED = "failed"


@dataclasses.dataclass(frozen=True)
class RefreshResult:
    dataset_key: str
    status: RefreshStatus
    reason: str | None = None
    version: str | None = None

    @property
    def changed(self) -> bool:
        return self.status == RefreshStatus.REFRESHED


class RefreshCoordinator:
    """Runs guarded refreshes for the datasets registered on a ``TieredCache``."""

    def __init__(
        self,
        store: IObjectStore,
        cache: TieredCache,
        writer: SnapshotWriter,
        breaker: CircuitBreakerRegistry,
        lock_config: LockConfig | None = None,
        *,
        origin_rate_limit: RateLimitConfig = ORIGIN_FETCH_RATE_LIMIT,
        holder_id: str | None = None,
        clock: Callable[[], int] = monotonic_ms,
    ) -> None:
        self._store = store
        self._cache = cache
        self._writer = writer
        self._breaker = breaker
        self._lock_config = lock_config or LockConfig()
        self._origin_rate_limit = origin_rate_limit
        self._clock = clock
        self.holder_id = holder_id or f"instance-{os.getpid()}-{clock()}"
        self._inflight: dict[str, asyncio.Task[RefreshResult]] = {}
        self._held: set[str] = set()
        self._cleanup_task: asyncio.Task[None] | None = None

    def lock_key_for(self, dataset_key: str) -> str:
        prefix = self._lock_config.key_prefix.strip("/")
        return f"{prefix}/{dataset_key}.lock" if prefix else f"{dataset_key}.lock"

    @property
    def held_locks(self) -> frozenset[str]:
        return frozenset(self._held)

    # ── Refresh ─────────────────────────────────────────────────────

    async def refresh(self, dataset_key: str, force: bool = False) -> RefreshResult:
        """Refresh one dataset. Concurrent calls in this process share one run.

        Never raises for lock, origin or store trouble; the outcome is in the
        returned ``RefreshResult``.

        Raises:
            KeyError: ``dataset_key`` was never registered.
        """
        spec = self._cache.get_spec(dataset_key)
        task = self._inflight.get(dataset_key)
        if task is None:
            task = asyncio.get_running_loop().create_task(
                self._run(spec, force), name=f"refresh:{dataset_key}"
            )
            self._inflight[dataset_key] = task
            task.add_done_callback(lambda t: self._forget_inflight(dataset_key, t))
        else:
            log.debug("Refresh of %s already in flight; joining it", dataset_key)
        # One caller's cancellation must not cancel the run the others share.
        return await asyncio.shield(task)

    def _forget_inflight(self, dataset_key: str, task: asyncio.Task[RefreshResult]) -> None:
        if self._inflight.get(dataset_key) is task:
            del self._inflight[dataset_key]

    async def _run(self, spec: DatasetSpec[Any], force: bool) -> RefreshResult:
        lock_key = self.lock_key_for(spec.key)
        lock = DistributedLock(
            self._store,
            lock_key,
            ttl_ms=spec.lock_ttl_ms or self._lock_config.ttl_ms,
            max_retries=self._lock_config.max_retries,
            holder_id=self.holder_id,
            clock=self._clock,
        )
        with structlog.contextvars.bound_contextvars(dataset=spec.key, lock_key=lock_key):
            if not await lock.acquire():
                reason = lock.last_result.reason if lock.last_result is not None else None
                log.info("Skipping refresh of %s: %s", spec.key, reason)
                return RefreshResult(spec.key, RefreshStatus.SKIPPED, reason=reason)

            self._held.add(lock_key)
            try:
                result = await self._refresh_locked(spec, force)
            finally:
                self._held.discard(lock_key)
                try:
                    await lock.release()
                except TransportFailure as e:
                    log.warning("Could not release %s; it will expire after its TTL: %s", lock_key, e)

            self._record_heartbeat(spec.key, result)
            return result

    async def _refresh_locked(self, spec: DatasetSpec[Any], force: bool) -> RefreshResult:
        if spec.fetch_origin is None:
            return RefreshResult(spec.key, RefreshStatus.FAILED, reason="no origin fetcher configured")

        rate_limit = spec.rate_limit or self._origin_rate_limit
        if not self._breaker.is_operation_allowed(ORIGIN_FETCH_STORE_NAME, spec.context_id, rate_limit, spec.circuit):
            log.info("Skipping refresh of %s: origin circuit open or rate limited", spec.key)
            return RefreshResult(spec.key, RefreshStatus.SKIPPED, reason="origin circuit open or rate limited")

        try:
            value = await spec.fetch_origin()
        except Exception as e:
            # Origin fetchers are caller code; report, never propagate.
            log.warning("Origin fetch for %s failed: %s", spec.key, e, exc_info=True)
            self._breaker.record_operation_failure(ORIGIN_FETCH_STORE_NAME, spec.context_id, spec.circuit)
            return RefreshResult(spec.key, RefreshStatus.FAILED, reason=f"origin fetch failed: {e}")
        self._breaker.record_operation_success(ORIGIN_FETCH_STORE_NAME, spec.context_id)

        try:
            published = await self._writer.publish(spec, value, force=force)
        except TransportFailure as e:
            log.warning("Publishing snapshot for %s failed: %s", spec.key, e)
            return RefreshResult(spec.key, RefreshStatus.FAILED, reason=str(e))
        except Exception as e:
            # encode and count are caller code, like the origin fetcher.
            log.warning("Encoding snapshot for %s failed: %s", spec.key, e, exc_info=True)
            return RefreshResult(spec.key, RefreshStatus.FAILED, reason=f"snapshot encode failed: {e}")

        await self._cache.clear_cache(spec.key)
        status = RefreshStatus.REFRESHED if published.changed or force else RefreshStatus.UNCHANGED
        return RefreshResult(spec.key, status, version=published.pointer.version)

    def _record_heartbeat(self, dataset_key: str, result: RefreshResult) -> None:
        heartbeat = Heartbeat(
            run_at=self._clock(),
            success=result.status in (RefreshStatus.REFRESHED, RefreshStatus.UNCHANGED),
            change_detected=result.status == RefreshStatus.REFRESHED,
            error=result.reason if result.status == RefreshStatus.FAILED else None,
        )
        # Detached: the refresh outcome does not depend on the heartbeat write.
        spawn_background(
            self._writer.write_heartbeat(dataset_key, heartbeat),
            name=f"heartbeat:{dataset_key}",
        )

    # ── Stale-lock cleanup ──────────────────────────────────────────

    async def cleanup_stale_locks(self) -> list[str]:
        """Delete expired lock entries for every registered dataset.

        Locks this process currently holds are skipped. Returns the removed keys.
        """
        removed: list[str] = []
        for dataset_key in self._cache.dataset_keys():
            lock_key = self.lock_key_for(dataset_key)
            if lock_key in self._held:
                continue
            try:
                if await cleanup_stale_lock(self._store, lock_key, clock=self._clock):
                    removed.append(lock_key)
            except TransportFailure as e:
                log.warning("Stale-lock cleanup of %s failed: %s", lock_key, e)
        return removed

    async def _cleanup_loop(self) -> None:
        interval = self._lock_config.cleanup_interval_ms / 1000
        while True:
            await asyncio.sleep(interval)
            await self.cleanup_stale_locks()

    async def start(self) -> None:
        """Run one cleanup pass now, then keep cleaning up periodically."""
        if self._cleanup_task is not None:
            return
        await self.cleanup_stale_locks()
        self._cleanup_task = asyncio.get_running_loop().create_task(
            self._cleanup_loop(), name="refresh-guard:lock-cleanup"
        )
        log.info(
            "Lock cleanup every %dms for %d dataset(s)",
            self._lock_config.cleanup_interval_ms,
            len(self._cache.dataset_keys()),
        )

    async def stop(self) -> None:
        """Stop periodic cleanup, let in-flight refreshes finish and release held locks."""
        if self._cleanup_task is not None:
            self._cleanup_task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._cleanup_task
            self._cleanup_task = None

        if self._inflight:
            await asyncio.gather(*self._inflight.values(), return_exceptions=True)

        for lock_key in sorted(self._held):
            try:
                await release_lock(self._store, lock_key, self.holder_id)
            except TransportFailure as e:
                log.warning("Could not release %s on shutdown: %s", lock_key, e)
        self._held.clear()
