"""Fixed-window request counter keyed by (store name, context id).

Counters are process-local. Across a fleet each process enforces its own
budget, so the effective limit is per-process, not global.

A limiter built with an object store can also carry a namespace across
restarts: ``load_namespace`` seeds it from a stored document at startup and
``increment_and_persist`` writes it back in the background after each
allowed request.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Callable

from refresh_guard.core.background import spawn_background
from refresh_guard.core.clock import monotonic_ms
from refresh_guard.exceptions import ConfigurationFault, SnapshotDecodeError, TimeoutFault, TransportFailure
from refresh_guard.persistence.json_io import read_model, write_model
from refresh_guard.persistence.protocols import IObjectStore
from refresh_guard.resilience.models import (
    PersistedRateLimits,
    PersistedWindow,
    RateLimitConfig,
    RateLimitRecord,
)

log = logging.getLogger(__name__)

_MIN_POLL_MS = 10
_MAX_POLL_MS = 200
# Past this remaining wait, sleep straight to the window reset.
_LONG_WAIT_MS = 1000
_RESET_BUFFER_MS = 50


def validate_config(config: RateLimitConfig) -> None:
    """Raise ``ConfigurationFault`` unless both limits are positive."""
    if config.max_requests <= 0:
        raise ConfigurationFault(f"Invalid max_requests: {config.max_requests}. Must be greater than 0.")
    if config.window_ms <= 0:
        raise ConfigurationFault(f"Invalid window_ms: {config.window_ms}. Must be greater than 0.")


class RateLimiter:
    """Per-namespace fixed-window limiter.

    ``is_operation_allowed`` is synchronous and never suspends, so it is safe
    to call from anywhere on the event loop. ``wait_for_permit`` is the
    blocking variant and sleeps with ``asyncio.sleep`` between checks.
    """

    def __init__(
        self,
        clock: Callable[[], int] = monotonic_ms,
        default_poll_interval_ms: int = 100,
        store: IObjectStore | None = None,
    ) -> None:
        self._clock = clock
        self._store = store
        self._default_poll_interval_ms = default_poll_interval_ms
        self._records: dict[str, dict[str, RateLimitRecord]] = {}

    def is_operation_allowed(self, store_name: str, context_id: str, config: RateLimitConfig) -> bool:
        """Count one request against the window; False once the window is full.

        Raises:
            ConfigurationFault: ``max_requests`` or ``window_ms`` is not positive.
        """
        validate_config(config)
        now = self._clock()
        namespace = self._records.setdefault(store_name, {})
        record = namespace.get(context_id)

        if record is None or now > record.reset_at:
            self._collect_expired(namespace, now)
            namespace[context_id] = RateLimitRecord(count=1, reset_at=now + config.window_ms)
            return True

        if record.count < config.max_requests:
            record.count += 1
            return True

        log.debug(
            "Rate limit reached for %s/%s (%d per %dms)",
            store_name,
            context_id,
            config.max_requests,
            config.window_ms,
        )
        return False

    async def wait_for_permit(
        self,
        store_name: str,
        context_id: str,
        config: RateLimitConfig,
        poll_interval_ms: int | None = None,
        timeout_ms: int | None = None,
    ) -> None:
        """Suspend until a request is allowed, consuming it.

        Raises:
            ConfigurationFault: Invalid ``config``.
            TimeoutFault: ``timeout_ms`` elapsed before a permit was available.
        """
        poll = poll_interval_ms if poll_interval_ms is not None else self._default_poll_interval_ms
        interval = max(_MIN_POLL_MS, min(poll, config.window_ms / 2, _MAX_POLL_MS))
        deadline = self._clock() + timeout_ms if timeout_ms is not None else None

        while not self.is_operation_allowed(store_name, context_id, config):
            now = self._clock()
            if deadline is not None and now >= deadline:
                raise TimeoutFault(f"Timed out after {timeout_ms}ms waiting for {store_name}/{context_id}")

            record = self._records[store_name][context_id]
            remaining = record.reset_at - now
            delay = remaining + _RESET_BUFFER_MS if remaining > _LONG_WAIT_MS else interval
            if deadline is not None:
                delay = min(delay, deadline - now)
            await asyncio.sleep(max(delay, 0) / 1000)

    # ── Persistence ─────────────────────────────────────────────────

    def increment_and_persist(
        self,
        store_name: str,
        context_id: str,
        config: RateLimitConfig,
        persist_key: str,
    ) -> bool:
        """``is_operation_allowed``, then save the namespace to ``persist_key``.

        The write runs as a background task, so the answer never waits on the
        store; a failed write is logged. Must be called from inside a running
        event loop.

        Raises:
            ConfigurationFault: Invalid ``config``.
            RuntimeError: The limiter was built without an object store.
        """
        store = self._require_store()
        allowed = self.is_operation_allowed(store_name, context_id, config)
        if allowed:
            document = self._snapshot(store_name)
            spawn_background(
                write_model(store, persist_key, document),
                name=f"rate-limit-persist:{store_name}",
            )
        return allowed

    async def load_namespace(self, store_name: str, persist_key: str) -> int:
        """Seed ``store_name`` with the unexpired windows saved at ``persist_key``.

        Windows already counted in this process are kept. A missing or
        unreadable document leaves the namespace empty. Returns the number
        of windows loaded.

        Raises:
            RuntimeError: The limiter was built without an object store.
        """
        store = self._require_store()
        try:
            saved = await read_model(store, persist_key, PersistedRateLimits)
        except (TransportFailure, SnapshotDecodeError) as e:
            log.warning("Could not load rate limits for %s from %s, starting empty: %s", store_name, persist_key, e)
            return 0
        if saved is None:
            return 0

        now = self._clock()
        namespace = self._records.setdefault(store_name, {})
        loaded = 0
        for context_id, window in saved.windows.items():
            if now > window.reset_at or context_id in namespace:
                continue
            namespace[context_id] = RateLimitRecord(count=window.count, reset_at=window.reset_at)
            loaded += 1
        log.info("Loaded %d rate-limit window(s) for %s from %s", loaded, store_name, persist_key)
        return loaded

    def _snapshot(self, store_name: str) -> PersistedRateLimits:
        namespace = self._records.get(store_name, {})
        return PersistedRateLimits(
            store_name=store_name,
            saved_at=self._clock(),
            windows={
                ctx: PersistedWindow(count=rec.count, reset_at=rec.reset_at) for ctx, rec in namespace.items()
            },
        )

    def _require_store(self) -> IObjectStore:
        if self._store is None:
            raise RuntimeError("RateLimiter was built without an object store; persistence is unavailable")
        return self._store

    # ── Inspection ──────────────────────────────────────────────────

    def get_record(self, store_name: str, context_id: str) -> RateLimitRecord | None:
        return self._records.get(store_name, {}).get(context_id)

    def reset(self, store_name: str | None = None) -> None:
        """Forget all windows, or only those of ``store_name``."""
        if store_name is None:
            self._records.clear()
        else:
            self._records.pop(store_name, None)

    @staticmethod
    def _collect_expired(namespace: dict[str, RateLimitRecord], now: int) -> None:
        expired = [ctx for ctx, rec in namespace.items() if now > rec.reset_at]
        for ctx in expired:
            del namespace[ctx]
