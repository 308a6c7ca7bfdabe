"""Cross-process mutual exclusion on top of an ``IObjectStore``.

Acquisition is three steps, and every retry starts again at the first:

1. Read the key. A live entry fails fast; an expired one is deleted and
   treated as absent. An unreadable one is treated as absent but left alone.
2. Write our entry with ``create_only=True``; the store rejects the write if
   another holder created the key in between.
3. Read the key back and compare holder id and timestamp, so a holder whose
   write was silently superseded does not believe it owns the lock.

Expiry is cooperative: nothing evicts a holder, but any acquirer that sees
an entry older than its TTL may delete it and take over.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
import os
import random
from typing import AsyncIterator, Callable

from refresh_guard.core.clock import monotonic_ms
from refresh_guard.core.config import DEFAULT_LOCK_TTL_MS
from refresh_guard.exceptions import ContentionFailure, SnapshotDecodeError, TransportFailure
from refresh_guard.locking.models import LockEntry, LockResult
from refresh_guard.persistence.json_io import read_model, write_model
from refresh_guard.persistence.protocols import IObjectStore, PutOutcome

log = logging.getLogger(__name__)


def backoff_delay_ms(attempt: int) -> int:
    """Exponential backoff with up to 49 ms of jitter: 150, 200, 300, 500, ..."""
    return 100 + 2**attempt * 50 + random.randint(0, 49)


async def _discard(store: IObjectStore, lock_key: str) -> None:
    try:
        await store.delete(lock_key)
    except TransportFailure as e:
        log.debug("Best-effort delete of %s failed: %s", lock_key, e)


async def acquire_lock(
    store: IObjectStore,
    lock_key: str,
    holder_id: str,
    ttl_ms: int = DEFAULT_LOCK_TTL_MS,
    max_retries: int = 3,
    *,
    clock: Callable[[], int] = monotonic_ms,
) -> LockResult:
    """Try to take ``lock_key`` for ``holder_id``.

    Never raises for store trouble: the outcome, including the reason for a
    failure, is reported in the returned ``LockResult``.
    """
    attempt = 0
    while True:
        try:
            existing = await read_model(store, lock_key, LockEntry)
        except SnapshotDecodeError as e:
            # Left in place: the create-only write decides, and stale-lock
            # cleanup removes entries that stay unreadable.
            log.warning("Unreadable lock entry at %s, treating as absent: %s", lock_key, e)
            existing = None
        except TransportFailure as e:
            # A wedged store must not deadlock every process.
            log.warning("Could not read lock %s, assuming it is free: %s", lock_key, e)
            existing = None

        if existing is not None:
            now = clock()
            if not existing.is_expired(now):
                log.debug(
                    "Lock %s held by %s (age %dms, ttl %dms)",
                    lock_key,
                    existing.holder_id,
                    existing.age_ms(now),
                    existing.ttl_ms,
                )
                return LockResult(
                    success=False,
                    reason=f"Lock held by {existing.holder_id}, expires in {existing.expires_in_ms(now)}ms",
                    holder=existing.holder_id,
                )
            log.info(
                "Found expired lock %s held by %s (age %dms), deleting before re-acquire",
                lock_key,
                existing.holder_id,
                existing.age_ms(now),
            )
            await _discard(store, lock_key)

        entry = LockEntry(holder_id=holder_id, acquired_at=clock(), ttl_ms=ttl_ms)
        try:
            outcome = await write_model(store, lock_key, entry, create_only=True)
            write_error = "key was created by another holder" if outcome is PutOutcome.CONFLICT else None
        except TransportFailure as e:
            write_error = str(e)

        if write_error is not None:
            if attempt < max_retries:
                delay = backoff_delay_ms(attempt)
                log.debug("Lock %s write failed (%s), retry %d in %dms", lock_key, write_error, attempt + 1, delay)
                await asyncio.sleep(delay / 1000)
                attempt += 1
                continue
            return LockResult(
                success=False,
                reason=f"Failed to write lock after {max_retries} retries: {write_error}",
            )

        try:
            current = await read_model(store, lock_key, LockEntry)
        except (TransportFailure, SnapshotDecodeError) as e:
            log.warning("Could not verify ownership of %s, releasing: %s", lock_key, e)
            await _discard(store, lock_key)
            return LockResult(success=False, reason=f"Failed to verify lock ownership: {e}")

        if current is not None and current.holder_id == holder_id and current.acquired_at == entry.acquired_at:
            log.info("Lock %s acquired by %s", lock_key, holder_id)
            return LockResult(success=True, entry=entry, holder=holder_id)

        winner = current.holder_id if current is not None else None
        log.debug("Lost race for %s to %s", lock_key, winner)
        return LockResult(success=False, reason=f"Lost race to {winner}", holder=winner)


async def release_lock(
    store: IObjectStore,
    lock_key: str,
    holder_id: str,
    force: bool = False,
) -> None:
    """Delete ``lock_key`` if ``holder_id`` owns it, or unconditionally with ``force``.

    Raises:
        TransportFailure: The store could not be read or written.
    """
    try:
        existing = await read_model(store, lock_key, LockEntry)
    except SnapshotDecodeError:
        if not force:
            log.warning("Lock %s holds an unreadable entry; use force to remove it", lock_key)
            return
        await store.delete(lock_key)
        log.info("Unreadable lock %s force-released", lock_key)
        return

    if existing is None:
        return
    if existing.holder_id == holder_id or force:
        await store.delete(lock_key)
        log.info("Lock %s %s by %s", lock_key, "force-released" if force else "released", holder_id)
        return
    log.warning("%s attempted to release lock %s owned by %s", holder_id, lock_key, existing.holder_id)


async def cleanup_stale_lock(
    store: IObjectStore,
    lock_key: str,
    *,
    clock: Callable[[], int] = monotonic_ms,
) -> bool:
    """Delete ``lock_key`` if its entry is expired or unreadable.

    Returns True when an entry was removed. Safe to call repeatedly.

    Raises:
        TransportFailure: The store could not be read or written.
    """
    try:
        existing = await read_model(store, lock_key, LockEntry)
    except SnapshotDecodeError as e:
        log.warning("Removing unreadable lock entry %s: %s", lock_key, e)
        await store.delete(lock_key)
        return True

    if existing is None:
        return False
    now = clock()
    if not existing.is_expired(now):
        return False
    log.info("Releasing stale lock %s held by %s (age %dms)", lock_key, existing.holder_id, existing.age_ms(now))
    await store.delete(lock_key)
    return True


class DistributedLock:
    """A lock key bound to one holder identity.

    Usage::

        lock = DistributedLock(store, "locks/books.lock", ttl_ms=600_000)
        async with lock.held():
            ...  # exclusive section
    """

    def __init__(
        self,
        store: IObjectStore,
        lock_key: str,
        ttl_ms: int = DEFAULT_LOCK_TTL_MS,
        max_retries: int = 3,
        *,
        holder_id: str | None = None,
        clock: Callable[[], int] = monotonic_ms,
    ) -> None:
        self._store = store
        self.lock_key = lock_key
        self.ttl_ms = ttl_ms
        self.max_retries = max_retries
        self._clock = clock
        self.holder_id = holder_id or f"instance-{os.getpid()}-{clock()}"
        self._held = False
        self.last_result: LockResult | None = None

    @property
    def is_held(self) -> bool:
        return self._held

    async def acquire(self) -> bool:
        result = await acquire_lock(
            self._store,
            self.lock_key,
            self.holder_id,
            self.ttl_ms,
            self.max_retries,
            clock=self._clock,
        )
        self.last_result = result
        self._held = result.success
        return result.success

    async def release(self, force: bool = False) -> None:
        try:
            await release_lock(self._store, self.lock_key, self.holder_id, force)
        finally:
            self._held = False

    async def cleanup(self) -> bool:
        return await cleanup_stale_lock(self._store, self.lock_key, clock=self._clock)

    @contextlib.asynccontextmanager
    async def held(self) -> AsyncIterator[LockEntry | None]:
        """Hold the lock for the body of an ``async with`` block.

        Raises:
            ContentionFailure: The lock could not be acquired.
        """
        if not await self.acquire():
            reason = self.last_result.reason if self.last_result is not None else ""
            raise ContentionFailure(self.lock_key, reason or "")
        try:
            yield self.last_result.entry if self.last_result is not None else None
        finally:
            await self.release()
