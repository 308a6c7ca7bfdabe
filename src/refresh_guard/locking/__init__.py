"""Distributed lock built on the object store's create-only write."""

from refresh_guard.locking.distributed_lock import (
    DistributedLock,
    acquire_lock,
    backoff_delay_ms,
    cleanup_stale_lock,
    release_lock,
)
from refresh_guard.locking.models import LockEntry, LockResult

__all__ = [
    "DistributedLock",
    "LockEntry",
    "LockResult",
    "acquire_lock",
    "backoff_delay_ms",
    "cleanup_stale_lock",
    "release_lock",
]
