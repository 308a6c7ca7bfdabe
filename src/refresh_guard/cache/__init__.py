"""Tiered dataset cache and durable snapshots."""

from refresh_guard.cache.memory import DatasetMemoryCache
from refresh_guard.cache.models import (
    CacheEntry,
    CacheSource,
    DatasetSpec,
    FallbackResult,
    Heartbeat,
    SnapshotPointer,
)
from refresh_guard.cache.snapshot import PublishResult, SnapshotPaths, SnapshotWriter, compute_version
from refresh_guard.cache.tiered import TieredCache

__all__ = [
    "CacheEntry",
    "CacheSource",
    "DatasetMemoryCache",
    "DatasetSpec",
    "FallbackResult",
    "Heartbeat",
    "PublishResult",
    "SnapshotPaths",
    "SnapshotPointer",
    "SnapshotWriter",
    "TieredCache",
    "compute_version",
]
