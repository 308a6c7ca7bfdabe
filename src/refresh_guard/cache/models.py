"""Data models for the tiered dataset cache."""

from __future__ import annotations

import dataclasses
import json
from collections.abc import Sized
from enum import Enum
from typing import Any, Awaitable, Callable, Generic, TypeVar

from pydantic import BaseModel

from refresh_guard.resilience.models import CircuitBreakerConfig, RateLimitConfig

T = TypeVar("T")


class CacheSource(str, Enum):
    MEMORY = "memory"
    SNAPSHOT = "snapshot"
    ORIGIN = "origin"


@dataclasses.dataclass
class CacheEntry(Generic[T]):
    """An in-process dataset value and where it came from."""

    dataset_key: str
    value: T
    fetched_at: int  # epoch ms
    source: CacheSource
    version: str | None = None

    def age_ms(self, now: int) -> int:
        return now - self.fetched_at

    def is_fresh(self, now: int, ttl_ms: int) -> bool:
        return self.age_ms(now) < ttl_ms


@dataclasses.dataclass(frozen=True)
class FallbackResult(Generic[T]):
    """What a reader gets back from ``get_with_fallback``.

    ``is_fallback`` is True only when every upstream tier failed and the
    value is the last one known to this process (or the dataset's empty
    value). ``source`` is None when no value was ever loaded.
    """

    value: T
    is_fallback: bool
    source: CacheSource | None = None
    fetched_at: int | None = None
    version: str | None = None

    @classmethod
    def from_entry(cls, entry: CacheEntry[T], *, is_fallback: bool = False) -> FallbackResult[T]:
        return cls(
            value=entry.value,
            is_fallback=is_fallback,
            source=entry.source,
            fetched_at=entry.fetched_at,
            version=entry.version,
        )


class SnapshotPointer(BaseModel):
    """The ``latest.json`` record naming the current snapshot payload."""

    version: str
    key: str
    generated_at: int  # epoch ms
    count: int = 0


class Heartbeat(BaseModel):
    """Outcome of the most recent refresh attempt for a dataset."""

    run_at: int  # epoch ms
    success: bool
    change_detected: bool
    error: str | None = None


def _json_encode(value: Any) -> bytes:
    return json.dumps(value, sort_keys=True, separators=(",", ":")).encode("utf-8")


def _json_decode(raw: bytes) -> Any:
    return json.loads(raw)


def _default_count(value: Any) -> int:
    return len(value) if isinstance(value, Sized) else 0


@dataclasses.dataclass
class DatasetSpec(Generic[T]):
    """Everything the cache and refresh coordinator need to know about one dataset.

    ``encode`` must be deterministic: the snapshot version is a hash of its
    output, so equal values must encode to equal bytes. The JSON defaults
    sort keys for that reason.
    """

    key: str
    empty: Callable[[], T] = list  # type: ignore[assignment]
    encode: Callable[[T], bytes] = _json_encode
    decode: Callable[[bytes], T] = _json_decode
    fetch_origin: Callable[[], Awaitable[T]] | None = None
    count: Callable[[T], int] = _default_count
    freshness_ttl_ms: int | None = None
    max_staleness_ms: int | None = None
    rate_limit: RateLimitConfig | None = None
    circuit: CircuitBreakerConfig | None = None
    breaker_context: str | None = None
    lock_ttl_ms: int | None = None

    @property
    def context_id(self) -> str:
        """Circuit breaker context for this dataset's origin fetches."""
        return self.breaker_context or self.key
