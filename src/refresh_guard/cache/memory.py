"""In-process LRU of dataset entries with async safety."""

from __future__ import annotations

import asyncio
import dataclasses
from collections import OrderedDict
from typing import Any

from refresh_guard.cache.models import CacheEntry


class DatasetMemoryCache:
    """OrderedDict-based LRU of ``CacheEntry`` objects.

    Entries are never expired here: a stale entry is still the last known
    value and the tiered cache decides whether it may be served. Guarded by
    an ``asyncio.Lock`` for concurrent coroutine access.
    """

    def __init__(self, max_entries: int = 100) -> None:
        self._max_entries = max_entries
        self._store: OrderedDict[str, CacheEntry[Any]] = OrderedDict()
        self._lock = asyncio.Lock()

    async def get(self, dataset_key: str) -> CacheEntry[Any] | None:
        """Return a copy of the entry, fresh or not. None if absent."""
        async with self._lock:
            entry = self._store.get(dataset_key)
            if entry is None:
                return None
            self._store.move_to_end(dataset_key)
            return dataclasses.replace(entry)

    async def put(self, entry: CacheEntry[Any]) -> None:
        """Store an entry, evicting the least recently used beyond capacity."""
        async with self._lock:
            self._store.pop(entry.dataset_key, None)
            self._store[entry.dataset_key] = dataclasses.replace(entry)
            while len(self._store) > self._max_entries:
                self._store.popitem(last=False)

    async def touch(self, dataset_key: str, fetched_at: int) -> None:
        """Mark an entry as just confirmed current without replacing its value."""
        async with self._lock:
            entry = self._store.get(dataset_key)
            if entry is not None:
                entry.fetched_at = fetched_at
                self._store.move_to_end(dataset_key)

    async def invalidate(self, dataset_key: str) -> None:
        async with self._lock:
            self._store.pop(dataset_key, None)

    async def clear(self) -> None:
        async with self._lock:
            self._store.clear()

    def __len__(self) -> int:
        return len(self._store)
