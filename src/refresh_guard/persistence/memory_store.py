"""In-memory object store: dict-backed, for tests and single-process dev."""

from __future__ import annotations

import logging
from datetime import datetime, timezone

from refresh_guard.persistence.protocols import ObjectMetadata, PutOutcome

log = logging.getLogger(__name__)


class MemoryObjectStore:
    """Stores objects in a plain dict. Nothing touches disk.

    Single-put visibility is atomic and reads always see the latest write,
    so this store is strictly stronger than the ones it stands in for.
    """

    def __init__(self) -> None:
        self._objects: dict[str, tuple[bytes, datetime]] = {}

    async def get(self, key: str) -> bytes | None:
        entry = self._objects.get(key)
        return entry[0] if entry is not None else None

    async def put(self, key: str, data: bytes, *, create_only: bool = False) -> PutOutcome:
        if create_only and key in self._objects:
            log.debug("Create-only put rejected for existing key %s", key)
            return PutOutcome.CONFLICT
        self._objects[key] = (bytes(data), datetime.now(timezone.utc))
        return PutOutcome.WRITTEN

    async def delete(self, key: str) -> None:
        self._objects.pop(key, None)

    async def metadata(self, key: str) -> ObjectMetadata | None:
        entry = self._objects.get(key)
        if entry is None:
            return None
        data, modified = entry
        return ObjectMetadata(last_modified=modified, size=len(data))

    def keys(self, prefix: str = "") -> list[str]:
        return sorted(k for k in self._objects if k.startswith(prefix))
