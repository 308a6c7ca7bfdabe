"""Object store protocol: the contract every store backend implements."""

from __future__ import annotations

import dataclasses
from datetime import datetime
from enum import Enum
from typing import Protocol, runtime_checkable


class PutOutcome(str, Enum):
    WRITTEN = "written"
    CONFLICT = "conflict"  # create_only write found an existing key


@dataclasses.dataclass(frozen=True)
class ObjectMetadata:
    """What a store knows about an object without reading its body."""

    last_modified: datetime
    size: int = 0


@runtime_checkable
class IObjectStore(Protocol):
    """Protocol for opaque blob stores (memory, local file, S3).

    No transactions and no guaranteed read-after-write across readers.
    I/O errors surface as ``TransportFailure``; a missing key is ``None``,
    never an exception.
    """

    async def get(self, key: str) -> bytes | None:
        """Return the object body, or None if the key does not exist."""
        ...

    async def put(self, key: str, data: bytes, *, create_only: bool = False) -> PutOutcome:
        """Write an object. With ``create_only`` an existing key yields CONFLICT, never an overwrite."""
        ...

    async def delete(self, key: str) -> None:
        """Delete an object (no-op if not found)."""
        ...

    async def metadata(self, key: str) -> ObjectMetadata | None:
        """Return last-modified metadata, or None if the key does not exist."""
        ...
