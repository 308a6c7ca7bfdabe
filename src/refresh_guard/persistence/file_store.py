"""File-based object store with one file per key under a local directory.

Shared by every process on a host. Every write lands in a temp file first.
Regular writes then ``os.replace`` it over the key; ``create_only`` writes
``os.link`` it, which fails if the key exists. Readers only ever see a
complete previous or complete new object.
"""

from __future__ import annotations

import logging
import os
import uuid
from datetime import datetime, timezone
from pathlib import Path

from refresh_guard.exceptions import TransportFailure
from refresh_guard.persistence.protocols import ObjectMetadata, PutOutcome

log = logging.getLogger(__name__)


class FileObjectStore:
    """Stores objects as files in a local directory tree."""

    def __init__(self, base_path: Path) -> None:
        self._base = Path(base_path)
        self._base.mkdir(parents=True, exist_ok=True)

    def _key_path(self, key: str, operation: str) -> Path:
        parts = [p for p in key.replace("\\", "/").split("/") if p not in ("", ".", "..")]
        if not parts:
            raise TransportFailure(operation, key, "key has no usable path segments")
        return self._base.joinpath(*parts)

    async def get(self, key: str) -> bytes | None:
        path = self._key_path(key, "get")
        try:
            return path.read_bytes()
        except FileNotFoundError:
            return None
        except OSError as e:
            raise TransportFailure("get", key, str(e)) from e

    async def put(self, key: str, data: bytes, *, create_only: bool = False) -> PutOutcome:
        path = self._key_path(key, "put")
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            tmp = path.with_name(f".{path.name}.{uuid.uuid4().hex}.tmp")
            tmp.write_bytes(data)
            if create_only:
                # link() publishes the complete file or fails if the key exists.
                try:
                    os.link(tmp, path)
                except FileExistsError:
                    return PutOutcome.CONFLICT
                finally:
                    tmp.unlink(missing_ok=True)
            else:
                os.replace(tmp, path)
        except OSError as e:
            raise TransportFailure("put", key, str(e)) from e
        log.debug("Saved %s to %s", key, path)
        return PutOutcome.WRITTEN

    async def delete(self, key: str) -> None:
        path = self._key_path(key, "delete")
        try:
            path.unlink(missing_ok=True)
        except OSError as e:
            raise TransportFailure("delete", key, str(e)) from e

    async def metadata(self, key: str) -> ObjectMetadata | None:
        path = self._key_path(key, "metadata")
        try:
            stat = path.stat()
        except FileNotFoundError:
            return None
        except OSError as e:
            raise TransportFailure("metadata", key, str(e)) from e
        return ObjectMetadata(
            last_modified=datetime.fromtimestamp(stat.st_mtime, tz=timezone.utc),
            size=stat.st_size,
        )
