"""Durable dataset snapshots: content-addressed payloads plus a latest pointer.

Layout under the snapshot prefix::

    <prefix><dataset>/<version>.json   payload, never rewritten
    <prefix><dataset>/latest.json      SnapshotPointer naming the current payload
    <prefix><dataset>/heartbeat.json   Heartbeat of the last refresh attempt

Readers reach a payload only through the pointer. Writers put the payload
first and the pointer second, so a pointer never names an object that was
not written.
"""

from __future__ import annotations

import dataclasses
import hashlib
import logging
from typing import Any, Callable

from refresh_guard.cache.models import DatasetSpec, Heartbeat, SnapshotPointer
from refresh_guard.core.clock import monotonic_ms
from refresh_guard.exceptions import SnapshotDecodeError
from refresh_guard.persistence.json_io import read_model, write_model
from refresh_guard.persistence.protocols import IObjectStore

log = logging.getLogger(__name__)

VERSION_LENGTH = 12


def compute_version(payload: bytes) -> str:
    """First 12 hex chars of the payload's SHA-256."""
    return hashlib.sha256(payload).hexdigest()[:VERSION_LENGTH]


class SnapshotPaths:
    """Object keys for one snapshot prefix."""

    def __init__(self, prefix: str = "datasets/") -> None:
        self.prefix = f"{prefix.strip('/')}/" if prefix.strip("/") else ""

    def pointer(self, dataset_key: str) -> str:
        return f"{self.prefix}{dataset_key}/latest.json"

    def payload(self, dataset_key: str, version: str) -> str:
        return f"{self.prefix}{dataset_key}/{version}.json"

    def heartbeat(self, dataset_key: str) -> str:
        return f"{self.prefix}{dataset_key}/heartbeat.json"


@dataclasses.dataclass(frozen=True)
class PublishResult:
    pointer: SnapshotPointer
    changed: bool


class SnapshotWriter:
    """Publishes dataset values as snapshots. Callers must hold the dataset lock."""

    def __init__(
        self,
        store: IObjectStore,
        paths: SnapshotPaths,
        clock: Callable[[], int] = monotonic_ms,
    ) -> None:
        self._store = store
        self._paths = paths
        self._clock = clock

    async def read_pointer(self, dataset_key: str) -> SnapshotPointer | None:
        return await read_model(self._store, self._paths.pointer(dataset_key), SnapshotPointer)

    async def publish(self, spec: DatasetSpec[Any], value: Any, *, force: bool = False) -> PublishResult:
        """Write ``value`` unless the pointer already names the same version.

        With ``force`` the payload and pointer are rewritten even when the
        version is unchanged, which also repairs a dangling pointer.

        Raises:
            TransportFailure: A write failed. The previous pointer, if any,
                is still in place.

        Errors raised by ``spec.encode`` or ``spec.count`` propagate unchanged.
        """
        payload = spec.encode(value)
        version = compute_version(payload)
        try:
            current = await self.read_pointer(spec.key)
        except SnapshotDecodeError as e:
            log.warning("Replacing unreadable pointer for %s: %s", spec.key, e)
            current = None

        if current is not None and current.version == version and not force:
            log.info("Snapshot %s unchanged at version %s", spec.key, version)
            return PublishResult(pointer=current, changed=False)

        changed = current is None or current.version != version
        payload_key = self._paths.payload(spec.key, version)
        await self._store.put(payload_key, payload)
        pointer = SnapshotPointer(
            version=version,
            key=payload_key,
            generated_at=self._clock(),
            count=spec.count(value),
        )
        await write_model(self._store, self._paths.pointer(spec.key), pointer)
        log.info("Published snapshot %s version %s (%d items)", spec.key, version, pointer.count)
        return PublishResult(pointer=pointer, changed=changed)

    async def write_heartbeat(self, dataset_key: str, heartbeat: Heartbeat) -> None:
        await write_model(self._store, self._paths.heartbeat(dataset_key), heartbeat)

    async def read_heartbeat(self, dataset_key: str) -> Heartbeat | None:
        return await read_model(self._store, self._paths.heartbeat(dataset_key), Heartbeat)
