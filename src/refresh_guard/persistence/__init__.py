"""Pluggable object stores: the only state shared between processes."""

from __future__ import annotations

from typing import TYPE_CHECKING

from refresh_guard.persistence.file_store import FileObjectStore
from refresh_guard.persistence.json_io import read_model, write_model
from refresh_guard.persistence.memory_store import MemoryObjectStore
from refresh_guard.persistence.protocols import IObjectStore, ObjectMetadata, PutOutcome

if TYPE_CHECKING:
    from refresh_guard.core.config import StoreConfig

__all__ = [
    "IObjectStore",
    "ObjectMetadata",
    "PutOutcome",
    "FileObjectStore",
    "MemoryObjectStore",
    "create_object_store",
    "read_model",
    "write_model",
]


def create_object_store(config: StoreConfig) -> IObjectStore:
    """Create an object store from ``StoreConfig``."""
    backend = config.backend
    if backend == "memory":
        return MemoryObjectStore()
    elif backend == "file":
        return FileObjectStore(config.store_path)
    elif backend == "s3":
        from refresh_guard.persistence.s3_store import S3ObjectStore

        return S3ObjectStore(
            bucket=config.s3_bucket,
            prefix=config.s3_prefix,
            region=config.aws_region,
            endpoint_url=config.endpoint_url,
            kms_key_id=config.kms_key_id,
        )
    else:
        raise ValueError(f"Unknown object store backend: {backend!r}")
