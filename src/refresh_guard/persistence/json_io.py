"""Typed JSON documents on top of an object store."""

from __future__ import annotations

from typing import TYPE_CHECKING, TypeVar

from pydantic import BaseModel, ValidationError

from refresh_guard.exceptions import SnapshotDecodeError

if TYPE_CHECKING:
    from refresh_guard.persistence.protocols import IObjectStore, PutOutcome

M = TypeVar("M", bound=BaseModel)


async def read_model(store: IObjectStore, key: str, model: type[M]) -> M | None:
    """Load and validate a JSON document. Returns None if the key is absent.

    Raises:
        SnapshotDecodeError: The object exists but does not match ``model``.
        TransportFailure: The store could not be read.
    """
    raw = await store.get(key)
    if raw is None:
        return None
    try:
        return model.model_validate_json(raw)
    except ValidationError as e:
        raise SnapshotDecodeError(key, str(e)) from e


async def write_model(
    store: IObjectStore,
    key: str,
    document: BaseModel,
    *,
    create_only: bool = False,
) -> PutOutcome:
    """Serialize ``document`` as JSON and write it."""
    return await store.put(key, document.model_dump_json().encode("utf-8"), create_only=create_only)
