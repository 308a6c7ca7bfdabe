"""Startup validation: fail-fast on critical misconfigurations."""

from __future__ import annotations

import logging
import os
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from refresh_guard.core.config import AppSettings

log = logging.getLogger(__name__)


def validate_settings(settings: AppSettings) -> None:
    """Validate application settings at startup. Raises ValueError on fatal misconfig."""
    _check_store(settings)
    _check_lock_timing(settings)


def _check_store(settings: AppSettings) -> None:
    """Require a bucket for S3 and warn about file stores in containers."""
    if settings.store.backend == "s3" and not settings.store.s3_bucket:
        raise ValueError(
            "REFRESH_GUARD_STORE_S3_BUCKET is required when REFRESH_GUARD_STORE_BACKEND=s3."
        )

    is_container = bool(
        os.environ.get("ECS_CONTAINER_METADATA_URI")
        or os.environ.get("KUBERNETES_SERVICE_HOST")
    )
    if is_container and settings.store.backend in ("file", "memory"):
        log.warning(
            "REFRESH_GUARD_STORE_BACKEND=%s in a container environment. "
            "Locks and snapshots are not shared with other replicas. "
            "Consider setting REFRESH_GUARD_STORE_BACKEND=s3.",
            settings.store.backend,
        )


def _check_lock_timing(settings: AppSettings) -> None:
    """Warn when locks can expire between two cleanup sweeps of a live holder."""
    if settings.lock.ttl_ms < settings.lock.cleanup_interval_ms:
        log.warning(
            "Lock TTL (%dms) is shorter than the cleanup interval (%dms); "
            "stale locks will linger until the next sweep.",
            settings.lock.ttl_ms,
            settings.lock.cleanup_interval_ms,
        )
