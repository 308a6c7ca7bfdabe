"""Nested pydantic-settings configuration for refresh-guard.

Each concern reads its own ``REFRESH_GUARD_<GROUP>_*`` env vars::

    export REFRESH_GUARD_STORE_BACKEND=s3
    export REFRESH_GUARD_STORE_S3_BUCKET=site-data
    export REFRESH_GUARD_LOCK_TTL_MS=600000
"""

from __future__ import annotations

import logging
import math
from pathlib import Path
from typing import Any, Literal

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings

log = logging.getLogger(__name__)

DEFAULT_LOCK_TTL_MS = 30 * 60 * 1000  # covers the longest refresh cycle


class StoreConfig(BaseSettings):
    """Object store configuration.

    Env vars use ``REFRESH_GUARD_STORE_`` prefix.
    """

    model_config = {"env_prefix": "REFRESH_GUARD_STORE_"}

    backend: Literal["memory", "file", "s3"] = "file"
    store_path: Path = Path("./.refresh-guard")
    s3_bucket: str = ""
    s3_prefix: str = ""
    aws_region: str = "us-east-1"
    endpoint_url: str = ""
    kms_key_id: str = ""


class LockConfig(BaseSettings):
    """Distributed lock configuration.

    Env vars use ``REFRESH_GUARD_LOCK_`` prefix. A missing, non-numeric or
    non-positive ``TTL_MS`` falls back to 30 minutes.
    """

    model_config = {"env_prefix": "REFRESH_GUARD_LOCK_"}

    ttl_ms: int = DEFAULT_LOCK_TTL_MS
    max_retries: int = Field(default=3, ge=0, le=10)
    cleanup_interval_ms: int = Field(default=2 * 60 * 1000, gt=0)
    key_prefix: str = "locks/"

    @field_validator("ttl_ms", mode="before")
    @classmethod
    def _coerce_ttl(cls, value: Any) -> int:
        try:
            parsed = float(value)
        except (TypeError, ValueError):
            parsed = float("nan")
        if not math.isfinite(parsed) or parsed <= 0:
            log.warning("REFRESH_GUARD_LOCK_TTL_MS=%r is invalid or <= 0; defaulting to 30 minutes", value)
            return DEFAULT_LOCK_TTL_MS
        return int(parsed)


class RateLimitSettings(BaseSettings):
    """Rate limiter defaults.

    Env vars use ``REFRESH_GUARD_RATE_LIMIT_`` prefix.
    """

    model_config = {"env_prefix": "REFRESH_GUARD_RATE_LIMIT_"}

    poll_interval_ms: int = Field(default=100, gt=0)
    origin_max_requests: int = Field(default=10, gt=0)
    origin_window_ms: int = Field(default=1000, gt=0)


class CircuitSettings(BaseSettings):
    """Circuit breaker defaults.

    Env vars use ``REFRESH_GUARD_CIRCUIT_`` prefix.
    """

    model_config = {"env_prefix": "REFRESH_GUARD_CIRCUIT_"}

    failure_threshold: int = Field(default=5, gt=0)
    reset_timeout_ms: int = Field(default=60_000, gt=0)
    half_open_requests: int = Field(default=1, gt=0)


class CacheSettings(BaseSettings):
    """Tiered cache configuration.

    Env vars use ``REFRESH_GUARD_CACHE_`` prefix.
    """

    model_config = {"env_prefix": "REFRESH_GUARD_CACHE_"}

    freshness_ttl_ms: int = Field(default=5 * 60 * 1000, gt=0)
    max_entries: int = Field(default=100, gt=0)
    snapshot_prefix: str = "datasets/"


class ObservabilityConfig(BaseSettings):
    """Logging configuration.

    Env vars use ``REFRESH_GUARD_OBSERVABILITY_`` prefix.
    """

    model_config = {"env_prefix": "REFRESH_GUARD_OBSERVABILITY_"}

    service_name: str = "refresh-guard"
    log_level: str = "INFO"
    json_logs: bool | None = None  # None: JSON unless stderr is a TTY


class AppSettings(BaseSettings):
    """Top-level settings aggregating all sub-configs."""

    # Factories so each AppSettings() re-reads the environment.
    store: StoreConfig = Field(default_factory=StoreConfig)
    lock: LockConfig = Field(default_factory=LockConfig)
    rate_limit: RateLimitSettings = Field(default_factory=RateLimitSettings)
    circuit: CircuitSettings = Field(default_factory=CircuitSettings)
    cache: CacheSettings = Field(default_factory=CacheSettings)
    observability: ObservabilityConfig = Field(default_factory=ObservabilityConfig)
