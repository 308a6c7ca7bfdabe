"""Framework layer: settings, clocks, logging and background tasks."""

from __future__ import annotations

from refresh_guard.core.background import drain_background, spawn_background
from refresh_guard.core.clock import monotonic_ms
from refresh_guard.core.config import (
    AppSettings,
    CacheSettings,
    CircuitSettings,
    LockConfig,
    ObservabilityConfig,
    RateLimitSettings,
    StoreConfig,
)
from refresh_guard.core.logging_config import setup_logging
from refresh_guard.core.startup_checks import validate_settings

__all__ = [
    "AppSettings",
    "CacheSettings",
    "CircuitSettings",
    "LockConfig",
    "ObservabilityConfig",
    "RateLimitSettings",
    "StoreConfig",
    "drain_background",
    "monotonic_ms",
    "setup_logging",
    "spawn_background",
    "validate_settings",
]
