"""Value types for the rate limiter and circuit breaker."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum

from pydantic import BaseModel, Field


@dataclass(frozen=True)
class RateLimitConfig:
    """``max_requests`` per fixed window of ``window_ms`` milliseconds."""

    max_requests: int
    window_ms: int


@dataclass
class RateLimitRecord:
    count: int
    reset_at: int  # epoch ms


class PersistedWindow(BaseModel):
    count: int = Field(ge=0)
    reset_at: int


class PersistedRateLimits(BaseModel):
    """One namespace of rate-limit windows as stored in the object store."""

    store_name: str
    saved_at: int
    windows: dict[str, PersistedWindow] = Field(default_factory=dict)


@dataclass(frozen=True)
class CircuitBreakerConfig:
    failure_threshold: int = 5
    reset_timeout_ms: int = 60_000
    half_open_requests: int = 1


class CircuitState(str, Enum):
    CLOSED = "closed"  # Normal operation
    OPEN = "open"  # Failing, reject calls
    HALF_OPEN = "half_open"  # Probing whether the dependency recovered


@dataclass
class CircuitBreakerState:
    failures: int = 0
    last_failure_time: int = 0  # epoch ms, 0 when no failure recorded
    state: CircuitState = CircuitState.CLOSED
    half_open_trials: int = 0
    trial_started_at: int = 0


DEFAULT_CIRCUIT_CONFIG = CircuitBreakerConfig()

# Inbound API routes: 5 requests per client per minute.
API_ENDPOINT_STORE_NAME = "apiEndpoints"
API_ENDPOINT_RATE_LIMIT = RateLimitConfig(max_requests=5, window_ms=60_000)

# Outgoing origin fetches share one global budget per process.
ORIGIN_FETCH_STORE_NAME = "outgoingOrigin"
ORIGIN_FETCH_CONTEXT = "global"
ORIGIN_FETCH_RATE_LIMIT = RateLimitConfig(max_requests=10, window_ms=1000)
