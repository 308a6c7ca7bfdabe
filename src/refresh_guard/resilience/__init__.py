"""Rate limiting and circuit breaking for outgoing and incoming calls."""

from refresh_guard.resilience.breaker_store import IBreakerStore, MemoryBreakerStore
from refresh_guard.resilience.circuit_breaker import CircuitBreakerRegistry
from refresh_guard.resilience.models import (
    API_ENDPOINT_RATE_LIMIT,
    API_ENDPOINT_STORE_NAME,
    DEFAULT_CIRCUIT_CONFIG,
    ORIGIN_FETCH_CONTEXT,
    ORIGIN_FETCH_RATE_LIMIT,
    ORIGIN_FETCH_STORE_NAME,
    CircuitBreakerConfig,
    CircuitBreakerState,
    CircuitState,
    PersistedRateLimits,
    PersistedWindow,
    RateLimitConfig,
    RateLimitRecord,
)
from refresh_guard.resilience.rate_limiter import RateLimiter, validate_config

__all__ = [
    "API_ENDPOINT_RATE_LIMIT",
    "API_ENDPOINT_STORE_NAME",
    "DEFAULT_CIRCUIT_CONFIG",
    "ORIGIN_FETCH_CONTEXT",
    "ORIGIN_FETCH_RATE_LIMIT",
    "ORIGIN_FETCH_STORE_NAME",
    "CircuitBreakerConfig",
    "CircuitBreakerRegistry",
    "CircuitBreakerState",
    "CircuitState",
    "IBreakerStore",
    "MemoryBreakerStore",
    "PersistedRateLimits",
    "PersistedWindow",
    "RateLimitConfig",
    "RateLimitRecord",
    "RateLimiter",
    "validate_config",
]
