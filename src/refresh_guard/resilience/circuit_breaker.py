"""Circuit breaker layered over the rate limiter.

One breaker per (store name, context id)::

    CLOSED --failures >= threshold--> OPEN
    OPEN --reset_timeout since last failure--> HALF_OPEN (one trial call admitted)
    HALF_OPEN --trial call success--> CLOSED (failures reset)
    HALF_OPEN --trial call failure--> OPEN (failures kept)

While closed, a rate-limit denial counts as a failure. Callers report the
outcome of admitted operations with ``record_operation_failure`` and
``record_operation_success``.
"""

from __future__ import annotations

import logging
from typing import Callable

from refresh_guard.core.clock import monotonic_ms
from refresh_guard.resilience.breaker_store import IBreakerStore, MemoryBreakerStore
from refresh_guard.resilience.models import (
    DEFAULT_CIRCUIT_CONFIG,
    CircuitBreakerConfig,
    CircuitBreakerState,
    CircuitState,
    RateLimitConfig,
)
from refresh_guard.resilience.rate_limiter import RateLimiter, validate_config

log = logging.getLogger(__name__)


def _breaker_key(store_name: str, context_id: str) -> str:
    return f"{store_name}:{context_id}"


class CircuitBreakerRegistry:
    """Tracks breaker state for every (store name, context id) pair.

    State lives in an ``IBreakerStore``; the default ``MemoryBreakerStore``
    keeps it per process.
    """

    def __init__(
        self,
        limiter: RateLimiter | None = None,
        store: IBreakerStore | None = None,
        default_config: CircuitBreakerConfig = DEFAULT_CIRCUIT_CONFIG,
        clock: Callable[[], int] = monotonic_ms,
    ) -> None:
        self._limiter = limiter if limiter is not None else RateLimiter(clock=clock)
        self._store: IBreakerStore = store if store is not None else MemoryBreakerStore()
        self._default_config = default_config
        self._clock = clock

    @property
    def limiter(self) -> RateLimiter:
        return self._limiter

    def is_operation_allowed(
        self,
        store_name: str,
        context_id: str,
        rate_limit_config: RateLimitConfig,
        circuit_config: CircuitBreakerConfig | None = None,
    ) -> bool:
        """Admit or reject one operation, consuming a rate-limit slot if admitted.

        Raises:
            ConfigurationFault: ``rate_limit_config`` is invalid.
        """
        validate_config(rate_limit_config)
        config = circuit_config or self._default_config
        key = _breaker_key(store_name, context_id)
        state = self._store.load(key) or CircuitBreakerState()
        now = self._clock()

        if state.state == CircuitState.OPEN:
            if now - state.last_failure_time < config.reset_timeout_ms:
                return False
            state.state = CircuitState.HALF_OPEN
            state.half_open_trials = 0
            log.info("Circuit breaker %s -> HALF_OPEN (reset timeout elapsed)", key)

        if state.state == CircuitState.HALF_OPEN:
            if state.half_open_trials >= config.half_open_requests:
                if now - state.trial_started_at < config.reset_timeout_ms:
                    self._store.save(key, state)
                    return False
                log.warning("Circuit breaker %s: trial call never reported back, admitting a new one", key)
                state.half_open_trials = 0

            state.half_open_trials += 1
            state.trial_started_at = now
            if not self._limiter.is_operation_allowed(store_name, context_id, rate_limit_config):
                state.failures += 1
                self._reopen(key, state, now)
                self._store.save(key, state)
                return False
            self._store.save(key, state)
            return True

        if self._limiter.is_operation_allowed(store_name, context_id, rate_limit_config):
            return True

        self._count_failure(key, state, now, config)
        self._store.save(key, state)
        return False

    def record_operation_failure(
        self,
        store_name: str,
        context_id: str,
        circuit_config: CircuitBreakerConfig | None = None,
    ) -> None:
        """Report that an admitted operation failed."""
        config = circuit_config or self._default_config
        key = _breaker_key(store_name, context_id)
        state = self._store.load(key) or CircuitBreakerState()
        now = self._clock()

        if state.state == CircuitState.HALF_OPEN:
            state.failures += 1
            self._reopen(key, state, now)
        else:
            self._count_failure(key, state, now, config)
        self._store.save(key, state)

    def record_operation_success(self, store_name: str, context_id: str) -> None:
        """Report that an admitted operation succeeded.

        Closes a half-open circuit and clears the consecutive-failure count
        of a closed one. An open circuit is left alone.
        """
        key = _breaker_key(store_name, context_id)
        state = self._store.load(key)
        if state is None or state.state == CircuitState.OPEN:
            return
        if state.state == CircuitState.HALF_OPEN:
            log.info("Circuit breaker %s -> CLOSED (trial call succeeded)", key)
        self._store.save(key, CircuitBreakerState())

    def reset(self, store_name: str, context_id: str) -> None:
        """Manually reset a breaker to CLOSED."""
        self._store.reset(_breaker_key(store_name, context_id))

    def get_state(self, store_name: str, context_id: str) -> CircuitBreakerState:
        """Return a copy of the stored state (closed with no failures if unseen)."""
        return self._store.load(_breaker_key(store_name, context_id)) or CircuitBreakerState()

    @staticmethod
    def _count_failure(
        key: str,
        state: CircuitBreakerState,
        now: int,
        config: CircuitBreakerConfig,
    ) -> None:
        state.failures += 1
        state.last_failure_time = now
        if state.state == CircuitState.CLOSED and state.failures >= config.failure_threshold:
            state.state = CircuitState.OPEN
            log.warning("Circuit breaker %s -> OPEN after %d failures", key, state.failures)

    @staticmethod
    def _reopen(key: str, state: CircuitBreakerState, now: int) -> None:
        state.state = CircuitState.OPEN
        state.last_failure_time = now
        state.half_open_trials = 0
        log.warning("Circuit breaker %s -> OPEN (half-open trial call failed, %d failures)", key, state.failures)
