"""Tests for the circuit breaker registry and its state store."""

from __future__ import annotations

import pytest

from refresh_guard.exceptions import ConfigurationFault
from refresh_guard.resilience.breaker_store import IBreakerStore, MemoryBreakerStore
from refresh_guard.resilience.circuit_breaker import CircuitBreakerRegistry
from refresh_guard.resilience.models import (
    CircuitBreakerConfig,
    CircuitBreakerState,
    CircuitState,
    RateLimitConfig,
)
from refresh_guard.resilience.rate_limiter import RateLimiter
from tests.fakes.fake_clock import FakeClock

GENEROUS = RateLimitConfig(max_requests=100, window_ms=1000)
TWO_FAILURES = CircuitBreakerConfig(failure_threshold=2, reset_timeout_ms=5000)


# ---------------------------------------------------------------------------
# MemoryBreakerStore
# ---------------------------------------------------------------------------


class TestMemoryBreakerStore:
    def test_load_unknown_key_returns_none(self) -> None:
        assert MemoryBreakerStore().load("svc:a") is None

    def test_save_and_load(self) -> None:
        store = MemoryBreakerStore()
        store.save("svc:a", CircuitBreakerState(failures=2, last_failure_time=10))
        loaded = store.load("svc:a")
        assert loaded is not None
        assert loaded.failures == 2

    def test_loaded_state_is_a_copy(self) -> None:
        store = MemoryBreakerStore()
        store.save("svc:a", CircuitBreakerState(failures=1))
        loaded = store.load("svc:a")
        assert loaded is not None
        loaded.failures = 99
        assert store.load("svc:a").failures == 1  # type: ignore[union-attr]

    def test_reset_and_keys(self) -> None:
        store = MemoryBreakerStore()
        store.save("svc:a", CircuitBreakerState())
        store.save("svc:b", CircuitBreakerState())
        store.reset("svc:a")
        assert store.keys() == ["svc:b"]

    def test_satisfies_protocol(self) -> None:
        assert isinstance(MemoryBreakerStore(), IBreakerStore)


# ---------------------------------------------------------------------------
# CircuitBreakerRegistry
# ---------------------------------------------------------------------------


class TestCircuitTransitions:
    def test_closed_by_default(self, breaker: CircuitBreakerRegistry) -> None:
        state = breaker.get_state("origin", "books")
        assert state.state == CircuitState.CLOSED
        assert state.failures == 0
        assert breaker.is_operation_allowed("origin", "books", GENEROUS) is True

    def test_opens_after_threshold(self, breaker: CircuitBreakerRegistry) -> None:
        breaker.record_operation_failure("origin", "books", TWO_FAILURES)
        assert breaker.get_state("origin", "books").state == CircuitState.CLOSED

        breaker.record_operation_failure("origin", "books", TWO_FAILURES)
        state = breaker.get_state("origin", "books")
        assert state.state == CircuitState.OPEN
        assert state.failures == 2

    def test_full_cycle_open_half_open_closed(self, breaker: CircuitBreakerRegistry, clock: FakeClock) -> None:
        breaker.record_operation_failure("origin", "books", TWO_FAILURES)
        breaker.record_operation_failure("origin", "books", TWO_FAILURES)

        clock.advance(4999)
        assert breaker.is_operation_allowed("origin", "books", GENEROUS, TWO_FAILURES) is False

        clock.advance(1)
        assert breaker.is_operation_allowed("origin", "books", GENEROUS, TWO_FAILURES) is True
        assert breaker.get_state("origin", "books").state == CircuitState.HALF_OPEN

        breaker.record_operation_success("origin", "books")
        state = breaker.get_state("origin", "books")
        assert state.state == CircuitState.CLOSED
        assert state.failures == 0

    def test_half_open_admits_only_one_trial_call(self, breaker: CircuitBreakerRegistry, clock: FakeClock) -> None:
        breaker.record_operation_failure("origin", "books", TWO_FAILURES)
        breaker.record_operation_failure("origin", "books", TWO_FAILURES)
        clock.advance(5000)

        assert breaker.is_operation_allowed("origin", "books", GENEROUS, TWO_FAILURES) is True
        assert breaker.is_operation_allowed("origin", "books", GENEROUS, TWO_FAILURES) is False
        assert breaker.is_operation_allowed("origin", "books", GENEROUS, TWO_FAILURES) is False

    def test_abandoned_trial_call_is_replaced(self, breaker: CircuitBreakerRegistry, clock: FakeClock) -> None:
        breaker.record_operation_failure("origin", "books", TWO_FAILURES)
        breaker.record_operation_failure("origin", "books", TWO_FAILURES)
        clock.advance(5000)
        assert breaker.is_operation_allowed("origin", "books", GENEROUS, TWO_FAILURES) is True

        clock.advance(5000)
        assert breaker.is_operation_allowed("origin", "books", GENEROUS, TWO_FAILURES) is True

    def test_trial_call_failure_reopens_and_keeps_failures(
        self, breaker: CircuitBreakerRegistry, clock: FakeClock
    ) -> None:
        breaker.record_operation_failure("origin", "books", TWO_FAILURES)
        breaker.record_operation_failure("origin", "books", TWO_FAILURES)
        clock.advance(5000)
        breaker.is_operation_allowed("origin", "books", GENEROUS, TWO_FAILURES)

        breaker.record_operation_failure("origin", "books", TWO_FAILURES)
        state = breaker.get_state("origin", "books")
        assert state.state == CircuitState.OPEN
        assert state.failures == 3
        assert state.last_failure_time == clock.now

        # The cooldown restarts from the trial call failure.
        clock.advance(4999)
        assert breaker.is_operation_allowed("origin", "books", GENEROUS, TWO_FAILURES) is False

    def test_success_resets_failure_count_when_closed(self, breaker: CircuitBreakerRegistry) -> None:
        breaker.record_operation_failure("origin", "books", TWO_FAILURES)
        breaker.record_operation_success("origin", "books")
        breaker.record_operation_failure("origin", "books", TWO_FAILURES)
        assert breaker.get_state("origin", "books").state == CircuitState.CLOSED

    def test_success_leaves_open_circuit_open(self, breaker: CircuitBreakerRegistry) -> None:
        breaker.record_operation_failure("origin", "books", TWO_FAILURES)
        breaker.record_operation_failure("origin", "books", TWO_FAILURES)
        breaker.record_operation_success("origin", "books")
        assert breaker.get_state("origin", "books").state == CircuitState.OPEN

    def test_reset(self, breaker: CircuitBreakerRegistry) -> None:
        breaker.record_operation_failure("origin", "books", TWO_FAILURES)
        breaker.record_operation_failure("origin", "books", TWO_FAILURES)
        breaker.reset("origin", "books")
        assert breaker.get_state("origin", "books") == CircuitBreakerState()
        assert breaker.is_operation_allowed("origin", "books", GENEROUS, TWO_FAILURES) is True


class TestLimiterInteraction:
    def test_rate_limit_denials_count_as_failures(self, breaker: CircuitBreakerRegistry) -> None:
        one = RateLimitConfig(max_requests=1, window_ms=60_000)
        assert breaker.is_operation_allowed("origin", "books", one, TWO_FAILURES) is True
        assert breaker.is_operation_allowed("origin", "books", one, TWO_FAILURES) is False
        assert breaker.get_state("origin", "books").failures == 1

        assert breaker.is_operation_allowed("origin", "books", one, TWO_FAILURES) is False
        assert breaker.get_state("origin", "books").state == CircuitState.OPEN

    def test_trial_call_denied_by_limiter_reopens(self, clock: FakeClock) -> None:
        limiter = RateLimiter(clock=clock)
        breaker = CircuitBreakerRegistry(limiter, clock=clock)
        slow = RateLimitConfig(max_requests=1, window_ms=60_000)
        limiter.is_operation_allowed("origin", "books", slow)
        breaker.record_operation_failure("origin", "books", TWO_FAILURES)
        breaker.record_operation_failure("origin", "books", TWO_FAILURES)

        clock.advance(5000)
        assert breaker.is_operation_allowed("origin", "books", slow, TWO_FAILURES) is False
        state = breaker.get_state("origin", "books")
        assert state.state == CircuitState.OPEN
        assert state.last_failure_time == clock.now

    def test_open_circuit_does_not_consume_rate_limit(self, breaker: CircuitBreakerRegistry) -> None:
        breaker.record_operation_failure("origin", "books", TWO_FAILURES)
        breaker.record_operation_failure("origin", "books", TWO_FAILURES)
        breaker.is_operation_allowed("origin", "books", GENEROUS, TWO_FAILURES)
        assert breaker.limiter.get_record("origin", "books") is None

    def test_invalid_rate_limit_config_raises_even_when_open(self, breaker: CircuitBreakerRegistry) -> None:
        breaker.record_operation_failure("origin", "books", TWO_FAILURES)
        breaker.record_operation_failure("origin", "books", TWO_FAILURES)
        with pytest.raises(ConfigurationFault):
            breaker.is_operation_allowed("origin", "books", RateLimitConfig(max_requests=0, window_ms=10))

    def test_default_config_used_when_none_given(self, clock: FakeClock) -> None:
        breaker = CircuitBreakerRegistry(clock=clock)
        for _ in range(4):
            breaker.record_operation_failure("origin", "books")
        assert breaker.get_state("origin", "books").state == CircuitState.CLOSED
        breaker.record_operation_failure("origin", "books")
        assert breaker.get_state("origin", "books").state == CircuitState.OPEN

    def test_shared_store_between_registries(self, clock: FakeClock) -> None:
        store = MemoryBreakerStore()
        first = CircuitBreakerRegistry(store=store, clock=clock)
        second = CircuitBreakerRegistry(store=store, clock=clock)
        first.record_operation_failure("origin", "books", TWO_FAILURES)
        first.record_operation_failure("origin", "books", TWO_FAILURES)
        assert second.is_operation_allowed("origin", "books", GENEROUS, TWO_FAILURES) is False
