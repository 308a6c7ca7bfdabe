"""Pluggable circuit breaker state store protocol and in-memory implementation."""

from __future__ import annotations

from dataclasses import replace
from typing import Protocol, runtime_checkable

from refresh_guard.resilience.models import CircuitBreakerState


@runtime_checkable
class IBreakerStore(Protocol):
    """Protocol for circuit breaker state storage backends.

    Implementations hold one ``CircuitBreakerState`` per breaker key. The
    registry reads, mutates and writes back whole records, so a backend only
    needs get/put semantics.
    """

    def load(self, key: str) -> CircuitBreakerState | None:
        """Return the stored state, or None for a breaker never seen."""
        ...

    def save(self, key: str, state: CircuitBreakerState) -> None:
        ...

    def reset(self, key: str) -> None:
        """Forget the state for a key (the breaker reads as closed again)."""
        ...

    def keys(self) -> list[str]:
        ...


class MemoryBreakerStore:
    """In-process circuit breaker state store backed by a plain dict.

    Stored records are copied on the way in and out so callers cannot mutate
    shared state behind the registry's back.
    """

    def __init__(self) -> None:
        self._states: dict[str, CircuitBreakerState] = {}

    def load(self, key: str) -> CircuitBreakerState | None:
        state = self._states.get(key)
        return replace(state) if state is not None else None

    def save(self, key: str, state: CircuitBreakerState) -> None:
        self._states[key] = replace(state)

    def reset(self, key: str) -> None:
        self._states.pop(key, None)

    def keys(self) -> list[str]:
        return sorted(self._states)
