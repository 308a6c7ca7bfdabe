"""Exception hierarchy for refresh-guard."""

from __future__ import annotations


class RefreshGuardError(Exception):
    """Base exception for all refresh-guard errors."""


class ConfigurationFault(RefreshGuardError, ValueError):
    """Invalid limiter or breaker parameters. A programming error; never retried."""


class ContentionFailure(RefreshGuardError):
    """A lock is held by another holder, or this holder lost the create race."""

    def __init__(self, lock_key: str, reason: str = "") -> None:
        super().__init__(f"Could not acquire {lock_key}: {reason}" if reason else f"Could not acquire {lock_key}")
        self.lock_key = lock_key
        self.reason = reason


class TransportFailure(RefreshGuardError):
    """The object store could not be reached or returned an unexpected error."""

    def __init__(self, operation: str, key: str, message: str = "") -> None:
        detail = f": {message}" if message else ""
        super().__init__(f"Store {operation} failed for {key!r}{detail}")
        self.operation = operation
        self.key = key


class SnapshotDecodeError(RefreshGuardError):
    """A stored JSON document did not match its expected schema."""

    def __init__(self, key: str, message: str = "") -> None:
        super().__init__(f"Could not decode {key!r}: {message}" if message else f"Could not decode {key!r}")
        self.key = key


class TimeoutFault(RefreshGuardError, TimeoutError):
    """``wait_for_permit`` gave up before a permit became available."""


__all__ = [
    "RefreshGuardError",
    "ConfigurationFault",
    "ContentionFailure",
    "TransportFailure",
    "SnapshotDecodeError",
    "TimeoutFault",
]
