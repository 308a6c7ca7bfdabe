"""Guarded dataset refreshes."""

from refresh_guard.refresh.coordinator import RefreshCoordinator, RefreshResult, RefreshStatus

__all__ = ["RefreshCoordinator", "RefreshResult", "RefreshStatus"]
