"""Detached background tasks with their own error reporting."""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Coroutine

log = logging.getLogger(__name__)

# Strong references; the event loop only keeps weak ones.
_pending: set[asyncio.Task[Any]] = set()


def spawn_background(coro: Coroutine[Any, Any, Any], *, name: str) -> asyncio.Task[Any]:
    """Schedule ``coro`` on the running loop without awaiting it.

    The caller never sees the outcome. Failures are logged here, with the
    task name, so a failed write is visible in the logs rather than lost.
    Must be called from inside a running event loop.
    """
    task = asyncio.get_running_loop().create_task(coro, name=name)
    _pending.add(task)
    task.add_done_callback(_on_done)
    return task


def _on_done(task: asyncio.Task[Any]) -> None:
    _pending.discard(task)
    if task.cancelled():
        log.debug("Background task %s cancelled", task.get_name())
        return
    exc = task.exception()
    if exc is not None:
        log.warning("Background task %s failed: %s", task.get_name(), exc, exc_info=exc)


async def drain_background(timeout: float | None = None) -> None:
    """Wait for this loop's outstanding background tasks (used on shutdown and in tests)."""
    loop = asyncio.get_running_loop()
    tasks = {t for t in _pending if t.get_loop() is loop}
    if not tasks:
        return
    await asyncio.wait(tasks, timeout=timeout)
