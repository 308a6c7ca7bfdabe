"""Millisecond clocks shared by the lock, limiter and cache."""

from __future__ import annotations

import threading
import time

_last_ms = 0
_guard = threading.Lock()


def monotonic_ms() -> int:
    """Epoch milliseconds that never run backwards within this process.

    Lock entries are compared across processes, so the value must stay
    aligned with wall-clock epoch time; a clock step backwards is absorbed by
    repeating the last value instead.
    """
    global _last_ms
    now = int(time.time() * 1000)
    with _guard:
        if now < _last_ms:
            return _last_ms
        _last_ms = now
        return now
