"""Lock documents stored in the object store."""

from __future__ import annotations

from pydantic import BaseModel, Field


class LockEntry(BaseModel):
    """The JSON document a holder writes at the lock key."""

    holder_id: str = Field(min_length=1)
    acquired_at: int  # epoch ms from core.clock.monotonic_ms
    ttl_ms: int = Field(gt=0)

    def age_ms(self, now: int) -> int:
        return now - self.acquired_at

    def is_expired(self, now: int) -> bool:
        return self.age_ms(now) >= self.ttl_ms

    def expires_in_ms(self, now: int) -> int:
        return self.ttl_ms - self.age_ms(now)


class LockResult(BaseModel):
    """Outcome of one ``acquire_lock`` call.

    ``holder`` names the current owner when known: this caller on success,
    the blocking or winning holder on failure.
    """

    success: bool
    reason: str | None = None
    entry: LockEntry | None = None
    holder: str | None = None
