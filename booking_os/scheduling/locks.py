"""Single-writer-per-specialist guard for in-process callers."""

import asyncio
import uuid
import weakref
from contextlib import asynccontextmanager
from typing import AsyncIterator


class SchedulingBusyError(Exception):
    """The specialist's timeline could not be locked in time. Safe to retry."""

    def __init__(self, specialist_id: uuid.UUID, timeout: float):
        super().__init__(f"Timed out after {timeout}s waiting for specialist {specialist_id}")
        self.specialist_id = specialist_id
        self.timeout = timeout


class SpecialistLocks:
    """One ``asyncio.Lock`` per specialist, acquired with a timeout.

    Locks are kept per event loop because an ``asyncio.Lock`` cannot be
    shared across loops.
    """

    def __init__(self, timeout: float = 5.0):
        self.timeout = timeout
        self._by_loop: "weakref.WeakKeyDictionary[asyncio.AbstractEventLoop, dict[uuid.UUID, asyncio.Lock]]" = (
            weakref.WeakKeyDictionary()
        )

    def _lock_for(self, specialist_id: uuid.UUID) -> asyncio.Lock:
        locks = self._by_loop.setdefault(asyncio.get_running_loop(), {})
        return locks.setdefault(specialist_id, asyncio.Lock())

    @asynccontextmanager
    async def hold(self, specialist_id: uuid.UUID) -> AsyncIterator[None]:
        lock = self._lock_for(specialist_id)
        try:
            await asyncio.wait_for(lock.acquire(), timeout=self.timeout)
        except asyncio.TimeoutError:
            raise SchedulingBusyError(specialist_id, self.timeout) from None
        try:
            yield
        finally:
            lock.release()


_default_locks: SpecialistLocks | None = None


def get_specialist_locks() -> SpecialistLocks:
    """Process-wide lock registry configured from settings."""
    global _default_locks
    if _default_locks is None:
        from booking_os.config import get_settings

        _default_locks = SpecialistLocks(timeout=get_settings().booking_lock_timeout_seconds)
    return _default_locks
