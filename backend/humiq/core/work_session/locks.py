"""
Per-session mutual exclusion.

Each work session is single-writer: read-decide-write sections for the
same session are serialized here, sessions never block each other.
The registry is process-local; row locks taken in the write phases
(`SELECT ... FOR UPDATE` on PostgreSQL) cover multi-process deployments.
"""

import asyncio
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from uuid import UUID
from weakref import WeakValueDictionary


class SessionLocks:
    """Registry of asyncio locks keyed by session id."""

    def __init__(self):
        # Locks are dropped once no holder or waiter references them
        self._locks: WeakValueDictionary[str, asyncio.Lock] = WeakValueDictionary()

    def get(self, session_id: UUID | str) -> asyncio.Lock:
        key = str(session_id)
        lock = self._locks.get(key)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[key] = lock
        return lock

    @asynccontextmanager
    async def hold(self, session_id: UUID | str) -> AsyncIterator[None]:
        """Hold the session's lock for the duration of the block."""
        lock = self.get(session_id)
        async with lock:
            yield

    def __len__(self) -> int:
        return len(self._locks)


# Process-wide registry used by the API layer
session_locks = SessionLocks()
