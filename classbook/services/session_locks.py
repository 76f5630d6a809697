"""
In-process serialization of writers per class session.

The row lock taken on the class session (SELECT ... FOR UPDATE) serializes
writers across processes on PostgreSQL; this registry does the same for
concurrent tasks in one process, and is what keeps SQLite deployments and
tests consistent. A lock only lives while some task holds or waits for it.
"""
import asyncio
from contextlib import asynccontextmanager
from typing import AsyncIterator, Dict


class SessionLocks:
    def __init__(self):
        self._locks: Dict[int, asyncio.Lock] = {}
        self._users: Dict[int, int] = {}

    def __len__(self) -> int:
        return len(self._locks)

    @asynccontextmanager
    async def hold(self, session_id: int) -> AsyncIterator[None]:
        lock = self._locks.get(session_id)
        if lock is None:
            lock = self._locks[session_id] = asyncio.Lock()
        self._users[session_id] = self._users.get(session_id, 0) + 1
        try:
            async with lock:
                yield
        finally:
            self._users[session_id] -= 1
            if not self._users[session_id]:
                del self._users[session_id]
                del self._locks[session_id]


default_session_locks = SessionLocks()
