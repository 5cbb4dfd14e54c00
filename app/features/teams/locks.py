"""
Per-user mutual exclusion for profile mutations.
"""
import asyncio
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from weakref import WeakValueDictionary


class UserLockRegistry:
    """
    Hands out one asyncio.Lock per user id.

    Locks are only kept alive while someone holds or waits on them, so the
    registry does not grow with the number of users ever touched. Different
    users never share a lock.
    """

    def __init__(self) -> None:
        self._locks: "WeakValueDictionary[str, asyncio.Lock]" = WeakValueDictionary()

    def _lock_for(self, user_id: str) -> asyncio.Lock:
        lock = self._locks.get(user_id)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[user_id] = lock
        return lock

    @asynccontextmanager
    async def hold(self, user_id: str) -> AsyncIterator[None]:
        lock = self._lock_for(user_id)
        async with lock:
            yield

    def is_locked(self, user_id: str) -> bool:
        lock = self._locks.get(user_id)
        return lock is not None and lock.locked()
