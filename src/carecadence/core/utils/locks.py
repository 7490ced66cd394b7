"""Process-local keyed asyncio locks.

One ``asyncio.Lock`` per key, held weakly so locks for keys nobody is
using any more are garbage-collected.
"""

from __future__ import annotations

import asyncio
import weakref
from collections.abc import AsyncIterator, Hashable
from contextlib import asynccontextmanager


class KeyedLock:
    """Serialize async work per key (e.g. per ``(patient_id, date)``)."""

    def __init__(self) -> None:
        self._locks: weakref.WeakValueDictionary[Hashable, asyncio.Lock] = weakref.WeakValueDictionary()
        self._guard = asyncio.Lock()

    async def get(self, key: Hashable) -> asyncio.Lock:
        """Return the lock for *key*, creating it if needed."""
        async with self._guard:
            lock = self._locks.get(key)
            if lock is None:
                lock = asyncio.Lock()
                self._locks[key] = lock
            return lock

    def locked(self, key: Hashable) -> bool:
        lock = self._locks.get(key)
        return lock is not None and lock.locked()

    @asynccontextmanager
    async def hold(self, key: Hashable) -> AsyncIterator[asyncio.Lock]:
        lock = await self.get(key)
        async with lock:
            yield lock
