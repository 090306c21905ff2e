from __future__ import annotations

import asyncio
from contextlib import asynccontextmanager
from typing import AsyncIterator


class ProbeGuards:
    """
    Non-blocking re-entrancy guards keyed by probe id.

    ``hold`` yields False when the key is already held, so an overlapping run
    can skip instead of queueing behind the one in flight.
    """

    def __init__(self) -> None:
        self._locks: dict[str, asyncio.Lock] = {}

    def is_held(self, key: str) -> bool:
        lock = self._locks.get(key)
        return lock is not None and lock.locked()

    @asynccontextmanager
    async def hold(self, key: str) -> AsyncIterator[bool]:
        lock = self._locks.setdefault(key, asyncio.Lock())
        if lock.locked():
            yield False
            return
        # An unlocked asyncio.Lock is acquired without suspending.
        await lock.acquire()
        try:
            yield True
        finally:
            lock.release()
