"""
Per-key asyncio locks.

In-memory, so serialization only holds inside one process. Entries are
dropped as soon as nobody holds or waits on them.
"""
import asyncio
import logging
from collections import defaultdict
from contextlib import asynccontextmanager
from typing import Dict, Hashable

logger = logging.getLogger(__name__)


class KeyedLock:
    """One ``asyncio.Lock`` per key, e.g. per ride id."""

    def __init__(self):
        self._locks: Dict[Hashable, asyncio.Lock] = {}
        # Dict[key, number of coroutines holding or waiting]
        self._users: Dict[Hashable, int] = defaultdict(int)

    @asynccontextmanager
    async def hold(self, key: Hashable):
        lock = self._locks.get(key)
        if lock is None:
            lock = self._locks[key] = asyncio.Lock()
        self._users[key] += 1
        try:
            async with lock:
                yield
        finally:
            self._users[key] -= 1
            if self._users[key] <= 0:
                del self._users[key]
                del self._locks[key]

    def __len__(self) -> int:
        return len(self._locks)
