"""
Per-content-hash locks shared by uploads, deletes and the orphan sweep
"""

import asyncio
from contextlib import asynccontextmanager
from typing import AsyncIterator, Dict


class ContentLocks:
    """One asyncio lock per content hash, dropped once nobody holds or waits on it"""

    def __init__(self):
        self._locks: Dict[str, asyncio.Lock] = {}
        self._users: Dict[str, int] = {}

    def __len__(self) -> int:
        return len(self._locks)

    @asynccontextmanager
    async def hold(self, content_hash: str) -> AsyncIterator[None]:
        lock = self._locks.setdefault(content_hash, asyncio.Lock())
        self._users[content_hash] = self._users.get(content_hash, 0) + 1
        try:
            async with lock:
                yield
        finally:
            self._users[content_hash] -= 1
            if self._users[content_hash] == 0:
                del self._users[content_hash]
                del self._locks[content_hash]
