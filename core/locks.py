"""
Per-key asyncio locks.

Serialises work on one order inside this process. Row locks
(SELECT ... FOR UPDATE) cover the same ground across processes on PostgreSQL.
"""
import asyncio
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from typing import Dict

import structlog

logger = structlog.get_logger(__name__)


class KeyedLock:
    """Hands out one asyncio.Lock per key and forgets it once nobody holds or waits on it."""

    def __init__(self) -> None:
        self._locks: Dict[str, asyncio.Lock] = {}
        self._waiters: Dict[str, int] = {}

    @asynccontextmanager
    async def hold(self, key: str) -> AsyncIterator[None]:
        lock = self._locks.setdefault(key, asyncio.Lock())
        self._waiters[key] = self._waiters.get(key, 0) + 1
        try:
            async with lock:
                logger.debug("keyed_lock_acquired", lock_key=key)
                yield
        finally:
            self._waiters[key] -= 1
            if self._waiters[key] == 0:
                del self._waiters[key]
                del self._locks[key]

    def __len__(self) -> int:
        return len(self._locks)
