"""Per-address single-flight locking for the analysis pipeline."""
from contextlib import asynccontextmanager
from typing import AsyncIterator, Dict
import asyncio


class AddressLockRegistry:
    """
    Hands out one asyncio.Lock per address.

    Concurrent requests for the same address run one at a time; locks are
    dropped once no request holds or awaits them.
    """

    def __init__(self) -> None:
        self._locks: Dict[str, asyncio.Lock] = {}
        self._users: Dict[str, int] = {}

    @asynccontextmanager
    async def hold(self, address: str) -> AsyncIterator[None]:
        key = address.lower()
        lock = self._locks.setdefault(key, asyncio.Lock())
        self._users[key] = self._users.get(key, 0) + 1
        try:
            async with lock:
                yield
        finally:
            self._users[key] -= 1
            if self._users[key] == 0:
                del self._users[key]
                del self._locks[key]

    def active_count(self) -> int:
        return len(self._locks)
