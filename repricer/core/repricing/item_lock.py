import asyncio
from contextlib import asynccontextmanager
from typing import Dict, Optional, Tuple

from repricer.core.errors import RepricerError

ItemKey = Tuple[str, Optional[str]]


class ItemBusy(RepricerError):
    def __init__(self, item_id: str, sku: Optional[str] = None):
        label = f"{item_id}/{sku}" if sku else item_id
        super().__init__(f"Repricing already in progress for {label}")
        self.item_id = item_id
        self.sku = sku


class ItemLockRegistry:
    """
    One ``asyncio.Lock`` per ``(item_id, sku)`` so a manual trigger and the
    scheduler never reprice the same listing at the same time. A key's lock
    is dropped once nobody holds or waits for it.
    """

    def __init__(self):
        self._locks: Dict[ItemKey, asyncio.Lock] = {}
        self._users: Dict[ItemKey, int] = {}

    def __len__(self) -> int:
        return len(self._locks)

    def is_locked(self, item_id: str, sku: Optional[str] = None) -> bool:
        lock = self._locks.get((item_id, sku))
        return lock is not None and lock.locked()

    @asynccontextmanager
    async def hold(self, item_id: str, sku: Optional[str] = None, wait: bool = False, timeout: Optional[float] = None):
        """
        Without ``wait`` a busy key raises ``ItemBusy`` straight away; with it
        the caller queues for at most ``timeout`` seconds.
        """
        key = (item_id, sku)
        lock = self._locks.setdefault(key, asyncio.Lock())
        if not wait and lock.locked():
            raise ItemBusy(item_id, sku)

        self._users[key] = self._users.get(key, 0) + 1
        try:
            try:
                await asyncio.wait_for(lock.acquire(), timeout)
            except asyncio.TimeoutError:
                raise ItemBusy(item_id, sku)

            try:
                yield
            finally:
                lock.release()
        finally:
            self._users[key] -= 1
            if not self._users[key]:
                del self._users[key]
                del self._locks[key]
