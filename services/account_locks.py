"""
Trading Simulator - Per-Account Locks

Single ownership authority for account mutations: opening, closing (manual or
monitor-triggered), balance overrides, renames and deletes of one account are
serialized through one asyncio.Lock per account id.
"""

import asyncio
import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator, Dict

from models.errors import ConcurrentModification

logger = logging.getLogger(__name__)


class AccountLockRegistry:
    """
    Hands out one lock per account id; waits are bounded by ``timeout_seconds``.

    A lock lives only while someone holds or waits on it, so ids that never
    resolve to an account (or were deleted) do not accumulate.
    """

    def __init__(self, timeout_seconds: float = 5.0):
        self.timeout_seconds = timeout_seconds
        self._locks: Dict[str, asyncio.Lock] = {}
        self._users: Dict[str, int] = {}

    def __len__(self) -> int:
        return len(self._locks)

    def _checkout(self, account_id: str) -> asyncio.Lock:
        lock = self._locks.get(account_id)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[account_id] = lock
        self._users[account_id] = self._users.get(account_id, 0) + 1
        return lock

    def _checkin(self, account_id: str) -> None:
        remaining = self._users[account_id] - 1
        if remaining:
            self._users[account_id] = remaining
        else:
            del self._users[account_id]
            del self._locks[account_id]

    def is_locked(self, account_id: str) -> bool:
        lock = self._locks.get(account_id)
        return bool(lock and lock.locked())

    @asynccontextmanager
    async def hold(self, account_id: str) -> AsyncIterator[None]:
        """
        Hold the account's lock for the duration of the block.

        Raises:
            ConcurrentModification: lock not acquired within the bounded wait
        """
        lock = self._checkout(account_id)
        try:
            try:
                await asyncio.wait_for(lock.acquire(), timeout=self.timeout_seconds)
            except asyncio.TimeoutError:
                logger.warning(f"⚠️ Lock wait for account {account_id} exceeded {self.timeout_seconds}s")
                raise ConcurrentModification(
                    f"Account {account_id} is busy; retry the operation"
                )
            try:
                yield
            finally:
                lock.release()
        finally:
            self._checkin(account_id)
