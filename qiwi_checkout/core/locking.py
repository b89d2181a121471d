"""
Per-bill exclusive locks around the payout step.

Two backends:
- LocalBillLockManager: asyncio locks, for a single worker process
- RedlockBillLockManager: Redis Redlock, for several workers
"""
import asyncio
from contextlib import asynccontextmanager
from typing import AsyncContextManager, AsyncIterator, Dict, Protocol

import structlog
from redlock import Redlock

from qiwi_checkout.config import Settings
from qiwi_checkout.monitoring.metrics import metrics

logger = structlog.get_logger(__name__)


class BillLockError(Exception):
    """Raised when a bill lock cannot be acquired."""

    pass


class BillLockManager(Protocol):
    def hold(self, bill_id: str) -> AsyncContextManager[None]:
        """Async context manager holding the lock for one bill."""
        ...


class LocalBillLockManager:
    """In-process locks, one asyncio.Lock per bill while it is in use."""

    def __init__(self) -> None:
        self._locks: Dict[str, asyncio.Lock] = {}
        self._users: Dict[str, int] = {}

    @asynccontextmanager
    async def hold(self, bill_id: str) -> AsyncIterator[None]:
        lock = self._locks.setdefault(bill_id, asyncio.Lock())
        self._users[bill_id] = self._users.get(bill_id, 0) + 1
        try:
            async with lock:
                metrics.record_bill_lock("acquired")
                yield
        finally:
            self._users[bill_id] -= 1
            if self._users[bill_id] == 0:
                del self._users[bill_id]
                del self._locks[bill_id]


class RedlockBillLockManager:
    """Distributed locks shared by every worker pointing at the same Redis."""

    def __init__(
        self,
        redis_url: str,
        ttl_seconds: int = 90,
        retry_count: int = 10,
        retry_delay: float = 0.2,
    ) -> None:
        """
        Initialize Redlock.

        Args:
            redis_url: Redis connection URL
            ttl_seconds: Lock expiry, longer than a payout round trip
            retry_count: Acquisition attempts before giving up
            retry_delay: Seconds between attempts
        """
        self.ttl_ms = ttl_seconds * 1000
        self.redlock = Redlock([redis_url], retry_count=retry_count, retry_delay=retry_delay)

    @asynccontextmanager
    async def hold(self, bill_id: str) -> AsyncIterator[None]:
        lock_key = f"bill:payout:lock:{bill_id}"
        loop = asyncio.get_running_loop()

        # redlock-py is blocking
        lock = await loop.run_in_executor(None, self.redlock.lock, lock_key, self.ttl_ms)
        if not lock:
            metrics.record_bill_lock("failed")
            logger.warning("bill_lock_acquisition_failed", lock_key=lock_key)
            raise BillLockError(f"Payout for bill {bill_id} is already in progress")

        metrics.record_bill_lock("acquired")
        logger.info("bill_lock_acquired", lock_key=lock_key)
        try:
            yield
        finally:
            await loop.run_in_executor(None, self.redlock.unlock, lock)
            logger.info("bill_lock_released", lock_key=lock_key)


def create_lock_manager(settings: Settings) -> BillLockManager:
    """Pick the lock backend: Redlock when Redis is configured."""
    if settings.redis_url:
        return RedlockBillLockManager(settings.redis_url, ttl_seconds=settings.lock_timeout)
    return LocalBillLockManager()
