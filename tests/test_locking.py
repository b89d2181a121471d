"""
Unit tests for per-bill locks.
"""
import asyncio
from typing import List
from unittest.mock import MagicMock, patch

import pytest

from qiwi_checkout.config import Settings
from qiwi_checkout.core.locking import (
    BillLockError,
    LocalBillLockManager,
    RedlockBillLockManager,
    create_lock_manager,
)


class TestLocalBillLockManager:
    """Test suite for in-process locks."""

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_same_bill_serialized(self) -> None:
        """Test holders of one bill's lock never overlap."""
        manager = LocalBillLockManager()
        events: List[str] = []

        async def worker(name: str) -> None:
            async with manager.hold("bill-1"):
                events.append(f"{name}-in")
                await asyncio.sleep(0.01)
                events.append(f"{name}-out")

        await asyncio.gather(worker("a"), worker("b"))

        assert events in (["a-in", "a-out", "b-in", "b-out"], ["b-in", "b-out", "a-in", "a-out"])

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_different_bills_independent(self) -> None:
        manager = LocalBillLockManager()

        async with manager.hold("bill-1"):
            await asyncio.wait_for(self._enter(manager, "bill-2"), timeout=1)

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_locks_released(self) -> None:
        """Test idle locks are dropped."""
        manager = LocalBillLockManager()

        async with manager.hold("bill-1"):
            pass

        assert manager._locks == {}
        assert manager._users == {}

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_released_on_error(self) -> None:
        manager = LocalBillLockManager()

        with pytest.raises(RuntimeError):
            async with manager.hold("bill-1"):
                raise RuntimeError("boom")

        await asyncio.wait_for(self._enter(manager, "bill-1"), timeout=1)

    @staticmethod
    async def _enter(manager: LocalBillLockManager, bill_id: str) -> None:
        async with manager.hold(bill_id):
            pass


class TestRedlockBillLockManager:
    """Test suite for Redlock-backed locks."""

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_lock_and_unlock(self) -> None:
        with patch("qiwi_checkout.core.locking.Redlock") as redlock_cls:
            redlock = redlock_cls.return_value
            lock = MagicMock()
            redlock.lock.return_value = lock

            manager = RedlockBillLockManager("redis://localhost:6379/0", ttl_seconds=5)
            async with manager.hold("bill-1"):
                redlock.lock.assert_called_once_with("bill:payout:lock:bill-1", 5000)

            redlock.unlock.assert_called_once_with(lock)

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_lock_not_acquired(self) -> None:
        """Test a held lock raises instead of running the payout."""
        with patch("qiwi_checkout.core.locking.Redlock") as redlock_cls:
            redlock_cls.return_value.lock.return_value = False

            manager = RedlockBillLockManager("redis://localhost:6379/0")
            with pytest.raises(BillLockError):
                async with manager.hold("bill-1"):
                    pytest.fail("lock body must not run")

            redlock_cls.return_value.unlock.assert_not_called()


class TestCreateLockManager:
    @pytest.mark.unit
    def test_local_without_redis(self, test_settings: Settings) -> None:
        assert isinstance(create_lock_manager(test_settings), LocalBillLockManager)

    @pytest.mark.unit
    def test_redlock_with_redis(self, test_settings: Settings) -> None:
        settings = test_settings.model_copy(update={"redis_url": "redis://localhost:6379/0"})

        with patch("qiwi_checkout.core.locking.Redlock"):
            assert isinstance(create_lock_manager(settings), RedlockBillLockManager)
