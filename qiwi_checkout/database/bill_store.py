"""
Bill store: one snapshot document per bill, keyed by bill id.

Writes are top-level partial updates. Keys named in an update replace the
stored keys of the same name; every other stored key survives. Each write
bumps the row version.

The read and the write of an update share one transaction that holds the
row: SELECT ... FOR UPDATE on Postgres, BEGIN IMMEDIATE on SQLite (see
connection.py). Concurrent writers to one bill therefore apply one after
another and never drop each other's keys.
"""
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, Optional

import structlog
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from qiwi_checkout.database.models import Bill

logger = structlog.get_logger(__name__)

PAYOUT_ACCEPTED = "Accepted"


class BillNotFoundError(Exception):
    """Raised when a bill is not in the store."""

    pass


@dataclass
class BillRecord:
    """Read-only view of a stored bill."""

    bill_id: str
    document: Dict[str, Any] = field(default_factory=dict)
    version: int = 1
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @property
    def email(self) -> Optional[str]:
        return self.document.get("email")

    @property
    def status(self) -> Optional[str]:
        return status_value(self.document)

    @property
    def payout(self) -> Optional[Dict[str, Any]]:
        return self.document.get("payout")

    @property
    def payout_accepted(self) -> bool:
        """True once a payout transaction for this bill was accepted by QIWI."""
        payout = self.payout or {}
        state = (payout.get("transaction") or {}).get("state") or {}
        return state.get("code") == PAYOUT_ACCEPTED

    def to_dict(self) -> Dict[str, Any]:
        return {
            **self.document,
            "billId": self.bill_id,
            "version": self.version,
            "createdAt": self.created_at.isoformat() if self.created_at else None,
            "updatedAt": self.updated_at.isoformat() if self.updated_at else None,
        }


def status_value(document: Dict[str, Any]) -> Optional[str]:
    """Extract status.value from a bill document."""
    status = document.get("status")
    if isinstance(status, dict):
        return status.get("value")
    return None


def _to_record(bill: Bill) -> BillRecord:
    return BillRecord(
        bill_id=bill.bill_id,
        document=dict(bill.document or {}),
        version=bill.version,
        created_at=bill.created_at,
        updated_at=bill.updated_at,
    )


class BillStore:
    """Persists bill snapshots in the bills table."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        """
        Initialize the store.

        Args:
            session_factory: SQLAlchemy async session factory
        """
        self.session_factory = session_factory

    async def create(self, bill_id: str, email: Optional[str]) -> BillRecord:
        """
        Insert the placeholder record written at checkout time.

        Raises:
            sqlalchemy.exc.IntegrityError: If the bill id already exists
        """
        async with self.session_factory() as session:
            bill = Bill(
                bill_id=bill_id,
                email=email,
                document={"email": email},
                version=1,
            )
            session.add(bill)
            await session.commit()
            await session.refresh(bill)

        logger.info("bill_record_created", bill_id=bill_id)
        return _to_record(bill)

    async def get(self, bill_id: str) -> Optional[BillRecord]:
        """Fetch a bill, or None if it is unknown."""
        async with self.session_factory() as session:
            bill = await session.get(Bill, bill_id)
            if bill is None:
                return None
            return _to_record(bill)

    async def require(self, bill_id: str) -> BillRecord:
        """
        Fetch a bill that must exist.

        Raises:
            BillNotFoundError: If the bill is unknown
        """
        record = await self.get(bill_id)
        if record is None:
            raise BillNotFoundError(f"Bill {bill_id} not found")
        return record

    async def update(self, bill_id: str, fields: Dict[str, Any]) -> BillRecord:
        """
        Upsert a bill snapshot.

        Two first writes for the same bill can race to insert; the loser
        retries once as a merge into the winner's row.

        Args:
            bill_id: Bill identifier
            fields: Top-level document keys to set

        Returns:
            BillRecord: The stored record after the write
        """
        try:
            record = await self._merge(bill_id, fields)
        except IntegrityError:
            logger.info("bill_record_insert_conflict", bill_id=bill_id)
            record = await self._merge(bill_id, fields)

        logger.info(
            "bill_record_updated",
            bill_id=bill_id,
            status=record.status,
            version=record.version,
            fields=sorted(fields),
        )
        return record

    async def _merge(self, bill_id: str, fields: Dict[str, Any]) -> BillRecord:
        async with self.session_factory() as session:
            async with session.begin():
                bill = await session.get(Bill, bill_id, with_for_update=True)
                if bill is None:
                    document = dict(fields)
                    bill = Bill(bill_id=bill_id, document=document, version=1)
                    session.add(bill)
                else:
                    document = {**(bill.document or {}), **fields}
                    bill.document = document
                    bill.version = bill.version + 1

                bill.email = document.get("email")
                bill.status = status_value(document)

                await session.flush()
                await session.refresh(bill)
                record = _to_record(bill)

        return record
