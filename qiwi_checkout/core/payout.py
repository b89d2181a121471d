"""
Payout of paid bills to the configured QIWI wallet.

Flow (under the per-bill lock):
1. Load the stored bill; skip if absent
2. Skip unless status is PAID
3. Skip if a payout was already accepted
4. Query commission for the full paid amount
5. Persist a payment id for the bill, or reuse the stored one
6. Submit the net amount (paid - commission) under that id
7. Persist the transaction if QIWI accepted it

Anything other than an accepted transaction is logged and dropped.
"""
from dataclasses import dataclass
from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, Optional

import structlog

from qiwi_checkout.config import Settings
from qiwi_checkout.core.locking import BillLockManager
from qiwi_checkout.database.bill_store import PAYOUT_ACCEPTED, BillStore
from qiwi_checkout.integrations.qiwi_wallet_client import QiwiWalletClient
from qiwi_checkout.monitoring.metrics import metrics

logger = structlog.get_logger(__name__)

PAID_STATUS = "PAID"
# Document key holding the client-side id of the payout payment
PAYOUT_TRANSACTION_ID = "payoutTransactionId"


class PayoutError(Exception):
    """Raised when a stored bill cannot be paid out."""

    pass


class PayoutStatus(str, Enum):
    """Outcome of a payout attempt."""

    SKIPPED_MISSING = "skipped_missing"
    SKIPPED_NOT_PAID = "skipped_not_paid"
    SKIPPED_ALREADY_PAID_OUT = "skipped_already_paid_out"
    ACCEPTED = "accepted"
    REJECTED = "rejected"


@dataclass
class PayoutResult:
    bill_id: str
    status: PayoutStatus
    amount: Optional[Decimal] = None
    commission: Optional[Decimal] = None
    net_amount: Optional[Decimal] = None
    transaction: Optional[Dict[str, Any]] = None


class PayoutService:
    """Pays confirmed bills out, at most once per bill."""

    def __init__(
        self,
        settings: Settings,
        wallet_client: QiwiWalletClient,
        bill_store: BillStore,
        lock_manager: BillLockManager,
    ) -> None:
        """
        Initialize payout service.

        Args:
            settings: Application settings (payout account and provider)
            wallet_client: QIWI wallet API client
            bill_store: Bill store
            lock_manager: Per-bill lock backend
        """
        self.settings = settings
        self.wallet_client = wallet_client
        self.bill_store = bill_store
        self.lock_manager = lock_manager

    @property
    def enabled(self) -> bool:
        return self.settings.payouts_configured

    async def process(self, bill_id: str) -> PayoutResult:
        """
        Run the payout step for one bill.

        Raises:
            BillLockError: If another worker holds the bill's lock
            PayoutError: If the stored paid amount is unusable
            QiwiError: If a QIWI call fails
        """
        async with self.lock_manager.hold(bill_id):
            result = await self._process_locked(bill_id)

        metrics.record_payout(
            result.status.value,
            float(result.net_amount) if result.status == PayoutStatus.ACCEPTED else 0,
        )
        return result

    async def _process_locked(self, bill_id: str) -> PayoutResult:
        record = await self.bill_store.get(bill_id)
        if record is None:
            logger.info("payout_skipped", bill_id=bill_id, reason="bill_not_found")
            return PayoutResult(bill_id, PayoutStatus.SKIPPED_MISSING)

        if record.status != PAID_STATUS:
            logger.info("payout_skipped", bill_id=bill_id, reason="not_paid", status=record.status)
            return PayoutResult(bill_id, PayoutStatus.SKIPPED_NOT_PAID)

        if record.payout_accepted:
            logger.info("payout_skipped", bill_id=bill_id, reason="already_paid_out")
            return PayoutResult(bill_id, PayoutStatus.SKIPPED_ALREADY_PAID_OUT)

        amount = self._paid_amount(record.document, bill_id)
        provider_id = self.settings.payout_provider_id
        account = self.settings.payout_account

        commission = await self.wallet_client.get_commission(provider_id, account, amount)
        net_amount = amount - commission

        if net_amount <= 0:
            logger.warning(
                "payout_amount_not_positive",
                bill_id=bill_id,
                amount=str(amount),
                commission=str(commission),
            )
            return PayoutResult(
                bill_id, PayoutStatus.REJECTED, amount, commission, net_amount
            )

        # Reused by every attempt for this bill so QIWI refuses a duplicate transfer
        transaction_id = record.document.get(PAYOUT_TRANSACTION_ID)
        if not transaction_id:
            transaction_id = self.wallet_client.generate_transaction_id()
            await self.bill_store.update(bill_id, {PAYOUT_TRANSACTION_ID: transaction_id})

        response = await self.wallet_client.send_payment(
            provider_id,
            account,
            net_amount,
            comment=f"Payout for bill {bill_id}",
            transaction_id=transaction_id,
        )
        transaction = response.get("transaction") or {}
        state = (transaction.get("state") or {}).get("code")

        if state != PAYOUT_ACCEPTED:
            logger.warning(
                "payout_not_accepted",
                bill_id=bill_id,
                state=state,
                transaction_id=transaction.get("id"),
            )
            return PayoutResult(
                bill_id, PayoutStatus.REJECTED, amount, commission, net_amount, transaction
            )

        await self.bill_store.update(
            bill_id,
            {
                "payout": {
                    "transaction": transaction,
                    "amount": str(amount),
                    "commission": str(commission),
                    "netAmount": str(net_amount),
                    "account": account,
                    "paidOutAt": datetime.now(timezone.utc).isoformat(),
                }
            },
        )

        logger.info(
            "payout_accepted",
            bill_id=bill_id,
            transaction_id=transaction.get("id"),
            amount=str(amount),
            commission=str(commission),
            net_amount=str(net_amount),
        )
        return PayoutResult(
            bill_id, PayoutStatus.ACCEPTED, amount, commission, net_amount, transaction
        )

    @staticmethod
    def _paid_amount(document: Dict[str, Any], bill_id: str) -> Decimal:
        try:
            return Decimal(str(document["amount"]["value"]))
        except (KeyError, TypeError, ArithmeticError):
            raise PayoutError(f"Bill {bill_id} has no usable amount.value")
