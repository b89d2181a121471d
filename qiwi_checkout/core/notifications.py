"""
Payment notification handling.

Implements:
- Signature verification of QIWI notifications
- Storing the notified bill state
- Triggering the payout step
- Re-syncing a bill from QIWI when a notification was lost
"""
from typing import Any, Dict, Optional

import structlog

from qiwi_checkout.core.payout import PayoutResult, PayoutService
from qiwi_checkout.database.bill_store import BillRecord, BillStore, status_value
from qiwi_checkout.integrations.qiwi_bill_client import QiwiBillClient
from qiwi_checkout.monitoring.metrics import metrics

logger = structlog.get_logger(__name__)


class WebhookError(Exception):
    """Raised when a notification cannot be accepted."""

    pass


class InvalidSignatureError(WebhookError):
    """Raised when the notification signature does not match."""

    pass


class NotificationService:
    """Applies QIWI bill notifications to the bill store."""

    def __init__(
        self,
        bill_client: QiwiBillClient,
        bill_store: BillStore,
        payout_service: Optional[PayoutService] = None,
    ) -> None:
        """
        Initialize notification service.

        Args:
            bill_client: QIWI bill client (signature check, bill lookup)
            bill_store: Bill store
            payout_service: Optional payout step run after every update
        """
        self.bill_client = bill_client
        self.bill_store = bill_store
        self.payout_service = payout_service

    async def handle(
        self, signature: Optional[str], payload: Dict[str, Any]
    ) -> Optional[PayoutResult]:
        """
        Verify and apply one notification.

        Args:
            signature: x-api-signature-sha256 header value
            payload: Notification body ({"bill": {...}, "version": ...})

        Returns:
            Optional[PayoutResult]: Payout outcome if the payout step ran

        Raises:
            InvalidSignatureError: If the signature does not match; nothing
                is stored in that case
        """
        bill = payload.get("bill") if isinstance(payload, dict) else None
        if not isinstance(bill, dict):
            bill = {}

        if not self.bill_client.check_notification_signature(signature, bill):
            metrics.record_notification(str(status_value(bill)), "invalid_signature")
            logger.warning(
                "notification_signature_invalid",
                bill_id=bill.get("billId"),
            )
            raise InvalidSignatureError("Invalid notification signature")

        bill_id = bill["billId"]
        logger.info("notification_received", bill_id=bill_id, status=status_value(bill))

        await self.bill_store.update(bill_id, bill)
        metrics.record_notification(str(status_value(bill)), "stored")

        return await self._run_payout(bill_id)

    async def sync_from_gateway(self, bill_id: str) -> BillRecord:
        """
        Refresh a known bill from QIWI and run the payout step.

        Raises:
            BillNotFoundError: If the bill was never created here
            QiwiError: If the bill cannot be fetched
        """
        await self.bill_store.require(bill_id)

        bill = await self.bill_client.get_bill(bill_id)
        await self.bill_store.update(bill_id, bill)
        logger.info("bill_synced", bill_id=bill_id, status=status_value(bill))

        await self._run_payout(bill_id)
        return await self.bill_store.require(bill_id)

    async def _run_payout(self, bill_id: str) -> Optional[PayoutResult]:
        if self.payout_service is None or not self.payout_service.enabled:
            return None
        return await self.payout_service.process(bill_id)
