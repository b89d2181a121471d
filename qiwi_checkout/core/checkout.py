"""
Checkout orchestration.

Flow:
1. Generate a bill id
2. Insert a placeholder record (email only)
3. Convert the USD amount to RUB
4. Create the bill at QIWI
5. Store QIWI's bill object on the record
"""
import time
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from typing import Any, Dict

import structlog

from qiwi_checkout.config import Settings
from qiwi_checkout.core.currency import CurrencyConverter
from qiwi_checkout.database.bill_store import BillStore
from qiwi_checkout.integrations.qiwi_bill_client import QiwiBillClient
from qiwi_checkout.monitoring.metrics import metrics

logger = structlog.get_logger(__name__)

BILL_CURRENCY = "RUB"


class CheckoutService:
    """Turns a USD checkout request into a QIWI bill."""

    def __init__(
        self,
        settings: Settings,
        bill_client: QiwiBillClient,
        converter: CurrencyConverter,
        bill_store: BillStore,
    ) -> None:
        self.settings = settings
        self.bill_client = bill_client
        self.converter = converter
        self.bill_store = bill_store

    def _custom_fields(self) -> Dict[str, str]:
        if self.settings.qiwi_theme_code:
            return {"themeCode": self.settings.qiwi_theme_code}
        return {}

    async def checkout(self, email: str, amount: Decimal) -> Dict[str, Any]:
        """
        Create a bill for a USD amount.

        Args:
            email: Customer email
            amount: Amount in USD

        Returns:
            Dict[str, Any]: The bill object returned by QIWI

        Raises:
            CurrencyRateNotFound: If the USD->RUB rate is missing
            QiwiError: If a QIWI call fails
        """
        start_time = time.time()
        bill_id = self.bill_client.generate_id()

        logger.info("checkout_started", bill_id=bill_id, usd_amount=str(amount))

        try:
            await self.bill_store.create(bill_id, email)

            rub_amount = await self.converter.convert_usd_to_rub(amount)
            expiration = datetime.now(timezone.utc) + timedelta(
                hours=self.settings.bill_lifetime_hours
            )

            bill = await self.bill_client.create_bill(
                bill_id,
                amount=rub_amount,
                currency=BILL_CURRENCY,
                expiration=expiration,
                success_url=self.settings.success_url,
                email=email,
                custom_fields=self._custom_fields(),
            )

            await self.bill_store.update(bill_id, bill)

        except Exception as e:
            metrics.record_checkout("failed", time.time() - start_time)
            logger.error("checkout_failed", bill_id=bill_id, error=str(e))
            raise

        duration = time.time() - start_time
        metrics.record_checkout("created", duration)
        logger.info(
            "checkout_completed",
            bill_id=bill_id,
            rub_amount=str(rub_amount),
            duration_seconds=duration,
        )
        return bill
