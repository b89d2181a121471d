"""
QIWI wallet API (edge.qiwi.com) client.

Covers currency cross rates, transfer commission and payouts. None of these
calls is retried: a repeated payout request would move money twice.
"""
import time
from decimal import Decimal
from typing import Any, Dict, List, Optional

import httpx
import structlog

from qiwi_checkout.config import Settings

from .base import QiwiAPIClient, QiwiError, QiwiErrorType, round_amount

logger = structlog.get_logger(__name__)

RUB_CODE = "643"
USD_CODE = "840"


def account_payment_method() -> Dict[str, str]:
    """Payment method that debits the RUB balance of the wallet."""
    return {"type": "Account", "accountId": RUB_CODE}


class QiwiWalletClient(QiwiAPIClient):
    """Client for the wallet API, authenticated with the wallet token."""

    def __init__(
        self, settings: Settings, http_client: Optional[httpx.AsyncClient] = None
    ) -> None:
        """
        Initialize the wallet client.

        Args:
            settings: Application settings
            http_client: Optional preconfigured httpx client
        """
        super().__init__(
            base_url=settings.qiwi_edge_api_url,
            token=settings.qiwi_edge_token,
            timeout=settings.qiwi_http_timeout,
            http_client=http_client,
        )

    @staticmethod
    def generate_transaction_id() -> str:
        """Client-side payment id: epoch milliseconds, as the wallet API expects."""
        return str(int(time.time() * 1000))

    async def get_cross_rates(self) -> List[Dict[str, Any]]:
        """
        Fetch the live currency cross-rate table.

        Returns:
            List[Dict[str, Any]]: Entries with 'from', 'to' (numeric ISO codes)
            and 'rate'

        Raises:
            QiwiError: If the request fails
        """
        response = await self._request("cross_rates", "GET", "sinap/crossRates")
        return response.get("result", [])

    async def get_commission(self, provider_id: int, account: str, amount: Decimal) -> Decimal:
        """
        Ask QIWI for the commission on a transfer.

        Args:
            provider_id: Transfer provider (99 is a QIWI wallet)
            account: Destination account
            amount: Gross transfer amount in RUB

        Returns:
            Decimal: Commission in RUB

        Raises:
            QiwiError: If the request fails or the answer has no commission
        """
        body = {
            "account": account,
            "paymentMethod": account_payment_method(),
            "purchaseTotals": {
                "total": {"amount": float(round_amount(amount)), "currency": RUB_CODE},
            },
        }

        response = await self._request(
            "online_commission",
            "POST",
            f"sinap/providers/{provider_id}/onlineCommission",
            json=body,
        )

        try:
            commission = Decimal(str(response["qwCommission"]["amount"]))
        except (KeyError, TypeError, ArithmeticError):
            raise QiwiError(
                "Commission response has no qwCommission.amount",
                QiwiErrorType.PERMANENT,
            )

        logger.info(
            "commission_received",
            provider_id=provider_id,
            amount=str(amount),
            commission=str(commission),
        )
        return commission

    async def send_payment(
        self,
        provider_id: int,
        account: str,
        amount: Decimal,
        comment: Optional[str] = None,
        transaction_id: Optional[str] = None,
    ) -> Dict[str, Any]:
        """
        Submit a transfer from the wallet.

        Args:
            provider_id: Transfer provider (99 is a QIWI wallet)
            account: Destination account
            amount: Net amount to transfer in RUB
            comment: Optional transfer comment
            transaction_id: Client-side payment id; QIWI refuses a second payment
                with the same id. Generated when omitted

        Returns:
            Dict[str, Any]: Payment response, including transaction.state.code

        Raises:
            QiwiError: If the request fails
        """
        body: Dict[str, Any] = {
            "id": transaction_id or self.generate_transaction_id(),
            "sum": {"amount": float(round_amount(amount)), "currency": RUB_CODE},
            "paymentMethod": account_payment_method(),
            "fields": {"account": account},
        }
        if comment:
            body["comment"] = comment

        logger.info(
            "sending_payment",
            provider_id=provider_id,
            transaction_id=body["id"],
            amount=body["sum"]["amount"],
        )

        return await self._request(
            "send_payment",
            "POST",
            f"sinap/api/v2/terms/{provider_id}/payments",
            json=body,
        )
