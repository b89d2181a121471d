"""
QIWI P2P bill payments API client.

Implements:
- Bill id generation
- Bill creation with retry on transient errors (PUT is idempotent by bill id)
- Bill lookup
- Payment notification signature verification
"""
import hashlib
import hmac
import uuid
from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, Optional
from urllib.parse import parse_qsl, urlencode, urlsplit, urlunsplit

import httpx
import structlog
from tenacity import retry, retry_if_exception, stop_after_attempt, wait_exponential

from qiwi_checkout.config import Settings

from .base import QiwiAPIClient, format_amount, is_retryable

logger = structlog.get_logger(__name__)


def add_success_url(pay_url: str, success_url: str) -> str:
    """
    Append the success redirect to a bill's payment form URL.

    The bill API has no success URL field; the payment form reads it from
    the query string.
    """
    parts = urlsplit(pay_url)
    query = parse_qsl(parts.query, keep_blank_values=True)
    query.append(("successUrl", success_url))
    return urlunsplit(parts._replace(query=urlencode(query)))


def notification_signature_payload(bill: Dict[str, Any]) -> str:
    """
    Build the string QIWI signs for a notification.

    Fields are joined with '|' in key order: amount.currency, amount.value,
    billId, siteId, status.

    Raises:
        KeyError: If the bill lacks a signed field
        TypeError: If a nested field is not an object
        ArithmeticError: If amount.value is not a number
    """
    fields = {
        "amount.currency": bill["amount"]["currency"],
        "amount.value": format_amount(bill["amount"]["value"]),
        "billId": bill["billId"],
        "siteId": bill["siteId"],
        "status": bill["status"]["value"],
    }
    return "|".join(str(fields[key]) for key in sorted(fields))


class QiwiBillClient(QiwiAPIClient):
    """Client for bills at api.qiwi.com, authenticated with the P2P secret key."""

    def __init__(
        self, settings: Settings, http_client: Optional[httpx.AsyncClient] = None
    ) -> None:
        """
        Initialize the bill client.

        Args:
            settings: Application settings
            http_client: Optional preconfigured httpx client
        """
        super().__init__(
            base_url=settings.qiwi_bill_api_url,
            token=settings.qiwi_secret_key,
            timeout=settings.qiwi_http_timeout,
            http_client=http_client,
        )
        self._secret_key = settings.qiwi_secret_key

    @staticmethod
    def generate_id() -> str:
        """Generate a new bill identifier."""
        return str(uuid.uuid4())

    @retry(
        retry=retry_if_exception(is_retryable),
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=0.5, min=0.5, max=4),
        reraise=True,
    )
    async def create_bill(
        self,
        bill_id: str,
        amount: Decimal,
        currency: str,
        expiration: datetime,
        success_url: Optional[str] = None,
        email: Optional[str] = None,
        comment: Optional[str] = None,
        custom_fields: Optional[Dict[str, str]] = None,
    ) -> Dict[str, Any]:
        """
        Create a bill.

        Args:
            bill_id: Identifier from generate_id()
            amount: Bill amount, rounded to kopecks before sending
            currency: Bill currency (e.g. 'RUB')
            expiration: When the bill expires
            success_url: Optional redirect after a successful payment
            email: Optional customer email
            comment: Optional comment shown on the payment form
            custom_fields: Optional custom fields (e.g. themeCode)

        Returns:
            Dict[str, Any]: Bill object as returned by QIWI

        Raises:
            QiwiError: If bill creation fails
        """
        body: Dict[str, Any] = {
            "amount": {"currency": currency, "value": format_amount(amount)},
            "expirationDateTime": expiration.isoformat(timespec="seconds"),
        }
        if email:
            body["customer"] = {"email": email}
        if comment:
            body["comment"] = comment
        if custom_fields:
            body["customFields"] = custom_fields

        logger.info(
            "creating_bill",
            bill_id=bill_id,
            amount=body["amount"]["value"],
            currency=currency,
        )

        bill = await self._request("create_bill", "PUT", bill_id, json=body)

        if success_url and bill.get("payUrl"):
            bill["payUrl"] = add_success_url(bill["payUrl"], success_url)

        logger.info(
            "bill_created",
            bill_id=bill_id,
            status=bill.get("status", {}).get("value"),
        )

        return bill

    async def get_bill(self, bill_id: str) -> Dict[str, Any]:
        """
        Retrieve a bill by id.

        Raises:
            QiwiError: If retrieval fails
        """
        logger.info("retrieving_bill", bill_id=bill_id)
        return await self._request("get_bill", "GET", bill_id)

    def check_notification_signature(
        self, signature: Optional[str], bill: Dict[str, Any]
    ) -> bool:
        """
        Verify the x-api-signature-sha256 header of a payment notification.

        Args:
            signature: Header value
            bill: The notification's bill object

        Returns:
            bool: True if the signature matches
        """
        if not signature:
            return False
        try:
            payload = notification_signature_payload(bill)
        except (KeyError, TypeError, ArithmeticError):
            return False

        expected = hmac.new(
            self._secret_key.encode(),
            payload.encode(),
            hashlib.sha256,
        ).hexdigest()

        return hmac.compare_digest(expected.encode(), signature.encode())
