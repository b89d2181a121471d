"""USD to RUB conversion from the live QIWI cross-rate table."""
from decimal import Decimal
from typing import Any

import structlog

from qiwi_checkout.integrations.qiwi_wallet_client import RUB_CODE, USD_CODE, QiwiWalletClient

logger = structlog.get_logger(__name__)


class CurrencyError(Exception):
    """Base exception for currency conversion errors."""

    pass


class CurrencyRateNotFound(CurrencyError):
    """Raised when the rate table has no entry for a currency pair."""

    pass


class CurrencyConverter:
    """
    Converts amounts using rates fetched on every call.

    There is no caching and no fallback rate.
    """

    def __init__(self, wallet_client: QiwiWalletClient) -> None:
        self.wallet_client = wallet_client

    async def get_rate(self, from_code: str, to_code: str) -> Decimal:
        """
        Look up the rate for a pair of numeric ISO currency codes.

        Raises:
            CurrencyRateNotFound: If the pair is missing from the table
            QiwiError: If the rate table cannot be fetched
        """
        rates = await self.wallet_client.get_cross_rates()
        for entry in rates:
            if str(entry.get("from")) == from_code and str(entry.get("to")) == to_code:
                return Decimal(str(entry["rate"]))

        logger.error("currency_rate_not_found", from_code=from_code, to_code=to_code)
        raise CurrencyRateNotFound(f"No cross rate from {from_code} to {to_code}")

    async def convert_usd_to_rub(self, usd_amount: Any) -> Decimal:
        """Divide a USD amount by the 840 -> 643 rate."""
        rate = await self.get_rate(USD_CODE, RUB_CODE)
        amount = Decimal(str(usd_amount)) / rate

        logger.info(
            "currency_converted",
            usd_amount=str(usd_amount),
            rate=str(rate),
            rub_amount=str(amount),
        )
        return amount
