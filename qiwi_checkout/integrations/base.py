"""
Shared HTTP plumbing for the QIWI API clients.

Implements:
- Bearer-token authenticated JSON requests over httpx
- Error classification for retry logic
- Per-operation call metrics
"""
import time
from decimal import ROUND_HALF_UP, Decimal
from enum import Enum
from typing import Any, Optional

import httpx
import structlog

from qiwi_checkout.monitoring.metrics import metrics

logger = structlog.get_logger(__name__)

TWO_PLACES = Decimal("0.01")


class QiwiErrorType(Enum):
    """Classification of QIWI errors for retry logic."""

    TRANSIENT = "transient"  # Retry these
    PERMANENT = "permanent"  # Don't retry these
    RATE_LIMIT = "rate_limit"  # Retry with longer backoff


class QiwiError(Exception):
    """Base exception for QIWI-related errors."""

    def __init__(
        self,
        message: str,
        error_type: QiwiErrorType,
        status_code: Optional[int] = None,
        original_error: Optional[Exception] = None,
    ):
        """
        Initialize QIWI error.

        Args:
            message: Error message
            error_type: Classification of error
            status_code: HTTP status returned by QIWI, if any
            original_error: Original httpx exception
        """
        super().__init__(message)
        self.error_type = error_type
        self.status_code = status_code
        self.original_error = original_error


def is_retryable(error: BaseException) -> bool:
    """Tell tenacity whether a failed call may be repeated."""
    return isinstance(error, QiwiError) and error.error_type != QiwiErrorType.PERMANENT


def round_amount(amount: Decimal) -> Decimal:
    """Round a money amount to kopecks."""
    return amount.quantize(TWO_PLACES, rounding=ROUND_HALF_UP)


def format_amount(amount: Any) -> str:
    """Format an amount the way QIWI expects it in bills and signatures ("10.00")."""
    return str(round_amount(Decimal(str(amount))))


class QiwiAPIClient:
    """
    Base class for the QIWI API clients.

    Owns the httpx client unless one is injected.
    """

    def __init__(
        self,
        base_url: str,
        token: str,
        timeout: float,
        http_client: Optional[httpx.AsyncClient] = None,
    ) -> None:
        self.base_url = base_url
        self._headers = {
            "Authorization": f"Bearer {token}",
            "Accept": "application/json",
            "Content-Type": "application/json",
        }
        self._owns_client = http_client is None
        self._client = http_client or httpx.AsyncClient(timeout=timeout)

    @staticmethod
    def _classify_status(status_code: int) -> QiwiErrorType:
        """
        Classify an HTTP error status for retry logic.

        Args:
            status_code: HTTP status code

        Returns:
            QiwiErrorType: Error classification
        """
        if status_code == 429:
            return QiwiErrorType.RATE_LIMIT
        elif status_code >= 500:
            return QiwiErrorType.TRANSIENT
        return QiwiErrorType.PERMANENT

    @staticmethod
    def _error_description(response: httpx.Response) -> str:
        """Pull QIWI's error text out of an error response."""
        try:
            body = response.json()
        except ValueError:
            return response.text or response.reason_phrase
        if isinstance(body, dict):
            return str(
                body.get("description")
                or body.get("userMessage")
                or body.get("message")
                or body
            )
        return str(body)

    async def _request(self, operation: str, method: str, path: str, **kwargs: Any) -> Any:
        """
        Send a request to QIWI and decode the JSON answer.

        Args:
            operation: Operation name for logs and metrics
            method: HTTP method
            path: Path relative to the client's base URL
            **kwargs: Passed to httpx (json, params)

        Returns:
            Any: Decoded JSON body

        Raises:
            QiwiError: On transport failures and HTTP error statuses
        """
        url = self.base_url + path
        start_time = time.time()

        try:
            response = await self._client.request(method, url, headers=self._headers, **kwargs)
        except httpx.HTTPError as e:
            duration = time.time() - start_time
            metrics.record_qiwi_api_call(operation, "transport_error", duration)
            metrics.record_qiwi_api_error(QiwiErrorType.TRANSIENT.value)
            logger.error(
                "qiwi_api_transport_error",
                operation=operation,
                error=str(e),
                duration_seconds=duration,
            )
            raise QiwiError(
                f"{operation} failed: {str(e)}",
                QiwiErrorType.TRANSIENT,
                original_error=e,
            )

        duration = time.time() - start_time
        metrics.record_qiwi_api_call(operation, str(response.status_code), duration)

        if response.is_error:
            error_type = self._classify_status(response.status_code)
            description = self._error_description(response)
            metrics.record_qiwi_api_error(error_type.value)
            logger.error(
                "qiwi_api_error",
                operation=operation,
                status_code=response.status_code,
                error_type=error_type.value,
                error_message=description,
            )
            raise QiwiError(
                f"{operation} failed with HTTP {response.status_code}: {description}",
                error_type,
                status_code=response.status_code,
            )

        return response.json()

    async def close(self) -> None:
        """Close the underlying HTTP client if this instance created it."""
        if self._owns_client:
            await self._client.aclose()
