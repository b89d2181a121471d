"""Checkout, notification and payout logic."""
from .checkout import CheckoutService
from .currency import CurrencyConverter, CurrencyError, CurrencyRateNotFound
from .locking import BillLockError, LocalBillLockManager, RedlockBillLockManager
from .notifications import InvalidSignatureError, NotificationService, WebhookError
from .payout import PayoutError, PayoutResult, PayoutService, PayoutStatus

__all__ = [
    "BillLockError",
    "CheckoutService",
    "CurrencyConverter",
    "CurrencyError",
    "CurrencyRateNotFound",
    "InvalidSignatureError",
    "LocalBillLockManager",
    "NotificationService",
    "PayoutError",
    "PayoutResult",
    "PayoutService",
    "PayoutStatus",
    "RedlockBillLockManager",
    "WebhookError",
]
