"""External integrations with the QIWI APIs."""
from .base import QiwiError, QiwiErrorType
from .qiwi_bill_client import QiwiBillClient
from .qiwi_wallet_client import QiwiWalletClient

__all__ = ["QiwiBillClient", "QiwiError", "QiwiErrorType", "QiwiWalletClient"]
