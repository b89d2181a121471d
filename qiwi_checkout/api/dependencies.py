"""Service wiring and FastAPI dependencies."""
from dataclasses import dataclass
from typing import Optional

from fastapi import Request
from sqlalchemy.ext.asyncio import AsyncEngine

from qiwi_checkout.config import Settings
from qiwi_checkout.core.checkout import CheckoutService
from qiwi_checkout.core.currency import CurrencyConverter
from qiwi_checkout.core.locking import create_lock_manager
from qiwi_checkout.core.notifications import NotificationService
from qiwi_checkout.core.payout import PayoutService
from qiwi_checkout.database.bill_store import BillStore
from qiwi_checkout.database.connection import (
    close_db,
    create_db_engine,
    create_session_factory,
    init_db,
)
from qiwi_checkout.integrations.qiwi_bill_client import QiwiBillClient
from qiwi_checkout.integrations.qiwi_wallet_client import QiwiWalletClient
from qiwi_checkout.monitoring.health import HealthCheck


@dataclass
class Services:
    """Everything the routes need, built once per application."""

    settings: Settings
    bill_store: BillStore
    checkout_service: CheckoutService
    notification_service: NotificationService
    health_check: HealthCheck
    bill_client: Optional[QiwiBillClient] = None
    wallet_client: Optional[QiwiWalletClient] = None
    engine: Optional[AsyncEngine] = None

    @classmethod
    async def build(cls, settings: Settings) -> "Services":
        """Create clients, the database engine and the services on top of them."""
        engine = create_db_engine(settings)
        await init_db(engine)
        session_factory = create_session_factory(engine)

        bill_store = BillStore(session_factory)
        bill_client = QiwiBillClient(settings)
        wallet_client = QiwiWalletClient(settings)

        payout_service = PayoutService(
            settings,
            wallet_client,
            bill_store,
            create_lock_manager(settings),
        )

        return cls(
            settings=settings,
            bill_store=bill_store,
            checkout_service=CheckoutService(
                settings, bill_client, CurrencyConverter(wallet_client), bill_store
            ),
            notification_service=NotificationService(bill_client, bill_store, payout_service),
            health_check=HealthCheck(session_factory, settings.redis_url),
            bill_client=bill_client,
            wallet_client=wallet_client,
            engine=engine,
        )

    async def close(self) -> None:
        """Close HTTP clients and database connections."""
        if self.bill_client is not None:
            await self.bill_client.close()
        if self.wallet_client is not None:
            await self.wallet_client.close()
        if self.engine is not None:
            await close_db(self.engine)


def get_services(request: Request) -> Services:
    """Dependency returning the application's services."""
    return request.app.state.services
