"""
Pytest configuration and fixtures.

QIWI is replaced by an httpx.MockTransport stub and the bill store runs on
SQLite, so no external service is needed.
"""
import hashlib
import hmac
import json
from typing import Any, AsyncGenerator, Callable, Dict, List, Optional, Tuple

import httpx
import pytest
import pytest_asyncio

from qiwi_checkout.api.dependencies import Services
from qiwi_checkout.api.main import create_app
from qiwi_checkout.config import Settings
from qiwi_checkout.core.checkout import CheckoutService
from qiwi_checkout.core.currency import CurrencyConverter
from qiwi_checkout.core.locking import LocalBillLockManager
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

SECRET_KEY = "test-secret-key"
EDGE_TOKEN = "test-edge-token"
PAYOUT_ACCOUNT = "+79990000000"
SITE_ID = "site-123"


class QiwiStub:
    """
    In-memory stand-in for both QIWI APIs.

    Records every request and answers from a few tweakable attributes.
    """

    def __init__(self) -> None:
        self.rate: Optional[float] = 90.0
        self.commission: Any = 1.5
        self.payout_state = "Accepted"
        self.bill_status = "PAID"
        self.bills: Dict[str, Dict[str, Any]] = {}
        self.requests: List[httpx.Request] = []
        self.fail_next: List[httpx.Response] = []
        # Answers for the next payment submissions only
        self.payment_failures: List[httpx.Response] = []

    def calls(self, operation: str) -> List[httpx.Request]:
        """Requests whose path ends with the given suffix."""
        return [r for r in self.requests if r.url.path.endswith(operation)]

    def bodies(self, operation: str) -> List[Dict[str, Any]]:
        return [json.loads(r.content) for r in self.calls(operation)]

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if self.fail_next:
            return self.fail_next.pop(0)

        path = request.url.path

        if path.startswith("/partner/bill/v1/bills/"):
            bill_id = path.rsplit("/", 1)[-1]
            if request.method == "PUT":
                body = json.loads(request.content)
                bill = {
                    "siteId": SITE_ID,
                    "billId": bill_id,
                    "amount": body["amount"],
                    "status": {"value": "WAITING", "changedDateTime": "2026-10-19T10:00:00+03:00"},
                    "customer": body.get("customer", {}),
                    "customFields": body.get("customFields", {}),
                    "creationDateTime": "2026-10-19T10:00:00+03:00",
                    "expirationDateTime": body["expirationDateTime"],
                    "payUrl": f"https://oplata.qiwi.com/form/?invoice_uid={bill_id}",
                }
                self.bills[bill_id] = bill
                return httpx.Response(200, json=bill)
            if bill_id not in self.bills:
                return httpx.Response(404, json={"description": "Invoice not found"})
            bill = dict(self.bills[bill_id])
            bill["status"] = {"value": self.bill_status, "changedDateTime": "2026-10-19T11:00:00+03:00"}
            return httpx.Response(200, json=bill)

        if path == "/sinap/crossRates":
            result = [{"from": "978", "to": "643", "rate": 100.0}]
            if self.rate is not None:
                result.append({"from": "840", "to": "643", "rate": self.rate})
            return httpx.Response(200, json={"result": result})

        if path.endswith("/onlineCommission"):
            body = json.loads(request.content)
            return httpx.Response(
                200,
                json={
                    "providerId": 99,
                    "withdrawSum": body["purchaseTotals"]["total"],
                    "qwCommission": {"amount": self.commission, "currency": 643},
                },
            )

        if path.endswith("/payments"):
            if self.payment_failures:
                return self.payment_failures.pop(0)
            body = json.loads(request.content)
            return httpx.Response(
                200,
                json={
                    "id": body["id"],
                    "sum": body["sum"],
                    "fields": body["fields"],
                    "transaction": {"id": "1000000001", "state": {"code": self.payout_state}},
                },
            )

        return httpx.Response(404, json={"description": f"Unknown path {path}"})


def sign(bill: Dict[str, Any], secret: str = SECRET_KEY) -> str:
    """Sign a notification bill the way QIWI does."""
    payload = "|".join(
        [
            bill["amount"]["currency"],
            "%.2f" % float(bill["amount"]["value"]),
            bill["billId"],
            bill["siteId"],
            bill["status"]["value"],
        ]
    )
    return hmac.new(secret.encode(), payload.encode(), hashlib.sha256).hexdigest()


def make_notification(
    bill_id: str, status: str = "PAID", value: str = "100.00", currency: str = "RUB"
) -> Dict[str, Any]:
    """Build a notification envelope for a bill."""
    return {
        "bill": {
            "siteId": SITE_ID,
            "billId": bill_id,
            "amount": {"value": value, "currency": currency},
            "status": {"value": status, "changedDateTime": "2026-10-19T11:00:00+03:00"},
            "customer": {},
            "customFields": {},
            "creationDateTime": "2026-10-19T10:00:00+03:00",
            "expirationDateTime": "2026-10-20T10:00:00+03:00",
        },
        "version": "1",
    }


@pytest.fixture
def test_settings(tmp_path: Any) -> Settings:
    """Create test settings."""
    return Settings(
        qiwi_secret_key=SECRET_KEY,
        qiwi_public_key="test-public-key",
        qiwi_edge_token=EDGE_TOKEN,
        qiwi_theme_code="test-theme",
        base_url="https://shop.example.com",
        database_url=f"sqlite+aiosqlite:///{tmp_path}/bills.db",
        payout_enabled=True,
        payout_account=PAYOUT_ACCOUNT,
        app_name="qiwi-checkout-test",
        app_env="test",
        log_level="DEBUG",
    )


@pytest.fixture
def qiwi() -> QiwiStub:
    return QiwiStub()


@pytest_asyncio.fixture
async def http_client(qiwi: QiwiStub) -> AsyncGenerator[httpx.AsyncClient, Any]:
    """httpx client routed to the QIWI stub."""
    async with httpx.AsyncClient(transport=httpx.MockTransport(qiwi.handler)) as client:
        yield client


@pytest.fixture
def bill_client(test_settings: Settings, http_client: httpx.AsyncClient) -> QiwiBillClient:
    return QiwiBillClient(test_settings, http_client=http_client)


@pytest.fixture
def wallet_client(test_settings: Settings, http_client: httpx.AsyncClient) -> QiwiWalletClient:
    return QiwiWalletClient(test_settings, http_client=http_client)


@pytest_asyncio.fixture
async def session_factory(test_settings: Settings) -> AsyncGenerator[Any, Any]:
    """Session factory on a fresh SQLite database."""
    engine = create_db_engine(test_settings)
    await init_db(engine)
    yield create_session_factory(engine)
    await close_db(engine)


@pytest.fixture
def bill_store(session_factory: Any) -> BillStore:
    return BillStore(session_factory)


@pytest.fixture
def payout_service(
    test_settings: Settings, wallet_client: QiwiWalletClient, bill_store: BillStore
) -> PayoutService:
    return PayoutService(test_settings, wallet_client, bill_store, LocalBillLockManager())


@pytest.fixture
def services(
    test_settings: Settings,
    bill_client: QiwiBillClient,
    wallet_client: QiwiWalletClient,
    bill_store: BillStore,
    payout_service: PayoutService,
    session_factory: Any,
) -> Services:
    """Services wired to the QIWI stub and the SQLite store."""
    return Services(
        settings=test_settings,
        bill_store=bill_store,
        checkout_service=CheckoutService(
            test_settings, bill_client, CurrencyConverter(wallet_client), bill_store
        ),
        notification_service=NotificationService(bill_client, bill_store, payout_service),
        health_check=HealthCheck(session_factory),
    )


@pytest_asyncio.fixture
async def client(
    test_settings: Settings, services: Services
) -> AsyncGenerator[httpx.AsyncClient, Any]:
    """Create test HTTP client."""
    app = create_app(test_settings, services)
    transport = httpx.ASGITransport(app=app, raise_app_exceptions=False)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac


@pytest.fixture
def signed_notification() -> Callable[..., Tuple[Dict[str, Any], str]]:
    """Factory returning a notification body and its valid signature."""

    def _make(bill_id: str, **kwargs: Any) -> Tuple[Dict[str, Any], str]:
        payload = make_notification(bill_id, **kwargs)
        return payload, sign(payload["bill"])

    return _make


@pytest_asyncio.fixture
async def paid_bill(bill_store: BillStore) -> str:
    """A stored bill already marked PAID for 100.00 RUB."""
    bill_id = "bill-paid-1"
    await bill_store.create(bill_id, "customer@example.com")
    await bill_store.update(bill_id, make_notification(bill_id)["bill"])
    return bill_id
