"""
Tests for the checkout flow.
"""
from datetime import datetime, timedelta, timezone
from decimal import Decimal

import pytest

from qiwi_checkout.api.dependencies import Services
from qiwi_checkout.core.currency import CurrencyRateNotFound
from qiwi_checkout.database import BillStore

from conftest import QiwiStub


class TestCheckoutService:
    """Test suite for CheckoutService."""

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_checkout_creates_bill(
        self, services: Services, bill_store: BillStore, qiwi: QiwiStub
    ) -> None:
        """Test a checkout converts the amount, creates the bill and stores it."""
        bill = await services.checkout_service.checkout("customer@example.com", Decimal("10"))

        body = qiwi.bodies(f"/bills/{bill['billId']}")[0]
        assert body["amount"] == {"currency": "RUB", "value": "0.11"}
        assert body["customer"] == {"email": "customer@example.com"}
        assert body["customFields"] == {"themeCode": "test-theme"}
        assert "successUrl=https%3A%2F%2Fshop.example.com%2Fsuccess" in bill["payUrl"]

        record = await bill_store.require(bill["billId"])
        assert record.email == "customer@example.com"
        assert record.status == "WAITING"
        assert record.document["payUrl"] == bill["payUrl"]

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_expiration_from_lifetime(self, services: Services, qiwi: QiwiStub) -> None:
        """Test the bill expires about a day from now."""
        bill = await services.checkout_service.checkout("customer@example.com", Decimal("10"))

        expiration = datetime.fromisoformat(bill["expirationDateTime"])
        expected = datetime.now(timezone.utc) + timedelta(hours=24)
        assert abs(expiration - expected) < timedelta(minutes=1)

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_missing_rate_creates_no_bill(
        self, services: Services, bill_store: BillStore, qiwi: QiwiStub
    ) -> None:
        """Test a failed conversion never reaches the bill API."""
        qiwi.rate = None

        with pytest.raises(CurrencyRateNotFound):
            await services.checkout_service.checkout("customer@example.com", Decimal("10"))

        assert [r.method for r in qiwi.requests] == ["GET"]
        assert qiwi.bills == {}

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_each_checkout_new_bill(self, services: Services) -> None:
        first = await services.checkout_service.checkout("a@example.com", Decimal("5"))
        second = await services.checkout_service.checkout("a@example.com", Decimal("5"))

        assert first["billId"] != second["billId"]
