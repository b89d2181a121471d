"""
Pydantic schemas for API request/response models.
"""
from decimal import Decimal
from typing import Any, Dict, Optional

from pydantic import BaseModel, Field


class CheckoutRequest(BaseModel):
    """Request schema for starting a checkout."""

    email: str = Field(..., description="Customer email")
    amount: Decimal = Field(..., description="Amount in USD")

    model_config = {
        "json_schema_extra": {
            "examples": [{"email": "customer@example.com", "amount": 10}]
        }
    }


class HealthCheckResponse(BaseModel):
    """Response schema for health checks."""

    status: str = Field(..., description="Overall health status (healthy/unhealthy)")
    checks: Optional[Dict[str, Any]] = Field(default=None, description="Individual service checks")
    message: Optional[str] = Field(default=None, description="Status message")


class ServiceInfoResponse(BaseModel):
    """Response schema for the root endpoint."""

    service: str
    version: str
    environment: str
    public_key: str = Field(..., description="QIWI P2P public key for client-side forms")
    payouts_enabled: bool
