"""
API routes for checkout, QIWI notifications and bill lookup.
"""
from typing import Any, Dict, Optional

import structlog
from fastapi import APIRouter, Depends, Header, HTTPException, Request, Response, status
from fastapi.responses import HTMLResponse, JSONResponse, PlainTextResponse
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest

from qiwi_checkout import __version__
from qiwi_checkout.core.notifications import WebhookError
from qiwi_checkout.database.bill_store import BillNotFoundError

from .dependencies import Services, get_services
from .schemas import CheckoutRequest, HealthCheckResponse, ServiceInfoResponse

logger = structlog.get_logger(__name__)

# Create routers
pages_router = APIRouter(tags=["pages"])
checkout_router = APIRouter(tags=["checkout"])
webhook_router = APIRouter(tags=["webhooks"])
bills_router = APIRouter(prefix="/bills", tags=["bills"])
admin_router = APIRouter(prefix="/admin", tags=["admin"])
monitoring_router = APIRouter(tags=["monitoring"])

SUCCESS_PAGE = """<!DOCTYPE html>
<html>
  <head><meta charset="utf-8"><title>Payment received</title></head>
  <body><h1>Thank you!</h1><p>Your payment has been received.</p></body>
</html>
"""


@pages_router.get("/", response_model=ServiceInfoResponse)
async def root(services: Services = Depends(get_services)) -> Dict[str, Any]:
    """Root endpoint with service information."""
    settings = services.settings
    return {
        "service": settings.app_name,
        "version": __version__,
        "environment": settings.app_env,
        "public_key": settings.qiwi_public_key,
        "payouts_enabled": settings.payouts_configured,
    }


@pages_router.get("/success", response_class=HTMLResponse)
async def success() -> str:
    """Landing page for the payment form's success redirect."""
    return SUCCESS_PAGE


@monitoring_router.get("/healthcheck", response_class=PlainTextResponse)
async def healthcheck() -> str:
    """Liveness endpoint."""
    return "ok"


@checkout_router.post(
    "/checkout",
    summary="Start a checkout",
    description="Create a QIWI bill for a USD amount and return it",
)
async def checkout(
    request: CheckoutRequest,
    services: Services = Depends(get_services),
) -> JSONResponse:
    """
    Create a bill.

    The reply body is the bill object exactly as QIWI returned it.
    """
    logger.info("api_checkout_request", amount=str(request.amount))

    bill = await services.checkout_service.checkout(request.email, request.amount)

    return JSONResponse(content=bill)


@webhook_router.post(
    "/qiwi-notification",
    status_code=status.HTTP_204_NO_CONTENT,
    response_class=Response,
    summary="QIWI notification endpoint",
    description="Receive bill status notifications from QIWI",
)
async def qiwi_notification(
    request: Request,
    signature: Optional[str] = Header(default=None, alias="x-api-signature-sha256"),
    services: Services = Depends(get_services),
) -> Response:
    """
    Handle a QIWI bill notification.

    Verifies the signature, stores the bill and runs the payout step.

    A missing or wrong signature, or a body that is not a signed bill,
    answers 400 and stores nothing; QIWI counts any non-2xx answer as a
    failed delivery. Failures past verification (QIWI calls, locks) reach
    the 500 handler.
    """
    try:
        payload = await request.json()
    except ValueError:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Body is not JSON")

    try:
        await services.notification_service.handle(signature, payload)
    except WebhookError as e:
        logger.warning("api_notification_rejected", error=str(e))
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))

    return Response(status_code=status.HTTP_204_NO_CONTENT)


@bills_router.get(
    "/{bill_id}",
    summary="Get bill",
    description="Retrieve the stored state of a bill",
)
async def get_bill(
    bill_id: str,
    services: Services = Depends(get_services),
) -> Dict[str, Any]:
    """Get a stored bill by id."""
    record = await services.bill_store.get(bill_id)

    if record is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Bill not found")

    return record.to_dict()


@admin_router.post(
    "/bills/{bill_id}/sync",
    summary="Sync bill from QIWI",
    description="Fetch a bill from QIWI, store it and run the payout step",
)
async def sync_bill(
    bill_id: str,
    services: Services = Depends(get_services),
) -> Dict[str, Any]:
    """Recover a bill whose notification never arrived."""
    logger.info("api_bill_sync_started", bill_id=bill_id)

    try:
        record = await services.notification_service.sync_from_gateway(bill_id)
    except BillNotFoundError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))

    return record.to_dict()


@monitoring_router.get(
    "/health",
    response_model=HealthCheckResponse,
    summary="Health check",
    description="Check database connectivity",
)
async def health(services: Services = Depends(get_services)) -> Dict[str, Any]:
    """Health check endpoint for monitoring."""
    return await services.health_check.check_all()


@monitoring_router.get(
    "/metrics",
    summary="Prometheus metrics",
    description="Expose Prometheus metrics",
    include_in_schema=False,
)
async def prometheus_metrics() -> Response:
    """Expose Prometheus metrics."""
    return Response(content=generate_latest(), media_type=CONTENT_TYPE_LATEST)
