"""
Main FastAPI application.

QIWI checkout API with:
- Error handling
- Request ID tracking
- Structured logging
- Prometheus metrics

Run with ``uvicorn qiwi_checkout.api.main:create_app --factory``.
"""
import time
import uuid
from contextlib import asynccontextmanager
from typing import Any, AsyncGenerator, Optional

import structlog
from fastapi import FastAPI, Request, Response, status
from fastapi.responses import JSONResponse

from qiwi_checkout import __version__
from qiwi_checkout.config import Settings, get_settings
from qiwi_checkout.monitoring.logging import setup_logging

from .dependencies import Services
from .routes import (
    admin_router,
    bills_router,
    checkout_router,
    monitoring_router,
    pages_router,
    webhook_router,
)

logger = structlog.get_logger(__name__)


def create_app(
    settings: Optional[Settings] = None, services: Optional[Services] = None
) -> FastAPI:
    """
    Build the application.

    Args:
        settings: Application settings (loaded from the environment if omitted)
        services: Prebuilt services; built during startup if omitted

    Returns:
        FastAPI: Configured application
    """
    settings = settings or get_settings()
    setup_logging(settings)

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncGenerator[None, Any]:
        """
        Application lifespan manager.

        Builds services on startup unless they were injected, and closes
        the ones it built on shutdown.
        """
        logger.info(
            "application_startup",
            app_name=settings.app_name,
            env=settings.app_env,
            payouts_enabled=settings.payouts_configured,
        )

        owned: Optional[Services] = None
        if getattr(app.state, "services", None) is None:
            try:
                owned = await Services.build(settings)
                app.state.services = owned
                logger.info("services_initialized")
            except Exception as e:
                logger.error("services_initialization_failed", error=str(e))
                raise

        yield

        logger.info("application_shutdown")
        if owned is not None:
            try:
                await owned.close()
                logger.info("services_closed")
            except Exception as e:
                logger.error("services_shutdown_error", error=str(e))

    app = FastAPI(
        title="QIWI Checkout",
        description=(
            "Creates QIWI bills for USD checkouts, stores bill state from QIWI "
            "notifications and pays confirmed bills out to a QIWI wallet."
        ),
        version=__version__,
        lifespan=lifespan,
        docs_url="/docs",
        redoc_url="/redoc",
        openapi_url="/openapi.json",
    )
    app.state.services = services

    @app.middleware("http")
    async def add_request_id_middleware(request: Request, call_next: Any) -> Response:
        """
        Add request ID to all requests for tracing.

        Also adds timing information and structured logging context.
        """
        request_id = str(uuid.uuid4())
        start_time = time.time()

        structlog.contextvars.bind_contextvars(
            request_id=request_id,
            method=request.method,
            path=request.url.path,
        )

        logger.info(
            "request_started",
            client_host=request.client.host if request.client else None,
        )

        try:
            response = await call_next(request)

            response.headers["X-Request-ID"] = request_id

            duration = time.time() - start_time
            logger.info(
                "request_completed",
                status_code=response.status_code,
                duration_seconds=duration,
            )

            return response

        except Exception as e:
            duration = time.time() - start_time
            logger.error(
                "request_failed",
                error=str(e),
                duration_seconds=duration,
            )
            raise

        finally:
            structlog.contextvars.clear_contextvars()

    @app.exception_handler(Exception)
    async def global_exception_handler(request: Request, exc: Exception) -> JSONResponse:
        """
        Global exception handler for unhandled exceptions.
        """
        logger.error(
            "unhandled_exception",
            error=str(exc),
            error_type=type(exc).__name__,
            path=request.url.path,
        )

        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content={
                "error": "Internal server error",
                "message": "An unexpected error occurred. Please try again later.",
            },
        )

    app.include_router(pages_router)
    app.include_router(checkout_router)
    app.include_router(webhook_router)
    app.include_router(bills_router)
    app.include_router(admin_router)
    app.include_router(monitoring_router)

    return app


def main() -> None:
    """Run the API with uvicorn."""
    import uvicorn

    settings = get_settings()
    uvicorn.run(
        "qiwi_checkout.api.main:create_app",
        factory=True,
        host=settings.api_host,
        port=settings.api_port,
        reload=settings.debug,
        log_level=settings.log_level.lower(),
    )


if __name__ == "__main__":
    main()
