"""FastAPI application and routes."""
from .dependencies import Services
from .main import create_app
from .schemas import CheckoutRequest, HealthCheckResponse

__all__ = [
    "create_app",
    "CheckoutRequest",
    "HealthCheckResponse",
    "Services",
]
