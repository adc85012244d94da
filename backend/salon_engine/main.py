# backend/salon_engine/main.py
"""
FastAPI application for the salon booking engine.

Mounts the v1 routers under /api/v1 and the health/metrics probes at the
root.
"""

from contextlib import asynccontextmanager
import logging
from typing import AsyncGenerator

from fastapi import APIRouter, FastAPI

from . import __version__
from .core.config import is_running_tests, settings
from .errors import register_error_handlers
from .routes.v1 import bookings as bookings_v1, health as health_v1, payments as payments_v1, queue as queue_v1

logging.basicConfig(
    level=settings.log_level, format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
)

logger = logging.getLogger(__name__)

API_TITLE = "Salon Booking Engine"


@asynccontextmanager
async def app_lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Handle application startup/shutdown without deprecated events."""
    logger.info(f"{API_TITLE} starting up...")
    logger.info(f"Environment: {settings.environment} (timezone={settings.business_timezone})")
    if is_running_tests():
        logger.info("Running under pytest (test mode active)")
    if not settings.paystack_secret_key.get_secret_value():
        logger.warning("PAYSTACK_SECRET_KEY is not set; webhooks will be rejected and verification uses fallbacks")
    yield
    logger.info(f"{API_TITLE} shutting down...")


def create_app() -> FastAPI:
    app = FastAPI(
        title=API_TITLE,
        version=__version__,
        docs_url="/docs",
        redoc_url="/redoc",
        lifespan=app_lifespan,
    )
    register_error_handlers(app)

    api_v1 = APIRouter(prefix="/api/v1")
    api_v1.include_router(bookings_v1.router, prefix="/bookings")
    api_v1.include_router(queue_v1.router, prefix="/queue")
    api_v1.include_router(payments_v1.router, prefix="/payments")

    app.include_router(api_v1)
    app.include_router(health_v1.router)
    return app


app = create_app()
