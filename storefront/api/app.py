"""
FastAPI application for the storefront order engine.

The API provides endpoints for:
- Guest checkout and payment/refund/shipment webhooks
- Customer cancellation, returns and order status
- Admin cancellation retries, return inspection and shipping
- Health checks
"""

import logging
import os
from contextlib import asynccontextmanager
from typing import AsyncIterator

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi_pagination import add_pagination
from fastapi_pagination.utils import disable_installed_extensions_check

from storefront import __version__
from storefront.api.dependencies import get_container
from storefront.api.responses import HealthCheckResponse
from storefront.api.routers import admin, checkout, orders, shipping, webhooks

disable_installed_extensions_check()


def setup_logging() -> None:
    """Configure logging based on environment variables"""
    log_level = os.environ.get("LOG_LEVEL", "INFO").upper()
    log_format = os.environ.get(
        "LOG_FORMAT", "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
    )

    numeric_level = getattr(logging, log_level, None)
    if not isinstance(numeric_level, int):
        print(f"Invalid log level: {log_level}, defaulting to INFO")
        numeric_level = logging.INFO

    logging.basicConfig(level=numeric_level, format=log_format, force=True)
    logging.getLogger("storefront").setLevel(numeric_level)
    logging.getLogger("uvicorn").setLevel(logging.INFO)


setup_logging()
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    logger.info("Storefront API starting", extra={"version": __version__})
    yield
    await get_container().close()
    logger.info("Storefront API stopped")


app = FastAPI(
    title="Storefront Order API",
    description="Checkout, fulfilment, cancellation and returns",
    version=__version__,
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=get_container().settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

_ = add_pagination(app)


@app.get("/health", response_model=HealthCheckResponse)
async def health_check() -> HealthCheckResponse:
    """Health check endpoint"""
    logger.debug("Health check requested")
    return HealthCheckResponse(status="ok", version=__version__)


app.include_router(checkout.router, prefix="/checkout", tags=["Checkout"])
app.include_router(orders.router, prefix="/orders", tags=["Orders"])
app.include_router(webhooks.router, prefix="/webhooks", tags=["Webhooks"])
app.include_router(admin.router, prefix="/admin/orders", tags=["Admin Orders"])
app.include_router(
    shipping.router, prefix="/admin/shipping", tags=["Admin Shipping"]
)
app.include_router(shipping.public_router, prefix="/shipping", tags=["Shipping"])


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "storefront.api.app:app",
        host="0.0.0.0",
        port=8000,
        log_level="info",
    )
