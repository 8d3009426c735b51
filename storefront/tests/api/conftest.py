"""
API test fixtures: a FastAPI app with every router mounted and the
repository, gateway and settings providers overridden with the memory
repositories and mocked gateways from the shared conftest.
"""

from typing import Dict, Iterator

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient
from fastapi_pagination import add_pagination

from storefront.api.dependencies import (
    get_credit_note_sequence,
    get_credit_note_storage,
    get_manifest_repository,
    get_notification_sender,
    get_order_repository,
    get_payment_gateway,
    get_photo_storage,
    get_product_repository,
    get_settings,
    get_shipment_gateway,
)
from storefront.api.routers import admin, checkout, orders, shipping, webhooks
from storefront.config import Settings
from storefront.tests.conftest import OTP_SECRET, STORE_NAME, WAREHOUSE_PINCODE

ADMIN_TOKEN = "admin-token"
CSRF_TOKEN = "csrf-test-token"
SHIPMENT_WEBHOOK_SECRET = "ship-secret"


@pytest.fixture
def settings() -> Settings:
    return Settings(
        admin_api_tokens=[ADMIN_TOKEN],
        otp_secret=OTP_SECRET,
        shiprocket_webhook_secret=SHIPMENT_WEBHOOK_SECRET,
        pickup_pincode=WAREHOUSE_PINCODE,
        store_name=STORE_NAME,
    )


@pytest.fixture
def app(
    settings,
    order_repo,
    product_repo,
    manifest_repo,
    credit_note_sequence,
    photo_storage,
    credit_note_storage,
    payment_gateway,
    shipment_gateway,
    notification_sender,
) -> FastAPI:
    """Create a FastAPI app with the storefront routers for testing."""
    app = FastAPI()

    app.dependency_overrides[get_settings] = lambda: settings
    app.dependency_overrides[get_order_repository] = lambda: order_repo
    app.dependency_overrides[get_product_repository] = lambda: product_repo
    app.dependency_overrides[get_manifest_repository] = lambda: manifest_repo
    app.dependency_overrides[get_credit_note_sequence] = lambda: credit_note_sequence
    app.dependency_overrides[get_photo_storage] = lambda: photo_storage
    app.dependency_overrides[get_credit_note_storage] = lambda: credit_note_storage
    app.dependency_overrides[get_payment_gateway] = lambda: payment_gateway
    app.dependency_overrides[get_shipment_gateway] = lambda: shipment_gateway
    app.dependency_overrides[get_notification_sender] = lambda: notification_sender

    add_pagination(app)

    app.include_router(checkout.router, prefix="/checkout")
    app.include_router(orders.router, prefix="/orders")
    app.include_router(webhooks.router, prefix="/webhooks")
    app.include_router(admin.router, prefix="/admin/orders")
    app.include_router(shipping.router, prefix="/admin/shipping")
    app.include_router(shipping.public_router, prefix="/shipping")

    return app


@pytest.fixture
def client(app: FastAPI) -> Iterator[TestClient]:
    with TestClient(app) as test_client:
        yield test_client


@pytest.fixture
def admin_headers() -> Dict[str, str]:
    return {
        "Authorization": f"Bearer {ADMIN_TOKEN}",
        "X-CSRF-Token": CSRF_TOKEN,
    }


@pytest.fixture
def admin_client(client: TestClient) -> TestClient:
    """Client carrying the CSRF cookie that matches ``admin_headers``."""
    client.cookies.set("csrf_token", CSRF_TOKEN)
    return client
