"""
Shared fixtures: memory repositories, mocked gateways and wired use cases.

Gateways are ``MagicMock(spec=<Protocol>)`` objects with ``AsyncMock``
methods, so they pass the ``ensure_*`` protocol checks the use cases run.
"""

from decimal import Decimal
from typing import AsyncIterator, Awaitable, Callable, List, Optional
from unittest.mock import AsyncMock, MagicMock

import pytest
from aiohttp import web
from aiohttp.test_utils import TestServer

from storefront.credit_note import CreditNoteService
from storefront.domain import (
    AwbAssignment,
    CourierOption,
    ManifestOutcome,
    PaymentGatewayOrder,
    PickupOutcome,
    RefundOutcome,
    ShipmentCreation,
    TrackingEvent,
    TrackingInfo,
)
from storefront.lifecycle import OrderLifecycle
from storefront.notifications import NotificationOutbox, Notifier
from storefront.repos.memory import (
    MemoryCreditNoteSequence,
    MemoryFileStorageRepository,
    MemoryManifestRepository,
    MemoryOrderRepository,
    MemoryProductRepository,
)
from storefront.repositories import (
    NotificationSender,
    PaymentGateway,
    ShipmentGateway,
)
from storefront.use_cases.cancellation import CancellationUseCase
from storefront.use_cases.customer import CustomerCancellationUseCase
from storefront.use_cases.returns import ReturnsUseCase

STORE_NAME = "TestStore"
OTP_SECRET = "test-otp-secret"
WAREHOUSE_PINCODE = "110001"


def processed_refund(
    payment_id: str, amount: int, notes: Optional[dict] = None
) -> RefundOutcome:
    return RefundOutcome(
        refund_id="rfnd_test_1",
        status="processed",
        amount=amount,
        payment_id=payment_id,
    )


@pytest.fixture
def order_repo() -> MemoryOrderRepository:
    return MemoryOrderRepository()


@pytest.fixture
def product_repo() -> MemoryProductRepository:
    return MemoryProductRepository()


@pytest.fixture
def manifest_repo() -> MemoryManifestRepository:
    return MemoryManifestRepository()


@pytest.fixture
def photo_storage() -> MemoryFileStorageRepository:
    return MemoryFileStorageRepository("return-inspections")


@pytest.fixture
def credit_note_storage() -> MemoryFileStorageRepository:
    return MemoryFileStorageRepository("credit-notes")


@pytest.fixture
def credit_note_sequence() -> MemoryCreditNoteSequence:
    return MemoryCreditNoteSequence()


@pytest.fixture
def notification_sender() -> MagicMock:
    sender = MagicMock(spec=NotificationSender)
    sender.send = AsyncMock(return_value=None)
    return sender


@pytest.fixture
def outbox(notification_sender: MagicMock) -> NotificationOutbox:
    return NotificationOutbox(notification_sender)


@pytest.fixture
def notifier(outbox: NotificationOutbox) -> Notifier:
    return Notifier(outbox, STORE_NAME)


@pytest.fixture
def payment_gateway() -> MagicMock:
    gateway = MagicMock(spec=PaymentGateway)
    gateway.key_id = "rzp_test_key"
    gateway.create_order = AsyncMock(
        return_value=PaymentGatewayOrder(
            gateway_order_id="order_rzp_new", amount=55000, currency="INR"
        )
    )
    gateway.refund = AsyncMock(side_effect=processed_refund)
    gateway.verify_webhook_signature = MagicMock(return_value=True)
    return gateway


@pytest.fixture
def shipment_gateway() -> MagicMock:
    gateway = MagicMock(spec=ShipmentGateway)
    gateway.create_shipment = AsyncMock(
        return_value=ShipmentCreation(
            shipment_order_id="sr-order-1", shipment_id="sr-ship-1"
        )
    )
    gateway.assign_awb = AsyncMock(
        return_value=AwbAssignment(awb_code="AWB123", courier_name="Delhivery")
    )
    gateway.cancel_shipment = AsyncMock(return_value=True)
    gateway.generate_label = AsyncMock(return_value="https://labels/sr-ship-1.pdf")
    gateway.schedule_pickup = AsyncMock(
        return_value=PickupOutcome(scheduled=True, pickup_date="2026-10-20")
    )
    gateway.generate_manifest = AsyncMock(
        return_value=ManifestOutcome(manifest_url="https://manifests/1.pdf")
    )
    gateway.courier_rates = AsyncMock(
        return_value=[
            CourierOption(courier_id=3, name="Ekart", rate=Decimal("60.00")),
            CourierOption(courier_id=7, name="Delhivery", rate=Decimal("85.00")),
        ]
    )
    gateway.track = AsyncMock(
        return_value=TrackingInfo(
            awb_code="AWB123",
            current_status="IN TRANSIT",
            events=[TrackingEvent(status="IN TRANSIT", location="Hub")],
        )
    )
    gateway.create_return_shipment = AsyncMock(
        return_value=ShipmentCreation(
            shipment_order_id="sr-return-1",
            shipment_id="sr-return-ship-1",
            awb_code="RAWB456",
        )
    )
    return gateway


@pytest.fixture
def lifecycle(order_repo: MemoryOrderRepository) -> OrderLifecycle:
    return OrderLifecycle(order_repo)


@pytest.fixture
def credit_notes(
    credit_note_sequence: MemoryCreditNoteSequence,
    credit_note_storage: MemoryFileStorageRepository,
    lifecycle: OrderLifecycle,
    notifier: Notifier,
) -> CreditNoteService:
    return CreditNoteService(
        sequence=credit_note_sequence,
        storage=credit_note_storage,
        lifecycle=lifecycle,
        notifier=notifier,
        store_name=STORE_NAME,
        gstin="29ABCDE1234F1Z5",
    )


@pytest.fixture
def cancellation(
    order_repo: MemoryOrderRepository,
    payment_gateway: MagicMock,
    shipment_gateway: MagicMock,
    notifier: Notifier,
    credit_notes: CreditNoteService,
) -> CancellationUseCase:
    return CancellationUseCase(
        order_repo, payment_gateway, shipment_gateway, notifier, credit_notes
    )


@pytest.fixture
def returns(
    order_repo: MemoryOrderRepository,
    payment_gateway: MagicMock,
    shipment_gateway: MagicMock,
    photo_storage: MemoryFileStorageRepository,
    notifier: Notifier,
    credit_notes: CreditNoteService,
) -> ReturnsUseCase:
    return ReturnsUseCase(
        order_repo,
        payment_gateway,
        shipment_gateway,
        photo_storage,
        notifier,
        credit_notes,
        warehouse_pincode=WAREHOUSE_PINCODE,
    )


@pytest.fixture
def customer(
    order_repo: MemoryOrderRepository,
    cancellation: CancellationUseCase,
    returns: ReturnsUseCase,
    notifier: Notifier,
) -> CustomerCancellationUseCase:
    return CustomerCancellationUseCase(
        order_repo, cancellation, returns, notifier, OTP_SECRET
    )


@pytest.fixture
async def http_server() -> AsyncIterator[
    Callable[[List[web.RouteDef]], Awaitable[str]]
]:
    """Start a local aiohttp app standing in for a gateway; returns its base URL."""
    servers: List[TestServer] = []

    async def start(routes: List[web.RouteDef]) -> str:
        app = web.Application()
        app.add_routes(routes)
        server = TestServer(app)
        await server.start_server()
        servers.append(server)
        return str(server.make_url("/"))

    yield start
    for server in servers:
        await server.close()


async def html_bad_gateway(request: web.Request) -> web.Response:
    return web.Response(
        status=502,
        text="<html><body><h1>502 Bad Gateway</h1></body></html>",
        content_type="text/html",
    )
