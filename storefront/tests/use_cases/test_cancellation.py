"""
Tests for CancellationUseCase.

Orders start in CANCELLATION_REQUESTED, the state a verified customer
request leaves them in, and the refund gateway answers "processed" for
the full amount unless a test says otherwise.
"""

from decimal import Decimal

import pytest
from aiohttp import web

from storefront.domain import (
    CancellationStatus,
    OrderStatus,
    PaymentStatus,
    RefundOutcome,
    RefundStatus,
    ShipmentStatus,
)
from storefront.errors import (
    PaymentGatewayError,
    PreconditionViolation,
    ShipmentCancellationFailed,
    ShipmentGatewayAuthError,
)
from storefront.repos.shiprocket import ShiprocketShipmentGateway
from storefront.tests.conftest import WAREHOUSE_PINCODE, html_bad_gateway
from storefront.tests.factories import PaidOrderFactory
from storefront.use_cases.cancellation import CancellationUseCase
from storefront.use_cases.shipping import ShippingUseCase


def cancelling_order(**overrides):
    fields = dict(
        order_status=OrderStatus.CANCELLATION_REQUESTED,
        cancellation_status=CancellationStatus.CANCELLATION_REQUESTED,
    )
    fields.update(overrides)
    return PaidOrderFactory.build(**fields)


async def test_retry_requires_cancellation_state(cancellation, order_repo):
    order = PaidOrderFactory.build()
    await order_repo.create_order(order)

    with pytest.raises(PreconditionViolation, match="not in cancellation state"):
        await cancellation.retry(order.order_id)


async def test_retry_refunds_and_cancels(
    cancellation, order_repo, payment_gateway, outbox, notification_sender
):
    # Arrange
    order = cancelling_order(
        refund_status=RefundStatus.REFUND_FAILED,
        refund_error_code="BAD_REQUEST_ERROR",
    )
    await order_repo.create_order(order)

    # Act
    response = await cancellation.retry(order.order_id)

    # Assert
    assert response.order_status == OrderStatus.CANCELLED
    stored = await order_repo.get_order(order.order_id)
    assert stored.payment_status is PaymentStatus.REFUNDED
    assert stored.refund_status is RefundStatus.REFUND_COMPLETED
    assert stored.cancellation_status is CancellationStatus.CANCELLED
    assert stored.refund_amount == Decimal("550.00")
    assert stored.refund_error_code is None
    assert stored.credit_note_number is not None
    payment_gateway.refund.assert_awaited_once()
    assert payment_gateway.refund.await_args.args == (order.gateway_payment_id, 55000)
    assert outbox.kinds() == ["refund_processed", "credit_note"]

    await outbox.flush()
    assert notification_sender.send.await_count == 2


async def test_retry_is_idempotent(cancellation, order_repo, payment_gateway):
    order = cancelling_order()
    await order_repo.create_order(order)
    await cancellation.retry(order.order_id)

    with pytest.raises(PreconditionViolation):
        await cancellation.retry(order.order_id)

    payment_gateway.refund.assert_awaited_once()


async def test_created_refund_waits_for_webhook(
    cancellation, order_repo, payment_gateway, outbox
):
    payment_gateway.refund.side_effect = None
    payment_gateway.refund.return_value = RefundOutcome(
        refund_id="rfnd_pending", status="created", amount=55000, payment_id="pay"
    )
    order = cancelling_order()
    await order_repo.create_order(order)

    await cancellation.retry(order.order_id)

    stored = await order_repo.get_order(order.order_id)
    assert stored.refund_status is RefundStatus.REFUND_INITIATED
    assert stored.refund_id == "rfnd_pending"
    assert stored.order_status is OrderStatus.CANCELLATION_REQUESTED
    assert outbox.kinds() == []


async def test_refund_exception_is_persisted_as_failure(
    cancellation, order_repo, payment_gateway, outbox
):
    payment_gateway.refund.side_effect = RuntimeError("connection reset")
    order = cancelling_order()
    await order_repo.create_order(order)

    with pytest.raises(PaymentGatewayError, match="Refund retry failed"):
        await cancellation.retry(order.order_id)

    stored = await order_repo.get_order(order.order_id)
    assert stored.refund_status is RefundStatus.REFUND_FAILED
    assert stored.refund_error_code == "UNKNOWN"
    assert stored.refund_error_description == "connection reset"
    assert stored.payment_status is PaymentStatus.PAID
    assert outbox.kinds() == []


async def test_partial_refund_is_a_failure(cancellation, order_repo, payment_gateway):
    payment_gateway.refund.side_effect = None
    payment_gateway.refund.return_value = RefundOutcome(
        refund_id="rfnd_part", status="processed", amount=100, payment_id="pay"
    )
    order = cancelling_order()
    await order_repo.create_order(order)

    with pytest.raises(PaymentGatewayError):
        await cancellation.retry(order.order_id)

    stored = await order_repo.get_order(order.order_id)
    assert stored.refund_status is RefundStatus.REFUND_FAILED
    assert stored.refund_error_code == "UNEXPECTED_RESPONSE"
    assert stored.refund_id == "rfnd_part"


async def test_shipment_retry_refused_keeps_failure_status(
    cancellation, order_repo, shipment_gateway, payment_gateway
):
    shipment_gateway.cancel_shipment.return_value = False
    order = cancelling_order(
        shipment_status=ShipmentStatus.SHIPPING_CANCELLATION_FAILED,
        shipment_order_id="sr-order-1",
    )
    await order_repo.create_order(order)

    with pytest.raises(ShipmentCancellationFailed) as exc_info:
        await cancellation.retry(order.order_id)

    assert exc_info.value.status_code == 400
    stored = await order_repo.get_order(order.order_id)
    assert stored.shipment_status is ShipmentStatus.SHIPPING_CANCELLATION_FAILED
    payment_gateway.refund.assert_not_awaited()


async def test_shipment_retry_then_refund(
    cancellation, order_repo, shipment_gateway
):
    order = cancelling_order(
        shipment_status=ShipmentStatus.SHIPPING_CANCELLATION_FAILED,
        shipment_order_id="sr-order-1",
    )
    await order_repo.create_order(order)

    response = await cancellation.retry(order.order_id)

    shipment_gateway.cancel_shipment.assert_awaited_once_with("sr-order-1")
    assert response.shipment_status == ShipmentStatus.SHIPPING_CANCELLED
    assert response.order_status == OrderStatus.CANCELLED


async def test_process_cancels_assigned_shipment_first(
    cancellation, order_repo, shipment_gateway
):
    order = cancelling_order(
        shipment_status=ShipmentStatus.AWB_ASSIGNED,
        shipment_order_id="sr-order-1",
        awb_code="AWB123",
    )
    await order_repo.create_order(order)

    updated = await cancellation.process(order)

    shipment_gateway.cancel_shipment.assert_awaited_once()
    assert updated.shipment_status is ShipmentStatus.SHIPPING_CANCELLED
    assert updated.refund_status is RefundStatus.REFUND_COMPLETED


async def test_shipment_gateway_outage_marks_failure_and_reraises(
    cancellation, order_repo, shipment_gateway, payment_gateway
):
    shipment_gateway.cancel_shipment.side_effect = ShipmentGatewayAuthError(
        "Shipment gateway authentication failed", code="HTTP_403"
    )
    order = cancelling_order(
        shipment_status=ShipmentStatus.PICKUP_SCHEDULED,
        shipment_order_id="sr-order-1",
    )
    await order_repo.create_order(order)

    with pytest.raises(ShipmentGatewayAuthError):
        await cancellation.process(order)

    stored = await order_repo.get_order(order.order_id)
    assert stored.shipment_status is ShipmentStatus.SHIPPING_CANCELLATION_FAILED
    payment_gateway.refund.assert_not_awaited()


async def test_unexpected_shipment_error_marks_failure_and_reraises(
    cancellation, order_repo, shipment_gateway, payment_gateway
):
    shipment_gateway.cancel_shipment.side_effect = KeyError("ids")
    order = cancelling_order(
        shipment_status=ShipmentStatus.AWB_ASSIGNED,
        shipment_order_id="sr-order-1",
    )
    await order_repo.create_order(order)

    with pytest.raises(KeyError):
        await cancellation.process(order)

    stored = await order_repo.get_order(order.order_id)
    assert stored.shipment_status is ShipmentStatus.SHIPPING_CANCELLATION_FAILED
    payment_gateway.refund.assert_not_awaited()


async def test_html_error_page_on_cancel_leaves_order_retryable(
    order_repo,
    manifest_repo,
    payment_gateway,
    notifier,
    credit_notes,
    shipment_gateway,
    http_server,
):
    # Arrange
    async def login(request):
        return web.json_response({"token": "token-1"})

    base_url = await http_server(
        [
            web.post("/auth/login", login),
            web.post("/orders/cancel", html_bad_gateway),
        ]
    )
    gateway = ShiprocketShipmentGateway(
        email="ops@example.com",
        password="secret",
        pickup_location="Primary",
        base_url=base_url,
    )
    use_case = CancellationUseCase(
        order_repo, payment_gateway, gateway, notifier, credit_notes
    )
    order = cancelling_order(
        shipment_status=ShipmentStatus.AWB_ASSIGNED,
        shipment_order_id="sr-order-1",
        awb_code="AWB123",
    )
    await order_repo.create_order(order)

    # Act
    with pytest.raises(ShipmentCancellationFailed):
        await use_case.process(order)

    # Assert
    stored = await order_repo.get_order(order.order_id)
    assert stored.shipment_status is ShipmentStatus.SHIPPING_CANCELLATION_FAILED
    shipping = ShippingUseCase(
        order_repo, shipment_gateway, manifest_repo, WAREHOUSE_PINCODE
    )
    stuck = await shipping.cancellation_failed_orders()
    assert [o.order_id for o in stuck] == [order.order_id]

    retried = await CancellationUseCase(
        order_repo, payment_gateway, shipment_gateway, notifier, credit_notes
    ).retry(order.order_id)
    assert retried.order_status == OrderStatus.CANCELLED
