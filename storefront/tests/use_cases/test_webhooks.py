"""Tests for the payment, refund and shipment webhook ingestors."""

import json
from decimal import Decimal
from unittest.mock import AsyncMock

import pytest

from storefront.domain import (
    CancellationStatus,
    OrderStatus,
    PaymentStatus,
    RefundStatus,
    ReturnStatus,
)
from storefront.tests.factories import OrderFactory, PaidOrderFactory
from storefront.use_cases.webhooks import (
    PaymentWebhookUseCase,
    RefundWebhookUseCase,
    ShipmentWebhookUseCase,
    extract_entity,
)


def payment_event(order, event="payment.captured", amount=55000) -> bytes:
    return json.dumps(
        {
            "event": event,
            "payload": {
                "payment": {
                    "entity": {
                        "id": "pay_live_1",
                        "order_id": order.gateway_order_id,
                        "amount": amount,
                        "error_description": "Card declined",
                        "notes": {},
                    }
                }
            },
        }
    ).encode()


def refund_event(refund_id, payment_id, status="processed", amount=55000) -> bytes:
    return json.dumps(
        {
            "event": f"refund.{status}",
            "payload": {
                "refund": {
                    "entity": {
                        "id": refund_id,
                        "payment_id": payment_id,
                        "status": status,
                        "amount": amount,
                    }
                }
            },
        }
    ).encode()


@pytest.fixture
def payments(order_repo, payment_gateway, notifier) -> PaymentWebhookUseCase:
    return PaymentWebhookUseCase(order_repo, payment_gateway, notifier)


@pytest.fixture
def refunds(order_repo, payment_gateway, notifier, credit_notes) -> RefundWebhookUseCase:
    return RefundWebhookUseCase(order_repo, payment_gateway, notifier, credit_notes)


@pytest.fixture
def shipments(order_repo, notifier) -> ShipmentWebhookUseCase:
    return ShipmentWebhookUseCase(order_repo, notifier)


def test_extract_entity_shapes():
    nested = {"payload": {"refund": {"entity": {"id": "rfnd_1"}}}}
    flat = {"entity": "refund", "id": "rfnd_2"}
    wrapped = {"entity": {"entity": "refund", "id": "rfnd_3"}}

    assert extract_entity(nested, "refund")["id"] == "rfnd_1"
    assert extract_entity(flat, "refund")["id"] == "rfnd_2"
    assert extract_entity(wrapped, "refund")["id"] == "rfnd_3"
    assert extract_entity({"payload": {}}, "refund") is None


class TestPaymentWebhook:
    async def test_capture_confirms_order_once(self, payments, order_repo, outbox):
        order = OrderFactory.build()
        await order_repo.create_order(order)
        body = payment_event(order)

        first = await payments.handle(body, "sig")
        replay = await payments.handle(body, "sig")

        assert first.message == "Payment captured"
        assert replay.message == "Already processed"
        stored = await order_repo.get_order(order.order_id)
        assert stored.payment_status is PaymentStatus.PAID
        assert stored.order_status is OrderStatus.CONFIRMED
        assert stored.gateway_payment_id == "pay_live_1"
        assert stored.paid_at is not None
        assert outbox.kinds() == ["order_confirmed"]

    async def test_invalid_signature_is_acknowledged_but_ignored(
        self, payments, order_repo, payment_gateway
    ):
        payment_gateway.verify_webhook_signature.return_value = False
        order = OrderFactory.build()
        await order_repo.create_order(order)

        response = await payments.handle(payment_event(order), "forged")

        assert response.message == "Invalid signature"
        stored = await order_repo.get_order(order.order_id)
        assert stored.payment_status is PaymentStatus.INITIATED

    async def test_missing_signature_is_rejected(self, payments, order_repo):
        order = OrderFactory.build()
        await order_repo.create_order(order)

        response = await payments.handle(payment_event(order), None)

        assert response.message == "Invalid signature"

    async def test_lenient_mode_processes_unsigned_events(
        self, order_repo, payment_gateway, notifier
    ):
        payment_gateway.verify_webhook_signature.return_value = False
        use_case = PaymentWebhookUseCase(
            order_repo, payment_gateway, notifier, strict_signatures=False
        )
        order = OrderFactory.build()
        await order_repo.create_order(order)

        response = await use_case.handle(payment_event(order), "forged")

        assert response.message == "Payment captured"

    async def test_amount_mismatch_still_captures(self, payments, order_repo):
        order = OrderFactory.build()
        await order_repo.create_order(order)

        response = await payments.handle(payment_event(order, amount=100), "sig")

        assert response.message == "Payment captured"

    async def test_payment_failure(self, payments, order_repo):
        order = OrderFactory.build()
        await order_repo.create_order(order)

        response = await payments.handle(
            payment_event(order, event="payment.failed"), "sig"
        )

        assert response.message == "Payment failed"
        stored = await order_repo.get_order(order.order_id)
        assert stored.payment_status is PaymentStatus.FAILED
        assert stored.payment_error == "Card declined"

    async def test_unknown_order_and_bad_json(self, payments):
        unknown = OrderFactory.build(gateway_order_id="order_nobody")

        assert (await payments.handle(payment_event(unknown), "sig")).message == (
            "Order not found"
        )
        assert (await payments.handle(b"not json", "sig")).message == "Invalid payload"

    async def test_internal_errors_are_acknowledged(self, payments, order_repo):
        order_repo.find_by_gateway_order_id = AsyncMock(
            side_effect=RuntimeError("database unavailable")
        )
        order = OrderFactory.build()

        response = await payments.handle(payment_event(order), "sig")

        assert response.message == "Webhook received"


class TestRefundWebhook:
    async def test_processed_refund_completes_cancellation(
        self, refunds, order_repo, outbox, credit_note_storage
    ):
        # Arrange
        order = PaidOrderFactory.build(
            order_status=OrderStatus.CANCELLATION_REQUESTED,
            cancellation_status=CancellationStatus.CANCELLATION_REQUESTED,
            refund_status=RefundStatus.REFUND_INITIATED,
            refund_id="rfnd_1",
        )
        await order_repo.create_order(order)

        # Act
        response = await refunds.handle(
            refund_event("rfnd_1", order.gateway_payment_id), "sig"
        )

        # Assert
        assert response.message == "Webhook processed"
        stored = await order_repo.get_order(order.order_id)
        assert stored.order_status is OrderStatus.CANCELLED
        assert stored.payment_status is PaymentStatus.REFUNDED
        assert stored.refund_amount == Decimal("550.00")
        assert stored.credit_note_number is not None
        assert outbox.kinds() == ["refund_processed", "credit_note"]
        assert len(credit_note_storage.objects) == 1

    async def test_replay_does_not_renumber_credit_note(self, refunds, order_repo):
        order = PaidOrderFactory.build(
            order_status=OrderStatus.CANCELLATION_REQUESTED,
            cancellation_status=CancellationStatus.CANCELLATION_REQUESTED,
            refund_status=RefundStatus.REFUND_INITIATED,
            refund_id="rfnd_1",
        )
        await order_repo.create_order(order)
        body = refund_event("rfnd_1", order.gateway_payment_id)

        await refunds.handle(body, "sig")
        number = (await order_repo.get_order(order.order_id)).credit_note_number
        await refunds.handle(body, "sig")

        stored = await order_repo.get_order(order.order_id)
        assert stored.credit_note_number == number

    async def test_return_refund_completes_return(self, refunds, order_repo, outbox):
        order = PaidOrderFactory.build(
            order_status=OrderStatus.DELIVERED,
            return_status=ReturnStatus.RETURN_REFUND_INITIATED,
            refund_status=RefundStatus.REFUND_INITIATED,
            refund_id="rfnd_ret",
        )
        await order_repo.create_order(order)

        await refunds.handle(
            refund_event("rfnd_ret", order.gateway_payment_id, amount=44000), "sig"
        )

        stored = await order_repo.get_order(order.order_id)
        assert stored.return_status is ReturnStatus.RETURN_REFUND_COMPLETED
        assert stored.order_status is OrderStatus.RETURNED
        assert stored.cancellation_status is None
        assert stored.refund_amount == Decimal("440.00")
        assert outbox.kinds() == ["return_refund_processed", "credit_note"]

    async def test_matches_by_payment_id_when_refund_unknown(
        self, refunds, order_repo
    ):
        order = PaidOrderFactory.build()
        await order_repo.create_order(order)

        await refunds.handle(
            refund_event("rfnd_new", order.gateway_payment_id, status="created"),
            "sig",
        )

        stored = await order_repo.get_order(order.order_id)
        assert stored.refund_status is RefundStatus.REFUND_INITIATED
        assert stored.refund_id == "rfnd_new"

    async def test_failed_refund_records_error(self, refunds, order_repo):
        order = PaidOrderFactory.build(
            refund_status=RefundStatus.REFUND_INITIATED, refund_id="rfnd_1"
        )
        await order_repo.create_order(order)

        await refunds.handle(
            refund_event("rfnd_1", order.gateway_payment_id, status="failed"), "sig"
        )

        stored = await order_repo.get_order(order.order_id)
        assert stored.refund_status is RefundStatus.REFUND_FAILED
        assert stored.refund_error_code == "REFUND_FAILED"

    async def test_unmatched_refund(self, refunds):
        response = await refunds.handle(refund_event("rfnd_x", "pay_x"), "sig")

        assert response.message == "Order not found"


class TestShipmentWebhook:
    async def test_picked_up_then_delivered(self, shipments, order_repo, outbox):
        order = PaidOrderFactory.build(
            shipment_status="PICKUP_SCHEDULED", awb_code="AWB123"
        )
        await order_repo.create_order(order)

        picked = await shipments.handle({"awb": "AWB123", "current_status": "Picked Up"})
        delivered = await shipments.handle(
            {"awb": "AWB123", "current_status": "DELIVERED"}
        )

        assert picked.message == "Order picked up"
        assert delivered.message == "Order delivered"
        stored = await order_repo.get_order(order.order_id)
        assert stored.order_status is OrderStatus.DELIVERED
        assert stored.carrier_status == "DELIVERED"
        assert stored.delivered_at is not None
        assert outbox.kinds() == ["shipped", "delivered"]

    async def test_other_labels_are_recorded_only(self, shipments, order_repo, outbox):
        order = PaidOrderFactory.build(awb_code="AWB123")
        await order_repo.create_order(order)

        response = await shipments.handle(
            {"awb": "AWB123", "current_status": "Out For Delivery"}
        )

        assert response.message == "Status recorded"
        stored = await order_repo.get_order(order.order_id)
        assert stored.carrier_status == "Out For Delivery"
        assert stored.order_status is OrderStatus.CONFIRMED
        assert outbox.kinds() == []

    async def test_replayed_delivery_is_recorded_only(self, shipments, order_repo):
        order = PaidOrderFactory.build(
            awb_code="AWB123", order_status=OrderStatus.DELIVERED
        )
        await order_repo.create_order(order)

        response = await shipments.handle(
            {"awb": "AWB123", "current_status": "DELIVERED"}
        )

        assert response.message == "Status recorded"

    async def test_unknown_awb(self, shipments):
        response = await shipments.handle({"awb": "NOPE", "current_status": "DELIVERED"})

        assert response.message == "Order not found"

    async def test_missing_fields(self, shipments):
        assert (await shipments.handle({"awb": "AWB123"})).message == "Invalid payload"

    async def test_return_leg_updates(self, shipments, order_repo):
        order = PaidOrderFactory.build(
            order_status=OrderStatus.DELIVERED,
            awb_code="AWB123",
            return_pickup_awb="RAWB456",
            return_status=ReturnStatus.RETURN_PICKUP_SCHEDULED,
        )
        await order_repo.create_order(order)

        picked = await shipments.handle({"awb": "RAWB456", "current_status": "PICKED UP"})
        again = await shipments.handle({"awb": "RAWB456", "current_status": "PICKED UP"})
        other = await shipments.handle({"awb": "RAWB456", "current_status": "In Transit"})
        delivered = await shipments.handle(
            {"awb": "RAWB456", "sr-status-label": "DELIVERED"}
        )

        assert picked.message == "Return status updated"
        assert again.message == "Return status unchanged"
        assert other.message == "Return status ignored"
        assert delivered.message == "Return status updated"
        stored = await order_repo.get_order(order.order_id)
        assert stored.return_status is ReturnStatus.RETURN_DELIVERED
        assert stored.order_status is OrderStatus.DELIVERED
