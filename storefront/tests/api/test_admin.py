"""
Tests for the admin order API router: authentication, CSRF, the
fulfilment queue, failed cancellation retries, return listings and return
inspection.
"""

from datetime import datetime, timedelta, timezone
from decimal import Decimal

import pytest

from storefront.domain import (
    CancellationStatus,
    OrderStatus,
    PaymentStatus,
    RefundStatus,
    ReturnStatus,
    ShipmentStatus,
)
from storefront.tests.api.conftest import ADMIN_TOKEN
from storefront.tests.factories import PaidOrderFactory

JPEG = b"\xff\xd8\xff\xe0" + b"\x00" * 64


def failed_cancellation(**overrides):
    fields = dict(
        order_status=OrderStatus.CANCELLATION_REQUESTED,
        cancellation_status=CancellationStatus.CANCELLATION_REQUESTED,
        refund_status=RefundStatus.REFUND_FAILED,
        refund_error_code="BAD_REQUEST_ERROR",
    )
    fields.update(overrides)
    return PaidOrderFactory.build(**fields)


def returned_order(**overrides):
    fields = dict(
        order_status=OrderStatus.DELIVERED,
        delivered_at=datetime.now(timezone.utc) - timedelta(hours=1),
        shipment_status=ShipmentStatus.PICKUP_SCHEDULED,
        awb_code="AWB123",
        return_status=ReturnStatus.RETURN_DELIVERED,
        return_order_id="sr-return-1",
        return_pickup_awb="RAWB456",
        return_shipping_cost=Decimal("60.00"),
        return_refund_amount=Decimal("440.00"),
    )
    fields.update(overrides)
    return PaidOrderFactory.build(**fields)


class TestSecurity:
    def test_requires_token(self, client):
        response = client.get("/admin/orders/cancellation-failed")

        assert response.status_code == 401
        assert response.json()["detail"] == "Authentication required"

    def test_rejects_unknown_token(self, client):
        response = client.get(
            "/admin/orders/cancellation-failed",
            headers={"Authorization": "Bearer not-a-token"},
        )

        assert response.status_code == 403
        assert response.json()["detail"] == "Admin access required"

    def test_state_change_requires_csrf(self, client, order_repo, payment_gateway):
        order = failed_cancellation()
        order_repo.orders[order.order_id] = order

        response = client.post(
            f"/admin/orders/{order.order_id}/retry-cancellation",
            headers={"Authorization": f"Bearer {ADMIN_TOKEN}"},
        )

        assert response.status_code == 403
        assert response.json()["detail"] == "Invalid CSRF token"
        payment_gateway.refund.assert_not_awaited()

    def test_csrf_header_must_match_cookie(self, client, admin_headers, order_repo):
        order = failed_cancellation()
        order_repo.orders[order.order_id] = order
        client.cookies.set("csrf_token", "some-other-token")

        response = client.post(
            f"/admin/orders/{order.order_id}/retry-cancellation",
            headers=admin_headers,
        )

        assert response.status_code == 403


class TestRetryCancellation:
    def test_retry_refunds_and_cancels(
        self, admin_client, admin_headers, order_repo, notification_sender
    ):
        # Arrange
        order = failed_cancellation()
        order_repo.orders[order.order_id] = order

        # Act
        response = admin_client.post(
            f"/admin/orders/{order.order_id}/retry-cancellation",
            headers=admin_headers,
        )

        # Assert
        assert response.status_code == 200
        assert response.json()["order_status"] == "CANCELLED"
        stored = order_repo.orders[order.order_id]
        assert stored.payment_status is PaymentStatus.REFUNDED
        assert stored.cancellation_status is CancellationStatus.CANCELLED
        assert notification_sender.send.await_count == 2

    def test_order_not_in_cancellation(self, admin_client, admin_headers, order_repo):
        order = PaidOrderFactory.build()
        order_repo.orders[order.order_id] = order

        response = admin_client.post(
            f"/admin/orders/{order.order_id}/retry-cancellation",
            headers=admin_headers,
        )

        assert response.status_code == 400

    def test_unknown_order(self, admin_client, admin_headers):
        response = admin_client.post(
            "/admin/orders/missing/retry-cancellation", headers=admin_headers
        )

        assert response.status_code == 404


class TestListings:
    def test_cancellation_failed(self, client, admin_headers, order_repo):
        stuck = failed_cancellation()
        healthy = PaidOrderFactory.build()
        shipment_stuck = failed_cancellation(
            refund_status=None,
            shipment_status=ShipmentStatus.SHIPPING_CANCELLATION_FAILED,
        )
        for order in (stuck, healthy, shipment_stuck):
            order_repo.orders[order.order_id] = order

        response = client.get("/admin/orders/cancellation-failed", headers=admin_headers)

        assert response.status_code == 200
        data = response.json()
        assert data["total"] == 2
        assert {item["order_id"] for item in data["items"]} == {
            stuck.order_id,
            shipment_stuck.order_id,
        }

    def test_returns_filtered_by_status(self, client, admin_headers, order_repo):
        received = returned_order()
        in_transit = returned_order(return_status=ReturnStatus.RETURN_IN_TRANSIT)
        not_returned = PaidOrderFactory.build()
        for order in (received, in_transit, not_returned):
            order_repo.orders[order.order_id] = order

        everything = client.get("/admin/orders/returns", headers=admin_headers)
        filtered = client.get(
            "/admin/orders/returns",
            params={"status": "RETURN_DELIVERED"},
            headers=admin_headers,
        )

        assert everything.json()["total"] == 2
        assert [item["order_id"] for item in filtered.json()["items"]] == [
            received.order_id
        ]

    def test_returns_rejects_unknown_status(self, client, admin_headers):
        response = client.get(
            "/admin/orders/returns", params={"status": "BOGUS"}, headers=admin_headers
        )

        assert response.status_code == 422


class TestReturns:
    def test_mark_return_received(self, admin_client, admin_headers, order_repo):
        order = returned_order(return_status=ReturnStatus.RETURN_IN_TRANSIT)
        order_repo.orders[order.order_id] = order

        response = admin_client.post(
            f"/admin/orders/{order.order_id}/mark-return-received",
            headers=admin_headers,
        )

        assert response.status_code == 200
        assert response.json()["return_status"] == "RETURN_DELIVERED"

    def test_process_return_refund_with_photos(
        self, admin_client, admin_headers, order_repo, payment_gateway, photo_storage
    ):
        # Arrange
        order = returned_order()
        order_repo.orders[order.order_id] = order

        # Act
        response = admin_client.post(
            f"/admin/orders/{order.order_id}/process-return-refund",
            headers=admin_headers,
            data={
                "product_condition": "minor_damage",
                "admin_note": "Lid cracked, jar intact",
                "deduction_amount": "40.00",
                "deduction_reason": "Damaged lid",
            },
            files=[("photos", ("front.jpg", JPEG, "image/jpeg"))],
        )

        # Assert
        assert response.status_code == 200
        data = response.json()
        assert Decimal(data["refund_amount"]) == Decimal("400.00")
        assert Decimal(data["deduction_amount"]) == Decimal("40.00")
        assert data["credit_note_number"].startswith("CN-")
        assert len(data["inspection_photos"]) == 1
        assert payment_gateway.refund.await_args.args[1] == 40000
        assert len(photo_storage.objects) == 1
        stored = order_repo.orders[order.order_id]
        assert stored.return_status is ReturnStatus.RETURN_REFUND_COMPLETED

    def test_good_condition_needs_no_photos(
        self, admin_client, admin_headers, order_repo
    ):
        order = returned_order()
        order_repo.orders[order.order_id] = order

        response = admin_client.post(
            f"/admin/orders/{order.order_id}/process-return-refund",
            headers=admin_headers,
            data={"product_condition": "good_condition"},
        )

        assert response.status_code == 200
        assert Decimal(response.json()["refund_amount"]) == Decimal("440.00")

    def test_damage_without_photos_is_rejected(
        self, admin_client, admin_headers, order_repo, payment_gateway
    ):
        order = returned_order()
        order_repo.orders[order.order_id] = order

        response = admin_client.post(
            f"/admin/orders/{order.order_id}/process-return-refund",
            headers=admin_headers,
            data={
                "product_condition": "major_damage",
                "admin_note": "Jar shattered in transit",
                "deduction_amount": "100",
            },
        )

        assert response.status_code == 400
        payment_gateway.refund.assert_not_awaited()

    def test_unknown_condition_is_rejected(self, admin_client, admin_headers):
        response = admin_client.post(
            "/admin/orders/any/process-return-refund",
            headers=admin_headers,
            data={"product_condition": "like_new"},
        )

        assert response.status_code == 422

    def test_retry_return_refund_requires_inspection(
        self, admin_client, admin_headers, order_repo
    ):
        order = returned_order()
        order_repo.orders[order.order_id] = order

        response = admin_client.post(
            f"/admin/orders/{order.order_id}/retry-return-refund",
            headers=admin_headers,
        )

        assert response.status_code == 400

    def test_cancel_return(
        self, admin_client, admin_headers, order_repo, shipment_gateway
    ):
        order = returned_order(return_status=ReturnStatus.RETURN_PICKUP_SCHEDULED)
        order_repo.orders[order.order_id] = order

        response = admin_client.post(
            f"/admin/orders/{order.order_id}/return/cancel", headers=admin_headers
        )

        assert response.status_code == 200
        assert response.json()["return_status"] == "RETURN_CANCELLED"
        shipment_gateway.cancel_shipment.assert_awaited_once_with("sr-return-1")

    @pytest.mark.parametrize(
        "status, expected",
        [
            (ReturnStatus.RETURN_FAILED, 200),
            (ReturnStatus.RETURN_PICKUP_SCHEDULED, 400),
        ],
    )
    def test_retry_return_pickup(
        self, admin_client, admin_headers, order_repo, status, expected
    ):
        order = returned_order(return_status=status)
        order_repo.orders[order.order_id] = order

        response = admin_client.post(
            f"/admin/orders/{order.order_id}/return/retry-pickup",
            headers=admin_headers,
        )

        assert response.status_code == expected


class TestFulfilmentQueue:
    def test_new_orders_paginated(self, client, admin_headers, order_repo):
        orders = [PaidOrderFactory.build() for _ in range(3)]
        shipped = PaidOrderFactory.build(
            order_status=OrderStatus.PICKED_UP,
            shipment_status=ShipmentStatus.PICKUP_SCHEDULED,
        )
        for order in (*orders, shipped):
            order_repo.orders[order.order_id] = order

        first = client.get(
            "/admin/orders/new", params={"page": 1, "size": 2}, headers=admin_headers
        )
        second = client.get(
            "/admin/orders/new", params={"page": 2, "size": 2}, headers=admin_headers
        )

        assert first.status_code == 200
        assert first.json()["total"] == 3
        assert len(first.json()["items"]) == 2
        assert len(second.json()["items"]) == 1
        listed = {
            item["order_id"]
            for item in first.json()["items"] + second.json()["items"]
        }
        assert listed == {order.order_id for order in orders}
        assert first.json()["items"][0]["shipment_status"] == "NOT_SHIPPED"
        assert first.json()["items"][0]["manifest_url"] is None

    def test_new_orders_require_admin(self, client):
        response = client.get("/admin/orders/new")

        assert response.status_code == 401
