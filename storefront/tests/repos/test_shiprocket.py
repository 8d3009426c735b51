"""Tests for the Shiprocket payload builders, parsers and gateway."""

from decimal import Decimal
from unittest.mock import AsyncMock

import pytest
from aiohttp import web

from storefront.errors import ShipmentGatewayAuthError, ShipmentGatewayError
from storefront.repos.shiprocket import ShiprocketShipmentGateway, Warehouse
from storefront.repos.shiprocket.gateway import (
    build_order_payload,
    build_return_payload,
    parse_awb_assignment,
    parse_courier_options,
    parse_tracking,
)
from storefront.tests.conftest import html_bad_gateway
from storefront.tests.factories import OrderItemFactory, PaidOrderFactory

WAREHOUSE = Warehouse(
    name="Main Warehouse",
    address="Plot 4, Okhla",
    city="New Delhi",
    state="Delhi",
    pincode="110001",
    phone="9811111111",
    email="orders@example.com",
)


@pytest.fixture
def gateway() -> ShiprocketShipmentGateway:
    return ShiprocketShipmentGateway(
        email="ops@example.com",
        password="secret",
        pickup_location="Primary",
        warehouse=WAREHOUSE,
    )


def test_order_payload_uses_order_snapshot():
    order = PaidOrderFactory.build(
        items=[
            OrderItemFactory.build(quantity=2, height=Decimal("5")),
            OrderItemFactory.build(quantity=1, length=Decimal("30")),
        ]
    )

    payload = build_order_payload(order, "Primary")

    assert payload["order_id"] == order.order_id
    assert payload["pickup_location"] == "Primary"
    assert payload["payment_method"] == "Prepaid"
    assert payload["shipping_is_billing"] is True
    assert payload["shipping_pincode"] == "560001"
    assert payload["weight"] == 1.5
    assert payload["length"] == 30.0
    assert payload["height"] == 20.0
    assert len(payload["order_items"]) == 2


def test_return_payload_ships_to_warehouse():
    order = PaidOrderFactory.build()

    payload = build_return_payload(order, WAREHOUSE)

    assert payload["order_id"] == f"R-{order.order_id}"
    assert payload["pickup_pincode"] == order.shipping_address.pincode
    assert payload["shipping_pincode"] == "110001"
    assert payload["shipping_customer_name"] == "Main Warehouse"


def test_courier_options_sorted_and_malformed_skipped():
    body = {
        "data": {
            "available_courier_companies": [
                {"courier_company_id": 7, "courier_name": "Delhivery", "rate": 85},
                {"courier_name": "Broken", "rate": 10},
                {
                    "courier_company_id": 3,
                    "courier_name": "Ekart",
                    "rate": "60.5",
                    "etd": "Oct 24, 2026",
                    "estimated_delivery_days": "4",
                },
            ]
        }
    }

    options = parse_courier_options(body)

    assert [o.name for o in options] == ["Ekart", "Delhivery"]
    assert options[0].rate == Decimal("60.5")
    assert options[0].estimated_delivery_days == 4


def test_courier_options_empty_body():
    assert parse_courier_options({}) == []
    assert parse_courier_options({"data": None}) == []


def test_tracking_parse():
    body = {
        "tracking_data": {
            "shipment_track": [{"current_status": "IN TRANSIT"}],
            "shipment_track_activities": [
                {
                    "date": "2026-10-18 10:00:00",
                    "activity": "Bag received",
                    "location": "Delhi Hub",
                    "sr-status-label": "IN TRANSIT",
                }
            ],
        }
    }

    info = parse_tracking("AWB123", body)

    assert info.current_status == "IN TRANSIT"
    assert info.events[0].location == "Delhi Hub"
    assert info.events[0].status == "IN TRANSIT"


def test_awb_assignment_parse():
    assigned = {
        "awb_assign_status": 1,
        "response": {"data": {"awb_code": 141123, "courier_name": "Ekart"}},
    }

    assert parse_awb_assignment(assigned).awb_code == "141123"
    assert parse_awb_assignment({"awb_assign_status": 0}) is None
    assert parse_awb_assignment({"awb_assign_status": 1, "response": {}}) is None


class TestShiprocketShipmentGateway:
    async def test_cancel_refusal_returns_false(self, gateway):
        gateway._request = AsyncMock(
            side_effect=ShipmentGatewayError("Cannot cancel", code="HTTP_400")
        )

        assert await gateway.cancel_shipment("sr-order-1") is False

    async def test_cancel_auth_failure_propagates(self, gateway):
        gateway._request = AsyncMock(
            side_effect=ShipmentGatewayAuthError("login failed", code="HTTP_403")
        )

        with pytest.raises(ShipmentGatewayAuthError):
            await gateway.cancel_shipment("sr-order-1")

    async def test_create_shipment_requires_ids(self, gateway):
        gateway._request = AsyncMock(return_value={"status": "NEW"})

        with pytest.raises(ShipmentGatewayError) as exc_info:
            await gateway.create_shipment(PaidOrderFactory.build())

        assert exc_info.value.code == "UNEXPECTED_RESPONSE"

    async def test_assign_awb_failure(self, gateway):
        gateway._request = AsyncMock(
            return_value={"awb_assign_status": 0, "message": "No courier"}
        )

        with pytest.raises(ShipmentGatewayError) as exc_info:
            await gateway.assign_awb("sr-ship-1")

        assert exc_info.value.code == "AWB_NOT_ASSIGNED"
        assert exc_info.value.description == "No courier"

    async def test_return_shipment_assigns_return_awb(self, gateway):
        gateway._request = AsyncMock(
            side_effect=[
                {"order_id": 91, "shipment_id": 92},
                {
                    "awb_assign_status": 1,
                    "response": {"data": {"awb_code": "RAWB1", "courier_name": "Ekart"}},
                },
            ]
        )

        creation = await gateway.create_return_shipment(PaidOrderFactory.build())

        assert creation.shipment_order_id == "91"
        assert creation.awb_code == "RAWB1"
        awb_call = gateway._request.await_args_list[1]
        assert awb_call.args[2] == {"shipment_id": "92", "is_return": 1}

    async def test_return_rates_flag(self, gateway):
        gateway._request = AsyncMock(return_value={"data": {}})

        await gateway.courier_rates("560001", "110001", Decimal("1.0"), is_return=True)

        params = gateway._request.await_args.kwargs["params"]
        assert params["is_return"] == 1
        assert params["pickup_postcode"] == "560001"


class TestShiprocketOverHttp:
    @pytest.fixture
    def logins(self):
        return []

    @pytest.fixture
    def login_ok(self, logins):
        async def handler(request):
            logins.append(await request.json())
            return web.json_response({"token": f"token-{len(logins)}"})

        return handler

    async def served(self, http_server, routes) -> ShiprocketShipmentGateway:
        return ShiprocketShipmentGateway(
            email="ops@example.com",
            password="secret",
            pickup_location="Primary",
            warehouse=WAREHOUSE,
            base_url=await http_server(routes),
        )

    async def test_html_error_on_cancel_is_a_refusal(self, http_server, login_ok):
        gateway = await self.served(
            http_server,
            [
                web.post("/auth/login", login_ok),
                web.post("/orders/cancel", html_bad_gateway),
            ],
        )

        assert await gateway.cancel_shipment("sr-order-1") is False

    async def test_non_object_login_body_is_an_auth_failure(self, http_server):
        async def login_list(request):
            return web.json_response(["unexpected"])

        gateway = await self.served(
            http_server, [web.post("/auth/login", login_list)]
        )

        with pytest.raises(ShipmentGatewayAuthError) as exc_info:
            await gateway.cancel_shipment("sr-order-1")

        assert exc_info.value.code == "HTTP_200"

    async def test_unreadable_success_body(self, http_server, login_ok):
        async def html_ok(request):
            return web.Response(text="<html>ok</html>", content_type="text/html")

        gateway = await self.served(
            http_server,
            [
                web.post("/auth/login", login_ok),
                web.post("/courier/generate/label", html_ok),
            ],
        )

        with pytest.raises(ShipmentGatewayError) as exc_info:
            await gateway.generate_label("sr-ship-1")

        assert exc_info.value.code == "BAD_RESPONSE"

    async def test_every_call_logs_in_with_its_own_token(
        self, http_server, logins, login_ok
    ):
        tokens = []

        async def track(request):
            tokens.append(request.headers["Authorization"])
            return web.json_response({"current_status": "IN TRANSIT"})

        gateway = await self.served(
            http_server,
            [
                web.post("/auth/login", login_ok),
                web.get("/courier/track/awb/{awb}", track),
            ],
        )

        await gateway.track("AWB123")
        await gateway.track("AWB123")

        assert len(logins) == 2
        assert logins[0] == {"email": "ops@example.com", "password": "secret"}
        assert tokens == ["Bearer token-1", "Bearer token-2"]
        assert not hasattr(gateway, "_token")
