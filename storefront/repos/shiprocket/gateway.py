"""
Shiprocket implementation of ShipmentGateway.

Authentication is a bearer token obtained from ``auth/login`` at the start
of every call. The token is never stored on the gateway, so the shared
instance carries no mutable state between requests.
"""

import asyncio
import logging
from decimal import Decimal
from typing import Any, Dict, List, Mapping, Optional, Sequence

import aiohttp
from pydantic import BaseModel

from storefront.domain import (
    AwbAssignment,
    CourierOption,
    ManifestOutcome,
    Order,
    PickupOutcome,
    ShipmentCreation,
    TrackingEvent,
    TrackingInfo,
    utcnow,
)
from storefront.errors import ShipmentGatewayAuthError, ShipmentGatewayError
from storefront.repositories import ShipmentGateway

logger = logging.getLogger(__name__)


class Warehouse(BaseModel):
    """Destination of return shipments."""

    name: str
    address: str
    city: str
    state: str
    pincode: str
    phone: str
    email: str = ""
    country: str = "India"


def _package_dimensions(order: Order) -> Dict[str, Any]:
    return {
        "length": float(max(item.length for item in order.items)),
        "breadth": float(max(item.breadth for item in order.items)),
        "height": float(sum(item.height * item.quantity for item in order.items)),
        "weight": float(order.total_weight),
    }


def _order_items(order: Order) -> List[Dict[str, Any]]:
    return [
        {
            "name": item.product_name,
            "sku": item.sku or item.product_id,
            "units": item.quantity,
            "selling_price": float(item.unit_price),
            "hsn": item.hsn or "",
        }
        for item in order.items
    ]


def build_order_payload(order: Order, pickup_location: str) -> Dict[str, Any]:
    shipping = order.shipping_address
    billing = order.billing_address
    payload: Dict[str, Any] = {
        "order_id": order.order_id,
        "order_date": order.created_at.strftime("%Y-%m-%d %H:%M"),
        "pickup_location": pickup_location,
        "billing_customer_name": billing.first_name,
        "billing_last_name": billing.last_name,
        "billing_address": billing.address_line1,
        "billing_address_2": billing.address_line2,
        "billing_city": billing.city,
        "billing_pincode": billing.pincode,
        "billing_state": billing.state,
        "billing_country": billing.country,
        "billing_email": order.guest_email or "",
        "billing_phone": order.guest_phone or "",
        "shipping_is_billing": shipping == billing,
        "shipping_customer_name": shipping.first_name,
        "shipping_last_name": shipping.last_name,
        "shipping_address": shipping.address_line1,
        "shipping_address_2": shipping.address_line2,
        "shipping_city": shipping.city,
        "shipping_pincode": shipping.pincode,
        "shipping_state": shipping.state,
        "shipping_country": shipping.country,
        "shipping_email": order.guest_email or "",
        "shipping_phone": order.guest_phone or "",
        "order_items": _order_items(order),
        "payment_method": "Prepaid",
        "sub_total": float(order.subtotal),
    }
    payload.update(_package_dimensions(order))
    return payload


def build_return_payload(order: Order, warehouse: Warehouse) -> Dict[str, Any]:
    pickup = order.shipping_address
    payload: Dict[str, Any] = {
        "order_id": f"R-{order.order_id}",
        "order_date": utcnow().strftime("%Y-%m-%d"),
        "pickup_customer_name": pickup.first_name,
        "pickup_last_name": pickup.last_name,
        "pickup_address": pickup.address_line1,
        "pickup_address_2": pickup.address_line2,
        "pickup_city": pickup.city,
        "pickup_state": pickup.state,
        "pickup_country": pickup.country,
        "pickup_pincode": pickup.pincode,
        "pickup_email": order.guest_email or "",
        "pickup_phone": order.guest_phone or "",
        "shipping_customer_name": warehouse.name,
        "shipping_address": warehouse.address,
        "shipping_city": warehouse.city,
        "shipping_state": warehouse.state,
        "shipping_country": warehouse.country,
        "shipping_pincode": warehouse.pincode,
        "shipping_email": warehouse.email,
        "shipping_phone": warehouse.phone,
        "order_items": _order_items(order),
        "payment_method": "Prepaid",
        "sub_total": float(order.subtotal),
    }
    payload.update(_package_dimensions(order))
    return payload


def parse_courier_options(body: Mapping[str, Any]) -> List[CourierOption]:
    data = body.get("data") or {}
    companies = data.get("available_courier_companies") or []
    options = []
    for company in companies:
        try:
            options.append(
                CourierOption(
                    courier_id=int(company["courier_company_id"]),
                    name=company["courier_name"],
                    rate=Decimal(str(company["rate"])),
                    etd=company.get("etd"),
                    estimated_delivery_days=(
                        int(company["estimated_delivery_days"])
                        if company.get("estimated_delivery_days")
                        else None
                    ),
                )
            )
        except (KeyError, TypeError, ValueError) as e:
            logger.warning(
                "Skipping malformed courier option",
                extra={"error": str(e), "courier": company.get("courier_name")},
            )
    return sorted(options, key=lambda option: option.rate)


def parse_tracking(awb_code: str, body: Mapping[str, Any]) -> TrackingInfo:
    data = body.get("tracking_data") or {}
    tracks = data.get("shipment_track") or []
    current_status = tracks[0].get("current_status") if tracks else None
    events = [
        TrackingEvent(
            status=activity.get("sr-status-label")
            or activity.get("activity")
            or "",
            location=activity.get("location"),
            occurred_at=activity.get("date"),
        )
        for activity in data.get("shipment_track_activities") or []
    ]
    return TrackingInfo(
        awb_code=awb_code, current_status=current_status, events=events
    )


def parse_awb_assignment(body: Mapping[str, Any]) -> Optional[AwbAssignment]:
    if body.get("awb_assign_status") != 1:
        return None
    data = (body.get("response") or {}).get("data") or {}
    if not data.get("awb_code"):
        return None
    return AwbAssignment(
        awb_code=str(data["awb_code"]), courier_name=data.get("courier_name")
    )


class ShiprocketShipmentGateway(ShipmentGateway):
    def __init__(
        self,
        email: str,
        password: str,
        pickup_location: str,
        warehouse: Optional[Warehouse] = None,
        base_url: str = "https://apiv2.shiprocket.in/v1/external",
        session: Optional[aiohttp.ClientSession] = None,
    ) -> None:
        self._email = email
        self._password = password
        self._pickup_location = pickup_location
        self._warehouse = warehouse
        self._base_url = base_url.rstrip("/")
        self._session = session

    async def _login(self, session: aiohttp.ClientSession) -> str:
        async with session.post(
            f"{self._base_url}/auth/login",
            json={"email": self._email, "password": self._password},
        ) as response:
            try:
                body = await response.json(content_type=None)
            except ValueError:
                body = None
            if not isinstance(body, dict):
                body = {}
            if response.status >= 400 or not body.get("token"):
                logger.error(
                    "Shipment gateway login failed",
                    extra={"status": response.status},
                )
                raise ShipmentGatewayAuthError(
                    "Shipment gateway authentication failed",
                    code=f"HTTP_{response.status}",
                    description=body.get("message"),
                )
        logger.debug("Shipment gateway token issued")
        return str(body["token"])

    async def _request(
        self,
        method: str,
        path: str,
        payload: Optional[Mapping[str, Any]] = None,
        params: Optional[Mapping[str, Any]] = None,
    ) -> Dict[str, Any]:
        try:
            if self._session is not None:
                return await self._send(self._session, method, path, payload, params)
            async with aiohttp.ClientSession() as session:
                return await self._send(session, method, path, payload, params)
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            logger.error(
                "Shipment gateway request failed",
                extra={"path": path, "error": str(e)},
                exc_info=True,
            )
            raise ShipmentGatewayError(
                "Shipment gateway unreachable",
                code="NETWORK_ERROR",
                description=str(e) or type(e).__name__,
            ) from e
        except ValueError as e:
            logger.error(
                "Shipment gateway returned an unreadable response",
                extra={"path": path, "error": repr(e)},
                exc_info=True,
            )
            raise ShipmentGatewayError(
                "Shipment gateway returned an unreadable response",
                code="BAD_RESPONSE",
                description=repr(e)[:500],
            ) from e

    async def _send(
        self,
        session: aiohttp.ClientSession,
        method: str,
        path: str,
        payload: Optional[Mapping[str, Any]],
        params: Optional[Mapping[str, Any]],
    ) -> Dict[str, Any]:
        token = await self._login(session)
        async with session.request(
            method,
            f"{self._base_url}/{path.lstrip('/')}",
            json=payload,
            params=params,
            headers={"Authorization": f"Bearer {token}"},
        ) as response:
            if response.status >= 400:
                try:
                    body = await response.json(content_type=None)
                except ValueError:
                    body = None
                message = body.get("message") if isinstance(body, dict) else None
                raise ShipmentGatewayError(
                    f"Shipment gateway rejected {path}: {message or response.status}",
                    code=f"HTTP_{response.status}",
                    description=message,
                )
            body = await response.json(content_type=None)
            return body if isinstance(body, dict) else {"data": body}

    async def create_shipment(self, order: Order) -> ShipmentCreation:
        body = await self._request(
            "POST",
            "orders/create/adhoc",
            build_order_payload(order, self._pickup_location),
        )
        if not body.get("order_id") or not body.get("shipment_id"):
            raise ShipmentGatewayError(
                "Shipment gateway did not return shipment ids",
                code="UNEXPECTED_RESPONSE",
                description=str(body)[:500],
            )
        logger.info(
            "Shipment created",
            extra={
                "order_id": order.order_id,
                "shipment_order_id": body["order_id"],
                "shipment_id": body["shipment_id"],
            },
        )
        return ShipmentCreation(
            shipment_order_id=str(body["order_id"]),
            shipment_id=str(body["shipment_id"]),
            awb_code=body.get("awb_code") or None,
            courier_name=body.get("courier_name") or None,
        )

    async def assign_awb(self, shipment_id: str) -> AwbAssignment:
        body = await self._request(
            "POST", "courier/assign/awb", {"shipment_id": shipment_id}
        )
        assignment = parse_awb_assignment(body)
        if assignment is None:
            raise ShipmentGatewayError(
                "AWB assignment failed",
                code="AWB_NOT_ASSIGNED",
                description=str(body.get("message") or body)[:500],
            )
        return assignment

    async def cancel_shipment(self, shipment_order_id: str) -> bool:
        try:
            await self._request(
                "POST", "orders/cancel", {"ids": [shipment_order_id]}
            )
        except ShipmentGatewayAuthError:
            raise
        except ShipmentGatewayError as e:
            logger.warning(
                "Shipment cancellation refused",
                extra={
                    "shipment_order_id": shipment_order_id,
                    "error": e.message,
                },
            )
            return False
        return True

    async def generate_label(self, shipment_id: str) -> str:
        body = await self._request(
            "POST", "courier/generate/label", {"shipment_id": [shipment_id]}
        )
        if not body.get("label_created") or not body.get("label_url"):
            raise ShipmentGatewayError(
                "Label generation failed",
                code="LABEL_NOT_CREATED",
                description=str(body.get("response") or body)[:500],
            )
        return body["label_url"]

    async def schedule_pickup(self, shipment_id: str) -> PickupOutcome:
        body = await self._request(
            "POST", "courier/generate/pickup", {"shipment_id": [shipment_id]}
        )
        scheduled = body.get("pickup_status") == 1
        response = body.get("response") or {}
        return PickupOutcome(
            scheduled=scheduled,
            pickup_date=response.get("pickup_scheduled_date"),
        )

    async def generate_manifest(
        self, shipment_ids: Sequence[str]
    ) -> ManifestOutcome:
        body = await self._request(
            "POST", "manifests/generate", {"shipment_id": list(shipment_ids)}
        )
        url = body.get("manifest_url") or body.get("url")
        if not url:
            raise ShipmentGatewayError(
                "Manifest generation failed",
                code="MANIFEST_NOT_CREATED",
                description=str(body.get("message") or body)[:500],
            )
        return ManifestOutcome(
            manifest_url=url,
            manifest_id=str(body["manifest_id"]) if body.get("manifest_id") else None,
        )

    async def courier_rates(
        self,
        pickup_pincode: str,
        delivery_pincode: str,
        weight: Decimal,
        is_return: bool = False,
    ) -> List[CourierOption]:
        params = {
            "pickup_postcode": pickup_pincode,
            "delivery_postcode": delivery_pincode,
            "weight": str(weight),
            "cod": 0,
        }
        if is_return:
            params["is_return"] = 1
        body = await self._request(
            "GET", "courier/serviceability/", params=params
        )
        return parse_courier_options(body)

    async def track(self, awb_code: str) -> TrackingInfo:
        body = await self._request("GET", f"courier/track/awb/{awb_code}")
        return parse_tracking(awb_code, body)

    async def create_return_shipment(self, order: Order) -> ShipmentCreation:
        if self._warehouse is None:
            raise ShipmentGatewayError(
                "Return warehouse is not configured", code="CONFIGURATION"
            )
        body = await self._request(
            "POST",
            "orders/create/return",
            build_return_payload(order, self._warehouse),
        )
        if not body.get("order_id") or not body.get("shipment_id"):
            raise ShipmentGatewayError(
                "Return shipment was not created",
                code="UNEXPECTED_RESPONSE",
                description=str(body)[:500],
            )
        shipment_id = str(body["shipment_id"])
        awb = await self._request(
            "POST",
            "courier/assign/awb",
            {"shipment_id": shipment_id, "is_return": 1},
        )
        assignment = parse_awb_assignment(awb)
        if assignment is None:
            raise ShipmentGatewayError(
                "Return AWB assignment failed",
                code="AWB_NOT_ASSIGNED",
                description=str(awb.get("message") or awb)[:500],
            )
        return ShipmentCreation(
            shipment_order_id=str(body["order_id"]),
            shipment_id=shipment_id,
            awb_code=assignment.awb_code,
            courier_name=assignment.courier_name,
        )
