"""Order status read used by the tracking page."""

import logging
from typing import Optional

from storefront.api.responses import OrderStatusResponse
from storefront.errors import GatewayError, OrderNotFound
from storefront.repositories import OrderRepository, ShipmentGateway
from storefront.validation import ensure_order_repository, ensure_shipment_gateway

logger = logging.getLogger(__name__)


class OrderStatusUseCase:
    def __init__(
        self, order_repo: OrderRepository, shipment_gateway: ShipmentGateway
    ) -> None:
        self.order_repo = ensure_order_repository(order_repo)
        self.shipment_gateway = ensure_shipment_gateway(shipment_gateway)

    async def get_status(
        self, order_id: str, email: Optional[str] = None
    ) -> OrderStatusResponse:
        """
        Return the status projection of an order.

        Guest orders are only visible with the email used at checkout.
        Tracking is best-effort: a gateway failure is reported in
        ``tracking_error`` instead of failing the read.
        """
        order = await self.order_repo.get_order(order_id)
        if order is None:
            raise OrderNotFound(order_id)
        if order.guest_email and not order.belongs_to(email):
            logger.info(
                "Order status requested without matching email",
                extra={"order_id": order_id},
            )
            raise OrderNotFound(order_id)

        response = OrderStatusResponse.from_order(order)
        if order.awb_code:
            try:
                tracking = await self.shipment_gateway.track(order.awb_code)
                response.tracking = tracking.events
            except GatewayError as e:
                logger.warning(
                    "Tracking lookup failed",
                    extra={"order_id": order_id, "error": e.message},
                )
                response.tracking_error = "Tracking information unavailable"
        return response
