"""
Forward shipment administration: shipment creation and AWB assignment,
labels, pickups, manifest batches, rate estimates and the admin order
listings.
"""

import logging
from decimal import Decimal
from typing import Dict, List, Optional, Sequence

from storefront.api.responses import (
    FulfilmentOrderResponse,
    LabelResponse,
    ManifestResponse,
    OrderStatusResponse,
    ShippingEstimateResponse,
)
from storefront.domain import (
    PINCODE_PATTERN,
    CancellationStatus,
    Order,
    OrderStatus,
    PaymentStatus,
    RefundStatus,
    ReturnStatus,
    ShipmentStatus,
)
from storefront.errors import (
    OrderNotFound,
    PreconditionViolation,
    RequestValidationError,
    ShipmentGatewayError,
)
from storefront.lifecycle import OrderEvent, OrderLifecycle, attempt_transition
from storefront.repositories import (
    ManifestRepository,
    OrderRepository,
    ShipmentGateway,
)
from storefront.validation import (
    ensure_manifest_repository,
    ensure_order_repository,
    ensure_shipment_gateway,
)

logger = logging.getLogger(__name__)

SHIPPABLE_STATUSES = (ShipmentStatus.NOT_SHIPPED, ShipmentStatus.AWB_PENDING)
FULFILMENT_QUEUE_STATUSES = SHIPPABLE_STATUSES + (
    ShipmentStatus.AWB_ASSIGNED,
    ShipmentStatus.PICKUP_SCHEDULED,
)


class ShippingUseCase:
    """
    Drives the shipment gateway for paid orders.

    Each gateway call that succeeds is followed by its lifecycle
    transition; a call that fails leaves the order at the last step that
    completed (AWB_PENDING after a failed AWB assignment), so repeating
    the action resumes where it stopped.
    """

    def __init__(
        self,
        order_repo: OrderRepository,
        shipment_gateway: ShipmentGateway,
        manifest_repo: ManifestRepository,
        pickup_pincode: str,
    ) -> None:
        self.order_repo = ensure_order_repository(order_repo)
        self.shipment_gateway = ensure_shipment_gateway(shipment_gateway)
        self.manifest_repo = ensure_manifest_repository(manifest_repo)
        self.lifecycle = OrderLifecycle(self.order_repo)
        self.pickup_pincode = pickup_pincode

    async def _current(self, order_id: str) -> Order:
        order = await self.order_repo.get_order(order_id)
        if order is None:
            raise OrderNotFound(order_id)
        return order

    async def ship(self, order_id: str) -> OrderStatusResponse:
        order = await self._current(order_id)
        if (
            order.payment_status is not PaymentStatus.PAID
            or order.order_status is not OrderStatus.CONFIRMED
            or order.cancellation_status is not None
            or order.shipment_status not in SHIPPABLE_STATUSES
        ):
            raise PreconditionViolation(
                "Order must be paid, CONFIRMED, not cancelled and in "
                "NOT_SHIPPED or AWB_PENDING status to ship",
                event=OrderEvent.SHIPMENT_CREATED.value,
                field="shipment_status",
            )

        if order.shipment_status is ShipmentStatus.NOT_SHIPPED:
            creation = await self.shipment_gateway.create_shipment(order)
            order = await self.lifecycle.advance(
                order_id,
                OrderEvent.SHIPMENT_CREATED,
                shipment_order_id=creation.shipment_order_id,
                shipment_id=creation.shipment_id,
                courier_name=creation.courier_name or order.courier_name,
            )
            if creation.awb_code:
                order = await self.lifecycle.advance(
                    order_id,
                    OrderEvent.AWB_ASSIGNED,
                    awb_code=creation.awb_code,
                    courier_name=order.courier_name,
                )
                return OrderStatusResponse.from_order(order)

        try:
            assignment = await self.shipment_gateway.assign_awb(order.shipment_id)
        except ShipmentGatewayError as e:
            logger.error(
                "AWB assignment failed, order left in AWB_PENDING",
                extra={
                    "order_id": order_id,
                    "shipment_id": order.shipment_id,
                    "error": e.message,
                },
            )
            raise
        order = await self.lifecycle.advance(
            order_id,
            OrderEvent.AWB_ASSIGNED,
            awb_code=assignment.awb_code,
            courier_name=assignment.courier_name or order.courier_name,
        )
        return OrderStatusResponse.from_order(order)

    async def generate_label(self, order_id: str) -> LabelResponse:
        order = await self._current(order_id)
        if not order.shipment_id or not order.awb_code:
            raise PreconditionViolation(
                "AWB must be assigned before generating a label",
                field="awb_code",
            )
        label_url = await self.shipment_gateway.generate_label(order.shipment_id)
        await self.order_repo.update(order_id, {"label_url": label_url})
        logger.info("Shipping label generated", extra={"order_id": order_id})
        return LabelResponse(order_id=order_id, label_url=label_url)

    async def schedule_pickup(self, order_id: str) -> OrderStatusResponse:
        order = await self._current(order_id)
        attempt_transition(order, OrderEvent.PICKUP_SCHEDULED)
        outcome = await self.shipment_gateway.schedule_pickup(order.shipment_id)
        if not outcome.scheduled:
            raise ShipmentGatewayError(
                "Pickup scheduling failed", code="PICKUP_NOT_SCHEDULED"
            )
        updated = await self.lifecycle.advance(order_id, OrderEvent.PICKUP_SCHEDULED)
        logger.info(
            "Pickup scheduled",
            extra={"order_id": order_id, "pickup_date": outcome.pickup_date},
        )
        return OrderStatusResponse.from_order(updated)

    async def generate_manifest(self, order_ids: Sequence[str]) -> ManifestResponse:
        """Manifest a batch of shipments, rejecting the whole batch on bad ids."""
        unique_ids = list(dict.fromkeys(order_ids))
        if not unique_ids:
            raise RequestValidationError("At least one order id is required.")

        orders: Dict[str, Order] = {}
        errors = []
        for order_id in unique_ids:
            order = await self.order_repo.get_order(order_id)
            if order is None:
                errors.append({"order_id": order_id, "error": "Order not found"})
            elif order.cancellation_status is not None:
                errors.append({"order_id": order_id, "error": "Order is being cancelled"})
            elif not order.shipment_id:
                errors.append({"order_id": order_id, "error": "Shipment not created"})
            elif not order.awb_code:
                errors.append({"order_id": order_id, "error": "AWB not assigned"})
            else:
                orders[order_id] = order
        if errors:
            logger.warning("Manifest request rejected", extra={"errors": errors})
            raise RequestValidationError(
                "Some orders cannot be manifested", errors
            )

        pending = [o for o in orders.values() if o.manifest_batch_id is None]
        skipped = [o.order_id for o in orders.values() if o.manifest_batch_id]
        if not pending:
            raise RequestValidationError("All selected orders already manifested.")

        outcome = await self.shipment_gateway.generate_manifest(
            [o.shipment_id for o in pending]
        )
        batch = await self.manifest_repo.create_batch(
            outcome.manifest_url, [o.order_id for o in pending]
        )
        manifested = []
        for order in pending:
            updated = await self.lifecycle.try_advance(
                order.order_id,
                OrderEvent.MANIFEST_GENERATED,
                manifest_batch_id=batch.batch_id,
            )
            if updated is None:
                logger.warning(
                    "Order manifested concurrently",
                    extra={"order_id": order.order_id, "batch_id": batch.batch_id},
                )
                skipped.append(order.order_id)
            else:
                manifested.append(order.order_id)

        logger.info(
            "Manifest batch generated",
            extra={"batch_id": batch.batch_id, "order_count": len(manifested)},
        )
        return ManifestResponse(
            batch_id=batch.batch_id,
            manifest_url=batch.manifest_url,
            order_ids=manifested,
            skipped_order_ids=skipped,
        )

    async def estimate(
        self, delivery_pincode: str, weight: Decimal
    ) -> ShippingEstimateResponse:
        if not PINCODE_PATTERN.match(delivery_pincode):
            raise RequestValidationError("Pincode must be 6 digits")
        if weight <= 0:
            raise RequestValidationError("Weight must be positive")
        couriers = await self.shipment_gateway.courier_rates(
            self.pickup_pincode, delivery_pincode, weight
        )
        return ShippingEstimateResponse(
            pickup_pincode=self.pickup_pincode,
            delivery_pincode=delivery_pincode,
            weight=weight,
            couriers=sorted(couriers, key=lambda c: c.rate),
        )

    async def new_orders(self) -> List[FulfilmentOrderResponse]:
        """Paid orders waiting on a fulfilment step, newest first.

        Each entry carries the manifest URL of the batch it was manifested
        in, if any.
        """
        orders = await self.order_repo.list_orders(
            {
                "payment_status": [PaymentStatus.PAID],
                "order_status": [OrderStatus.CONFIRMED],
                "shipment_status": list(FULFILMENT_QUEUE_STATUSES),
            }
        )
        batch_ids = [o.manifest_batch_id for o in orders if o.manifest_batch_id]
        manifest_urls = {
            batch.batch_id: batch.manifest_url
            for batch in await self.manifest_repo.get_batches(batch_ids)
        }
        return [
            FulfilmentOrderResponse.from_order(
                order, manifest_urls.get(order.manifest_batch_id or "")
            )
            for order in orders
        ]

    async def cancellation_failed_orders(self) -> List[OrderStatusResponse]:
        """Cancellations stuck on the shipment or the refund step."""
        orders = await self.order_repo.list_orders(
            {
                "payment_status": [PaymentStatus.PAID],
                "order_status": [OrderStatus.CANCELLATION_REQUESTED],
                "cancellation_status": [CancellationStatus.CANCELLATION_REQUESTED],
            }
        )
        return [
            OrderStatusResponse.from_order(order)
            for order in orders
            if order.shipment_status is ShipmentStatus.SHIPPING_CANCELLATION_FAILED
            or order.refund_status is RefundStatus.REFUND_FAILED
        ]

    async def return_orders(
        self, status: Optional[ReturnStatus] = None
    ) -> List[OrderStatusResponse]:
        if status is not None:
            statuses = [status]
        else:
            statuses = [s for s in ReturnStatus if s is not ReturnStatus.NOT_REQUESTED]
        orders = await self.order_repo.list_orders({"return_status": statuses})
        return [OrderStatusResponse.from_order(order) for order in orders]
