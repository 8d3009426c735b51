"""
Return flow: customer request, pickup scheduling, receipt at the
warehouse, inspection and the return refund.

Money only moves after the order is RETURN_DELIVERED and the inspection
input (condition, note, deduction, photos) has been fully validated. A
credit note number is taken only once the refund succeeded.
"""

import logging
import uuid
from datetime import timedelta
from decimal import Decimal
from typing import List, Optional, Sequence, Tuple

from storefront.api.responses import OrderStatusResponse, ReturnRefundResponse
from storefront.credit_note import CreditNoteService
from storefront.domain import (
    Order,
    OrderStatus,
    ProductCondition,
    ReturnStatus,
    to_subunits,
    utcnow,
)
from storefront.errors import (
    GatewayError,
    OrderNotFound,
    PaymentGatewayError,
    PreconditionViolation,
    ShipmentGatewayError,
)
from storefront.lifecycle import OrderEvent, OrderLifecycle, attempt_transition
from storefront.notifications import Notifier
from storefront.repositories import (
    FileStorageRepository,
    OrderRepository,
    PaymentGateway,
    ShipmentGateway,
)
from storefront.use_cases.refunds import RefundOutcomeKind, request_refund
from storefront.validation import (
    InspectionPhoto,
    ensure_file_storage_repository,
    ensure_order_repository,
    ensure_payment_gateway,
    ensure_shipment_gateway,
    final_refund_amount,
    validate_inspection,
    validate_inspection_photos,
)

logger = logging.getLogger(__name__)

SIGNED_PHOTO_URL_TTL = timedelta(seconds=300)
RETURN_PICKUP_FAILED_MESSAGE = (
    "Unable to schedule return pickup. Our team will contact you."
)


class ReturnsUseCase:
    def __init__(
        self,
        order_repo: OrderRepository,
        payment_gateway: PaymentGateway,
        shipment_gateway: ShipmentGateway,
        photo_storage: FileStorageRepository,
        notifier: Notifier,
        credit_notes: CreditNoteService,
        warehouse_pincode: str,
        return_window_hours: int = 48,
    ) -> None:
        self.order_repo = ensure_order_repository(order_repo)
        self.payment_gateway = ensure_payment_gateway(payment_gateway)
        self.shipment_gateway = ensure_shipment_gateway(shipment_gateway)
        self.photo_storage = ensure_file_storage_repository(photo_storage)
        self.lifecycle = OrderLifecycle(self.order_repo)
        self.notifier = notifier
        self.credit_notes = credit_notes
        self.warehouse_pincode = warehouse_pincode
        self.return_window = timedelta(hours=return_window_hours)

    async def _current(self, order_id: str) -> Order:
        order = await self.order_repo.get_order(order_id)
        if order is None:
            raise OrderNotFound(order_id)
        return order

    # Customer request and pickup

    async def request_return(self, order: Order, reason: Optional[str]) -> Order:
        """Open a return for a picked up or delivered order."""
        if order.order_status is OrderStatus.DELIVERED:
            window_start = order.delivered_at or order.updated_at or order.created_at
            if utcnow() - window_start > self.return_window:
                logger.info(
                    "Return window expired",
                    extra={
                        "order_id": order.order_id,
                        "delivered_at": str(order.delivered_at),
                    },
                )
                hours = int(self.return_window.total_seconds() // 3600)
                raise PreconditionViolation(
                    "Return window expired. Returns must be requested within "
                    f"{hours} hours of delivery.",
                    event=OrderEvent.RETURN_REQUESTED.value,
                    field="delivered_at",
                )

        requested = await self.lifecycle.advance(
            order.order_id, OrderEvent.RETURN_REQUESTED, return_reason=reason
        )
        return await self.schedule_return_pickup(requested)

    async def schedule_return_pickup(self, order: Order) -> Order:
        """Price the return leg and book the reverse pickup.

        Either outcome is persisted: RETURN_PICKUP_SCHEDULED with the
        gateway ids, or RETURN_FAILED so an administrator can retry.
        """
        try:
            options = await self.shipment_gateway.courier_rates(
                order.shipping_address.pincode,
                self.warehouse_pincode,
                order.total_weight,
                is_return=True,
            )
        except GatewayError as e:
            logger.error(
                "Return shipping rate lookup failed",
                extra={"order_id": order.order_id, "error": e.message},
            )
            await self.lifecycle.advance(
                order.order_id, OrderEvent.RETURN_PICKUP_FAILED
            )
            raise ShipmentGatewayError(
                RETURN_PICKUP_FAILED_MESSAGE, code=e.code, description=e.message
            ) from e
        if not options:
            logger.error(
                "No courier serves the return route",
                extra={
                    "order_id": order.order_id,
                    "pincode": order.shipping_address.pincode,
                },
            )
            await self.lifecycle.advance(
                order.order_id, OrderEvent.RETURN_PICKUP_FAILED
            )
            raise ShipmentGatewayError(
                RETURN_PICKUP_FAILED_MESSAGE, code="NOT_SERVICEABLE"
            )

        return_shipping_cost = options[0].rate
        refund_amount = max(
            Decimal("0"),
            order.total_amount - order.shipping_cost - return_shipping_cost,
        )
        logger.info(
            "Return refund calculated",
            extra={
                "order_id": order.order_id,
                "total_amount": str(order.total_amount),
                "forward_shipping_cost": str(order.shipping_cost),
                "return_shipping_cost": str(return_shipping_cost),
                "return_refund_amount": str(refund_amount),
            },
        )

        try:
            shipment = await self.shipment_gateway.create_return_shipment(order)
        except GatewayError as e:
            logger.error(
                "Return shipment creation failed",
                extra={"order_id": order.order_id, "error": e.message},
                exc_info=True,
            )
            await self.lifecycle.advance(
                order.order_id,
                OrderEvent.RETURN_PICKUP_FAILED,
                return_shipping_cost=return_shipping_cost,
                return_refund_amount=refund_amount,
            )
            raise ShipmentGatewayError(
                RETURN_PICKUP_FAILED_MESSAGE, code=e.code, description=e.message
            ) from e

        scheduled = await self.lifecycle.advance(
            order.order_id,
            OrderEvent.RETURN_PICKUP_SCHEDULED,
            return_order_id=shipment.shipment_order_id,
            return_shipment_id=shipment.shipment_id,
            return_pickup_awb=shipment.awb_code,
            return_shipping_cost=return_shipping_cost,
            return_refund_amount=refund_amount,
        )
        self.notifier.return_scheduled(scheduled)
        return scheduled

    async def retry_return_pickup(self, order_id: str) -> OrderStatusResponse:
        order = await self._current(order_id)
        if order.return_status is not ReturnStatus.RETURN_FAILED:
            raise PreconditionViolation(
                "Return pickup can only be retried from RETURN_FAILED status",
                event=OrderEvent.RETURN_PICKUP_SCHEDULED.value,
                field="return_status",
            )
        scheduled = await self.schedule_return_pickup(order)
        return OrderStatusResponse.from_order(scheduled)

    async def cancel_return(self, order_id: str) -> OrderStatusResponse:
        order = await self._current(order_id)
        attempt_transition(order, OrderEvent.RETURN_CANCELLED)

        if (
            order.return_status is ReturnStatus.RETURN_PICKUP_SCHEDULED
            and order.return_order_id
        ):
            try:
                cancelled = await self.shipment_gateway.cancel_shipment(
                    order.return_order_id
                )
            except GatewayError as e:
                logger.error(
                    "Return shipment cancellation call failed",
                    extra={"order_id": order_id, "error": e.message},
                )
                raise ShipmentGatewayError(
                    "Return shipment cancellation failed",
                    code=e.code,
                    description=e.message,
                ) from e
            if not cancelled:
                raise ShipmentGatewayError(
                    "Return shipment cancellation failed",
                    code="SHIPMENT_CANCEL_REFUSED",
                )

        updated = await self.lifecycle.advance(order_id, OrderEvent.RETURN_CANCELLED)
        return OrderStatusResponse.from_order(updated)

    # Warehouse receipt and inspection

    async def mark_received(self, order_id: str) -> OrderStatusResponse:
        updated = await self.lifecycle.advance(order_id, OrderEvent.RETURN_DELIVERED)
        return OrderStatusResponse.from_order(updated)

    def _max_refundable(self, order: Order) -> Decimal:
        if order.return_refund_amount is not None:
            return order.return_refund_amount
        logger.warning(
            "Return refund amount missing, falling back to goods value",
            extra={"order_id": order.order_id},
        )
        return max(Decimal("0"), order.total_amount - order.shipping_cost)

    async def _store_photos(
        self, order_id: str, photos: Sequence[InspectionPhoto]
    ) -> List[str]:
        paths = []
        for photo in photos:
            path = f"{order_id}/{uuid.uuid4().hex}.{photo.extension}"
            stored = await self.photo_storage.put_object(
                path, photo.data, photo.content_type
            )
            paths.append(stored)
        logger.info(
            "Inspection photos stored",
            extra={"order_id": order_id, "count": len(paths)},
        )
        return paths

    async def _signed_photo_urls(self, paths: Sequence[str]) -> List[str]:
        urls = []
        for path in paths:
            try:
                urls.append(
                    await self.photo_storage.signed_url(path, SIGNED_PHOTO_URL_TTL)
                )
            except Exception as e:
                logger.warning(
                    "Could not sign inspection photo URL",
                    extra={"path": path, "error": str(e)},
                )
        return urls

    async def process_return_refund(
        self,
        order_id: str,
        condition: ProductCondition,
        admin_note: Optional[str],
        deduction_amount: Decimal,
        deduction_reason: Optional[str],
        uploads: Sequence[Tuple[str, bytes]],
    ) -> ReturnRefundResponse:
        """Record the inspection verdict and refund what is due."""
        order = await self.order_repo.get_order(order_id)
        if order is None:
            raise OrderNotFound(
                order_id, "Order not found or not in RETURN_DELIVERED status."
            )
        attempt_transition(order, OrderEvent.RETURN_REFUND_STARTED)

        validate_inspection(condition, admin_note, deduction_amount)
        photos = validate_inspection_photos(
            uploads,
            photos_required=condition is not ProductCondition.GOOD_CONDITION,
        )
        final_amount = final_refund_amount(
            self._max_refundable(order), deduction_amount
        )

        paths = await self._store_photos(order_id, photos)
        started = await self.lifecycle.advance(
            order_id,
            OrderEvent.RETURN_REFUND_STARTED,
            return_product_condition=condition,
            return_admin_note=admin_note,
            return_deduction_amount=deduction_amount,
            return_deduction_reason=deduction_reason,
            return_inspection_photos=paths,
        )
        return await self._refund(started, final_amount, "Refund failed")

    async def retry_return_refund(self, order_id: str) -> ReturnRefundResponse:
        """Re-run a failed return refund with the recorded deduction."""
        started = await self.lifecycle.advance(
            order_id, OrderEvent.RETURN_REFUND_RETRY_STARTED
        )
        final_amount = final_refund_amount(
            self._max_refundable(started),
            started.return_deduction_amount or Decimal("0"),
        )
        return await self._refund(started, final_amount, "Refund retry failed")

    async def _refund(
        self, order: Order, final_amount: Decimal, failure_message: str
    ) -> ReturnRefundResponse:
        order_id = order.order_id
        deduction = order.return_deduction_amount or Decimal("0")

        if final_amount == 0:
            closed = await self.lifecycle.advance(
                order_id,
                OrderEvent.RETURN_CLOSED_WITHOUT_REFUND,
                refund_amount=Decimal("0"),
            )
            logger.info(
                "Return closed without refund",
                extra={"order_id": order_id, "deduction": str(deduction)},
            )
            return ReturnRefundResponse(
                refund_amount=Decimal("0"),
                deduction_amount=deduction,
                inspection_photos=await self._signed_photo_urls(
                    closed.return_inspection_photos
                ),
            )

        result = await request_refund(
            self.payment_gateway,
            order_id,
            order.gateway_payment_id,
            to_subunits(final_amount),
            notes={"order_id": order_id, "reason": "return"},
        )

        if result.kind is RefundOutcomeKind.FAILED:
            await self.lifecycle.advance(
                order_id, OrderEvent.REFUND_FAILED, **result.failure_fields()
            )
            raise PaymentGatewayError(
                failure_message,
                code=result.error_code,
                reason=result.error_reason,
                description=result.error_description,
            )

        credit_note_number = None
        if result.kind is RefundOutcomeKind.PENDING:
            updated = await self.lifecycle.advance(
                order_id, OrderEvent.REFUND_ACCEPTED, refund_id=result.refund_id
            )
        else:
            credit_note_number = await self.credit_notes.next_number()
            completed = await self.lifecycle.try_advance(
                order_id,
                OrderEvent.RETURN_REFUND_SUCCEEDED,
                refund_id=result.refund_id,
                refund_amount=result.amount_decimal,
                credit_note_number=credit_note_number,
            )
            if completed is None:
                logger.info(
                    "Return refund already completed by webhook",
                    extra={"order_id": order_id, "refund_id": result.refund_id},
                )
                updated = await self._current(order_id)
                credit_note_number = updated.credit_note_number
            else:
                updated = completed
                self.notifier.return_refund_processed(updated)
                await self.credit_notes.issue(updated, "Product return")

        return ReturnRefundResponse(
            refund_amount=final_amount,
            refund_id=result.refund_id,
            deduction_amount=deduction,
            credit_note_number=credit_note_number,
            inspection_photos=await self._signed_photo_urls(
                updated.return_inspection_photos
            ),
        )
