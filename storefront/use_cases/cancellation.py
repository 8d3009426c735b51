"""
Cancellation processing shared by the customer cancel request and the
administrator retry.

Every step re-reads the stored order before acting and leaves an explicit
status behind on every exit path: SHIPPING_CANCELLED or
SHIPPING_CANCELLATION_FAILED for the shipment, REFUND_COMPLETED,
REFUND_INITIATED (gateway confirmation pending) or REFUND_FAILED for the
refund.
"""

import logging

from storefront.api.responses import OrderStatusResponse
from storefront.credit_note import CreditNoteService
from storefront.domain import (
    CancellationStatus,
    Order,
    ShipmentStatus,
    to_subunits,
)
from storefront.errors import (
    OrderNotFound,
    PaymentGatewayError,
    PreconditionViolation,
    ShipmentCancellationFailed,
)
from storefront.lifecycle import (
    CANCELLABLE_SHIPMENT_STATUSES,
    OrderEvent,
    OrderLifecycle,
)
from storefront.notifications import Notifier
from storefront.repositories import (
    OrderRepository,
    PaymentGateway,
    ShipmentGateway,
)
from storefront.use_cases.refunds import RefundOutcomeKind, request_refund
from storefront.validation import (
    ensure_order_repository,
    ensure_payment_gateway,
    ensure_shipment_gateway,
)

logger = logging.getLogger(__name__)


class CancellationUseCase:
    """
    Cancels the shipment of a CANCELLATION_REQUESTED order and refunds it.

    The refund is only attempted once the shipment is SHIPPING_CANCELLED
    or was never created. Refund failures are persisted before the error
    is raised, so the order can always be retried.
    """

    def __init__(
        self,
        order_repo: OrderRepository,
        payment_gateway: PaymentGateway,
        shipment_gateway: ShipmentGateway,
        notifier: Notifier,
        credit_notes: CreditNoteService,
    ) -> None:
        self.order_repo = ensure_order_repository(order_repo)
        self.payment_gateway = ensure_payment_gateway(payment_gateway)
        self.shipment_gateway = ensure_shipment_gateway(shipment_gateway)
        self.lifecycle = OrderLifecycle(self.order_repo)
        self.notifier = notifier
        self.credit_notes = credit_notes

    async def _current(self, order_id: str) -> Order:
        order = await self.order_repo.get_order(order_id)
        if order is None:
            raise OrderNotFound(order_id)
        return order

    async def cancel_shipment(self, order: Order, failure_message: str) -> Order:
        """Cancel the gateway shipment and record the outcome."""
        cancelled = False
        if order.shipment_order_id is None:
            logger.info(
                "No gateway shipment to cancel",
                extra={"order_id": order.order_id},
            )
            cancelled = True
        else:
            try:
                cancelled = await self.shipment_gateway.cancel_shipment(
                    order.shipment_order_id
                )
            except Exception as e:
                logger.error(
                    "Shipment cancellation call failed",
                    extra={
                        "order_id": order.order_id,
                        "shipment_order_id": order.shipment_order_id,
                        "error": str(e),
                        "error_type": type(e).__name__,
                    },
                )
                await self.lifecycle.try_advance(
                    order.order_id, OrderEvent.SHIPMENT_CANCEL_FAILED
                )
                raise

        if not cancelled:
            await self.lifecycle.try_advance(
                order.order_id, OrderEvent.SHIPMENT_CANCEL_FAILED
            )
            raise ShipmentCancellationFailed(
                failure_message, code="SHIPMENT_CANCEL_REFUSED"
            )

        return await self.lifecycle.advance(
            order.order_id, OrderEvent.SHIPMENT_CANCELLED
        )

    async def refund(self, order_id: str, failure_message: str) -> Order:
        """Lock the refund, call the gateway and persist the result."""
        order = await self.lifecycle.advance(order_id, OrderEvent.REFUND_STARTED)
        amount = to_subunits(order.total_amount)
        result = await request_refund(
            self.payment_gateway,
            order_id,
            order.gateway_payment_id,
            amount,
            notes={"order_id": order_id, "reason": "cancellation"},
        )

        if result.kind is RefundOutcomeKind.SUCCEEDED:
            updated = await self.lifecycle.try_advance(
                order_id,
                OrderEvent.REFUND_SUCCEEDED,
                refund_id=result.refund_id,
                refund_amount=result.amount_decimal,
            )
            if updated is None:
                # the refund webhook completed the order first
                logger.info(
                    "Refund already completed by webhook",
                    extra={"order_id": order_id, "refund_id": result.refund_id},
                )
                return await self._current(order_id)
            self.notifier.refund_processed(updated)
            issued = await self.credit_notes.issue(updated, "Order cancellation")
            return issued or updated

        if result.kind is RefundOutcomeKind.PENDING:
            logger.info(
                "Refund accepted, awaiting gateway confirmation",
                extra={"order_id": order_id, "refund_id": result.refund_id},
            )
            return await self.lifecycle.advance(
                order_id, OrderEvent.REFUND_ACCEPTED, refund_id=result.refund_id
            )

        await self.lifecycle.advance(
            order_id, OrderEvent.REFUND_FAILED, **result.failure_fields()
        )
        raise PaymentGatewayError(
            failure_message,
            code=result.error_code,
            reason=result.error_reason,
            description=result.error_description,
        )

    async def process(self, order: Order) -> Order:
        """Run shipment cancellation then refund for a fresh request."""
        if order.shipment_status in CANCELLABLE_SHIPMENT_STATUSES:
            await self.cancel_shipment(order, "Shipping cancellation failed")
        return await self.refund(order.order_id, "Refund failed")

    async def retry(self, order_id: str) -> OrderStatusResponse:
        """Administrator retry of a stuck cancellation.

        Safe to call repeatedly: once the order is CANCELLED the
        cancellation precondition fails and nothing is called twice.
        """
        order = await self._current(order_id)
        if order.cancellation_status is not CancellationStatus.CANCELLATION_REQUESTED:
            raise PreconditionViolation(
                "Order is not in cancellation state",
                event="RETRY_CANCELLATION",
                field="cancellation_status",
            )

        logger.info(
            "Retrying cancellation",
            extra={
                "order_id": order_id,
                "shipment_status": order.shipment_status.value,
                "refund_status": (
                    order.refund_status.value if order.refund_status else None
                ),
            },
        )
        if order.shipment_status is ShipmentStatus.SHIPPING_CANCELLATION_FAILED:
            await self.cancel_shipment(order, "Shipment cancellation retry failed")

        # the shipment step may have changed the row
        order = await self._current(order_id)
        logger.debug(
            "Order state before refund",
            extra={
                "order_id": order_id,
                "shipment_status": order.shipment_status.value,
                "payment_status": order.payment_status.value,
            },
        )
        updated = await self.refund(order_id, "Refund retry failed")
        return OrderStatusResponse.from_order(updated)

