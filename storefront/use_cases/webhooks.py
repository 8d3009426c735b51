"""
Webhook ingestors.

Webhook senders retry on anything but a 2xx, so these handlers never
raise: unmatched orders, replays, illegal transitions and internal
failures are logged and acknowledged. Replays are harmless because every
status change is a conditional lifecycle transition that matches nothing
the second time.
"""

import json
import logging
from decimal import Decimal
from typing import Any, Dict, Mapping, Optional

from storefront.api.responses import MessageResponse
from storefront.credit_note import CreditNoteService
from storefront.domain import (
    Order,
    RefundStatus,
    ReturnStatus,
    from_subunits,
    to_subunits,
)
from storefront.lifecycle import OrderEvent, OrderLifecycle
from storefront.notifications import Notifier
from storefront.repositories import OrderRepository, PaymentGateway
from storefront.use_cases.refunds import COMPLETED_REFUND_STATUSES
from storefront.validation import ensure_order_repository, ensure_payment_gateway

logger = logging.getLogger(__name__)

PICKED_UP_LABEL = "PICKED UP"
DELIVERED_LABEL = "DELIVERED"


def _ack(message: str) -> MessageResponse:
    return MessageResponse(message=message)


def _parse(body: bytes) -> Optional[Dict[str, Any]]:
    try:
        payload = json.loads(body)
    except (TypeError, ValueError):
        return None
    return payload if isinstance(payload, dict) else None


def extract_entity(payload: Mapping[str, Any], kind: str) -> Optional[Dict[str, Any]]:
    """Return ``payload.<kind>.entity`` or a top-level entity of that kind."""
    nested = (payload.get("payload") or {}).get(kind) or {}
    entity = nested.get("entity")
    if isinstance(entity, dict):
        return entity
    if payload.get("entity") == kind and isinstance(payload.get("id"), str):
        return dict(payload)
    if isinstance(payload.get("entity"), dict) and payload["entity"].get("entity") == kind:
        return payload["entity"]
    return None


class SignedWebhook:
    """Signature policy shared by the payment gateway webhooks."""

    def __init__(self, payment_gateway: PaymentGateway, strict_signatures: bool) -> None:
        self.payment_gateway = ensure_payment_gateway(payment_gateway)
        self.strict_signatures = strict_signatures

    def signature_accepted(self, source: str, body: bytes, signature: Optional[str]) -> bool:
        valid = bool(signature) and self.payment_gateway.verify_webhook_signature(
            body, signature or ""
        )
        if valid:
            return True
        logger.warning(
            "Invalid webhook signature",
            extra={
                "source": source,
                "signature_present": bool(signature),
                "strict": self.strict_signatures,
            },
        )
        return not self.strict_signatures


class PaymentWebhookUseCase(SignedWebhook):
    """Payment capture and failure events."""

    def __init__(
        self,
        order_repo: OrderRepository,
        payment_gateway: PaymentGateway,
        notifier: Notifier,
        strict_signatures: bool = True,
    ) -> None:
        super().__init__(payment_gateway, strict_signatures)
        self.order_repo = ensure_order_repository(order_repo)
        self.lifecycle = OrderLifecycle(self.order_repo)
        self.notifier = notifier

    async def _find_order(self, entity: Mapping[str, Any]) -> Optional[Order]:
        notes = entity.get("notes") or {}
        order_id = notes.get("order_id") if isinstance(notes, dict) else None
        if order_id:
            order = await self.order_repo.get_order(order_id)
            if order is not None:
                return order
        gateway_order_id = entity.get("order_id")
        if gateway_order_id:
            return await self.order_repo.find_by_gateway_order_id(gateway_order_id)
        return None

    async def handle(self, body: bytes, signature: Optional[str]) -> MessageResponse:
        try:
            return await self._handle(body, signature)
        except Exception as e:
            logger.error(
                "Payment webhook processing failed",
                extra={"error": str(e), "error_type": type(e).__name__},
                exc_info=True,
            )
            return _ack("Webhook received")

    async def _handle(self, body: bytes, signature: Optional[str]) -> MessageResponse:
        if not self.signature_accepted("payment", body, signature):
            return _ack("Invalid signature")
        payload = _parse(body)
        if payload is None:
            return _ack("Invalid payload")
        event = payload.get("event")
        entity = extract_entity(payload, "payment")
        if entity is None:
            logger.info("Payment webhook without payment entity", extra={"event": event})
            return _ack("Webhook received")

        order = await self._find_order(entity)
        if order is None:
            logger.warning(
                "Unmatched payment webhook",
                extra={
                    "event": event,
                    "payment_id": entity.get("id"),
                    "gateway_order_id": entity.get("order_id"),
                },
            )
            return _ack("Order not found")

        if event == "payment.captured":
            expected = to_subunits(order.total_amount)
            if entity.get("amount") not in (None, expected):
                logger.warning(
                    "Captured amount differs from order total",
                    extra={
                        "order_id": order.order_id,
                        "expected": expected,
                        "captured": entity.get("amount"),
                    },
                )
            updated = await self.lifecycle.try_advance(
                order.order_id,
                OrderEvent.PAYMENT_CAPTURED,
                gateway_payment_id=entity.get("id"),
            )
            if updated is None:
                logger.info(
                    "Payment capture already applied",
                    extra={"order_id": order.order_id},
                )
                return _ack("Already processed")
            self.notifier.order_confirmed(updated)
            return _ack("Payment captured")

        if event == "payment.failed":
            updated = await self.lifecycle.try_advance(
                order.order_id,
                OrderEvent.PAYMENT_FAILED,
                gateway_payment_id=entity.get("id"),
                payment_error=entity.get("error_description"),
            )
            return _ack("Payment failed" if updated else "Already processed")

        logger.info(
            "Ignoring payment webhook event",
            extra={"event": event, "order_id": order.order_id},
        )
        return _ack("Webhook received")


class RefundWebhookUseCase(SignedWebhook):
    """Refund status events, keyed by refund id then payment id."""

    def __init__(
        self,
        order_repo: OrderRepository,
        payment_gateway: PaymentGateway,
        notifier: Notifier,
        credit_notes: CreditNoteService,
        strict_signatures: bool = True,
    ) -> None:
        super().__init__(payment_gateway, strict_signatures)
        self.order_repo = ensure_order_repository(order_repo)
        self.lifecycle = OrderLifecycle(self.order_repo)
        self.notifier = notifier
        self.credit_notes = credit_notes

    async def _find_order(self, entity: Mapping[str, Any]) -> Optional[Order]:
        refund_id = entity.get("id")
        if refund_id:
            order = await self.order_repo.find_by_refund_id(refund_id)
            if order is not None:
                return order
        payment_id = entity.get("payment_id")
        if payment_id:
            return await self.order_repo.find_by_payment_id(payment_id)
        return None

    async def handle(self, body: bytes, signature: Optional[str]) -> MessageResponse:
        try:
            return await self._handle(body, signature)
        except Exception as e:
            logger.error(
                "Refund webhook processing failed",
                extra={"error": str(e), "error_type": type(e).__name__},
                exc_info=True,
            )
            return _ack("Webhook received")

    async def _handle(self, body: bytes, signature: Optional[str]) -> MessageResponse:
        if not self.signature_accepted("refund", body, signature):
            return _ack("Invalid signature")
        payload = _parse(body)
        if payload is None:
            return _ack("Invalid payload")
        entity = extract_entity(payload, "refund")
        if entity is None:
            logger.warning("Refund webhook without refund entity")
            return _ack("Invalid payload")

        refund_id = entity.get("id")
        status = str(entity.get("status") or "").lower()
        order = await self._find_order(entity)
        if order is None:
            logger.warning(
                "Unmatched refund webhook",
                extra={
                    "refund_id": refund_id,
                    "payment_id": entity.get("payment_id"),
                    "refund_status": status,
                },
            )
            return _ack("Order not found")

        logger.info(
            "Refund webhook received",
            extra={
                "order_id": order.order_id,
                "refund_id": refund_id,
                "refund_status": status,
            },
        )
        if status == "created":
            await self._apply(
                order, OrderEvent.REFUND_WEBHOOK_CREATED, refund_id=refund_id
            )
        elif status in COMPLETED_REFUND_STATUSES:
            await self._complete(order, entity)
        elif status == "failed":
            await self._apply(
                order,
                OrderEvent.REFUND_WEBHOOK_FAILED,
                refund_id=refund_id,
                refund_error_code=entity.get("error_code") or "REFUND_FAILED",
                refund_error_reason=entity.get("error_reason"),
                refund_error_description=entity.get("error_description"),
            )
        else:
            logger.info(
                "Ignoring unknown refund status",
                extra={"order_id": order.order_id, "refund_status": status},
            )
        return _ack("Webhook processed")

    async def _apply(self, order: Order, event: OrderEvent, **fields: Any) -> Optional[Order]:
        updated = await self.lifecycle.try_advance(order.order_id, event, **fields)
        if updated is None:
            logger.info(
                "Refund webhook was a no-op",
                extra={"order_id": order.order_id, "event": event.value},
            )
        return updated

    async def _complete(self, order: Order, entity: Mapping[str, Any]) -> None:
        amount = entity.get("amount")
        refund_amount: Optional[Decimal] = (
            from_subunits(int(amount)) if amount is not None else None
        )
        is_return = order.return_status is ReturnStatus.RETURN_REFUND_INITIATED
        event = (
            OrderEvent.RETURN_REFUND_WEBHOOK_PROCESSED
            if is_return
            else OrderEvent.REFUND_WEBHOOK_PROCESSED
        )
        updated = await self._apply(
            order, event, refund_id=entity.get("id"), refund_amount=refund_amount
        )
        if updated is not None:
            if is_return:
                self.notifier.return_refund_processed(updated)
            else:
                self.notifier.refund_processed(updated)
        else:
            updated = await self.order_repo.get_order(order.order_id)

        if (
            updated is not None
            and updated.refund_status is RefundStatus.REFUND_COMPLETED
            and updated.credit_note_sent_at is None
        ):
            await self.credit_notes.issue(
                updated, "Product return" if is_return else "Order cancellation"
            )


class ShipmentWebhookUseCase:
    """Carrier status events, keyed by AWB."""

    def __init__(self, order_repo: OrderRepository, notifier: Notifier) -> None:
        self.order_repo = ensure_order_repository(order_repo)
        self.lifecycle = OrderLifecycle(self.order_repo)
        self.notifier = notifier

    async def handle(self, payload: Mapping[str, Any]) -> MessageResponse:
        try:
            return await self._handle(payload)
        except Exception as e:
            logger.error(
                "Shipment webhook processing failed",
                extra={"error": str(e), "error_type": type(e).__name__},
                exc_info=True,
            )
            return _ack("Webhook received")

    async def _handle(self, payload: Mapping[str, Any]) -> MessageResponse:
        awb = payload.get("awb")
        label = payload.get("current_status") or payload.get("sr-status-label")
        if not awb or not label:
            return _ack("Invalid payload")
        awb = str(awb)
        label = str(label).strip()
        normalized = label.upper()

        return_order = await self.order_repo.find_by_return_awb(awb)
        if return_order is not None:
            return await self._return_update(return_order, normalized)

        order = await self.order_repo.find_by_awb(awb)
        if order is None:
            logger.info(
                "Shipment webhook for unknown AWB",
                extra={"awb": awb, "carrier_status": label},
            )
            return _ack("Order not found")

        if normalized == PICKED_UP_LABEL:
            updated = await self.lifecycle.try_advance(
                order.order_id, OrderEvent.SHIPMENT_PICKED_UP, carrier_status=label
            )
            if updated is not None:
                self.notifier.shipped(updated)
                return _ack("Order picked up")
        elif normalized == DELIVERED_LABEL:
            updated = await self.lifecycle.try_advance(
                order.order_id, OrderEvent.SHIPMENT_DELIVERED, carrier_status=label
            )
            if updated is not None:
                self.notifier.delivered(updated)
                return _ack("Order delivered")

        await self.order_repo.update(order.order_id, {"carrier_status": label})
        logger.info(
            "Carrier status recorded",
            extra={"order_id": order.order_id, "carrier_status": label},
        )
        return _ack("Status recorded")

    async def _return_update(self, order: Order, normalized: str) -> MessageResponse:
        if normalized == PICKED_UP_LABEL:
            event = OrderEvent.RETURN_PICKED_UP
        elif normalized == DELIVERED_LABEL:
            event = OrderEvent.RETURN_DELIVERED
        else:
            logger.info(
                "Ignoring return shipment status",
                extra={"order_id": order.order_id, "carrier_status": normalized},
            )
            return _ack("Return status ignored")

        updated = await self.lifecycle.try_advance(order.order_id, event)
        if updated is None:
            return _ack("Return status unchanged")
        return _ack("Return status updated")
