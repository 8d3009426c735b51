"""
Best-effort customer notifications.

Use cases never send email themselves. They queue messages on a
``NotificationOutbox`` through a ``Notifier``; the outbox is flushed
after the use case has finished its state changes. A message that fails
to render or to deliver is logged and dropped; it never fails the request
that caused it.
"""

import logging
from decimal import Decimal
from functools import lru_cache
from pathlib import Path
from typing import Any, Awaitable, Callable, List, Optional

from jinja2 import Environment, FileSystemLoader, select_autoescape
from pydantic import BaseModel, ConfigDict, Field

from storefront.documents import PDF_CONTENT_TYPE, receipt_pdf
from storefront.domain import EmailAttachment, Order
from storefront.repositories import NotificationSender

logger = logging.getLogger(__name__)

TEMPLATE_DIR = Path(__file__).parent / "templates"


@lru_cache(maxsize=1)
def template_environment() -> Environment:
    if not TEMPLATE_DIR.exists():
        raise FileNotFoundError(
            f"Template directory not found: {TEMPLATE_DIR}"
        )
    env = Environment(
        loader=FileSystemLoader(str(TEMPLATE_DIR)),
        autoescape=select_autoescape(["html", "j2"]),
    )
    env.filters["inr"] = format_inr
    return env


def format_inr(amount: Any) -> str:
    return f"₹{Decimal(amount or 0):,.2f}"


def render_template(name: str, **context: Any) -> str:
    return template_environment().get_template(name).render(**context)


class Notification(BaseModel):
    model_config = ConfigDict(arbitrary_types_allowed=True)

    kind: str
    to: str
    subject: str
    html: str
    order_id: Optional[str] = None
    attachments: List[EmailAttachment] = Field(default_factory=list)
    on_sent: Optional[Callable[[], Awaitable[Any]]] = Field(
        default=None, exclude=True
    )


class NotificationOutbox:
    """In-process list of messages waiting for the current request to end."""

    def __init__(self, sender: Optional[NotificationSender] = None) -> None:
        self.sender = sender
        self.pending: List[Notification] = []

    def enqueue(self, notification: Notification) -> None:
        logger.debug(
            "Notification queued",
            extra={
                "kind": notification.kind,
                "order_id": notification.order_id,
            },
        )
        self.pending.append(notification)

    def kinds(self) -> List[str]:
        return [notification.kind for notification in self.pending]

    async def flush(self) -> List[Notification]:
        """Deliver queued messages; returns the ones that were sent."""
        pending, self.pending = self.pending, []
        delivered: List[Notification] = []
        if self.sender is None:
            if pending:
                logger.warning(
                    "No notification sender configured, dropping messages",
                    extra={"count": len(pending)},
                )
            return delivered

        for notification in pending:
            try:
                await self.sender.send(
                    to=notification.to,
                    subject=notification.subject,
                    html=notification.html,
                    attachments=notification.attachments,
                )
            except Exception as e:
                logger.warning(
                    "Notification delivery failed",
                    extra={
                        "kind": notification.kind,
                        "order_id": notification.order_id,
                        "error": str(e),
                        "error_type": type(e).__name__,
                    },
                )
                continue

            delivered.append(notification)
            logger.info(
                "Notification sent",
                extra={
                    "kind": notification.kind,
                    "order_id": notification.order_id,
                },
            )
            if notification.on_sent is not None:
                try:
                    await notification.on_sent()
                except Exception as e:
                    logger.warning(
                        "Notification follow-up failed",
                        extra={
                            "kind": notification.kind,
                            "order_id": notification.order_id,
                            "error": str(e),
                        },
                    )
        return delivered


class Notifier:
    """Turns lifecycle events into templated emails on an outbox."""

    def __init__(
        self,
        outbox: NotificationOutbox,
        store_name: str,
        gstin: Optional[str] = None,
    ) -> None:
        self.outbox = outbox
        self.store_name = store_name
        self.gstin = gstin

    def _queue(
        self,
        kind: str,
        order: Order,
        subject: str,
        template: str,
        attachments: Optional[List[EmailAttachment]] = None,
        on_sent: Optional[Callable[[], Awaitable[Any]]] = None,
        **context: Any,
    ) -> None:
        if not order.guest_email:
            logger.info(
                "Order has no contact email, skipping notification",
                extra={"kind": kind, "order_id": order.order_id},
            )
            return
        try:
            html = render_template(
                template, order=order, store_name=self.store_name, **context
            )
        except Exception as e:
            logger.warning(
                "Notification rendering failed, message dropped",
                extra={
                    "kind": kind,
                    "order_id": order.order_id,
                    "template": template,
                    "error": str(e),
                    "error_type": type(e).__name__,
                },
                exc_info=True,
            )
            return
        self.outbox.enqueue(
            Notification(
                kind=kind,
                to=order.guest_email,
                subject=f"{self.store_name}: {subject}",
                html=html,
                order_id=order.order_id,
                attachments=attachments or [],
                on_sent=on_sent,
            )
        )

    def order_confirmed(self, order: Order) -> None:
        """Confirmation email with the tax invoice / receipt PDF attached.

        The email still goes out without the receipt if the PDF fails.
        """
        attachments: List[EmailAttachment] = []
        if order.guest_email:
            try:
                attachments.append(
                    EmailAttachment(
                        filename=f"receipt-{order.order_id}.pdf",
                        content=receipt_pdf(order, self.store_name, self.gstin),
                        content_type=PDF_CONTENT_TYPE,
                    )
                )
            except Exception as e:
                logger.warning(
                    "Receipt generation failed, confirming without it",
                    extra={"order_id": order.order_id, "error": str(e)},
                    exc_info=True,
                )
        self._queue(
            "order_confirmed",
            order,
            "Order Confirmed",
            "email/order_confirmed.html.j2",
            attachments=attachments,
            receipt_attached=bool(attachments),
        )

    def cancellation_otp(self, order: Order, otp: str, valid_minutes: int) -> None:
        self._queue(
            "cancellation_otp",
            order,
            "Your Order Cancellation OTP",
            "email/cancellation_otp.html.j2",
            otp=otp,
            valid_minutes=valid_minutes,
        )

    def shipped(self, order: Order) -> None:
        self._queue("shipped", order, "Order Shipped", "email/shipped.html.j2")

    def delivered(self, order: Order) -> None:
        self._queue(
            "delivered", order, "Order Delivered", "email/delivered.html.j2"
        )

    def refund_processed(self, order: Order) -> None:
        self._queue(
            "refund_processed",
            order,
            "Refund Processed",
            "email/refund_processed.html.j2",
        )

    def return_scheduled(self, order: Order) -> None:
        self._queue(
            "return_scheduled",
            order,
            "Return Pickup Scheduled",
            "email/return_scheduled.html.j2",
        )

    def return_refund_processed(self, order: Order) -> None:
        self._queue(
            "return_refund_processed",
            order,
            "Return Refund Processed",
            "email/return_refund_processed.html.j2",
        )

    def credit_note(
        self,
        order: Order,
        document: EmailAttachment,
        on_sent: Optional[Callable[[], Awaitable[Any]]] = None,
    ) -> None:
        self._queue(
            "credit_note",
            order,
            f"Credit Note {order.credit_note_number}",
            "email/credit_note.html.j2",
            attachments=[document],
            on_sent=on_sent,
        )
