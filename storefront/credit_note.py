"""
Credit notes issued after a refund has succeeded.

Numbers follow ``CN-<fiscal year>-<sequence>``. The Indian fiscal year
starts in April, so a note issued in May 2025 belongs to ``2526``.
"""

import logging
from datetime import date, datetime
from typing import Optional

from storefront.documents import PDF_CONTENT_TYPE, credit_note_pdf
from storefront.domain import EmailAttachment, Order, utcnow
from storefront.lifecycle import OrderEvent, OrderLifecycle
from storefront.notifications import Notifier
from storefront.repositories import CreditNoteSequence, FileStorageRepository
from storefront.validation import (
    ensure_credit_note_sequence,
    ensure_file_storage_repository,
)

logger = logging.getLogger(__name__)

_BASE36 = "0123456789abcdefghijklmnopqrstuvwxyz"


def fiscal_year_code(day: date) -> str:
    start = day.year if day.month >= 4 else day.year - 1
    return f"{start % 100:02d}{(start + 1) % 100:02d}"


def format_credit_note_number(sequence: int, day: date) -> str:
    return f"CN-{fiscal_year_code(day)}-{sequence:05d}"


def _base36(value: int) -> str:
    digits = ""
    while value:
        value, remainder = divmod(value, 36)
        digits = _BASE36[remainder] + digits
    return digits or "0"


def fallback_credit_note_number(now: datetime) -> str:
    """Used only when the sequence store is unreachable."""
    millis = int(now.timestamp() * 1000)
    return f"CN-{now.year}-{_base36(millis)[-6:].upper()}"


class CreditNoteService:
    def __init__(
        self,
        sequence: CreditNoteSequence,
        storage: FileStorageRepository,
        lifecycle: OrderLifecycle,
        notifier: Notifier,
        store_name: str,
        gstin: Optional[str] = None,
    ) -> None:
        self.sequence = ensure_credit_note_sequence(sequence)
        self.storage = ensure_file_storage_repository(storage)
        self.lifecycle = lifecycle
        self.notifier = notifier
        self.store_name = store_name
        self.gstin = gstin

    async def next_number(self, now: Optional[datetime] = None) -> str:
        now = now or utcnow()
        try:
            value = await self.sequence.next_value()
        except Exception as e:
            logger.warning(
                "Credit note sequence unavailable, using timestamp number",
                extra={"error": str(e), "error_type": type(e).__name__},
            )
            return fallback_credit_note_number(now)
        return format_credit_note_number(value, now.date())

    def render(
        self, order: Order, number: str, reason: str, issued_on: date
    ) -> bytes:
        return credit_note_pdf(
            order,
            number,
            reason,
            issued_on,
            store_name=self.store_name,
            gstin=self.gstin,
        )

    async def issue(self, order: Order, reason: str) -> Optional[Order]:
        """Number, store and email a credit note for a refunded order.

        Best-effort: a failure here is logged and never undoes the refund.
        ``credit_note_sent_at`` is stamped only once the email went out.
        """
        if order.credit_note_sent_at is not None:
            return order
        try:
            if order.credit_note_number is None:
                number = await self.next_number()
                issued = await self.lifecycle.try_advance(
                    order.order_id,
                    OrderEvent.CREDIT_NOTE_ISSUED,
                    credit_note_number=number,
                )
                if issued is None:
                    logger.info(
                        "Credit note already issued elsewhere",
                        extra={"order_id": order.order_id},
                    )
                    return None
                order = issued

            number = order.credit_note_number
            document = self.render(order, number, reason, utcnow().date())
            try:
                await self.storage.put_object(
                    f"{number}.pdf", document, PDF_CONTENT_TYPE
                )
            except Exception as e:
                logger.warning(
                    "Failed to store credit note document",
                    extra={
                        "order_id": order.order_id,
                        "credit_note_number": number,
                        "error": str(e),
                    },
                )

            order_id = order.order_id

            async def mark_sent() -> None:
                await self.lifecycle.try_advance(
                    order_id, OrderEvent.CREDIT_NOTE_SENT
                )

            self.notifier.credit_note(
                order,
                EmailAttachment(
                    filename=f"{number}.pdf",
                    content=document,
                    content_type=PDF_CONTENT_TYPE,
                ),
                on_sent=mark_sent,
            )
            logger.info(
                "Credit note issued",
                extra={"order_id": order_id, "credit_note_number": number},
            )
            return order
        except Exception as e:
            logger.error(
                "Credit note generation failed",
                extra={
                    "order_id": order.order_id,
                    "error": str(e),
                    "error_type": type(e).__name__,
                },
                exc_info=True,
            )
            return None
