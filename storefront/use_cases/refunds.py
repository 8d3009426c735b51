"""
Single refund attempt against the payment gateway.

The gateway call never raises out of ``request_refund``: every outcome,
including exceptions and unexpected answers, is classified so the caller
can persist an explicit status.
"""

import logging
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, Mapping, Optional

from pydantic import BaseModel

from storefront.domain import from_subunits
from storefront.errors import GatewayError
from storefront.repositories import PaymentGateway

logger = logging.getLogger(__name__)

COMPLETED_REFUND_STATUSES = frozenset({"processed", "completed", "succeeded"})


class RefundOutcomeKind(str, Enum):
    SUCCEEDED = "succeeded"
    PENDING = "pending"
    FAILED = "failed"


class RefundResult(BaseModel):
    kind: RefundOutcomeKind
    refund_id: Optional[str] = None
    amount: Optional[int] = None
    error_code: Optional[str] = None
    error_reason: Optional[str] = None
    error_description: Optional[str] = None

    @property
    def amount_decimal(self) -> Optional[Decimal]:
        return from_subunits(self.amount) if self.amount is not None else None

    def failure_fields(self) -> Dict[str, Any]:
        fields: Dict[str, Any] = {
            "refund_error_code": self.error_code or "UNKNOWN",
            "refund_error_reason": self.error_reason,
            "refund_error_description": self.error_description,
        }
        if self.refund_id:
            fields["refund_id"] = self.refund_id
        return fields


async def request_refund(
    gateway: PaymentGateway,
    order_id: str,
    payment_id: Optional[str],
    amount: int,
    notes: Optional[Mapping[str, str]] = None,
) -> RefundResult:
    """Refund ``amount`` paise of ``payment_id`` and classify the answer.

    ``processed`` with exactly the requested amount is a success.
    ``created`` means the gateway accepted the refund and will confirm it
    by webhook. Anything else leaves the money movement uncertain and is
    reported as a failure.
    """
    if not payment_id:
        logger.error(
            "Order has no captured payment to refund",
            extra={"order_id": order_id},
        )
        return RefundResult(
            kind=RefundOutcomeKind.FAILED,
            error_code="MISSING_PAYMENT_ID",
            error_reason="No payment id recorded for this order",
        )

    try:
        outcome = await gateway.refund(payment_id, amount, notes=notes)
    except GatewayError as e:
        logger.error(
            "Refund call rejected by payment gateway",
            extra={
                "order_id": order_id,
                "payment_id": payment_id,
                "error": e.message,
                "error_code": e.code,
            },
            exc_info=True,
        )
        return RefundResult(
            kind=RefundOutcomeKind.FAILED,
            error_code=e.code,
            error_reason=e.reason,
            error_description=e.description or e.message,
        )
    except Exception as e:
        logger.error(
            "Refund call failed",
            extra={
                "order_id": order_id,
                "payment_id": payment_id,
                "error": str(e),
                "error_type": type(e).__name__,
            },
            exc_info=True,
        )
        return RefundResult(
            kind=RefundOutcomeKind.FAILED,
            error_code="UNKNOWN",
            error_reason=type(e).__name__,
            error_description=str(e),
        )

    logger.info(
        "Refund call answered",
        extra={
            "order_id": order_id,
            "refund_id": outcome.refund_id,
            "refund_status": outcome.status,
            "amount": outcome.amount,
        },
    )
    if outcome.status == "processed" and outcome.amount == amount:
        return RefundResult(
            kind=RefundOutcomeKind.SUCCEEDED,
            refund_id=outcome.refund_id,
            amount=outcome.amount,
        )
    if outcome.status == "created":
        return RefundResult(
            kind=RefundOutcomeKind.PENDING,
            refund_id=outcome.refund_id,
            amount=outcome.amount,
        )
    return RefundResult(
        kind=RefundOutcomeKind.FAILED,
        refund_id=outcome.refund_id,
        amount=outcome.amount,
        error_code="UNEXPECTED_RESPONSE",
        error_reason=f"status={outcome.status}",
        error_description=(
            f"Expected {amount} paise processed, gateway reported "
            f"{outcome.amount} paise {outcome.status}"
        ),
    )
