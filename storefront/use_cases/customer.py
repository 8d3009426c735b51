"""
Guest-facing cancellation: OTP issue and verification, then either a
cancellation (confirmed orders) or a return request (picked up or
delivered orders).
"""

import logging
import secrets
from datetime import datetime, timedelta
from typing import Optional

from storefront.api.responses import (
    CancellationResponse,
    OrderStatusResponse,
    OtpResponse,
)
from storefront.domain import (
    CancellationStatus,
    Order,
    OrderStatus,
    ReturnStatus,
    utcnow,
)
from storefront.errors import (
    OrderNotFound,
    PreconditionViolation,
    RequestValidationError,
    TooManyAttempts,
)
from storefront.lifecycle import OrderEvent, OrderLifecycle
from storefront.notifications import Notifier
from storefront.repositories import OrderRepository
from storefront.signatures import hmac_sha256_hex, secrets_match
from storefront.use_cases.cancellation import CancellationUseCase
from storefront.use_cases.returns import ReturnsUseCase
from storefront.validation import ensure_order_repository

logger = logging.getLogger(__name__)

OTP_VALID_MINUTES = 10
MAX_OTP_ATTEMPTS = 3
OTP_LOCKOUT = timedelta(hours=1)


def generate_otp() -> str:
    return f"{secrets.randbelow(1_000_000):06d}"


def otp_digest(secret: str, order_id: str, otp: str) -> str:
    return hmac_sha256_hex(secret, f"{order_id}:{otp}")


class CustomerCancellationUseCase:
    def __init__(
        self,
        order_repo: OrderRepository,
        cancellation: CancellationUseCase,
        returns: ReturnsUseCase,
        notifier: Notifier,
        otp_secret: str,
    ) -> None:
        self.order_repo = ensure_order_repository(order_repo)
        self.lifecycle = OrderLifecycle(self.order_repo)
        self.cancellation = cancellation
        self.returns = returns
        self.notifier = notifier
        self.otp_secret = otp_secret

    async def _owned_order(self, order_id: str, email: str) -> Order:
        order = await self.order_repo.get_order(order_id)
        if order is None or not order.belongs_to(email):
            # same answer for unknown and foreign orders
            raise OrderNotFound(order_id)
        return order

    @staticmethod
    def _locked(order: Order, now: datetime) -> bool:
        return order.otp_locked_until is not None and order.otp_locked_until > now

    async def send_otp(self, order_id: str, email: str) -> OtpResponse:
        order = await self._owned_order(order_id, email)
        now = utcnow()
        if self._locked(order, now):
            raise TooManyAttempts("Too many failed attempts. Please try again later.")
        if order.order_status in (OrderStatus.CANCELLED, OrderStatus.RETURNED):
            raise PreconditionViolation(
                f"Order is already {order.order_status.value.lower()}",
                field="order_status",
            )

        otp = generate_otp()
        updated = await self.order_repo.update(
            order_id,
            {
                "otp_digest": otp_digest(self.otp_secret, order_id, otp),
                "otp_expires_at": now + timedelta(minutes=OTP_VALID_MINUTES),
                "otp_attempts": 0,
                "otp_locked_until": None,
            },
        )
        self.notifier.cancellation_otp(updated or order, otp, OTP_VALID_MINUTES)
        logger.info("Cancellation OTP issued", extra={"order_id": order_id})
        return OtpResponse(
            message="OTP sent to your email",
            expires_in_minutes=OTP_VALID_MINUTES,
        )

    async def verify_otp(self, order: Order, otp: str) -> None:
        """Consume a matching OTP or count the failed attempt."""
        now = utcnow()
        if self._locked(order, now):
            raise TooManyAttempts("Too many failed attempts. Please try again later.")
        if order.otp_digest is None or order.otp_expires_at is None:
            raise RequestValidationError("No OTP requested for this order")
        if order.otp_expires_at < now:
            await self.order_repo.update(
                order.order_id, {"otp_digest": None, "otp_expires_at": None}
            )
            raise RequestValidationError("OTP expired")

        expected = order.otp_digest
        provided = otp_digest(self.otp_secret, order.order_id, otp.strip())
        if not secrets_match(expected, provided):
            attempts = order.otp_attempts + 1
            logger.warning(
                "Invalid cancellation OTP",
                extra={"order_id": order.order_id, "attempts": attempts},
            )
            if attempts >= MAX_OTP_ATTEMPTS:
                await self.order_repo.update(
                    order.order_id,
                    {
                        "otp_attempts": 0,
                        "otp_digest": None,
                        "otp_expires_at": None,
                        "otp_locked_until": now + OTP_LOCKOUT,
                    },
                )
                raise TooManyAttempts(
                    "Too many failed attempts. Please try again later."
                )
            await self.order_repo.update(
                order.order_id, {"otp_attempts": attempts}
            )
            raise RequestValidationError("Invalid OTP")

        await self.order_repo.update(
            order.order_id,
            {"otp_digest": None, "otp_expires_at": None, "otp_attempts": 0},
        )

    async def cancel(
        self, order_id: str, email: str, otp: str, reason: Optional[str] = None
    ) -> CancellationResponse:
        order = await self._owned_order(order_id, email)

        if (
            order.order_status is OrderStatus.CANCELLED
            or order.cancellation_status is CancellationStatus.CANCELLED
        ):
            return CancellationResponse(
                message="Order already cancelled",
                order=OrderStatusResponse.from_order(order),
            )
        if order.order_status is OrderStatus.CHECKED_OUT:
            raise PreconditionViolation(
                "Order not confirmed yet", field="order_status"
            )
        if order.order_status is OrderStatus.CANCELLATION_REQUESTED:
            raise PreconditionViolation(
                "Cancellation already requested for this order",
                field="order_status",
            )
        if order.order_status is OrderStatus.RETURNED:
            raise PreconditionViolation(
                "Order already returned", field="order_status"
            )

        if (
            order.order_status in (OrderStatus.PICKED_UP, OrderStatus.DELIVERED)
            and order.return_status is not ReturnStatus.NOT_REQUESTED
        ):
            raise PreconditionViolation(
                "Return already requested for this order",
                field="return_status",
            )

        await self.verify_otp(order, otp)

        if order.order_status in (OrderStatus.PICKED_UP, OrderStatus.DELIVERED):
            returned = await self.returns.request_return(order, reason)
            return CancellationResponse(
                message="Return pickup scheduled",
                is_return=True,
                order=OrderStatusResponse.from_order(returned),
                return_refund_amount=returned.return_refund_amount,
            )

        requested = await self.lifecycle.advance(
            order_id, OrderEvent.CANCELLATION_REQUESTED, cancellation_reason=reason
        )
        processed = await self.cancellation.process(requested)
        if processed.cancellation_status is CancellationStatus.CANCELLED:
            message = "Order cancelled and refunded"
        else:
            message = "Order cancelled, refund is being processed"
        return CancellationResponse(
            message=message,
            order=OrderStatusResponse.from_order(processed),
            refund_id=processed.refund_id,
        )
