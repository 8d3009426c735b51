"""
Razorpay implementation of PaymentGateway over its REST API.

Every call uses HTTP basic auth with the key pair. Non-2xx answers are
raised as ``PaymentGatewayError`` with Razorpay's ``error.code``,
``error.reason`` and ``error.description`` copied verbatim.
"""

import asyncio
import logging
from typing import Any, Dict, Mapping, Optional

import aiohttp

from storefront.domain import PaymentGatewayOrder, RefundOutcome
from storefront.errors import PaymentGatewayError
from storefront.repositories import PaymentGateway
from storefront.signatures import verify_hmac_signature

logger = logging.getLogger(__name__)


def error_from_response(status: int, body: Any) -> PaymentGatewayError:
    error = body.get("error", {}) if isinstance(body, dict) else {}
    description = error.get("description") or f"HTTP {status}"
    return PaymentGatewayError(
        f"Payment gateway rejected request: {description}",
        code=error.get("code") or f"HTTP_{status}",
        reason=error.get("reason"),
        description=description,
    )


class RazorpayPaymentGateway(PaymentGateway):
    def __init__(
        self,
        key_id: str,
        key_secret: str,
        webhook_secret: str,
        base_url: str = "https://api.razorpay.com/v1",
        session: Optional[aiohttp.ClientSession] = None,
    ) -> None:
        self._key_id = key_id
        self._key_secret = key_secret
        self._webhook_secret = webhook_secret
        self._base_url = base_url.rstrip("/")
        self._session = session

    @property
    def key_id(self) -> str:
        return self._key_id

    async def _request(
        self, method: str, path: str, payload: Optional[Mapping[str, Any]] = None
    ) -> Dict[str, Any]:
        url = f"{self._base_url}/{path.lstrip('/')}"
        auth = aiohttp.BasicAuth(self._key_id, self._key_secret)
        try:
            if self._session is not None:
                return await self._send(self._session, method, url, auth, payload)
            async with aiohttp.ClientSession() as session:
                return await self._send(session, method, url, auth, payload)
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            logger.error(
                "Payment gateway request failed",
                extra={"path": path, "error": str(e)},
                exc_info=True,
            )
            raise PaymentGatewayError(
                "Payment gateway unreachable",
                code="NETWORK_ERROR",
                reason="network_error",
                description=str(e) or type(e).__name__,
            ) from e
        except ValueError as e:
            logger.error(
                "Payment gateway returned an unreadable response",
                extra={"path": path, "error": repr(e)},
                exc_info=True,
            )
            raise PaymentGatewayError(
                "Payment gateway returned an unreadable response",
                code="BAD_RESPONSE",
                reason="bad_response",
                description=repr(e)[:500],
            ) from e

    async def _send(
        self,
        session: aiohttp.ClientSession,
        method: str,
        url: str,
        auth: aiohttp.BasicAuth,
        payload: Optional[Mapping[str, Any]],
    ) -> Dict[str, Any]:
        async with session.request(
            method, url, json=payload, auth=auth
        ) as response:
            if response.status >= 400:
                try:
                    body = await response.json(content_type=None)
                except ValueError:
                    body = None
                raise error_from_response(response.status, body)
            body = await response.json(content_type=None)
            if not isinstance(body, dict):
                raise ValueError(f"Expected a JSON object, got {type(body).__name__}")
            return body

    async def create_order(
        self,
        amount: int,
        currency: str,
        receipt: str,
        notes: Mapping[str, str],
    ) -> PaymentGatewayOrder:
        body = await self._request(
            "POST",
            "orders",
            {
                "amount": amount,
                "currency": currency,
                "receipt": receipt[:40],
                "notes": dict(notes),
            },
        )
        logger.info(
            "Payment order created",
            extra={"gateway_order_id": body.get("id"), "amount": amount},
        )
        return PaymentGatewayOrder(
            gateway_order_id=body["id"],
            amount=int(body.get("amount", amount)),
            currency=body.get("currency", currency),
            receipt=body.get("receipt"),
        )

    async def refund(
        self,
        payment_id: str,
        amount: int,
        notes: Optional[Mapping[str, str]] = None,
    ) -> RefundOutcome:
        payload: Dict[str, Any] = {"amount": amount, "speed": "normal"}
        if notes:
            payload["notes"] = dict(notes)
        body = await self._request(
            "POST", f"payments/{payment_id}/refund", payload
        )
        if "id" not in body or "status" not in body:
            raise PaymentGatewayError(
                "Unexpected refund response",
                code="UNEXPECTED_RESPONSE",
                description=str(body)[:500],
            )
        logger.info(
            "Refund requested",
            extra={
                "payment_id": payment_id,
                "refund_id": body["id"],
                "status": body["status"],
                "amount": body.get("amount"),
            },
        )
        return RefundOutcome(
            refund_id=body["id"],
            status=body["status"],
            amount=int(body.get("amount", 0)),
            payment_id=body.get("payment_id", payment_id),
        )

    def verify_webhook_signature(self, body: bytes, signature: str) -> bool:
        return verify_hmac_signature(self._webhook_secret, body, signature)
