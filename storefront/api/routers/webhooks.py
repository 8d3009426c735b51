"""
Webhook API router for the payment gateway and the shipping aggregator.

Routes:
- POST /webhooks/payment - Payment captured/failed events
- POST /webhooks/refund - Refund status events
- POST /webhooks/shipment - Carrier status events

Gateways retry anything that is not a 2xx, so every payload that reaches
a use case is answered with 200 and a message describing what was done.
"""

import json
import logging
from typing import Optional

from fastapi import APIRouter, Depends, Header, HTTPException, Request

from storefront.api.dependencies import (
    get_payment_webhook_use_case,
    get_refund_webhook_use_case,
    get_settings,
    get_shipment_webhook_use_case,
)
from storefront.api.responses import MessageResponse
from storefront.config import Settings
from storefront.signatures import secrets_match
from storefront.use_cases.webhooks import (
    PaymentWebhookUseCase,
    RefundWebhookUseCase,
    ShipmentWebhookUseCase,
)

logger = logging.getLogger(__name__)

router = APIRouter()


@router.post("/payment", response_model=MessageResponse)
async def payment_webhook(
    request: Request,
    x_razorpay_signature: Optional[str] = Header(default=None),
    use_case: PaymentWebhookUseCase = Depends(get_payment_webhook_use_case),
) -> MessageResponse:
    body = await request.body()
    return await use_case.handle(body, x_razorpay_signature)


@router.post("/refund", response_model=MessageResponse)
async def refund_webhook(
    request: Request,
    x_razorpay_signature: Optional[str] = Header(default=None),
    use_case: RefundWebhookUseCase = Depends(get_refund_webhook_use_case),
) -> MessageResponse:
    body = await request.body()
    return await use_case.handle(body, x_razorpay_signature)


@router.post("/shipment", response_model=MessageResponse)
async def shipment_webhook(
    request: Request,
    x_api_key: Optional[str] = Header(default=None),
    settings: Settings = Depends(get_settings),
    use_case: ShipmentWebhookUseCase = Depends(get_shipment_webhook_use_case),
) -> MessageResponse:
    if not secrets_match(settings.shiprocket_webhook_secret, x_api_key):
        logger.warning("Rejected shipment webhook with invalid API key")
        raise HTTPException(status_code=401, detail="Unauthorized")

    body = await request.body()
    try:
        payload = json.loads(body)
    except ValueError:
        logger.warning("Shipment webhook body is not JSON")
        return MessageResponse(message="Invalid payload")
    if not isinstance(payload, dict):
        return MessageResponse(message="Invalid payload")
    return await use_case.handle(payload)
