"""
Customer order API router.

Routes:
- POST /orders/cancel/otp - Email a cancellation OTP
- POST /orders/cancel - Cancel (or return) an order with a verified OTP
- GET /orders/{order_id}/status - Status projection with tracking
"""

import logging
from typing import Optional

from fastapi import APIRouter, Depends, Query

from storefront.api.dependencies import (
    get_customer_cancellation_use_case,
    get_order_status_use_case,
)
from storefront.api.errors import http_error, unexpected_error
from storefront.api.requests import CancelOrderRequest, CancelOtpRequest
from storefront.api.responses import (
    CancellationResponse,
    OrderStatusResponse,
    OtpResponse,
)
from storefront.errors import OrderEngineError
from storefront.use_cases.customer import CustomerCancellationUseCase
from storefront.use_cases.order_status import OrderStatusUseCase

logger = logging.getLogger(__name__)

router = APIRouter()


@router.post("/cancel/otp", response_model=OtpResponse)
async def request_cancellation_otp(
    request: CancelOtpRequest,
    use_case: CustomerCancellationUseCase = Depends(
        get_customer_cancellation_use_case
    ),
) -> OtpResponse:
    try:
        return await use_case.send_otp(request.order_id, request.email)
    except OrderEngineError as e:
        raise http_error(e) from e
    except Exception as e:
        raise unexpected_error(e, "sending cancellation OTP") from e


@router.post("/cancel", response_model=CancellationResponse)
async def cancel_order(
    request: CancelOrderRequest,
    use_case: CustomerCancellationUseCase = Depends(
        get_customer_cancellation_use_case
    ),
) -> CancellationResponse:
    logger.info("Cancellation requested", extra={"order_id": request.order_id})
    try:
        return await use_case.cancel(
            request.order_id, request.email, request.otp, request.reason
        )
    except OrderEngineError as e:
        raise http_error(e) from e
    except Exception as e:
        raise unexpected_error(e, "cancelling order") from e


@router.get("/{order_id}/status", response_model=OrderStatusResponse)
async def get_order_status(
    order_id: str,
    email: Optional[str] = Query(default=None),
    use_case: OrderStatusUseCase = Depends(get_order_status_use_case),
) -> OrderStatusResponse:
    try:
        return await use_case.get_status(order_id, email)
    except OrderEngineError as e:
        raise http_error(e) from e
    except Exception as e:
        raise unexpected_error(e, "reading order status") from e
