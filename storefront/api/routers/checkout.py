"""
Checkout API router.

Routes:
- POST /checkout - Create an order and its payment intent
"""

import logging

from fastapi import APIRouter, Depends

from storefront.api.dependencies import get_checkout_use_case
from storefront.api.errors import http_error, unexpected_error
from storefront.api.responses import CheckoutResponse
from storefront.domain import CheckoutRequest
from storefront.errors import OrderEngineError
from storefront.use_cases.checkout import CheckoutUseCase

logger = logging.getLogger(__name__)

router = APIRouter()


@router.post("", response_model=CheckoutResponse)
async def checkout(
    request: CheckoutRequest,
    use_case: CheckoutUseCase = Depends(get_checkout_use_case),
) -> CheckoutResponse:
    logger.info(
        "Checkout requested",
        extra={"item_count": len(request.cart_items)},
    )
    try:
        return await use_case.checkout(request)
    except OrderEngineError as e:
        raise http_error(e) from e
    except Exception as e:
        raise unexpected_error(e, "processing checkout") from e
