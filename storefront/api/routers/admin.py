"""
Admin order API router.

Routes:
- GET /admin/orders/new
- POST /admin/orders/{order_id}/retry-cancellation
- GET /admin/orders/cancellation-failed
- GET /admin/orders/returns
- POST /admin/orders/{order_id}/mark-return-received
- POST /admin/orders/{order_id}/process-return-refund
- POST /admin/orders/{order_id}/retry-return-refund
- POST /admin/orders/{order_id}/return/cancel
- POST /admin/orders/{order_id}/return/retry-pickup

Every route requires an admin token; state-changing routes also require
the CSRF check.
"""

import logging
from decimal import Decimal
from typing import List, Optional, Tuple, cast

from fastapi import APIRouter, Depends, File, Form, UploadFile
from fastapi_pagination import Page, paginate

from storefront.api.dependencies import (
    get_cancellation_use_case,
    get_returns_use_case,
    get_shipping_use_case,
)
from storefront.api.errors import http_error, unexpected_error
from storefront.api.responses import (
    FulfilmentOrderResponse,
    OrderStatusResponse,
    ReturnRefundResponse,
)
from storefront.api.security import require_admin, require_csrf
from storefront.domain import ProductCondition, ReturnStatus
from storefront.errors import OrderEngineError
from storefront.use_cases.cancellation import CancellationUseCase
from storefront.use_cases.returns import ReturnsUseCase
from storefront.use_cases.shipping import ShippingUseCase

logger = logging.getLogger(__name__)

router = APIRouter(dependencies=[Depends(require_admin)])


@router.get("/new", response_model=Page[FulfilmentOrderResponse])
async def list_new_orders(
    use_case: ShippingUseCase = Depends(get_shipping_use_case),
) -> Page[FulfilmentOrderResponse]:
    try:
        orders = await use_case.new_orders()
    except Exception as e:
        raise unexpected_error(e, "listing new orders") from e
    logger.info(f"Retrieved {len(orders)} orders awaiting fulfilment")
    return cast(Page[FulfilmentOrderResponse], paginate(orders))


@router.post(
    "/{order_id}/retry-cancellation",
    response_model=OrderStatusResponse,
    dependencies=[Depends(require_csrf)],
)
async def retry_cancellation(
    order_id: str,
    use_case: CancellationUseCase = Depends(get_cancellation_use_case),
) -> OrderStatusResponse:
    logger.info("Admin cancellation retry", extra={"order_id": order_id})
    try:
        return await use_case.retry(order_id)
    except OrderEngineError as e:
        raise http_error(e) from e
    except Exception as e:
        raise unexpected_error(e, "retrying cancellation") from e


@router.get("/cancellation-failed", response_model=Page[OrderStatusResponse])
async def list_cancellation_failed(
    use_case: ShippingUseCase = Depends(get_shipping_use_case),
) -> Page[OrderStatusResponse]:
    try:
        orders = await use_case.cancellation_failed_orders()
    except Exception as e:
        raise unexpected_error(e, "listing failed cancellations") from e
    logger.info(f"Retrieved {len(orders)} failed cancellations")
    return cast(Page[OrderStatusResponse], paginate(orders))


@router.get("/returns", response_model=Page[OrderStatusResponse])
async def list_returns(
    status: Optional[ReturnStatus] = None,
    use_case: ShippingUseCase = Depends(get_shipping_use_case),
) -> Page[OrderStatusResponse]:
    try:
        orders = await use_case.return_orders(status)
    except Exception as e:
        raise unexpected_error(e, "listing returns") from e
    return cast(Page[OrderStatusResponse], paginate(orders))


@router.post(
    "/{order_id}/mark-return-received",
    response_model=OrderStatusResponse,
    dependencies=[Depends(require_csrf)],
)
async def mark_return_received(
    order_id: str,
    use_case: ReturnsUseCase = Depends(get_returns_use_case),
) -> OrderStatusResponse:
    try:
        return await use_case.mark_received(order_id)
    except OrderEngineError as e:
        raise http_error(e) from e
    except Exception as e:
        raise unexpected_error(e, "marking return received") from e


@router.post(
    "/{order_id}/process-return-refund",
    response_model=ReturnRefundResponse,
    dependencies=[Depends(require_csrf)],
)
async def process_return_refund(
    order_id: str,
    product_condition: ProductCondition = Form(...),
    admin_note: Optional[str] = Form(default=None),
    deduction_amount: Decimal = Form(default=Decimal("0")),
    deduction_reason: Optional[str] = Form(default=None),
    photos: List[UploadFile] = File(default=[]),
    use_case: ReturnsUseCase = Depends(get_returns_use_case),
) -> ReturnRefundResponse:
    logger.info(
        "Return refund requested",
        extra={
            "order_id": order_id,
            "product_condition": product_condition.value,
            "photo_count": len(photos),
        },
    )
    try:
        uploads: List[Tuple[str, bytes]] = []
        for photo in photos:
            uploads.append((photo.filename or "photo", await photo.read()))
        return await use_case.process_return_refund(
            order_id,
            condition=product_condition,
            admin_note=admin_note,
            deduction_amount=deduction_amount,
            deduction_reason=deduction_reason,
            uploads=uploads,
        )
    except OrderEngineError as e:
        raise http_error(e) from e
    except Exception as e:
        raise unexpected_error(e, "processing return refund") from e


@router.post(
    "/{order_id}/retry-return-refund",
    response_model=ReturnRefundResponse,
    dependencies=[Depends(require_csrf)],
)
async def retry_return_refund(
    order_id: str,
    use_case: ReturnsUseCase = Depends(get_returns_use_case),
) -> ReturnRefundResponse:
    try:
        return await use_case.retry_return_refund(order_id)
    except OrderEngineError as e:
        raise http_error(e) from e
    except Exception as e:
        raise unexpected_error(e, "retrying return refund") from e


@router.post(
    "/{order_id}/return/cancel",
    response_model=OrderStatusResponse,
    dependencies=[Depends(require_csrf)],
)
async def cancel_return(
    order_id: str,
    use_case: ReturnsUseCase = Depends(get_returns_use_case),
) -> OrderStatusResponse:
    try:
        return await use_case.cancel_return(order_id)
    except OrderEngineError as e:
        raise http_error(e) from e
    except Exception as e:
        raise unexpected_error(e, "cancelling return") from e


@router.post(
    "/{order_id}/return/retry-pickup",
    response_model=OrderStatusResponse,
    dependencies=[Depends(require_csrf)],
)
async def retry_return_pickup(
    order_id: str,
    use_case: ReturnsUseCase = Depends(get_returns_use_case),
) -> OrderStatusResponse:
    try:
        return await use_case.retry_return_pickup(order_id)
    except OrderEngineError as e:
        raise http_error(e) from e
    except Exception as e:
        raise unexpected_error(e, "retrying return pickup") from e
