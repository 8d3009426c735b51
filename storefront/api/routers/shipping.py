"""
Shipping API routers.

Admin routes (mounted under /admin/shipping):
- POST /{order_id}/ship - Create the gateway shipment and assign an AWB
- POST /{order_id}/label - Generate the shipping label
- POST /{order_id}/pickup - Schedule the courier pickup
- POST /manifests - Manifest a batch of shipments

Public routes (mounted under /shipping):
- GET /estimate - Courier options for a delivery pincode
"""

import logging
from decimal import Decimal

from fastapi import APIRouter, Depends, Query

from storefront.api.dependencies import get_shipping_use_case
from storefront.api.errors import http_error, unexpected_error
from storefront.api.requests import ManifestRequest
from storefront.api.responses import (
    LabelResponse,
    ManifestResponse,
    OrderStatusResponse,
    ShippingEstimateResponse,
)
from storefront.api.security import require_admin, require_csrf
from storefront.errors import OrderEngineError
from storefront.use_cases.shipping import ShippingUseCase

logger = logging.getLogger(__name__)

router = APIRouter(dependencies=[Depends(require_admin), Depends(require_csrf)])
public_router = APIRouter()


@router.post("/{order_id}/ship", response_model=OrderStatusResponse)
async def ship_order(
    order_id: str,
    use_case: ShippingUseCase = Depends(get_shipping_use_case),
) -> OrderStatusResponse:
    logger.info("Shipment requested", extra={"order_id": order_id})
    try:
        return await use_case.ship(order_id)
    except OrderEngineError as e:
        raise http_error(e) from e
    except Exception as e:
        raise unexpected_error(e, "creating shipment") from e


@router.post("/{order_id}/label", response_model=LabelResponse)
async def generate_label(
    order_id: str,
    use_case: ShippingUseCase = Depends(get_shipping_use_case),
) -> LabelResponse:
    try:
        return await use_case.generate_label(order_id)
    except OrderEngineError as e:
        raise http_error(e) from e
    except Exception as e:
        raise unexpected_error(e, "generating label") from e


@router.post("/{order_id}/pickup", response_model=OrderStatusResponse)
async def schedule_pickup(
    order_id: str,
    use_case: ShippingUseCase = Depends(get_shipping_use_case),
) -> OrderStatusResponse:
    try:
        return await use_case.schedule_pickup(order_id)
    except OrderEngineError as e:
        raise http_error(e) from e
    except Exception as e:
        raise unexpected_error(e, "scheduling pickup") from e


@router.post("/manifests", response_model=ManifestResponse)
async def generate_manifest(
    request: ManifestRequest,
    use_case: ShippingUseCase = Depends(get_shipping_use_case),
) -> ManifestResponse:
    try:
        return await use_case.generate_manifest(request.order_ids)
    except OrderEngineError as e:
        raise http_error(e) from e
    except Exception as e:
        raise unexpected_error(e, "generating manifest") from e


@public_router.get("/estimate", response_model=ShippingEstimateResponse)
async def estimate_shipping(
    pincode: str = Query(...),
    weight: Decimal = Query(...),
    use_case: ShippingUseCase = Depends(get_shipping_use_case),
) -> ShippingEstimateResponse:
    try:
        return await use_case.estimate(pincode, weight)
    except OrderEngineError as e:
        raise http_error(e) from e
    except Exception as e:
        raise unexpected_error(e, "estimating shipping") from e
