"""
Pydantic models for API responses.
These define the contract between the API and external clients.
"""

from datetime import datetime
from decimal import Decimal
from typing import List, Optional

from pydantic import BaseModel, Field

from storefront.domain import CourierOption, Order, TrackingEvent


class CheckoutResponse(BaseModel):
    """Response for a successful checkout"""

    order_id: str
    gateway_order_id: str
    amount: int = Field(..., description="Amount in paise")
    currency: str
    key_id: str
    status: str = "initiated"


class OrderStatusResponse(BaseModel):
    """Status projection of an order, free of contact details."""

    order_id: str
    payment_status: str
    order_status: str
    shipment_status: str
    carrier_status: Optional[str] = None
    cancellation_status: Optional[str] = None
    refund_status: Optional[str] = None
    return_status: str
    total_amount: Decimal
    currency: str
    courier_name: Optional[str] = None
    awb_code: Optional[str] = None
    refund_id: Optional[str] = None
    refund_amount: Optional[Decimal] = None
    return_refund_amount: Optional[Decimal] = None
    credit_note_number: Optional[str] = None
    created_at: datetime
    paid_at: Optional[datetime] = None
    picked_up_at: Optional[datetime] = None
    delivered_at: Optional[datetime] = None
    refund_completed_at: Optional[datetime] = None
    tracking: List[TrackingEvent] = Field(default_factory=list)
    tracking_error: Optional[str] = None

    @classmethod
    def from_order(cls, order: Order) -> "OrderStatusResponse":
        return cls(
            order_id=order.order_id,
            payment_status=order.payment_status.value,
            order_status=order.order_status.value,
            shipment_status=order.shipment_status.value,
            carrier_status=order.carrier_status,
            cancellation_status=(
                order.cancellation_status.value
                if order.cancellation_status
                else None
            ),
            refund_status=(
                order.refund_status.value if order.refund_status else None
            ),
            return_status=order.return_status.value,
            total_amount=order.total_amount,
            currency=order.currency,
            courier_name=order.courier_name,
            awb_code=order.awb_code,
            refund_id=order.refund_id,
            refund_amount=order.refund_amount,
            return_refund_amount=order.return_refund_amount,
            credit_note_number=order.credit_note_number,
            created_at=order.created_at,
            paid_at=order.paid_at,
            picked_up_at=order.picked_up_at,
            delivered_at=order.delivered_at,
            refund_completed_at=order.refund_completed_at,
        )


class FulfilmentOrderResponse(BaseModel):
    """Entry of the admin fulfilment queue: a paid order not yet picked up."""

    order_id: str
    shipment_status: str
    created_at: datetime
    total_amount: Decimal
    shipping_name: str
    courier_name: Optional[str] = None
    shipment_order_id: Optional[str] = None
    shipment_id: Optional[str] = None
    awb_code: Optional[str] = None
    label_url: Optional[str] = None
    manifest_url: Optional[str] = None
    pickup_scheduled_at: Optional[datetime] = None

    @classmethod
    def from_order(
        cls, order: Order, manifest_url: Optional[str] = None
    ) -> "FulfilmentOrderResponse":
        return cls(
            order_id=order.order_id,
            shipment_status=order.shipment_status.value,
            created_at=order.created_at,
            total_amount=order.total_amount,
            shipping_name=order.shipping_address.full_name,
            courier_name=order.courier_name,
            shipment_order_id=order.shipment_order_id,
            shipment_id=order.shipment_id,
            awb_code=order.awb_code,
            label_url=order.label_url,
            manifest_url=manifest_url,
            pickup_scheduled_at=order.pickup_scheduled_at,
        )


class MessageResponse(BaseModel):
    message: str


class OtpResponse(BaseModel):
    message: str
    expires_in_minutes: int


class CancellationResponse(BaseModel):
    """Outcome of a customer cancellation or return request."""

    message: str
    is_return: bool = False
    order: OrderStatusResponse
    refund_id: Optional[str] = None
    return_refund_amount: Optional[Decimal] = None


class ReturnRefundResponse(BaseModel):
    refund_amount: Decimal
    refund_id: Optional[str] = None
    deduction_amount: Decimal
    credit_note_number: Optional[str] = None
    inspection_photos: List[str] = Field(default_factory=list)


class LabelResponse(BaseModel):
    order_id: str
    label_url: str


class ManifestResponse(BaseModel):
    batch_id: str
    manifest_url: str
    order_ids: List[str]
    skipped_order_ids: List[str] = Field(default_factory=list)


class ShippingEstimateResponse(BaseModel):
    pickup_pincode: str
    delivery_pincode: str
    weight: Decimal
    couriers: List[CourierOption]


class HealthCheckResponse(BaseModel):
    status: str
    version: str
