"""
Domain models defined as Pydantic models.
These are pure data structures with validation.

Every lifecycle dimension of an order has its own closed status enum.
Transitions between them live in ``storefront.lifecycle``.
"""

import re
from datetime import datetime, timezone
from decimal import Decimal, ROUND_HALF_UP
from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, Field, field_validator

PHONE_PATTERN = re.compile(r"^[6-9]\d{9}$")
EMAIL_PATTERN = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")
PINCODE_PATTERN = re.compile(r"^[0-9]{6}$")
NAME_PATTERN = re.compile(r"^[a-zA-Z\s.'-]*$")


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def to_subunits(amount: Decimal) -> int:
    """Convert a rupee amount to paise, rounding half up."""
    return int((Decimal(amount) * 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def from_subunits(amount: int) -> Decimal:
    return (Decimal(amount) / 100).quantize(Decimal("0.01"))


class PaymentStatus(str, Enum):
    INITIATED = "initiated"
    PAID = "paid"
    FAILED = "failed"
    REFUNDED = "refunded"


class OrderStatus(str, Enum):
    CHECKED_OUT = "CHECKED_OUT"
    CONFIRMED = "CONFIRMED"
    CANCELLATION_REQUESTED = "CANCELLATION_REQUESTED"
    CANCELLED = "CANCELLED"
    PICKED_UP = "PICKED_UP"
    DELIVERED = "DELIVERED"
    RETURNED = "RETURNED"


class ShipmentStatus(str, Enum):
    NOT_SHIPPED = "NOT_SHIPPED"
    AWB_PENDING = "AWB_PENDING"
    AWB_ASSIGNED = "AWB_ASSIGNED"
    PICKUP_SCHEDULED = "PICKUP_SCHEDULED"
    SHIPPING_CANCELLATION_FAILED = "SHIPPING_CANCELLATION_FAILED"
    SHIPPING_CANCELLED = "SHIPPING_CANCELLED"


class CancellationStatus(str, Enum):
    CANCELLATION_REQUESTED = "CANCELLATION_REQUESTED"
    CANCELLED = "CANCELLED"


class RefundStatus(str, Enum):
    REFUND_INITIATED = "REFUND_INITIATED"
    REFUND_COMPLETED = "REFUND_COMPLETED"
    REFUND_FAILED = "REFUND_FAILED"


class ReturnStatus(str, Enum):
    NOT_REQUESTED = "NOT_REQUESTED"
    RETURN_REQUESTED = "RETURN_REQUESTED"
    RETURN_FAILED = "RETURN_FAILED"
    RETURN_PICKUP_SCHEDULED = "RETURN_PICKUP_SCHEDULED"
    RETURN_IN_TRANSIT = "RETURN_IN_TRANSIT"
    RETURN_DELIVERED = "RETURN_DELIVERED"
    RETURN_REFUND_INITIATED = "RETURN_REFUND_INITIATED"
    RETURN_REFUND_COMPLETED = "RETURN_REFUND_COMPLETED"
    RETURN_CANCELLED = "RETURN_CANCELLED"


class ProductCondition(str, Enum):
    GOOD_CONDITION = "good_condition"
    MINOR_DAMAGE = "minor_damage"
    MAJOR_DAMAGE = "major_damage"
    WRONG_ITEM = "wrong_item"
    MISSING_PARTS = "missing_parts"


class Product(BaseModel):
    product_id: str
    name: str
    price: Decimal
    stock: int
    sku: Optional[str] = None
    hsn: Optional[str] = None
    weight: Decimal = Field(default=Decimal("0.5"), description="Weight in kg")
    length: Decimal = Field(default=Decimal("10"), description="Length in cm")
    breadth: Decimal = Field(default=Decimal("10"), description="Breadth in cm")
    height: Decimal = Field(default=Decimal("10"), description="Height in cm")

    @field_validator("stock")
    @classmethod
    def stock_must_not_be_negative(cls, v: int) -> int:
        if v < 0:
            raise ValueError("Stock cannot be negative")
        return v


class Address(BaseModel):
    """Address snapshot captured at checkout; never edited afterwards."""

    first_name: str = Field(..., min_length=1, max_length=50)
    last_name: str = Field(default="", max_length=50)
    address_line1: str = Field(..., min_length=5, max_length=200)
    address_line2: str = Field(default="", max_length=200)
    city: str = Field(..., min_length=2, max_length=100)
    state: str = Field(..., min_length=2, max_length=100)
    pincode: str
    country: str = Field(default="India", max_length=50)

    @field_validator("first_name", "last_name")
    @classmethod
    def names_use_plain_characters(cls, v: str) -> str:
        v = v.strip()
        if not NAME_PATTERN.match(v):
            raise ValueError("Invalid characters in name")
        return v

    @field_validator("pincode")
    @classmethod
    def pincode_must_have_six_digits(cls, v: str) -> str:
        if not PINCODE_PATTERN.match(v):
            raise ValueError("Pincode must be 6 digits")
        return v

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}".strip()


class CartItem(BaseModel):
    product_id: str
    quantity: int

    @field_validator("quantity")
    @classmethod
    def quantity_in_range(cls, v: int) -> int:
        if v < 1:
            raise ValueError("Quantity must be at least 1")
        if v > 100:
            raise ValueError("Quantity too large")
        return v


class SelectedCourier(BaseModel):
    courier_id: int
    name: str = Field(..., min_length=1, max_length=100)
    rate: Decimal
    etd: Optional[str] = None

    @field_validator("rate")
    @classmethod
    def rate_must_be_positive(cls, v: Decimal) -> Decimal:
        if v <= 0:
            raise ValueError("Shipping rate must be positive")
        return v


class CheckoutRequest(BaseModel):
    """Request model for a guest checkout."""

    guest_email: str = Field(..., max_length=255)
    guest_phone: str
    cart_items: List[CartItem]
    shipping_address: Address
    billing_address: Address
    selected_courier: Optional[SelectedCourier] = None

    @field_validator("guest_email")
    @classmethod
    def email_must_look_valid(cls, v: str) -> str:
        v = v.strip()
        if not EMAIL_PATTERN.match(v):
            raise ValueError("Invalid email address")
        return v

    @field_validator("guest_phone")
    @classmethod
    def phone_must_be_indian_mobile(cls, v: str) -> str:
        if not PHONE_PATTERN.match(v):
            raise ValueError(
                "Phone number must be 10 digits starting with 6-9"
            )
        return v

    @field_validator("cart_items")
    @classmethod
    def cart_size_in_range(cls, v: List[CartItem]) -> List[CartItem]:
        if not v:
            raise ValueError("Cart must have at least one item")
        if len(v) > 10:
            raise ValueError("Maximum 10 items allowed in cart")
        product_ids = [item.product_id for item in v]
        if len(set(product_ids)) != len(product_ids):
            raise ValueError("Each product may appear only once in the cart")
        return v


class OrderItem(BaseModel):
    """Product snapshot taken when the order was placed."""

    product_id: str
    product_name: str
    quantity: int
    unit_price: Decimal
    sku: Optional[str] = None
    hsn: Optional[str] = None
    weight: Decimal = Decimal("0.5")
    length: Decimal = Decimal("10")
    breadth: Decimal = Decimal("10")
    height: Decimal = Decimal("10")

    @field_validator("quantity")
    @classmethod
    def quantity_must_be_positive(cls, v: int) -> int:
        if v <= 0:
            raise ValueError("Quantity must be positive")
        return v

    @property
    def line_total(self) -> Decimal:
        return self.unit_price * self.quantity


class Order(BaseModel):
    order_id: str
    items: List[OrderItem]
    shipping_address: Address
    billing_address: Address
    guest_email: Optional[str] = None
    guest_phone: Optional[str] = None
    user_id: Optional[str] = None

    subtotal: Decimal
    shipping_cost: Decimal = Decimal("0")
    total_amount: Decimal
    currency: str = "INR"
    courier_id: Optional[int] = None
    courier_name: Optional[str] = None

    payment_status: PaymentStatus = PaymentStatus.INITIATED
    order_status: OrderStatus = OrderStatus.CHECKED_OUT
    shipment_status: ShipmentStatus = ShipmentStatus.NOT_SHIPPED
    carrier_status: Optional[str] = Field(
        default=None, description="Last raw status label from the carrier"
    )
    cancellation_status: Optional[CancellationStatus] = None
    refund_status: Optional[RefundStatus] = None
    return_status: ReturnStatus = ReturnStatus.NOT_REQUESTED

    # Payment gateway correlation
    gateway_order_id: Optional[str] = None
    gateway_payment_id: Optional[str] = None
    payment_error: Optional[str] = None

    # Shipment gateway correlation
    shipment_order_id: Optional[str] = None
    shipment_id: Optional[str] = None
    awb_code: Optional[str] = None
    label_url: Optional[str] = None
    manifest_batch_id: Optional[str] = None

    cancellation_reason: Optional[str] = None

    refund_id: Optional[str] = None
    refund_amount: Optional[Decimal] = None
    refund_error_code: Optional[str] = None
    refund_error_reason: Optional[str] = None
    refund_error_description: Optional[str] = None

    return_reason: Optional[str] = None
    return_shipping_cost: Optional[Decimal] = None
    return_refund_amount: Optional[Decimal] = None
    return_order_id: Optional[str] = None
    return_shipment_id: Optional[str] = None
    return_pickup_awb: Optional[str] = None
    return_product_condition: Optional[ProductCondition] = None
    return_admin_note: Optional[str] = None
    return_deduction_amount: Optional[Decimal] = None
    return_deduction_reason: Optional[str] = None
    return_inspection_photos: List[str] = Field(default_factory=list)

    credit_note_number: Optional[str] = None
    credit_note_sent_at: Optional[datetime] = None

    otp_digest: Optional[str] = None
    otp_expires_at: Optional[datetime] = None
    otp_attempts: int = 0
    otp_locked_until: Optional[datetime] = None

    created_at: datetime = Field(default_factory=utcnow)
    updated_at: Optional[datetime] = None
    paid_at: Optional[datetime] = None
    cancellation_requested_at: Optional[datetime] = None
    pickup_scheduled_at: Optional[datetime] = None
    picked_up_at: Optional[datetime] = None
    delivered_at: Optional[datetime] = None
    refund_initiated_at: Optional[datetime] = None
    refund_completed_at: Optional[datetime] = None
    return_requested_at: Optional[datetime] = None
    return_delivered_at: Optional[datetime] = None

    @field_validator("total_amount")
    @classmethod
    def total_must_be_positive(cls, v: Decimal) -> Decimal:
        if v <= 0:
            raise ValueError("Total amount must be positive")
        return v

    @field_validator("items")
    @classmethod
    def items_must_not_be_empty(cls, v: List[OrderItem]) -> List[OrderItem]:
        if not v:
            raise ValueError("Order must contain at least one item")
        return v

    @property
    def total_weight(self) -> Decimal:
        return sum(
            (item.weight * item.quantity for item in self.items), Decimal("0")
        )

    def belongs_to(self, email: Optional[str]) -> bool:
        """True when ``email`` proves ownership of a guest order."""
        if not self.guest_email:
            return False
        if not email:
            return False
        return self.guest_email.strip().lower() == email.strip().lower()


class PaymentGatewayOrder(BaseModel):
    gateway_order_id: str
    amount: int = Field(..., description="Amount in subunits (paise)")
    currency: str
    receipt: Optional[str] = None


class RefundOutcome(BaseModel):
    refund_id: str
    status: str
    amount: int = Field(..., description="Amount in subunits (paise)")
    payment_id: Optional[str] = None


class ShipmentCreation(BaseModel):
    shipment_order_id: str
    shipment_id: str
    awb_code: Optional[str] = None
    courier_name: Optional[str] = None


class AwbAssignment(BaseModel):
    awb_code: str
    courier_name: Optional[str] = None


class PickupOutcome(BaseModel):
    scheduled: bool
    pickup_date: Optional[str] = None


class ManifestOutcome(BaseModel):
    manifest_url: str
    manifest_id: Optional[str] = None


class ManifestBatch(BaseModel):
    batch_id: str
    manifest_url: str
    order_ids: List[str]
    created_at: datetime = Field(default_factory=utcnow)


class CourierOption(BaseModel):
    courier_id: int
    name: str
    rate: Decimal
    etd: Optional[str] = None
    estimated_delivery_days: Optional[int] = None


class TrackingEvent(BaseModel):
    status: str
    location: Optional[str] = None
    occurred_at: Optional[str] = None


class TrackingInfo(BaseModel):
    awb_code: str
    current_status: Optional[str] = None
    events: List[TrackingEvent] = Field(default_factory=list)


class EmailAttachment(BaseModel):
    filename: str
    content: bytes
    content_type: str = "application/pdf"
