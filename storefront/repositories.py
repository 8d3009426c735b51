"""
Repository and gateway interfaces defined as Protocols.

All operations in this module follow these principles:

- **Conditional writes**: every status change goes through
  ``OrderRepository.update_if``, which applies its updates only when the
  stored row still matches the expected prior values. It is the only
  synchronization primitive the engine relies on; there are no locks.

- **Explicit outcomes**: gateway calls either return a typed outcome or
  raise a ``GatewayError`` subclass carrying the gateway's own error
  fields. Callers persist those fields as an explicit failure marker.

- **Domain Objects**: Methods accept and return domain objects or
  primitives, never framework-specific types.

Architectural Notes:

- These are pure interfaces with no implementation details
- Use case classes depend on these protocols, not concrete implementations
- Memory implementations back the tests; PostgreSQL, Minio, Razorpay,
  Shiprocket and SMTP implementations back the deployed service
"""

from datetime import timedelta
from decimal import Decimal
from typing import (
    Any,
    List,
    Mapping,
    Optional,
    Protocol,
    Sequence,
    runtime_checkable,
)

from storefront.domain import (
    AwbAssignment,
    CourierOption,
    EmailAttachment,
    ManifestBatch,
    ManifestOutcome,
    Order,
    PaymentGatewayOrder,
    PickupOutcome,
    Product,
    RefundOutcome,
    ShipmentCreation,
    TrackingInfo,
)


@runtime_checkable
class OrderRepository(Protocol):
    """Persistence of orders and their lifecycle status fields."""

    async def generate_order_id(self) -> str:
        """Generate a unique order identifier."""
        ...

    async def create_order(self, order: Order) -> Order:
        """Insert a new order row."""
        ...

    async def get_order(self, order_id: str) -> Optional[Order]:
        """Retrieve the current row for an order, or None."""
        ...

    async def delete_unpaid_order(self, order_id: str) -> bool:
        """Delete an order that never got past payment initiation.

        Only used to roll back a failed checkout. Orders whose payment
        status is anything other than ``initiated`` are never deleted.
        Returns True when a row was removed.
        """
        ...

    async def update_if(
        self,
        order_id: str,
        requires: Mapping[str, Sequence[Any]],
        updates: Mapping[str, Any],
    ) -> Optional[Order]:
        """Apply ``updates`` only if the stored order matches ``requires``.

        ``requires`` maps a field name to the values it may currently
        hold (``None`` allowed). The check and the write are one atomic
        operation. Returns the updated order, or None when no row
        matched (unknown id or a precondition no longer holds).
        """
        ...

    async def update(
        self, order_id: str, updates: Mapping[str, Any]
    ) -> Optional[Order]:
        """Unconditionally update non-status fields (OTP, labels)."""
        ...

    async def find_by_gateway_order_id(
        self, gateway_order_id: str
    ) -> Optional[Order]:
        ...

    async def find_by_refund_id(self, refund_id: str) -> Optional[Order]:
        ...

    async def find_by_payment_id(self, payment_id: str) -> Optional[Order]:
        ...

    async def find_by_awb(self, awb_code: str) -> Optional[Order]:
        """Find the order whose forward shipment carries ``awb_code``."""
        ...

    async def find_by_return_awb(self, awb_code: str) -> Optional[Order]:
        """Find the order whose return pickup carries ``awb_code``."""
        ...

    async def list_orders(
        self, filters: Mapping[str, Sequence[Any]]
    ) -> List[Order]:
        """List orders whose fields match ``filters``, newest first."""
        ...


@runtime_checkable
class ProductRepository(Protocol):
    """Product catalogue reads and the inventory guard's stock writes."""

    async def get_products(self, product_ids: Sequence[str]) -> List[Product]:
        """Return the products that exist among ``product_ids``."""
        ...

    async def decrement_stock(
        self, product_id: str, quantity: int, expected_stock: int
    ) -> bool:
        """Decrement stock only if it still equals ``expected_stock``.

        Returns False when another checkout changed the stock first.
        """
        ...

    async def restore_stock(self, product_id: str, quantity: int) -> None:
        """Atomically add ``quantity`` back to the product's stock."""
        ...


@runtime_checkable
class ManifestRepository(Protocol):
    async def create_batch(
        self, manifest_url: str, order_ids: Sequence[str]
    ) -> ManifestBatch:
        ...

    async def get_batches(self, batch_ids: Sequence[str]) -> List[ManifestBatch]:
        """Return the stored batches among ``batch_ids``; unknown ids are skipped."""
        ...


@runtime_checkable
class CreditNoteSequence(Protocol):
    async def next_value(self) -> int:
        """Return the next credit-note sequence number."""
        ...


@runtime_checkable
class FileStorageRepository(Protocol):
    """Private object storage for inspection photos and credit notes."""

    async def put_object(
        self, path: str, data: bytes, content_type: str
    ) -> str:
        """Store ``data`` at ``path`` and return the stored path."""
        ...

    async def signed_url(self, path: str, expires: timedelta) -> str:
        """Return a short-lived URL granting read access to ``path``."""
        ...


@runtime_checkable
class PaymentGateway(Protocol):
    """Payment processor contract.

    Amounts are always in subunits (paise).
    """

    @property
    def key_id(self) -> str:
        """Public key handed to the checkout page."""
        ...

    async def create_order(
        self,
        amount: int,
        currency: str,
        receipt: str,
        notes: Mapping[str, str],
    ) -> PaymentGatewayOrder:
        ...

    async def refund(
        self,
        payment_id: str,
        amount: int,
        notes: Optional[Mapping[str, str]] = None,
    ) -> RefundOutcome:
        """Issue a refund; raises PaymentGatewayError when rejected."""
        ...

    def verify_webhook_signature(self, body: bytes, signature: str) -> bool:
        ...


@runtime_checkable
class ShipmentGateway(Protocol):
    """Shipping aggregator contract."""

    async def create_shipment(self, order: Order) -> ShipmentCreation:
        ...

    async def assign_awb(self, shipment_id: str) -> AwbAssignment:
        ...

    async def cancel_shipment(self, shipment_order_id: str) -> bool:
        """Cancel a gateway order. False when the gateway refused."""
        ...

    async def generate_label(self, shipment_id: str) -> str:
        ...

    async def schedule_pickup(self, shipment_id: str) -> PickupOutcome:
        ...

    async def generate_manifest(
        self, shipment_ids: Sequence[str]
    ) -> ManifestOutcome:
        ...

    async def courier_rates(
        self,
        pickup_pincode: str,
        delivery_pincode: str,
        weight: Decimal,
        is_return: bool = False,
    ) -> List[CourierOption]:
        """Serviceable couriers sorted by rate ascending."""
        ...

    async def track(self, awb_code: str) -> TrackingInfo:
        ...

    async def create_return_shipment(self, order: Order) -> ShipmentCreation:
        ...


@runtime_checkable
class NotificationSender(Protocol):
    async def send(
        self,
        to: str,
        subject: str,
        html: str,
        attachments: Sequence[EmailAttachment] = (),
    ) -> None:
        """Deliver one email; raises on delivery failure."""
        ...
