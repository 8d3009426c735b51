"""
Guest checkout.

One synchronous chain with compensation: availability check, order row,
stock decrement, payment intent. When a later step fails, the earlier
ones are undone in reverse order before the error is raised.
"""

import logging
from decimal import Decimal
from typing import Dict, List, Tuple

from storefront.api.responses import CheckoutResponse
from storefront.domain import (
    CheckoutRequest,
    Order,
    OrderItem,
    Product,
    to_subunits,
)
from storefront.errors import (
    GatewayError,
    PaymentGatewayError,
    RequestValidationError,
    StockConflict,
)
from storefront.repositories import (
    OrderRepository,
    PaymentGateway,
    ProductRepository,
)
from storefront.validation import (
    ensure_order_repository,
    ensure_payment_gateway,
    ensure_product_repository,
)

logger = logging.getLogger(__name__)


def snapshot_items(
    request: CheckoutRequest, products: Dict[str, Product]
) -> List[OrderItem]:
    """Check availability and freeze product data onto order items."""
    items = []
    for cart_item in request.cart_items:
        product = products.get(cart_item.product_id)
        if product is None:
            raise RequestValidationError(
                f"Product not found: {cart_item.product_id}"
            )
        if product.stock < cart_item.quantity:
            raise RequestValidationError(
                f"Insufficient stock for {product.name}. "
                f"Available: {product.stock}"
            )
        items.append(
            OrderItem(
                product_id=product.product_id,
                product_name=product.name,
                quantity=cart_item.quantity,
                unit_price=product.price,
                sku=product.sku,
                hsn=product.hsn,
                weight=product.weight,
                length=product.length,
                breadth=product.breadth,
                height=product.height,
            )
        )
    return items


class CheckoutUseCase:
    def __init__(
        self,
        product_repo: ProductRepository,
        order_repo: OrderRepository,
        payment_gateway: PaymentGateway,
    ) -> None:
        self.product_repo = ensure_product_repository(product_repo)
        self.order_repo = ensure_order_repository(order_repo)
        self.payment_gateway = ensure_payment_gateway(payment_gateway)

    async def _restore(
        self, order_id: str, decremented: List[Tuple[str, int]]
    ) -> None:
        for product_id, quantity in reversed(decremented):
            try:
                await self.product_repo.restore_stock(product_id, quantity)
            except Exception as e:
                logger.error(
                    "Failed to restore stock",
                    extra={
                        "order_id": order_id,
                        "product_id": product_id,
                        "quantity": quantity,
                        "error": str(e),
                    },
                    exc_info=True,
                )

    async def _roll_back(
        self, order_id: str, decremented: List[Tuple[str, int]]
    ) -> None:
        await self._restore(order_id, decremented)
        deleted = await self.order_repo.delete_unpaid_order(order_id)
        logger.warning(
            "Checkout rolled back",
            extra={
                "order_id": order_id,
                "restored_items": len(decremented),
                "order_deleted": deleted,
            },
        )

    async def checkout(self, request: CheckoutRequest) -> CheckoutResponse:
        product_ids = [item.product_id for item in request.cart_items]
        products = {
            product.product_id: product
            for product in await self.product_repo.get_products(product_ids)
        }
        items = snapshot_items(request, products)

        subtotal = sum((item.line_total for item in items), Decimal("0"))
        courier = request.selected_courier
        shipping_cost = courier.rate if courier else Decimal("0")
        total = subtotal + shipping_cost

        order_id = await self.order_repo.generate_order_id()
        order = Order(
            order_id=order_id,
            items=items,
            shipping_address=request.shipping_address,
            billing_address=request.billing_address,
            guest_email=request.guest_email,
            guest_phone=request.guest_phone,
            subtotal=subtotal,
            shipping_cost=shipping_cost,
            total_amount=total,
            courier_id=courier.courier_id if courier else None,
            courier_name=courier.name if courier else None,
        )
        await self.order_repo.create_order(order)
        logger.info(
            "Order created",
            extra={
                "order_id": order_id,
                "item_count": len(items),
                "total_amount": str(total),
            },
        )

        decremented: List[Tuple[str, int]] = []
        for item in items:
            expected = products[item.product_id].stock
            try:
                ok = await self.product_repo.decrement_stock(
                    item.product_id, item.quantity, expected
                )
            except Exception:
                await self._roll_back(order_id, decremented)
                raise
            if not ok:
                logger.warning(
                    "Stock changed during checkout",
                    extra={
                        "order_id": order_id,
                        "product_id": item.product_id,
                        "expected_stock": expected,
                    },
                )
                await self._roll_back(order_id, decremented)
                raise StockConflict(
                    f"Stock changed for {item.product_name}, please retry"
                )
            decremented.append((item.product_id, item.quantity))

        amount = to_subunits(total)
        try:
            gateway_order = await self.payment_gateway.create_order(
                amount=amount,
                currency=order.currency,
                receipt=order_id,
                notes={"order_id": order_id, "guest_email": request.guest_email},
            )
        except Exception as e:
            logger.error(
                "Payment order creation failed",
                extra={"order_id": order_id, "error": str(e)},
                exc_info=True,
            )
            await self._roll_back(order_id, decremented)
            if isinstance(e, GatewayError):
                raise PaymentGatewayError(
                    "Unable to create payment order",
                    code=e.code,
                    reason=e.reason,
                    description=e.description,
                ) from e
            raise

        await self.order_repo.update(
            order_id, {"gateway_order_id": gateway_order.gateway_order_id}
        )
        logger.info(
            "Checkout completed",
            extra={
                "order_id": order_id,
                "gateway_order_id": gateway_order.gateway_order_id,
                "amount": amount,
            },
        )
        return CheckoutResponse(
            order_id=order_id,
            gateway_order_id=gateway_order.gateway_order_id,
            amount=amount,
            currency=order.currency,
            key_id=self.payment_gateway.key_id,
        )
