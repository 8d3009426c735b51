"""Memory implementation of ProductRepository."""

import logging
from typing import Dict, List, Optional, Sequence

from storefront.domain import Product
from storefront.repositories import ProductRepository

logger = logging.getLogger(__name__)


class MemoryProductRepository(ProductRepository):
    def __init__(self, products: Optional[Sequence[Product]] = None) -> None:
        self.products: Dict[str, Product] = {
            product.product_id: product for product in products or []
        }

    async def get_products(self, product_ids: Sequence[str]) -> List[Product]:
        return [
            self.products[product_id]
            for product_id in product_ids
            if product_id in self.products
        ]

    async def decrement_stock(
        self, product_id: str, quantity: int, expected_stock: int
    ) -> bool:
        product = self.products.get(product_id)
        if product is None or product.stock != expected_stock:
            return False
        if product.stock < quantity:
            return False
        self.products[product_id] = product.model_copy(
            update={"stock": product.stock - quantity}
        )
        return True

    async def restore_stock(self, product_id: str, quantity: int) -> None:
        product = self.products.get(product_id)
        if product is None:
            logger.warning(
                "Cannot restore stock for unknown product",
                extra={"product_id": product_id, "quantity": quantity},
            )
            return
        self.products[product_id] = product.model_copy(
            update={"stock": product.stock + quantity}
        )
