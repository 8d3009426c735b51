"""
PostgreSQL implementation of ProductRepository.

Stock decrements are optimistic: the update only applies while the row
still holds the stock value the checkout read.
"""

import logging
from typing import List, Sequence

from asyncpg import Pool

from storefront.domain import Product
from storefront.repositories import ProductRepository

logger = logging.getLogger(__name__)


class PostgreSQLProductRepository(ProductRepository):
    def __init__(self, pool: Pool):
        self.pool = pool
        logger.debug("Initialized PostgreSQLProductRepository")

    async def get_products(self, product_ids: Sequence[str]) -> List[Product]:
        async with self.pool.acquire() as conn:
            rows = await conn.fetch(
                "SELECT * FROM products WHERE product_id = ANY($1::text[])",
                list(product_ids),
            )
        return [Product.model_validate(dict(row)) for row in rows]

    async def decrement_stock(
        self, product_id: str, quantity: int, expected_stock: int
    ) -> bool:
        async with self.pool.acquire() as conn:
            result = await conn.execute(
                """
                UPDATE products SET stock = stock - $2
                WHERE product_id = $1 AND stock = $3 AND stock >= $2
                """,
                product_id,
                quantity,
                expected_stock,
            )
        decremented = result.endswith(" 1")
        if not decremented:
            logger.warning(
                "Stock decrement lost optimistic lock",
                extra={
                    "product_id": product_id,
                    "quantity": quantity,
                    "expected_stock": expected_stock,
                },
            )
        return decremented

    async def restore_stock(self, product_id: str, quantity: int) -> None:
        async with self.pool.acquire() as conn:
            await conn.execute(
                "UPDATE products SET stock = stock + $2 WHERE product_id = $1",
                product_id,
                quantity,
            )
        logger.info(
            "Restored product stock",
            extra={"product_id": product_id, "quantity": quantity},
        )
