"""
PostgreSQL implementation of OrderRepository.

Each order is one row in ``orders``. Status changes are single
``UPDATE ... WHERE order_id = $1 AND <preconditions> RETURNING *``
statements, so a precondition that no longer holds simply matches zero
rows.
"""

import json
import logging
import uuid
from enum import Enum
from typing import Any, Dict, List, Mapping, Optional, Sequence, Tuple

from asyncpg import Pool, Record

from storefront.domain import Order
from storefront.repositories import OrderRepository

logger = logging.getLogger(__name__)

ORDER_COLUMNS = tuple(Order.model_fields)
JSON_COLUMNS = frozenset({"items", "shipping_address", "billing_address"})


def _to_db(field: str, value: Any) -> Any:
    if isinstance(value, Enum):
        return value.value
    if field in JSON_COLUMNS:
        if field == "items":
            return json.dumps(
                [
                    item if isinstance(item, dict) else item.model_dump(mode="json")
                    for item in value
                ],
                default=str,
            )
        if not isinstance(value, dict):
            value = value.model_dump(mode="json")
        return json.dumps(value, default=str)
    return value


def _placeholder(field: str, position: int) -> str:
    if field in JSON_COLUMNS:
        return f"${position}::jsonb"
    return f"${position}"


def _check_column(field: str) -> None:
    if field not in ORDER_COLUMNS:
        raise ValueError(f"Unknown order column: {field}")


def _row_to_order(row: Record) -> Order:
    data: Dict[str, Any] = dict(row)
    for field in JSON_COLUMNS:
        if isinstance(data.get(field), str):
            data[field] = json.loads(data[field])
    data["return_inspection_photos"] = list(
        data.get("return_inspection_photos") or []
    )
    return Order.model_validate(data)


def build_conditions(
    requires: Mapping[str, Sequence[Any]], args: List[Any]
) -> List[str]:
    """Render preconditions as SQL, appending bind values to ``args``."""
    conditions = []
    for field, allowed in requires.items():
        _check_column(field)
        values = [_to_db(field, value) for value in allowed if value is not None]
        parts = []
        if values:
            args.append(values)
            parts.append(f"{field} = ANY(${len(args)})")
        if any(value is None for value in allowed):
            parts.append(f"{field} IS NULL")
        if not parts:
            parts.append("FALSE")
        conditions.append("(" + " OR ".join(parts) + ")")
    return conditions


def build_conditional_update(
    order_id: str,
    requires: Mapping[str, Sequence[Any]],
    updates: Mapping[str, Any],
) -> Tuple[str, List[Any]]:
    args: List[Any] = [order_id]
    assignments = []
    for field, value in updates.items():
        _check_column(field)
        args.append(_to_db(field, value))
        assignments.append(f"{field} = {_placeholder(field, len(args))}")
    if "updated_at" not in updates:
        assignments.append("updated_at = now()")

    conditions = ["order_id = $1"] + build_conditions(requires, args)
    query = (
        f"UPDATE orders SET {', '.join(assignments)} "
        f"WHERE {' AND '.join(conditions)} RETURNING *"
    )
    return query, args


class PostgreSQLOrderRepository(OrderRepository):
    """
    PostgreSQL implementation of OrderRepository.
    Uses PostgreSQL for persistence of orders.
    """

    def __init__(self, pool: Pool):
        self.pool = pool
        logger.debug("Initialized PostgreSQLOrderRepository")

    async def generate_order_id(self) -> str:
        return str(uuid.uuid4())

    async def create_order(self, order: Order) -> Order:
        data = order.model_dump()
        columns = list(ORDER_COLUMNS)
        values = [_to_db(column, data[column]) for column in columns]
        placeholders = [
            _placeholder(column, position)
            for position, column in enumerate(columns, start=1)
        ]
        query = (
            f"INSERT INTO orders ({', '.join(columns)}) "
            f"VALUES ({', '.join(placeholders)}) RETURNING *"
        )
        async with self.pool.acquire() as conn:
            row = await conn.fetchrow(query, *values)

        logger.info(
            "Saved order to PostgreSQL",
            extra={"order_id": order.order_id, "items": len(order.items)},
        )
        return _row_to_order(row)

    async def get_order(self, order_id: str) -> Optional[Order]:
        async with self.pool.acquire() as conn:
            row = await conn.fetchrow(
                "SELECT * FROM orders WHERE order_id = $1", order_id
            )
        return _row_to_order(row) if row else None

    async def delete_unpaid_order(self, order_id: str) -> bool:
        async with self.pool.acquire() as conn:
            result = await conn.execute(
                "DELETE FROM orders WHERE order_id = $1 "
                "AND payment_status = 'initiated'",
                order_id,
            )
        deleted = result.endswith(" 1")
        logger.info(
            "Deleted unpaid order",
            extra={"order_id": order_id, "deleted": deleted},
        )
        return deleted

    async def update_if(
        self,
        order_id: str,
        requires: Mapping[str, Sequence[Any]],
        updates: Mapping[str, Any],
    ) -> Optional[Order]:
        query, args = build_conditional_update(order_id, requires, updates)
        async with self.pool.acquire() as conn:
            row = await conn.fetchrow(query, *args)
        if row is None:
            logger.debug(
                "Conditional order update matched no rows",
                extra={"order_id": order_id, "requires": list(requires)},
            )
            return None
        return _row_to_order(row)

    async def update(
        self, order_id: str, updates: Mapping[str, Any]
    ) -> Optional[Order]:
        return await self.update_if(order_id, {}, updates)

    async def _find_one(self, column: str, value: str) -> Optional[Order]:
        _check_column(column)
        async with self.pool.acquire() as conn:
            row = await conn.fetchrow(
                f"SELECT * FROM orders WHERE {column} = $1 "
                "ORDER BY created_at DESC LIMIT 1",
                value,
            )
        return _row_to_order(row) if row else None

    async def find_by_gateway_order_id(
        self, gateway_order_id: str
    ) -> Optional[Order]:
        return await self._find_one("gateway_order_id", gateway_order_id)

    async def find_by_refund_id(self, refund_id: str) -> Optional[Order]:
        return await self._find_one("refund_id", refund_id)

    async def find_by_payment_id(self, payment_id: str) -> Optional[Order]:
        return await self._find_one("gateway_payment_id", payment_id)

    async def find_by_awb(self, awb_code: str) -> Optional[Order]:
        return await self._find_one("awb_code", awb_code)

    async def find_by_return_awb(self, awb_code: str) -> Optional[Order]:
        return await self._find_one("return_pickup_awb", awb_code)

    async def list_orders(
        self, filters: Mapping[str, Sequence[Any]]
    ) -> List[Order]:
        args: List[Any] = []
        conditions = build_conditions(filters, args) or ["TRUE"]
        query = (
            f"SELECT * FROM orders WHERE {' AND '.join(conditions)} "
            "ORDER BY created_at DESC"
        )
        async with self.pool.acquire() as conn:
            rows = await conn.fetch(query, *args)
        return [_row_to_order(row) for row in rows]
