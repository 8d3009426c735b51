"""
Memory implementation of OrderRepository.

Orders are kept in a dictionary keyed by order id. ``update_if`` checks
and writes without awaiting in between, so on a single event loop it is
as atomic as the PostgreSQL conditional update it stands in for.
"""

import logging
import uuid
from enum import Enum
from typing import Any, Dict, List, Mapping, Optional, Sequence

from storefront.domain import Order, PaymentStatus, utcnow
from storefront.repositories import OrderRepository

logger = logging.getLogger(__name__)


def _stored(value: Any) -> Any:
    return value.value if isinstance(value, Enum) else value


class MemoryOrderRepository(OrderRepository):
    def __init__(self, orders: Optional[Sequence[Order]] = None) -> None:
        self.orders: Dict[str, Order] = {}
        for order in orders or []:
            self.orders[order.order_id] = order
        logger.debug("Initializing MemoryOrderRepository")

    async def generate_order_id(self) -> str:
        return str(uuid.uuid4())

    async def create_order(self, order: Order) -> Order:
        if order.order_id in self.orders:
            raise ValueError(f"Order {order.order_id} already exists")
        self.orders[order.order_id] = order
        return order

    async def get_order(self, order_id: str) -> Optional[Order]:
        return self.orders.get(order_id)

    async def delete_unpaid_order(self, order_id: str) -> bool:
        order = self.orders.get(order_id)
        if order is None or order.payment_status != PaymentStatus.INITIATED:
            return False
        del self.orders[order_id]
        return True

    def _matches(
        self, order: Order, requires: Mapping[str, Sequence[Any]]
    ) -> bool:
        for field, allowed in requires.items():
            current = _stored(getattr(order, field))
            if current not in [_stored(value) for value in allowed]:
                return False
        return True

    def _apply(self, order: Order, updates: Mapping[str, Any]) -> Order:
        data = order.model_dump()
        data.update(updates)
        data["updated_at"] = utcnow()
        updated = Order.model_validate(data)
        self.orders[order.order_id] = updated
        return updated

    async def update_if(
        self,
        order_id: str,
        requires: Mapping[str, Sequence[Any]],
        updates: Mapping[str, Any],
    ) -> Optional[Order]:
        order = self.orders.get(order_id)
        if order is None or not self._matches(order, requires):
            return None
        return self._apply(order, updates)

    async def update(
        self, order_id: str, updates: Mapping[str, Any]
    ) -> Optional[Order]:
        order = self.orders.get(order_id)
        if order is None:
            return None
        return self._apply(order, updates)

    def _find(self, field: str, value: str) -> Optional[Order]:
        for order in self.orders.values():
            if getattr(order, field) == value:
                return order
        return None

    async def find_by_gateway_order_id(
        self, gateway_order_id: str
    ) -> Optional[Order]:
        return self._find("gateway_order_id", gateway_order_id)

    async def find_by_refund_id(self, refund_id: str) -> Optional[Order]:
        return self._find("refund_id", refund_id)

    async def find_by_payment_id(self, payment_id: str) -> Optional[Order]:
        return self._find("gateway_payment_id", payment_id)

    async def find_by_awb(self, awb_code: str) -> Optional[Order]:
        return self._find("awb_code", awb_code)

    async def find_by_return_awb(self, awb_code: str) -> Optional[Order]:
        return self._find("return_pickup_awb", awb_code)

    async def list_orders(
        self, filters: Mapping[str, Sequence[Any]]
    ) -> List[Order]:
        matching = [
            order
            for order in self.orders.values()
            if self._matches(order, filters)
        ]
        return sorted(matching, key=lambda o: o.created_at, reverse=True)
