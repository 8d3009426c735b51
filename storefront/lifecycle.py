"""
Order lifecycle coordinator.

All legal status changes of an order are enumerated in ``TRANSITIONS``.
A transition names the status values the order must currently hold
(every listed field must match one of its allowed values) and the status
values it moves to. Nothing else in the code base writes status fields.

The same table is used two ways:

- ``attempt_transition`` checks and applies a transition to an in-memory
  ``Order`` and raises ``PreconditionViolation`` when it is illegal.
- ``OrderLifecycle.advance`` persists a transition as one conditional
  update through ``OrderRepository.update_if``. Two callers racing on the
  same order cannot both succeed: the loser matches zero rows and gets a
  ``PreconditionViolation`` describing the status it found.
"""

import logging
from datetime import datetime
from enum import Enum
from typing import Any, Dict, FrozenSet, Mapping, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field

from storefront.domain import (
    CancellationStatus,
    Order,
    OrderStatus,
    PaymentStatus,
    RefundStatus,
    ReturnStatus,
    ShipmentStatus,
    utcnow,
)
from storefront.errors import OrderNotFound, PreconditionViolation
from storefront.repositories import OrderRepository
from storefront.validation import ensure_order_repository

logger = logging.getLogger(__name__)


class OrderEvent(str, Enum):
    PAYMENT_CAPTURED = "PAYMENT_CAPTURED"
    PAYMENT_FAILED = "PAYMENT_FAILED"

    CANCELLATION_REQUESTED = "CANCELLATION_REQUESTED"

    SHIPMENT_CREATED = "SHIPMENT_CREATED"
    AWB_ASSIGNED = "AWB_ASSIGNED"
    PICKUP_SCHEDULED = "PICKUP_SCHEDULED"
    MANIFEST_GENERATED = "MANIFEST_GENERATED"
    SHIPMENT_CANCELLED = "SHIPMENT_CANCELLED"
    SHIPMENT_CANCEL_FAILED = "SHIPMENT_CANCEL_FAILED"
    SHIPMENT_PICKED_UP = "SHIPMENT_PICKED_UP"
    SHIPMENT_DELIVERED = "SHIPMENT_DELIVERED"

    REFUND_STARTED = "REFUND_STARTED"
    REFUND_ACCEPTED = "REFUND_ACCEPTED"
    REFUND_SUCCEEDED = "REFUND_SUCCEEDED"
    REFUND_FAILED = "REFUND_FAILED"
    REFUND_WEBHOOK_CREATED = "REFUND_WEBHOOK_CREATED"
    REFUND_WEBHOOK_PROCESSED = "REFUND_WEBHOOK_PROCESSED"
    RETURN_REFUND_WEBHOOK_PROCESSED = "RETURN_REFUND_WEBHOOK_PROCESSED"
    REFUND_WEBHOOK_FAILED = "REFUND_WEBHOOK_FAILED"

    RETURN_REQUESTED = "RETURN_REQUESTED"
    RETURN_PICKUP_SCHEDULED = "RETURN_PICKUP_SCHEDULED"
    RETURN_PICKUP_FAILED = "RETURN_PICKUP_FAILED"
    RETURN_PICKED_UP = "RETURN_PICKED_UP"
    RETURN_DELIVERED = "RETURN_DELIVERED"
    RETURN_CANCELLED = "RETURN_CANCELLED"
    RETURN_REFUND_STARTED = "RETURN_REFUND_STARTED"
    RETURN_REFUND_RETRY_STARTED = "RETURN_REFUND_RETRY_STARTED"
    RETURN_REFUND_SUCCEEDED = "RETURN_REFUND_SUCCEEDED"
    RETURN_CLOSED_WITHOUT_REFUND = "RETURN_CLOSED_WITHOUT_REFUND"

    CREDIT_NOTE_ISSUED = "CREDIT_NOTE_ISSUED"
    CREDIT_NOTE_SENT = "CREDIT_NOTE_SENT"


class Transition(BaseModel):
    """One legal (state, event) pair of the order lifecycle."""

    model_config = ConfigDict(frozen=True)

    event: OrderEvent
    requires: Dict[str, Tuple[Any, ...]]
    sets: Dict[str, Any] = Field(default_factory=dict)
    accepts: FrozenSet[str] = frozenset()
    timestamp: Optional[str] = None
    message: str

    def allows(self, order: Order) -> bool:
        return self.failing_field(order) is None

    def failing_field(self, order: Order) -> Optional[str]:
        for field, allowed in self.requires.items():
            if getattr(order, field) not in allowed:
                return field
        return None

    def updates(
        self, fields: Mapping[str, Any], now: Optional[datetime] = None
    ) -> Dict[str, Any]:
        unexpected = set(fields) - self.accepts
        if unexpected:
            raise ValueError(
                f"{self.event.value} does not accept fields: "
                f"{', '.join(sorted(unexpected))}"
            )
        updates: Dict[str, Any] = dict(self.sets)
        updates.update(fields)
        if self.timestamp:
            updates[self.timestamp] = now or utcnow()
        return updates


_P = PaymentStatus
_O = OrderStatus
_S = ShipmentStatus
_C = CancellationStatus
_R = RefundStatus
_RT = ReturnStatus

CANCELLABLE_SHIPMENT_STATUSES = (
    _S.AWB_PENDING,
    _S.AWB_ASSIGNED,
    _S.PICKUP_SCHEDULED,
    _S.SHIPPING_CANCELLATION_FAILED,
)
REFUNDABLE_SHIPMENT_STATUSES = (_S.NOT_SHIPPED, _S.SHIPPING_CANCELLED)
_CLEAR_REFUND_ERROR = {
    "refund_error_code": None,
    "refund_error_reason": None,
    "refund_error_description": None,
}
_REFUND_ERROR_FIELDS = frozenset(
    {"refund_error_code", "refund_error_reason", "refund_error_description"}
)


def _t(event: OrderEvent, **kwargs: Any) -> Tuple[OrderEvent, Transition]:
    kwargs.setdefault("accepts", frozenset())
    kwargs["accepts"] = frozenset(kwargs["accepts"])
    return event, Transition(event=event, **kwargs)


TRANSITIONS: Dict[OrderEvent, Transition] = dict(
    [
        # Payment confirmation
        _t(
            OrderEvent.PAYMENT_CAPTURED,
            requires={
                "payment_status": (_P.INITIATED,),
                "order_status": (_O.CHECKED_OUT,),
            },
            sets={"payment_status": _P.PAID, "order_status": _O.CONFIRMED},
            accepts={"gateway_payment_id"},
            timestamp="paid_at",
            message="Order payment must be in initiated status",
        ),
        _t(
            OrderEvent.PAYMENT_FAILED,
            requires={"payment_status": (_P.INITIATED,)},
            sets={"payment_status": _P.FAILED},
            accepts={"gateway_payment_id", "payment_error"},
            message="Order payment must be in initiated status",
        ),
        # Customer cancellation
        _t(
            OrderEvent.CANCELLATION_REQUESTED,
            requires={
                "payment_status": (_P.PAID,),
                "order_status": (_O.CONFIRMED,),
                "cancellation_status": (None,),
                "refund_status": (None,),
            },
            sets={
                "order_status": _O.CANCELLATION_REQUESTED,
                "cancellation_status": _C.CANCELLATION_REQUESTED,
            },
            accepts={"cancellation_reason"},
            timestamp="cancellation_requested_at",
            message="Order must be paid and in CONFIRMED status to be cancelled",
        ),
        # Forward shipment
        _t(
            OrderEvent.SHIPMENT_CREATED,
            requires={
                "payment_status": (_P.PAID,),
                "order_status": (_O.CONFIRMED,),
                "cancellation_status": (None,),
                "shipment_status": (_S.NOT_SHIPPED,),
            },
            sets={"shipment_status": _S.AWB_PENDING},
            accepts={"shipment_order_id", "shipment_id", "courier_name"},
            message="Order must be paid, CONFIRMED and NOT_SHIPPED to create a shipment",
        ),
        _t(
            OrderEvent.AWB_ASSIGNED,
            requires={
                "order_status": (_O.CONFIRMED,),
                "cancellation_status": (None,),
                "shipment_status": (_S.AWB_PENDING,),
            },
            sets={"shipment_status": _S.AWB_ASSIGNED},
            accepts={"awb_code", "courier_name"},
            message="Shipment must be in AWB_PENDING status to assign an AWB",
        ),
        _t(
            OrderEvent.PICKUP_SCHEDULED,
            requires={
                "order_status": (_O.CONFIRMED,),
                "cancellation_status": (None,),
                "shipment_status": (_S.AWB_ASSIGNED,),
            },
            sets={"shipment_status": _S.PICKUP_SCHEDULED},
            timestamp="pickup_scheduled_at",
            message="Shipment must be in AWB_ASSIGNED status to schedule a pickup",
        ),
        _t(
            OrderEvent.MANIFEST_GENERATED,
            requires={
                "cancellation_status": (None,),
                "shipment_status": (_S.AWB_ASSIGNED, _S.PICKUP_SCHEDULED),
                "manifest_batch_id": (None,),
            },
            accepts={"manifest_batch_id"},
            message="Shipment must have an AWB and no manifest to be manifested",
        ),
        _t(
            OrderEvent.SHIPMENT_CANCELLED,
            requires={
                "cancellation_status": (_C.CANCELLATION_REQUESTED,),
                "shipment_status": CANCELLABLE_SHIPMENT_STATUSES,
            },
            sets={"shipment_status": _S.SHIPPING_CANCELLED},
            message="Order is not in cancellation state",
        ),
        _t(
            OrderEvent.SHIPMENT_CANCEL_FAILED,
            requires={
                "cancellation_status": (_C.CANCELLATION_REQUESTED,),
                "shipment_status": CANCELLABLE_SHIPMENT_STATUSES,
            },
            sets={"shipment_status": _S.SHIPPING_CANCELLATION_FAILED},
            message="Order is not in cancellation state",
        ),
        _t(
            OrderEvent.SHIPMENT_PICKED_UP,
            requires={"order_status": (_O.CONFIRMED,)},
            sets={"order_status": _O.PICKED_UP},
            accepts={"carrier_status"},
            timestamp="picked_up_at",
            message="Order must be in CONFIRMED status to be picked up",
        ),
        _t(
            OrderEvent.SHIPMENT_DELIVERED,
            requires={"order_status": (_O.CONFIRMED, _O.PICKED_UP)},
            sets={"order_status": _O.DELIVERED},
            accepts={"carrier_status"},
            timestamp="delivered_at",
            message="Order must be in CONFIRMED or PICKED_UP status to be delivered",
        ),
        # Cancellation refund
        _t(
            OrderEvent.REFUND_STARTED,
            requires={
                "cancellation_status": (_C.CANCELLATION_REQUESTED,),
                "payment_status": (_P.PAID,),
                "refund_status": (None, _R.REFUND_FAILED),
                "shipment_status": REFUNDABLE_SHIPMENT_STATUSES,
            },
            sets={"refund_status": _R.REFUND_INITIATED, **_CLEAR_REFUND_ERROR},
            timestamp="refund_initiated_at",
            message=(
                "Unable to initiate refund. Order must be paid, have no refund "
                "in progress and a shipment in NOT_SHIPPED or "
                "SHIPPING_CANCELLED status"
            ),
        ),
        _t(
            OrderEvent.REFUND_ACCEPTED,
            requires={"refund_status": (_R.REFUND_INITIATED,)},
            accepts={"refund_id"},
            message="Refund must be in REFUND_INITIATED status",
        ),
        _t(
            OrderEvent.REFUND_SUCCEEDED,
            requires={
                "cancellation_status": (_C.CANCELLATION_REQUESTED,),
                "payment_status": (_P.PAID,),
                "refund_status": (_R.REFUND_INITIATED,),
            },
            sets={
                "refund_status": _R.REFUND_COMPLETED,
                "payment_status": _P.REFUNDED,
                "order_status": _O.CANCELLED,
                "cancellation_status": _C.CANCELLED,
            },
            accepts={"refund_id", "refund_amount"},
            timestamp="refund_completed_at",
            message="Refund must be in REFUND_INITIATED status",
        ),
        _t(
            OrderEvent.REFUND_FAILED,
            requires={"refund_status": (_R.REFUND_INITIATED,)},
            sets={"refund_status": _R.REFUND_FAILED},
            accepts={"refund_id"} | _REFUND_ERROR_FIELDS,
            message="Refund must be in REFUND_INITIATED status",
        ),
        # Refund webhook
        _t(
            OrderEvent.REFUND_WEBHOOK_CREATED,
            requires={
                "payment_status": (_P.PAID,),
                "refund_status": (None, _R.REFUND_INITIATED, _R.REFUND_FAILED),
            },
            sets={"refund_status": _R.REFUND_INITIATED},
            accepts={"refund_id"},
            message="Order must be paid with no completed refund",
        ),
        _t(
            OrderEvent.REFUND_WEBHOOK_PROCESSED,
            requires={
                "payment_status": (_P.PAID,),
                "refund_status": (None, _R.REFUND_INITIATED, _R.REFUND_FAILED),
                "return_status": (_RT.NOT_REQUESTED, _RT.RETURN_CANCELLED),
            },
            sets={
                "refund_status": _R.REFUND_COMPLETED,
                "payment_status": _P.REFUNDED,
                "order_status": _O.CANCELLED,
                "cancellation_status": _C.CANCELLED,
            },
            accepts={"refund_id", "refund_amount"},
            timestamp="refund_completed_at",
            message="Order must be paid with no completed refund",
        ),
        _t(
            OrderEvent.RETURN_REFUND_WEBHOOK_PROCESSED,
            requires={
                "payment_status": (_P.PAID,),
                "refund_status": (_R.REFUND_INITIATED, _R.REFUND_FAILED),
                "return_status": (_RT.RETURN_REFUND_INITIATED,),
            },
            sets={
                "refund_status": _R.REFUND_COMPLETED,
                "payment_status": _P.REFUNDED,
                "order_status": _O.RETURNED,
                "return_status": _RT.RETURN_REFUND_COMPLETED,
            },
            accepts={"refund_id", "refund_amount"},
            timestamp="refund_completed_at",
            message="Return refund must be in RETURN_REFUND_INITIATED status",
        ),
        _t(
            OrderEvent.REFUND_WEBHOOK_FAILED,
            requires={
                "payment_status": (_P.PAID,),
                "refund_status": (None, _R.REFUND_INITIATED),
            },
            sets={"refund_status": _R.REFUND_FAILED},
            accepts={"refund_id"} | _REFUND_ERROR_FIELDS,
            message="Order must be paid with a refund in progress",
        ),
        # Returns
        _t(
            OrderEvent.RETURN_REQUESTED,
            requires={
                "payment_status": (_P.PAID,),
                "order_status": (_O.PICKED_UP, _O.DELIVERED),
                "cancellation_status": (None,),
                "return_status": (_RT.NOT_REQUESTED,),
            },
            sets={"return_status": _RT.RETURN_REQUESTED},
            accepts={"return_reason"},
            timestamp="return_requested_at",
            message="Return already requested for this order",
        ),
        _t(
            OrderEvent.RETURN_PICKUP_SCHEDULED,
            requires={
                "return_status": (_RT.RETURN_REQUESTED, _RT.RETURN_FAILED),
            },
            sets={"return_status": _RT.RETURN_PICKUP_SCHEDULED},
            accepts={
                "return_order_id",
                "return_shipment_id",
                "return_pickup_awb",
                "return_shipping_cost",
                "return_refund_amount",
            },
            message="Return must be in RETURN_REQUESTED or RETURN_FAILED status",
        ),
        _t(
            OrderEvent.RETURN_PICKUP_FAILED,
            requires={"return_status": (_RT.RETURN_REQUESTED, _RT.RETURN_FAILED)},
            sets={"return_status": _RT.RETURN_FAILED},
            accepts={"return_shipping_cost", "return_refund_amount"},
            message="Return must be in RETURN_REQUESTED status",
        ),
        _t(
            OrderEvent.RETURN_PICKED_UP,
            requires={"return_status": (_RT.RETURN_PICKUP_SCHEDULED,)},
            sets={"return_status": _RT.RETURN_IN_TRANSIT},
            message="Return must be in RETURN_PICKUP_SCHEDULED status",
        ),
        _t(
            OrderEvent.RETURN_DELIVERED,
            requires={
                "return_status": (
                    _RT.RETURN_PICKUP_SCHEDULED,
                    _RT.RETURN_IN_TRANSIT,
                )
            },
            sets={"return_status": _RT.RETURN_DELIVERED},
            timestamp="return_delivered_at",
            message=(
                "Order is not eligible to be marked as received. It must be in "
                "RETURN_PICKUP_SCHEDULED or RETURN_IN_TRANSIT status."
            ),
        ),
        _t(
            OrderEvent.RETURN_CANCELLED,
            requires={
                "return_status": (
                    _RT.RETURN_REQUESTED,
                    _RT.RETURN_FAILED,
                    _RT.RETURN_PICKUP_SCHEDULED,
                )
            },
            sets={"return_status": _RT.RETURN_CANCELLED},
            message=(
                "Return must be in RETURN_REQUESTED, RETURN_FAILED or "
                "RETURN_PICKUP_SCHEDULED status to be cancelled"
            ),
        ),
        _t(
            OrderEvent.RETURN_REFUND_STARTED,
            requires={
                "payment_status": (_P.PAID,),
                "return_status": (_RT.RETURN_DELIVERED,),
            },
            sets={
                "return_status": _RT.RETURN_REFUND_INITIATED,
                "refund_status": _R.REFUND_INITIATED,
                **_CLEAR_REFUND_ERROR,
            },
            accepts={
                "return_product_condition",
                "return_admin_note",
                "return_deduction_amount",
                "return_deduction_reason",
                "return_inspection_photos",
            },
            timestamp="refund_initiated_at",
            message="Order not found or not in RETURN_DELIVERED status.",
        ),
        _t(
            OrderEvent.RETURN_REFUND_RETRY_STARTED,
            requires={
                "payment_status": (_P.PAID,),
                "return_status": (_RT.RETURN_REFUND_INITIATED,),
                "refund_status": (_R.REFUND_FAILED,),
            },
            sets={"refund_status": _R.REFUND_INITIATED, **_CLEAR_REFUND_ERROR},
            timestamp="refund_initiated_at",
            message=(
                "Return refund can only be retried from RETURN_REFUND_INITIATED "
                "with a REFUND_FAILED refund"
            ),
        ),
        _t(
            OrderEvent.RETURN_REFUND_SUCCEEDED,
            requires={
                "payment_status": (_P.PAID,),
                "return_status": (_RT.RETURN_REFUND_INITIATED,),
                "refund_status": (_R.REFUND_INITIATED,),
            },
            sets={
                "return_status": _RT.RETURN_REFUND_COMPLETED,
                "refund_status": _R.REFUND_COMPLETED,
                "payment_status": _P.REFUNDED,
                "order_status": _O.RETURNED,
            },
            accepts={"refund_id", "refund_amount", "credit_note_number"},
            timestamp="refund_completed_at",
            message="Return refund must be in RETURN_REFUND_INITIATED status",
        ),
        _t(
            OrderEvent.RETURN_CLOSED_WITHOUT_REFUND,
            requires={
                "payment_status": (_P.PAID,),
                "return_status": (_RT.RETURN_REFUND_INITIATED,),
                "refund_status": (_R.REFUND_INITIATED,),
            },
            sets={
                "return_status": _RT.RETURN_REFUND_COMPLETED,
                "refund_status": _R.REFUND_COMPLETED,
                "order_status": _O.RETURNED,
            },
            accepts={"refund_amount"},
            timestamp="refund_completed_at",
            message="Return refund must be in RETURN_REFUND_INITIATED status",
        ),
        # Credit notes
        _t(
            OrderEvent.CREDIT_NOTE_ISSUED,
            requires={
                "refund_status": (_R.REFUND_COMPLETED,),
                "credit_note_number": (None,),
            },
            accepts={"credit_note_number"},
            message="Credit note already issued for this order",
        ),
        _t(
            OrderEvent.CREDIT_NOTE_SENT,
            requires={
                "refund_status": (_R.REFUND_COMPLETED,),
                "credit_note_sent_at": (None,),
            },
            timestamp="credit_note_sent_at",
            message="Credit note already sent for this order",
        ),
    ]
)


def _violation(transition: Transition, order: Order) -> PreconditionViolation:
    field = transition.failing_field(order)
    return PreconditionViolation(
        transition.message,
        event=transition.event.value,
        field=field,
    )


def attempt_transition(
    order: Order,
    event: OrderEvent,
    now: Optional[datetime] = None,
    **fields: Any,
) -> Order:
    """Return ``order`` advanced by ``event`` or raise PreconditionViolation.

    Pure function: nothing is persisted.
    """
    transition = TRANSITIONS[event]
    if not transition.allows(order):
        raise _violation(transition, order)
    return order.model_copy(update=transition.updates(fields, now))


def requirement_values(transition: Transition) -> Dict[str, Tuple[Any, ...]]:
    """Preconditions with enum members flattened to their stored values."""
    return {
        field: tuple(
            value.value if isinstance(value, Enum) else value
            for value in allowed
        )
        for field, allowed in transition.requires.items()
    }


class OrderLifecycle:
    """
    Persists lifecycle transitions.

    Every call is a single conditional write keyed on the preconditions
    of the transition. The coordinator never reads-then-writes, so its
    outcome is decided by the store's atomic single-row update.
    """

    def __init__(self, order_repo: OrderRepository) -> None:
        self.order_repo = ensure_order_repository(order_repo)

    async def advance(
        self, order_id: str, event: OrderEvent, **fields: Any
    ) -> Order:
        transition = TRANSITIONS[event]
        updates = transition.updates(fields)

        updated = await self.order_repo.update_if(
            order_id, requirement_values(transition), updates
        )
        if updated is None:
            current = await self.order_repo.get_order(order_id)
            if current is None:
                raise OrderNotFound(order_id)
            violation = _violation(transition, current)
            logger.warning(
                "Order transition rejected",
                extra={
                    "order_id": order_id,
                    "event": event.value,
                    "failing_field": violation.field,
                    "current_value": (
                        str(getattr(current, violation.field))
                        if violation.field
                        else None
                    ),
                },
            )
            raise violation

        logger.info(
            "Order transitioned",
            extra={
                "order_id": order_id,
                "event": event.value,
                "order_status": updated.order_status.value,
                "payment_status": updated.payment_status.value,
            },
        )
        return updated

    async def try_advance(
        self, order_id: str, event: OrderEvent, **fields: Any
    ) -> Optional[Order]:
        """Like ``advance`` but returns None when the transition is illegal."""
        try:
            return await self.advance(order_id, event, **fields)
        except PreconditionViolation:
            return None
