"""
Exceptions raised by the order engine.

Each exception carries the HTTP status the API layer reports for it, so
routers translate them without re-deciding the category.
"""

from typing import Any, Dict, List, Optional


class OrderEngineError(Exception):
    status_code = 500

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class PreconditionViolation(OrderEngineError):
    """The requested transition is illegal for the order's current status."""

    status_code = 400

    def __init__(
        self,
        message: str,
        event: Optional[str] = None,
        field: Optional[str] = None,
    ) -> None:
        super().__init__(message)
        self.event = event
        self.field = field


class OrderNotFound(OrderEngineError):
    status_code = 404

    def __init__(self, order_id: str, message: str = "Order not found") -> None:
        super().__init__(message)
        self.order_id = order_id


class RequestValidationError(OrderEngineError):
    status_code = 400

    def __init__(
        self, message: str, errors: Optional[List[Dict[str, Any]]] = None
    ) -> None:
        super().__init__(message)
        self.errors = errors or []


class TooManyAttempts(OrderEngineError):
    status_code = 429


class StockConflict(OrderEngineError):
    """Stock changed between the availability check and the decrement."""

    status_code = 409


class GatewayError(OrderEngineError):
    """An external gateway call failed or answered with an unexpected shape.

    ``code``, ``reason`` and ``description`` hold the gateway's own error
    fields verbatim so they can be persisted on the order.
    """

    status_code = 500

    def __init__(
        self,
        message: str,
        code: Optional[str] = None,
        reason: Optional[str] = None,
        description: Optional[str] = None,
    ) -> None:
        super().__init__(message)
        self.code = code
        self.reason = reason
        self.description = description


class PaymentGatewayError(GatewayError):
    pass


class ShipmentGatewayError(GatewayError):
    status_code = 503


class ShipmentGatewayAuthError(ShipmentGatewayError):
    pass


class ShipmentCancellationFailed(ShipmentGatewayError):
    """The shipment gateway refused to cancel a shipment."""

    status_code = 400
