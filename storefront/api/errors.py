"""Translation of order engine errors into HTTP errors."""

import logging
from typing import Any

from fastapi import HTTPException

from storefront.errors import OrderEngineError, RequestValidationError

logger = logging.getLogger(__name__)


def http_error(error: OrderEngineError) -> HTTPException:
    detail: Any = error.message
    if isinstance(error, RequestValidationError) and error.errors:
        detail = {"message": error.message, "errors": error.errors}
    if error.status_code >= 500:
        logger.error(
            "Request failed",
            extra={
                "error": error.message,
                "error_type": type(error).__name__,
                "status_code": error.status_code,
            },
        )
    return HTTPException(status_code=error.status_code, detail=detail)


def unexpected_error(error: Exception, context: str) -> HTTPException:
    logger.error(
        f"Unexpected error while {context}",
        extra={"error": str(error), "error_type": type(error).__name__},
        exc_info=True,
    )
    return HTTPException(status_code=500, detail="Internal server error")
