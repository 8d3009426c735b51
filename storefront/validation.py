"""
Runtime validation utilities for ensuring architectural contracts and data
integrity.

This module provides functions to validate:

- Repository and gateway implementations against their Protocols using
  @runtime_checkable.
- Inspection photos uploaded during return processing, by size and by
  magic bytes rather than by the declared content type.
- Return inspection inputs (condition, note, deduction) before any money
  moves.

The goal is to catch configuration and data errors early at critical
application boundaries.
"""

import logging
from decimal import Decimal
from typing import List, Optional, Sequence, Type, TypeVar

from pydantic import BaseModel

from storefront.domain import ProductCondition
from storefront.errors import RequestValidationError
from storefront.repositories import (
    CreditNoteSequence,
    FileStorageRepository,
    ManifestRepository,
    NotificationSender,
    OrderRepository,
    PaymentGateway,
    ProductRepository,
    ShipmentGateway,
)

logger = logging.getLogger(__name__)

P = TypeVar("P")

MAX_INSPECTION_PHOTOS = 3
MAX_PHOTO_BYTES = 5 * 1024 * 1024
MIN_PHOTO_BYTES = 4
MIN_ADMIN_NOTE_LENGTH = 10

_PHOTO_SIGNATURES = {
    b"\xff\xd8\xff": ("image/jpeg", "jpg"),
    b"\x89PNG": ("image/png", "png"),
}


class RepositoryValidationError(TypeError):
    """Raised when repository contract validation fails"""

    pass


def validate_repository_protocol(
    repository: object, protocol: Type[P]
) -> None:
    """
    Validate that a repository implementation satisfies a protocol contract.

    Uses Python's built-in isinstance() with @runtime_checkable.

    Raises:
        RepositoryValidationError: If validation fails

    Example:
        >>> from storefront.repos.memory.order import MemoryOrderRepository
        >>> validate_repository_protocol(
        ...     MemoryOrderRepository(), OrderRepository
        ... )
    """
    if not isinstance(repository, protocol):
        logger.error(
            "Repository protocol validation failed",
            extra={
                "repository_type": type(repository).__name__,
                "protocol_name": protocol.__name__,
            },
        )
        raise RepositoryValidationError(
            f"Repository {type(repository).__name__} does not implement "
            f"{protocol.__name__} protocol. Missing or incorrect methods."
        )

    logger.debug(
        "Repository protocol validation passed",
        extra={
            "repository_type": type(repository).__name__,
            "protocol_name": protocol.__name__,
        },
    )


def ensure_repository_protocol(repository: object, protocol: Type[P]) -> P:
    """
    Validate and return a repository with proper type annotation.

    This provides both runtime validation and static type checking benefits.
    """
    validate_repository_protocol(repository, protocol)
    return repository  # type: ignore[return-value]


def ensure_order_repository(repo: object) -> OrderRepository:
    return ensure_repository_protocol(repo, OrderRepository)


def ensure_product_repository(repo: object) -> ProductRepository:
    return ensure_repository_protocol(repo, ProductRepository)


def ensure_manifest_repository(repo: object) -> ManifestRepository:
    return ensure_repository_protocol(repo, ManifestRepository)


def ensure_credit_note_sequence(repo: object) -> CreditNoteSequence:
    return ensure_repository_protocol(repo, CreditNoteSequence)


def ensure_file_storage_repository(repo: object) -> FileStorageRepository:
    return ensure_repository_protocol(repo, FileStorageRepository)


def ensure_payment_gateway(gateway: object) -> PaymentGateway:
    return ensure_repository_protocol(gateway, PaymentGateway)


def ensure_shipment_gateway(gateway: object) -> ShipmentGateway:
    return ensure_repository_protocol(gateway, ShipmentGateway)


def ensure_notification_sender(sender: object) -> NotificationSender:
    return ensure_repository_protocol(sender, NotificationSender)


class InspectionPhoto(BaseModel):
    """An uploaded photo whose format was detected from its content."""

    filename: str
    data: bytes
    content_type: str
    extension: str

    @property
    def size(self) -> int:
        return len(self.data)


def detect_photo_format(data: bytes) -> Optional[tuple]:
    """Return (content_type, extension) for JPEG/PNG data, else None."""
    for signature, detected in _PHOTO_SIGNATURES.items():
        if data.startswith(signature):
            return detected
    return None


def validate_inspection_photos(
    uploads: Sequence[tuple], photos_required: bool
) -> List[InspectionPhoto]:
    """
    Validate uploaded inspection photos.

    Args:
        uploads: ``(filename, data)`` pairs in upload order
        photos_required: True when the inspection claims a deduction

    Returns:
        The photos with their content-detected type

    Raises:
        RequestValidationError: Listing every problem found
    """
    if len(uploads) > MAX_INSPECTION_PHOTOS:
        raise RequestValidationError(
            f"Maximum {MAX_INSPECTION_PHOTOS} photos allowed."
        )
    if photos_required and not uploads:
        raise RequestValidationError(
            "At least one inspection photo is required when product "
            "condition is not good."
        )

    photos: List[InspectionPhoto] = []
    errors = []
    for filename, data in uploads:
        if len(data) > MAX_PHOTO_BYTES:
            errors.append(
                {"filename": filename, "error": "File exceeds 5MB limit"}
            )
            continue
        if len(data) < MIN_PHOTO_BYTES:
            errors.append({"filename": filename, "error": "File is empty"})
            continue
        detected = detect_photo_format(data)
        if detected is None:
            errors.append(
                {
                    "filename": filename,
                    "error": "Only JPEG and PNG images are allowed",
                }
            )
            continue
        content_type, extension = detected
        photos.append(
            InspectionPhoto(
                filename=filename,
                data=data,
                content_type=content_type,
                extension=extension,
            )
        )

    if errors:
        logger.warning(
            "Inspection photo validation failed",
            extra={"errors": errors},
        )
        raise RequestValidationError("Invalid inspection photos", errors)
    return photos


def validate_inspection(
    condition: ProductCondition,
    admin_note: Optional[str],
    deduction_amount: Decimal,
) -> None:
    """Check the admin's inspection verdict before any refund is computed."""
    if deduction_amount < 0:
        raise RequestValidationError("Deduction amount cannot be negative.")
    if condition is ProductCondition.GOOD_CONDITION:
        return
    if not admin_note or len(admin_note.strip()) < MIN_ADMIN_NOTE_LENGTH:
        raise RequestValidationError(
            "Admin note is required (min 10 characters) when product "
            "condition is not good."
        )


def final_refund_amount(
    max_refundable: Decimal, deduction_amount: Decimal
) -> Decimal:
    """Refund due after inspection; the deduction must already be bounded."""
    if deduction_amount < 0:
        raise RequestValidationError("Deduction amount cannot be negative.")
    if deduction_amount > max_refundable:
        raise RequestValidationError(
            f"Deduction amount (₹{deduction_amount}) cannot exceed the "
            f"refund amount (₹{max_refundable})."
        )
    return max(Decimal("0"), max_refundable - deduction_amount)
