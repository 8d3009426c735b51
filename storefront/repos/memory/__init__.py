"""
Memory repository implementations for the storefront.

These implementations use Python dictionaries for storage and are ideal
for tests and local runs where PostgreSQL and Minio are not available.
They keep the same async interfaces and the same conditional-write
semantics as their production counterparts.
"""

from .credit_note import MemoryCreditNoteSequence
from .file_storage import MemoryFileStorageRepository
from .manifest import MemoryManifestRepository
from .order import MemoryOrderRepository
from .product import MemoryProductRepository

__all__ = [
    "MemoryCreditNoteSequence",
    "MemoryFileStorageRepository",
    "MemoryManifestRepository",
    "MemoryOrderRepository",
    "MemoryProductRepository",
]
