"""PostgreSQL repository implementations backed by an asyncpg pool."""

from pathlib import Path

from .credit_note import PostgreSQLCreditNoteSequence
from .manifest import PostgreSQLManifestRepository
from .order import PostgreSQLOrderRepository
from .product import PostgreSQLProductRepository

SCHEMA_PATH = Path(__file__).parent / "schema.sql"

__all__ = [
    "SCHEMA_PATH",
    "PostgreSQLCreditNoteSequence",
    "PostgreSQLManifestRepository",
    "PostgreSQLOrderRepository",
    "PostgreSQLProductRepository",
]
