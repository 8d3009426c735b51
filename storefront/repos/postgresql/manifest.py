"""PostgreSQL implementation of ManifestRepository."""

import logging
import uuid
from typing import List, Sequence

from asyncpg import Pool

from storefront.domain import ManifestBatch
from storefront.repositories import ManifestRepository

logger = logging.getLogger(__name__)


class PostgreSQLManifestRepository(ManifestRepository):
    def __init__(self, pool: Pool):
        self.pool = pool

    async def create_batch(
        self, manifest_url: str, order_ids: Sequence[str]
    ) -> ManifestBatch:
        batch = ManifestBatch(
            batch_id=str(uuid.uuid4()),
            manifest_url=manifest_url,
            order_ids=list(order_ids),
        )
        async with self.pool.acquire() as conn:
            await conn.execute(
                """
                INSERT INTO manifest_batches (
                    batch_id, manifest_url, order_ids, created_at
                ) VALUES ($1, $2, $3, $4)
                """,
                batch.batch_id,
                batch.manifest_url,
                batch.order_ids,
                batch.created_at,
            )
        logger.info(
            "Saved manifest batch",
            extra={"batch_id": batch.batch_id, "orders": len(order_ids)},
        )
        return batch

    async def get_batches(self, batch_ids: Sequence[str]) -> List[ManifestBatch]:
        if not batch_ids:
            return []
        async with self.pool.acquire() as conn:
            rows = await conn.fetch(
                """
                SELECT batch_id, manifest_url, order_ids, created_at
                FROM manifest_batches
                WHERE batch_id = ANY($1::text[])
                """,
                list(set(batch_ids)),
            )
        return [
            ManifestBatch(
                batch_id=row["batch_id"],
                manifest_url=row["manifest_url"],
                order_ids=list(row["order_ids"]),
                created_at=row["created_at"],
            )
            for row in rows
        ]
