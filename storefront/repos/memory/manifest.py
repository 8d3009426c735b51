"""Memory implementation of ManifestRepository."""

import uuid
from typing import Dict, List, Sequence

from storefront.domain import ManifestBatch
from storefront.repositories import ManifestRepository


class MemoryManifestRepository(ManifestRepository):
    def __init__(self) -> None:
        self.batches: Dict[str, ManifestBatch] = {}

    async def create_batch(
        self, manifest_url: str, order_ids: Sequence[str]
    ) -> ManifestBatch:
        batch = ManifestBatch(
            batch_id=str(uuid.uuid4()),
            manifest_url=manifest_url,
            order_ids=list(order_ids),
        )
        self.batches[batch.batch_id] = batch
        return batch

    async def get_batches(self, batch_ids: Sequence[str]) -> List[ManifestBatch]:
        return [self.batches[i] for i in dict.fromkeys(batch_ids) if i in self.batches]
