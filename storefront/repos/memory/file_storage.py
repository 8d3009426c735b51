"""Memory implementation of FileStorageRepository."""

from datetime import timedelta
from typing import Dict

from storefront.repositories import FileStorageRepository


class MemoryFileStorageRepository(FileStorageRepository):
    def __init__(self, bucket_name: str = "memory") -> None:
        self.bucket_name = bucket_name
        self.objects: Dict[str, bytes] = {}
        self.content_types: Dict[str, str] = {}

    async def put_object(
        self, path: str, data: bytes, content_type: str
    ) -> str:
        self.objects[path] = data
        self.content_types[path] = content_type
        return path

    async def signed_url(self, path: str, expires: timedelta) -> str:
        if path not in self.objects:
            raise KeyError(path)
        return (
            f"memory://{self.bucket_name}/{path}"
            f"?expires={int(expires.total_seconds())}"
        )
