import io
import logging
from datetime import timedelta
from typing import Optional

from minio import Minio
from minio.error import S3Error

from storefront.repositories import FileStorageRepository

logger = logging.getLogger(__name__)


class MinioFileStorageRepository(FileStorageRepository):
    """
    Minio implementation of FileStorageRepository.

    One instance per bucket. Buckets are private; readers get presigned
    URLs that expire.
    """

    def __init__(
        self,
        endpoint: str,
        access_key: str,
        secret_key: str,
        bucket_name: str,
        secure: bool = False,
        client: Optional[Minio] = None,
    ):
        self._endpoint = endpoint
        self._access_key = access_key
        self._secret_key = secret_key
        self._secure = secure
        self._bucket_name = bucket_name
        self._client: Optional[Minio] = client
        self._bucket_checked = False
        logger.debug(
            "MinioFileStorageRepository initialized",
            extra={"endpoint": endpoint, "bucket_name": bucket_name},
        )

    async def _get_client(self) -> Minio:
        """Lazily initialize the Minio client and ensure the bucket exists."""
        if self._client is None:
            logger.debug(
                "Creating new Minio client instance",
                extra={"endpoint": self._endpoint, "secure": self._secure},
            )
            self._client = Minio(
                self._endpoint,
                access_key=self._access_key,
                secret_key=self._secret_key,
                secure=self._secure,
            )
        if not self._bucket_checked:
            try:
                if not self._client.bucket_exists(self._bucket_name):
                    logger.info(
                        "Minio bucket does not exist, creating now",
                        extra={"bucket_name": self._bucket_name},
                    )
                    self._client.make_bucket(self._bucket_name)
            except S3Error as e:
                logger.error(
                    f"Error checking or creating Minio bucket: {e}",
                    extra={
                        "bucket_name": self._bucket_name,
                        "error_code": e.code,
                    },
                )
                raise
            self._bucket_checked = True
        return self._client

    async def put_object(
        self, path: str, data: bytes, content_type: str
    ) -> str:
        client = await self._get_client()
        client.put_object(
            self._bucket_name,
            path,
            io.BytesIO(data),
            length=len(data),
            content_type=content_type,
        )
        logger.info(
            "Stored object in Minio",
            extra={
                "bucket_name": self._bucket_name,
                "path": path,
                "size_bytes": len(data),
            },
        )
        return path

    async def signed_url(self, path: str, expires: timedelta) -> str:
        client = await self._get_client()
        return client.presigned_get_object(
            self._bucket_name, path, expires=expires
        )
