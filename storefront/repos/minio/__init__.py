"""Minio-backed object storage."""

from .file_storage import MinioFileStorageRepository

__all__ = ["MinioFileStorageRepository"]
