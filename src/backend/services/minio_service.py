"""
MinIO Object Storage Service

Stores intervention document binaries. The MinIO client is blocking, so
calls are pushed to a worker thread.
"""

import asyncio
import logging
from datetime import datetime, timedelta
from io import BytesIO
from typing import Optional
from uuid import UUID

from minio import Minio
from minio.error import S3Error
from urllib3.exceptions import MaxRetryError

from core.config import settings

logger = logging.getLogger(__name__)


class MinIOStorageService:
    """Service for managing document binaries in MinIO object storage."""

    _client: Optional[Minio] = None
    _bucket_initialized: bool = False

    @classmethod
    def get_client(cls) -> Minio:
        """
        Get or create MinIO client instance (singleton pattern).

        Returns:
            Minio: Configured MinIO client
        """
        if cls._client is None:
            cls._client = Minio(
                endpoint=settings.minio.endpoint,
                access_key=settings.minio.access_key,
                secret_key=settings.minio.secret_key,
                secure=settings.minio.secure,
                region=settings.minio.region,
            )
            logger.info(f"MinIO client initialized: {settings.minio.endpoint}")

        return cls._client

    @classmethod
    def reset(cls) -> None:
        """Drop the cached client, e.g. after settings changed."""
        cls._client = None
        cls._bucket_initialized = False

    @classmethod
    async def ensure_bucket_exists(cls) -> None:
        """
        Ensure the configured bucket exists, create if it doesn't.
        Called on application startup and before the first upload.
        """
        if cls._bucket_initialized:
            return

        client = cls.get_client()
        bucket_name = settings.minio.bucket_name

        try:
            if not await asyncio.to_thread(client.bucket_exists, bucket_name):
                await asyncio.to_thread(
                    client.make_bucket, bucket_name, location=settings.minio.region
                )
                logger.info(f"Created MinIO bucket: {bucket_name}")
            else:
                logger.info(f"MinIO bucket already exists: {bucket_name}")

            cls._bucket_initialized = True

        except S3Error as e:
            logger.error(f"Failed to ensure bucket exists: {e}")
            raise

    @staticmethod
    def build_object_key(
        intervention_id: UUID, stored_filename: str, now: Optional[datetime] = None
    ) -> str:
        """
        Build the object key of an intervention document.

        Format: interventions/{intervention_id}/{year}/{month}/{stored_filename}

        Args:
            intervention_id: Owning intervention
            stored_filename: Sanitized, unique filename
            now: Reference time for the date prefix
        """
        now = now or datetime.utcnow()
        return f"interventions/{intervention_id}/{now:%Y}/{now:%m}/{stored_filename}"

    @classmethod
    async def upload_file(
        cls,
        object_key: str,
        content: bytes,
        content_type: str = "application/octet-stream",
        metadata: Optional[dict] = None,
    ) -> str:
        """
        Upload a binary, retrying up to MINIO_MAX_RETRIES attempts.

        Args:
            object_key: Object key (path in bucket)
            content: File content bytes
            content_type: MIME type
            metadata: Optional metadata dict

        Returns:
            str: Object key of uploaded file

        Raises:
            S3Error: If upload fails after retries
        """
        await cls.ensure_bucket_exists()

        client = cls.get_client()
        bucket_name = settings.minio.bucket_name
        attempts = max(1, settings.minio.max_retries)

        for attempt in range(attempts):
            try:
                await asyncio.to_thread(
                    client.put_object,
                    bucket_name=bucket_name,
                    object_name=object_key,
                    data=BytesIO(content),
                    length=len(content),
                    content_type=content_type,
                    metadata=metadata or {},
                )

                logger.info(
                    f"Uploaded file to MinIO: {bucket_name}/{object_key} "
                    f"({len(content)} bytes, attempt {attempt + 1})"
                )
                return object_key

            except (S3Error, MaxRetryError) as e:
                if attempt < attempts - 1:
                    wait_time = settings.minio.retry_backoff_factor**attempt
                    logger.warning(
                        f"Upload failed (attempt {attempt + 1}), "
                        f"retrying in {wait_time}s: {e}"
                    )
                    await asyncio.sleep(wait_time)
                else:
                    logger.error(f"Upload failed after {attempts} attempts: {e}")
                    raise

        raise RuntimeError("Upload failed unexpectedly")

    @classmethod
    async def delete_file(cls, object_key: str) -> bool:
        """
        Delete file from MinIO.

        Returns:
            bool: True if deleted, False if not found
        """
        client = cls.get_client()
        bucket_name = settings.minio.bucket_name

        try:
            await asyncio.to_thread(client.remove_object, bucket_name, object_key)
            logger.info(f"Deleted file from MinIO: {bucket_name}/{object_key}")
            return True

        except S3Error as e:
            if e.code == "NoSuchKey":
                logger.warning(f"File not found for deletion: {bucket_name}/{object_key}")
                return False

            logger.error(f"Failed to delete file: {e}")
            raise

    @classmethod
    async def generate_presigned_url(
        cls, object_key: str, expiry_seconds: Optional[int] = None
    ) -> str:
        """
        Generate presigned URL for file download.

        Args:
            object_key: Object key (path in bucket)
            expiry_seconds: URL expiry time (default: from config)
        """
        client = cls.get_client()
        bucket_name = settings.minio.bucket_name
        expiry = expiry_seconds or settings.minio.presigned_url_expiry_seconds

        try:
            url = await asyncio.to_thread(
                client.presigned_get_object,
                bucket_name,
                object_key,
                expires=timedelta(seconds=expiry),
            )
            logger.debug(
                f"Generated presigned URL for {bucket_name}/{object_key} "
                f"(expires in {expiry}s)"
            )
            return url

        except S3Error as e:
            logger.error(f"Failed to generate presigned URL: {e}")
            raise

    @classmethod
    async def health_check(cls) -> bool:
        """
        Perform MinIO health check.

        Returns:
            bool: True if healthy, False otherwise
        """
        try:
            client = cls.get_client()
            await asyncio.to_thread(client.bucket_exists, settings.minio.bucket_name)
            return True

        except Exception as e:
            logger.error(f"MinIO health check failed: {e}")
            return False
