"""Object storage for generated media."""

import asyncio
from abc import ABC, abstractmethod
from functools import partial

import structlog

from wacrm.core.config import settings
from wacrm.core.exceptions import ConfigurationError, UpstreamError

logger = structlog.get_logger()


class ObjectStore(ABC):
    """Stores blobs and hands back a URL the gateway can fetch them from."""

    @abstractmethod
    async def put(self, key: str, data: bytes, content_type: str) -> str:
        """Store ``data`` under ``key`` and return its public URL."""
        pass


class InMemoryObjectStore(ObjectStore):
    """Keeps blobs in a dict. For development and tests."""

    def __init__(self, base_url: str = "memory://objects") -> None:
        self.base_url = base_url.rstrip("/")
        self.objects: dict[str, tuple[bytes, str]] = {}

    async def put(self, key: str, data: bytes, content_type: str) -> str:
        self.objects[key] = (data, content_type)
        return f"{self.base_url}/{key}"


class S3ObjectStore(ObjectStore):
    """S3 (or S3-compatible) bucket with public-read objects."""

    def __init__(
        self,
        bucket: str | None = None,
        client=None,
        public_base_url: str | None = None,
    ) -> None:
        self.bucket = bucket or settings.s3_bucket
        if not self.bucket:
            raise ConfigurationError("S3 bucket not configured")

        if client is None:
            import boto3

            client = boto3.client(
                "s3",
                region_name=settings.s3_region,
                endpoint_url=settings.s3_endpoint_url,
                aws_access_key_id=settings.aws_access_key_id or None,
                aws_secret_access_key=settings.aws_secret_access_key or None,
            )
        self._client = client
        self.public_base_url = (
            public_base_url
            or settings.s3_public_base_url
            or f"https://{self.bucket}.s3.{settings.s3_region}.amazonaws.com"
        ).rstrip("/")

    async def put(self, key: str, data: bytes, content_type: str) -> str:
        # boto3 is blocking
        loop = asyncio.get_running_loop()
        try:
            await loop.run_in_executor(
                None,
                partial(
                    self._client.put_object,
                    Bucket=self.bucket,
                    Key=key,
                    Body=data,
                    ContentType=content_type,
                ),
            )
        except Exception as e:
            logger.error("Object upload failed", bucket=self.bucket, key=key, error=str(e))
            raise UpstreamError("Failed to store audio", provider="s3")

        logger.debug("Object stored", bucket=self.bucket, key=key, size=len(data))
        return f"{self.public_base_url}/{key}"


# Singleton instance
_object_store: ObjectStore | None = None


def get_object_store() -> ObjectStore:
    """Get or create the object store singleton.

    Falls back to the in-memory store when no bucket is configured.
    """
    global _object_store
    if _object_store is None:
        if settings.s3_bucket:
            _object_store = S3ObjectStore()
        else:
            logger.warning("S3 bucket not configured, using in-memory object store")
            _object_store = InMemoryObjectStore()
    return _object_store
