"""S3-compatible asset storage on top of aioboto3."""

from contextlib import AsyncExitStack
from typing import Any, List, Optional, Sequence

import aioboto3
from botocore.exceptions import (
    BotoCoreError,
    ClientError,
    EndpointConnectionError,
    NoCredentialsError,
)

from ..core.exceptions import StorageError, StorageUnavailableError
from ..core.logging_config import get_logger
from ..core.models import PipelineSettings

# delete_objects accepts at most this many keys per call
DELETE_CHUNK_SIZE = 1000


def _translate(exc: Exception, action: str) -> StorageError:
    if isinstance(exc, (EndpointConnectionError, NoCredentialsError)):
        return StorageUnavailableError(f"Storage unavailable during {action}: {exc}")
    return StorageError(f"Storage {action} failed: {exc}")


class S3AssetStorage:
    """
    Asset storage backed by a single S3 bucket.

    Use as an async context manager; one client (and its connection pool) is
    shared by every call made while the context is open.

    Example:
        async with S3AssetStorage.from_settings(settings) as storage:
            await storage.upload("owner/product/a.png", data, "image/png")
    """

    def __init__(
        self,
        bucket: str,
        endpoint_url: Optional[str] = None,
        region_name: Optional[str] = None,
        public_base_url: Optional[str] = None,
        session: Optional[aioboto3.Session] = None,
    ):
        self.bucket = bucket
        self.endpoint_url = endpoint_url
        self.region_name = region_name
        self.public_base_url = public_base_url.rstrip("/") if public_base_url else None
        self._session = session or aioboto3.Session()
        self._stack: Optional[AsyncExitStack] = None
        self._client: Any = None
        self._logger = get_logger("storage.s3")

    @classmethod
    def from_settings(cls, settings: PipelineSettings) -> "S3AssetStorage":
        return cls(
            bucket=settings.storage_bucket,
            endpoint_url=settings.storage_endpoint_url,
            region_name=settings.storage_region,
            public_base_url=settings.public_base_url,
        )

    async def __aenter__(self) -> "S3AssetStorage":
        self._stack = AsyncExitStack()
        self._client = await self._stack.enter_async_context(
            self._session.client(  # type: ignore[reportUnknownMemberType]
                "s3", endpoint_url=self.endpoint_url, region_name=self.region_name
            )
        )
        self._logger.debug(f"Opened S3 client for bucket {self.bucket}")
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        if self._stack is not None:
            await self._stack.aclose()
        self._stack = None
        self._client = None

    @property
    def client(self) -> Any:
        if self._client is None:
            raise StorageUnavailableError("S3 client is not open")
        return self._client

    async def upload(self, key: str, body: bytes, content_type: str) -> str:
        try:
            await self.client.put_object(
                Bucket=self.bucket, Key=key, Body=body, ContentType=content_type
            )
        except (ClientError, BotoCoreError) as e:
            raise _translate(e, f"upload of {key}") from e
        return key

    async def delete(self, keys: Sequence[str]) -> None:
        keys = list(keys)
        for start in range(0, len(keys), DELETE_CHUNK_SIZE):
            chunk = keys[start : start + DELETE_CHUNK_SIZE]
            try:
                response = await self.client.delete_objects(
                    Bucket=self.bucket,
                    Delete={"Objects": [{"Key": k} for k in chunk], "Quiet": True},
                )
            except (ClientError, BotoCoreError) as e:
                raise _translate(e, "delete") from e
            errors = response.get("Errors") or []
            if errors:
                failed = ", ".join(err.get("Key", "?") for err in errors)
                raise StorageError(f"Could not delete: {failed}")

    async def list_keys(self, prefix: str) -> List[str]:
        keys: List[str] = []
        try:
            paginator = self.client.get_paginator("list_objects_v2")
            async for page in paginator.paginate(Bucket=self.bucket, Prefix=prefix):
                keys.extend(obj["Key"] for obj in page.get("Contents", []))
        except (ClientError, BotoCoreError) as e:
            raise _translate(e, f"listing of {prefix}") from e
        return keys

    def public_url(self, key: str) -> str:
        if self.public_base_url:
            return f"{self.public_base_url}/{key}"
        if self.endpoint_url:
            return f"{self.endpoint_url.rstrip('/')}/{self.bucket}/{key}"
        region = self.region_name or "us-east-1"
        return f"https://{self.bucket}.s3.{region}.amazonaws.com/{key}"
