"""Object store implementations backing the asset cache."""

from __future__ import annotations

import asyncio
from typing import Any

import boto3
import structlog
from botocore.exceptions import BotoCoreError, ClientError

from Brochure_Insight.config.settings import ObjectStorageSettings

from .base import ObjectStore, StorageError

logger = structlog.get_logger(__name__)


class InMemoryObjectStore(ObjectStore):
    """Simple in-memory object store used for development and testing."""

    def __init__(self) -> None:
        self._data: dict[str, bytes] = {}
        self._metadata: dict[str, dict[str, str]] = {}
        self._lock = asyncio.Lock()

    async def put(self, key: str, data: bytes, *, metadata: dict[str, str] | None = None) -> None:
        async with self._lock:
            self._data[key] = data
            if metadata:
                self._metadata[key] = dict(metadata)
            elif key in self._metadata:
                del self._metadata[key]

    async def get(self, key: str) -> bytes:
        async with self._lock:
            try:
                return self._data[key]
            except KeyError as exc:
                raise StorageError(f"Object '{key}' not found") from exc

    async def exists(self, key: str) -> bool:
        async with self._lock:
            return key in self._data

    async def delete(self, key: str) -> None:
        async with self._lock:
            self._data.pop(key, None)
            self._metadata.pop(key, None)

    async def list_prefix(self, prefix: str) -> list[str]:
        async with self._lock:
            return sorted(key for key in self._data if key.startswith(prefix))

    async def get_metadata(self, key: str) -> dict[str, str]:
        async with self._lock:
            return dict(self._metadata.get(key, {}))


class S3ObjectStore(ObjectStore):
    """S3-compatible object store (AWS S3, Cloudflare R2, MinIO)."""

    def __init__(self, bucket: str, *, client: Any | None = None) -> None:
        self._bucket = bucket
        self._client = client or boto3.client("s3")

    @classmethod
    def from_settings(cls, settings: ObjectStorageSettings) -> S3ObjectStore:
        secret = settings.secret_access_key.get_secret_value() if settings.secret_access_key else None
        client = boto3.client(
            "s3",
            region_name=settings.region,
            endpoint_url=settings.endpoint_url,
            aws_access_key_id=settings.access_key_id,
            aws_secret_access_key=secret,
        )
        return cls(settings.bucket, client=client)

    async def put(self, key: str, data: bytes, *, metadata: dict[str, str] | None = None) -> None:
        meta = dict(metadata or {})
        content_type = meta.pop("content-type", "application/octet-stream")
        try:
            await asyncio.to_thread(
                self._client.put_object,
                Bucket=self._bucket,
                Key=key,
                Body=data,
                ContentType=content_type,
                Metadata=meta,
            )
        except (BotoCoreError, ClientError) as exc:
            raise StorageError(f"Failed to store '{key}': {exc}") from exc

    async def get(self, key: str) -> bytes:
        try:
            response = await asyncio.to_thread(self._client.get_object, Bucket=self._bucket, Key=key)
            return await asyncio.to_thread(response["Body"].read)
        except (BotoCoreError, ClientError) as exc:
            raise StorageError(f"Failed to read '{key}': {exc}") from exc

    async def exists(self, key: str) -> bool:
        try:
            await asyncio.to_thread(self._client.head_object, Bucket=self._bucket, Key=key)
        except ClientError as exc:
            code = str(exc.response.get("Error", {}).get("Code", ""))
            if code in {"404", "NoSuchKey", "NotFound"}:
                return False
            raise StorageError(f"Failed to check '{key}': {exc}") from exc
        except BotoCoreError as exc:
            raise StorageError(f"Failed to check '{key}': {exc}") from exc
        return True

    async def delete(self, key: str) -> None:
        try:
            await asyncio.to_thread(self._client.delete_object, Bucket=self._bucket, Key=key)
        except (BotoCoreError, ClientError) as exc:
            raise StorageError(f"Failed to delete '{key}': {exc}") from exc

    async def list_prefix(self, prefix: str) -> list[str]:
        def _list() -> list[str]:
            paginator = self._client.get_paginator("list_objects_v2")
            keys: list[str] = []
            for page in paginator.paginate(Bucket=self._bucket, Prefix=prefix):
                for item in page.get("Contents", []):
                    key = item.get("Key")
                    if key:
                        keys.append(str(key))
            return keys

        try:
            return sorted(await asyncio.to_thread(_list))
        except (BotoCoreError, ClientError) as exc:
            raise StorageError(f"Failed to list '{prefix}': {exc}") from exc

    @property
    def bucket(self) -> str:
        return self._bucket


def create_object_store(settings: ObjectStorageSettings) -> ObjectStore:
    """Build the configured object store backend."""
    if settings.backend == "s3":
        logger.info("storage.backend.s3", bucket=settings.bucket, endpoint=settings.endpoint_url)
        return S3ObjectStore.from_settings(settings)
    logger.info("storage.backend.memory")
    return InMemoryObjectStore()


__all__ = ["InMemoryObjectStore", "S3ObjectStore", "create_object_store"]
