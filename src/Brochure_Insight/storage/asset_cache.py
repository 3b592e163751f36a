"""Content-addressed cache for derived document assets.

Key Responsibilities:
    - Key derived assets (rendered page images, manifests) by the SHA-256 of
      the source document plus an asset name
    - Report existing references for a document hash so callers can skip
      expensive re-derivation
    - Write each key at most once, re-checking existence immediately before
      the write

Collaborators:
    - Upstream: The ingestion stage
    - Downstream: :class:`~Brochure_Insight.storage.base.ObjectStore`

Thread Safety:
    - Safe for concurrent coroutines on one event loop. Writers of the same
      key within a process are serialised by a per-key lock; across processes
      the existence re-check is best-effort and the last writer wins, which
      is harmless because identical keys always carry identical bytes.
"""

from __future__ import annotations

import asyncio
import hashlib
import weakref
from dataclasses import dataclass

import structlog
from tenacity import (
    AsyncRetrying,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)
from tenacity.wait import wait_base

from Brochure_Insight.observability.metrics import record_asset_cache

from .base import ObjectStore, StorageError

logger = structlog.get_logger(__name__)


def compute_document_hash(data: bytes) -> str:
    """Return the hex SHA-256 digest used as the cache namespace for ``data``."""
    return hashlib.sha256(data).hexdigest()


def short_hash(document_hash: str) -> str:
    return document_hash[:12]


@dataclass(frozen=True, slots=True)
class AssetReference:
    """Stored object reference for one ``(document_hash, name)`` cache entry."""

    document_hash: str
    name: str
    key: str


class AssetCache:
    """Hash-keyed, write-once asset cache over an object store."""

    def __init__(
        self,
        store: ObjectStore,
        *,
        key_prefix: str = "pdf-cache",
        write_attempts: int = 3,
        write_wait: wait_base | None = None,
    ) -> None:
        self._store = store
        self._prefix = key_prefix.strip("/") or "pdf-cache"
        self._write_attempts = write_attempts
        self._write_wait = write_wait or wait_exponential(multiplier=0.5, max=5)
        self._locks: weakref.WeakValueDictionary[str, asyncio.Lock] = weakref.WeakValueDictionary()

    @property
    def store(self) -> ObjectStore:
        return self._store

    def prefix_for(self, document_hash: str) -> str:
        return f"{self._prefix}/{document_hash}/images/"

    def key_for(self, document_hash: str, name: str) -> str:
        return f"{self.prefix_for(document_hash)}{name}"

    def reference(self, document_hash: str, name: str) -> AssetReference:
        return AssetReference(document_hash=document_hash, name=name, key=self.key_for(document_hash, name))

    async def check_cache(self, document_hash: str) -> dict[str, AssetReference] | None:
        """Return the cached references for ``document_hash`` or ``None`` on a miss."""
        prefix = self.prefix_for(document_hash)
        keys = await self._store.list_prefix(prefix)
        if not keys:
            record_asset_cache("miss")
            logger.info("asset_cache.miss", document=short_hash(document_hash))
            return None
        record_asset_cache("hit")
        references = {
            key[len(prefix):]: AssetReference(document_hash=document_hash, name=key[len(prefix):], key=key)
            for key in keys
        }
        logger.info("asset_cache.hit", document=short_hash(document_hash), assets=len(references))
        return references

    async def put_if_absent(
        self,
        document_hash: str,
        name: str,
        data: bytes,
        *,
        content_type: str = "image/png",
    ) -> AssetReference:
        """Store ``data`` under ``(document_hash, name)`` unless it already exists.

        Raises:
            StorageError: When the backend keeps failing after all attempts.
        """
        reference = self.reference(document_hash, name)
        lock = self._lock_for(reference.key)
        async with lock:
            if await self._store.exists(reference.key):
                record_asset_cache("skip")
                logger.debug("asset_cache.write.skipped", key=reference.key)
                return reference
            try:
                await self._write(reference.key, data, content_type=content_type, document_hash=document_hash)
            except StorageError:
                record_asset_cache("error")
                raise
        record_asset_cache("write")
        logger.debug("asset_cache.write", key=reference.key, size=len(data))
        return reference

    async def read(self, reference: AssetReference) -> bytes:
        return await self._store.get(reference.key)

    def _lock_for(self, key: str) -> asyncio.Lock:
        lock = self._locks.get(key)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[key] = lock
        return lock

    async def _write(self, key: str, data: bytes, *, content_type: str, document_hash: str) -> None:
        metadata = {"content-type": content_type, "document-hash": document_hash}
        async for attempt in AsyncRetrying(
            stop=stop_after_attempt(self._write_attempts),
            wait=self._write_wait,
            retry=retry_if_exception_type(StorageError),
            reraise=True,
        ):
            with attempt:
                if attempt.retry_state.attempt_number > 1:
                    logger.warning(
                        "asset_cache.write.retry",
                        key=key,
                        attempt=attempt.retry_state.attempt_number,
                    )
                await self._store.put(key, data, metadata=metadata)


__all__ = ["AssetCache", "AssetReference", "compute_document_hash", "short_hash"]
