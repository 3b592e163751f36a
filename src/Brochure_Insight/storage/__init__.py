"""Storage abstractions and the content-addressed asset cache."""

from __future__ import annotations

from .asset_cache import AssetCache, AssetReference, compute_document_hash, short_hash
from .base import ObjectStore, StorageError
from .object_store import InMemoryObjectStore, S3ObjectStore, create_object_store
from .references import AssetReferenceResolver

__all__ = [
    "AssetCache",
    "AssetReference",
    "AssetReferenceResolver",
    "InMemoryObjectStore",
    "ObjectStore",
    "S3ObjectStore",
    "StorageError",
    "compute_document_hash",
    "create_object_store",
    "short_hash",
]
