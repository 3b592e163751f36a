"""Abstract storage interfaces.

This module defines the object storage contract that backs the
content-addressed asset cache.

Thread Safety:
    Thread-safe: Abstract interfaces with no shared state.

Example:
    >>> class MyObjectStore(ObjectStore):
    ...     async def put(self, key: str, data: bytes, *, metadata=None) -> None:
    ...         ...
"""

# ==============================================================================
# IMPORTS
# ==============================================================================

from __future__ import annotations

from abc import ABC, abstractmethod

# ==============================================================================
# INTERFACES
# ==============================================================================


class StorageError(RuntimeError):
    """Base exception for storage backends."""


class ObjectStore(ABC):
    """Interface for object storage backends."""

    @abstractmethod
    async def put(self, key: str, data: bytes, *, metadata: dict[str, str] | None = None) -> None:
        """Store data with the given key.

        Args:
            key: Unique identifier for the data.
            data: Binary data to store.
            metadata: Optional metadata for the object. ``content-type`` is
                honoured by backends that support it.

        Raises:
            StorageError: If the operation fails.
        """
        raise NotImplementedError

    @abstractmethod
    async def get(self, key: str) -> bytes:
        """Retrieve data by key.

        Raises:
            StorageError: If the key is missing or the operation fails.
        """
        raise NotImplementedError

    @abstractmethod
    async def exists(self, key: str) -> bool:
        """Return whether an object is stored under ``key``."""
        raise NotImplementedError

    @abstractmethod
    async def list_prefix(self, prefix: str) -> list[str]:
        """Return every key beginning with ``prefix``."""
        raise NotImplementedError

    @abstractmethod
    async def delete(self, key: str) -> None:
        raise NotImplementedError


__all__ = ["ObjectStore", "StorageError"]
