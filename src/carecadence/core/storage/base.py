"""
Abstract base class for storage backends.

carecadence persists whole documents (regimens, per-date instances and
logs, reminder records, scope suppressions) under slash-separated keys
such as ``instances/mom/2026-03-02.json``. A backend only moves bytes;
encoding lives in :class:`~carecadence.core.storage.documents.JsonDocumentStore`.
"""

from abc import ABC, abstractmethod
from collections.abc import AsyncIterator

from ..exceptions import CareCadenceError


class StorageBackend(ABC):
    """Byte-level key/value store used by every repository."""

    @abstractmethod
    async def read(self, key: str) -> bytes:
        """Return the bytes stored at *key*. Raises StorageKeyError if absent."""

    @abstractmethod
    async def write(self, key: str, data: bytes) -> None:
        """Replace the bytes at *key*. Readers see the old or the new value, never a mix."""

    @abstractmethod
    async def exists(self, key: str) -> bool:
        """Check if a key exists in storage."""

    @abstractmethod
    async def delete(self, key: str) -> bool:
        """Delete a key. Returns True if deleted, False if it didn't exist."""

    @abstractmethod
    def list_keys(self, prefix: str = "") -> AsyncIterator[str]:
        """Yield keys starting with *prefix*, in sorted order."""


class StorageError(CareCadenceError):
    """Base exception for storage errors."""


class StorageKeyError(StorageError, KeyError):
    """Raised when a storage key doesn't exist."""


class StoragePermissionError(StorageError):
    """Raised when a key is unsafe or the filesystem refuses the operation."""
