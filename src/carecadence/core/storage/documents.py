"""JSON document helper on top of a ``StorageBackend``.

Every repository in carecadence persists whole JSON documents under
slash-separated keys; this wraps the encode/decode and missing-key
handling so the repositories only deal with dicts and lists.
"""

from __future__ import annotations

import json
from typing import Any

from loguru import logger

from .base import StorageBackend, StorageError, StorageKeyError


def encode_document(document: Any) -> bytes:
    """Stable UTF-8 JSON: sorted keys, dates and enums via ``str``."""
    return json.dumps(document, default=str, sort_keys=True, ensure_ascii=False).encode("utf-8")


def decode_document(data: bytes) -> Any:
    return json.loads(data.decode("utf-8"))


class JsonDocumentStore:
    """Read/write JSON documents by key."""

    def __init__(self, backend: StorageBackend) -> None:
        self.backend = backend

    async def read(self, key: str, default: Any = None) -> Any:
        """Return the decoded document at *key*, or *default* when absent."""
        try:
            raw = await self.backend.read(key)
        except StorageKeyError:
            return default
        try:
            return decode_document(raw)
        except ValueError as e:
            logger.error(f"Corrupt document at {key}: {e}")
            raise StorageError(f"Corrupt document at {key}: {e}") from e

    async def write(self, key: str, document: Any) -> None:
        await self.backend.write(key, encode_document(document))

    async def delete(self, key: str) -> bool:
        return await self.backend.delete(key)

    async def keys(self, prefix: str = "") -> list[str]:
        return [key async for key in self.backend.list_keys(prefix=prefix)]
