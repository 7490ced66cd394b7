"""
Local filesystem storage backend.

Keys map to files under ``base_path``. Each write lands in a hidden
temporary sibling and is then renamed over the target, so an interrupted
write leaves the previous document intact.
"""

import os
import uuid
from collections.abc import AsyncIterator
from pathlib import Path

import aiofiles
import aiofiles.os

from .base import StorageBackend, StorageKeyError, StoragePermissionError

_TMP_SUFFIX = ".tmp"


class LocalStorage(StorageBackend):
    """Documents as files under a single data directory."""

    def __init__(self, base_path: str = "~/.carecadence-data/storage"):
        self.base_path = Path(base_path).expanduser().resolve()
        self.base_path.mkdir(parents=True, exist_ok=True)

    def _path_for(self, key: str) -> Path:
        """Map *key* to a file inside ``base_path``.

        Keys must be relative, '/'-separated and stay under the base
        directory once resolved.
        """
        cleaned = key.strip()
        if not cleaned:
            raise StoragePermissionError("Storage key cannot be empty.")
        if "\x00" in cleaned or "\\" in cleaned:
            raise StoragePermissionError(f"Unsafe storage key {key!r}: use plain '/' separated names.")
        if cleaned.startswith(("/", "~")):
            raise StoragePermissionError(f"Unsafe storage key {key!r}: absolute paths are not allowed.")

        path = (self.base_path / cleaned).resolve()
        if not path.is_relative_to(self.base_path) or path == self.base_path:
            raise StoragePermissionError(f"Unsafe storage key {key!r}: path traversal is not allowed.")
        return path

    async def read(self, key: str) -> bytes:
        path = self._path_for(key)
        try:
            async with aiofiles.open(path, "rb") as f:
                return await f.read()
        except FileNotFoundError as e:
            raise StorageKeyError(f"Key not found: {key}") from e
        except PermissionError as e:
            raise StoragePermissionError(f"Cannot read {path}: {e}") from e

    async def write(self, key: str, data: bytes) -> None:
        path = self._path_for(key)
        path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = path.with_name(f".{path.name}.{uuid.uuid4().hex[:8]}{_TMP_SUFFIX}")
        try:
            async with aiofiles.open(tmp_path, "wb") as f:
                await f.write(data)
            await aiofiles.os.replace(tmp_path, path)
        except PermissionError as e:
            raise StoragePermissionError(f"Cannot write to {path}: {e}") from e

    async def exists(self, key: str) -> bool:
        return self._path_for(key).is_file()

    async def delete(self, key: str) -> bool:
        path = self._path_for(key)
        try:
            await aiofiles.os.remove(path)
        except FileNotFoundError:
            return False
        return True

    async def list_keys(self, prefix: str = "") -> AsyncIterator[str]:
        for root, dirs, files in os.walk(self.base_path):
            dirs.sort()
            for name in sorted(files):
                if name.endswith(_TMP_SUFFIX):
                    continue
                key = (Path(root) / name).relative_to(self.base_path).as_posix()
                if key.startswith(prefix):
                    yield key
