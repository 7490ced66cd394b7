"""
Storage for carecadence documents.

A pluggable byte-level backend (local filesystem by default) plus a JSON
document helper that the repositories build on.
"""

from .base import StorageBackend, StorageError, StorageKeyError, StoragePermissionError
from .documents import JsonDocumentStore, decode_document, encode_document
from .local import LocalStorage

__all__ = [
    "JsonDocumentStore",
    "LocalStorage",
    "StorageBackend",
    "StorageError",
    "StorageKeyError",
    "StoragePermissionError",
    "decode_document",
    "encode_document",
]
