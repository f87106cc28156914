"""
Storage abstraction layer for the royalty ledger.

This package provides a pluggable storage backend system for track
account records:

- Memory (default, for tests and single-process use)
- JSON file (durable local persistence)

Usage:
    from storage import get_storage_backend

    storage = get_storage_backend("json", "ledger.json")
    storage.save_account("track-1", account.to_dict(), expected_version=0)
    record = storage.load_account("track-1")
"""

import os

from storage.base import StorageBackend, StorageError
from storage.json_file import JSONFileStorage
from storage.memory import MemoryStorage

__all__ = [
    "JSONFileStorage",
    "MemoryStorage",
    "StorageBackend",
    "StorageError",
    "get_storage_backend",
]


def get_storage_backend(
    backend_type: str | None = None,
    file_path: str | None = None,
) -> StorageBackend:
    """
    Get a storage backend.

    Environment variables (used when arguments are omitted):
        ROYALTY_STORAGE_BACKEND: Backend type ("memory", "json")
        ROYALTY_STORAGE_PATH: Path for JSON file storage

    Returns:
        Configured StorageBackend instance
    """
    backend_type = (backend_type or os.getenv("ROYALTY_STORAGE_BACKEND", "memory")).lower()

    if backend_type == "json":
        path = file_path or os.getenv("ROYALTY_STORAGE_PATH", "royalty_ledger.json")
        return JSONFileStorage(path)

    elif backend_type == "memory":
        return MemoryStorage()

    else:
        raise StorageError(f"Unknown storage backend: {backend_type}")
