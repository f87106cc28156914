"""
In-memory storage backend.

This backend stores track accounts in memory only, useful for:
- Unit testing
- Development
- Single-process deployments that persist elsewhere
"""

import copy
import threading
from typing import Any

from storage.base import StorageBackend


class MemoryStorage(StorageBackend):
    """
    In-memory storage backend.

    All data is lost when the process exits. Thread-safe operations.
    """

    def __init__(self):
        """Initialize empty memory storage."""
        self._records: dict[str, dict[str, Any]] = {}
        self._lock = threading.RLock()

    def load_account(self, track_id: str) -> dict[str, Any] | None:
        """
        Load a track account record from memory.

        Returns:
            Copy of stored record, or None if unknown
        """
        with self._lock:
            record = self._records.get(track_id)
            if record is None:
                return None
            # Return a deep copy to prevent external modification
            return copy.deepcopy(record)

    def save_accounts(
        self,
        records: dict[str, dict[str, Any]],
        expected_versions: dict[str, int],
    ) -> None:
        """Store records after checking every expected version."""
        with self._lock:
            self.check_versions(self._records, expected_versions)
            for track_id, record in records.items():
                self._records[track_id] = copy.deepcopy(record)

    def list_track_ids(self) -> list[str]:
        with self._lock:
            return sorted(self._records)

    def is_available(self) -> bool:
        """Memory storage is always available."""
        return True

    def get_info(self) -> dict[str, Any]:
        """Get storage backend information."""
        info = super().get_info()
        with self._lock:
            info["track_count"] = len(self._records)
        return info

    def clear(self) -> None:
        """Clear all stored data."""
        with self._lock:
            self._records = {}
