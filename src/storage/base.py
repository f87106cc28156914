"""
Abstract base class for storage backends.

This module defines the interface that all track account storage backends
must implement. Records are plain dictionaries (TrackAccount.to_dict()),
keyed by track id, each carrying a "version" used for optimistic
concurrency: a write names the version it read, and the backend refuses it
if the stored record has moved on.
"""

from abc import ABC, abstractmethod
from typing import Any

from royalty_exceptions import ConcurrencyConflictError


class StorageError(Exception):
    """Base exception for storage-related errors."""
    pass


class StorageReadError(StorageError):
    """Raised when reading from storage fails."""
    pass


class StorageWriteError(StorageError):
    """Raised when writing to storage fails."""
    pass


class StorageBackend(ABC):
    """
    Abstract base class for track account storage backends.

    All storage backends must implement these methods to provide
    a consistent interface for ledger persistence.
    """

    @abstractmethod
    def load_account(self, track_id: str) -> dict[str, Any] | None:
        """
        Load one track account record.

        Returns:
            A copy of the stored record, or None if the track is unknown.

        Raises:
            StorageReadError: If reading fails
        """
        pass

    @abstractmethod
    def save_accounts(
        self,
        records: dict[str, dict[str, Any]],
        expected_versions: dict[str, int],
    ) -> None:
        """
        Atomically write several track account records.

        Either every record is written or none is.

        Args:
            records: track_id -> record to store
            expected_versions: track_id -> version the caller read (0 if new)

        Raises:
            ConcurrencyConflictError: If any stored version differs
            StorageWriteError: If writing fails
        """
        pass

    @abstractmethod
    def list_track_ids(self) -> list[str]:
        """Return every stored track id, sorted."""
        pass

    @abstractmethod
    def is_available(self) -> bool:
        """
        Check if the storage backend is available and ready.

        Returns:
            True if storage is accessible, False otherwise
        """
        pass

    def save_account(
        self,
        track_id: str,
        record: dict[str, Any],
        expected_version: int,
    ) -> None:
        """Write a single record (see save_accounts)."""
        self.save_accounts({track_id: record}, {track_id: expected_version})

    def get_info(self) -> dict[str, Any]:
        """
        Get information about the storage backend.

        Returns:
            Dictionary with backend type, status, and configuration
        """
        return {
            "backend_type": self.__class__.__name__,
            "available": self.is_available(),
        }

    @staticmethod
    def check_versions(
        current: dict[str, dict[str, Any]],
        expected_versions: dict[str, int],
    ) -> None:
        """Raise ConcurrencyConflictError if any stored version moved on."""
        for track_id, expected in expected_versions.items():
            stored = current.get(track_id)
            actual = int(stored.get("version", 0)) if stored else 0
            if actual != expected:
                raise ConcurrencyConflictError(
                    track_id, expected, actual if stored else None
                )

    def close(self) -> None:
        """
        Close the storage connection and release resources.

        Default implementation does nothing - backends with connections
        should override this.
        """
        pass

    def __enter__(self):
        """Context manager entry."""
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        """Context manager exit - closes connection."""
        self.close()
        return False
