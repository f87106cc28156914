"""
JSON file storage backend.

Persists every track account to a single local JSON file of the form
{"accounts": {track_id: record}}. Writes go to a temporary file that is
atomically renamed over the original, so a reader never sees a partial
write.
"""

import json
import os
import shutil
import threading
from datetime import datetime
from typing import Any

from storage.base import (
    StorageBackend,
    StorageError,
    StorageReadError,
    StorageWriteError,
)


class JSONFileStorage(StorageBackend):
    """
    JSON file storage backend.

    Thread-safe operations using a file lock. Suitable for a single process;
    several processes sharing one file rely on the per-record version check
    to detect lost updates.
    """

    def __init__(self, file_path: str = "royalty_ledger.json"):
        """
        Initialize JSON file storage.

        Args:
            file_path: Path to the JSON file
        """
        self.file_path = file_path
        self._lock = threading.Lock()

    def _read_all(self) -> dict[str, dict[str, Any]]:
        """Read every record; caller holds the lock."""
        try:
            if not os.path.exists(self.file_path):
                return {}

            with open(self.file_path, 'r', encoding='utf-8') as f:
                raw_data = f.read()

            if not raw_data.strip():
                return {}

            return json.loads(raw_data).get("accounts", {})

        except FileNotFoundError:
            return {}
        except PermissionError as e:
            raise StorageReadError(f"Permission denied: {self.file_path}") from e
        except json.JSONDecodeError as e:
            raise StorageReadError(f"Invalid JSON format: {e}") from e

    def load_account(self, track_id: str) -> dict[str, Any] | None:
        """
        Load one track account record from the JSON file.

        Raises:
            StorageReadError: If reading fails
        """
        with self._lock:
            return self._read_all().get(track_id)

    def save_accounts(
        self,
        records: dict[str, dict[str, Any]],
        expected_versions: dict[str, int],
    ) -> None:
        """
        Write records to the JSON file after a version check.

        Raises:
            ConcurrencyConflictError: If a stored version moved on
            StorageWriteError: If writing fails
        """
        with self._lock:
            current = self._read_all()
            self.check_versions(current, expected_versions)
            current.update(records)

            try:
                data = json.dumps({"accounts": current}, indent=2, ensure_ascii=False)

                # Write to file atomically (write to temp, then rename)
                temp_path = f"{self.file_path}.tmp"
                with open(temp_path, 'w', encoding='utf-8') as f:
                    f.write(data)

                os.replace(temp_path, self.file_path)

            except PermissionError as e:
                raise StorageWriteError(
                    f"Permission denied: {self.file_path}"
                ) from e
            except OSError as e:
                raise StorageWriteError(f"OS error: {e}") from e

    def list_track_ids(self) -> list[str]:
        with self._lock:
            return sorted(self._read_all())

    def is_available(self) -> bool:
        """
        Check if file storage is available.

        Returns:
            True if the file path is writable
        """
        directory = os.path.dirname(self.file_path) or "."
        if not os.path.exists(directory):
            return False
        return os.access(directory, os.W_OK)

    def get_info(self) -> dict[str, Any]:
        """Get storage backend information."""
        info = super().get_info()
        info.update({
            "file_path": self.file_path,
            "file_exists": os.path.exists(self.file_path),
        })

        if os.path.exists(self.file_path):
            try:
                stat = os.stat(self.file_path)
                info["file_size_bytes"] = stat.st_size
                info["last_modified"] = stat.st_mtime
            except OSError:
                pass

        return info

    def backup(self, backup_path: str | None = None) -> str:
        """
        Create a backup of the storage file.

        Args:
            backup_path: Path for backup file (default: adds timestamped .backup suffix)

        Returns:
            Path to the backup file

        Raises:
            StorageError: If backup fails
        """
        if backup_path is None:
            timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")
            backup_path = f"{self.file_path}.{timestamp}.backup"

        try:
            with self._lock:
                if os.path.exists(self.file_path):
                    shutil.copy2(self.file_path, backup_path)
                    return backup_path
                else:
                    raise StorageError("No file to backup")
        except OSError as e:
            raise StorageError(f"Backup failed: {e}") from e
