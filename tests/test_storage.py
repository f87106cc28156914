"""
Tests for storage backends.
"""

import json
import os
import sys
import tempfile
import threading

sys.path.insert(0, os.path.join(os.path.dirname(__file__), "..", "src"))

import pytest

from royalty_exceptions import ConcurrencyConflictError
from storage import StorageError, get_storage_backend
from storage.base import StorageReadError
from storage.json_file import JSONFileStorage
from storage.memory import MemoryStorage
from track_accounts import PayeeShare, TrackAccount


def sample_record(track_id="track-1", version=1, pending=0):
    account = TrackAccount(
        track_id=track_id,
        payees=[PayeeShare("alice", 6000), PayeeShare("bob", 4000)],
        version=version,
    )
    account.accrual.pending_amount = pending
    account.deficits = {"bob": 8}
    return account.to_dict()


class TestMemoryStorage:
    """Tests for MemoryStorage backend."""

    def test_init_empty(self):
        """Test that new memory storage is empty."""
        storage = MemoryStorage()
        assert storage.load_account("track-1") is None
        assert storage.list_track_ids() == []
        assert storage.is_available() is True

    def test_save_and_load(self):
        """Test saving and loading an account record."""
        storage = MemoryStorage()
        storage.save_account("track-1", sample_record(pending=40), expected_version=0)

        loaded = storage.load_account("track-1")
        assert loaded["accrual"]["pending_amount"] == 40
        assert loaded["deficits"] == {"bob": 8}
        assert TrackAccount.from_dict(loaded).payee_names() == ["alice", "bob"]

    def test_deep_copy_isolation(self):
        """Test that loaded records are isolated from storage."""
        storage = MemoryStorage()
        record = sample_record()
        storage.save_account("track-1", record, expected_version=0)

        record["deficits"]["bob"] = 999
        loaded = storage.load_account("track-1")
        loaded["payees"].clear()

        assert storage.load_account("track-1")["deficits"] == {"bob": 8}
        assert len(storage.load_account("track-1")["payees"]) == 2

    def test_version_conflict(self):
        storage = MemoryStorage()
        storage.save_account("track-1", sample_record(version=1), expected_version=0)

        with pytest.raises(ConcurrencyConflictError) as exc_info:
            storage.save_account("track-1", sample_record(version=2), expected_version=0)

        assert exc_info.value.expected_version == 0
        assert exc_info.value.actual_version == 1

    def test_multi_record_write_is_all_or_nothing(self):
        storage = MemoryStorage()
        storage.save_account("a", sample_record("a", version=1), expected_version=0)

        with pytest.raises(ConcurrencyConflictError):
            storage.save_accounts(
                {
                    "a": sample_record("a", version=2, pending=5),
                    "b": sample_record("b", version=1),
                },
                {"a": 0, "b": 0},
            )

        assert storage.load_account("a")["accrual"]["pending_amount"] == 0
        assert storage.load_account("b") is None

    def test_clear(self):
        storage = MemoryStorage()
        storage.save_account("track-1", sample_record(), expected_version=0)
        storage.clear()
        assert storage.load_account("track-1") is None

    def test_get_info(self):
        """Test getting storage info."""
        storage = MemoryStorage()
        storage.save_account("track-1", sample_record(), expected_version=0)

        info = storage.get_info()
        assert info["backend_type"] == "MemoryStorage"
        assert info["available"] is True
        assert info["track_count"] == 1

    def test_thread_safety(self):
        """Test concurrent writers to distinct tracks."""
        storage = MemoryStorage()
        errors = []

        def writer(n):
            try:
                for i in range(20):
                    track_id = f"track-{n}-{i}"
                    storage.save_account(track_id, sample_record(track_id), expected_version=0)
            except Exception as e:
                errors.append(e)

        threads = [threading.Thread(target=writer, args=(n,)) for n in range(5)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert errors == []
        assert len(storage.list_track_ids()) == 100


class TestJSONFileStorage:
    """Tests for JSONFileStorage backend."""

    def test_init_nonexistent_file(self):
        """Test loading from a file that does not exist yet."""
        with tempfile.TemporaryDirectory() as tmpdir:
            storage = JSONFileStorage(os.path.join(tmpdir, "ledger.json"))
            assert storage.load_account("track-1") is None
            assert storage.list_track_ids() == []

    def test_file_persistence(self):
        """Test that records survive a new storage instance."""
        with tempfile.TemporaryDirectory() as tmpdir:
            path = os.path.join(tmpdir, "ledger.json")
            JSONFileStorage(path).save_account("track-1", sample_record(pending=7), 0)

            reopened = JSONFileStorage(path)
            assert reopened.load_account("track-1")["accrual"]["pending_amount"] == 7
            assert reopened.list_track_ids() == ["track-1"]

    def test_json_format(self):
        """Test that the file holds an accounts map."""
        with tempfile.TemporaryDirectory() as tmpdir:
            path = os.path.join(tmpdir, "ledger.json")
            JSONFileStorage(path).save_account("track-1", sample_record(), 0)

            with open(path, encoding="utf-8") as f:
                data = json.load(f)
            assert list(data["accounts"]) == ["track-1"]

    def test_large_amounts_round_trip(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            path = os.path.join(tmpdir, "ledger.json")
            storage = JSONFileStorage(path)
            storage.save_account("track-1", sample_record(pending=2**120), 0)
            assert storage.load_account("track-1")["accrual"]["pending_amount"] == 2**120

    def test_version_conflict(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            storage = JSONFileStorage(os.path.join(tmpdir, "ledger.json"))
            storage.save_account("track-1", sample_record(version=1), 0)

            with pytest.raises(ConcurrencyConflictError):
                storage.save_account("track-1", sample_record(version=2), 0)

    def test_empty_file(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            path = os.path.join(tmpdir, "ledger.json")
            with open(path, "w") as f:
                f.write("")
            assert JSONFileStorage(path).load_account("track-1") is None

    def test_invalid_json(self):
        """Test that corrupt files raise StorageReadError."""
        with tempfile.TemporaryDirectory() as tmpdir:
            path = os.path.join(tmpdir, "ledger.json")
            with open(path, "w") as f:
                f.write("{not json")

            with pytest.raises(StorageReadError):
                JSONFileStorage(path).load_account("track-1")

    def test_is_available(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            assert JSONFileStorage(os.path.join(tmpdir, "ledger.json")).is_available()
        assert not JSONFileStorage("/nonexistent/dir/ledger.json").is_available()

    def test_get_info(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            path = os.path.join(tmpdir, "ledger.json")
            storage = JSONFileStorage(path)
            assert storage.get_info()["file_exists"] is False

            storage.save_account("track-1", sample_record(), 0)
            info = storage.get_info()
            assert info["file_exists"] is True
            assert info["file_size_bytes"] > 0

    def test_backup(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            path = os.path.join(tmpdir, "ledger.json")
            storage = JSONFileStorage(path)

            with pytest.raises(StorageError):
                storage.backup()

            storage.save_account("track-1", sample_record(), 0)
            backup_path = storage.backup(os.path.join(tmpdir, "copy.json"))

            assert JSONFileStorage(backup_path).load_account("track-1") is not None

    def test_atomic_write_leaves_no_temp_file(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            path = os.path.join(tmpdir, "ledger.json")
            JSONFileStorage(path).save_account("track-1", sample_record(), 0)
            assert not os.path.exists(f"{path}.tmp")

    def test_unicode_payees(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            path = os.path.join(tmpdir, "ledger.json")
            record = sample_record()
            record["payees"][0]["payee"] = "Beyoncé"
            JSONFileStorage(path).save_account("track-1", record, 0)

            loaded = JSONFileStorage(path).load_account("track-1")
            assert loaded["payees"][0]["payee"] == "Beyoncé"


class TestStorageBackendInterface:
    """Tests for shared StorageBackend behaviour."""

    def test_context_manager(self):
        with MemoryStorage() as storage:
            assert storage.is_available()

    def test_check_versions_new_record(self):
        MemoryStorage.check_versions({}, {"track-1": 0})
        with pytest.raises(ConcurrencyConflictError) as exc_info:
            MemoryStorage.check_versions({}, {"track-1": 3})
        assert exc_info.value.actual_version is None


class TestGetStorageBackend:
    """Tests for get_storage_backend factory."""

    def test_default_memory(self, monkeypatch):
        monkeypatch.delenv("ROYALTY_STORAGE_BACKEND", raising=False)
        assert isinstance(get_storage_backend(), MemoryStorage)

    def test_json_from_env(self, monkeypatch, tmp_path):
        monkeypatch.setenv("ROYALTY_STORAGE_BACKEND", "JSON")
        monkeypatch.setenv("ROYALTY_STORAGE_PATH", str(tmp_path / "env.json"))

        storage = get_storage_backend()
        assert isinstance(storage, JSONFileStorage)
        assert storage.file_path == str(tmp_path / "env.json")

    def test_explicit_arguments_win(self, monkeypatch, tmp_path):
        monkeypatch.setenv("ROYALTY_STORAGE_BACKEND", "memory")
        storage = get_storage_backend("json", str(tmp_path / "x.json"))
        assert isinstance(storage, JSONFileStorage)

    def test_unknown_backend(self):
        with pytest.raises(StorageError):
            get_storage_backend("postgresql")
