"""
Royalty Ledger - Track Repository

Owns every TrackAccount. Components never hold live accounts; they open a
transaction over the tracks they need, mutate working copies, and the
transaction commits all touched accounts in one storage write.

    with repository.transaction(["track-1"]) as tx:
        account = tx.account("track-1")
        account.accrual.pending_amount += 100
        tx.save(account)
        tx.emit(LedgerEventType.DEPOSIT_ACCUMULATED, "track-1", {...})

Leaving the block normally commits and then publishes the emitted events.
Leaving it with an exception discards every change and every event, unless
the transaction was marked with keep_on_error() (money already moved and
the account records it), in which case it commits and then re-raises.
"""

import logging
import threading
from contextlib import contextmanager
from datetime import datetime
from typing import Any

from ledger_events import EventLog, LedgerEvent, LedgerEventType
from monitoring.metrics import MetricsCollector
from monitoring.metrics import metrics as default_metrics
from royalty_exceptions import BusyError, ConcurrencyConflictError
from scaling.locking import LockManager
from storage.base import StorageBackend
from track_accounts import TrackAccount, TrackState

logger = logging.getLogger(__name__)


def lock_name(track_id: str) -> str:
    """Name of the lock serializing mutations of one track."""
    return f"track:{track_id}"


class LedgerTransaction:
    """
    Working copies of the locked tracks plus the events to publish.

    Only tracks named when the transaction was opened can be read through it.
    """

    def __init__(self, repository: "TrackRepository", track_ids: list[str]):
        self._repository = repository
        self._track_ids = set(track_ids)
        self._accounts: dict[str, TrackAccount | None] = {}
        self._expected_versions: dict[str, int] = {}
        self._dirty: list[str] = []
        self.events: list[LedgerEvent] = []
        self.committed = False
        self.commit_on_error = False

    def account(self, track_id: str, create: bool = False) -> TrackAccount | None:
        """
        Working copy of a locked track.

        Repeated calls return the same object. Unknown tracks give None,
        or a fresh empty account when ``create`` is set.
        """
        if track_id not in self._track_ids:
            raise RuntimeError(f"Track {track_id} is not locked by this transaction")

        if track_id not in self._accounts:
            stored = self._repository.get(track_id)
            self._accounts[track_id] = stored
            self._expected_versions[track_id] = stored.version if stored else 0

        account = self._accounts[track_id]
        if account is None and create:
            account = TrackAccount(track_id=track_id)
            self._accounts[track_id] = account
        return account

    def save(self, account: TrackAccount) -> None:
        """Mark a working copy for commit."""
        if self._accounts.get(account.track_id) is not account:
            raise RuntimeError(f"Account {account.track_id} was not loaded by this transaction")
        if account.track_id not in self._dirty:
            self._dirty.append(account.track_id)

    def keep_on_error(self) -> None:
        """Commit the saved accounts even if the block exits with an exception."""
        self.commit_on_error = True

    def emit(self, event_type: LedgerEventType, track_id: str | None, data: dict[str, Any]) -> None:
        """Queue an event for publication after commit."""
        self.events.append(LedgerEvent(event_type=event_type, track_id=track_id, data=data))

    def commit(self) -> None:
        """Write every saved account atomically and publish queued events."""
        if self.committed:
            return

        if self._dirty:
            now = datetime.utcnow().isoformat()
            records = {}
            expected = {}
            for track_id in self._dirty:
                account = self._accounts[track_id]
                account.version = self._expected_versions[track_id] + 1
                account.updated_at = now
                records[track_id] = account.to_dict()
                expected[track_id] = self._expected_versions[track_id]
            self._repository.storage.save_accounts(records, expected)

        self.committed = True
        if self.events:
            self._repository.event_log.publish(self.events)


class TrackRepository:
    """Track account persistence, per-track locking and in-flight tracking."""

    def __init__(
        self,
        storage: StorageBackend,
        lock_manager: LockManager,
        event_log: EventLog,
        lock_timeout: float = 5.0,
        lock_ttl: float = 60.0,
        metrics: MetricsCollector | None = None,
    ):
        self.storage = storage
        self.lock_manager = lock_manager
        self.event_log = event_log
        self.lock_timeout = lock_timeout
        self.lock_ttl = lock_ttl
        self.metrics = metrics or default_metrics

        self._distributing: set[str] = set()
        self._distributing_lock = threading.Lock()

    def get(self, track_id: str) -> TrackAccount | None:
        """Snapshot of a committed account (safe to mutate, never written back)."""
        record = self.storage.load_account(track_id)
        if record is None:
            return None
        return TrackAccount.from_dict(record)

    def list_track_ids(self) -> list[str]:
        return self.storage.list_track_ids()

    @contextmanager
    def locked(self, track_ids: list[str]):
        """
        Hold the locks of every listed track, taken in sorted order.

        Raises:
            BusyError: If the locks are not acquired within lock_timeout
        """
        names = [lock_name(t) for t in track_ids]
        if not self.lock_manager.acquire_many(names, timeout=self.lock_timeout, ttl=self.lock_ttl):
            self.metrics.increment("busy_total")
            logger.warning(f"Tracks {sorted(set(track_ids))} busy after {self.lock_timeout}s")
            raise BusyError(sorted(set(track_ids)), self.lock_timeout)
        try:
            yield
        finally:
            self.lock_manager.release_many(names)

    @contextmanager
    def transaction(self, track_ids: list[str]):
        """
        Lock the tracks and yield a LedgerTransaction over them.

        Commits on normal exit; discards on exception unless keep_on_error()
        was called.
        """
        with self.locked(track_ids):
            tx = LedgerTransaction(self, track_ids)
            try:
                yield tx
            except Exception:
                if tx.commit_on_error:
                    tx.commit()
                raise
            try:
                tx.commit()
            except ConcurrencyConflictError:
                logger.error(
                    f"Commit of {sorted(set(track_ids))} lost a version race; changes discarded"
                )
                raise

    @contextmanager
    def distributing(self, track_id: str):
        """Mark a track as having a payout in flight."""
        with self._distributing_lock:
            self._distributing.add(track_id)
        self.metrics.increment_gauge("tracks_distributing")
        try:
            yield
        finally:
            with self._distributing_lock:
                self._distributing.discard(track_id)
            self.metrics.decrement_gauge("tracks_distributing")

    def get_track_state(self, track_id: str) -> TrackState:
        with self._distributing_lock:
            if track_id in self._distributing:
                return TrackState.DISTRIBUTING
        account = self.get(track_id)
        if account is None or not account.is_registered:
            return TrackState.UNREGISTERED
        return TrackState.ACCRUING
