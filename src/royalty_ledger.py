"""
Royalty Ledger

Single entry point wiring the ledger components to shared collaborators:

    from capabilities import Capability, CapabilityManager
    from funds_transfer import InMemoryFundsTransfer
    from royalty_ledger import RoyaltyLedger

    caps = CapabilityManager()
    caps.grant("label-admin", Capability.ADMIN)
    ledger = RoyaltyLedger(funds=InMemoryFundsTransfer(1_000_000), capabilities=caps)

    ledger.register_payees("label-admin", "track-1", ["artist", "producer"], [7000, 3000])
    ledger.distribute("label-admin", "track-1", 10_000)

Mutating methods take the acting caller first and check its capability
before anything else happens. Queries need no caller.
"""

import logging
from typing import Any

from accrual_ledger import AccrualLedger, DepositResult
from batch_coordinator import BatchCoordinator
from capabilities import CapabilityChecker, CapabilityManager
from config import LedgerConfig
from distribution_engine import DistributionEngine, DistributionResult, compute_split
from funds_transfer import FundsTransfer
from ledger_events import EventLog, LedgerEvent, LedgerEventType
from monitoring.metrics import MetricsCollector
from monitoring.metrics import metrics as default_metrics
from payee_registry import PayeeRegistry
from reconciliation_ledger import AdjustmentDirection, AdjustmentResult, ReconciliationLedger
from scaling import get_lock_manager
from scaling.locking import LockManager
from storage import get_storage_backend
from storage.base import StorageBackend
from streaming_meter import StreamingMeter
from threshold_policy import ThresholdPolicy
from track_accounts import PayeeShare, StreamingConfig, ThresholdConfig, TrackState
from track_repository import TrackRepository

logger = logging.getLogger(__name__)


class RoyaltyLedger:
    """Royalty distribution and metered-accrual ledger."""

    def __init__(
        self,
        funds: FundsTransfer,
        capabilities: CapabilityChecker | None = None,
        config: LedgerConfig | None = None,
        storage: StorageBackend | None = None,
        lock_manager: LockManager | None = None,
        event_log: EventLog | None = None,
        metrics: MetricsCollector | None = None,
    ):
        self.config = config or LedgerConfig()
        self.config.validate()

        self.funds = funds
        self.capabilities = capabilities or CapabilityManager(admin_caller=self.config.admin_caller)
        self.storage = storage or get_storage_backend(
            self.config.storage_backend, self.config.storage_path
        )
        self.lock_manager = lock_manager or get_lock_manager(self.config.redis_url)
        self.event_log = event_log or EventLog()
        self.metrics = metrics or default_metrics

        self.repository = TrackRepository(
            self.storage,
            self.lock_manager,
            self.event_log,
            lock_timeout=self.config.lock_timeout,
            lock_ttl=self.config.lock_ttl,
            metrics=self.metrics,
        )
        self.policy = ThresholdPolicy(
            self.capabilities, self.event_log, global_minimum=self.config.global_minimum
        )
        self.registry = PayeeRegistry(
            self.repository, self.capabilities, self.config.total_share_units
        )
        self.engine = DistributionEngine(
            self.repository,
            funds,
            self.capabilities,
            self.policy,
            total_share_units=self.config.total_share_units,
            metrics=self.metrics,
        )
        self.accrual = AccrualLedger(
            self.repository, self.engine, self.policy, self.capabilities, metrics=self.metrics
        )
        self.meter = StreamingMeter(self.repository, self.accrual, self.capabilities)
        self.reconciliation = ReconciliationLedger(
            self.repository, self.engine, self.policy, self.capabilities
        )
        self.batches = BatchCoordinator(
            self.repository,
            self.engine,
            self.meter,
            self.policy,
            self.capabilities,
            metrics=self.metrics,
        )

        logger.info(
            f"Royalty ledger ready (storage={type(self.storage).__name__}, "
            f"locks={type(self.lock_manager).__name__}, "
            f"share_units={self.config.total_share_units})"
        )

    @classmethod
    def from_config(
        cls,
        funds: FundsTransfer,
        config: LedgerConfig | None = None,
        capabilities: CapabilityChecker | None = None,
    ) -> "RoyaltyLedger":
        """Build a ledger from LedgerConfig (environment by default)."""
        return cls(funds=funds, capabilities=capabilities, config=config or LedgerConfig.from_env())

    # -------------------------------------------------------------------------
    # Payees
    # -------------------------------------------------------------------------

    def register_payees(
        self, caller: str, track_id: str, payees: list[str], share_units: list[int]
    ) -> list[PayeeShare]:
        return self.registry.register_payees(caller, track_id, payees, share_units)

    def remove_payee(self, caller: str, track_id: str, payee: str) -> list[PayeeShare]:
        return self.registry.remove_payee(caller, track_id, payee)

    def get_shares(self, track_id: str) -> list[PayeeShare]:
        return self.registry.get_shares(track_id)

    def get_payee_count(self, track_id: str) -> int:
        return self.registry.get_payee_count(track_id)

    # -------------------------------------------------------------------------
    # Usage and deposits
    # -------------------------------------------------------------------------

    def set_rate(self, caller: str, track_id: str, rate: int) -> int:
        return self.meter.set_rate(caller, track_id, rate)

    def record_usage(self, caller: str, track_id: str, units: int) -> DepositResult:
        return self.meter.record_usage(caller, track_id, units)

    def batch_record_usage(
        self, caller: str, track_ids: list[str], units: list[int]
    ) -> list[DepositResult]:
        return self.batches.batch_record_usage(caller, track_ids, units)

    def accumulate_deposit(self, caller: str, track_id: str, amount: int) -> DepositResult:
        return self.accrual.accumulate_deposit(caller, track_id, amount)

    def set_auto_flush_threshold(self, caller: str, track_id: str, amount: int) -> int:
        return self.accrual.set_auto_flush_threshold(caller, track_id, amount)

    def flush_pending(self, caller: str, track_id: str) -> DistributionResult:
        return self.accrual.flush_pending(caller, track_id)

    def get_pending(self, track_id: str) -> int:
        return self.accrual.get_pending(track_id)

    # -------------------------------------------------------------------------
    # Distribution
    # -------------------------------------------------------------------------

    def distribute(self, caller: str, track_id: str, amount: int) -> DistributionResult:
        return self.engine.distribute(caller, track_id, amount)

    def batch_distribute(
        self, caller: str, track_ids: list[str], amounts: list[int]
    ) -> list[DistributionResult]:
        return self.batches.batch_distribute(caller, track_ids, amounts)

    def compute_split(self, track_id: str, amount: int) -> dict[str, int]:
        """Preview how ``amount`` would split on a track (deficits not applied)."""
        return compute_split(amount, self.get_shares(track_id), self.config.total_share_units)

    # -------------------------------------------------------------------------
    # Adjustments and thresholds
    # -------------------------------------------------------------------------

    def apply_adjustment(
        self,
        caller: str,
        track_id: str,
        amount: int,
        direction: AdjustmentDirection | str,
    ) -> AdjustmentResult:
        return self.reconciliation.apply_adjustment(caller, track_id, amount, direction)

    def get_deficits(self, track_id: str) -> dict[str, int]:
        return self.reconciliation.get_deficits(track_id)

    def get_open_payout(self, track_id: str) -> dict[str, Any] | None:
        """The partly paid payout the next payout on the track will finish, if any."""
        account = self.repository.get(track_id)
        if account is None or account.open_payout is None:
            return None
        return account.open_payout.to_dict()

    def set_global_minimum(self, caller: str, amount: int) -> int:
        return self.policy.set_global_minimum(caller, amount)

    def check_distribution(self, amount: int) -> None:
        self.policy.check_distribution(amount)

    def get_threshold_config(self, track_id: str) -> ThresholdConfig:
        return self.policy.get_threshold_config(self.repository.get(track_id))

    # -------------------------------------------------------------------------
    # Queries
    # -------------------------------------------------------------------------

    def get_track_state(self, track_id: str) -> TrackState:
        return self.repository.get_track_state(track_id)

    def get_streaming_config(self, track_id: str) -> StreamingConfig:
        account = self.repository.get(track_id)
        return account.streaming if account else StreamingConfig()

    def get_account(self, track_id: str) -> dict[str, Any] | None:
        """Committed record of a track, as stored."""
        account = self.repository.get(track_id)
        return account.to_dict() if account else None

    def list_tracks(self) -> list[str]:
        return self.repository.list_track_ids()

    def get_events(
        self,
        since: int = 0,
        track_id: str | None = None,
        event_type: LedgerEventType | None = None,
        limit: int | None = None,
    ) -> list[LedgerEvent]:
        return self.event_log.get_events(since, track_id, event_type, limit)

    def get_statistics(self) -> dict[str, Any]:
        """Ledger-wide totals across every stored track."""
        tracks = [self.repository.get(t) for t in self.list_tracks()]
        tracks = [t for t in tracks if t is not None]
        return {
            "tracks": len(tracks),
            "registered_tracks": sum(1 for t in tracks if t.is_registered),
            "total_deposited": sum(t.accrual.total_deposited for t in tracks),
            "total_distributed": sum(t.accrual.total_distributed for t in tracks),
            "total_pending": sum(t.accrual.pending_amount for t in tracks),
            "total_deficits": sum(sum(t.deficits.values()) for t in tracks),
            "distributions": sum(t.distribution_count for t in tracks),
            "open_payouts": sum(1 for t in tracks if t.open_payout is not None),
            "global_minimum": self.policy.global_minimum,
            "last_event_sequence": self.event_log.last_sequence,
        }

    def close(self) -> None:
        self.storage.close()
        close = getattr(self.lock_manager, "close", None)
        if close:
            close()
