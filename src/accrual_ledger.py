"""
Royalty Ledger - Accrual Ledger

Collects revenue per track until it is paid out. A deposit that lifts the
pending balance to the track's auto-flush threshold flushes the whole
balance in the same locked operation.

If that flush fails at the funds rail, the deposit still commits and the
balance stays pending; the failure is logged and reported on the
DepositResult. A flush that paid some payees before failing stays open on
the account with its amount fixed, and the next deposit (or flush_pending)
finishes it before flushing whatever arrived since.
"""

import logging
from dataclasses import dataclass
from typing import Any

from capabilities import Capability, CapabilityChecker, requires
from distribution_engine import DistributionEngine, DistributionResult, PayoutKind
from ledger_events import LedgerEventType
from monitoring.logging import LoggingContext
from monitoring.metrics import MetricsCollector
from monitoring.metrics import metrics as default_metrics
from royalty_exceptions import NoPayeesError, ThresholdError, TransferFailure
from threshold_policy import ThresholdPolicy, validate_amount
from track_accounts import TrackAccount, checked_add
from track_repository import LedgerTransaction, TrackRepository

logger = logging.getLogger(__name__)


@dataclass
class DepositResult:
    """Outcome of one deposit, including any auto-flush it triggered."""

    track_id: str
    amount: int
    pending_amount: int  # After the deposit (and flush, if one ran)
    source: str = "sale"
    flushed: DistributionResult | None = None
    flush_error: dict[str, Any] | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "track_id": self.track_id,
            "amount": self.amount,
            "pending_amount": self.pending_amount,
            "source": self.source,
            "flushed": self.flushed.to_dict() if self.flushed else None,
            "flush_error": self.flush_error,
        }


class AccrualLedger:
    """Pending balances and auto-flush."""

    def __init__(
        self,
        repository: TrackRepository,
        engine: DistributionEngine,
        policy: ThresholdPolicy,
        capabilities: CapabilityChecker,
        metrics: MetricsCollector | None = None,
    ):
        self.repository = repository
        self.engine = engine
        self.policy = policy
        self.capabilities = capabilities
        self.metrics = metrics or default_metrics

    @requires(Capability.DISTRIBUTOR)
    def accumulate_deposit(self, caller: str, track_id: str, amount: int) -> DepositResult:
        """
        Add sale proceeds to a track's pending balance.

        Raises:
            ConfigurationError: If amount is not a positive integer
            NoPayeesError: If the track has no payees
            ArithmeticOverflowError: If the pending balance would overflow
        """
        amount = validate_amount(amount, "amount", "accumulate_deposit", "accrual_ledger", positive=True)

        with LoggingContext(track_id=track_id, caller=caller, operation="accumulate_deposit"):
            with self.repository.transaction([track_id]) as tx:
                account = tx.account(track_id)
                if account is None or not account.is_registered:
                    raise NoPayeesError(track_id, action="accumulate_deposit")
                return self.deposit(tx, account, amount)

    def deposit(
        self,
        tx: LedgerTransaction,
        account: TrackAccount,
        amount: int,
        source: str = "sale",
    ) -> DepositResult:
        """Credit a locked working copy and auto-flush if the threshold is reached."""
        pending = checked_add(account.accrual.pending_amount, amount)
        total_deposited = checked_add(account.accrual.total_deposited, amount)
        account.accrual.pending_amount = pending
        account.accrual.total_deposited = total_deposited
        tx.save(account)
        tx.emit(
            LedgerEventType.DEPOSIT_ACCUMULATED,
            account.track_id,
            {"amount": amount, "pending_amount": pending, "source": source},
        )
        self.metrics.increment("deposits_total", labels={"source": source})

        result = DepositResult(
            track_id=account.track_id,
            amount=amount,
            pending_amount=pending,
            source=source,
        )

        if self._open_flush(account) or self.policy.should_auto_flush(account):
            try:
                result.flushed = self._auto_flush(tx, account)
            except TransferFailure as e:
                logger.error(
                    f"Auto-flush of {pending} on {account.track_id} failed; "
                    f"balance stays pending: {e}"
                )
                result.flush_error = e.to_dict()
            result.pending_amount = account.accrual.pending_amount
        else:
            logger.debug(f"Deposited {amount} on {account.track_id}; pending {pending}")

        return result

    @staticmethod
    def _open_flush(account: TrackAccount) -> bool:
        payout = account.open_payout
        return payout is not None and payout.kind == PayoutKind.FLUSH.value

    def _auto_flush(self, tx: LedgerTransaction, account: TrackAccount) -> DistributionResult | None:
        """Finish an open flush, then flush again only if the threshold is still reached."""
        resumed = self.engine.resume(tx, account) if self._open_flush(account) else None
        if self.policy.should_auto_flush(account):
            return self.engine.flush(tx, account.track_id, account.accrual.pending_amount)
        return resumed

    def _flush_pending(self, tx: LedgerTransaction, account: TrackAccount) -> DistributionResult:
        """Finish any open payout, then flush the balance still pending."""
        resumed = self.engine.resume(tx, account)
        if resumed is not None and account.accrual.pending_amount == 0:
            return resumed
        return self.engine.flush(tx, account.track_id, account.accrual.pending_amount)

    @requires(Capability.ADMIN)
    def set_auto_flush_threshold(self, caller: str, track_id: str, amount: int) -> int:
        """
        Set the pending balance at which deposits flush automatically (0 disables).

        The new threshold is evaluated on the next deposit.
        """
        amount = validate_amount(amount, "amount", "set_auto_flush_threshold", "accrual_ledger")

        with self.repository.transaction([track_id]) as tx:
            account = tx.account(track_id)
            if account is None or not account.is_registered:
                raise NoPayeesError(track_id, action="set_auto_flush_threshold")
            previous = account.auto_flush_threshold
            account.auto_flush_threshold = amount
            tx.save(account)
            tx.emit(
                LedgerEventType.AUTO_FLUSH_THRESHOLD_UPDATED,
                track_id,
                {"previous": previous, "auto_flush_threshold": amount},
            )

        logger.info(f"Auto-flush threshold of {track_id} set to {amount} by {caller}")
        return amount

    @requires(Capability.DISTRIBUTOR)
    def flush_pending(self, caller: str, track_id: str) -> DistributionResult:
        """
        Pay out a track's whole pending balance now.

        Raises:
            ThresholdError: If nothing is pending
            NoPayeesError: If the track has no payees
            TransferFailure: If the rail refuses any transfer (balance kept)

        An open payout left by an earlier failure is finished first, with its
        original amounts; only the balance beyond it is flushed as a new payout.
        """
        with LoggingContext(track_id=track_id, caller=caller, operation="flush_pending"):
            with self.repository.transaction([track_id]) as tx:
                account = tx.account(track_id)
                if account is None or not account.is_registered:
                    raise NoPayeesError(track_id, action="flush_pending")
                if account.accrual.pending_amount == 0 and account.open_payout is None:
                    raise ThresholdError(
                        f"Nothing pending on track {track_id}",
                        amount=0,
                        track_id=track_id,
                    )
                return self._flush_pending(tx, account)

    def get_pending(self, track_id: str) -> int:
        account = self.repository.get(track_id)
        return account.accrual.pending_amount if account else 0
