"""
Royalty Ledger - Distribution Engine

Splits an amount among a track's payees and pays each share through the
funds transfer collaborator.

Split rule:
- Every payee but the last gets floor(amount * share_units / total)
- The last payee gets amount minus everything already allocated
- The parts always sum to the amount exactly

Before any transfer, each payee's outstanding deficit is netted against its
part. A payee owing more than its part receives nothing and keeps owing the
difference. Zero net parts are not sent to the rail.

A payout that fails before any transfer went through commits nothing.
One that fails after paying some payees is recorded on the account as an
open payout: its parts and transfer references (track, payout number,
payee, amount) are frozen, and the next payout on the track first sends the
unpaid parts with those same references. Parts are never recomputed from a
balance that changed in between, so no payee is paid twice.
"""

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from capabilities import Capability, CapabilityChecker, requires
from funds_transfer import FundsTransfer
from ledger_events import LedgerEventType
from monitoring.logging import LoggingContext
from monitoring.metrics import MetricsCollector
from monitoring.metrics import metrics as default_metrics
from royalty_exceptions import (
    ConfigurationError,
    NoPayeesError,
    TransferFailure,
)
from threshold_policy import ThresholdPolicy
from track_accounts import (
    DEFAULT_TOTAL_SHARE_UNITS,
    MAX_AMOUNT,
    OpenPayout,
    PayeeShare,
    TrackAccount,
    checked_add,
)
from track_repository import LedgerTransaction, TrackRepository

logger = logging.getLogger(__name__)


class PayoutKind(Enum):
    """What triggered a payout."""

    DISTRIBUTION = "distribution"
    FLUSH = "flush"
    ADJUSTMENT = "adjustment"


# =============================================================================
# Pure split computation
# =============================================================================


def compute_split(
    amount: int,
    shares: list[PayeeShare],
    total_share_units: int = DEFAULT_TOTAL_SHARE_UNITS,
) -> dict[str, int]:
    """
    Split ``amount`` exactly among ``shares``.

    Args:
        amount: Non-negative integer amount
        shares: Ordered payee shares; their units must sum to total_share_units
        total_share_units: Share total the units are expressed against

    Returns:
        payee -> part, in registration order, summing to ``amount``
    """
    if amount < 0 or amount > MAX_AMOUNT:
        raise ConfigurationError(
            f"Cannot split amount {amount}",
            action="compute_split",
            component="distribution_engine",
        )
    if not shares:
        raise ConfigurationError(
            "Cannot split among zero payees",
            action="compute_split",
            component="distribution_engine",
        )
    if sum(s.share_units for s in shares) != total_share_units:
        raise ConfigurationError(
            f"Share units do not sum to {total_share_units}",
            action="compute_split",
            component="distribution_engine",
        )

    parts: dict[str, int] = {}
    allocated = 0
    for share in shares[:-1]:
        part = amount * share.share_units // total_share_units
        parts[share.payee] = part
        allocated += part
    parts[shares[-1].payee] = amount - allocated
    return parts


@dataclass
class PayoutPlan:
    """Gross parts, netted parts and the deficits left afterwards."""

    gross: dict[str, int]
    net: dict[str, int]
    deficits_applied: dict[str, int]
    deficits_after: dict[str, int]

    @property
    def total_net(self) -> int:
        return sum(self.net.values())


def plan_payout(
    amount: int,
    shares: list[PayeeShare],
    deficits: dict[str, int],
    total_share_units: int = DEFAULT_TOTAL_SHARE_UNITS,
) -> PayoutPlan:
    """Compute the split and net each part against the payee's deficit."""
    gross = compute_split(amount, shares, total_share_units)
    net: dict[str, int] = {}
    applied: dict[str, int] = {}
    remaining = dict(deficits)

    for payee, part in gross.items():
        owed = remaining.get(payee, 0)
        offset = min(owed, part)
        net[payee] = part - offset
        if offset:
            applied[payee] = offset
        if owed - offset > 0:
            remaining[payee] = owed - offset
        else:
            remaining.pop(payee, None)

    return PayoutPlan(gross=gross, net=net, deficits_applied=applied, deficits_after=remaining)


@dataclass
class DistributionResult:
    """A committed payout."""

    track_id: str
    amount: int
    kind: PayoutKind
    distribution_no: int
    per_payee_amounts: dict[str, int] = field(default_factory=dict)  # gross split
    net_amounts: dict[str, int] = field(default_factory=dict)  # actually transferred
    deficits_applied: dict[str, int] = field(default_factory=dict)

    @property
    def total_transferred(self) -> int:
        return sum(self.net_amounts.values())

    def to_dict(self) -> dict[str, Any]:
        return {
            "track_id": self.track_id,
            "amount": self.amount,
            "kind": self.kind.value,
            "distribution_no": self.distribution_no,
            "per_payee_amounts": dict(self.per_payee_amounts),
            "net_amounts": dict(self.net_amounts),
            "deficits_applied": dict(self.deficits_applied),
        }


# =============================================================================
# Engine
# =============================================================================


class DistributionEngine:
    """Pays out split amounts for one track at a time."""

    def __init__(
        self,
        repository: TrackRepository,
        funds: FundsTransfer,
        capabilities: CapabilityChecker,
        policy: ThresholdPolicy,
        total_share_units: int = DEFAULT_TOTAL_SHARE_UNITS,
        metrics: MetricsCollector | None = None,
    ):
        self.repository = repository
        self.funds = funds
        self.capabilities = capabilities
        self.policy = policy
        self.total_share_units = total_share_units
        self.metrics = metrics or default_metrics

    @requires(Capability.DISTRIBUTOR)
    def distribute(self, caller: str, track_id: str, amount: int) -> DistributionResult:
        """
        Split ``amount`` among the track's payees and pay every part.

        Raises:
            ThresholdError: If amount is negative or below the global minimum
            NoPayeesError: If the track has no payees
            TransferFailure: If the rail refuses a transfer (a partly paid payout
                stays open on the account)
            BusyError: If the track stays locked past the lock timeout
        """
        self.policy.check_distribution(amount, track_id)

        with LoggingContext(track_id=track_id, caller=caller, operation="distribute"):
            with self.repository.transaction([track_id]) as tx:
                account = self.require_payees(tx, track_id, "distribute")
                return self.pay_out(tx, account, amount, PayoutKind.DISTRIBUTION)

    def flush(self, tx: LedgerTransaction, track_id: str, amount: int) -> DistributionResult:
        """
        Pay out ``amount`` for a track locked by ``tx``, ignoring the global minimum.

        Completing the flush deducts ``amount`` from the pending balance.
        """
        account = self.require_payees(tx, track_id, "flush")
        return self.pay_out(tx, account, amount, PayoutKind.FLUSH)

    @staticmethod
    def require_payees(tx: LedgerTransaction, track_id: str, action: str) -> TrackAccount:
        account = tx.account(track_id)
        if account is None or not account.is_registered:
            raise NoPayeesError(track_id, action=action)
        return account

    def plan(self, account: TrackAccount, amount: int) -> PayoutPlan:
        return plan_payout(amount, account.payees, account.deficits, self.total_share_units)

    def pay_out(
        self,
        tx: LedgerTransaction,
        account: TrackAccount,
        amount: int,
        kind: PayoutKind,
    ) -> DistributionResult:
        """
        Transfer every netted part, then record the payout on the working copy.

        An unfinished payout on the account is completed first. When it has
        the same kind and amount as this call (a retry), completing it is the
        whole result; flushes never match since their amount is the balance.
        """
        resumed = self.resume(tx, account)
        if (
            resumed is not None
            and kind is not PayoutKind.FLUSH
            and resumed.kind is kind
            and resumed.amount == amount
        ):
            return resumed

        plan = self.plan(account, amount)
        checked_add(account.accrual.total_distributed, amount)
        payout = OpenPayout(
            distribution_no=account.distribution_count + 1,
            kind=kind.value,
            amount=amount,
            gross=plan.gross,
            net=plan.net,
            deficits_applied=plan.deficits_applied,
        )
        return self._execute(tx, account, payout)

    def resume(self, tx: LedgerTransaction, account: TrackAccount) -> DistributionResult | None:
        """Finish the account's unfinished payout with its original references."""
        payout = account.open_payout
        if payout is None:
            return None
        logger.warning(
            f"Resuming payout #{payout.distribution_no} of {payout.amount} on "
            f"{account.track_id} ({len(payout.paid)} part(s) already paid)"
        )
        result = self._execute(tx, account, payout)
        # Money moved; later failures in the same transaction must not undo this
        tx.keep_on_error()
        return result

    def _execute(
        self,
        tx: LedgerTransaction,
        account: TrackAccount,
        payout: OpenPayout,
    ) -> DistributionResult:
        track_id = account.track_id
        kind = PayoutKind(payout.kind)
        unpaid = payout.unpaid()

        with self.repository.distributing(track_id), \
                self.metrics.timer("distribution_duration_ms", {"kind": kind.value}):
            self._check_available(track_id, sum(unpaid.values()))
            for payee, net in unpaid.items():
                try:
                    self._transfer(track_id, payee, net, payout.reference(track_id, payee))
                except TransferFailure:
                    if payout.paid:
                        self._keep_open(tx, account, payout)
                    raise
                payout.paid.append(payee)

        return self._complete(tx, account, payout)

    @staticmethod
    def _keep_open(tx: LedgerTransaction, account: TrackAccount, payout: OpenPayout) -> None:
        """Record a payout some payees were already paid for; it commits despite the failure."""
        account.open_payout = payout
        tx.save(account)
        tx.keep_on_error()
        logger.critical(
            f"Payout #{payout.distribution_no} on {account.track_id} stopped after paying "
            f"{', '.join(payout.paid)}; recorded for completion"
        )

    def _complete(
        self,
        tx: LedgerTransaction,
        account: TrackAccount,
        payout: OpenPayout,
    ) -> DistributionResult:
        track_id = account.track_id
        kind = PayoutKind(payout.kind)

        deficits = dict(account.deficits)
        for payee, offset in payout.deficits_applied.items():
            left = deficits.get(payee, 0) - offset
            if left > 0:
                deficits[payee] = left
            else:
                deficits.pop(payee, None)

        account.accrual.total_distributed = checked_add(
            account.accrual.total_distributed, payout.amount
        )
        if kind is PayoutKind.FLUSH:
            account.accrual.pending_amount -= payout.amount
        account.deficits = deficits
        account.distribution_count = payout.distribution_no
        account.open_payout = None
        tx.save(account)

        result = DistributionResult(
            track_id=track_id,
            amount=payout.amount,
            kind=kind,
            distribution_no=payout.distribution_no,
            per_payee_amounts=dict(payout.gross),
            net_amounts=dict(payout.net),
            deficits_applied=dict(payout.deficits_applied),
        )
        if kind is PayoutKind.ADJUSTMENT:
            tx.emit(
                LedgerEventType.ADJUSTMENT_APPLIED,
                track_id,
                {**result.to_dict(), "direction": "positive"},
            )
        else:
            tx.emit(LedgerEventType.DISTRIBUTION_COMPLETED, track_id, result.to_dict())

        total_net = result.total_transferred
        self.metrics.increment("distributions_total", labels={"kind": kind.value})
        self.metrics.increment("distributed_amount_total", total_net)
        logger.info(
            f"{kind.value.capitalize()} #{payout.distribution_no} of {payout.amount} on "
            f"{track_id} to {len(payout.gross)} payees ({total_net} transferred)"
        )
        return result

    def _check_available(self, track_id: str, total: int) -> None:
        available = self.funds.query_available_balance()
        if available < total:
            self.metrics.increment("transfer_failures_total", labels={"reason": "insufficient_funds"})
            logger.error(f"Payout of {total} on {track_id} exceeds available funds {available}")
            raise TransferFailure(
                track_id,
                None,
                total,
                f"insufficient_funds: {available} available",
            )

    def _transfer(self, track_id: str, payee: str, amount: int, reference: str) -> None:
        try:
            result = self.funds.transfer_to(payee, amount, reference)
        except Exception as e:
            self.metrics.increment("transfer_failures_total", labels={"reason": "exception"})
            logger.exception(f"Transfer {reference} raised")
            raise TransferFailure(track_id, payee, amount, str(e), cause=e) from e

        if not result.success:
            reason = result.reason or "rejected"
            self.metrics.increment("transfer_failures_total", labels={"reason": reason})
            logger.error(f"Transfer {reference} of {amount} to {payee} failed: {reason}")
            raise TransferFailure(track_id, payee, amount, reason)
