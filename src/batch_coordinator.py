"""
Royalty Ledger - Batch Coordinator

Runs one operation over many (track, value) pairs:

1. Lock every referenced track, in sorted order
2. Validate every pair against working copies, in order; a track listed
   twice is validated against the state its earlier items leave behind
3. Apply every pair, then commit all touched accounts in one write

A pair that fails validation raises BatchValidationError with its index
and nothing is applied.
"""

import logging

from accrual_ledger import DepositResult
from capabilities import Capability, CapabilityChecker, requires
from distribution_engine import DistributionEngine, DistributionResult, PayoutKind, plan_payout
from monitoring.logging import LoggingContext
from monitoring.metrics import MetricsCollector
from monitoring.metrics import metrics as default_metrics
from royalty_exceptions import (
    BatchTransferError,
    BatchValidationError,
    ConfigurationError,
    NoPayeesError,
    OpenPayoutError,
    RoyaltyLedgerError,
    TransferFailure,
)
from streaming_meter import StreamingMeter
from threshold_policy import ThresholdPolicy, validate_amount
from track_accounts import checked_add
from track_repository import TrackRepository

logger = logging.getLogger(__name__)


class BatchCoordinator:
    """Validate-all-then-apply-all multi-track operations."""

    def __init__(
        self,
        repository: TrackRepository,
        engine: DistributionEngine,
        meter: StreamingMeter,
        policy: ThresholdPolicy,
        capabilities: CapabilityChecker,
        metrics: MetricsCollector | None = None,
    ):
        self.repository = repository
        self.engine = engine
        self.meter = meter
        self.policy = policy
        self.capabilities = capabilities
        self.metrics = metrics or default_metrics

    @staticmethod
    def _pairs(track_ids: list[str], values: list[int], action: str) -> list[tuple[str, int]]:
        track_ids = list(track_ids)
        values = list(values)
        if not track_ids:
            raise ConfigurationError(
                "Batch must contain at least one item",
                action=action,
                component="batch_coordinator",
            )
        if len(track_ids) != len(values):
            raise ConfigurationError(
                f"Batch lists differ in length ({len(track_ids)} tracks, {len(values)} values)",
                action=action,
                component="batch_coordinator",
            )
        return list(zip(track_ids, values))

    @requires(Capability.DISTRIBUTOR)
    def batch_distribute(
        self,
        caller: str,
        track_ids: list[str],
        amounts: list[int],
    ) -> list[DistributionResult]:
        """
        Distribute ``amounts[i]`` on ``track_ids[i]`` for every i.

        Raises:
            BatchValidationError: If any pair is invalid or names a track with an
                open payout (nothing applied)
            TransferFailure: If the rail cannot cover the whole batch (nothing applied)
            BatchTransferError: If the rail refuses a transfer midway
        """
        pairs = self._pairs(track_ids, amounts, "batch_distribute")
        tracks = [track_id for track_id, _ in pairs]

        with LoggingContext(caller=caller, operation="batch_distribute", batch_size=len(pairs)):
            with self.repository.transaction(tracks) as tx:
                deficits: dict[str, dict[str, int]] = {}
                distributed: dict[str, int] = {}
                total_net = 0

                for index, (track_id, amount) in enumerate(pairs):
                    try:
                        self.policy.check_distribution(amount, track_id)
                        account = self.engine.require_payees(tx, track_id, "batch_distribute")
                        if account.open_payout is not None:
                            raise OpenPayoutError(
                                track_id,
                                account.open_payout.distribution_no,
                                action="batch_distribute",
                            )
                        plan = plan_payout(
                            amount,
                            account.payees,
                            deficits.get(track_id, account.deficits),
                            self.engine.total_share_units,
                        )
                        deficits[track_id] = plan.deficits_after
                        distributed[track_id] = checked_add(
                            distributed.get(track_id, account.accrual.total_distributed), amount
                        )
                        total_net = checked_add(total_net, plan.total_net)
                    except RoyaltyLedgerError as e:
                        logger.warning(f"Batch distribute rejected at item {index}: {e}")
                        raise BatchValidationError(index, e, action="batch_distribute") from e

                available = self.funds_available()
                if available < total_net:
                    self.metrics.increment(
                        "transfer_failures_total", labels={"reason": "insufficient_funds"}
                    )
                    raise TransferFailure(
                        ",".join(sorted(set(tracks))),
                        None,
                        total_net,
                        f"insufficient_funds: {available} available",
                    )

                results: list[DistributionResult] = []
                for index, (track_id, amount) in enumerate(pairs):
                    account = tx.account(track_id)
                    try:
                        results.append(
                            self.engine.pay_out(tx, account, amount, PayoutKind.DISTRIBUTION)
                        )
                    except TransferFailure as e:
                        tx.commit()
                        logger.critical(
                            f"Batch distribute stopped at item {index}; "
                            f"{len(results)} earlier item(s) paid and committed"
                        )
                        raise BatchTransferError(index, e, completed=len(results)) from e

        self.metrics.increment("batches_total", labels={"operation": "distribute"})
        logger.info(f"Batch distributed {len(results)} items over {len(set(tracks))} tracks")
        return results

    def funds_available(self) -> int:
        return self.engine.funds.query_available_balance()

    @requires(Capability.DISTRIBUTOR)
    def batch_record_usage(
        self,
        caller: str,
        track_ids: list[str],
        units: list[int],
    ) -> list[DepositResult]:
        """
        Record ``units[i]`` of usage on ``track_ids[i]`` for every i.

        Raises:
            BatchValidationError: If any pair is invalid (nothing applied)
        """
        pairs = self._pairs(track_ids, units, "batch_record_usage")
        tracks = [track_id for track_id, _ in pairs]

        with LoggingContext(caller=caller, operation="batch_record_usage", batch_size=len(pairs)):
            with self.repository.transaction(tracks) as tx:
                deposits: list[int] = []
                pending: dict[str, int] = {}
                recorded: dict[str, int] = {}

                for index, (track_id, count) in enumerate(pairs):
                    try:
                        count = validate_amount(
                            count, "units", "batch_record_usage", "streaming_meter", positive=True
                        )
                        account = tx.account(track_id)
                        if account is None or not account.is_registered:
                            raise NoPayeesError(track_id, action="batch_record_usage")
                        deposit = self.meter.usage_deposit(account, count)

                        recorded[track_id] = checked_add(
                            recorded.get(track_id, account.streaming.total_units_recorded), count
                        )
                        balance = checked_add(
                            pending.get(track_id, account.accrual.pending_amount), deposit
                        )
                        threshold = account.auto_flush_threshold
                        pending[track_id] = 0 if threshold and balance >= threshold else balance
                        deposits.append(deposit)
                    except RoyaltyLedgerError as e:
                        logger.warning(f"Batch usage rejected at item {index}: {e}")
                        raise BatchValidationError(index, e, action="batch_record_usage") from e

                results = [
                    self.meter.apply_usage(tx, tx.account(track_id), count, deposit)
                    for (track_id, count), deposit in zip(pairs, deposits)
                ]

        self.metrics.increment("batches_total", labels={"operation": "record_usage"})
        logger.info(f"Batch recorded usage for {len(results)} items over {len(set(tracks))} tracks")
        return results
