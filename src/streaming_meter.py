"""
Royalty Ledger - Streaming Meter

Turns metered usage (plays, reads, API calls...) into deposits at a fixed
per-unit rate. A rate of 0 means the track does not accept usage.
"""

import logging

from accrual_ledger import AccrualLedger, DepositResult
from capabilities import Capability, CapabilityChecker, requires
from ledger_events import LedgerEventType
from monitoring.logging import LoggingContext
from royalty_exceptions import NoPayeesError, RateNotSetError
from threshold_policy import validate_amount
from track_accounts import TrackAccount, checked_add, checked_mul
from track_repository import LedgerTransaction, TrackRepository

logger = logging.getLogger(__name__)


class StreamingMeter:
    """Per-track usage rate and usage recording."""

    def __init__(
        self,
        repository: TrackRepository,
        accrual: AccrualLedger,
        capabilities: CapabilityChecker,
    ):
        self.repository = repository
        self.accrual = accrual
        self.capabilities = capabilities

    @requires(Capability.ADMIN)
    def set_rate(self, caller: str, track_id: str, rate: int) -> int:
        """Set the amount credited per usage unit; 0 disables usage recording."""
        rate = validate_amount(rate, "rate", "set_rate", "streaming_meter")

        with self.repository.transaction([track_id]) as tx:
            account = tx.account(track_id)
            if account is None or not account.is_registered:
                raise NoPayeesError(track_id, action="set_rate")
            previous = account.streaming.rate_per_unit
            account.streaming.rate_per_unit = rate
            tx.save(account)
            tx.emit(
                LedgerEventType.RATE_UPDATED,
                track_id,
                {"previous": previous, "rate_per_unit": rate},
            )

        logger.info(f"Rate of {track_id} set to {rate} per unit by {caller}")
        return rate

    @requires(Capability.DISTRIBUTOR)
    def record_usage(self, caller: str, track_id: str, units: int) -> DepositResult:
        """
        Credit ``units * rate`` to the track's pending balance.

        Raises:
            ConfigurationError: If units is not a positive integer
            RateNotSetError: If the track's rate is 0
            NoPayeesError: If the track has no payees
            ArithmeticOverflowError: If the deposit or a running total overflows
        """
        units = validate_amount(units, "units", "record_usage", "streaming_meter", positive=True)

        with LoggingContext(track_id=track_id, caller=caller, operation="record_usage"):
            with self.repository.transaction([track_id]) as tx:
                account = tx.account(track_id)
                if account is None or not account.is_registered:
                    raise NoPayeesError(track_id, action="record_usage")
                deposit = self.usage_deposit(account, units)
                return self.apply_usage(tx, account, units, deposit)

    def usage_deposit(self, account: TrackAccount, units: int) -> int:
        """Validate a usage report against an account and price it."""
        rate = account.streaming.rate_per_unit
        if rate == 0:
            raise RateNotSetError(account.track_id)
        deposit = checked_mul(units, rate)
        checked_add(account.streaming.total_units_recorded, units)
        return deposit

    def apply_usage(
        self,
        tx: LedgerTransaction,
        account: TrackAccount,
        units: int,
        deposit: int,
    ) -> DepositResult:
        account.streaming.total_units_recorded = checked_add(
            account.streaming.total_units_recorded, units
        )
        tx.emit(
            LedgerEventType.USAGE_RECORDED,
            account.track_id,
            {
                "units": units,
                "rate_per_unit": account.streaming.rate_per_unit,
                "amount": deposit,
            },
        )
        return self.accrual.deposit(tx, account, deposit, source="usage")
