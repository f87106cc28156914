"""
Royalty Ledger - Threshold Policy

Two thresholds gate payouts:

- Global minimum: the smallest amount a caller may distribute or adjust
  upwards in one call. Flushes skip it, so small accrued balances are
  never stranded.
- Auto-flush threshold: per-track; once a track's pending balance reaches
  it, the deposit that crossed it flushes the whole balance. 0 disables.
"""

import logging
import threading

from capabilities import Capability, CapabilityChecker, requires
from ledger_events import EventLog, LedgerEvent, LedgerEventType
from royalty_exceptions import ConfigurationError, ThresholdError
from track_accounts import MAX_AMOUNT, ThresholdConfig, TrackAccount

logger = logging.getLogger(__name__)


def validate_amount(value, name: str, action: str, component: str, positive: bool = False) -> int:
    """Reject non-integer, negative (or zero, when positive) and out-of-range amounts."""
    if isinstance(value, bool) or not isinstance(value, int):
        raise ConfigurationError(
            f"{name} must be an integer, got {type(value).__name__}",
            action=action,
            component=component,
        )
    if value < 0 or (positive and value == 0):
        qualifier = "positive" if positive else "non-negative"
        raise ConfigurationError(
            f"{name} must be {qualifier}, got {value}",
            action=action,
            component=component,
        )
    if value > MAX_AMOUNT:
        raise ConfigurationError(
            f"{name} exceeds the maximum amount",
            action=action,
            component=component,
            details={name: str(value)},
        )
    return value


class ThresholdPolicy:
    """Holds the global minimum and evaluates per-track auto-flush."""

    def __init__(
        self,
        capabilities: CapabilityChecker,
        event_log: EventLog,
        global_minimum: int = 0,
    ):
        self.capabilities = capabilities
        self.event_log = event_log
        self._lock = threading.Lock()
        self._global_minimum = validate_amount(
            global_minimum, "global_minimum", "init", "threshold_policy"
        )

    @property
    def global_minimum(self) -> int:
        with self._lock:
            return self._global_minimum

    @requires(Capability.ADMIN)
    def set_global_minimum(self, caller: str, amount: int) -> int:
        """Set the minimum amount accepted by distribute and positive adjustments."""
        amount = validate_amount(amount, "amount", "set_global_minimum", "threshold_policy")
        with self._lock:
            previous = self._global_minimum
            self._global_minimum = amount

        self.event_log.publish([
            LedgerEvent(
                event_type=LedgerEventType.GLOBAL_MINIMUM_UPDATED,
                track_id=None,
                data={"previous": previous, "global_minimum": amount, "caller": caller},
            )
        ])
        logger.info(f"Global minimum changed from {previous} to {amount} by {caller}")
        return amount

    def check_distribution(self, amount: int, track_id: str | None = None) -> None:
        """
        Raise ThresholdError unless ``amount`` may be distributed.

        Negative and non-integer amounts are rejected as well as amounts
        below the global minimum.
        """
        if isinstance(amount, bool) or not isinstance(amount, int):
            raise ThresholdError(
                f"Distribution amount must be an integer, got {type(amount).__name__}",
                track_id=track_id,
            )
        if amount < 0:
            raise ThresholdError(
                f"Distribution amount cannot be negative: {amount}",
                amount=amount,
                track_id=track_id,
            )
        if amount > MAX_AMOUNT:
            raise ThresholdError(
                "Distribution amount exceeds the maximum amount",
                amount=amount,
                track_id=track_id,
            )
        minimum = self.global_minimum
        if amount < minimum:
            raise ThresholdError(
                f"Amount {amount} is below the global minimum {minimum}",
                amount=amount,
                minimum=minimum,
                track_id=track_id,
            )

    def should_auto_flush(self, account: TrackAccount) -> bool:
        threshold = account.auto_flush_threshold
        return threshold > 0 and account.accrual.pending_amount >= threshold

    def get_threshold_config(self, account: TrackAccount | None) -> ThresholdConfig:
        return ThresholdConfig(
            global_minimum=self.global_minimum,
            auto_flush_threshold=account.auto_flush_threshold if account else 0,
        )
