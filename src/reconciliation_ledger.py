"""
Royalty Ledger - Reconciliation Ledger

Retroactive corrections to what payees received:

- POSITIVE: an extra payout, split and netted exactly like distribute and
  subject to the same global minimum.
- NEGATIVE: nothing moves now; each payee's split of the amount is added to
  its deficit and withheld from its future payouts.

Deficits never expire and never drive a transfer negative.
"""

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from capabilities import Capability, CapabilityChecker, requires
from distribution_engine import (
    DistributionEngine,
    DistributionResult,
    PayoutKind,
    compute_split,
)
from ledger_events import LedgerEventType
from monitoring.logging import LoggingContext
from royalty_exceptions import ConfigurationError
from threshold_policy import ThresholdPolicy, validate_amount
from track_accounts import checked_add
from track_repository import TrackRepository

logger = logging.getLogger(__name__)


class AdjustmentDirection(Enum):
    POSITIVE = "positive"
    NEGATIVE = "negative"


@dataclass
class AdjustmentResult:
    """Outcome of apply_adjustment."""

    track_id: str
    amount: int
    direction: AdjustmentDirection
    distribution: DistributionResult | None = None  # POSITIVE only
    deficits_added: dict[str, int] = field(default_factory=dict)  # NEGATIVE only
    deficits: dict[str, int] = field(default_factory=dict)  # After the adjustment

    def to_dict(self) -> dict[str, Any]:
        return {
            "track_id": self.track_id,
            "amount": self.amount,
            "direction": self.direction.value,
            "distribution": self.distribution.to_dict() if self.distribution else None,
            "deficits_added": dict(self.deficits_added),
            "deficits": dict(self.deficits),
        }


class ReconciliationLedger:
    """Positive adjustments and per-payee deficits."""

    def __init__(
        self,
        repository: TrackRepository,
        engine: DistributionEngine,
        policy: ThresholdPolicy,
        capabilities: CapabilityChecker,
    ):
        self.repository = repository
        self.engine = engine
        self.policy = policy
        self.capabilities = capabilities

    @staticmethod
    def _direction(direction: AdjustmentDirection | str) -> AdjustmentDirection:
        if isinstance(direction, AdjustmentDirection):
            return direction
        try:
            return AdjustmentDirection(str(direction).lower())
        except ValueError as e:
            raise ConfigurationError(
                f"Unknown adjustment direction {direction!r}",
                action="apply_adjustment",
                component="reconciliation_ledger",
            ) from e

    @requires(Capability.ADMIN)
    def apply_adjustment(
        self,
        caller: str,
        track_id: str,
        amount: int,
        direction: AdjustmentDirection | str,
    ) -> AdjustmentResult:
        """
        Apply a retroactive correction to a track.

        Raises:
            ConfigurationError: Bad direction, or a non-positive negative adjustment
            ThresholdError: POSITIVE amount below the global minimum
            NoPayeesError: If the track has no payees
            TransferFailure: POSITIVE payout refused by the rail
        """
        direction = self._direction(direction)
        if direction is AdjustmentDirection.POSITIVE:
            self.policy.check_distribution(amount, track_id)
        else:
            amount = validate_amount(
                amount, "amount", "apply_adjustment", "reconciliation_ledger", positive=True
            )

        with LoggingContext(track_id=track_id, caller=caller, operation="apply_adjustment"):
            with self.repository.transaction([track_id]) as tx:
                account = self.engine.require_payees(tx, track_id, "apply_adjustment")

                if direction is AdjustmentDirection.POSITIVE:
                    distribution = self.engine.pay_out(tx, account, amount, PayoutKind.ADJUSTMENT)
                    result = AdjustmentResult(
                        track_id=track_id,
                        amount=amount,
                        direction=direction,
                        distribution=distribution,
                        deficits=dict(account.deficits),
                    )
                else:
                    added = compute_split(amount, account.payees, self.engine.total_share_units)
                    deficits = dict(account.deficits)
                    for payee, owed in added.items():
                        if owed:
                            deficits[payee] = checked_add(deficits.get(payee, 0), owed)
                    account.deficits = deficits
                    tx.save(account)
                    result = AdjustmentResult(
                        track_id=track_id,
                        amount=amount,
                        direction=direction,
                        deficits_added=added,
                        deficits=dict(deficits),
                    )
                    tx.emit(LedgerEventType.ADJUSTMENT_APPLIED, track_id, result.to_dict())

        logger.info(f"{direction.value.capitalize()} adjustment of {amount} on {track_id} by {caller}")
        return result

    def get_deficits(self, track_id: str) -> dict[str, int]:
        """Outstanding deficit per payee (payees owing nothing are omitted)."""
        account = self.repository.get(track_id)
        return dict(account.deficits) if account else {}
