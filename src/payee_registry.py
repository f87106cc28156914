"""
Royalty Ledger - Payee Registry

Keeps the ordered payee list of each track. Share units always sum to the
configured total (default 10000, so one unit is 0.01%).

Registration order matters: the last payee absorbs split remainders, and
ties in removal redistribution go to the earliest registered payee.
"""

import logging

from capabilities import Capability, CapabilityChecker, requires
from ledger_events import LedgerEventType
from monitoring.logging import LoggingContext
from royalty_exceptions import ConfigurationError, LastPayeeError, PayeeNotFoundError
from track_accounts import DEFAULT_TOTAL_SHARE_UNITS, PayeeShare
from track_repository import TrackRepository

logger = logging.getLogger(__name__)


def validate_share_config(
    payees: list[str],
    share_units: list[int],
    total_share_units: int = DEFAULT_TOTAL_SHARE_UNITS,
    track_id: str | None = None,
) -> list[PayeeShare]:
    """
    Check a payee/share configuration and build the share list.

    Raises:
        ConfigurationError: On empty or mismatched lists, duplicate or blank
            payees, non-positive units, or units not summing to the total
    """

    def reject(message: str, **details) -> ConfigurationError:
        return ConfigurationError(
            message, action="register_payees", track_id=track_id, details=details
        )

    payees = list(payees)
    share_units = list(share_units)

    if not payees:
        raise reject("At least one payee is required")
    if len(payees) != len(share_units):
        raise reject(
            "Payee and share lists differ in length",
            payees=len(payees),
            share_units=len(share_units),
        )

    seen: set[str] = set()
    for payee in payees:
        if not isinstance(payee, str) or not payee.strip():
            raise reject(f"Invalid payee identity {payee!r}")
        if payee in seen:
            raise reject(f"Duplicate payee {payee}", payee=payee)
        seen.add(payee)

    for payee, units in zip(payees, share_units):
        if isinstance(units, bool) or not isinstance(units, int) or units <= 0:
            raise reject(f"Share units for {payee} must be a positive integer", payee=payee)

    total = sum(share_units)
    if total != total_share_units:
        raise reject(
            f"Share units sum to {total}, expected {total_share_units}",
            total=total,
            expected=total_share_units,
        )

    return [PayeeShare(payee=p, share_units=u) for p, u in zip(payees, share_units)]


def redistribute_removed_share(shares: list[PayeeShare], index: int) -> list[PayeeShare]:
    """
    Remove ``shares[index]`` and hand its units to the survivors.

    Each survivor gains floor(removed * own / survivors_total). The integer
    remainder goes to the survivor with the largest existing share, the
    earliest registered one on ties.
    """
    removed = shares[index].share_units
    survivors = [PayeeShare(s.payee, s.share_units) for i, s in enumerate(shares) if i != index]
    if not survivors:
        raise ValueError("Cannot redistribute a share with no survivors")

    survivors_total = sum(s.share_units for s in survivors)
    gains = [removed * s.share_units // survivors_total for s in survivors]
    remainder = removed - sum(gains)

    # max() keeps the first of equal keys
    largest = max(range(len(survivors)), key=lambda i: survivors[i].share_units)
    gains[largest] += remainder

    for share, gain in zip(survivors, gains):
        share.share_units += gain
    return survivors


class PayeeRegistry:
    """Registers and removes payees per track."""

    def __init__(
        self,
        repository: TrackRepository,
        capabilities: CapabilityChecker,
        total_share_units: int = DEFAULT_TOTAL_SHARE_UNITS,
    ):
        self.repository = repository
        self.capabilities = capabilities
        self.total_share_units = total_share_units

    @requires(Capability.ADMIN)
    def register_payees(
        self,
        caller: str,
        track_id: str,
        payees: list[str],
        share_units: list[int],
    ) -> list[PayeeShare]:
        """
        Replace a track's payee set.

        Creates the track on first registration. Pending accrual, deficits
        and thresholds are left as they are.
        """
        shares = validate_share_config(payees, share_units, self.total_share_units, track_id)

        with LoggingContext(track_id=track_id, caller=caller, operation="register_payees"):
            with self.repository.transaction([track_id]) as tx:
                account = tx.account(track_id, create=True)
                previous = [s.to_dict() for s in account.payees]
                account.payees = shares
                tx.save(account)
                tx.emit(
                    LedgerEventType.PAYEES_REGISTERED,
                    track_id,
                    {"payees": [s.to_dict() for s in shares], "previous": previous},
                )

            logger.info(f"Registered {len(shares)} payees on {track_id}")
        return [PayeeShare(s.payee, s.share_units) for s in shares]

    @requires(Capability.ADMIN)
    def remove_payee(self, caller: str, track_id: str, payee: str) -> list[PayeeShare]:
        """
        Remove one payee and redistribute its units proportionally.

        Raises:
            PayeeNotFoundError: If the payee is not registered on the track
            LastPayeeError: If it is the only payee
        """
        with LoggingContext(track_id=track_id, caller=caller, operation="remove_payee"):
            with self.repository.transaction([track_id]) as tx:
                account = tx.account(track_id)
                index = account.find_payee(payee) if account else None
                if index is None:
                    raise PayeeNotFoundError(track_id, payee)
                if len(account.payees) == 1:
                    raise LastPayeeError(track_id, payee)

                removed_units = account.payees[index].share_units
                account.payees = redistribute_removed_share(account.payees, index)
                tx.save(account)
                tx.emit(
                    LedgerEventType.PAYEE_REMOVED,
                    track_id,
                    {
                        "payee": payee,
                        "removed_units": removed_units,
                        "payees": [s.to_dict() for s in account.payees],
                    },
                )

            logger.info(f"Removed {payee} from {track_id}; {removed_units} units redistributed")
            return [PayeeShare(s.payee, s.share_units) for s in account.payees]

    def get_shares(self, track_id: str) -> list[PayeeShare]:
        account = self.repository.get(track_id)
        return list(account.payees) if account else []

    def get_payee_count(self, track_id: str) -> int:
        return len(self.get_shares(track_id))
