"""
Royalty Ledger - Funds Transfer Collaborator

The ledger never holds money itself. Payouts are requested from a
FundsTransfer implementation (token ledger, payment rail, ...), once per
payee per distributing operation.

Each transfer carries a reference that is stable across retries of the
same distribution, so a rail that records references can refuse to pay
the same reference twice.
"""

import logging
import threading
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime
from typing import Any

logger = logging.getLogger(__name__)


@dataclass
class TransferResult:
    """Outcome of a single transfer request."""

    success: bool
    reason: str | None = None
    tx_ref: str | None = None

    @classmethod
    def ok(cls, tx_ref: str | None = None) -> "TransferResult":
        return cls(success=True, tx_ref=tx_ref)

    @classmethod
    def failed(cls, reason: str) -> "TransferResult":
        return cls(success=False, reason=reason)


class FundsTransfer(ABC):
    """Payment rail used to pay out distributions."""

    @abstractmethod
    def transfer_to(self, payee: str, amount: int, reference: str) -> TransferResult:
        """
        Pay ``amount`` to ``payee``.

        Args:
            payee: Payee identity
            amount: Positive amount in the smallest currency unit
            reference: Idempotency reference, identical across retries

        Returns:
            TransferResult; any non-success aborts the calling distribution
        """
        pass

    @abstractmethod
    def query_available_balance(self) -> int:
        """Funds currently available for payouts."""
        pass


@dataclass
class TransferRecord:
    """A completed in-memory transfer."""

    reference: str
    payee: str
    amount: int
    timestamp: str

    def to_dict(self) -> dict[str, Any]:
        return {
            "reference": self.reference,
            "payee": self.payee,
            "amount": self.amount,
            "timestamp": self.timestamp,
        }


class InMemoryFundsTransfer(FundsTransfer):
    """
    Reference rail keeping balances in memory.

    Tracks the pool balance and per-payee credits, treats a repeated
    reference as already paid, and can be told to fail for chosen payees.
    """

    def __init__(self, initial_balance: int = 0):
        self._lock = threading.Lock()
        self.balance = initial_balance
        self.credited: dict[str, int] = {}
        self.transfers: list[TransferRecord] = []
        self._references: set[str] = set()
        self._failing: dict[str, str] = {}  # payee -> reason

    def fund(self, amount: int) -> None:
        """Add money to the payout pool."""
        with self._lock:
            self.balance += amount

    def fail_for(self, payee: str, reason: str = "rail_unavailable") -> None:
        """Make transfers to ``payee`` fail until cleared."""
        with self._lock:
            self._failing[payee] = reason

    def clear_failures(self) -> None:
        with self._lock:
            self._failing.clear()

    def transfer_to(self, payee: str, amount: int, reference: str) -> TransferResult:
        with self._lock:
            if reference in self._references:
                return TransferResult.ok(tx_ref=reference)
            if payee in self._failing:
                return TransferResult.failed(self._failing[payee])
            if amount <= 0:
                return TransferResult.failed("non_positive_amount")
            if amount > self.balance:
                return TransferResult.failed("insufficient_funds")

            self.balance -= amount
            self.credited[payee] = self.credited.get(payee, 0) + amount
            self._references.add(reference)
            self.transfers.append(
                TransferRecord(
                    reference=reference,
                    payee=payee,
                    amount=amount,
                    timestamp=datetime.utcnow().isoformat(),
                )
            )
            logger.debug(f"Transferred {amount} to {payee} ({reference})")
            return TransferResult.ok(tx_ref=reference)

    def query_available_balance(self) -> int:
        with self._lock:
            return self.balance

    def credited_to(self, payee: str) -> int:
        with self._lock:
            return self.credited.get(payee, 0)
