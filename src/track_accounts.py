"""
Royalty Ledger - Track Account Records

One TrackAccount per content item, addressed by an opaque track id.
The account owns its payee list, accrual state, auto-flush threshold,
streaming configuration and deficit map; nothing else holds a reference
to a live account.

Amounts are integers in the smallest currency unit.
"""

import copy
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any

from royalty_exceptions import ArithmeticOverflowError

# =============================================================================
# Constants
# =============================================================================

DEFAULT_TOTAL_SHARE_UNITS = 10_000  # 1 unit = 0.01%
MAX_AMOUNT = 2**128 - 1  # Largest amount any balance or payout may hold


# =============================================================================
# Checked arithmetic
# =============================================================================


def checked_add(a: int, b: int, limit: int = MAX_AMOUNT) -> int:
    """Add two amounts, raising ArithmeticOverflowError past the limit."""
    result = a + b
    if result > limit:
        raise ArithmeticOverflowError("add", (a, b), limit)
    return result


def checked_mul(a: int, b: int, limit: int = MAX_AMOUNT) -> int:
    """Multiply two amounts, raising ArithmeticOverflowError past the limit."""
    result = a * b
    if result > limit:
        raise ArithmeticOverflowError("mul", (a, b), limit)
    return result


# =============================================================================
# Enums
# =============================================================================


class TrackState(Enum):
    """Lifecycle of a track as seen by the ledger."""

    UNREGISTERED = "unregistered"  # No payees yet
    ACCRUING = "accruing"  # Registered, idle or collecting deposits
    DISTRIBUTING = "distributing"  # A payout is in flight


# =============================================================================
# Data Classes
# =============================================================================


@dataclass
class PayeeShare:
    """A payee and its share weight."""

    payee: str
    share_units: int

    def to_dict(self) -> dict[str, Any]:
        return {"payee": self.payee, "share_units": self.share_units}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "PayeeShare":
        return cls(payee=data["payee"], share_units=int(data["share_units"]))


@dataclass
class AccrualState:
    """Revenue collected for a track but not yet distributed."""

    pending_amount: int = 0
    total_deposited: int = 0
    total_distributed: int = 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "pending_amount": self.pending_amount,
            "total_deposited": self.total_deposited,
            "total_distributed": self.total_distributed,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "AccrualState":
        return cls(
            pending_amount=int(data.get("pending_amount", 0)),
            total_deposited=int(data.get("total_deposited", 0)),
            total_distributed=int(data.get("total_distributed", 0)),
        )


@dataclass
class StreamingConfig:
    """Metered usage configuration for a track."""

    rate_per_unit: int = 0  # 0 disables usage recording
    total_units_recorded: int = 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "rate_per_unit": self.rate_per_unit,
            "total_units_recorded": self.total_units_recorded,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "StreamingConfig":
        return cls(
            rate_per_unit=int(data.get("rate_per_unit", 0)),
            total_units_recorded=int(data.get("total_units_recorded", 0)),
        )


@dataclass
class ThresholdConfig:
    """Effective thresholds for a track (global minimum plus per-track auto-flush)."""

    global_minimum: int = 0
    auto_flush_threshold: int = 0  # 0 disables auto-flush

    def to_dict(self) -> dict[str, Any]:
        return {
            "global_minimum": self.global_minimum,
            "auto_flush_threshold": self.auto_flush_threshold,
        }


@dataclass
class OpenPayout:
    """
    A payout whose transfers went out only in part.

    Kept on the account until every unpaid part is sent with its original
    reference; the parts are never recomputed.
    """

    distribution_no: int
    kind: str
    amount: int
    gross: dict[str, int] = field(default_factory=dict)
    net: dict[str, int] = field(default_factory=dict)
    deficits_applied: dict[str, int] = field(default_factory=dict)
    paid: list[str] = field(default_factory=list)

    def reference(self, track_id: str, payee: str) -> str:
        return f"{track_id}:{self.distribution_no}:{payee}:{self.net[payee]}"

    def unpaid(self) -> dict[str, int]:
        """Non-zero parts not yet accepted by the rail, in payout order."""
        return {p: n for p, n in self.net.items() if n and p not in self.paid}

    def to_dict(self) -> dict[str, Any]:
        return {
            "distribution_no": self.distribution_no,
            "kind": self.kind,
            "amount": self.amount,
            "gross": dict(self.gross),
            "net": dict(self.net),
            "deficits_applied": dict(self.deficits_applied),
            "paid": list(self.paid),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "OpenPayout":
        return cls(
            distribution_no=int(data["distribution_no"]),
            kind=data["kind"],
            amount=int(data["amount"]),
            gross={k: int(v) for k, v in data.get("gross", {}).items()},
            net={k: int(v) for k, v in data.get("net", {}).items()},
            deficits_applied={k: int(v) for k, v in data.get("deficits_applied", {}).items()},
            paid=list(data.get("paid", [])),
        )


@dataclass
class TrackAccount:
    """All ledger state for one track."""

    track_id: str
    payees: list[PayeeShare] = field(default_factory=list)
    accrual: AccrualState = field(default_factory=AccrualState)
    auto_flush_threshold: int = 0
    streaming: StreamingConfig = field(default_factory=StreamingConfig)
    deficits: dict[str, int] = field(default_factory=dict)
    # Incremented on every committed write; used for optimistic concurrency
    version: int = 0
    # Incremented per payout; forms part of transfer idempotency references
    distribution_count: int = 0
    open_payout: OpenPayout | None = None
    created_at: str = field(default_factory=lambda: datetime.utcnow().isoformat())
    updated_at: str = field(default_factory=lambda: datetime.utcnow().isoformat())

    @property
    def is_registered(self) -> bool:
        return bool(self.payees)

    def payee_names(self) -> list[str]:
        return [share.payee for share in self.payees]

    def share_total(self) -> int:
        return sum(share.share_units for share in self.payees)

    def find_payee(self, payee: str) -> int | None:
        """Return the registration index of a payee, or None."""
        for idx, share in enumerate(self.payees):
            if share.payee == payee:
                return idx
        return None

    def working_copy(self) -> "TrackAccount":
        """Deep copy used for validate-then-commit mutations."""
        return copy.deepcopy(self)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary (persisted record layout)."""
        return {
            "track_id": self.track_id,
            "payees": [share.to_dict() for share in self.payees],
            "accrual": self.accrual.to_dict(),
            "auto_flush_threshold": self.auto_flush_threshold,
            "streaming": self.streaming.to_dict(),
            "deficits": dict(self.deficits),
            "version": self.version,
            "distribution_count": self.distribution_count,
            "open_payout": self.open_payout.to_dict() if self.open_payout else None,
            "created_at": self.created_at,
            "updated_at": self.updated_at,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "TrackAccount":
        """Create from dictionary."""
        return cls(
            track_id=data["track_id"],
            payees=[PayeeShare.from_dict(p) for p in data.get("payees", [])],
            accrual=AccrualState.from_dict(data.get("accrual", {})),
            auto_flush_threshold=int(data.get("auto_flush_threshold", 0)),
            streaming=StreamingConfig.from_dict(data.get("streaming", {})),
            deficits={k: int(v) for k, v in data.get("deficits", {}).items()},
            version=int(data.get("version", 0)),
            distribution_count=int(data.get("distribution_count", 0)),
            open_payout=(
                OpenPayout.from_dict(data["open_payout"]) if data.get("open_payout") else None
            ),
            created_at=data.get("created_at", datetime.utcnow().isoformat()),
            updated_at=data.get("updated_at", datetime.utcnow().isoformat()),
        )
