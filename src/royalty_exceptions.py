"""
Royalty Ledger - Exception Hierarchy

Provides a consistent set of exceptions for every ledger component.
All exceptions include structured error context for debugging and monitoring,
plus a category a transport layer can map onto its own status codes:

- client_error: bad configuration, unknown payees, threshold violations
- permission_denied: missing capability
- server_retryable: transfer failures, overflow, lock contention
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any


class ErrorSeverity(Enum):
    """Severity levels for ledger errors."""
    LOW = "low"           # Expected rejection, no action needed
    MEDIUM = "medium"     # Should be monitored
    HIGH = "high"         # Requires attention
    CRITICAL = "critical" # Funds may be affected


class ErrorCategory(Enum):
    """How a transport layer should surface an error."""
    CLIENT_ERROR = "client_error"
    PERMISSION_DENIED = "permission_denied"
    SERVER_RETRYABLE = "server_retryable"


@dataclass
class ErrorContext:
    """Structured context for error tracking and debugging."""
    component: str
    action: str
    timestamp: str = field(default_factory=lambda: datetime.utcnow().isoformat() + "Z")
    details: dict[str, Any] = field(default_factory=dict)
    severity: ErrorSeverity = ErrorSeverity.MEDIUM

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for logging."""
        return {
            "component": self.component,
            "action": self.action,
            "timestamp": self.timestamp,
            "details": self.details,
            "severity": self.severity.value
        }


class RoyaltyLedgerError(Exception):
    """
    Base exception for all ledger errors.

    Every error raised by a ledger operation is raised before any state is
    committed, unless documented otherwise on the subclass.
    """

    category: ErrorCategory = ErrorCategory.CLIENT_ERROR
    retryable: bool = False

    def __init__(
        self,
        message: str,
        component: str = "unknown",
        action: str = "unknown",
        severity: ErrorSeverity = ErrorSeverity.MEDIUM,
        details: dict[str, Any] | None = None,
        cause: Exception | None = None
    ):
        super().__init__(message)
        self.message = message
        self.context = ErrorContext(
            component=component,
            action=action,
            severity=severity,
            details=details or {}
        )
        self.cause = cause

        if cause:
            self.__cause__ = cause

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for logging/serialization."""
        result = {
            "error_type": type(self).__name__,
            "message": self.message,
            "category": self.category.value,
            "retryable": self.retryable,
            **self.context.to_dict()
        }
        if self.cause:
            result["cause"] = {
                "type": type(self.cause).__name__,
                "message": str(self.cause)
            }
        return result

    def __str__(self) -> str:
        base = f"[{self.context.component}:{self.context.action}] {self.message}"
        if self.cause:
            base += f" (caused by: {self.cause})"
        return base


# =============================================================================
# Client Errors
# =============================================================================

class ConfigurationError(RoyaltyLedgerError):
    """
    Raised when supplied configuration is invalid.

    Examples:
    - Share units that do not sum to the configured total
    - Duplicate payees or mismatched payee/share lists
    - Non-positive usage units or deposit amounts
    """

    def __init__(
        self,
        message: str,
        action: str = "configure",
        track_id: str | None = None,
        details: dict[str, Any] | None = None,
        component: str = "payee_registry",
    ):
        super().__init__(
            message=message,
            component=component,
            action=action,
            severity=ErrorSeverity.LOW,
            details={"track_id": track_id, **(details or {})},
        )
        self.track_id = track_id


class LastPayeeError(ConfigurationError):
    """Raised when removing the only payee of a track."""

    def __init__(self, track_id: str, payee: str):
        super().__init__(
            f"Cannot remove {payee}: it is the only payee of track {track_id}",
            action="remove_payee",
            track_id=track_id,
            details={"payee": payee},
        )
        self.payee = payee


class RateNotSetError(ConfigurationError):
    """Raised when usage is recorded against a track with a zero rate."""

    def __init__(self, track_id: str):
        super().__init__(
            f"No usage rate configured for track {track_id}",
            action="record_usage",
            track_id=track_id,
            component="streaming_meter",
        )


class NotFoundError(RoyaltyLedgerError):
    """Raised when a track or payee cannot be found."""

    def __init__(
        self,
        message: str,
        action: str = "lookup",
        track_id: str | None = None,
        details: dict[str, Any] | None = None,
    ):
        super().__init__(
            message=message,
            component="track_repository",
            action=action,
            severity=ErrorSeverity.LOW,
            details={"track_id": track_id, **(details or {})},
        )
        self.track_id = track_id


class PayeeNotFoundError(NotFoundError):
    """Raised when a payee is not registered on a track."""

    def __init__(self, track_id: str, payee: str):
        super().__init__(
            f"Payee {payee} is not registered on track {track_id}",
            action="remove_payee",
            track_id=track_id,
            details={"payee": payee},
        )
        self.payee = payee


class NoPayeesError(NotFoundError):
    """Raised when an operation needs payees and the track has none."""

    def __init__(self, track_id: str, action: str = "distribute"):
        super().__init__(
            f"Track {track_id} has no registered payees",
            action=action,
            track_id=track_id,
        )


class ThresholdError(RoyaltyLedgerError):
    """Raised when an amount is below the configured distribution minimum."""

    def __init__(
        self,
        message: str,
        amount: int | None = None,
        minimum: int | None = None,
        track_id: str | None = None,
    ):
        super().__init__(
            message=message,
            component="threshold_policy",
            action="check_distribution",
            severity=ErrorSeverity.LOW,
            details={"amount": amount, "minimum": minimum, "track_id": track_id},
        )
        self.amount = amount
        self.minimum = minimum


class OpenPayoutError(RoyaltyLedgerError):
    """
    Raised when a batch names a track with a partly paid payout.

    A single-track distribute or flush_pending finishes it first.
    """

    def __init__(self, track_id: str, distribution_no: int, action: str = "batch"):
        super().__init__(
            f"Track {track_id} has unfinished payout #{distribution_no}",
            component="distribution_engine",
            action=action,
            details={"track_id": track_id, "distribution_no": distribution_no},
        )
        self.track_id = track_id
        self.distribution_no = distribution_no


class BatchValidationError(RoyaltyLedgerError):
    """
    Raised when one pair of a batch fails validation.

    Nothing in the batch has been applied. The failing position and the
    underlying error are carried so the caller can fix and resubmit.
    """

    def __init__(self, index: int, error: RoyaltyLedgerError, action: str = "batch"):
        super().__init__(
            f"Batch item {index} rejected: {error.message}",
            component="batch_coordinator",
            action=action,
            severity=ErrorSeverity.LOW,
            details={"index": index, "error": error.to_dict()},
            cause=error,
        )
        self.index = index
        self.error = error
        self.category = error.category
        self.retryable = error.retryable


# =============================================================================
# Authorization Errors
# =============================================================================

class AuthorizationError(RoyaltyLedgerError):
    """Raised when a caller lacks the capability an operation requires."""

    category = ErrorCategory.PERMISSION_DENIED

    def __init__(self, caller: str | None, capability: str, action: str = "unknown"):
        super().__init__(
            f"Caller {caller!r} lacks capability {capability}",
            component="capabilities",
            action=action,
            severity=ErrorSeverity.MEDIUM,
            details={"caller": caller, "capability": capability},
        )
        self.caller = caller
        self.capability = capability


# =============================================================================
# Server Errors
# =============================================================================

class ArithmeticOverflowError(RoyaltyLedgerError):
    """Raised when an amount computation exceeds the supported range. Always fatal."""

    category = ErrorCategory.SERVER_RETRYABLE

    def __init__(self, operation: str, operands: tuple[int, ...], limit: int):
        super().__init__(
            f"Overflow in {operation} of {operands} (limit {limit})",
            component="ledger_math",
            action=operation,
            severity=ErrorSeverity.HIGH,
            details={"operands": [str(o) for o in operands], "limit": str(limit)},
        )


class TransferFailure(RoyaltyLedgerError):
    """
    Raised when the funds transfer collaborator rejects a payout.

    A payout that failed before any transfer went through committed no state.
    One that had already paid some payees is kept open on the account and
    finished, with the same references, by the next payout on the track.
    """

    category = ErrorCategory.SERVER_RETRYABLE
    retryable = True

    def __init__(
        self,
        track_id: str,
        payee: str | None,
        amount: int,
        reason: str,
        cause: Exception | None = None,
    ):
        super().__init__(
            f"Transfer of {amount} to {payee} for track {track_id} failed: {reason}",
            component="distribution_engine",
            action="transfer",
            severity=ErrorSeverity.HIGH,
            details={"track_id": track_id, "payee": payee, "amount": amount, "reason": reason},
            cause=cause,
        )
        self.track_id = track_id
        self.payee = payee
        self.amount = amount
        self.reason = reason


class BatchTransferError(TransferFailure):
    """
    Raised when the rail refuses a batch payout after the batch validated.

    Items before ``index`` were paid and committed, since their money has
    moved. If the failing item had paid some payees it is kept open on its
    track; later items were not applied.
    """

    def __init__(self, index: int, failure: TransferFailure, completed: int):
        super().__init__(
            failure.track_id,
            failure.payee,
            failure.amount,
            failure.reason,
            cause=failure,
        )
        self.context.action = "batch_distribute"
        self.context.severity = ErrorSeverity.CRITICAL
        self.context.details.update({"index": index, "completed": completed})
        self.index = index
        self.completed = completed


class BusyError(RoyaltyLedgerError):
    """Raised when a track lock cannot be acquired within the configured timeout."""

    category = ErrorCategory.SERVER_RETRYABLE
    retryable = True

    def __init__(self, track_ids: list[str], timeout: float):
        super().__init__(
            f"Tracks {track_ids} busy; lock not acquired within {timeout}s",
            component="track_repository",
            action="lock",
            severity=ErrorSeverity.MEDIUM,
            details={"track_ids": track_ids, "timeout": timeout},
        )
        self.track_ids = track_ids
        self.timeout = timeout


class ConcurrencyConflictError(RoyaltyLedgerError):
    """Raised when a stored record changed since it was read (version mismatch)."""

    category = ErrorCategory.SERVER_RETRYABLE
    retryable = True

    def __init__(self, track_id: str, expected_version: int, actual_version: int | None):
        super().__init__(
            f"Track {track_id} version conflict: expected {expected_version}, "
            f"found {actual_version}",
            component="storage",
            action="commit",
            severity=ErrorSeverity.MEDIUM,
            details={
                "track_id": track_id,
                "expected_version": expected_version,
                "actual_version": actual_version,
            },
        )
        self.track_id = track_id
        self.expected_version = expected_version
        self.actual_version = actual_version


# =============================================================================
# Helpers
# =============================================================================

def error_category(error: Exception) -> ErrorCategory:
    """Map any exception onto the category a transport layer should use."""
    if isinstance(error, RoyaltyLedgerError):
        return error.category
    return ErrorCategory.SERVER_RETRYABLE


def is_retryable(error: Exception) -> bool:
    """Check whether a failed call may be retried unchanged."""
    return isinstance(error, RoyaltyLedgerError) and error.retryable
