"""
Royalty Ledger - Capability Checks

Every mutating ledger operation requires the caller to hold a capability:

- ADMIN: configure payees, rates, thresholds; apply adjustments
- DISTRIBUTOR: deposit revenue, record usage, distribute and flush

ADMIN implies DISTRIBUTOR.

The ledger talks to a CapabilityChecker; CapabilityManager is an
in-process implementation with grants, an audit trail and JSON
configuration files. Deployments with their own access-control service
implement CapabilityChecker instead.

Usage:
    from capabilities import Capability, CapabilityManager

    manager = CapabilityManager()
    manager.grant("label-ops", Capability.ADMIN)
    manager.has_capability("label-ops", Capability.DISTRIBUTOR)  # True

Environment Variables:
    ROYALTY_ADMIN_CALLER=treasury-admin
"""

import json
import logging
import os
import threading
from abc import ABC, abstractmethod
from collections.abc import Callable
from datetime import datetime
from enum import Enum
from functools import wraps
from typing import Any

from royalty_exceptions import AuthorizationError

logger = logging.getLogger(__name__)


class Capability(Enum):
    """Grants that permit privileged ledger operations."""

    ADMIN = "admin"
    DISTRIBUTOR = "distributor"


IMPLIED_CAPABILITIES: dict[Capability, set[Capability]] = {
    Capability.ADMIN: {Capability.ADMIN, Capability.DISTRIBUTOR},
    Capability.DISTRIBUTOR: {Capability.DISTRIBUTOR},
}


class CapabilityChecker(ABC):
    """Access-control collaborator consulted before every mutation."""

    @abstractmethod
    def has_capability(self, caller: str | None, capability: Capability) -> bool:
        """Return True if the caller holds the capability."""
        pass


class AllowAllCapabilities(CapabilityChecker):
    """Grants everything; for embedded use where the host already authorized."""

    def has_capability(self, caller: str | None, capability: Capability) -> bool:
        return True


class CapabilityManager(CapabilityChecker):
    """
    In-process capability store.

    This class handles:
    - Caller to capability grants
    - Capability checking with implied grants
    - Audit logging of grants and denials
    - Configuration persistence
    """

    def __init__(self, config_file: str | None = None, admin_caller: str | None = None):
        self.config_file = config_file

        self._grants: dict[str, set[Capability]] = {}
        self._lock = threading.RLock()
        self._audit_log: list[dict[str, Any]] = []
        self._max_audit_entries = 10000

        if config_file and os.path.exists(config_file):
            self.load_config(config_file)

        admin_caller = admin_caller or os.getenv("ROYALTY_ADMIN_CALLER")
        if admin_caller:
            self.grant(admin_caller, Capability.ADMIN)

    def grant(self, caller: str, capability: Capability) -> None:
        """Grant a capability to a caller."""
        with self._lock:
            self._grants.setdefault(caller, set()).add(capability)
            self._audit(action="capability_granted", caller=caller, capability=capability.value)

    def revoke(self, caller: str, capability: Capability | None = None) -> bool:
        """
        Revoke one capability, or all of them when capability is None.

        Returns:
            True if anything was revoked
        """
        with self._lock:
            held = self._grants.get(caller)
            if not held:
                return False

            if capability is None:
                del self._grants[caller]
            elif capability in held:
                held.discard(capability)
            else:
                return False

            self._audit(
                action="capability_revoked",
                caller=caller,
                capability=capability.value if capability else "all",
            )
            return True

    def get_capabilities(self, caller: str) -> set[Capability]:
        """Effective capabilities of a caller, including implied ones."""
        with self._lock:
            effective: set[Capability] = set()
            for held in self._grants.get(caller, set()):
                effective |= IMPLIED_CAPABILITIES[held]
            return effective

    def has_capability(self, caller: str | None, capability: Capability) -> bool:
        if not caller:
            return False
        allowed = capability in self.get_capabilities(caller)
        if not allowed:
            self._audit(action="capability_denied", caller=caller, capability=capability.value)
        return allowed

    def _audit(self, action: str, **kwargs):
        """Record an audit entry."""
        entry = {
            "timestamp": datetime.utcnow().isoformat(),
            "action": action,
            **kwargs,
        }
        with self._lock:
            self._audit_log.append(entry)
            if len(self._audit_log) > self._max_audit_entries:
                self._audit_log = self._audit_log[-self._max_audit_entries:]

    def get_audit_log(self, limit: int = 100, action: str | None = None) -> list[dict[str, Any]]:
        """Get recent audit entries, newest last."""
        with self._lock:
            entries = self._audit_log
            if action:
                entries = [e for e in entries if e["action"] == action]
            return entries[-limit:]

    def save_config(self, filepath: str | None = None):
        """Save grants to a JSON file."""
        filepath = filepath or self.config_file
        if not filepath:
            raise ValueError("No config file specified")

        with self._lock:
            config = {
                "grants": {
                    caller: sorted(c.value for c in held)
                    for caller, held in self._grants.items()
                },
                "saved_at": datetime.utcnow().isoformat(),
            }

        with open(filepath, "w", encoding="utf-8") as f:
            json.dump(config, f, indent=2)

        logger.info(f"Capability configuration saved to {filepath}")

    def load_config(self, filepath: str):
        """Load grants from a JSON file."""
        with open(filepath, encoding="utf-8") as f:
            config = json.load(f)

        with self._lock:
            for caller, values in config.get("grants", {}).items():
                self._grants[caller] = {Capability(v) for v in values}

        logger.info(f"Capability configuration loaded from {filepath}")

    def list_callers(self) -> list[dict[str, Any]]:
        """List callers and their granted capabilities."""
        with self._lock:
            return [
                {"caller": caller, "capabilities": sorted(c.value for c in held)}
                for caller, held in sorted(self._grants.items())
            ]


def authorize(
    checker: CapabilityChecker,
    caller: str | None,
    capability: Capability,
    action: str,
) -> None:
    """Raise AuthorizationError unless the caller holds the capability."""
    if not checker.has_capability(caller, capability):
        logger.warning(f"Denied {action} for caller {caller!r}: missing {capability.value}")
        raise AuthorizationError(caller, capability.value, action=action)


def requires(capability: Capability):
    """
    Decorator for ledger component methods taking ``caller`` as first argument.

    The component must expose its checker as ``self.capabilities``.

    Usage:
        @requires(Capability.ADMIN)
        def set_rate(self, caller, track_id, rate):
            ...
    """

    def decorator(f: Callable) -> Callable:
        @wraps(f)
        def decorated_function(self, caller, *args, **kwargs):
            authorize(self.capabilities, caller, capability, action=f.__name__)
            return f(self, caller, *args, **kwargs)

        return decorated_function

    return decorator
