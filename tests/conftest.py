"""
Pytest configuration and shared fixtures for royalty ledger tests.

This module provides shared fixtures including:
- Capability manager with an admin and a distributor caller
- Funded in-memory funds transfer rail
- Fresh ledger on memory storage with local locks and its own metrics
"""

import os
import sys

import pytest

# Add src to path
sys.path.insert(0, os.path.join(os.path.dirname(__file__), "..", "src"))

ADMIN = "label-admin"
DISTRIBUTOR = "sales-service"
OUTSIDER = "random-caller"


@pytest.fixture
def capabilities():
    """Capability manager granting ADMIN and DISTRIBUTOR to the test callers."""
    from capabilities import Capability, CapabilityManager

    manager = CapabilityManager()
    manager.grant(ADMIN, Capability.ADMIN)
    manager.grant(DISTRIBUTOR, Capability.DISTRIBUTOR)
    return manager


@pytest.fixture
def funds():
    """Funds rail holding enough for any test payout."""
    from funds_transfer import InMemoryFundsTransfer

    return InMemoryFundsTransfer(initial_balance=10**12)


@pytest.fixture
def metrics():
    """Private metrics collector so counters start at zero."""
    from monitoring.metrics import MetricsCollector

    return MetricsCollector()


@pytest.fixture
def ledger_config():
    from config import LedgerConfig

    return LedgerConfig(lock_timeout=0.5)


@pytest.fixture
def ledger(funds, capabilities, metrics, ledger_config):
    """Fresh ledger on memory storage and local locks."""
    from royalty_ledger import RoyaltyLedger
    from scaling.locking import LocalLockManager
    from storage.memory import MemoryStorage

    return RoyaltyLedger(
        funds=funds,
        capabilities=capabilities,
        config=ledger_config,
        storage=MemoryStorage(),
        lock_manager=LocalLockManager(),
        metrics=metrics,
    )


@pytest.fixture
def two_payee_track(ledger):
    """Track "t1" split 60/40 between alice and bob."""
    ledger.register_payees(ADMIN, "t1", ["alice", "bob"], [6000, 4000])
    return "t1"
