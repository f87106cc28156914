#!/usr/bin/env python3
"""
Royalty Ledger Quickstart Example

This example walks one track through the ledger:
1. Registering payees with share units
2. Accumulating sales revenue and metered usage
3. Auto-flushing at a threshold and distributing on demand
4. Recording a chargeback and netting it on the next payout

Run this example:
    python examples/quickstart.py

Everything runs in memory; no configuration is required.
"""

import os
import sys

# Add src to path so we can import the ledger
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..', 'src'))

from capabilities import Capability, CapabilityManager
from funds_transfer import InMemoryFundsTransfer
from monitoring.logging import configure_logging
from royalty_ledger import RoyaltyLedger

ADMIN = "label-admin"
SALES = "sales-service"


def show_balances(rail, payees):
    for payee in payees:
        print(f"    {payee}: {rail.credited_to(payee)}")


def main():
    configure_logging("WARNING")

    print("=" * 60)
    print("Royalty Ledger Quickstart")
    print("=" * 60)
    print()

    # ==========================================================================
    # Step 1: Wire the ledger
    # ==========================================================================
    # The label administrator configures tracks; the sales service only
    # deposits revenue and triggers payouts.

    capabilities = CapabilityManager()
    capabilities.grant(ADMIN, Capability.ADMIN)
    capabilities.grant(SALES, Capability.DISTRIBUTOR)

    rail = InMemoryFundsTransfer(initial_balance=1_000_000)
    ledger = RoyaltyLedger(funds=rail, capabilities=capabilities)

    # ==========================================================================
    # Step 2: Register payees (share units sum to 10000, one unit = 0.01%)
    # ==========================================================================

    print("Step 1: Registering payees...")
    payees = ["artist", "producer", "songwriter"]
    ledger.register_payees(ADMIN, "midnight-drive", payees, [5000, 3000, 2000])
    for share in ledger.get_shares("midnight-drive"):
        print(f"  {share.payee}: {share.share_units / 100:.2f}%")
    print()

    # ==========================================================================
    # Step 3: Accumulate revenue
    # ==========================================================================
    # Deposits and usage build a pending balance; nothing is paid until the
    # auto-flush threshold is reached.

    print("Step 2: Accumulating revenue...")
    ledger.set_rate(ADMIN, "midnight-drive", 3)
    ledger.set_auto_flush_threshold(ADMIN, "midnight-drive", 5_000)

    ledger.accumulate_deposit(SALES, "midnight-drive", 1_999)
    ledger.record_usage(SALES, "midnight-drive", 500)
    print(f"  Pending: {ledger.get_pending('midnight-drive')}")

    result = ledger.record_usage(SALES, "midnight-drive", 1_000)
    print(f"  Threshold reached, flushed {result.flushed.amount}:")
    show_balances(rail, payees)
    print()

    # ==========================================================================
    # Step 4: Chargeback and reconciliation
    # ==========================================================================

    print("Step 3: Recording a 300 chargeback...")
    ledger.apply_adjustment(ADMIN, "midnight-drive", 300, "negative")
    print(f"  Deficits: {ledger.get_deficits('midnight-drive')}")

    payout = ledger.distribute(SALES, "midnight-drive", 10_000)
    print(f"  Distributed 10000, gross {payout.per_payee_amounts}")
    print(f"  Net after deficits: {payout.net_amounts}")
    show_balances(rail, payees)
    print()

    # ==========================================================================
    # Step 5: Audit trail
    # ==========================================================================

    print("Step 4: Event log...")
    for event in ledger.get_events(track_id="midnight-drive"):
        print(f"  #{event.sequence} {event.event_type.value}")
    print()

    stats = ledger.get_statistics()
    print(f"Total distributed: {stats['total_distributed']}")
    print(f"Still pending: {stats['total_pending']}")


if __name__ == "__main__":
    main()
