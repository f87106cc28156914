"""
Tests for the Accrual Ledger (src/accrual_ledger.py)

Tests cover:
- Deposits and pending balances
- Auto-flush at the per-track threshold
- Auto-flush failures keeping the balance pending
- On-demand flush_pending
"""

import os
import sys

import pytest

sys.path.insert(0, os.path.join(os.path.dirname(__file__), "..", "src"))

from conftest import ADMIN, DISTRIBUTOR, OUTSIDER

from distribution_engine import PayoutKind
from ledger_events import LedgerEventType
from royalty_exceptions import (
    ArithmeticOverflowError,
    AuthorizationError,
    ConfigurationError,
    NoPayeesError,
    ThresholdError,
    TransferFailure,
)
from track_accounts import MAX_AMOUNT


# ============================================================
# Deposits
# ============================================================

class TestAccumulateDeposit:
    """Tests for accumulate_deposit."""

    def test_deposit_accumulates(self, ledger, two_payee_track):
        first = ledger.accumulate_deposit(DISTRIBUTOR, two_payee_track, 40)
        second = ledger.accumulate_deposit(DISTRIBUTOR, two_payee_track, 25)

        assert first.pending_amount == 40
        assert second.pending_amount == 65
        assert second.flushed is None
        assert ledger.get_pending(two_payee_track) == 65
        assert ledger.get_account(two_payee_track)["accrual"]["total_deposited"] == 65

    def test_deposit_moves_no_money(self, ledger, funds, two_payee_track):
        ledger.accumulate_deposit(DISTRIBUTOR, two_payee_track, 40)
        assert funds.transfers == []

    def test_emits_event_and_metric(self, ledger, metrics, two_payee_track):
        ledger.accumulate_deposit(DISTRIBUTOR, two_payee_track, 40)

        events = ledger.get_events(event_type=LedgerEventType.DEPOSIT_ACCUMULATED)
        assert [e.data["amount"] for e in events] == [40]
        assert events[0].data["source"] == "sale"
        assert metrics.get_counter("deposits_total", {"source": "sale"}) == 1

    @pytest.mark.parametrize("amount", [0, -10, 1.5, "100", True])
    def test_invalid_amount(self, ledger, two_payee_track, amount):
        with pytest.raises(ConfigurationError):
            ledger.accumulate_deposit(DISTRIBUTOR, two_payee_track, amount)
        assert ledger.get_pending(two_payee_track) == 0

    def test_unregistered_track(self, ledger):
        with pytest.raises(NoPayeesError):
            ledger.accumulate_deposit(DISTRIBUTOR, "nope", 10)
        assert ledger.get_account("nope") is None

    def test_requires_distributor(self, ledger, two_payee_track):
        with pytest.raises(AuthorizationError):
            ledger.accumulate_deposit(OUTSIDER, two_payee_track, 10)

    def test_overflow_is_fatal(self, ledger, two_payee_track):
        ledger.accumulate_deposit(DISTRIBUTOR, two_payee_track, MAX_AMOUNT)
        with pytest.raises(ArithmeticOverflowError):
            ledger.accumulate_deposit(DISTRIBUTOR, two_payee_track, 1)
        assert ledger.get_pending(two_payee_track) == MAX_AMOUNT

    def test_get_pending_unknown_track(self, ledger):
        assert ledger.get_pending("nope") == 0


# ============================================================
# Auto-flush
# ============================================================

class TestAutoFlush:
    """Tests for threshold-triggered flushes."""

    def test_below_threshold_no_flush(self, ledger, funds, two_payee_track):
        ledger.set_auto_flush_threshold(ADMIN, two_payee_track, 100)
        result = ledger.accumulate_deposit(DISTRIBUTOR, two_payee_track, 99)

        assert result.flushed is None
        assert funds.transfers == []

    def test_crossing_threshold_flushes_everything(self, ledger, funds, two_payee_track):
        ledger.set_auto_flush_threshold(ADMIN, two_payee_track, 100)
        ledger.accumulate_deposit(DISTRIBUTOR, two_payee_track, 60)
        result = ledger.accumulate_deposit(DISTRIBUTOR, two_payee_track, 50)

        assert result.flushed is not None
        assert result.flushed.kind == PayoutKind.FLUSH
        assert result.flushed.per_payee_amounts == {"alice": 66, "bob": 44}
        assert result.pending_amount == 0
        assert ledger.get_pending(two_payee_track) == 0
        assert funds.credited_to("alice") == 66

    def test_flush_ignores_global_minimum(self, ledger, funds, two_payee_track):
        ledger.set_global_minimum(ADMIN, 1000)
        ledger.set_auto_flush_threshold(ADMIN, two_payee_track, 50)

        result = ledger.accumulate_deposit(DISTRIBUTOR, two_payee_track, 50)

        assert result.flushed.amount == 50
        assert funds.credited_to("bob") == 20

    def test_flush_events_follow_deposit(self, ledger, two_payee_track):
        ledger.set_auto_flush_threshold(ADMIN, two_payee_track, 10)
        ledger.accumulate_deposit(DISTRIBUTOR, two_payee_track, 10)

        types = [e.event_type for e in ledger.get_events(track_id=two_payee_track)]
        assert types[-2:] == [
            LedgerEventType.DEPOSIT_ACCUMULATED,
            LedgerEventType.DISTRIBUTION_COMPLETED,
        ]

    def test_threshold_zero_disables(self, ledger, funds, two_payee_track):
        ledger.set_auto_flush_threshold(ADMIN, two_payee_track, 10)
        ledger.set_auto_flush_threshold(ADMIN, two_payee_track, 0)
        ledger.accumulate_deposit(DISTRIBUTOR, two_payee_track, 1000)
        assert funds.transfers == []
        assert ledger.get_pending(two_payee_track) == 1000

    def test_failed_flush_keeps_deposit_pending(self, ledger, funds, two_payee_track):
        ledger.set_auto_flush_threshold(ADMIN, two_payee_track, 50)
        funds.fail_for("alice", "rail_unavailable")

        result = ledger.accumulate_deposit(DISTRIBUTOR, two_payee_track, 60)

        assert result.flushed is None
        assert result.flush_error["error_type"] == "TransferFailure"
        assert result.pending_amount == 60
        assert ledger.get_pending(two_payee_track) == 60
        assert ledger.get_account(two_payee_track)["distribution_count"] == 0

    def test_next_deposit_retries_flush(self, ledger, funds, two_payee_track):
        ledger.set_auto_flush_threshold(ADMIN, two_payee_track, 50)
        funds.fail_for("alice")
        ledger.accumulate_deposit(DISTRIBUTOR, two_payee_track, 60)
        funds.clear_failures()

        result = ledger.accumulate_deposit(DISTRIBUTOR, two_payee_track, 40)

        assert result.flushed.amount == 100
        assert funds.credited_to("alice") == 60
        assert funds.credited_to("bob") == 40
        assert ledger.get_pending(two_payee_track) == 0

    def test_partial_auto_flush_finished_after_balance_changes(self, ledger, funds, two_payee_track):
        ledger.set_auto_flush_threshold(ADMIN, two_payee_track, 100)
        funds.fail_for("bob")

        failed = ledger.accumulate_deposit(DISTRIBUTOR, two_payee_track, 100)
        assert failed.flush_error["error_type"] == "TransferFailure"
        assert ledger.get_open_payout(two_payee_track)["paid"] == ["alice"]
        funds.clear_failures()

        result = ledger.accumulate_deposit(DISTRIBUTOR, two_payee_track, 10)

        # The open flush is finished as attempted; the new 10 waits for the threshold
        assert result.flushed.amount == 100
        assert result.flushed.distribution_no == 1
        assert result.pending_amount == 10
        assert funds.credited_to("alice") == 60
        assert funds.credited_to("bob") == 40
        paid = funds.credited_to("alice") + funds.credited_to("bob")
        assert paid + ledger.get_pending(two_payee_track) == 110

    def test_deposit_order_does_not_change_totals(self, ledger, funds):
        """Depositing a then b and flushing pays the same as flushing a then b."""
        ledger.register_payees(ADMIN, "x", ["p", "q"], [3333, 6667])
        ledger.register_payees(ADMIN, "y", ["p", "q"], [3333, 6667])

        ledger.accumulate_deposit(DISTRIBUTOR, "x", 17)
        ledger.accumulate_deposit(DISTRIBUTOR, "x", 29)
        combined = ledger.flush_pending(DISTRIBUTOR, "x")

        ledger.accumulate_deposit(DISTRIBUTOR, "y", 17)
        first = ledger.flush_pending(DISTRIBUTOR, "y")
        ledger.accumulate_deposit(DISTRIBUTOR, "y", 29)
        second = ledger.flush_pending(DISTRIBUTOR, "y")

        assert combined.amount == first.amount + second.amount == 46
        assert sum(combined.per_payee_amounts.values()) == 46
        assert sum(first.per_payee_amounts.values()) + sum(second.per_payee_amounts.values()) == 46


# ============================================================
# Threshold configuration and on-demand flush
# ============================================================

class TestSetAutoFlushThreshold:
    """Tests for set_auto_flush_threshold."""

    def test_set_threshold(self, ledger, two_payee_track):
        ledger.set_auto_flush_threshold(ADMIN, two_payee_track, 500)
        assert ledger.get_threshold_config(two_payee_track).auto_flush_threshold == 500

    def test_negative_rejected(self, ledger, two_payee_track):
        with pytest.raises(ConfigurationError):
            ledger.set_auto_flush_threshold(ADMIN, two_payee_track, -1)

    def test_requires_admin(self, ledger, two_payee_track):
        with pytest.raises(AuthorizationError):
            ledger.set_auto_flush_threshold(DISTRIBUTOR, two_payee_track, 5)

    def test_unregistered_track(self, ledger):
        with pytest.raises(NoPayeesError):
            ledger.set_auto_flush_threshold(ADMIN, "nope", 5)

    def test_emits_event(self, ledger, two_payee_track):
        ledger.set_auto_flush_threshold(ADMIN, two_payee_track, 5)
        events = ledger.get_events(event_type=LedgerEventType.AUTO_FLUSH_THRESHOLD_UPDATED)
        assert events[0].data == {"previous": 0, "auto_flush_threshold": 5}


class TestFlushPending:
    """Tests for flush_pending."""

    def test_flush_pending(self, ledger, funds, two_payee_track):
        ledger.accumulate_deposit(DISTRIBUTOR, two_payee_track, 75)
        result = ledger.flush_pending(DISTRIBUTOR, two_payee_track)

        assert result.amount == 75
        assert result.per_payee_amounts == {"alice": 45, "bob": 30}
        assert ledger.get_pending(two_payee_track) == 0
        assert ledger.get_account(two_payee_track)["accrual"]["total_distributed"] == 75

    def test_nothing_pending(self, ledger, two_payee_track):
        with pytest.raises(ThresholdError):
            ledger.flush_pending(DISTRIBUTOR, two_payee_track)

    def test_failed_flush_keeps_balance(self, ledger, funds, two_payee_track):
        ledger.accumulate_deposit(DISTRIBUTOR, two_payee_track, 75)
        funds.fail_for("bob")

        with pytest.raises(TransferFailure):
            ledger.flush_pending(DISTRIBUTOR, two_payee_track)

        assert ledger.get_pending(two_payee_track) == 75
        assert ledger.get_open_payout(two_payee_track)["paid"] == ["alice"]

    def test_failed_flush_retried_after_new_deposit(self, ledger, funds, two_payee_track):
        ledger.accumulate_deposit(DISTRIBUTOR, two_payee_track, 100)
        funds.fail_for("bob")
        with pytest.raises(TransferFailure):
            ledger.flush_pending(DISTRIBUTOR, two_payee_track)

        # Still failing: the deposit commits and the open flush stays open
        deposit = ledger.accumulate_deposit(DISTRIBUTOR, two_payee_track, 10)
        assert deposit.flush_error is not None
        assert deposit.pending_amount == 110
        funds.clear_failures()

        result = ledger.flush_pending(DISTRIBUTOR, two_payee_track)

        assert result.amount == 10
        assert result.distribution_no == 2
        assert funds.credited_to("alice") == 66
        assert funds.credited_to("bob") == 44
        account = ledger.get_account(two_payee_track)
        assert funds.credited_to("alice") + funds.credited_to("bob") == account["accrual"]["total_deposited"]
        assert account["accrual"]["total_distributed"] == 110
        assert ledger.get_pending(two_payee_track) == 0
        assert ledger.get_open_payout(two_payee_track) is None

    def test_flush_pending_finishes_open_flush(self, ledger, funds, two_payee_track):
        ledger.accumulate_deposit(DISTRIBUTOR, two_payee_track, 75)
        funds.fail_for("bob")
        with pytest.raises(TransferFailure):
            ledger.flush_pending(DISTRIBUTOR, two_payee_track)
        funds.clear_failures()

        result = ledger.flush_pending(DISTRIBUTOR, two_payee_track)

        assert result.amount == 75
        assert result.distribution_no == 1
        assert funds.credited_to("alice") == 45
        assert funds.credited_to("bob") == 30
        assert ledger.get_pending(two_payee_track) == 0

    def test_requires_distributor(self, ledger, two_payee_track):
        with pytest.raises(AuthorizationError):
            ledger.flush_pending(OUTSIDER, two_payee_track)
