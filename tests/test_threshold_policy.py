"""
Tests for the Threshold Policy (src/threshold_policy.py)
"""

import os
import sys

import pytest

sys.path.insert(0, os.path.join(os.path.dirname(__file__), "..", "src"))

from conftest import ADMIN, DISTRIBUTOR

from capabilities import AllowAllCapabilities
from ledger_events import EventLog, LedgerEventType
from royalty_exceptions import AuthorizationError, ConfigurationError, ThresholdError
from threshold_policy import ThresholdPolicy, validate_amount
from track_accounts import MAX_AMOUNT, TrackAccount


@pytest.fixture
def policy():
    return ThresholdPolicy(AllowAllCapabilities(), EventLog())


class TestValidateAmount:
    """Tests for the shared amount validator."""

    def test_accepts_zero_when_not_positive(self):
        assert validate_amount(0, "amount", "test", "threshold_policy") == 0

    def test_rejects_zero_when_positive(self):
        with pytest.raises(ConfigurationError):
            validate_amount(0, "amount", "test", "threshold_policy", positive=True)

    def test_rejects_above_max(self):
        with pytest.raises(ConfigurationError):
            validate_amount(MAX_AMOUNT + 1, "amount", "test", "threshold_policy")

    def test_error_names_component(self):
        with pytest.raises(ConfigurationError) as exc_info:
            validate_amount(-1, "rate", "set_rate", "streaming_meter")
        assert exc_info.value.context.component == "streaming_meter"
        assert exc_info.value.context.action == "set_rate"


class TestCheckDistribution:
    """Tests for check_distribution."""

    def test_zero_allowed_by_default(self, policy):
        policy.check_distribution(0)

    def test_minimum_boundary(self, policy):
        policy.set_global_minimum("anyone", 100)
        policy.check_distribution(100)
        with pytest.raises(ThresholdError) as exc_info:
            policy.check_distribution(99, track_id="t1")
        assert exc_info.value.amount == 99
        assert exc_info.value.minimum == 100
        assert exc_info.value.context.details["track_id"] == "t1"

    @pytest.mark.parametrize("amount", [-1, 1.0, "5", None, MAX_AMOUNT + 1])
    def test_invalid_amounts(self, policy, amount):
        with pytest.raises(ThresholdError):
            policy.check_distribution(amount)


class TestGlobalMinimum:
    """Tests for set_global_minimum."""

    def test_initial_minimum(self):
        policy = ThresholdPolicy(AllowAllCapabilities(), EventLog(), global_minimum=25)
        assert policy.global_minimum == 25

    def test_negative_initial_minimum_rejected(self):
        with pytest.raises(ConfigurationError):
            ThresholdPolicy(AllowAllCapabilities(), EventLog(), global_minimum=-1)

    def test_set_emits_event(self):
        events = EventLog()
        policy = ThresholdPolicy(AllowAllCapabilities(), events)
        policy.set_global_minimum("ops", 10)

        emitted = events.get_events(event_type=LedgerEventType.GLOBAL_MINIMUM_UPDATED)
        assert emitted[0].track_id is None
        assert emitted[0].data["global_minimum"] == 10
        assert emitted[0].data["previous"] == 0

    def test_requires_admin(self, ledger):
        with pytest.raises(AuthorizationError):
            ledger.set_global_minimum(DISTRIBUTOR, 10)
        assert ledger.policy.global_minimum == 0

    def test_admin_sets_through_ledger(self, ledger):
        ledger.set_global_minimum(ADMIN, 10)
        assert ledger.get_threshold_config("any").global_minimum == 10


class TestShouldAutoFlush:
    """Tests for should_auto_flush."""

    def test_disabled_at_zero(self, policy):
        account = TrackAccount(track_id="t")
        account.accrual.pending_amount = 10**6
        assert policy.should_auto_flush(account) is False

    def test_reached(self, policy):
        account = TrackAccount(track_id="t", auto_flush_threshold=50)
        account.accrual.pending_amount = 50
        assert policy.should_auto_flush(account) is True

    def test_not_reached(self, policy):
        account = TrackAccount(track_id="t", auto_flush_threshold=50)
        account.accrual.pending_amount = 49
        assert policy.should_auto_flush(account) is False

    def test_threshold_config(self, policy):
        account = TrackAccount(track_id="t", auto_flush_threshold=7)
        config = policy.get_threshold_config(account)
        assert config.to_dict() == {"global_minimum": 0, "auto_flush_threshold": 7}
        assert policy.get_threshold_config(None).auto_flush_threshold == 0
