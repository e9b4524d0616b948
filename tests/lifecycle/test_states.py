"""Tests for wallet lifecycle transitions."""

from __future__ import annotations

from datetime import UTC, datetime

import pytest

from smart_money_tracker.lifecycle.states import InvalidTransitionError, can_transition, transition
from smart_money_tracker.profiler.models import WalletRecord, WalletStatus

NOW = datetime(2026, 10, 19, tzinfo=UTC)


def _record(status: WalletStatus) -> WalletRecord:
    return WalletRecord(address="WalletA", status=status)


class TestAllowedTransitions:
    def test_candidate_to_active(self) -> None:
        record = transition(_record(WalletStatus.CANDIDATE), WalletStatus.ACTIVE, now=NOW)
        assert record.status == WalletStatus.ACTIVE

    def test_active_to_deactivated_records_reason(self) -> None:
        record = _record(WalletStatus.ACTIVE)

        transition(record, WalletStatus.DEACTIVATED, reason="win rate dropped", now=NOW)

        assert record.status == WalletStatus.DEACTIVATED
        assert record.deactivation_reason == "win rate dropped"
        assert record.deactivated_at == NOW

    def test_deactivated_reenters_as_candidate(self) -> None:
        record = _record(WalletStatus.ACTIVE)
        transition(record, WalletStatus.DEACTIVATED, reason="PnL went negative", now=NOW)

        transition(record, WalletStatus.CANDIDATE, now=NOW)

        assert record.status == WalletStatus.CANDIDATE
        assert record.deactivation_reason is None
        assert record.deactivated_at is None


class TestRejectedTransitions:
    @pytest.mark.parametrize(
        ("current", "target"),
        [
            (WalletStatus.CANDIDATE, WalletStatus.DEACTIVATED),
            (WalletStatus.CANDIDATE, WalletStatus.CANDIDATE),
            (WalletStatus.ACTIVE, WalletStatus.CANDIDATE),
            (WalletStatus.ACTIVE, WalletStatus.ACTIVE),
            (WalletStatus.DEACTIVATED, WalletStatus.ACTIVE),
            (WalletStatus.DEACTIVATED, WalletStatus.DEACTIVATED),
        ],
    )
    def test_invalid_transition_raises(self, current: WalletStatus, target: WalletStatus) -> None:
        record = _record(current)

        assert not can_transition(current, target)
        with pytest.raises(InvalidTransitionError):
            transition(record, target, now=NOW)
        assert record.status == current
