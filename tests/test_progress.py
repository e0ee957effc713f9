"""
Tests for the execution progress calculator.

Timestamps are literal epoch milliseconds so that boundary behaviour
(strict vs inclusive cutoffs) is exercised exactly.
"""

import pytest

from savings_engine.engine.progress import ExecutionProgressCalculator, effective_targets
from savings_engine.models.execution import ExecutionSnapshot
from savings_engine.models.ledger import AllocationHistory, Transaction, TransactionSource

T = 1_765_368_000_000
NOW = T + 5_000


def snapshot(goal_id="g1", name="Emergency", required=1000.0, skipped=False):
    return ExecutionSnapshot(
        execution_record_id="r1",
        goal_id=goal_id,
        goal_name=name,
        currency="USD",
        target_amount=5000.0,
        current_total_at_start=0.0,
        required_amount=required,
        is_skipped=skipped,
    )


def history(amount, timestamp, goal_id="g1", asset_id="a1", created_at=None):
    return AllocationHistory(
        asset_id=asset_id,
        goal_id=goal_id,
        amount=amount,
        month_label="2025-12",
        timestamp=timestamp,
        created_at=timestamp if created_at is None else created_at,
    )


def tx(amount, date_millis, asset_id="a1", source=TransactionSource.MANUAL):
    return Transaction(asset_id=asset_id, amount=amount, date_millis=date_millis, source=source)


def contributed_for(snapshots, transactions, allocation_history, started_at=T, now=NOW):
    calculator = ExecutionProgressCalculator(clock=lambda: now)
    progress = calculator.calculate(snapshots, transactions, allocation_history, started_at, now)
    return {p.goal_id: p.contributed for p in progress}


class TestBoundaries:
    """Exact-millisecond cutoffs of the replay window."""

    def test_transaction_one_ms_before_start_is_excluded(self):
        """Test that a deposit at startedAt - 1 is baseline, not contribution."""
        result = contributed_for([snapshot()], [tx(500, T - 1)], [history(1000, T - 10_000)])
        assert result["g1"] == pytest.approx(0.0)

    def test_transaction_at_start_is_included(self):
        """Test that a deposit exactly at startedAt counts as contribution."""
        result = contributed_for([snapshot()], [tx(500, T)], [history(1000, T - 10_000)])
        assert result["g1"] == pytest.approx(500.0)

    def test_transaction_at_now_is_included(self):
        """Test that a deposit exactly at now counts."""
        result = contributed_for([snapshot()], [tx(500, NOW)], [history(1000, T - 10_000)])
        assert result["g1"] == pytest.approx(500.0)

    def test_transaction_after_now_is_excluded(self):
        """Test that a deposit at now + 1 is ignored."""
        result = contributed_for([snapshot()], [tx(500, NOW + 1)], [history(1000, T - 10_000)])
        assert result["g1"] == pytest.approx(0.0)

    def test_allocation_at_now_is_effective(self):
        """Test that an allocation entry stamped exactly at now is used for the current point."""
        result = contributed_for([snapshot()], [tx(1000, T - 50)], [history(1000, NOW)])
        assert result["g1"] == pytest.approx(1000.0)

    def test_allocation_after_now_is_not_effective(self):
        """Test that an allocation entry stamped after now is ignored."""
        result = contributed_for([snapshot()], [tx(1000, T - 50)], [history(1000, NOW + 1)])
        assert result["g1"] == pytest.approx(0.0)

    def test_allocation_at_start_is_not_in_baseline(self):
        """Test that the baseline cutoff is strict for allocation history too."""
        result = contributed_for([snapshot()], [tx(1000, T - 50)], [history(1000, T)])
        assert result["g1"] == pytest.approx(1000.0)


class TestReplay:
    """Funding deltas between the period start and now."""

    def test_pre_period_balance_cancels_out(self):
        """Test that money deposited before start never counts as contributed."""
        result = contributed_for(
            [snapshot()],
            [tx(300, T - 100), tx(200, T + 10)],
            [history(1000, T - 10_000)],
        )
        assert result["g1"] == pytest.approx(200.0)

    def test_withdrawal_during_period_is_negative(self):
        """Test that a withdrawal inside the window shows as a negative delta."""
        result = contributed_for(
            [snapshot()],
            [tx(1000, T - 10), tx(-400, T + 10)],
            [history(1000, T - 10_000)],
        )
        assert result["g1"] == pytest.approx(-400.0)

    def test_non_manual_transactions_are_ignored(self):
        """Test that on-chain ledger entries do not take part in the replay."""
        result = contributed_for(
            [snapshot()],
            [tx(1000, T + 10, source=TransactionSource.ON_CHAIN)],
            [history(1000, T - 10_000)],
        )
        assert result["g1"] == pytest.approx(0.0)

    def test_shared_asset_is_split_proportionally(self):
        """Test that two goals on one underfunded asset share it by target."""
        result = contributed_for(
            [snapshot("g1", "A"), snapshot("g2", "B")],
            [tx(500, T + 10)],
            [history(600, T - 10_000, "g1"), history(400, T - 10_000, "g2")],
        )
        assert result["g1"] == pytest.approx(300.0)
        assert result["g2"] == pytest.approx(200.0)

    def test_goals_outside_the_execution_do_not_compete_for_the_asset(self):
        """Test that a non-snapshot goal's target does not dilute the funding ratio."""
        result = contributed_for(
            [snapshot("g1", "A")],
            [tx(1000, T + 10)],
            [history(1000, T - 10_000, "g1"), history(1000, T - 10_000, "other")],
        )
        assert result == {"g1": pytest.approx(1000.0)}

    def test_untracked_allocation_mid_period_leaves_contribution_unchanged(self):
        """Test that allocating a non-snapshot goal during the period moves no money."""
        result = contributed_for(
            [snapshot("g1", "A")],
            [tx(1000, T - 10)],
            [history(1000, T - 10_000, "g1"), history(1000, T + 10, "other")],
        )
        assert result == {"g1": pytest.approx(0.0)}

    def test_unfiltered_contributions_include_every_goal(self):
        """Test that contributions without goal ids replay the full history."""
        calculator = ExecutionProgressCalculator(clock=lambda: NOW)
        deltas = calculator.contributions(
            [tx(1000, T + 10)],
            [history(1000, T - 10_000, "g1"), history(1000, T - 10_000, "other")],
            T,
            NOW,
        )
        assert deltas == {"g1": pytest.approx(500.0), "other": pytest.approx(500.0)}

    def test_funding_across_assets_is_summed(self):
        """Test that a goal funded from two assets gets both deltas."""
        result = contributed_for(
            [snapshot()],
            [tx(100, T + 10, "a1"), tx(250, T + 20, "a2")],
            [history(1000, T - 10_000, asset_id="a1"), history(1000, T - 10_000, asset_id="a2")],
        )
        assert result["g1"] == pytest.approx(350.0)

    def test_goal_without_history_contributes_zero(self):
        """Test that a snapshot goal absent from allocation history yields 0."""
        result = contributed_for(
            [snapshot("g1", "A"), snapshot("g2", "B")],
            [tx(500, T + 10)],
            [history(1000, T - 10_000, "g1")],
        )
        assert result["g2"] == 0.0

    def test_skipped_goal_is_forced_to_zero(self):
        """Test that a skipped goal reports 0 even when funded."""
        result = contributed_for(
            [snapshot(skipped=True, required=0.0)],
            [tx(500, T + 10)],
            [history(1000, T - 10_000)],
        )
        assert result["g1"] == 0.0

    def test_unset_start_yields_zero(self):
        """Test that startedAt == 0 produces all-zero contributions."""
        result = contributed_for([snapshot()], [tx(500, T)], [history(1000, 0 + 1)], started_at=0)
        assert result["g1"] == 0.0

    def test_results_sorted_by_goal_name(self):
        """Test deterministic ordering by goal name."""
        calculator = ExecutionProgressCalculator(clock=lambda: NOW)
        progress = calculator.calculate(
            [snapshot("g1", "Zeta"), snapshot("g2", "alpha"), snapshot("g3", "Mid")],
            [],
            [],
            T,
        )
        assert [p.goal_name for p in progress] == ["alpha", "Mid", "Zeta"]

    def test_planned_amount_comes_from_snapshot(self):
        """Test that the plan is the frozen snapshot requirement."""
        calculator = ExecutionProgressCalculator(clock=lambda: NOW)
        progress = calculator.calculate([snapshot(required=750.0)], [], [], T)
        assert progress[0].planned_amount == 750.0
        assert progress[0].is_fulfilled is False


class TestEffectiveTargets:
    """Latest-entry-before-cutoff selection."""

    def test_latest_entry_before_cutoff_wins(self):
        """Test that later versions replace earlier ones."""
        targets = effective_targets(
            [history(100, T - 300), history(700, T - 200), history(900, T + 1)],
            T,
        )
        assert targets == {("a1", "g1"): 700.0}

    def test_timestamp_tie_broken_by_created_at(self):
        """Test that the most recently written entry wins on a timestamp collision."""
        targets = effective_targets(
            [
                history(1000, T - 10, created_at=T + 2),
                history(400, T - 10, created_at=T + 1),
            ],
            T,
        )
        assert targets == {("a1", "g1"): 1000.0}

    def test_tie_break_changes_contribution(self):
        """Test that the tie-break decides how much of a deposit is credited."""
        result = contributed_for(
            [snapshot()],
            [tx(1000, T)],
            [
                history(400, T - 10, created_at=T - 5),
                history(1000, T - 10, created_at=T - 1),
            ],
        )
        assert result["g1"] == pytest.approx(1000.0)

    def test_negative_history_amount_is_floored(self):
        """Test that imperfect negative history entries are treated as 0."""
        targets = effective_targets([history(-50, T - 10)], T)
        assert targets == {("a1", "g1"): 0.0}
