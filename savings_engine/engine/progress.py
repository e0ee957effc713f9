"""
Execution Progress Calculator

Computes how much of each goal's monthly requirement has been funded since
the execution period started.

The calculation compares two points in time:
1. Baseline: manual balances from transactions strictly before `started_at`,
   distributed over the allocation targets effective strictly before
   `started_at`.
2. Current: manual balances from transactions at or before `now`,
   distributed over the allocation targets effective at or before `now`.

A goal's contribution is `current funded - baseline funded`. Money that was
already on an asset before the period started shows up in both points and
cancels out exactly.

DESIGN DECISION: Only MANUAL transactions take part in the replay. On-chain
balances are only known "now", so including them would credit the whole
on-chain holding to the current month.
"""

from collections import defaultdict
from typing import Iterable, Optional

from savings_engine.engine.funding import distribute_funding
from savings_engine.models.execution import ExecutionGoalProgress, ExecutionSnapshot
from savings_engine.models.ledger import AllocationHistory, Transaction, TransactionSource
from savings_engine.timeutils import Clock, now_millis


def effective_targets(
    history: Iterable[AllocationHistory],
    cutoff_millis: int,
) -> dict[tuple[str, str], float]:
    """
    Allocation target per (asset_id, goal_id) in effect just before `cutoff_millis`.

    The latest entry with `timestamp < cutoff_millis` wins; on an exact
    timestamp collision the entry written last (`created_at`) wins.
    Negative amounts are floored at 0.
    """
    latest: dict[tuple[str, str], AllocationHistory] = {}
    for entry in history:
        if entry.timestamp >= cutoff_millis:
            continue
        key = (entry.asset_id, entry.goal_id)
        current = latest.get(key)
        if current is None or (entry.timestamp, entry.created_at) > (current.timestamp, current.created_at):
            latest[key] = entry
    return {key: max(0.0, entry.amount) for key, entry in latest.items()}


def manual_balances(
    transactions: Iterable[Transaction],
    include,
) -> dict[str, float]:
    """Sum of manual transaction amounts per asset, for dates accepted by `include`."""
    balances: dict[str, float] = defaultdict(float)
    for tx in transactions:
        if tx.source != TransactionSource.MANUAL:
            continue
        if include(tx.date_millis):
            balances[tx.asset_id] += tx.amount
    return dict(balances)


def funded_by_goal(
    balances: dict[str, float],
    targets: dict[tuple[str, str], float],
) -> dict[str, float]:
    """Run the distributor per asset and sum the funded portions per goal."""
    by_asset: dict[str, dict[str, float]] = defaultdict(dict)
    for (asset_id, goal_id), amount in targets.items():
        by_asset[asset_id][goal_id] = amount

    funded: dict[str, float] = defaultdict(float)
    for asset_id, goal_targets in by_asset.items():
        balance = max(0.0, balances.get(asset_id, 0.0))
        for goal_id, amount in distribute_funding(balance, goal_targets).items():
            funded[goal_id] += amount
    return dict(funded)


class ExecutionProgressCalculator:
    """
    Per-goal funding progress of an execution period.

    Stateless apart from the clock, so one instance can serve concurrent
    progress queries.
    """

    def __init__(self, clock: Optional[Clock] = None):
        self._clock = clock or now_millis

    def contributions(
        self,
        transactions: Iterable[Transaction],
        allocation_history: Iterable[AllocationHistory],
        started_at_millis: int,
        now_millis: int,
        goal_ids: Optional[set[str]] = None,
    ) -> dict[str, float]:
        """
        Funding delta per goal between `started_at_millis` and `now_millis`.

        When `goal_ids` is given, only those goals' allocation history takes
        part, so untracked goals never compete for a tracked goal's asset.

        Returns an empty dict when the period has no valid start or `now`
        lies before the start. Deltas are signed; a withdrawal during the
        period shows up as a negative contribution.
        """
        if started_at_millis <= 0 or now_millis < started_at_millis:
            return {}

        transactions = list(transactions)
        history = [
            entry for entry in allocation_history
            if goal_ids is None or entry.goal_id in goal_ids
        ]

        baseline_balances = manual_balances(transactions, lambda d: d < started_at_millis)
        current_balances = manual_balances(transactions, lambda d: d <= now_millis)

        baseline = funded_by_goal(baseline_balances, effective_targets(history, started_at_millis))
        current = funded_by_goal(current_balances, effective_targets(history, now_millis + 1))

        return {
            goal_id: current.get(goal_id, 0.0) - baseline.get(goal_id, 0.0)
            for goal_id in set(baseline) | set(current)
        }

    def calculate(
        self,
        snapshots: Iterable[ExecutionSnapshot],
        transactions: Iterable[Transaction],
        allocation_history: Iterable[AllocationHistory],
        started_at_millis: Optional[int],
        now_millis: Optional[int] = None,
    ) -> list[ExecutionGoalProgress]:
        """
        One ExecutionGoalProgress per snapshot, sorted by goal name.

        Only the snapshot goals' allocation history is replayed.

        Skipped goals are included with a contribution of 0. Goals with no
        allocation history contribute 0.
        """
        snapshots = list(snapshots)
        now = self._clock() if now_millis is None else now_millis
        deltas = self.contributions(
            transactions,
            allocation_history,
            started_at_millis or 0,
            now,
            goal_ids={s.goal_id for s in snapshots},
        )

        progress = []
        for snapshot in snapshots:
            contributed = 0.0 if snapshot.is_skipped else deltas.get(snapshot.goal_id, 0.0)
            progress.append(
                ExecutionGoalProgress(
                    snapshot=snapshot,
                    contributed=contributed,
                    planned_amount=snapshot.required_amount,
                )
            )

        progress.sort(key=lambda p: (p.goal_name.lower(), p.goal_id))
        return progress
