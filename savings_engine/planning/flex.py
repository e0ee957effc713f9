"""
Flex Adjustment Service

Applies a global multiplier to the flexible monthly requirements and hands
any amount pushed beyond a goal's cap to other goals.

Stages:
1. Categorize: protected goals keep their amount, skipped goals go to 0,
   everything else is flexible.
2. Scale every flexible goal by the multiplier, constrained to 10%..150%
   of its base amount. Amount cut off above the cap is excess; amount
   added to reach the floor is deficit.
3. If excess minus deficit is more than trivial, redistribute it with the
   chosen strategy.
4. Attach an impact analysis to every goal.
"""

import math
from typing import NamedTuple, Optional

from savings_engine.models.planning import (
    AdjustedRequirement,
    AdjustmentSimulation,
    ImpactAnalysis,
    MonthlyRequirement,
    RedistributionStrategy,
    RedistributionSummary,
    RiskLevel,
)

MIN_CONSTRAINT = 0.10
MAX_CONSTRAINT = 1.50
TRIVIAL_EXCESS = 1.0
MAX_MULTIPLIER = 2.0

URGENT_MAX_INCREASE = 0.50
HIGH_RISK_MAX_INCREASE = 0.80
DEFAULT_RISK_MAX_INCREASE = 0.30


class FlexCandidate(NamedTuple):
    """The inputs redistribution needs about one flexible goal."""
    goal_id: str
    goal_name: str
    base_amount: float
    months_remaining: int
    progress: float = 0.0


class FlexOutcome(NamedTuple):
    amount: float
    redistribution: float
    reason: str


def clamp_multiplier(adjustment: float) -> float:
    return max(0.0, min(MAX_MULTIPLIER, adjustment))


def impact_of(base_amount: float, adjusted_amount: float, months_remaining: int) -> ImpactAnalysis:
    """
    Change, estimated delay and risk of moving from `base_amount` to `adjusted_amount`.

    Delay is only estimated for reductions that leave a non-zero amount.
    """
    change = adjusted_amount - base_amount
    change_pct = change / base_amount * 100 if base_amount > 0 else 0.0

    delay = 0
    if change < 0 and adjusted_amount > 0:
        delay = math.ceil(-change / max(1.0, adjusted_amount) * months_remaining)

    if change_pct < -50:
        risk = RiskLevel.HIGH
    elif change_pct < -25:
        risk = RiskLevel.MEDIUM
    else:
        risk = RiskLevel.LOW

    return ImpactAnalysis(
        change_amount=change,
        change_percentage=change_pct,
        estimated_delay_months=delay,
        risk_level=risk,
    )


class FlexAdjustmentService:
    """
    Stateless flex adjustment with pluggable redistribution.

    Usage:
        service = FlexAdjustmentService()
        adjusted = service.apply_flex_adjustment(requirements, 0.8, protected, skipped)
    """

    def adjust_amounts(
        self,
        candidates: list[FlexCandidate],
        adjustment: float,
        strategy: RedistributionStrategy = RedistributionStrategy.BALANCED,
    ) -> dict[str, FlexOutcome]:
        """
        Scale and redistribute flexible goals only.

        Returns the outcome per goal id.
        """
        factor = clamp_multiplier(adjustment)

        constrained: list[tuple[FlexCandidate, float]] = []
        excess = 0.0
        deficit = 0.0
        for candidate in candidates:
            raw = candidate.base_amount * factor
            low = candidate.base_amount * MIN_CONSTRAINT
            high = candidate.base_amount * MAX_CONSTRAINT
            amount = min(max(raw, low), high)
            if raw > high:
                excess += raw - high
            elif raw < low:
                deficit += low - raw
            constrained.append((candidate, amount))

        net_excess = excess - deficit
        if net_excess <= TRIVIAL_EXCESS:
            return {c.goal_id: FlexOutcome(amount, 0.0, "Adjusted") for c, amount in constrained}

        if strategy == RedistributionStrategy.PRIORITIZE_URGENT:
            return self._redistribute_urgent(constrained, net_excess)
        if strategy == RedistributionStrategy.PRIORITIZE_LARGEST:
            return self._redistribute_largest(constrained, net_excess)
        if strategy == RedistributionStrategy.MINIMIZE_RISK:
            return self._redistribute_minimize_risk(constrained, net_excess)
        return self._redistribute_balanced(constrained, net_excess)

    def apply_flex_adjustment(
        self,
        requirements: list[MonthlyRequirement],
        adjustment: float,
        protected_goal_ids: Optional[set[str]] = None,
        skipped_goal_ids: Optional[set[str]] = None,
        strategy: RedistributionStrategy = RedistributionStrategy.BALANCED,
    ) -> list[AdjustedRequirement]:
        """
        Adjust every requirement, sorted by goal name.

        Skipped wins over protected when a goal is in both sets.
        """
        protected_goal_ids = protected_goal_ids or set()
        skipped_goal_ids = skipped_goal_ids or set()
        factor = clamp_multiplier(adjustment)

        flexible = [
            r for r in requirements
            if r.goal_id not in skipped_goal_ids and r.goal_id not in protected_goal_ids
        ]
        outcomes = self.adjust_amounts(
            [
                FlexCandidate(
                    goal_id=r.goal_id,
                    goal_name=r.goal_name,
                    base_amount=r.required_monthly,
                    months_remaining=r.months_remaining,
                    progress=r.progress,
                )
                for r in flexible
            ],
            factor,
            strategy,
        )

        adjusted = []
        for requirement in requirements:
            base = requirement.required_monthly
            if requirement.goal_id in skipped_goal_ids:
                amount, factor_used, redistribution, reason = 0.0, 0.0, 0.0, "Skipped this month"
                is_protected, is_skipped = False, True
            elif requirement.goal_id in protected_goal_ids:
                amount, factor_used, redistribution, reason = base, 1.0, 0.0, "Protected"
                is_protected, is_skipped = True, False
            else:
                outcome = outcomes[requirement.goal_id]
                amount, factor_used = outcome.amount, factor
                redistribution, reason = outcome.redistribution, outcome.reason
                is_protected, is_skipped = False, False

            adjusted.append(
                AdjustedRequirement(
                    requirement=requirement,
                    adjusted_amount=amount,
                    adjustment_reason=reason,
                    is_protected=is_protected,
                    is_skipped=is_skipped,
                    adjustment_factor=factor_used,
                    redistribution_amount=redistribution,
                    impact=impact_of(base, amount, requirement.months_remaining),
                )
            )

        adjusted.sort(key=lambda a: (a.requirement.goal_name.lower(), a.requirement.goal_id))
        return adjusted

    def simulate_adjustment(
        self,
        requirements: list[MonthlyRequirement],
        adjustment: float,
        protected_goal_ids: Optional[set[str]] = None,
        skipped_goal_ids: Optional[set[str]] = None,
        strategy: RedistributionStrategy = RedistributionStrategy.BALANCED,
    ) -> AdjustmentSimulation:
        """Preview an adjustment and summarize its effect. Nothing is persisted."""
        adjusted = self.apply_flex_adjustment(
            requirements,
            adjustment,
            protected_goal_ids,
            skipped_goal_ids,
            strategy,
        )

        total_original = sum(r.required_monthly for r in requirements)
        total_adjusted = sum(a.adjusted_amount for a in adjusted)

        return AdjustmentSimulation(
            adjusted_requirements=adjusted,
            risk_by_goal={a.requirement.goal_id: a.impact.risk_level for a in adjusted},
            delay_by_goal={a.requirement.goal_id: a.impact.estimated_delay_months for a in adjusted},
            total_original=total_original,
            total_adjusted=total_adjusted,
            total_savings=total_original - total_adjusted,
            redistribution=RedistributionSummary(
                total_reduced=sum(
                    a.requirement.required_monthly - a.adjusted_amount
                    for a in adjusted if a.has_been_reduced
                ),
                total_redistributed=sum(
                    a.redistribution_amount for a in adjusted if a.redistribution_amount > 0
                ),
                affected_goals=sum(1 for a in adjusted if a.redistribution_amount != 0),
            ),
        )

    # -------------------------------------------------------------------------
    # Redistribution strategies
    # -------------------------------------------------------------------------

    @staticmethod
    def _below_cap(candidate: FlexCandidate, amount: float) -> bool:
        return 0 < amount < candidate.base_amount * MAX_CONSTRAINT

    def _redistribute_balanced(
        self,
        constrained: list[tuple[FlexCandidate, float]],
        net_excess: float,
    ) -> dict[str, FlexOutcome]:
        """Equal share per eligible goal, capped at 150%."""
        eligible = {c.goal_id for c, amount in constrained if self._below_cap(c, amount)}
        if not eligible:
            return {c.goal_id: FlexOutcome(amount, 0.0, "Adjusted") for c, amount in constrained}

        share = net_excess / len(eligible)
        outcomes = {}
        for candidate, amount in constrained:
            if candidate.goal_id in eligible:
                extra = min(share, candidate.base_amount * MAX_CONSTRAINT - amount)
                outcomes[candidate.goal_id] = FlexOutcome(amount + extra, extra, "Balanced redistribution")
            else:
                outcomes[candidate.goal_id] = FlexOutcome(amount, 0.0, "Adjusted")
        return outcomes

    def _redistribute_urgent(
        self,
        constrained: list[tuple[FlexCandidate, float]],
        net_excess: float,
    ) -> dict[str, FlexOutcome]:
        """Shortest deadline first (then lowest progress), at most +50% each."""
        ordered = sorted(constrained, key=lambda item: (item[0].months_remaining, item[0].progress))
        extras = self._assign_sequentially(
            ordered,
            net_excess,
            lambda candidate: candidate.base_amount * URGENT_MAX_INCREASE,
        )
        return self._with_extras(constrained, extras, "Urgent priority")

    def _redistribute_largest(
        self,
        constrained: list[tuple[FlexCandidate, float]],
        net_excess: float,
    ) -> dict[str, FlexOutcome]:
        """Proportional to each goal's base amount, capped at 150%."""
        eligible = [(c, amount) for c, amount in constrained if self._below_cap(c, amount)]
        total_base = sum(c.base_amount for c, _ in eligible)
        if not eligible or total_base <= 0:
            return {c.goal_id: FlexOutcome(amount, 0.0, "Adjusted") for c, amount in constrained}

        eligible_ids = {c.goal_id for c, _ in eligible}
        outcomes = {}
        for candidate, amount in constrained:
            if candidate.goal_id in eligible_ids:
                target = net_excess * candidate.base_amount / total_base
                extra = min(target, candidate.base_amount * MAX_CONSTRAINT - amount)
                outcomes[candidate.goal_id] = FlexOutcome(amount + extra, extra, "Proportional redistribution")
            else:
                outcomes[candidate.goal_id] = FlexOutcome(amount, 0.0, "Adjusted")
        return outcomes

    def _redistribute_minimize_risk(
        self,
        constrained: list[tuple[FlexCandidate, float]],
        net_excess: float,
    ) -> dict[str, FlexOutcome]:
        """Highest-risk goals first; +80% for high risk, +30% otherwise."""
        risks = {}
        for candidate, amount in constrained:
            reduction_pct = 0.0
            if candidate.base_amount > 0:
                reduction_pct = (candidate.base_amount - amount) / candidate.base_amount * 100
            if reduction_pct > 50 or candidate.months_remaining <= 2:
                risks[candidate.goal_id] = RiskLevel.HIGH
            elif reduction_pct > 25 or candidate.months_remaining <= 4:
                risks[candidate.goal_id] = RiskLevel.MEDIUM
            else:
                risks[candidate.goal_id] = RiskLevel.LOW

        ordered = sorted(constrained, key=lambda item: risks[item[0].goal_id], reverse=True)
        extras = self._assign_sequentially(
            ordered,
            net_excess,
            lambda candidate: candidate.base_amount * (
                HIGH_RISK_MAX_INCREASE if risks[candidate.goal_id] == RiskLevel.HIGH
                else DEFAULT_RISK_MAX_INCREASE
            ),
        )
        return self._with_extras(constrained, extras, "Risk minimization")

    def _assign_sequentially(self, ordered, net_excess, max_increase) -> dict[str, float]:
        remaining = net_excess
        extras = {}
        for candidate, amount in ordered:
            if remaining <= TRIVIAL_EXCESS:
                break
            if not self._below_cap(candidate, amount):
                continue
            headroom = candidate.base_amount * MAX_CONSTRAINT - amount
            extra = min(remaining, max_increase(candidate), headroom)
            extras[candidate.goal_id] = extra
            remaining -= extra
        return extras

    @staticmethod
    def _with_extras(
        constrained: list[tuple[FlexCandidate, float]],
        extras: dict[str, float],
        reason: str,
    ) -> dict[str, FlexOutcome]:
        outcomes = {}
        for candidate, amount in constrained:
            extra = extras.get(candidate.goal_id, 0.0)
            outcomes[candidate.goal_id] = FlexOutcome(
                amount + extra,
                extra,
                reason if extra > 0 else "Adjusted",
            )
        return outcomes
