"""
Monthly Goal Plan Service

Keeps the persisted per-(goal, month) plans in line with freshly computed
requirements while preserving what the user chose.

DESIGN DECISION: A sync only ever rewrites the computed fields
(required_monthly, remaining_amount, months_remaining, currency, status).
The override fields (custom_amount, is_protected, is_skipped) change only
through the explicit operations below.

A flex multiplier of exactly 1.0 clears custom amounts instead of writing
the unchanged value, so those plans keep tracking the base requirement as
it is recalculated in later months.
"""

from typing import Optional

from savings_engine.audit.logger import AuditLogger
from savings_engine.config import get_settings
from savings_engine.models.planning import (
    MonthlyGoalPlan,
    MonthlyGoalPlanState,
    MonthlyPlan,
    MonthlyRequirement,
    RedistributionStrategy,
)
from savings_engine.planning.flex import FlexAdjustmentService, FlexCandidate
from savings_engine.services.storage.interface import (
    MonthlyGoalPlanRepository,
    MonthlyPlanRepository,
)
from savings_engine.timeutils import Clock, now_millis

NO_ADJUSTMENT_EPSILON = 1e-7


class MonthlyGoalPlanService:
    """
    Reconciles MonthlyGoalPlan rows with requirements and user overrides.
    """

    def __init__(
        self,
        goal_plan_repository: MonthlyGoalPlanRepository,
        plan_repository: MonthlyPlanRepository,
        flex_service: Optional[FlexAdjustmentService] = None,
        audit_logger: Optional[AuditLogger] = None,
        clock: Optional[Clock] = None,
        flex_min: Optional[float] = None,
        flex_max: Optional[float] = None,
    ):
        planning = get_settings().planning
        self._goal_plans = goal_plan_repository
        self._plans = plan_repository
        self._flex = flex_service or FlexAdjustmentService()
        self._audit_logger = audit_logger or AuditLogger()
        self._clock = clock or now_millis
        self._flex_min = planning.flex_min if flex_min is None else flex_min
        self._flex_max = planning.flex_max if flex_max is None else flex_max

    async def get_plans(self, month_label: str) -> list[MonthlyGoalPlan]:
        return await self._goal_plans.get_plans(month_label)

    async def sync_plans(
        self,
        month_label: str,
        requirements: list[MonthlyRequirement],
    ) -> list[MonthlyGoalPlan]:
        """
        Merge computed requirements into the month's plans.

        Existing plans keep their overrides; new plans start without any.
        Plans of goals that no longer have a requirement are left alone.
        """
        existing = {p.goal_id: p for p in await self._goal_plans.get_plans(month_label)}
        now = self._clock()

        updated = []
        created = 0
        for requirement in requirements:
            prior = existing.get(requirement.goal_id)
            if prior is None:
                created += 1
                updated.append(
                    MonthlyGoalPlan(
                        goal_id=requirement.goal_id,
                        month_label=month_label,
                        required_monthly=requirement.required_monthly,
                        remaining_amount=requirement.remaining_amount,
                        months_remaining=requirement.months_remaining,
                        currency=requirement.currency,
                        status=requirement.status,
                        created_at_millis=now,
                        last_modified_at_millis=now,
                    )
                )
            else:
                updated.append(
                    prior.model_copy(update={
                        "required_monthly": requirement.required_monthly,
                        "remaining_amount": requirement.remaining_amount,
                        "months_remaining": requirement.months_remaining,
                        "currency": requirement.currency,
                        "status": requirement.status,
                        "last_modified_at_millis": now,
                    })
                )

        await self._goal_plans.upsert_all(updated)
        await self._audit_logger.log_plans_synced(
            month_label=month_label,
            plan_count=len(updated),
            created_count=created,
        )
        return updated

    async def toggle_protected(self, month_label: str, goal_id: str) -> MonthlyGoalPlan:
        """Flip protection. A protected plan is never skipped."""
        plan = await self._require(month_label, goal_id)
        updated = plan.model_copy(update={
            "is_protected": not plan.is_protected,
            "is_skipped": False,
            "last_modified_at_millis": self._clock(),
        })
        await self._save_override(updated, f"protected={updated.is_protected}")
        return updated

    async def toggle_skipped(self, month_label: str, goal_id: str) -> MonthlyGoalPlan:
        """Flip skipping. A skipped plan is never protected."""
        plan = await self._require(month_label, goal_id)
        updated = plan.model_copy(update={
            "is_skipped": not plan.is_skipped,
            "is_protected": False,
            "last_modified_at_millis": self._clock(),
        })
        await self._save_override(updated, f"skipped={updated.is_skipped}")
        return updated

    async def set_custom_amount(
        self,
        month_label: str,
        goal_id: str,
        amount: Optional[float],
    ) -> MonthlyGoalPlan:
        """
        Set or clear (None) the custom amount. Setting an amount un-skips the plan.

        Raises:
            PlanNotFoundError: If the plan doesn't exist
            PlanAdjustmentError: If the amount is negative
        """
        if amount is not None and amount < 0:
            raise PlanAdjustmentError("Custom amount cannot be negative")
        plan = await self._require(month_label, goal_id)
        updated = plan.model_copy(update={
            "custom_amount": amount,
            "is_skipped": False,
            "last_modified_at_millis": self._clock(),
        })
        await self._save_override(updated, f"custom_amount={amount}")
        return updated

    async def apply_flex_adjustment(
        self,
        month_label: str,
        adjustment: float,
        strategy: RedistributionStrategy = RedistributionStrategy.BALANCED,
    ) -> list[MonthlyGoalPlan]:
        """
        Apply a flex multiplier to every flexible plan of the month.

        Protected and skipped plans are returned untouched. A multiplier
        of 1.0 clears custom amounts. Plans with no requirement are left
        without a custom amount.

        Raises:
            PlanAdjustmentError: If any plan of the month is not DRAFT
        """
        clamped = min(self._flex_max, max(self._flex_min, adjustment))
        plans = await self._goal_plans.get_plans(month_label)
        if any(p.state != MonthlyGoalPlanState.DRAFT for p in plans):
            raise PlanAdjustmentError(f"Can only adjust draft plans ({month_label})")

        now = self._clock()
        is_neutral = abs(clamped - 1.0) <= NO_ADJUSTMENT_EPSILON
        outcomes = {}
        if not is_neutral:
            outcomes = self._flex.adjust_amounts(
                [
                    FlexCandidate(
                        goal_id=p.goal_id,
                        goal_name=p.goal_id,
                        base_amount=p.required_monthly,
                        months_remaining=p.months_remaining,
                    )
                    for p in plans
                    if p.is_flexible and p.required_monthly > 0
                ],
                clamped,
                strategy,
            )

        updated = []
        adjusted_count = 0
        for plan in plans:
            if not plan.is_flexible:
                updated.append(plan)
                continue
            outcome = outcomes.get(plan.goal_id)
            custom = outcome.amount if outcome is not None else None
            updated.append(plan.model_copy(update={
                "custom_amount": custom,
                "last_modified_at_millis": now,
            }))
            adjusted_count += 1

        await self._goal_plans.upsert_all(updated)

        monthly_plan = await self._plans.get_or_create_plan(month_label, now)
        await self._plans.upsert(monthly_plan.model_copy(update={
            "flex_percentage": clamped,
            "last_modified_at_millis": now,
        }))

        await self._audit_logger.log_flex_adjustment_applied(
            month_label=month_label,
            adjustment=clamped,
            adjusted_count=adjusted_count,
        )
        return updated

    async def get_monthly_plan(self, month_label: str) -> MonthlyPlan:
        return await self._plans.get_or_create_plan(month_label, self._clock())

    async def mark_state(self, month_label: str, state: MonthlyGoalPlanState) -> None:
        """Move every plan of the month to `state` (driven by the execution lifecycle)."""
        plans = await self._goal_plans.get_plans(month_label)
        if not plans:
            return
        now = self._clock()
        await self._goal_plans.upsert_all([
            p.model_copy(update={"state": state, "last_modified_at_millis": now})
            for p in plans
        ])

    async def _require(self, month_label: str, goal_id: str) -> MonthlyGoalPlan:
        plan = await self._goal_plans.get_plan(month_label, goal_id)
        if plan is None:
            raise PlanNotFoundError(f"No plan for goal {goal_id} in {month_label}")
        return plan

    async def _save_override(self, plan: MonthlyGoalPlan, change: str) -> None:
        await self._goal_plans.upsert(plan)
        await self._audit_logger.log_plan_override_changed(
            plan_id=plan.id,
            goal_id=plan.goal_id,
            month_label=plan.month_label,
            change=change,
        )


class PlanNotFoundError(Exception):
    """No plan exists for the (month, goal) pair."""
    pass


class PlanAdjustmentError(Exception):
    """A plan adjustment was refused."""
    pass
