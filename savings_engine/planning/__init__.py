"""
Monthly planning package.

- requirements: what each active goal needs this month
- flex: global multiplier with redistribution strategies
- goal_plans: persisted per-goal plans with user overrides
"""

from savings_engine.planning.flex import FlexAdjustmentService, FlexCandidate
from savings_engine.planning.goal_plans import (
    MonthlyGoalPlanService,
    PlanAdjustmentError,
    PlanNotFoundError,
)
from savings_engine.planning.requirements import MonthlyPlanningService, months_remaining

__all__ = [
    "FlexAdjustmentService",
    "FlexCandidate",
    "MonthlyGoalPlanService",
    "MonthlyPlanningService",
    "PlanAdjustmentError",
    "PlanNotFoundError",
    "months_remaining",
]
