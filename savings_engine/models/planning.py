"""
Monthly Planning Models

A MonthlyRequirement is what the numbers say a goal needs this month.
A MonthlyGoalPlan is that requirement persisted per (goal, month) together
with the user's overrides.

DESIGN DECISION: Computed fields and override fields live side by side on
the plan, but only the computed ones are ever rewritten by a sync. The
overrides (custom amount, protected, skipped) change only on explicit
user action.
"""

from datetime import date
from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field

from savings_engine.models.ledger import new_id


class RequirementStatus(str, Enum):
    """How demanding a goal's monthly requirement is."""
    COMPLETED = "completed"
    ON_TRACK = "on_track"
    ATTENTION = "attention"
    CRITICAL = "critical"


class MonthlyGoalPlanState(str, Enum):
    """Editing state of a per-goal plan."""
    DRAFT = "draft"
    EXECUTING = "executing"
    COMPLETED = "completed"


class MonthlyRequirement(BaseModel):
    """The computed monthly need for one goal."""

    goal_id: str
    goal_name: str
    currency: str
    target_amount: float = Field(ge=0)
    current_total: float = Field(ge=0, description="Funded amount right now, in goal currency")
    remaining_amount: float = Field(ge=0)
    months_remaining: int = Field(ge=1)
    required_monthly: float = Field(ge=0)
    progress: float = Field(ge=0, le=1)
    deadline: date
    status: RequirementStatus


class MonthlyGoalPlan(BaseModel):
    """Per-(goal, month) plan: computed requirement plus user overrides."""

    id: str = Field(default_factory=new_id)
    goal_id: str
    month_label: str

    # Computed - overwritten on every sync
    required_monthly: float = Field(ge=0)
    remaining_amount: float = Field(ge=0)
    months_remaining: int = Field(ge=1)
    currency: str
    status: RequirementStatus

    state: MonthlyGoalPlanState = MonthlyGoalPlanState.DRAFT

    # Overrides - preserved across syncs
    custom_amount: Optional[float] = Field(default=None, ge=0)
    is_protected: bool = False
    is_skipped: bool = False

    created_at_millis: int = 0
    last_modified_at_millis: int = 0

    @property
    def effective_amount(self) -> float:
        """What the user intends to contribute for this goal this month."""
        if self.is_skipped:
            return 0.0
        if self.custom_amount is not None:
            return self.custom_amount
        return self.required_monthly

    @property
    def is_flexible(self) -> bool:
        return not self.is_protected and not self.is_skipped


class MonthlyPlan(BaseModel):
    """Month-level plan settings shared by all goals."""

    id: str = Field(default_factory=new_id)
    month_label: str
    flex_percentage: float = Field(default=1.0, ge=0, le=2.0)
    created_at_millis: int = 0
    last_modified_at_millis: int = 0


# =============================================================================
# FLEX ADJUSTMENT MODELS
# =============================================================================

class RedistributionStrategy(str, Enum):
    """How excess beyond a goal's cap is handed to other goals."""
    BALANCED = "balanced"
    PRIORITIZE_URGENT = "prioritize_urgent"
    PRIORITIZE_LARGEST = "prioritize_largest"
    MINIMIZE_RISK = "minimize_risk"


class RiskLevel(int, Enum):
    LOW = 1
    MEDIUM = 2
    HIGH = 3


class ImpactAnalysis(BaseModel):
    """Effect of an adjustment on one goal."""

    change_amount: float
    change_percentage: float
    estimated_delay_months: int = Field(ge=0)
    risk_level: RiskLevel


class AdjustedRequirement(BaseModel):
    """A requirement after flex adjustment and redistribution."""

    requirement: MonthlyRequirement
    adjusted_amount: float
    adjustment_reason: str
    is_protected: bool = False
    is_skipped: bool = False
    adjustment_factor: float
    redistribution_amount: float = 0.0
    impact: ImpactAnalysis

    @property
    def has_been_reduced(self) -> bool:
        return self.adjusted_amount < self.requirement.required_monthly


class RedistributionSummary(BaseModel):
    total_reduced: float
    total_redistributed: float
    affected_goals: int


class AdjustmentSimulation(BaseModel):
    """Preview of a flex adjustment without persisting anything."""

    adjusted_requirements: list[AdjustedRequirement]
    risk_by_goal: dict[str, RiskLevel]
    delay_by_goal: dict[str, int]
    total_original: float
    total_adjusted: float
    total_savings: float
    redistribution: RedistributionSummary
