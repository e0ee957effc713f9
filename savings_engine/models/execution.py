"""
Execution Models

One ExecutionRecord per calendar month tracks the month's lifecycle:

    DRAFT --start--> EXECUTING --complete--> CLOSED
      ^                  |  ^                   |
      +---undo start-----+  +-------undo--------+

Snapshots freeze each goal's requirement at start. Completion rows freeze
each goal's result at close.

DESIGN DECISION: Snapshots and completion rows are frozen models. They
are only ever replaced or deleted as a whole set for a record.
"""

import math
from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, computed_field

from savings_engine.models.ledger import new_id


class ExecutionStatus(str, Enum):
    """Lifecycle state of a monthly execution record."""
    DRAFT = "draft"
    EXECUTING = "executing"
    CLOSED = "closed"


class ExecutionRecord(BaseModel):
    """
    The execution record for one calendar month.

    CRITICAL: At most one record system-wide may be EXECUTING.
    Records are never hard-deleted.
    """

    id: str = Field(default_factory=new_id)
    plan_id: str
    month_label: str = Field(..., pattern=r"^\d{4}-\d{2}$")
    status: ExecutionStatus = ExecutionStatus.DRAFT
    started_at_millis: Optional[int] = None
    closed_at_millis: Optional[int] = None
    created_at_millis: int = 0
    updated_at_millis: int = 0

    @property
    def is_executing(self) -> bool:
        return self.status == ExecutionStatus.EXECUTING

    @property
    def is_closed(self) -> bool:
        return self.status == ExecutionStatus.CLOSED


class ExecutionSnapshot(BaseModel):
    """Frozen per-goal requirement captured when a month starts."""
    model_config = ConfigDict(frozen=True)

    id: str = Field(default_factory=new_id)
    execution_record_id: str
    goal_id: str
    goal_name: str
    currency: str
    target_amount: float = Field(ge=0)
    current_total_at_start: float = Field(ge=0)
    required_amount: float = Field(ge=0, description="Frozen monthly target")
    is_protected: bool = False
    is_skipped: bool = False
    custom_amount: Optional[float] = None
    created_at_millis: int = 0


class CompletedExecution(BaseModel):
    """Frozen per-goal outcome of a closed month."""
    model_config = ConfigDict(frozen=True)

    id: str = Field(default_factory=new_id)
    execution_record_id: str
    goal_id: str
    goal_name: str
    currency: str
    required_amount: float
    actual_amount: float = Field(..., description="Funding delta over the execution window")
    completed_at_millis: int
    can_undo_until_millis: int

    def is_undoable(self, now_millis: int) -> bool:
        return now_millis < self.can_undo_until_millis


class ExecutionGoalProgress(BaseModel):
    """How far one goal has come since its month started."""

    snapshot: ExecutionSnapshot
    contributed: float
    planned_amount: float

    @computed_field
    @property
    def is_fulfilled(self) -> bool:
        return self.contributed >= self.planned_amount

    @property
    def goal_id(self) -> str:
        return self.snapshot.goal_id

    @property
    def goal_name(self) -> str:
        return self.snapshot.goal_name

    @property
    def is_skipped(self) -> bool:
        return self.snapshot.is_skipped

    @property
    def progress_percent(self) -> int:
        """Rounded percentage of the plan reached, clamped to 0..100."""
        if self.planned_amount <= 0:
            return 0
        pct = math.floor(self.contributed / self.planned_amount * 100 + 0.5)
        return max(0, min(100, pct))


class ExecutionSession(BaseModel):
    """The current record together with per-goal progress."""

    record: ExecutionRecord
    goals: list[ExecutionGoalProgress] = Field(default_factory=list)

    @property
    def active_goals(self) -> list[ExecutionGoalProgress]:
        """Goals that count toward totals (skipped goals do not)."""
        return [g for g in self.goals if not g.is_skipped]

    @property
    def total_planned(self) -> float:
        return sum(g.planned_amount for g in self.active_goals)

    @property
    def total_contributed(self) -> float:
        return sum(g.contributed for g in self.active_goals)

    @property
    def fulfilled_count(self) -> int:
        return sum(1 for g in self.active_goals if g.is_fulfilled)

    @property
    def progress_percent(self) -> int:
        planned = self.total_planned
        if planned <= 0:
            return 0
        pct = math.floor(self.total_contributed / planned * 100 + 0.5)
        return max(0, min(100, pct))


class PlanHistoryRow(BaseModel):
    """Summary of one closed month."""

    record_id: str
    month_label: str
    completed_at_millis: int
    total_required: float
    total_actual: float
    is_undo_available: bool


# =============================================================================
# OPERATION RESULTS
# =============================================================================

class LifecycleFailureReason(str, Enum):
    """Why a lifecycle operation was refused."""
    ANOTHER_EXECUTION_ACTIVE = "another_execution_active"
    RECORD_CLOSED = "record_closed"
    RECORD_NOT_FOUND = "record_not_found"
    NOT_EXECUTING = "not_executing"
    MISSING_START = "missing_start"
    NO_SNAPSHOTS = "no_snapshots"
    NOTHING_TO_UNDO = "nothing_to_undo"
    UNDO_WINDOW_EXPIRED = "undo_window_expired"
    INVALID_MONTH_LABEL = "invalid_month_label"
    STORAGE_CONFLICT = "storage_conflict"


class LifecycleResult(BaseModel):
    """
    Outcome of a lifecycle operation.

    Lifecycle operations never raise for precondition violations; callers
    inspect `success` and show `message` when it is False.
    """

    success: bool
    record: Optional[ExecutionRecord] = None
    snapshots: list[ExecutionSnapshot] = Field(default_factory=list)
    completions: list[CompletedExecution] = Field(default_factory=list)
    reason: Optional[LifecycleFailureReason] = None
    message: str = ""

    @classmethod
    def ok(
        cls,
        record: Optional[ExecutionRecord],
        snapshots: Optional[list[ExecutionSnapshot]] = None,
        completions: Optional[list[CompletedExecution]] = None,
        message: str = "",
    ) -> "LifecycleResult":
        return cls(
            success=True,
            record=record,
            snapshots=snapshots or [],
            completions=completions or [],
            message=message,
        )

    @classmethod
    def failed(
        cls,
        reason: LifecycleFailureReason,
        message: str,
        record: Optional[ExecutionRecord] = None,
    ) -> "LifecycleResult":
        return cls(success=False, reason=reason, message=message, record=record)
