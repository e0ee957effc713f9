"""
Data Models Package

Pydantic models for every record the engine reads, writes or produces.
"""

from savings_engine.models.audit import (
    AuditEvent,
    AuditEventBuilder,
    AuditEventType,
    AuditSeverity,
)
from savings_engine.models.execution import (
    CompletedExecution,
    ExecutionGoalProgress,
    ExecutionRecord,
    ExecutionSession,
    ExecutionSnapshot,
    ExecutionStatus,
    LifecycleFailureReason,
    LifecycleResult,
    PlanHistoryRow,
)
from savings_engine.models.ledger import (
    Allocation,
    AllocationHistory,
    Asset,
    Goal,
    GoalLifecycleStatus,
    OnChainBalance,
    Transaction,
    TransactionSource,
    new_id,
)
from savings_engine.models.planning import (
    AdjustedRequirement,
    AdjustmentSimulation,
    ImpactAnalysis,
    MonthlyGoalPlan,
    MonthlyGoalPlanState,
    MonthlyPlan,
    MonthlyRequirement,
    RedistributionStrategy,
    RedistributionSummary,
    RequirementStatus,
    RiskLevel,
)

__all__ = [
    # Audit models
    "AuditEvent",
    "AuditEventBuilder",
    "AuditEventType",
    "AuditSeverity",
    # Execution models
    "CompletedExecution",
    "ExecutionGoalProgress",
    "ExecutionRecord",
    "ExecutionSession",
    "ExecutionSnapshot",
    "ExecutionStatus",
    "LifecycleFailureReason",
    "LifecycleResult",
    "PlanHistoryRow",
    # Ledger models
    "Allocation",
    "AllocationHistory",
    "Asset",
    "Goal",
    "GoalLifecycleStatus",
    "OnChainBalance",
    "Transaction",
    "TransactionSource",
    "new_id",
    # Planning models
    "AdjustedRequirement",
    "AdjustmentSimulation",
    "ImpactAnalysis",
    "MonthlyGoalPlan",
    "MonthlyGoalPlanState",
    "MonthlyPlan",
    "MonthlyRequirement",
    "RedistributionStrategy",
    "RedistributionSummary",
    "RequirementStatus",
    "RiskLevel",
]
