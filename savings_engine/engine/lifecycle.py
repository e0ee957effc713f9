"""
Execution Lifecycle Controller

The state machine of a monthly execution:

    DRAFT --start--> EXECUTING --complete--> CLOSED
      ^                  |  ^                   |
      +---undo_start-----+  +-------undo--------+

Guarantees:
1. At most one record is EXECUTING at any time. The controller checks it
   up front for a readable failure, and the record repository enforces it
   again inside the write itself.
2. Each operation is applied as a unit. Mutations are serialized through a
   single writer lock, and a failed second write rolls back the first.
3. Precondition violations never raise out of an operation. They come back
   as a failed LifecycleResult with a typed reason and a message.

DESIGN DECISION: Reads (sessions, plan history) do not take the writer
lock. They may observe the state just before or just after a concurrent
write, never a half-applied one, because each write replaces whole sets.
"""

import asyncio
from typing import Awaitable, Callable, Optional
from uuid import UUID

from savings_engine.audit.logger import AuditLogger, create_correlation_id
from savings_engine.config import get_settings
from savings_engine.engine.progress import ExecutionProgressCalculator
from savings_engine.models.execution import (
    CompletedExecution,
    ExecutionRecord,
    ExecutionSession,
    ExecutionSnapshot,
    ExecutionStatus,
    LifecycleFailureReason,
    LifecycleResult,
    PlanHistoryRow,
)
from savings_engine.models.planning import MonthlyGoalPlanState
from savings_engine.planning.goal_plans import MonthlyGoalPlanService
from savings_engine.planning.requirements import MonthlyPlanningService
from savings_engine.services.storage.interface import (
    AllocationHistoryRepository,
    CompletedExecutionRepository,
    ExecutionConflictError,
    ExecutionRecordRepository,
    ExecutionSnapshotRepository,
    GoalRepository,
    NotFoundError,
    StorageError,
    TransactionRepository,
)
from savings_engine.timeutils import (
    Clock,
    current_month_label,
    month_sort_key,
    normalize_month_label,
    now_millis,
)


class LifecycleError(Exception):
    """A lifecycle precondition failed."""

    def __init__(
        self,
        reason: LifecycleFailureReason,
        message: str,
        record: Optional[ExecutionRecord] = None,
    ):
        super().__init__(message)
        self.reason = reason
        self.message = message
        self.record = record


class ExecutionLifecycleController:
    """
    Starts, completes and undoes monthly executions.

    Usage:
        controller = ExecutionLifecycleController(...)
        result = await controller.start("2025-12")
        if not result.success:
            show(result.message)
    """

    def __init__(
        self,
        record_repository: ExecutionRecordRepository,
        snapshot_repository: ExecutionSnapshotRepository,
        completion_repository: CompletedExecutionRepository,
        transaction_repository: TransactionRepository,
        allocation_history_repository: AllocationHistoryRepository,
        goal_repository: GoalRepository,
        planning_service: MonthlyPlanningService,
        goal_plan_service: MonthlyGoalPlanService,
        calculator: Optional[ExecutionProgressCalculator] = None,
        audit_logger: Optional[AuditLogger] = None,
        clock: Optional[Clock] = None,
        completion_undo_window_millis: Optional[int] = None,
        start_undo_window_millis: Optional[int] = None,
    ):
        execution = get_settings().execution
        self._records = record_repository
        self._snapshots = snapshot_repository
        self._completions = completion_repository
        self._transactions = transaction_repository
        self._allocation_history = allocation_history_repository
        self._goals = goal_repository
        self._planning = planning_service
        self._goal_plans = goal_plan_service
        self._clock = clock or now_millis
        self._calculator = calculator or ExecutionProgressCalculator(self._clock)
        self._audit_logger = audit_logger or AuditLogger()
        self._completion_window = (
            completion_undo_window_millis
            if completion_undo_window_millis is not None
            else execution.completion_undo_window_millis
        )
        self._start_window = (
            start_undo_window_millis
            if start_undo_window_millis is not None
            else execution.start_undo_window_millis
        )
        self._write_lock = asyncio.Lock()

    # =========================================================================
    # Mutations
    # =========================================================================

    async def start(self, month_label: Optional[str] = None) -> LifecycleResult:
        """
        Open the month's execution and freeze one snapshot per active goal.

        Resuming a month that is already EXECUTING keeps its start time and
        its snapshots.
        """
        raw_label = month_label if month_label is not None else current_month_label(self._clock)
        return await self._run("start", raw_label, lambda cid: self._start(raw_label, cid))

    async def undo_start(self, record_id: str) -> LifecycleResult:
        """Revert a freshly started month to DRAFT, within the start undo window."""
        return await self._run("undo_start", record_id, lambda cid: self._undo_start(record_id, cid))

    async def complete(self, record_id: str) -> LifecycleResult:
        """Freeze progress into completion rows and close the record."""
        return await self._run("complete", record_id, lambda cid: self._complete(record_id, cid))

    async def undo(self, record_id: str) -> LifecycleResult:
        """Drop the completion rows and reopen the record, within the undo window."""
        return await self._run("undo", record_id, lambda cid: self._undo(record_id, cid))

    async def _run(
        self,
        operation: str,
        entity: str,
        body: Callable[[UUID], Awaitable[LifecycleResult]],
    ) -> LifecycleResult:
        correlation_id = create_correlation_id()
        async with self._write_lock:
            try:
                return await body(correlation_id)
            except LifecycleError as e:
                failure = LifecycleResult.failed(e.reason, e.message, e.record)
            except ExecutionConflictError as e:
                failure = LifecycleResult.failed(
                    LifecycleFailureReason.ANOTHER_EXECUTION_ACTIVE,
                    str(e),
                )
            except NotFoundError as e:
                failure = LifecycleResult.failed(LifecycleFailureReason.RECORD_NOT_FOUND, str(e))
            except StorageError as e:
                failure = LifecycleResult.failed(LifecycleFailureReason.STORAGE_CONFLICT, str(e))
            except Exception as e:
                await self._audit_logger.log_error(
                    error_type=type(e).__name__,
                    error_message=str(e),
                    details={"operation": operation, "entity": entity},
                    correlation_id=correlation_id,
                )
                raise

        await self._audit_logger.log_lifecycle_rejected(
            operation=operation,
            reason=failure.reason.value,
            message=failure.message,
            correlation_id=correlation_id,
            entity_id=entity,
        )
        return failure

    async def _start(self, raw_label: str, correlation_id: UUID) -> LifecycleResult:
        label = normalize_month_label(raw_label)
        if label is None:
            raise LifecycleError(
                LifecycleFailureReason.INVALID_MONTH_LABEL,
                f"Invalid month label: {raw_label!r}",
            )

        executing = await self._records.get_current_executing()
        if executing is not None and executing.month_label != label:
            raise LifecycleError(
                LifecycleFailureReason.ANOTHER_EXECUTION_ACTIVE,
                f"An execution is already in progress for {executing.month_label}",
                executing,
            )

        now = self._clock()
        existing = await self._records.get_by_month(label)
        if existing is not None and existing.is_closed:
            raise LifecycleError(
                LifecycleFailureReason.RECORD_CLOSED,
                f"Execution for {label} is closed. Undo or create a new month.",
                existing,
            )

        if existing is not None and existing.is_executing:
            current = await self._snapshots.get_by_record(existing.id)
            if current:
                return LifecycleResult.ok(existing, snapshots=current, message="Already executing")

        monthly_plan = await self._goal_plans.get_monthly_plan(label)
        if existing is None:
            record = ExecutionRecord(
                plan_id=monthly_plan.id,
                month_label=label,
                status=ExecutionStatus.EXECUTING,
                started_at_millis=now,
                created_at_millis=now,
                updated_at_millis=now,
            )
        else:
            record = existing.model_copy(update={
                "plan_id": monthly_plan.id,
                "status": ExecutionStatus.EXECUTING,
                "started_at_millis": existing.started_at_millis or now,
                "closed_at_millis": None,
                "updated_at_millis": now,
            })

        snapshots = await self._build_snapshots(record.id, label, monthly_plan.flex_percentage, now)

        previous_snapshots = await self._snapshots.get_by_record(record.id)
        await self._records.upsert(record)
        try:
            await self._snapshots.replace_for_record(record.id, snapshots)
            await self._goal_plans.mark_state(label, MonthlyGoalPlanState.EXECUTING)
        except Exception:
            await self._snapshots.replace_for_record(record.id, previous_snapshots)
            await self._restore_record(existing, record.id, now)
            raise

        await self._audit_logger.log_execution_started(
            record_id=record.id,
            month_label=label,
            snapshot_count=len(snapshots),
            correlation_id=correlation_id,
        )
        return LifecycleResult.ok(record, snapshots=snapshots)

    async def _build_snapshots(
        self,
        record_id: str,
        month_label: str,
        flex_percentage: float,
        now: int,
    ) -> list[ExecutionSnapshot]:
        requirements = await self._planning.calculate_monthly_requirements()
        plans = await self._goal_plans.sync_plans(month_label, requirements)
        requirements_by_goal = {r.goal_id: r for r in requirements}
        plans_by_goal = {p.goal_id: p for p in plans}

        snapshots = []
        for goal in await self._goals.get_active_goals():
            plan = plans_by_goal.get(goal.id)
            requirement = requirements_by_goal.get(goal.id)
            base = requirement.required_monthly if requirement is not None else None

            if plan is not None and plan.is_skipped:
                planned = 0.0
            elif plan is not None and plan.custom_amount is not None:
                planned = plan.custom_amount
            elif plan is not None and plan.is_protected:
                planned = base
            else:
                planned = base * flex_percentage if base is not None else None

            funded_at_start = requirement.current_total if requirement is not None else 0.0
            if planned is None:
                planned = max(0.0, goal.target_amount - funded_at_start)

            snapshots.append(
                ExecutionSnapshot(
                    execution_record_id=record_id,
                    goal_id=goal.id,
                    goal_name=goal.name,
                    currency=goal.currency,
                    target_amount=goal.target_amount,
                    current_total_at_start=max(0.0, funded_at_start),
                    required_amount=max(0.0, planned),
                    is_protected=plan.is_protected if plan is not None else False,
                    is_skipped=plan.is_skipped if plan is not None else False,
                    custom_amount=plan.custom_amount if plan is not None else None,
                    created_at_millis=now,
                )
            )
        return snapshots

    async def _restore_record(
        self,
        previous: Optional[ExecutionRecord],
        record_id: str,
        now: int,
    ) -> None:
        if previous is None:
            await self._records.revert_to_draft(record_id, now)
        else:
            await self._records.upsert(previous)

    async def _undo_start(self, record_id: str, correlation_id: UUID) -> LifecycleResult:
        record = await self._require_record(record_id)
        if not record.is_executing:
            raise LifecycleError(
                LifecycleFailureReason.NOT_EXECUTING,
                "Execution is not active",
                record,
            )
        if record.started_at_millis is None:
            raise LifecycleError(
                LifecycleFailureReason.MISSING_START,
                "Execution record missing start time",
                record,
            )

        now = self._clock()
        if now >= record.started_at_millis + self._start_window:
            raise LifecycleError(
                LifecycleFailureReason.UNDO_WINDOW_EXPIRED,
                "Undo window has expired",
                record,
            )

        snapshots = await self._snapshots.get_by_record(record_id)
        await self._snapshots.delete_by_record(record_id)
        try:
            reverted = await self._records.revert_to_draft(record_id, now)
        except Exception:
            await self._snapshots.replace_for_record(record_id, snapshots)
            raise
        try:
            await self._goal_plans.mark_state(record.month_label, MonthlyGoalPlanState.DRAFT)
        except Exception:
            await self._records.upsert(record)
            await self._snapshots.replace_for_record(record_id, snapshots)
            raise

        await self._audit_logger.log_execution_start_undone(
            record_id=record_id,
            month_label=record.month_label,
            correlation_id=correlation_id,
        )
        return LifecycleResult.ok(reverted)

    async def _complete(self, record_id: str, correlation_id: UUID) -> LifecycleResult:
        record = await self._require_record(record_id)
        if not record.is_executing:
            raise LifecycleError(
                LifecycleFailureReason.NOT_EXECUTING,
                f"Execution for {record.month_label} is not active",
                record,
            )
        if record.started_at_millis is None:
            raise LifecycleError(
                LifecycleFailureReason.MISSING_START,
                "Execution record missing start time",
                record,
            )

        snapshots = await self._snapshots.get_by_record(record_id)
        if not snapshots:
            raise LifecycleError(
                LifecycleFailureReason.NO_SNAPSHOTS,
                "No execution snapshots found",
                record,
            )

        completed_at = self._clock()
        progress = self._calculator.calculate(
            snapshots,
            await self._transactions.get_all_transactions(),
            await self._allocation_history.get_all(),
            record.started_at_millis,
            completed_at,
        )
        completions = [
            CompletedExecution(
                execution_record_id=record_id,
                goal_id=item.goal_id,
                goal_name=item.goal_name,
                currency=item.snapshot.currency,
                required_amount=item.snapshot.required_amount,
                actual_amount=item.contributed,
                completed_at_millis=completed_at,
                can_undo_until_millis=completed_at + self._completion_window,
            )
            for item in progress
        ]

        await self._completions.replace_for_record(record_id, completions)
        try:
            closed = await self._records.close(record_id, completed_at)
        except Exception:
            await self._completions.delete_by_record(record_id)
            raise
        try:
            await self._goal_plans.mark_state(record.month_label, MonthlyGoalPlanState.COMPLETED)
        except Exception:
            await self._records.upsert(record)
            await self._completions.delete_by_record(record_id)
            raise

        await self._audit_logger.log_execution_completed(
            record_id=record_id,
            month_label=record.month_label,
            total_required=sum(c.required_amount for c in completions),
            total_actual=sum(c.actual_amount for c in completions),
            correlation_id=correlation_id,
        )
        return LifecycleResult.ok(closed, snapshots=snapshots, completions=completions)

    async def _undo(self, record_id: str, correlation_id: UUID) -> LifecycleResult:
        record = await self._require_record(record_id)
        completions = await self._completions.get_by_record(record_id)
        if not completions:
            raise LifecycleError(
                LifecycleFailureReason.NOTHING_TO_UNDO,
                f"Nothing to undo for {record.month_label}",
                record,
            )

        now = self._clock()
        if not all(c.is_undoable(now) for c in completions):
            raise LifecycleError(
                LifecycleFailureReason.UNDO_WINDOW_EXPIRED,
                "Undo window has expired",
                record,
            )

        executing = await self._records.get_current_executing()
        if executing is not None and executing.id != record_id:
            raise LifecycleError(
                LifecycleFailureReason.ANOTHER_EXECUTION_ACTIVE,
                f"An execution is already in progress for {executing.month_label}",
                record,
            )

        await self._completions.delete_by_record(record_id)
        try:
            reopened = await self._records.reopen(record_id, now)
        except Exception:
            await self._completions.replace_for_record(record_id, completions)
            raise
        try:
            await self._goal_plans.mark_state(record.month_label, MonthlyGoalPlanState.EXECUTING)
        except Exception:
            await self._records.upsert(record)
            await self._completions.replace_for_record(record_id, completions)
            raise

        await self._audit_logger.log_execution_completion_undone(
            record_id=record_id,
            month_label=record.month_label,
            correlation_id=correlation_id,
        )
        snapshots = await self._snapshots.get_by_record(record_id)
        return LifecycleResult.ok(reopened, snapshots=snapshots)

    async def _require_record(self, record_id: str) -> ExecutionRecord:
        record = await self._records.get_by_id(record_id)
        if record is None:
            raise LifecycleError(
                LifecycleFailureReason.RECORD_NOT_FOUND,
                f"Execution record not found: {record_id}",
            )
        return record

    # =========================================================================
    # Queries
    # =========================================================================

    async def current_session(self, now_millis: Optional[int] = None) -> Optional[ExecutionSession]:
        """Session of the EXECUTING record, or None when no month is in flight."""
        record = await self._records.get_current_executing()
        if record is None:
            return None
        return await self._session(record, now_millis)

    async def session_for_record(
        self,
        record_id: str,
        now_millis: Optional[int] = None,
    ) -> Optional[ExecutionSession]:
        record = await self._records.get_by_id(record_id)
        if record is None:
            return None
        return await self._session(record, now_millis)

    async def _session(
        self,
        record: ExecutionRecord,
        now_millis: Optional[int],
    ) -> ExecutionSession:
        snapshots = await self._snapshots.get_by_record(record.id)
        if not snapshots or not record.started_at_millis:
            return ExecutionSession(record=record, goals=[])

        now = self._clock() if now_millis is None else now_millis
        if record.is_closed and record.closed_at_millis:
            now = min(now, record.closed_at_millis)

        transactions, history = await asyncio.gather(
            self._transactions.get_all_transactions(),
            self._allocation_history.get_all(),
        )
        goals = self._calculator.calculate(
            snapshots,
            transactions,
            history,
            record.started_at_millis,
            now,
        )
        return ExecutionSession(record=record, goals=goals)

    async def plan_history(self, now_millis: Optional[int] = None) -> list[PlanHistoryRow]:
        """One row per closed month with completion rows, newest month first."""
        now = self._clock() if now_millis is None else now_millis
        rows = []
        for record in await self._records.list_by_status(ExecutionStatus.CLOSED):
            completions = await self._completions.get_by_record(record.id)
            if not completions:
                continue
            rows.append(
                PlanHistoryRow(
                    record_id=record.id,
                    month_label=record.month_label,
                    completed_at_millis=max(c.completed_at_millis for c in completions),
                    total_required=sum(c.required_amount for c in completions),
                    total_actual=sum(c.actual_amount for c in completions),
                    is_undo_available=min(c.can_undo_until_millis for c in completions) > now,
                )
            )
        rows.sort(key=lambda r: month_sort_key(r.month_label), reverse=True)
        return rows
