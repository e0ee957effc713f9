"""
In-Memory Storage Implementation

DESIGN DECISION: The default backend keeps every table in process memory.
It is what the test-suite and the default wiring run on, and it doubles as
the reference for what a real backend must guarantee:
- Every method body runs without awaiting, so on a single event loop each
  call is atomic with respect to other tasks.
- The "one EXECUTING record" rule is checked inside the same call as the
  write, the way a unique partial index would enforce it.
- Reads return copies; callers can never mutate stored rows in place.

TRADEOFFS:
- Nothing survives the process
- Not safe to share across threads (one event loop only)
"""

from typing import Optional
from uuid import UUID

from savings_engine.models.audit import AuditEvent
from savings_engine.models.execution import (
    CompletedExecution,
    ExecutionRecord,
    ExecutionSnapshot,
    ExecutionStatus,
)
from savings_engine.models.ledger import (
    Allocation,
    AllocationHistory,
    Asset,
    Goal,
    Transaction,
)
from savings_engine.models.planning import MonthlyGoalPlan, MonthlyPlan
from savings_engine.services.storage.interface import (
    AllocationHistoryRepository,
    AllocationRepository,
    AssetRepository,
    AuditStorageInterface,
    CompletedExecutionRepository,
    ExecutionConflictError,
    ExecutionRecordRepository,
    ExecutionSnapshotRepository,
    GoalRepository,
    MonthlyGoalPlanRepository,
    MonthlyPlanRepository,
    NotFoundError,
    TransactionRepository,
)
from savings_engine.timeutils import month_label_for, month_sort_key


class InMemoryStore:
    """
    The tables behind every in-memory repository.

    One store is shared by all repositories of an engine so that they see
    each other's writes.
    """

    def __init__(self):
        self.records: dict[str, ExecutionRecord] = {}
        self.snapshots: dict[str, list[ExecutionSnapshot]] = {}
        self.completions: dict[str, list[CompletedExecution]] = {}
        self.goals: dict[str, Goal] = {}
        self.assets: dict[str, Asset] = {}
        self.transactions: list[Transaction] = []
        self.allocations: dict[tuple[str, str], Allocation] = {}
        self.allocation_history: list[AllocationHistory] = []
        self.monthly_plans: dict[str, MonthlyPlan] = {}
        self.goal_plans: dict[tuple[str, str], MonthlyGoalPlan] = {}
        self.audit_events: list[AuditEvent] = []


class InMemoryLedger:
    """
    Write side of the ledger tables.

    Stands in for the transaction/allocation management subsystem: the
    engine never calls it, tests and demos use it to seed data.
    """

    def __init__(self, store: InMemoryStore):
        self._store = store

    def add_goal(self, goal: Goal) -> Goal:
        self._store.goals[goal.id] = goal
        return goal

    def add_asset(self, asset: Asset) -> Asset:
        self._store.assets[asset.id] = asset
        return asset

    def add_transaction(self, transaction: Transaction) -> Transaction:
        self._store.transactions.append(transaction)
        return transaction

    def set_allocation(
        self,
        asset_id: str,
        goal_id: str,
        amount: float,
        at_millis: int,
        created_at_millis: Optional[int] = None,
    ) -> AllocationHistory:
        """
        Set the live allocation and append the matching history entry.

        An amount of 0 removes the live allocation.
        """
        key = (asset_id, goal_id)
        if amount > 0:
            existing = self._store.allocations.get(key)
            if existing is None:
                self._store.allocations[key] = Allocation(
                    asset_id=asset_id,
                    goal_id=goal_id,
                    amount=amount,
                )
            else:
                self._store.allocations[key] = existing.model_copy(update={"amount": amount})
        else:
            self._store.allocations.pop(key, None)

        entry = AllocationHistory(
            asset_id=asset_id,
            goal_id=goal_id,
            amount=amount,
            month_label=month_label_for(at_millis),
            timestamp=at_millis,
            created_at=at_millis if created_at_millis is None else created_at_millis,
        )
        self._store.allocation_history.append(entry)
        return entry


class InMemoryExecutionRecordRepository(ExecutionRecordRepository):

    def __init__(self, store: InMemoryStore):
        self._store = store

    def _require(self, record_id: str) -> ExecutionRecord:
        record = self._store.records.get(record_id)
        if record is None:
            raise NotFoundError(f"Execution record not found: {record_id}")
        return record

    def _check_single_executing(self, candidate: ExecutionRecord) -> None:
        if candidate.status != ExecutionStatus.EXECUTING:
            return
        for other in self._store.records.values():
            if other.id != candidate.id and other.status == ExecutionStatus.EXECUTING:
                raise ExecutionConflictError(
                    f"Execution already in progress for {other.month_label}"
                )

    async def get_by_id(self, record_id: str) -> Optional[ExecutionRecord]:
        record = self._store.records.get(record_id)
        return record.model_copy() if record else None

    async def get_by_month(self, month_label: str) -> Optional[ExecutionRecord]:
        for record in self._store.records.values():
            if record.month_label == month_label:
                return record.model_copy()
        return None

    async def get_current_executing(self) -> Optional[ExecutionRecord]:
        executing = [
            r for r in self._store.records.values()
            if r.status == ExecutionStatus.EXECUTING
        ]
        if not executing:
            return None
        executing.sort(key=lambda r: month_sort_key(r.month_label), reverse=True)
        return executing[0].model_copy()

    async def list_by_status(self, status: ExecutionStatus) -> list[ExecutionRecord]:
        records = [r.model_copy() for r in self._store.records.values() if r.status == status]
        records.sort(key=lambda r: month_sort_key(r.month_label), reverse=True)
        return records

    async def upsert(self, record: ExecutionRecord) -> ExecutionRecord:
        for other in self._store.records.values():
            if other.month_label == record.month_label and other.id != record.id:
                raise ExecutionConflictError(
                    f"A different record already exists for {record.month_label}"
                )
        self._check_single_executing(record)
        self._store.records[record.id] = record.model_copy()
        return record

    async def close(self, record_id: str, closed_at_millis: int) -> ExecutionRecord:
        record = self._require(record_id)
        updated = record.model_copy(update={
            "status": ExecutionStatus.CLOSED,
            "closed_at_millis": closed_at_millis,
            "updated_at_millis": closed_at_millis,
        })
        self._store.records[record_id] = updated
        return updated.model_copy()

    async def reopen(self, record_id: str, now_millis: int) -> ExecutionRecord:
        record = self._require(record_id)
        updated = record.model_copy(update={
            "status": ExecutionStatus.EXECUTING,
            "started_at_millis": record.started_at_millis or now_millis,
            "closed_at_millis": None,
            "updated_at_millis": now_millis,
        })
        self._check_single_executing(updated)
        self._store.records[record_id] = updated
        return updated.model_copy()

    async def revert_to_draft(self, record_id: str, now_millis: int) -> ExecutionRecord:
        record = self._require(record_id)
        updated = record.model_copy(update={
            "status": ExecutionStatus.DRAFT,
            "started_at_millis": None,
            "closed_at_millis": None,
            "updated_at_millis": now_millis,
        })
        self._store.records[record_id] = updated
        return updated.model_copy()


class InMemoryExecutionSnapshotRepository(ExecutionSnapshotRepository):

    def __init__(self, store: InMemoryStore):
        self._store = store

    async def get_by_record(self, record_id: str) -> list[ExecutionSnapshot]:
        return list(self._store.snapshots.get(record_id, []))

    async def replace_for_record(
        self,
        record_id: str,
        snapshots: list[ExecutionSnapshot],
    ) -> None:
        self._store.snapshots[record_id] = list(snapshots)

    async def delete_by_record(self, record_id: str) -> None:
        self._store.snapshots.pop(record_id, None)


class InMemoryCompletedExecutionRepository(CompletedExecutionRepository):

    def __init__(self, store: InMemoryStore):
        self._store = store

    async def get_by_record(self, record_id: str) -> list[CompletedExecution]:
        return list(self._store.completions.get(record_id, []))

    async def get_all(self) -> list[CompletedExecution]:
        rows = [c for items in self._store.completions.values() for c in items]
        rows.sort(key=lambda c: c.completed_at_millis, reverse=True)
        return rows

    async def get_undoable(self, now_millis: int) -> list[CompletedExecution]:
        return [c for c in await self.get_all() if c.is_undoable(now_millis)]

    async def replace_for_record(
        self,
        record_id: str,
        completions: list[CompletedExecution],
    ) -> None:
        self._store.completions[record_id] = list(completions)

    async def delete_by_record(self, record_id: str) -> None:
        self._store.completions.pop(record_id, None)


class InMemoryTransactionRepository(TransactionRepository):

    def __init__(self, store: InMemoryStore):
        self._store = store

    async def get_all_transactions(self) -> list[Transaction]:
        return list(self._store.transactions)

    async def get_for_asset(self, asset_id: str) -> list[Transaction]:
        return [t for t in self._store.transactions if t.asset_id == asset_id]


class InMemoryAllocationHistoryRepository(AllocationHistoryRepository):

    def __init__(self, store: InMemoryStore):
        self._store = store

    async def get_all(self) -> list[AllocationHistory]:
        return list(self._store.allocation_history)


class InMemoryAllocationRepository(AllocationRepository):

    def __init__(self, store: InMemoryStore):
        self._store = store

    async def get_for_goal(self, goal_id: str) -> list[Allocation]:
        return [a for a in self._store.allocations.values() if a.goal_id == goal_id]

    async def get_for_asset(self, asset_id: str) -> list[Allocation]:
        return [a for a in self._store.allocations.values() if a.asset_id == asset_id]


class InMemoryGoalRepository(GoalRepository):

    def __init__(self, store: InMemoryStore):
        self._store = store

    async def get_goal(self, goal_id: str) -> Optional[Goal]:
        return self._store.goals.get(goal_id)

    async def get_active_goals(self) -> list[Goal]:
        return [g for g in self._store.goals.values() if g.is_active]


class InMemoryAssetRepository(AssetRepository):

    def __init__(self, store: InMemoryStore):
        self._store = store

    async def get_asset(self, asset_id: str) -> Optional[Asset]:
        return self._store.assets.get(asset_id)


class InMemoryMonthlyPlanRepository(MonthlyPlanRepository):

    def __init__(self, store: InMemoryStore):
        self._store = store

    async def get_plan(self, month_label: str) -> Optional[MonthlyPlan]:
        plan = self._store.monthly_plans.get(month_label)
        return plan.model_copy() if plan else None

    async def get_or_create_plan(self, month_label: str, now_millis: int) -> MonthlyPlan:
        plan = self._store.monthly_plans.get(month_label)
        if plan is None:
            plan = MonthlyPlan(
                month_label=month_label,
                created_at_millis=now_millis,
                last_modified_at_millis=now_millis,
            )
            self._store.monthly_plans[month_label] = plan
        return plan.model_copy()

    async def upsert(self, plan: MonthlyPlan) -> None:
        self._store.monthly_plans[plan.month_label] = plan.model_copy()


class InMemoryMonthlyGoalPlanRepository(MonthlyGoalPlanRepository):

    def __init__(self, store: InMemoryStore):
        self._store = store

    async def get_plans(self, month_label: str) -> list[MonthlyGoalPlan]:
        return [
            p.model_copy() for (month, _), p in self._store.goal_plans.items()
            if month == month_label
        ]

    async def get_plan(self, month_label: str, goal_id: str) -> Optional[MonthlyGoalPlan]:
        plan = self._store.goal_plans.get((month_label, goal_id))
        return plan.model_copy() if plan else None

    async def upsert(self, plan: MonthlyGoalPlan) -> None:
        self._store.goal_plans[(plan.month_label, plan.goal_id)] = plan.model_copy()

    async def upsert_all(self, plans: list[MonthlyGoalPlan]) -> None:
        for plan in plans:
            self._store.goal_plans[(plan.month_label, plan.goal_id)] = plan.model_copy()


class InMemoryAuditStorage(AuditStorageInterface):
    """Append-only in-memory audit log."""

    def __init__(self, store: Optional[InMemoryStore] = None):
        self._store = store or InMemoryStore()

    async def append_event(self, event: AuditEvent) -> bool:
        self._store.audit_events.append(event)
        return True

    async def get_events_by_correlation_id(
        self,
        correlation_id: UUID,
    ) -> list[AuditEvent]:
        events = [e for e in self._store.audit_events if e.correlation_id == correlation_id]
        return sorted(events, key=lambda e: e.timestamp)

    async def get_events_by_entity(
        self,
        entity_type: str,
        entity_id: str,
    ) -> list[AuditEvent]:
        events = [
            e for e in self._store.audit_events
            if e.entity_type == entity_type and e.entity_id == entity_id
        ]
        return sorted(events, key=lambda e: e.timestamp)

    async def get_recent_events(
        self,
        limit: int = 100,
    ) -> list[AuditEvent]:
        return list(reversed(self._store.audit_events))[:limit]
