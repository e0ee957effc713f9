"""
Abstract Storage Interfaces

DESIGN DECISION: The engine talks to persistence only through these
interfaces. This allows us to:
1. Back the engine with SQLite, a mobile store or a remote API
2. Use in-memory storage for testing
3. Keep the lifecycle and funding logic free of storage details

Transaction and allocation data are read-only from the engine's point of
view; those repositories expose no write methods here.
"""

from abc import ABC, abstractmethod
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


class ExecutionRecordRepository(ABC):
    """
    Storage for monthly execution records.

    Implementations MUST reject a write that would leave two records in
    EXECUTING by raising ExecutionConflictError, checked atomically with
    the write (e.g. a unique partial index on status = 'executing').
    """

    @abstractmethod
    async def get_by_id(self, record_id: str) -> Optional[ExecutionRecord]:
        pass

    @abstractmethod
    async def get_by_month(self, month_label: str) -> Optional[ExecutionRecord]:
        pass

    @abstractmethod
    async def get_current_executing(self) -> Optional[ExecutionRecord]:
        """Return the single EXECUTING record, if any."""
        pass

    @abstractmethod
    async def list_by_status(self, status: ExecutionStatus) -> list[ExecutionRecord]:
        """List records in a status, newest month first."""
        pass

    @abstractmethod
    async def upsert(self, record: ExecutionRecord) -> ExecutionRecord:
        """
        Insert or replace a record.

        Raises:
            ExecutionConflictError: If the write would create a second
                EXECUTING record
        """
        pass

    @abstractmethod
    async def close(self, record_id: str, closed_at_millis: int) -> ExecutionRecord:
        """
        Transition a record to CLOSED.

        Raises:
            NotFoundError: If the record doesn't exist
        """
        pass

    @abstractmethod
    async def reopen(self, record_id: str, now_millis: int) -> ExecutionRecord:
        """
        Transition a record back to EXECUTING, keeping its start time.

        Raises:
            NotFoundError: If the record doesn't exist
            ExecutionConflictError: If another record is EXECUTING
        """
        pass

    @abstractmethod
    async def revert_to_draft(self, record_id: str, now_millis: int) -> ExecutionRecord:
        """
        Transition a record to DRAFT and clear its start time.

        Raises:
            NotFoundError: If the record doesn't exist
        """
        pass


class ExecutionSnapshotRepository(ABC):
    """Storage for per-goal snapshots taken when a month starts."""

    @abstractmethod
    async def get_by_record(self, record_id: str) -> list[ExecutionSnapshot]:
        pass

    @abstractmethod
    async def replace_for_record(
        self,
        record_id: str,
        snapshots: list[ExecutionSnapshot],
    ) -> None:
        """Atomically replace every snapshot of a record."""
        pass

    @abstractmethod
    async def delete_by_record(self, record_id: str) -> None:
        pass


class CompletedExecutionRepository(ABC):
    """Storage for per-goal completion rows of closed months."""

    @abstractmethod
    async def get_by_record(self, record_id: str) -> list[CompletedExecution]:
        pass

    @abstractmethod
    async def get_all(self) -> list[CompletedExecution]:
        pass

    @abstractmethod
    async def get_undoable(self, now_millis: int) -> list[CompletedExecution]:
        """Rows whose undo window is still open at `now_millis`, newest first."""
        pass

    @abstractmethod
    async def replace_for_record(
        self,
        record_id: str,
        completions: list[CompletedExecution],
    ) -> None:
        """Atomically replace every completion row of a record."""
        pass

    @abstractmethod
    async def delete_by_record(self, record_id: str) -> None:
        pass


class TransactionRepository(ABC):
    """Read-only access to the transaction ledger."""

    @abstractmethod
    async def get_all_transactions(self) -> list[Transaction]:
        pass

    @abstractmethod
    async def get_for_asset(self, asset_id: str) -> list[Transaction]:
        pass


class AllocationHistoryRepository(ABC):
    """Read-only access to the allocation history ledger."""

    @abstractmethod
    async def get_all(self) -> list[AllocationHistory]:
        pass


class AllocationRepository(ABC):
    """Read-only access to live allocations."""

    @abstractmethod
    async def get_for_goal(self, goal_id: str) -> list[Allocation]:
        pass

    @abstractmethod
    async def get_for_asset(self, asset_id: str) -> list[Allocation]:
        pass


class GoalRepository(ABC):
    """Read-only access to goals."""

    @abstractmethod
    async def get_goal(self, goal_id: str) -> Optional[Goal]:
        pass

    @abstractmethod
    async def get_active_goals(self) -> list[Goal]:
        pass


class AssetRepository(ABC):
    """Read-only access to assets."""

    @abstractmethod
    async def get_asset(self, asset_id: str) -> Optional[Asset]:
        pass


class MonthlyPlanRepository(ABC):
    """Storage for month-level plan settings."""

    @abstractmethod
    async def get_plan(self, month_label: str) -> Optional[MonthlyPlan]:
        pass

    @abstractmethod
    async def get_or_create_plan(self, month_label: str, now_millis: int) -> MonthlyPlan:
        pass

    @abstractmethod
    async def upsert(self, plan: MonthlyPlan) -> None:
        pass


class MonthlyGoalPlanRepository(ABC):
    """Storage for per-(goal, month) plans."""

    @abstractmethod
    async def get_plans(self, month_label: str) -> list[MonthlyGoalPlan]:
        pass

    @abstractmethod
    async def get_plan(self, month_label: str, goal_id: str) -> Optional[MonthlyGoalPlan]:
        pass

    @abstractmethod
    async def upsert(self, plan: MonthlyGoalPlan) -> None:
        pass

    @abstractmethod
    async def upsert_all(self, plans: list[MonthlyGoalPlan]) -> None:
        pass


class AuditStorageInterface(ABC):
    """
    Abstract interface for audit log storage.

    Audit logs are append-only - we never delete or modify them.
    """

    @abstractmethod
    async def append_event(self, event: AuditEvent) -> bool:
        """
        Append an audit event to the log.

        Returns:
            True if logged successfully
        """
        pass

    @abstractmethod
    async def get_events_by_correlation_id(
        self,
        correlation_id: UUID,
    ) -> list[AuditEvent]:
        """Events of one operation, in chronological order."""
        pass

    @abstractmethod
    async def get_events_by_entity(
        self,
        entity_type: str,
        entity_id: str,
    ) -> list[AuditEvent]:
        pass

    @abstractmethod
    async def get_recent_events(
        self,
        limit: int = 100,
    ) -> list[AuditEvent]:
        """Most recent events, newest first."""
        pass


class StorageError(Exception):
    """Base exception for storage operations."""
    pass


class NotFoundError(StorageError):
    """Entity not found in storage."""
    pass


class ExecutionConflictError(StorageError):
    """A write would leave more than one record EXECUTING."""
    pass
