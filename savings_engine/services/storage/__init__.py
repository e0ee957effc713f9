"""
Storage Services Package

Provides abstract repository interfaces and the in-memory implementation.
The engine only ever depends on the interfaces; any backend that honours
them (including the single-EXECUTING rule) can be swapped in.
"""

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
    StorageError,
    TransactionRepository,
)
from savings_engine.services.storage.memory import (
    InMemoryAllocationHistoryRepository,
    InMemoryAllocationRepository,
    InMemoryAssetRepository,
    InMemoryAuditStorage,
    InMemoryCompletedExecutionRepository,
    InMemoryExecutionRecordRepository,
    InMemoryExecutionSnapshotRepository,
    InMemoryGoalRepository,
    InMemoryLedger,
    InMemoryMonthlyGoalPlanRepository,
    InMemoryMonthlyPlanRepository,
    InMemoryStore,
    InMemoryTransactionRepository,
)

__all__ = [
    # Interfaces
    "AllocationHistoryRepository",
    "AllocationRepository",
    "AssetRepository",
    "AuditStorageInterface",
    "CompletedExecutionRepository",
    "ExecutionRecordRepository",
    "ExecutionSnapshotRepository",
    "GoalRepository",
    "MonthlyGoalPlanRepository",
    "MonthlyPlanRepository",
    "TransactionRepository",
    # Exceptions
    "ExecutionConflictError",
    "NotFoundError",
    "StorageError",
    # In-memory implementation
    "InMemoryAllocationHistoryRepository",
    "InMemoryAllocationRepository",
    "InMemoryAssetRepository",
    "InMemoryAuditStorage",
    "InMemoryCompletedExecutionRepository",
    "InMemoryExecutionRecordRepository",
    "InMemoryExecutionSnapshotRepository",
    "InMemoryGoalRepository",
    "InMemoryLedger",
    "InMemoryMonthlyGoalPlanRepository",
    "InMemoryMonthlyPlanRepository",
    "InMemoryStore",
    "InMemoryTransactionRepository",
]
