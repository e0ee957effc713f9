"""
Orchestrator for the Savings Engine

Wires repositories, market gateways, planning services and the lifecycle
controller into one bundle.

DESIGN DECISION: Every collaborator can be supplied by the caller. What is
not supplied falls back to the in-memory backend and the settings, so a
fully working engine needs no configuration at all:

    engine = create_engine()
    engine.ledger.add_goal(...)
    result = await engine.lifecycle.start("2025-12")
"""

from dataclasses import dataclass
from typing import Optional

from savings_engine.audit.logger import AuditLogger
from savings_engine.engine.contributions import ContributionCalculator
from savings_engine.engine.lifecycle import ExecutionLifecycleController
from savings_engine.engine.progress import ExecutionProgressCalculator
from savings_engine.planning.flex import FlexAdjustmentService
from savings_engine.planning.goal_plans import MonthlyGoalPlanService
from savings_engine.planning.requirements import MonthlyPlanningService
from savings_engine.services.market import (
    ExchangeRateService,
    ExchangeRateSource,
    OnChainBalanceService,
    OnChainBalanceSource,
)
from savings_engine.services.storage import (
    AuditStorageInterface,
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
from savings_engine.timeutils import Clock, now_millis


@dataclass
class SavingsEngine:
    """Every component of a wired engine."""

    lifecycle: ExecutionLifecycleController
    planning: MonthlyPlanningService
    goal_plans: MonthlyGoalPlanService
    flex: FlexAdjustmentService
    calculator: ExecutionProgressCalculator
    contributions: Optional[ContributionCalculator]
    exchange_rates: Optional[ExchangeRateService]
    balances: Optional[OnChainBalanceService]
    audit_logger: AuditLogger
    store: InMemoryStore
    ledger: InMemoryLedger


def create_engine(
    exchange_rate_source: Optional[ExchangeRateSource] = None,
    balance_source: Optional[OnChainBalanceSource] = None,
    store: Optional[InMemoryStore] = None,
    audit_storage: Optional[AuditStorageInterface] = None,
    clock: Optional[Clock] = None,
) -> SavingsEngine:
    """
    Factory function to create all engine components.

    Args:
        exchange_rate_source: Spot-rate capability. Without one, only
            same-currency (and USD-pegged) amounts can be combined.
        balance_source: On-chain balance capability. Without one, assets
            count their manual ledger only.
        store: Shared in-memory tables. A fresh store is created if None.
        audit_storage: Where audit events persist. Defaults to the store.
        clock: Epoch-millisecond clock for every component.

    Returns:
        A SavingsEngine bundle.
    """
    clock = clock or now_millis
    store = store or InMemoryStore()
    audit_logger = AuditLogger(audit_storage or InMemoryAuditStorage(store))

    exchange_rates = None
    contributions = None
    if exchange_rate_source is not None:
        exchange_rates = ExchangeRateService(
            exchange_rate_source,
            clock=clock,
            audit_logger=audit_logger,
        )
        contributions = ContributionCalculator(exchange_rates)

    balances = None
    if balance_source is not None:
        balances = OnChainBalanceService(
            balance_source,
            clock=clock,
            audit_logger=audit_logger,
        )

    goals = InMemoryGoalRepository(store)
    transactions = InMemoryTransactionRepository(store)

    planning = MonthlyPlanningService(
        goal_repository=goals,
        asset_repository=InMemoryAssetRepository(store),
        allocation_repository=InMemoryAllocationRepository(store),
        transaction_repository=transactions,
        exchange_rates=exchange_rates,
        balances=balances,
        clock=clock,
    )
    flex = FlexAdjustmentService()
    goal_plans = MonthlyGoalPlanService(
        goal_plan_repository=InMemoryMonthlyGoalPlanRepository(store),
        plan_repository=InMemoryMonthlyPlanRepository(store),
        flex_service=flex,
        audit_logger=audit_logger,
        clock=clock,
    )
    calculator = ExecutionProgressCalculator(clock)

    lifecycle = ExecutionLifecycleController(
        record_repository=InMemoryExecutionRecordRepository(store),
        snapshot_repository=InMemoryExecutionSnapshotRepository(store),
        completion_repository=InMemoryCompletedExecutionRepository(store),
        transaction_repository=transactions,
        allocation_history_repository=InMemoryAllocationHistoryRepository(store),
        goal_repository=goals,
        planning_service=planning,
        goal_plan_service=goal_plans,
        calculator=calculator,
        audit_logger=audit_logger,
        clock=clock,
    )

    return SavingsEngine(
        lifecycle=lifecycle,
        planning=planning,
        goal_plans=goal_plans,
        flex=flex,
        calculator=calculator,
        contributions=contributions,
        exchange_rates=exchange_rates,
        balances=balances,
        audit_logger=audit_logger,
        store=store,
        ledger=InMemoryLedger(store),
    )
