"""
Monthly Planning Service

Computes what every active goal needs this month.

For each goal:
1. Current total = funded portion of every live allocation, where each
   asset's live balance is its manual ledger plus its on-chain balance,
   converted to the goal currency.
2. Remaining = max(0, target - current total).
3. Months remaining = payment dates left before the deadline (at least 1).
4. Required monthly = remaining / months remaining.

DESIGN DECISION: Every balance and rate lookup for a calculation is issued
up front and concurrently, then joined before any arithmetic runs. A lookup
that fails degrades only the allocation it feeds (it contributes 0); it
never aborts the whole calculation.
"""

import asyncio
from datetime import date, datetime, timezone
from typing import Optional

import structlog

from savings_engine.config import get_settings
from savings_engine.engine.funding import funded_portion
from savings_engine.models.ledger import Allocation, Asset, Goal, TransactionSource
from savings_engine.models.planning import MonthlyRequirement, RequirementStatus
from savings_engine.services.market import ExchangeRateService, OnChainBalanceService
from savings_engine.services.storage.interface import (
    AllocationRepository,
    AssetRepository,
    GoalRepository,
    TransactionRepository,
)
from savings_engine.timeutils import Clock, now_millis

logger = structlog.get_logger(__name__)

CRITICAL_MONTHLY_THRESHOLD = 10_000
ATTENTION_MONTHLY_THRESHOLD = 5_000


def _add_month(year: int, month: int) -> tuple[int, int]:
    if month == 12:
        return year + 1, 1
    return year, month + 1


def months_remaining(today: date, deadline: date, payment_day: int = 1) -> int:
    """
    Payment dates strictly after `today` and strictly before `deadline`.

    Always at least 1, so a goal due this month still gets a requirement.
    """
    payment_day = max(1, min(28, payment_day))
    year, month = today.year, today.month
    payment = date(year, month, payment_day)
    if payment <= today:
        year, month = _add_month(year, month)
        payment = date(year, month, payment_day)

    count = 0
    while payment < deadline:
        count += 1
        year, month = _add_month(year, month)
        payment = date(year, month, payment_day)
    return max(1, count)


def requirement_status(remaining: float, months: int, required_monthly: float) -> RequirementStatus:
    if remaining <= 0:
        return RequirementStatus.COMPLETED
    if required_monthly > CRITICAL_MONTHLY_THRESHOLD:
        return RequirementStatus.CRITICAL
    if required_monthly > ATTENTION_MONTHLY_THRESHOLD or months <= 1:
        return RequirementStatus.ATTENTION
    return RequirementStatus.ON_TRACK


class MonthlyPlanningService:
    """
    Computes MonthlyRequirement records for active goals.

    Usage:
        service = MonthlyPlanningService(goals, assets, allocations, transactions)
        requirements = await service.calculate_monthly_requirements()
    """

    def __init__(
        self,
        goal_repository: GoalRepository,
        asset_repository: AssetRepository,
        allocation_repository: AllocationRepository,
        transaction_repository: TransactionRepository,
        exchange_rates: Optional[ExchangeRateService] = None,
        balances: Optional[OnChainBalanceService] = None,
        clock: Optional[Clock] = None,
        payment_day: Optional[int] = None,
    ):
        self._goals = goal_repository
        self._assets = asset_repository
        self._allocations = allocation_repository
        self._transactions = transaction_repository
        self._exchange_rates = exchange_rates
        self._balances = balances
        self._clock = clock or now_millis
        self._payment_day = payment_day or get_settings().planning.payment_day

    async def calculate_monthly_requirements(self) -> list[MonthlyRequirement]:
        """Requirements for every active goal, sorted by goal name."""
        goals = await self._goals.get_active_goals()
        if not goals:
            return []
        requirements = await self._calculate(goals)
        return sorted(requirements, key=lambda r: (r.goal_name.lower(), r.goal_id))

    async def get_monthly_requirement(self, goal_id: str) -> Optional[MonthlyRequirement]:
        goal = await self._goals.get_goal(goal_id)
        if goal is None:
            return None
        requirements = await self._calculate([goal])
        return requirements[0]

    async def total_required(self, display_currency: Optional[str] = None) -> Optional[float]:
        """
        Sum of required monthly amounts in `display_currency`.

        Returns None when any requirement cannot be converted.
        """
        currency = (display_currency or get_settings().planning.display_currency).upper()
        requirements = await self.calculate_monthly_requirements()
        converted = await asyncio.gather(*(
            self._convert(r.required_monthly, r.currency, currency)
            for r in requirements
        ))
        if any(amount is None for amount in converted):
            return None
        return sum(converted)

    # -------------------------------------------------------------------------
    # Internals
    # -------------------------------------------------------------------------

    async def _calculate(self, goals: list[Goal]) -> list[MonthlyRequirement]:
        allocation_lists = await asyncio.gather(
            *(self._allocations.get_for_goal(goal.id) for goal in goals)
        )
        allocations_by_goal = {
            goal.id: allocations for goal, allocations in zip(goals, allocation_lists)
        }

        asset_ids = sorted({a.asset_id for allocs in allocation_lists for a in allocs})
        asset_states = await asyncio.gather(*(self._asset_state(asset_id) for asset_id in asset_ids))
        assets = dict(zip(asset_ids, asset_states))

        pairs = set()
        for goal in goals:
            for allocation in allocations_by_goal[goal.id]:
                asset = assets[allocation.asset_id][0]
                asset_currency = asset.currency if asset else goal.currency
                if asset_currency != goal.currency:
                    pairs.add((asset_currency, goal.currency))
        pair_list = sorted(pairs)
        rate_values = await asyncio.gather(*(self._rate(src, dst) for src, dst in pair_list))
        rates = dict(zip(pair_list, rate_values))

        today = datetime.fromtimestamp(self._clock() / 1000, tz=timezone.utc).date()
        return [
            self._requirement_for(goal, allocations_by_goal[goal.id], assets, rates, today)
            for goal in goals
        ]

    async def _asset_state(self, asset_id: str) -> tuple[Optional[Asset], float, float]:
        """(asset, live balance, total allocated) for one asset."""
        asset, transactions, allocations = await asyncio.gather(
            self._assets.get_asset(asset_id),
            self._transactions.get_for_asset(asset_id),
            self._allocations.get_for_asset(asset_id),
        )
        manual = sum(t.amount for t in transactions if t.source == TransactionSource.MANUAL)
        on_chain = 0.0
        if asset is not None and asset.has_on_chain_source and self._balances is not None:
            on_chain = await self._balances.get_balance(asset) or 0.0
        total_allocated = sum(max(0.0, a.amount) for a in allocations)
        return asset, max(0.0, manual + on_chain), total_allocated

    async def _rate(self, from_currency: str, to_currency: str) -> Optional[float]:
        if self._exchange_rates is None:
            return None
        return await self._exchange_rates.get_rate(from_currency, to_currency)

    async def _convert(self, amount: float, from_currency: str, to_currency: str) -> Optional[float]:
        if from_currency.upper() == to_currency.upper():
            return amount
        rate = await self._rate(from_currency.upper(), to_currency.upper())
        return None if rate is None else amount * rate

    def _requirement_for(
        self,
        goal: Goal,
        allocations: list[Allocation],
        assets: dict[str, tuple[Optional[Asset], float, float]],
        rates: dict[tuple[str, str], Optional[float]],
        today: date,
    ) -> MonthlyRequirement:
        current_total = 0.0
        for allocation in allocations:
            asset, balance, total_allocated = assets[allocation.asset_id]
            funded = funded_portion(balance, allocation.amount, total_allocated)
            asset_currency = asset.currency if asset else goal.currency
            if asset_currency == goal.currency:
                current_total += funded
                continue
            rate = rates.get((asset_currency, goal.currency))
            if rate is None:
                logger.info(
                    "allocation_skipped_no_rate",
                    goal_id=goal.id,
                    asset_id=allocation.asset_id,
                    from_currency=asset_currency,
                    to_currency=goal.currency,
                )
                continue
            current_total += funded * rate

        remaining = max(0.0, goal.target_amount - current_total)
        months = months_remaining(today, goal.deadline, self._payment_day)
        required_monthly = remaining / months
        progress = min(current_total / goal.target_amount, 1.0) if goal.target_amount > 0 else 0.0

        return MonthlyRequirement(
            goal_id=goal.id,
            goal_name=goal.name,
            currency=goal.currency,
            target_amount=goal.target_amount,
            current_total=current_total,
            remaining_amount=remaining,
            months_remaining=months,
            required_monthly=required_monthly,
            progress=progress,
            deadline=goal.deadline,
            status=requirement_status(remaining, months, required_monthly),
        )
