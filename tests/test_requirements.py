"""
Tests for monthly requirement calculation.
"""

import asyncio
from datetime import date

import pytest
from tenacity import wait_none

from conftest import T0, FakeBalanceSource, FakeRateSource
from savings_engine.engine.rate_limiter import TokenBucketRateLimiter
from savings_engine.models.ledger import Asset, Goal, GoalLifecycleStatus, Transaction
from savings_engine.models.planning import RequirementStatus
from savings_engine.planning.requirements import (
    MonthlyPlanningService,
    months_remaining,
    requirement_status,
)
from savings_engine.services.market import ExchangeRateService, OnChainBalanceService
from savings_engine.services.storage import (
    InMemoryAllocationRepository,
    InMemoryAssetRepository,
    InMemoryGoalRepository,
    InMemoryLedger,
    InMemoryStore,
    InMemoryTransactionRepository,
)

TODAY = date(2025, 12, 10)


class TestMonthsRemaining:
    """Counting payment dates before a deadline."""

    def test_first_of_month_payments(self):
        """Test payments on the 1st between today and the deadline."""
        assert months_remaining(TODAY, date(2026, 3, 15)) == 3

    def test_mid_month_payments(self):
        """Test a payment day still ahead in the current month."""
        assert months_remaining(TODAY, date(2026, 3, 15), payment_day=15) == 3

    def test_deadline_on_payment_day_is_excluded(self):
        """Test that a payment falling on the deadline does not count."""
        assert months_remaining(TODAY, date(2026, 3, 1)) == 2

    def test_payment_today_is_excluded(self):
        """Test that a payment date equal to today does not count."""
        assert months_remaining(date(2025, 12, 1), date(2026, 2, 2)) == 2

    def test_minimum_one_month(self):
        """Test that past and imminent deadlines still plan one month."""
        assert months_remaining(TODAY, date(2025, 12, 31)) == 1
        assert months_remaining(TODAY, date(2024, 1, 1)) == 1


class TestRequirementStatus:
    """Status thresholds."""

    def test_statuses(self):
        """Test each status band."""
        assert requirement_status(0.0, 3, 0.0) == RequirementStatus.COMPLETED
        assert requirement_status(50_000.0, 3, 12_000.0) == RequirementStatus.CRITICAL
        assert requirement_status(18_000.0, 3, 6_000.0) == RequirementStatus.ATTENTION
        assert requirement_status(100.0, 1, 100.0) == RequirementStatus.ATTENTION
        assert requirement_status(300.0, 3, 100.0) == RequirementStatus.ON_TRACK


@pytest.fixture
def store():
    return InMemoryStore()


@pytest.fixture
def ledger(store):
    return InMemoryLedger(store)


def planning_service(store, clock, exchange_rates=None, balances=None):
    return MonthlyPlanningService(
        goal_repository=InMemoryGoalRepository(store),
        asset_repository=InMemoryAssetRepository(store),
        allocation_repository=InMemoryAllocationRepository(store),
        transaction_repository=InMemoryTransactionRepository(store),
        exchange_rates=exchange_rates,
        balances=balances,
        clock=clock,
        payment_day=1,
    )


def rates(clock, quotes):
    return ExchangeRateService(
        FakeRateSource(quotes),
        rate_limiter=TokenBucketRateLimiter(100, 100),
        clock=clock,
        retry_attempts=1,
        retry_wait=wait_none(),
    )


def add_goal(ledger, name, target, currency="USD", deadline=date(2026, 3, 15), **kwargs):
    return ledger.add_goal(
        Goal(name=name, currency=currency, target_amount=target, deadline=deadline, **kwargs)
    )


def fund(ledger, asset, amount):
    ledger.add_transaction(Transaction(asset_id=asset.id, amount=amount, date_millis=T0 - 1_000))


class TestMonthlyPlanningService:
    """Requirements from goals, allocations and balances."""

    def test_requirement_from_funded_allocation(self, store, ledger, clock):
        """Test remaining amount and monthly requirement of a partly funded goal."""
        goal = add_goal(ledger, "Car", 1200.0)
        asset = ledger.add_asset(Asset(currency="USD"))
        fund(ledger, asset, 300.0)
        ledger.set_allocation(asset.id, goal.id, 300.0, T0 - 5_000)

        [req] = asyncio.run(planning_service(store, clock).calculate_monthly_requirements())

        assert req.current_total == pytest.approx(300.0)
        assert req.remaining_amount == pytest.approx(900.0)
        assert req.months_remaining == 3
        assert req.required_monthly == pytest.approx(300.0)
        assert req.progress == pytest.approx(0.25)
        assert req.status == RequirementStatus.ON_TRACK

    def test_underfunded_shared_asset(self, store, ledger, clock):
        """Test that two goals on one short asset are credited proportionally."""
        a = add_goal(ledger, "A", 1000.0)
        b = add_goal(ledger, "B", 1000.0)
        asset = ledger.add_asset(Asset(currency="USD"))
        fund(ledger, asset, 500.0)
        ledger.set_allocation(asset.id, a.id, 600.0, T0 - 5_000)
        ledger.set_allocation(asset.id, b.id, 400.0, T0 - 5_000)

        reqs = asyncio.run(planning_service(store, clock).calculate_monthly_requirements())

        totals = {r.goal_name: r.current_total for r in reqs}
        assert totals == {"A": pytest.approx(300.0), "B": pytest.approx(200.0)}

    def test_on_chain_balance_is_added(self, store, ledger, clock):
        """Test that an asset's on-chain balance counts on top of its manual ledger."""
        goal = add_goal(ledger, "Stack", 1000.0)
        asset = ledger.add_asset(Asset(currency="USD", address="0xabc", chain_id="base"))
        fund(ledger, asset, 100.0)
        ledger.set_allocation(asset.id, goal.id, 1000.0, T0 - 5_000)
        balances = OnChainBalanceService(
            FakeBalanceSource({asset.id: 200.0}),
            rate_limiter=TokenBucketRateLimiter(100, 100),
            clock=clock,
        )

        [req] = asyncio.run(
            planning_service(store, clock, balances=balances).calculate_monthly_requirements()
        )
        assert req.current_total == pytest.approx(300.0)

    def test_cross_currency_allocation(self, store, ledger, clock):
        """Test that funding in another currency is converted to the goal currency."""
        goal = add_goal(ledger, "Trip", 1000.0)
        asset = ledger.add_asset(Asset(currency="EUR"))
        fund(ledger, asset, 100.0)
        ledger.set_allocation(asset.id, goal.id, 100.0, T0 - 5_000)

        service = planning_service(store, clock, exchange_rates=rates(clock, {("EUR", "USD"): 1.1}))
        [req] = asyncio.run(service.calculate_monthly_requirements())
        assert req.current_total == pytest.approx(110.0)

    def test_unconvertible_allocation_contributes_nothing(self, store, ledger, clock):
        """Test that an allocation without a rate is left out of the total."""
        goal = add_goal(ledger, "Trip", 1000.0)
        asset = ledger.add_asset(Asset(currency="EUR"))
        fund(ledger, asset, 100.0)
        ledger.set_allocation(asset.id, goal.id, 100.0, T0 - 5_000)

        [req] = asyncio.run(planning_service(store, clock).calculate_monthly_requirements())
        assert req.current_total == 0.0
        assert req.remaining_amount == 1000.0

    def test_only_active_goals_sorted_by_name(self, store, ledger, clock):
        """Test that paused goals are skipped and results are name-ordered."""
        add_goal(ledger, "beta", 100.0)
        add_goal(ledger, "Alpha", 100.0)
        add_goal(ledger, "Paused", 100.0, lifecycle_status=GoalLifecycleStatus.PAUSED)

        reqs = asyncio.run(planning_service(store, clock).calculate_monthly_requirements())
        assert [r.goal_name for r in reqs] == ["Alpha", "beta"]

    def test_completed_goal(self, store, ledger, clock):
        """Test that a fully funded goal requires nothing."""
        goal = add_goal(ledger, "Done", 500.0)
        asset = ledger.add_asset(Asset(currency="USD"))
        fund(ledger, asset, 800.0)
        ledger.set_allocation(asset.id, goal.id, 500.0, T0 - 5_000)

        [req] = asyncio.run(planning_service(store, clock).calculate_monthly_requirements())
        assert req.required_monthly == 0.0
        assert req.status == RequirementStatus.COMPLETED
        assert req.progress == 1.0

    def test_single_goal_lookup(self, store, ledger, clock):
        """Test fetching one goal's requirement and a missing goal."""
        goal = add_goal(ledger, "Car", 1200.0)
        service = planning_service(store, clock)

        assert asyncio.run(service.get_monthly_requirement(goal.id)).required_monthly == pytest.approx(400.0)
        assert asyncio.run(service.get_monthly_requirement("missing")) is None

    def test_total_required_in_display_currency(self, store, ledger, clock):
        """Test summing requirements across goal currencies."""
        add_goal(ledger, "Car", 300.0)
        add_goal(ledger, "Trip", 300.0, currency="EUR")
        service = planning_service(store, clock, exchange_rates=rates(clock, {("EUR", "USD"): 1.1}))

        assert asyncio.run(service.total_required("usd")) == pytest.approx(210.0)

    def test_total_required_unavailable(self, store, ledger, clock):
        """Test that a total that cannot be converted is None."""
        add_goal(ledger, "Car", 300.0)
        add_goal(ledger, "Trip", 300.0, currency="EUR")

        assert asyncio.run(planning_service(store, clock).total_required("USD")) is None
