"""
Tests for the exchange-rate and on-chain balance gateways.

Retries use tenacity's wait_none so failing fetches never sleep.
"""

import asyncio

import pytest
from tenacity import wait_none

from conftest import FakeBalanceSource, FakeRateSource
from savings_engine.audit.logger import AuditLogger
from savings_engine.engine.contributions import ContributionCalculator, remaining_to_close
from savings_engine.engine.rate_limiter import TokenBucketRateLimiter
from savings_engine.models.audit import AuditEventType
from savings_engine.models.execution import ExecutionGoalProgress, ExecutionSnapshot
from savings_engine.models.ledger import Asset
from savings_engine.services.market import (
    BalanceUnavailableError,
    ExchangeRateService,
    OnChainBalanceService,
    RateUnavailableError,
)
from savings_engine.services.storage import InMemoryAuditStorage, InMemoryStore


def roomy_limiter():
    return TokenBucketRateLimiter(100, 100)


def rate_service(source, clock, **kwargs):
    kwargs.setdefault("retry_attempts", 3)
    return ExchangeRateService(
        source,
        rate_limiter=roomy_limiter(),
        clock=clock,
        cache_ttl_seconds=300,
        retry_wait=wait_none(),
        **kwargs,
    )


def balance_service(source, clock, **kwargs):
    return OnChainBalanceService(
        source,
        rate_limiter=roomy_limiter(),
        clock=clock,
        cache_ttl_seconds=300,
        **kwargs,
    )


def on_chain_asset():
    return Asset(currency="ETH", address="0xabc", chain_id="ethereum")


class TestExchangeRateService:
    """Spot rates through cache, retry and fallback."""

    def test_same_currency_needs_no_lookup(self, clock):
        """Test that identical codes resolve to 1.0 without calling the source."""
        source = FakeRateSource()
        service = rate_service(source, clock)

        assert asyncio.run(service.fetch_rate("usd", "USD")) == 1.0
        assert source.calls == 0

    def test_usd_pegged_pairs_are_par(self, clock):
        """Test that USD, USDT and USDC convert at 1.0."""
        source = FakeRateSource()
        service = rate_service(source, clock)

        assert asyncio.run(service.fetch_rate("USDT", "USDC")) == 1.0
        assert asyncio.run(service.fetch_rate("USD", "USDT")) == 1.0
        assert source.calls == 0

    def test_rates_are_cached_within_ttl(self, clock):
        """Test that a fresh cached rate is reused and an expired one refetched."""
        source = FakeRateSource({("BTC", "USD"): 50_000.0})
        service = rate_service(source, clock)

        async def scenario():
            first = await service.fetch_rate("btc", "usd")
            second = await service.fetch_rate("BTC", "USD")
            calls_while_fresh = source.calls
            clock.advance(301_000)
            await service.fetch_rate("BTC", "USD")
            return first, second, calls_while_fresh

        first, second, calls_while_fresh = asyncio.run(scenario())

        assert first == second == 50_000.0
        assert calls_while_fresh == 1
        assert source.calls == 2

    def test_transient_failures_are_retried(self, clock):
        """Test that a fetch succeeds after a few failing attempts."""
        source = FakeRateSource({("EUR", "USD"): 1.1})
        source.failures = [ConnectionError("reset"), TimeoutError("slow")]
        service = rate_service(source, clock)

        assert asyncio.run(service.fetch_rate("EUR", "USD")) == 1.1
        assert source.calls == 3

    def test_exhausted_retries_without_cache(self, clock):
        """Test that an unavailable rate raises, and the optional variants return None."""
        source = FakeRateSource()
        service = rate_service(source, clock, retry_attempts=2)

        with pytest.raises(RateUnavailableError):
            asyncio.run(service.fetch_rate("EUR", "USD"))
        assert source.calls == 2
        assert asyncio.run(service.get_rate("EUR", "USD")) is None
        assert asyncio.run(service.convert(10.0, "EUR", "USD")) is None

    def test_invalid_rate_is_rejected(self, clock):
        """Test that a non-positive quote counts as a failure."""
        source = FakeRateSource({("EUR", "USD"): 0.0})
        service = rate_service(source, clock, retry_attempts=1)

        with pytest.raises(RateUnavailableError):
            asyncio.run(service.fetch_rate("EUR", "USD"))

    def test_timeout_counts_as_failure(self, clock):
        """Test that a source slower than the timeout is abandoned."""
        source = FakeRateSource({("EUR", "USD"): 1.1}, delay=0.2)
        service = rate_service(source, clock, retry_attempts=1, timeout_seconds=0.01)

        assert asyncio.run(service.get_rate("EUR", "USD")) is None

    def test_stale_rate_is_served_when_source_fails(self, clock):
        """Test that the last known rate is returned and the failure audited."""
        store = InMemoryStore()
        source = FakeRateSource({("EUR", "USD"): 1.1})
        service = rate_service(
            source,
            clock,
            retry_attempts=1,
            audit_logger=AuditLogger(InMemoryAuditStorage(store)),
        )

        async def scenario():
            await service.fetch_rate("EUR", "USD")
            clock.advance(600_000)
            source.rates.clear()
            return await service.fetch_rate("EUR", "USD")

        assert asyncio.run(scenario()) == 1.1
        failures = [
            e for e in store.audit_events
            if e.event_type == AuditEventType.EXTERNAL_FETCH_FAILED
        ]
        assert len(failures) == 1
        assert failures[0].details["service"] == "exchange_rate"

    def test_convert(self, clock):
        """Test amount conversion through a fetched rate."""
        service = rate_service(FakeRateSource({("EUR", "USD"): 1.25}), clock)
        assert asyncio.run(service.convert(8.0, "EUR", "USD")) == pytest.approx(10.0)

    def test_clear_cache_forces_refetch(self, clock):
        """Test that clearing the cache drops fresh entries."""
        source = FakeRateSource({("EUR", "USD"): 1.1})
        service = rate_service(source, clock)

        async def scenario():
            await service.fetch_rate("EUR", "USD")
            service.clear_cache()
            await service.fetch_rate("EUR", "USD")

        asyncio.run(scenario())
        assert source.calls == 2


class TestOnChainBalanceService:
    """On-chain balances through cache and fallback."""

    def test_asset_without_address_has_no_balance(self, clock):
        """Test that assets lacking an address or chain are rejected."""
        service = balance_service(FakeBalanceSource(), clock)
        asset = Asset(currency="ETH", address="0xabc")

        with pytest.raises(BalanceUnavailableError):
            asyncio.run(service.fetch_balance(asset))
        assert asyncio.run(service.get_balance(asset)) is None

    def test_balance_is_cached(self, clock):
        """Test that a fresh balance is reused unless a refresh is forced."""
        asset = on_chain_asset()
        source = FakeBalanceSource({asset.id: 2.5})
        service = balance_service(source, clock)

        async def scenario():
            first = await service.fetch_balance(asset)
            await service.fetch_balance(asset)
            calls_while_fresh = source.calls
            await service.fetch_balance(asset, force_refresh=True)
            return first, calls_while_fresh

        first, calls_while_fresh = asyncio.run(scenario())

        assert first.balance == 2.5
        assert not first.is_stale
        assert calls_while_fresh == 1
        assert source.calls == 2

    def test_stale_balance_on_failure(self, clock):
        """Test that a failed refresh returns the cached balance marked stale."""
        asset = on_chain_asset()
        source = FakeBalanceSource({asset.id: 2.5})
        service = balance_service(source, clock)

        async def scenario():
            await service.fetch_balance(asset)
            source.fail = True
            return await service.fetch_balance(asset, force_refresh=True)

        balance = asyncio.run(scenario())
        assert balance.balance == 2.5
        assert balance.is_stale

    def test_failure_without_cache(self, clock):
        """Test that a failed first fetch is unavailable."""
        asset = on_chain_asset()
        source = FakeBalanceSource({asset.id: 2.5})
        source.fail = True
        service = balance_service(source, clock)

        with pytest.raises(BalanceUnavailableError):
            asyncio.run(service.fetch_balance(asset))


def progress(contributed, planned, currency="USD"):
    snapshot = ExecutionSnapshot(
        execution_record_id="r1",
        goal_id="g1",
        goal_name="Trip",
        currency=currency,
        target_amount=5000.0,
        current_total_at_start=0.0,
        required_amount=planned,
    )
    return ExecutionGoalProgress(snapshot=snapshot, contributed=contributed, planned_amount=planned)


class TestContributionCalculator:
    """Remaining-to-close amounts in a display currency."""

    def test_remaining_to_close(self):
        """Test that over-contribution leaves nothing remaining."""
        assert remaining_to_close(progress(300.0, 1000.0)) == 700.0
        assert remaining_to_close(progress(1200.0, 1000.0)) == 0.0

    def test_remaining_converted(self, clock):
        """Test conversion of the remaining amount into another currency."""
        service = rate_service(FakeRateSource({("USD", "EUR"): 0.9}), clock)
        calculator = ContributionCalculator(service)

        remaining = asyncio.run(calculator.remaining_to_close_in(progress(300.0, 1000.0), "EUR"))
        assert remaining == pytest.approx(630.0)

    def test_remaining_unavailable_rate(self, clock):
        """Test that a missing rate yields None rather than a wrong amount."""
        calculator = ContributionCalculator(rate_service(FakeRateSource(), clock, retry_attempts=1))
        assert asyncio.run(calculator.remaining_to_close_in(progress(0.0, 10.0), "EUR")) is None

    def test_fulfilled_goal_needs_no_rate(self, clock):
        """Test that a fulfilled goal reports 0 without a lookup."""
        source = FakeRateSource()
        calculator = ContributionCalculator(rate_service(source, clock))

        assert asyncio.run(calculator.remaining_to_close_in(progress(10.0, 10.0), "EUR")) == 0.0
        assert source.calls == 0
