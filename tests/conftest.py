"""
Shared fixtures.

Every test runs against the in-memory backend with a controllable clock.
No network access: market data comes from fake sources.
"""

import asyncio

import pytest

from savings_engine.models.ledger import Asset
from savings_engine.orchestrator import create_engine
from savings_engine.services.market import ExchangeRateSource, OnChainBalanceSource

# 2025-12-10T12:00:00Z
T0 = 1_765_368_000_000


class FakeClock:
    """Epoch-millisecond clock that only moves when told to."""

    def __init__(self, now: int = T0):
        self.now = now

    def __call__(self) -> int:
        return self.now

    def advance(self, millis: int) -> int:
        self.now += millis
        return self.now


class FakeRateSource(ExchangeRateSource):
    """Rates from a dict; raises for unknown pairs or queued failures."""

    def __init__(self, rates=None, delay: float = 0.0):
        self.rates = dict(rates or {})
        self.failures: list[Exception] = []
        self.calls = 0
        self.delay = delay

    async def fetch_rate(self, from_currency: str, to_currency: str) -> float:
        self.calls += 1
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.failures:
            raise self.failures.pop(0)
        try:
            return self.rates[(from_currency, to_currency)]
        except KeyError:
            raise ConnectionError(f"no quote for {from_currency}/{to_currency}")


class FakeBalanceSource(OnChainBalanceSource):
    """On-chain balances keyed by asset id."""

    def __init__(self, balances=None):
        self.balances = dict(balances or {})
        self.calls = 0
        self.fail = False

    async def get_balance(self, asset: Asset) -> float:
        self.calls += 1
        if self.fail:
            raise ConnectionError("explorer unavailable")
        return self.balances[asset.id]


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def engine(clock):
    return create_engine(clock=clock)
