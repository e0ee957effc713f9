"""
Market Data Gateways

Wraps the two external capabilities the engine consumes:
- ExchangeRateSource: spot rate between two currencies
- OnChainBalanceSource: balance of an on-chain address

DESIGN DECISION: Both gateways sit behind a token bucket, a per-call
timeout and a TTL cache. A failed lookup falls back to the last known
(stale) value; with nothing cached the value is "unavailable". The
`get_*` variants turn unavailable into None so callers can degrade a
single total instead of aborting a whole calculation.

TRADEOFFS:
- Stale values may be up to an arbitrary age old when the source is down
- Caches live in process memory only
"""

import asyncio
from abc import ABC, abstractmethod
from typing import Optional

import structlog
from tenacity import AsyncRetrying, stop_after_attempt, wait_exponential

from savings_engine.audit.logger import AuditLogger
from savings_engine.config import get_settings
from savings_engine.engine.rate_limiter import TokenBucketRateLimiter
from savings_engine.models.ledger import Asset, OnChainBalance
from savings_engine.timeutils import Clock, now_millis

logger = structlog.get_logger(__name__)

USD_PEGGED = frozenset({"USD", "USDT", "USDC"})


class ExchangeRateSource(ABC):
    """External spot-rate capability."""

    @abstractmethod
    async def fetch_rate(self, from_currency: str, to_currency: str) -> float:
        """
        Units of `to_currency` per one unit of `from_currency`.

        Raises on any failure.
        """
        pass


class OnChainBalanceSource(ABC):
    """External on-chain balance capability."""

    @abstractmethod
    async def get_balance(self, asset: Asset) -> float:
        """
        Current on-chain balance of the asset's address.

        Raises on any failure.
        """
        pass


class ExchangeRateService:
    """
    Rate-limited, cached access to exchange rates.

    Usage:
        service = ExchangeRateService(source)
        rate = await service.get_rate("BTC", "USD")   # None if unavailable
    """

    def __init__(
        self,
        source: ExchangeRateSource,
        rate_limiter: Optional[TokenBucketRateLimiter] = None,
        clock: Optional[Clock] = None,
        timeout_seconds: Optional[float] = None,
        cache_ttl_seconds: Optional[float] = None,
        retry_attempts: Optional[int] = None,
        retry_wait=None,
        audit_logger: Optional[AuditLogger] = None,
    ):
        settings = get_settings()
        market = settings.market_data
        limits = settings.rate_limits

        self._source = source
        self._rate_limiter = rate_limiter or TokenBucketRateLimiter(
            limits.exchange_max_tokens,
            limits.exchange_refill_per_second,
        )
        self._clock = clock or now_millis
        self._timeout = timeout_seconds if timeout_seconds is not None else market.fetch_timeout_seconds
        ttl = cache_ttl_seconds if cache_ttl_seconds is not None else market.rate_cache_ttl_seconds
        self._ttl_millis = int(ttl * 1000)
        self._retry_attempts = retry_attempts or market.retry_attempts
        self._retry_wait = retry_wait or wait_exponential(multiplier=1, min=2, max=10)
        self._audit_logger = audit_logger
        self._cache: dict[tuple[str, str], tuple[float, int]] = {}

    async def fetch_rate(self, from_currency: str, to_currency: str) -> float:
        """
        Resolve a rate, raising when no value can be produced.

        Raises:
            RateUnavailableError: If the fetch failed and nothing is cached
        """
        source_code = from_currency.strip().upper()
        target_code = to_currency.strip().upper()

        if source_code == target_code:
            return 1.0
        if source_code in USD_PEGGED and target_code in USD_PEGGED:
            return 1.0

        key = (source_code, target_code)
        cached = self._cache.get(key)
        if cached is not None and self._clock() - cached[1] < self._ttl_millis:
            return cached[0]

        try:
            rate = await self._fetch_with_retry(source_code, target_code)
        except Exception as e:
            await self._report_failure(source_code, target_code, e)
            if cached is not None:
                logger.warning(
                    "exchange_rate_stale_fallback",
                    from_currency=source_code,
                    to_currency=target_code,
                    age_millis=self._clock() - cached[1],
                )
                return cached[0]
            raise RateUnavailableError(
                f"No rate available for {source_code}->{target_code}: {e}"
            ) from e

        self._cache[key] = (rate, self._clock())
        return rate

    async def get_rate(self, from_currency: str, to_currency: str) -> Optional[float]:
        """Like fetch_rate, but returns None instead of raising."""
        try:
            return await self.fetch_rate(from_currency, to_currency)
        except MarketDataError:
            return None

    async def convert(
        self,
        amount: float,
        from_currency: str,
        to_currency: str,
    ) -> Optional[float]:
        """Convert an amount, or None when the rate is unavailable."""
        rate = await self.get_rate(from_currency, to_currency)
        if rate is None:
            return None
        return amount * rate

    def clear_cache(self) -> None:
        self._cache.clear()

    async def _fetch_with_retry(self, from_currency: str, to_currency: str) -> float:
        async for attempt in AsyncRetrying(
            stop=stop_after_attempt(self._retry_attempts),
            wait=self._retry_wait,
            reraise=True,
        ):
            with attempt:
                await self._rate_limiter.acquire()
                rate = await asyncio.wait_for(
                    self._source.fetch_rate(from_currency, to_currency),
                    timeout=self._timeout,
                )
                if rate is None or rate <= 0:
                    raise RateUnavailableError(
                        f"Source returned invalid rate {rate!r} for {from_currency}->{to_currency}"
                    )
                return float(rate)

    async def _report_failure(self, from_currency: str, to_currency: str, error: Exception) -> None:
        if self._audit_logger is None:
            logger.warning(
                "exchange_rate_fetch_failed",
                from_currency=from_currency,
                to_currency=to_currency,
                error=str(error),
            )
            return
        await self._audit_logger.log_external_fetch_failed(
            service="exchange_rate",
            error_message=str(error) or type(error).__name__,
            details={"from": from_currency, "to": to_currency},
        )


class OnChainBalanceService:
    """
    Rate-limited, cached access to on-chain balances.

    Only assets with both an address and a chain have an on-chain balance.
    """

    def __init__(
        self,
        source: OnChainBalanceSource,
        rate_limiter: Optional[TokenBucketRateLimiter] = None,
        clock: Optional[Clock] = None,
        timeout_seconds: Optional[float] = None,
        cache_ttl_seconds: Optional[float] = None,
        audit_logger: Optional[AuditLogger] = None,
    ):
        settings = get_settings()
        market = settings.market_data
        limits = settings.rate_limits

        self._source = source
        self._rate_limiter = rate_limiter or TokenBucketRateLimiter(
            limits.balance_max_tokens,
            limits.balance_refill_per_second,
        )
        self._clock = clock or now_millis
        self._timeout = timeout_seconds if timeout_seconds is not None else market.fetch_timeout_seconds
        ttl = cache_ttl_seconds if cache_ttl_seconds is not None else market.balance_cache_ttl_seconds
        self._ttl_millis = int(ttl * 1000)
        self._audit_logger = audit_logger
        self._cache: dict[str, OnChainBalance] = {}

    async def fetch_balance(self, asset: Asset, force_refresh: bool = False) -> OnChainBalance:
        """
        Resolve an asset's on-chain balance.

        Raises:
            BalanceUnavailableError: If the asset has no on-chain source, or
                the fetch failed and nothing is cached
        """
        if not asset.has_on_chain_source:
            raise BalanceUnavailableError(f"Asset {asset.id} has no address and chain")

        cached = self._cache.get(asset.id)
        if (
            cached is not None
            and not force_refresh
            and self._clock() - cached.fetched_at_millis < self._ttl_millis
        ):
            return cached

        try:
            await self._rate_limiter.acquire()
            value = await asyncio.wait_for(
                self._source.get_balance(asset),
                timeout=self._timeout,
            )
        except Exception as e:
            if self._audit_logger is not None:
                await self._audit_logger.log_external_fetch_failed(
                    service="on_chain_balance",
                    error_message=str(e) or type(e).__name__,
                    details={"asset_id": asset.id, "chain_id": asset.chain_id},
                )
            else:
                logger.warning(
                    "balance_fetch_failed",
                    asset_id=asset.id,
                    error=str(e),
                )
            if cached is not None:
                return cached.model_copy(update={"is_stale": True})
            raise BalanceUnavailableError(
                f"No balance available for asset {asset.id}: {e}"
            ) from e

        balance = OnChainBalance(
            asset_id=asset.id,
            balance=float(value),
            fetched_at_millis=self._clock(),
        )
        self._cache[asset.id] = balance
        return balance

    async def get_balance(self, asset: Asset) -> Optional[float]:
        """The asset's on-chain balance, or None when unavailable."""
        try:
            return (await self.fetch_balance(asset)).balance
        except MarketDataError:
            return None

    def clear_cache(self) -> None:
        self._cache.clear()


class MarketDataError(Exception):
    """Base exception for market data lookups."""
    pass


class RateUnavailableError(MarketDataError):
    """No exchange rate could be produced."""
    pass


class BalanceUnavailableError(MarketDataError):
    """No on-chain balance could be produced."""
    pass
