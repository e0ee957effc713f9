"""
Contribution helpers for an open execution period.

How much is still missing to close each goal's monthly plan, optionally
expressed in another currency for display.
"""

from typing import Optional

from savings_engine.models.execution import ExecutionGoalProgress
from savings_engine.services.market import ExchangeRateService


def remaining_to_close(progress: ExecutionGoalProgress) -> float:
    return max(0.0, progress.planned_amount - progress.contributed)


class ContributionCalculator:
    """Remaining-to-close amounts converted through the exchange-rate gateway."""

    def __init__(self, exchange_rates: ExchangeRateService):
        self._exchange_rates = exchange_rates

    async def remaining_to_close_in(
        self,
        progress: ExecutionGoalProgress,
        currency: str,
    ) -> Optional[float]:
        """Remaining amount in `currency`, or None if no rate is available."""
        remaining = remaining_to_close(progress)
        if remaining <= 0:
            return 0.0
        return await self.convert_amount(remaining, progress.snapshot.currency, currency)

    async def convert_amount(
        self,
        amount: float,
        from_currency: str,
        to_currency: str,
    ) -> Optional[float]:
        if amount <= 0:
            return 0.0
        if from_currency.upper() == to_currency.upper():
            return amount
        return await self._exchange_rates.convert(amount, from_currency, to_currency)
