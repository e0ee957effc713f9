"""
Execution engine package.

- rate_limiter: token bucket for outbound market-data calls
- funding: proportional distribution of an asset's balance over its goals
- progress: per-goal funding deltas over an execution period
- contributions: remaining-to-close helpers
- lifecycle: the start/complete/undo state machine

Only the dependency-free parts are re-exported here. The market gateways
import the rate limiter, so `contributions` and `lifecycle` are imported
from their own modules.
"""

from savings_engine.engine.funding import distribute_funding, funded_portion, funding_ratio
from savings_engine.engine.progress import ExecutionProgressCalculator, effective_targets
from savings_engine.engine.rate_limiter import TokenBucketRateLimiter

__all__ = [
    "ExecutionProgressCalculator",
    "TokenBucketRateLimiter",
    "distribute_funding",
    "effective_targets",
    "funded_portion",
    "funding_ratio",
]
