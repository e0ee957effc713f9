"""
Allocation Funding Distributor

How much of each allocation target on one asset is actually backed by the
asset's balance.

If the asset holds less than the sum of its targets, every target is
shrunk by the same ratio. If it holds more, every target is fully funded
and the surplus stays unallocated. The functions here are pure so the
same arithmetic can be replayed at any historical instant.
"""

from typing import Mapping, TypeVar

K = TypeVar("K")


def funding_ratio(balance: float, total_target: float) -> float:
    """
    Share of every target that the balance covers, in [0, 1].

    Negative inputs are treated as 0.
    """
    balance = max(0.0, balance)
    if balance <= 0 or total_target <= 0:
        return 0.0
    return min(1.0, balance / total_target)


def distribute_funding(balance: float, targets: Mapping[K, float]) -> dict[K, float]:
    """
    Split one asset's balance across its allocation targets.

    Args:
        balance: Best-known balance of the asset. Floored at 0.
        targets: Allocation target per key (usually goal id). Negative
            targets are floored at 0.

    Returns:
        Funded portion per key, never above that key's target. Every key
        of `targets` is present in the result.
    """
    clean = {key: max(0.0, amount) for key, amount in targets.items()}
    ratio = funding_ratio(balance, sum(clean.values()))
    if ratio >= 1.0:
        return clean
    return {key: amount * ratio for key, amount in clean.items()}


def funded_portion(balance: float, target: float, total_target: float) -> float:
    """Funded portion of a single target, given the asset's total target."""
    return max(0.0, target) * funding_ratio(balance, total_target)
