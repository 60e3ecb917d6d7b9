"""Asset-allocation estimation from account-category balances."""

from __future__ import annotations

from typing import Mapping, Protocol, Sequence

from .schema import ASSET_CLASSES, AssetAllocation, SimulationContext

# Assumed holdings per account category, as fractions of that category's balance.
REBALANCING_WEIGHTS: dict[str, dict[str, float]] = {
    "cash": {"cash": 1.0},
    "tax_deferred": {"stocks": 0.7, "bonds": 0.2, "international": 0.1},
    "roth": {"stocks": 0.8, "international": 0.2},
    "taxable": {"stocks": 0.6, "bonds": 0.3, "international": 0.1},
}

LIFECYCLE_WEIGHTS: dict[str, dict[str, float]] = {
    "cash": {"cash": 1.0},
    "tax_deferred": {"stocks": 0.7, "bonds": 0.25, "cash": 0.05},
    "roth": {"stocks": 0.8, "international": 0.15, "cash": 0.05},
    "taxable": {"stocks": 0.6, "bonds": 0.3, "international": 0.1},
}

DEFAULT_WEIGHTS = {"stocks": 0.6, "bonds": 0.4}


class AllocationEstimator(Protocol):
    def estimate(self, accounts: Sequence[str], context: SimulationContext) -> tuple[AssetAllocation, float]:
        """Return the blended allocation of ``accounts`` and their total value."""
        ...


class HeuristicAllocationEstimator:
    """Blends fixed per-category weights by balance."""

    def __init__(
        self,
        weights: Mapping[str, Mapping[str, float]] | None = None,
        default: Mapping[str, float] = DEFAULT_WEIGHTS,
    ) -> None:
        self._weights = dict(REBALANCING_WEIGHTS if weights is None else weights)
        self._default = dict(default)

    def estimate(self, accounts: Sequence[str], context: SimulationContext) -> tuple[AssetAllocation, float]:
        totals = dict.fromkeys(ASSET_CLASSES, 0.0)
        portfolio = 0.0
        for account in accounts:
            balance = context.balance(account)
            if balance <= 0:
                continue
            portfolio += balance
            for asset, weight in self._weights.get(account, self._default).items():
                totals[asset] += balance * weight
        if portfolio <= 0:
            return AssetAllocation(), 0.0
        return AssetAllocation(**{asset: value / portfolio for asset, value in totals.items()}), portfolio


def lifecycle_estimator() -> HeuristicAllocationEstimator:
    return HeuristicAllocationEstimator(LIFECYCLE_WEIGHTS)
