"""
Cost accounting: pricing and the append-only cost ledger
"""  # noqa: D200, D212, D415

from .pricing import DEFAULT_PRICING, PRICING, PricingModel, calculate_cost, lookup_pricing
from .tracking import (
    CostBreakdown,
    CostLedger,
    CostRecord,
    CostSink,
    JsonlCostSink,
    matches_filters,
)

__all__ = [
    "DEFAULT_PRICING",
    "PRICING",
    "CostBreakdown",
    "CostLedger",
    "CostRecord",
    "CostSink",
    "JsonlCostSink",
    "PricingModel",
    "calculate_cost",
    "lookup_pricing",
    "matches_filters",
]
