"""
Credit cost schedule.

Static mapping from analysis kind to the credit cost charged per provider,
consulted once per provider per request before any external call.
"""

from typing import Dict, List, Mapping, Optional

import structlog

from cognitive_profiler.models.contracts import AnalysisKind, ProviderId

logger = structlog.get_logger(__name__)

DEFAULT_KIND_COSTS: Dict[AnalysisKind, int] = {
    AnalysisKind.COGNITIVE: 100,
    AnalysisKind.PSYCHOLOGICAL: 150,
    AnalysisKind.COMPREHENSIVE_REPORT: 250,
    AnalysisKind.COMPREHENSIVE_PSYCHOLOGICAL_REPORT: 300,
}

# Purchasable credit packages (price in USD -> credits per provider)
CREDIT_PACKAGES: List[Dict[str, object]] = [
    {"price_usd": 1, "credits": 1_000, "price_id": "price_1000_credits"},
    {"price_usd": 10, "credits": 20_000, "price_id": "price_20000_credits"},
    {"price_usd": 100, "credits": 500_000, "price_id": "price_500000_credits"},
    {"price_usd": 1000, "credits": 10_000_000, "price_id": "price_10000000_credits"},
]


class CostSchedule:
    """Cost lookup per (analysis kind, provider)."""

    def __init__(self, costs: Optional[Mapping[AnalysisKind, Mapping[ProviderId, int]]] = None):
        self._costs: Dict[AnalysisKind, Dict[ProviderId, int]] = {
            kind: {provider: cost for provider in ProviderId}
            for kind, cost in DEFAULT_KIND_COSTS.items()
        }
        for kind, per_provider in (costs or {}).items():
            for provider, cost in per_provider.items():
                if cost < 0:
                    raise ValueError(f"Cost for {kind.value}/{provider.value} must be non-negative")
                self._costs[kind][provider] = int(cost)

    @classmethod
    def from_overrides(cls, overrides: Mapping[str, Mapping[str, int]]) -> "CostSchedule":
        """
        Build a schedule from raw settings overrides.

        Args:
            overrides: {"cognitive": {"openai": 120}, ...}; unknown kinds or
                providers raise ValueError

        Returns:
            CostSchedule with the defaults replaced where overridden
        """
        parsed: Dict[AnalysisKind, Dict[ProviderId, int]] = {}
        for kind_name, per_provider in overrides.items():
            kind = AnalysisKind(kind_name)
            parsed[kind] = {ProviderId(name): int(cost) for name, cost in per_provider.items()}
        if parsed:
            logger.info("Applied cost overrides", kinds=[k.value for k in parsed])
        return cls(parsed)

    def cost(self, kind: AnalysisKind, provider: ProviderId) -> int:
        return self._costs[kind][provider]

    def as_dict(self) -> Dict[str, Dict[str, int]]:
        return {
            kind.value: {provider.value: cost for provider, cost in per_provider.items()}
            for kind, per_provider in self._costs.items()
        }
