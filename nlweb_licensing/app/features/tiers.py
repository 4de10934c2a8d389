"""Cumulative tier-to-feature matrix."""
from __future__ import annotations

from dataclasses import asdict
from typing import Dict, FrozenSet, Optional, Tuple

from ..licensing.models import TIER_ORDER, Tier
from .catalog import TIER_LIMITATIONS, TIER_NAMES, TIER_PRICING, TierLimitations, TierPricing
from .models import TierInfo
from .registry import FeatureRegistry


class TierMatrix:
    """Answers tier questions against a :class:`FeatureRegistry`.

    Every tier includes the features of all lower tiers, so
    ``get_tier_features(t1) <= get_tier_features(t2)`` whenever ``t1 < t2``.
    """

    def __init__(self, registry: FeatureRegistry) -> None:
        self._registry = registry

    def get_tiers(self) -> Tuple[Tier, ...]:
        return TIER_ORDER

    def get_tier_features(self, tier: Tier) -> FrozenSet[str]:
        return frozenset(
            feature_id
            for feature_id, descriptor in self._registry.get_all_features().items()
            if descriptor.required_tier <= tier
        )

    def has_feature_access(self, tier: Tier, feature: str) -> bool:
        return feature in self.get_tier_features(tier)

    def is_free_feature(self, feature: str) -> bool:
        return self.get_feature_tier_requirement(feature) == Tier.FREE

    def get_feature_tier_requirement(self, feature: str) -> Optional[Tier]:
        return self._registry.get_feature_tier_requirement(feature)

    def get_tier_limitations(self, tier: Tier) -> TierLimitations:
        return TIER_LIMITATIONS.get(tier, TIER_LIMITATIONS[Tier.FREE])

    def get_tier_pricing(self, tier: Tier) -> Optional[TierPricing]:
        return TIER_PRICING.get(tier)

    def get_tier_info(self, tier: Tier) -> TierInfo:
        pricing = self.get_tier_pricing(tier)
        return TierInfo(
            tier=tier,
            name=TIER_NAMES.get(tier, "Unknown"),
            features=sorted(self.get_tier_features(tier)),
            limitations=asdict(self.get_tier_limitations(tier)),
            pricing=asdict(pricing) if pricing else {},
        )

    def get_tier_comparison(self) -> Dict[Tier, TierInfo]:
        return {tier: self.get_tier_info(tier) for tier in TIER_ORDER}

    def get_upgrade_tier(self, tier: Tier) -> Optional[Tier]:
        index = TIER_ORDER.index(tier)
        return TIER_ORDER[index + 1] if index + 1 < len(TIER_ORDER) else None

    def get_downgrade_tier(self, tier: Tier) -> Optional[Tier]:
        index = TIER_ORDER.index(tier)
        return TIER_ORDER[index - 1] if index > 0 else None

    def supports_multisite(self, tier: Tier) -> bool:
        return self.has_feature_access(tier, "multisite_licenses")

    @staticmethod
    def is_valid_tier(value: str) -> bool:
        return value in {tier.value for tier in TIER_ORDER}


__all__ = ["TierMatrix"]
