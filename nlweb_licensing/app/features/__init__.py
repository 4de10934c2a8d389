"""Feature registry, tier matrix and the feature gate."""

from .catalog import (
    CORE_FEATURES,
    FEATURE_GROUPS,
    TIER_LIMITATIONS,
    TIER_NAMES,
    TIER_PRICING,
    TierLimitations,
    TierPricing,
)
from .events import DecisionObserver, DenialEventLog
from .exceptions import FeatureGateError
from .gate import FeatureGate
from .models import (
    AccessStats,
    DenialEvent,
    FeatureDescriptor,
    FeatureGroup,
    Principal,
    TierInfo,
    UpgradePrompt,
)
from .registry import FeatureProvider, FeatureRegistry
from .tiers import TierMatrix

__all__ = [
    "CORE_FEATURES",
    "FEATURE_GROUPS",
    "TIER_LIMITATIONS",
    "TIER_NAMES",
    "TIER_PRICING",
    "AccessStats",
    "DecisionObserver",
    "DenialEvent",
    "DenialEventLog",
    "FeatureDescriptor",
    "FeatureGate",
    "FeatureGateError",
    "FeatureGroup",
    "FeatureProvider",
    "FeatureRegistry",
    "Principal",
    "TierInfo",
    "TierLimitations",
    "TierMatrix",
    "TierPricing",
    "UpgradePrompt",
]
