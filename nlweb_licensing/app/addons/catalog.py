"""Static catalog of independently licensed add-ons."""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, Mapping, Optional, Tuple

from ..licensing.models import Tier
from .models import AddonType


@dataclass(frozen=True)
class AddonDefinition:
    """Describes an add-on, its base-tier requirement and operation costs."""

    addon_id: str
    name: str
    description: str
    item_name: str
    addon_type: AddonType
    required_tier: Tier = Tier.PRO
    features: Tuple[str, ...] = ()
    credit_cost: Mapping[str, int] = field(default_factory=dict)

    @property
    def is_credit_based(self) -> bool:
        return self.addon_type == AddonType.CREDIT_BASED

    def cost_for(self, operation: str) -> Optional[int]:
        return self.credit_cost.get(operation)


ADDON_CATALOG: Dict[str, AddonDefinition] = {
    "automation_agents": AddonDefinition(
        addon_id="automation_agents",
        name="Automation Agents",
        description="AI-powered content automation and bulk operations",
        item_name="NLWeb Automation Agents",
        addon_type=AddonType.CREDIT_BASED,
        features=("content_automation", "bulk_operations", "workflow_triggers"),
        credit_cost={"content_generation": 10, "bulk_operation": 5, "workflow_trigger": 2},
    ),
    "ai_content_generation": AddonDefinition(
        addon_id="ai_content_generation",
        name="AI Content Generation",
        description="Advanced AI content writing and SEO optimization",
        item_name="NLWeb AI Content Generation",
        addon_type=AddonType.CREDIT_BASED,
        features=("ai_writing", "seo_optimization", "content_enhancement"),
        credit_cost={"generate_post": 25, "seo_optimization": 15, "content_rewrite": 20},
    ),
    "advanced_analytics": AddonDefinition(
        addon_id="advanced_analytics",
        name="Advanced Analytics Pro",
        description="Custom reports, data export and advanced insights",
        item_name="NLWeb Advanced Analytics Pro",
        addon_type=AddonType.FEATURE_BASED,
        features=("custom_reports", "data_export", "advanced_insights", "real_time_analytics"),
    ),
}

ADDON_BASE_PRICE = 99
AGENCY_DISCOUNTS: Dict[str, int] = {"automation_agents": 20}
DEFAULT_AGENCY_DISCOUNT = 15


def get_addon_definition(addon_id: str) -> Optional[AddonDefinition]:
    return ADDON_CATALOG.get(addon_id)


__all__ = [
    "ADDON_BASE_PRICE",
    "ADDON_CATALOG",
    "AGENCY_DISCOUNTS",
    "AddonDefinition",
    "DEFAULT_AGENCY_DISCOUNT",
    "get_addon_definition",
]
