"""Static catalog of core features, feature groups and tier metadata."""
from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, Tuple

from ..licensing.models import Tier
from .models import FeatureDescriptor, FeatureGroup


@dataclass(frozen=True)
class TierLimitations:
    """Usage ceilings attached to a tier."""

    sites_limit: int
    api_calls_month: int
    storage_mb: int
    support_level: str


@dataclass(frozen=True)
class TierPricing:
    price: int
    currency: str = "USD"
    period: str = "monthly"


TIER_NAMES: Dict[Tier, str] = {
    Tier.FREE: "Free",
    Tier.PRO: "Pro",
    Tier.ENTERPRISE: "Enterprise",
    Tier.AGENCY: "Agency",
}

TIER_LIMITATIONS: Dict[Tier, TierLimitations] = {
    Tier.FREE: TierLimitations(sites_limit=1, api_calls_month=1000, storage_mb=10, support_level="community"),
    Tier.PRO: TierLimitations(sites_limit=1, api_calls_month=10000, storage_mb=100, support_level="priority"),
    Tier.ENTERPRISE: TierLimitations(
        sites_limit=100, api_calls_month=100000, storage_mb=1000, support_level="dedicated"
    ),
    Tier.AGENCY: TierLimitations(
        sites_limit=1000, api_calls_month=1000000, storage_mb=10000, support_level="white_glove"
    ),
}

TIER_PRICING: Dict[Tier, TierPricing] = {
    Tier.FREE: TierPricing(price=0, period="lifetime"),
    Tier.PRO: TierPricing(price=29),
    Tier.ENTERPRISE: TierPricing(price=99),
    Tier.AGENCY: TierPricing(price=299),
}

FEATURE_GROUPS: Tuple[FeatureGroup, ...] = (
    FeatureGroup(id="core", name="Core Features", description="Essential NLWeb functionality", priority=10),
    FeatureGroup(id="advanced_search", name="Advanced Search", description="Enhanced search capabilities", priority=9),
    FeatureGroup(id="analytics", name="Analytics", description="Usage tracking and reporting", priority=8),
    FeatureGroup(id="performance", name="Performance", description="Speed and optimization features", priority=8),
    FeatureGroup(id="security", name="Security", description="Security and protection features", priority=10),
    FeatureGroup(id="ui", name="User Interface", description="Design and user experience", priority=7),
    FeatureGroup(id="integrations", name="Integrations", description="Third-party integrations", priority=7),
    FeatureGroup(id="automation", name="Automation", description="AI automation and agents", priority=9),
    FeatureGroup(id="reseller", name="Reseller Tools", description="Agency and reseller features", priority=8),
    FeatureGroup(id="licensing", name="Licensing", description="License management features", priority=9),
    FeatureGroup(id="branding", name="Branding", description="Customization and branding", priority=6),
    FeatureGroup(id="support", name="Support", description="Support and services", priority=5),
)


def _feature(
    feature_id: str,
    name: str,
    description: str,
    tier: Tier,
    group: str,
    priority: int,
) -> FeatureDescriptor:
    return FeatureDescriptor(
        id=feature_id,
        name=name,
        description=description,
        required_tier=tier,
        group=group,
        priority=priority,
    )


CORE_FEATURES: Tuple[FeatureDescriptor, ...] = (
    _feature("api_endpoint", "REST API Endpoint", "Natural language query REST API endpoint", Tier.FREE, "core", 10),
    _feature(
        "search_shortcode",
        "Search Shortcode",
        "Frontend search shortcode for natural language queries",
        Tier.FREE,
        "core",
        10,
    ),
    _feature("admin_interface", "Admin Interface", "Admin settings and management interface", Tier.FREE, "core", 10),
    _feature(
        "schema_org_responses",
        "Schema.org Responses",
        "Structured data responses compatible with AI agents",
        Tier.FREE,
        "core",
        10,
    ),
    _feature(
        "query_enhancement",
        "Query Enhancement",
        "Enhanced content query processing for natural language",
        Tier.FREE,
        "core",
        10,
    ),
    _feature("basic_caching", "Basic Caching", "Transient caching for improved performance", Tier.FREE, "performance", 8),
    _feature(
        "security_features",
        "Security Features",
        "Input sanitization, rate limiting and CORS protection",
        Tier.FREE,
        "security",
        10,
    ),
    _feature("mobile_responsive", "Mobile Responsive", "Responsive design optimized for mobile devices", Tier.FREE, "ui", 7),
    _feature(
        "vector_embeddings",
        "Vector Embeddings",
        "Semantic search using vector embeddings and similarity scoring",
        Tier.PRO,
        "advanced_search",
        9,
    ),
    _feature(
        "analytics_dashboard",
        "Analytics Dashboard",
        "Search analytics, usage statistics and performance metrics",
        Tier.PRO,
        "analytics",
        8,
    ),
    _feature(
        "advanced_filtering",
        "Advanced Filtering",
        "Custom filters, faceted search and advanced query options",
        Tier.PRO,
        "advanced_search",
        8,
    ),
    _feature("custom_templates", "Custom Templates", "Customizable search result templates and layouts", Tier.PRO, "ui", 6),
    _feature("priority_support", "Priority Support", "Priority email support and documentation access", Tier.PRO, "support", 5),
    _feature(
        "realtime_suggestions",
        "Real-time Suggestions",
        "Live search suggestions and auto-completion",
        Tier.ENTERPRISE,
        "advanced_search",
        9,
    ),
    _feature(
        "advanced_analytics",
        "Advanced Analytics",
        "Detailed analytics with user behavior tracking and reports",
        Tier.ENTERPRISE,
        "analytics",
        8,
    ),
    _feature(
        "multisite_licenses",
        "Multi-site Licenses",
        "License management across multisite networks",
        Tier.ENTERPRISE,
        "licensing",
        9,
    ),
    _feature(
        "custom_integrations",
        "Custom Integrations",
        "Custom API integrations and third-party connectors",
        Tier.ENTERPRISE,
        "integrations",
        7,
    ),
    _feature("white_label", "White Label", "Remove NLWeb branding and customize interface", Tier.ENTERPRISE, "branding", 6),
    _feature(
        "automation_agents",
        "Automation Agents",
        "AI-powered content automation and workflow agents",
        Tier.AGENCY,
        "automation",
        10,
    ),
    _feature(
        "reseller_management",
        "Reseller Management",
        "Client management and sub-license creation tools",
        Tier.AGENCY,
        "reseller",
        9,
    ),
    _feature(
        "client_dashboard",
        "Client Dashboard",
        "Dedicated dashboard for managing multiple client sites",
        Tier.AGENCY,
        "reseller",
        8,
    ),
    _feature(
        "bulk_operations",
        "Bulk Operations",
        "Bulk configuration and management across multiple sites",
        Tier.AGENCY,
        "reseller",
        7,
    ),
    _feature(
        "custom_development",
        "Custom Development",
        "Custom feature development and implementation services",
        Tier.AGENCY,
        "support",
        8,
    ),
)


__all__ = [
    "CORE_FEATURES",
    "FEATURE_GROUPS",
    "TIER_LIMITATIONS",
    "TIER_NAMES",
    "TIER_PRICING",
    "TierLimitations",
    "TierPricing",
]
