"""License validation, caching and domain binding."""

from .cache import LicenseSnapshotCache, ValidationCache
from .domains import domain_from_url, domains_match, verify_domain_binding
from .messages import status_from_server, status_message
from .models import (
    TIER_ORDER,
    AccessDecision,
    DecisionState,
    License,
    LicenseActionResult,
    LicenseStatus,
    RateLimited,
    ReasonCode,
    Tier,
)
from .rate_limit import FixedWindowRateLimiter
from .validator import FeatureTierLookup, LicenseValidator

__all__ = [
    "TIER_ORDER",
    "AccessDecision",
    "DecisionState",
    "FeatureTierLookup",
    "FixedWindowRateLimiter",
    "License",
    "LicenseActionResult",
    "LicenseSnapshotCache",
    "LicenseStatus",
    "LicenseValidator",
    "RateLimited",
    "ReasonCode",
    "Tier",
    "ValidationCache",
    "domain_from_url",
    "domains_match",
    "status_from_server",
    "status_message",
    "verify_domain_binding",
]
