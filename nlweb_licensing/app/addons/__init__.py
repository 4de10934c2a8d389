"""Add-on licenses and metered credits."""

from .catalog import ADDON_CATALOG, AddonDefinition, get_addon_definition
from .manager import AddonEventLogger, AddonManager, LoggingAddonEventLogger
from .models import (
    AddonActionResult,
    AddonEvent,
    AddonEventType,
    AddonPricing,
    AddonType,
    CreditDebitRejected,
    InsufficientCredits,
)

__all__ = [
    "ADDON_CATALOG",
    "AddonActionResult",
    "AddonDefinition",
    "AddonEvent",
    "AddonEventLogger",
    "AddonEventType",
    "AddonManager",
    "AddonPricing",
    "AddonType",
    "CreditDebitRejected",
    "InsufficientCredits",
    "LoggingAddonEventLogger",
    "get_addon_definition",
]
