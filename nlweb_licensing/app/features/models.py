"""Domain models for the feature registry and gate."""
from __future__ import annotations

from datetime import datetime
from typing import Dict, FrozenSet, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from ..licensing.models import Tier


class FeatureDescriptor(BaseModel):
    """A gated feature registered once at startup."""

    id: str
    name: str
    description: str = ""
    required_tier: Tier = Tier.FREE
    group: str = "core"
    priority: int = 5

    model_config = ConfigDict(frozen=True)

    @field_validator("id", "name")
    @classmethod
    def _validate_not_blank(cls, value: str) -> str:
        if not value or not value.strip():
            raise ValueError("must not be empty")
        return value.strip()

    @field_validator("required_tier", mode="before")
    @classmethod
    def _coerce_tier(cls, value: object) -> Tier:
        if isinstance(value, Tier):
            return value
        return Tier(str(value).strip().lower())


class FeatureGroup(BaseModel):
    id: str
    name: str
    description: str = ""
    priority: int = 5

    model_config = ConfigDict(frozen=True)


class Principal(BaseModel):
    """The caller on whose behalf a feature is requested.

    Administrators hold every feature capability.
    """

    principal_id: str
    capabilities: FrozenSet[str] = Field(default_factory=frozenset)
    is_administrator: bool = False

    model_config = ConfigDict(frozen=True)

    def has_capability(self, capability: str) -> bool:
        return self.is_administrator or capability in self.capabilities


class TierInfo(BaseModel):
    tier: Tier
    name: str
    features: List[str]
    limitations: Dict[str, object]
    pricing: Dict[str, object]

    model_config = ConfigDict(frozen=True)


class UpgradePrompt(BaseModel):
    """Upgrade call-to-action shown after a confirmed denial."""

    feature: str
    feature_name: str
    current_tier: Tier
    required_tier: Tier
    upgrade_url: str
    message: str

    model_config = ConfigDict(frozen=True)


class DenialEvent(BaseModel):
    feature: str
    principal_id: Optional[str] = None
    reason: str
    timestamp: datetime
    site_url: str

    model_config = ConfigDict(frozen=True)


class AccessStats(BaseModel):
    total_denials: int = 0
    features_denied: Dict[str, int] = Field(default_factory=dict)
    recent_denials: int = 0

    model_config = ConfigDict(frozen=True)


__all__ = [
    "AccessStats",
    "DenialEvent",
    "FeatureDescriptor",
    "FeatureGroup",
    "Principal",
    "TierInfo",
    "UpgradePrompt",
]
