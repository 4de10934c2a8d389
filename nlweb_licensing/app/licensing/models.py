"""Domain models for licenses and access decisions."""
from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Mapping, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator


class Tier(str, Enum):
    """Ordered subscription levels; each tier includes every lower one."""

    FREE = "free"
    PRO = "pro"
    ENTERPRISE = "enterprise"
    AGENCY = "agency"

    @property
    def rank(self) -> int:
        return TIER_ORDER.index(self)

    def __lt__(self, other: object) -> bool:
        if not isinstance(other, Tier):
            return NotImplemented
        return self.rank < other.rank

    def __le__(self, other: object) -> bool:
        if not isinstance(other, Tier):
            return NotImplemented
        return self.rank <= other.rank

    def __gt__(self, other: object) -> bool:
        if not isinstance(other, Tier):
            return NotImplemented
        return self.rank > other.rank

    def __ge__(self, other: object) -> bool:
        if not isinstance(other, Tier):
            return NotImplemented
        return self.rank >= other.rank

    def __hash__(self) -> int:
        return hash(self.value)

    @property
    def label(self) -> str:
        return self.value.capitalize()

    @property
    def label_with_article(self) -> str:
        """``"a Pro"``, ``"an Enterprise"`` for use in sentences."""

        article = "an" if self.label[0] in "AEIOU" else "a"
        return f"{article} {self.label}"

    @classmethod
    def coerce(cls, value: Any, default: Optional["Tier"] = None) -> "Tier":
        """Return the tier named by ``value`` or ``default`` (free) when unknown."""

        if isinstance(value, Tier):
            return value
        try:
            return cls(str(value).strip().lower())
        except ValueError:
            return default if default is not None else cls.FREE


TIER_ORDER: Tuple[Tier, ...] = (Tier.FREE, Tier.PRO, Tier.ENTERPRISE, Tier.AGENCY)


class LicenseStatus(str, Enum):
    ACTIVE = "active"
    INACTIVE = "inactive"
    EXPIRED = "expired"
    ERROR = "error"
    DENIED = "denied"
    UNKNOWN = "unknown"


class License(BaseModel):
    """Snapshot of the base subscription as last reported by the server.

    Any status other than ``active`` is normalized to the free tier so a
    stale or failed record can never unlock paid features.
    """

    status: LicenseStatus
    tier: Tier = Tier.FREE
    expires_at: Optional[datetime] = None
    sites_used: int = 0
    sites_limit: int = 1
    sites: Tuple[str, ...] = Field(default_factory=tuple)
    credit_balance: Optional[int] = None
    message: Optional[str] = None
    cached_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    model_config = ConfigDict(frozen=True)

    @model_validator(mode="before")
    @classmethod
    def _free_unless_active(cls, data: Any) -> Any:
        if isinstance(data, Mapping):
            status = data.get("status")
            if status not in (LicenseStatus.ACTIVE, LicenseStatus.ACTIVE.value):
                data = dict(data)
                data["tier"] = Tier.FREE
        return data

    @field_validator("tier", mode="before")
    @classmethod
    def _coerce_tier(cls, value: Any) -> Tier:
        return Tier.coerce(value)

    @field_validator("sites", mode="before")
    @classmethod
    def _coerce_sites(cls, value: Any) -> Tuple[str, ...]:
        if not value:
            return ()
        return tuple(str(site) for site in value if site)

    @property
    def is_active(self) -> bool:
        return self.status == LicenseStatus.ACTIVE

    def to_storage(self) -> Dict[str, Any]:
        return self.model_dump(mode="json")


class DecisionState(str, Enum):
    """Terminal states of a single feature validation."""

    NO_LICENSE = "no_license"
    PENDING_VALIDATION = "pending_validation"
    GRANTED = "granted"
    DENIED = "denied"
    SERVER_ERROR = "server_error"
    RATE_LIMITED = "rate_limited"


class ReasonCode(str, Enum):
    GRANTED = "granted"
    FREE_FEATURE = "free_feature"
    NO_LICENSE = "no_license"
    DENIED = "denied"
    TIER_INSUFFICIENT = "tier_insufficient"
    DOMAIN_MISMATCH = "domain_mismatch"
    SERVER_ERROR = "server_error"
    RATE_LIMITED = "rate_limited"
    MISSING_CAPABILITY = "missing_capability"
    UNKNOWN_FEATURE = "unknown_feature"


_CONFIRMED_DENIALS = {
    ReasonCode.NO_LICENSE,
    ReasonCode.DENIED,
    ReasonCode.TIER_INSUFFICIENT,
    ReasonCode.DOMAIN_MISMATCH,
}


class AccessDecision(BaseModel):
    """Immutable result of one access check."""

    feature_id: str
    principal_id: Optional[str] = None
    granted: bool
    state: DecisionState
    reason_code: ReasonCode
    message: Optional[str] = None
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    model_config = ConfigDict(frozen=True)

    @property
    def is_confirmed_denial(self) -> bool:
        """Whether the denial reflects the license itself rather than an outage."""

        return not self.granted and self.reason_code in _CONFIRMED_DENIALS


class LicenseActionResult(BaseModel):
    """Outcome of an explicit activation or deactivation."""

    success: bool
    message: str
    error_code: Optional[str] = None
    license: Optional[License] = None
    remote_confirmed: Optional[bool] = None

    model_config = ConfigDict(frozen=True)


class RateLimited(Exception):
    """Raised locally when a key exceeded its request window."""

    def __init__(self, key: str, retry_after: float) -> None:
        super().__init__(f"Rate limit exceeded for {key}")
        self.key = key
        self.retry_after = retry_after


__all__ = [
    "AccessDecision",
    "DecisionState",
    "License",
    "LicenseActionResult",
    "LicenseStatus",
    "RateLimited",
    "ReasonCode",
    "TIER_ORDER",
    "Tier",
]
