"""Domain models for add-on licenses and credit metering."""
from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field


class AddonType(str, Enum):
    FEATURE_BASED = "feature_based"
    CREDIT_BASED = "credit_based"


class AddonEventType(str, Enum):
    ACTIVATED = "activated"
    DEACTIVATED = "deactivated"
    CREDITS_CONSUMED = "credits_consumed"
    INSUFFICIENT_CREDITS = "insufficient_credits"
    DEBIT_FAILED = "debit_failed"


class AddonEvent(BaseModel):
    """Audit record emitted for add-on lifecycle and metering."""

    event_type: AddonEventType
    addon_id: str
    operation: Optional[str] = None
    cost: Optional[int] = None
    balance: Optional[int] = None
    remote_confirmed: Optional[bool] = None
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    model_config = ConfigDict(frozen=True)


class AddonActionResult(BaseModel):
    success: bool
    message: str
    addon_id: str
    error_code: Optional[str] = None
    remote_confirmed: Optional[bool] = None

    model_config = ConfigDict(frozen=True)


class AddonPricing(BaseModel):
    addon_id: str
    name: str
    base_price: float
    discount: int
    final_price: float
    currency: str = "USD"
    purchase_url: str

    model_config = ConfigDict(frozen=True)


class InsufficientCredits(Exception):
    """Raised when a debit would take an add-on balance below zero."""

    def __init__(self, addon_id: str, operation: str, cost: int, balance: int) -> None:
        super().__init__(
            f"Insufficient credits for {addon_id}.{operation}: requires {cost}, balance {balance}"
        )
        self.addon_id = addon_id
        self.operation = operation
        self.cost = cost
        self.balance = balance


class CreditDebitRejected(Exception):
    """The server refused a debit for a reason other than the balance."""

    def __init__(self, addon_id: str, operation: str, reason: str) -> None:
        super().__init__(f"Credit debit for {addon_id}.{operation} rejected: {reason}")
        self.addon_id = addon_id
        self.operation = operation
        self.reason = reason


__all__ = [
    "AddonActionResult",
    "AddonEvent",
    "AddonEventType",
    "AddonPricing",
    "AddonType",
    "CreditDebitRejected",
    "InsufficientCredits",
]
