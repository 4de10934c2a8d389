"""Errors raised at hard feature enforcement points."""
from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, Optional

from fastapi import HTTPException, status

from ..licensing.models import ReasonCode, Tier
from .models import UpgradePrompt


@dataclass(eq=False)
class FeatureGateError(Exception):
    """Terminal, user-visible denial of a gated feature."""

    feature: str
    message: str
    reason: ReasonCode = ReasonCode.DENIED
    required_tier: Optional[Tier] = None
    prompt: Optional[UpgradePrompt] = None
    status_code: int = status.HTTP_403_FORBIDDEN

    def __post_init__(self) -> None:
        super().__init__(self.message)

    @property
    def code(self) -> str:
        return "feature_access_denied"

    @property
    def payload(self) -> Dict[str, Any]:
        body: Dict[str, Any] = {
            "error": self.code,
            "message": self.message,
            "feature": self.feature,
            "reason": self.reason.value,
        }
        if self.required_tier is not None:
            body["required_tier"] = self.required_tier.value
        if self.prompt is not None:
            body["prompt"] = self.prompt.model_dump(mode="json")
        return body

    def to_http_exception(self) -> HTTPException:
        return HTTPException(status_code=self.status_code, detail=self.payload)


__all__ = ["FeatureGateError"]
