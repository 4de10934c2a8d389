"""API routes exposing feature validation and license status."""
from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, status
from pydantic import BaseModel, ConfigDict, field_validator

from ..licensing.models import License
from ..licensing.validator import LicenseValidator
from .gate import FeatureGate
from .models import Principal, UpgradePrompt


class FeatureValidationRequest(BaseModel):
    feature: str

    model_config = ConfigDict(frozen=True)

    @field_validator("feature")
    @classmethod
    def _validate_feature(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("Feature not specified.")
        return value


class FeatureValidationResponse(BaseModel):
    access: bool
    prompt: Optional[UpgradePrompt] = None


def get_current_principal() -> Principal:  # pragma: no cover
    """Hosts override this dependency with their own principal resolver."""

    raise HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Principal resolver not configured",
    )


def get_feature_gate() -> FeatureGate:  # pragma: no cover
    from ...wiring import get_licensing_services

    return get_licensing_services().gate


def get_license_validator() -> LicenseValidator:  # pragma: no cover
    from ...wiring import get_licensing_services

    return get_licensing_services().validator


router = APIRouter(prefix="/api/licensing", tags=["licensing"])


@router.post("/features/validate", response_model=FeatureValidationResponse)
def validate_feature(
    payload: FeatureValidationRequest,
    *,
    principal: Principal = Depends(get_current_principal),
    gate: FeatureGate = Depends(get_feature_gate),
) -> FeatureValidationResponse:
    with gate.request_scope():
        decision = gate.check(payload.feature, principal)
        if decision.granted:
            return FeatureValidationResponse(access=True)
        prompt = gate.get_upgrade_prompt(payload.feature, principal)

    detail = {
        "access": False,
        "reason": decision.reason_code.value,
        "message": decision.message,
        "prompt": prompt.model_dump(mode="json") if prompt else None,
    }
    raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail=detail)


@router.get("/license/status", response_model=License)
def license_status(
    *,
    principal: Principal = Depends(get_current_principal),
    validator: LicenseValidator = Depends(get_license_validator),
) -> License:
    if not principal.is_administrator:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Administrator access required")
    return validator.get_status()


__all__ = [
    "FeatureValidationRequest",
    "FeatureValidationResponse",
    "get_current_principal",
    "get_feature_gate",
    "get_license_validator",
    "router",
]
