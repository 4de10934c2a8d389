from __future__ import annotations

import pytest
from fastapi import HTTPException
from pydantic import ValidationError

from nlweb_licensing.app.features import Principal
from nlweb_licensing.app.features.routes import (
    FeatureValidationRequest,
    license_status,
    router,
    validate_feature,
)
from nlweb_licensing.app.licensing import LicenseStatus, Tier


@pytest.fixture
def admin() -> Principal:
    return Principal(principal_id="admin-1", is_administrator=True)


def test_router_exposes_licensing_endpoints() -> None:
    paths = {route.path for route in router.routes}

    assert "/api/licensing/features/validate" in paths
    assert "/api/licensing/license/status" in paths


def test_validate_feature_grants_access(licensed_services, server, admin) -> None:
    server.reply("/validate", {"access_granted": True})

    response = validate_feature(
        FeatureValidationRequest(feature="vector_embeddings"),
        principal=admin,
        gate=licensed_services.gate,
    )

    assert response.access is True
    assert response.prompt is None


def test_validate_feature_denial_returns_prompt(licensed_services, server, admin) -> None:
    server.reply("/validate", {"access_granted": False, "error_code": "tier_insufficient"})

    with pytest.raises(HTTPException) as exc:
        validate_feature(
            FeatureValidationRequest(feature="white_label"),
            principal=admin,
            gate=licensed_services.gate,
        )

    assert exc.value.status_code == 403
    assert exc.value.detail["access"] is False
    assert exc.value.detail["reason"] == "tier_insufficient"
    assert exc.value.detail["prompt"]["required_tier"] == "enterprise"
    # The prompt reuses the memoized denial from the same request.
    assert len(server.calls("/validate")) == 1


def test_validate_feature_requires_a_feature() -> None:
    with pytest.raises(ValidationError):
        FeatureValidationRequest(feature="  ")


def test_license_status_requires_administrator(licensed_services) -> None:
    editor = Principal(principal_id="editor-1", capabilities=frozenset({"nlweb_admin_interface"}))

    with pytest.raises(HTTPException) as exc:
        license_status(principal=editor, validator=licensed_services.validator)

    assert exc.value.status_code == 403


def test_license_status_for_administrator(licensed_services, server, admin) -> None:
    server.reply("/check", {"success": True, "license_status": "valid", "tier": "agency"})

    license = license_status(principal=admin, validator=licensed_services.validator)

    assert license.status == LicenseStatus.ACTIVE
    assert license.tier == Tier.AGENCY
