"""Human-readable messages for server-reported license states."""
from __future__ import annotations

from typing import Any

from .models import LicenseStatus

STATUS_MESSAGES = {
    "expired": (
        "Your license has expired. Please renew your license to continue "
        "receiving updates and support."
    ),
    "revoked": "Your license has been revoked. Please contact support for assistance.",
    "missing": "License key not found. Please check your license key and try again.",
    "invalid": "Invalid license key. Please check your license key and try again.",
    "site_inactive": (
        "Your license is not active for this site. Please activate your license first."
    ),
    "item_name_mismatch": "License key is not valid for this product.",
    "no_activations_left": (
        "You have reached the maximum number of activations for this license. "
        "Please upgrade your license or deactivate an existing site."
    ),
}

_STATUS_MAPPING = {
    "valid": LicenseStatus.ACTIVE,
    "active": LicenseStatus.ACTIVE,
    "expired": LicenseStatus.EXPIRED,
    "inactive": LicenseStatus.INACTIVE,
    "site_inactive": LicenseStatus.INACTIVE,
    "deactivated": LicenseStatus.INACTIVE,
    "revoked": LicenseStatus.DENIED,
    "disabled": LicenseStatus.DENIED,
    "invalid": LicenseStatus.DENIED,
    "missing": LicenseStatus.DENIED,
    "item_name_mismatch": LicenseStatus.DENIED,
    "no_activations_left": LicenseStatus.DENIED,
    "denied": LicenseStatus.DENIED,
}


def _normalize(code: Any) -> str:
    # Servers occasionally send numeric codes; compare on their text.
    if code is None:
        return ""
    return str(code).strip().lower()


def status_message(code: Any) -> str:
    code = _normalize(code) or "unknown"
    return STATUS_MESSAGES.get(code, f"License validation failed: {code}")


def status_from_server(code: Any) -> LicenseStatus:
    return _STATUS_MAPPING.get(_normalize(code), LicenseStatus.ERROR)


__all__ = ["STATUS_MESSAGES", "status_from_server", "status_message"]
