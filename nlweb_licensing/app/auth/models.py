"""Pydantic models exchanged with the authentication endpoints."""
from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

DEFAULT_TOKEN_LIFETIME = 3600


class TokenResponse(BaseModel):
    """Token payload returned by the login and refresh endpoints."""

    access_token: str
    refresh_token: Optional[str] = None
    expires_in: int = DEFAULT_TOKEN_LIFETIME
    token_type: str = "Bearer"

    model_config = ConfigDict(frozen=True, extra="ignore")

    @field_validator("access_token")
    @classmethod
    def _validate_access_token(cls, value: str) -> str:
        if not value or not value.strip():
            raise ValueError("access_token must not be empty")
        return value

    @field_validator("expires_in", mode="before")
    @classmethod
    def _default_expires_in(cls, value: Any) -> Any:
        if value in (None, "", 0):
            return DEFAULT_TOKEN_LIFETIME
        return value


class AuthResult(BaseModel):
    """Outcome of an explicit login or site registration call."""

    success: bool
    error: Optional[str] = None
    data: Dict[str, Any] = Field(default_factory=dict)

    model_config = ConfigDict(frozen=True)


class AuthStatus(BaseModel):
    """Read-only view of the stored credentials for dashboards."""

    has_api_key: bool
    has_valid_token: bool
    token_expires: Optional[datetime] = None
    is_registered: bool = False
    site_id: Optional[str] = None

    model_config = ConfigDict(frozen=True)
