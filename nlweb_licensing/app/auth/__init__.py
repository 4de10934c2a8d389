"""Credential storage and token lifecycle."""

from .models import AuthResult, AuthStatus, TokenResponse
from .tokens import TokenStore

__all__ = ["AuthResult", "AuthStatus", "TokenResponse", "TokenStore"]
