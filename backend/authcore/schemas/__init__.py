"""Convenience exports for API schemas."""

from __future__ import annotations

from .auth import (
    AuthorizeSchema,
    ClaimsSchema,
    DecisionSchema,
    LoginSchema,
    LogoutSchema,
    RefreshSchema,
    TokenPairSchema,
)
from .device import DeviceSchema

__all__ = [
    "AuthorizeSchema",
    "ClaimsSchema",
    "DecisionSchema",
    "DeviceSchema",
    "LoginSchema",
    "LogoutSchema",
    "RefreshSchema",
    "TokenPairSchema",
]
