# authcore/services/auth/dto.py
from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass
from datetime import timedelta
from typing import Any

from authcore.core.config import PLACEHOLDER_SECRETS

# ---------------------------- Input DTOs ---------------------------------- #


@dataclass(frozen=True, slots=True)
class LoginIn:
    """
    Input DTO for credential login.

    :param email: Identity email (normalized by the identity store).
    :type email: str
    :param secret: Raw secret (verified, never stored or logged).
    :type secret: str
    :param fingerprint: Opaque client device identifier.
    :type fingerprint: str
    :param user_agent: Optional client metadata recorded on the device.
    :type user_agent: str | None
    :param ip_address: Optional client metadata recorded on the device.
    :type ip_address: str | None
    """

    email: str
    secret: str
    fingerprint: str
    user_agent: str | None = None
    ip_address: str | None = None


@dataclass(frozen=True, slots=True)
class LogoutIn:
    """
    Input DTO for logout.

    :param refresh_token: Opaque refresh token of the session to end.
    :type refresh_token: str
    :param all_sessions: If True, revoke every session of the token's owner.
    :type all_sessions: bool
    :param access_token: Optional access token to place on the denylist.
    :type access_token: str | None
    """

    refresh_token: str
    all_sessions: bool = False
    access_token: str | None = None


# --------------------------- Output DTOs ---------------------------------- #


@dataclass(frozen=True, slots=True)
class TokenPairOut:
    """
    Output DTO with access and refresh tokens.

    :param access_token: Signed access JWT.
    :type access_token: str
    :param refresh_token: Opaque refresh token (shown to the client once).
    :type refresh_token: str
    :param expires_in: Access token lifetime in seconds.
    :type expires_in: int
    """

    access_token: str
    refresh_token: str
    expires_in: int
    token_type: str = "Bearer"


# ------------------------------ Settings ---------------------------------- #


@dataclass(frozen=True, slots=True)
class AccessTokenConfig:
    """
    Signing parameters of access tokens.

    :param secret: Signing key.
    :type secret: str
    :param algorithm: JWS algorithm.
    :type algorithm: str
    :param ttl: Access token lifetime.
    :type ttl: timedelta
    :param issuer: Optional ``iss`` stamped on and required from tokens.
    :type issuer: str | None
    :param leeway: Clock skew tolerated when verifying ``exp``.
    :type leeway: timedelta
    """

    secret: str
    algorithm: str = "HS256"
    ttl: timedelta = timedelta(minutes=15)
    issuer: str | None = None
    leeway: timedelta = timedelta(0)


@dataclass(frozen=True, slots=True)
class RefreshTokenConfig:
    """
    Lifetime parameters of refresh tokens.

    :param ttl: Refresh token lifetime.
    :type ttl: timedelta
    :param retention: How long expired rows are kept before purge.
    :type retention: timedelta
    """

    ttl: timedelta = timedelta(days=7)
    retention: timedelta = timedelta(days=30)


@dataclass(frozen=True, slots=True)
class AuthSettings:
    """Typed view of the auth-related Flask configuration."""

    access: AccessTokenConfig
    refresh: RefreshTokenConfig
    password_hash_method: str = "scrypt"

    @classmethod
    def from_mapping(cls, config: Mapping[str, Any]) -> AuthSettings:
        """
        Build settings from a Flask ``app.config``-like mapping.

        :raises RuntimeError: If the signing key is missing, or still a
            placeholder outside development and testing.
        """
        secret = str(config.get("JWT_SECRET_KEY") or "")
        if not secret:
            raise RuntimeError("JWT_SECRET_KEY must be configured.")
        if secret in PLACEHOLDER_SECRETS and config.get("APP_ENV") == "production":
            raise RuntimeError("JWT_SECRET_KEY is a placeholder; set a real secret.")

        access_ttl = int(config.get("ACCESS_TOKEN_TTL_SECONDS", 900))
        refresh_ttl = int(config.get("REFRESH_TOKEN_TTL_SECONDS", 7 * 24 * 3600))
        if access_ttl <= 0 or refresh_ttl <= 0:
            raise RuntimeError("Token lifetimes must be positive.")

        return cls(
            access=AccessTokenConfig(
                secret=secret,
                algorithm=str(config.get("JWT_ALGORITHM", "HS256")),
                ttl=timedelta(seconds=access_ttl),
                issuer=config.get("JWT_ISSUER") or None,
                leeway=timedelta(seconds=int(config.get("JWT_LEEWAY_SECONDS", 0))),
            ),
            refresh=RefreshTokenConfig(
                ttl=timedelta(seconds=refresh_ttl),
                retention=timedelta(
                    seconds=int(config.get("REFRESH_TOKEN_RETENTION_SECONDS", 30 * 24 * 3600))
                ),
            ),
            password_hash_method=str(config.get("PASSWORD_HASH_METHOD", "scrypt")),
        )
