from __future__ import annotations

from collections.abc import Callable, Mapping, Sequence
from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta
from typing import Any, Protocol
from uuid import uuid4

from authcore.services._shared.errors import TokenExpiredError, TokenInvalidError

ACCESS_TOKEN_TYPE = "access"


@dataclass(frozen=True, slots=True)
class AccessClaims:
    """
    Verified content of an access token.

    :ivar identity_id: ``sub`` claim.
    :ivar role: Role name at mint time.
    :ivar permissions: Permission snapshot at mint time (``perms``).
    :ivar device_id: Device the session is bound to (``did``).
    :ivar jti: Unique token identifier, used by the denylist.
    :ivar issued_at: ``iat`` as an aware UTC datetime.
    :ivar expires_at: ``exp`` as an aware UTC datetime.
    """

    identity_id: str
    role: str
    permissions: tuple[str, ...]
    device_id: str
    jti: str
    issued_at: datetime
    expires_at: datetime
    issuer: str | None = None

    @classmethod
    def from_payload(cls, payload: Mapping[str, Any]) -> AccessClaims:
        """Build claims from a decoded JWT payload.

        :raises TokenInvalidError: If a required claim is missing or malformed.
        """
        if payload.get("type") != ACCESS_TOKEN_TYPE:
            raise TokenInvalidError("Not an access token")
        try:
            perms = payload["perms"]
            if isinstance(perms, str) or not all(isinstance(p, str) for p in perms):
                raise TokenInvalidError("Malformed permission claim")
            return cls(
                identity_id=str(payload["sub"]),
                role=str(payload["role"]),
                permissions=tuple(perms),
                device_id=str(payload["did"]),
                jti=str(payload["jti"]),
                issued_at=datetime.fromtimestamp(int(payload["iat"]), tz=UTC),
                expires_at=datetime.fromtimestamp(int(payload["exp"]), tz=UTC),
                issuer=payload.get("iss"),
            )
        except (KeyError, TypeError, ValueError) as exc:
            raise TokenInvalidError("Missing or malformed claims") from exc


class TokenProvider(Protocol):
    """Port for minting and verifying access tokens."""

    def create_access_token(
        self,
        *,
        identity_id: str,
        role: str,
        permissions: Sequence[str],
        device_id: str,
        jti: str | None = None,
    ) -> str: ...

    def decode(self, token: str) -> AccessClaims:
        """Verify ``token`` and return its claims.

        :raises TokenExpiredError: If ``exp`` has passed.
        :raises TokenInvalidError: On any other verification failure.
        """
        ...


@dataclass
class StubTokenProvider(TokenProvider):
    """Deterministic token provider used in unit tests.

    Tokens are opaque ``access.<sub>.<jti>`` strings; their claims live in
    memory and expiry is evaluated against ``clock``.
    """

    ttl: timedelta = timedelta(minutes=15)
    clock: Callable[[], datetime] = field(default=lambda: datetime.now(UTC))
    _issued: dict[str, AccessClaims] = field(default_factory=dict, init=False)

    def create_access_token(
        self,
        *,
        identity_id: str,
        role: str,
        permissions: Sequence[str],
        device_id: str,
        jti: str | None = None,
    ) -> str:
        now = self.clock()
        claims = AccessClaims(
            identity_id=identity_id,
            role=role,
            permissions=tuple(permissions),
            device_id=device_id,
            jti=jti or uuid4().hex,
            issued_at=now,
            expires_at=now + self.ttl,
        )
        token = f"{ACCESS_TOKEN_TYPE}.{identity_id}.{claims.jti}"
        self._issued[token] = claims
        return token

    def decode(self, token: str) -> AccessClaims:
        claims = self._issued.get(token)
        if claims is None:
            raise TokenInvalidError()
        if claims.expires_at <= self.clock():
            raise TokenExpiredError()
        return claims
