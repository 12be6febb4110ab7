# authcore/services/tokens/dto.py
from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import Enum, auto

from authcore.models.base import as_utc
from authcore.models.refresh_token import RefreshToken


class RotationResult(Enum):
    """Outcome of one rotation attempt, decided inside the unit of work."""

    OK = auto()
    NOT_FOUND = auto()
    EXPIRED = auto()
    REUSED = auto()
    FINGERPRINT_MISMATCH = auto()
    INACTIVE_PRINCIPAL = auto()


class RevocationReason:
    """Values stored in ``RefreshToken.revoked_reason``."""

    SUPERSEDED = "superseded"
    REUSE_DETECTED = "reuse_detected"
    LOGOUT = "logout"
    LOGOUT_ALL = "logout_all"
    DEVICE_REVOKED = "device_revoked"
    PRINCIPAL_INACTIVE = "principal_inactive"


@dataclass(frozen=True, slots=True)
class RefreshIn:
    """
    Input DTO for token rotation.

    :param refresh_token: Opaque refresh token previously issued.
    :type refresh_token: str
    :param fingerprint: Optional device fingerprint of the caller; when given
        it must match the device the token is bound to.
    :type fingerprint: str | None
    """

    refresh_token: str
    fingerprint: str | None = None


@dataclass(frozen=True, slots=True)
class IssuedRefreshToken:
    """
    Freshly minted refresh token. ``value`` is shown to the client once.

    :param token_id: Row identifier.
    :type token_id: str
    :param value: Opaque plaintext token.
    :type value: str
    :param expires_at: Absolute expiry (UTC).
    :type expires_at: datetime
    """

    token_id: str
    value: str
    expires_at: datetime

    def __repr__(self) -> str:
        return f"IssuedRefreshToken(token_id={self.token_id!r}, expires_at={self.expires_at!r})"


@dataclass(frozen=True, slots=True)
class RefreshTokenView:
    """Audit read model of one rotation-chain link (no secret material)."""

    id: str
    identity_id: str
    device_id: str
    state: str
    issued_at: datetime
    expires_at: datetime
    revoked_at: datetime | None
    revoked_reason: str | None
    replaced_by_token_id: str | None
    parent_token_id: str | None

    @classmethod
    def from_model(cls, token: RefreshToken) -> RefreshTokenView:
        return cls(
            id=token.id,
            identity_id=token.identity_id,
            device_id=token.device_id,
            state=token.state.value,
            issued_at=as_utc(token.issued_at),
            expires_at=as_utc(token.expires_at),
            revoked_at=as_utc(token.revoked_at),
            revoked_reason=token.revoked_reason,
            replaced_by_token_id=token.replaced_by_token_id,
            parent_token_id=token.parent_token_id,
        )
