from __future__ import annotations

from collections.abc import Callable
from datetime import UTC, datetime
from typing import Protocol


class TokenDenylistStore(Protocol):
    """
    Abstraction for a denylist store for **access tokens**.

    Entries only need to outlive the token they block. Methods are expected
    to be idempotent.
    """

    def is_revoked(self, jti: str) -> bool: ...
    def revoke_jti(self, *, jti: str, expires_at: datetime) -> None: ...


class InMemoryDenylistStore(TokenDenylistStore):
    """Simple in-memory denylist for **access** tokens by JTI."""

    def __init__(self, clock: Callable[[], datetime] | None = None) -> None:
        self._revoked: dict[str, datetime] = {}
        self._clock = clock or (lambda: datetime.now(UTC))

    def is_revoked(self, jti: str) -> bool:
        expires_at = self._revoked.get(jti)
        if expires_at is None:
            return False
        if expires_at <= self._clock():
            # Token has expired on its own; the entry is no longer needed.
            del self._revoked[jti]
            return False
        return True

    def revoke_jti(self, *, jti: str, expires_at: datetime) -> None:
        self._revoked[jti] = expires_at
