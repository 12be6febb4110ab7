from datetime import UTC, datetime
from typing import cast

import redis  # type: ignore[import-untyped]


class RedisTokenDenylistStore:
    """
    Denylist for **access tokens** by jti.

    Each entry expires together with the token it blocks, so the keyspace
    never grows beyond the set of still-valid revoked tokens.
    """

    def __init__(self, r: redis.Redis, *, prefix: str = "authcore:deny:at:"):
        self.r = r
        self.prefix = prefix

    def _k(self, jti: str) -> str:
        return f"{self.prefix}{jti}"

    def is_revoked(self, jti: str) -> bool:
        return cast(int, self.r.exists(self._k(jti))) == 1

    def revoke_jti(self, *, jti: str, expires_at: datetime) -> None:
        ttl = int(expires_at.timestamp() - datetime.now(UTC).timestamp())
        if ttl <= 0:
            # Already expired: verification rejects it without our help.
            return
        self.r.set(self._k(jti), "1", ex=ttl)
