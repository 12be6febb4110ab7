# authcore/infra/jwt/pyjwt_token_provider.py
from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import Any
from uuid import uuid4

import jwt

from authcore.services._shared.errors import TokenExpiredError, TokenInvalidError
from authcore.services._shared.ports import ACCESS_TOKEN_TYPE, AccessClaims, TokenProvider
from authcore.services.auth.dto import AccessTokenConfig

REQUIRED_CLAIMS = ["sub", "exp", "iat", "jti"]


@dataclass(slots=True)
class PyJWTTokenProvider(TokenProvider):
    """
    Access token adapter backed by PyJWT.

    .. note::
       Holds its own :class:`AccessTokenConfig`; no Flask app context or
       module-level key is involved, so several providers can coexist.
    """

    config: AccessTokenConfig

    def create_access_token(
        self,
        *,
        identity_id: str,
        role: str,
        permissions: Sequence[str],
        device_id: str,
        jti: str | None = None,
    ) -> str:
        now = datetime.now(UTC)
        payload: dict[str, Any] = {
            "sub": identity_id,
            "role": role,
            "perms": list(permissions),
            "did": device_id,
            "jti": jti or uuid4().hex,
            "type": ACCESS_TOKEN_TYPE,
            "iat": int(now.timestamp()),
            "exp": int((now + self.config.ttl).timestamp()),
        }
        if self.config.issuer:
            payload["iss"] = self.config.issuer
        return jwt.encode(payload, self.config.secret, algorithm=self.config.algorithm)

    def decode(self, token: str) -> AccessClaims:
        options: dict[str, Any] = {"require": list(REQUIRED_CLAIMS)}
        if self.config.issuer:
            options["require"].append("iss")
        try:
            payload = jwt.decode(
                token,
                self.config.secret,
                algorithms=[self.config.algorithm],
                issuer=self.config.issuer,
                leeway=self.config.leeway,
                options=options,
            )
        except jwt.ExpiredSignatureError as exc:
            raise TokenExpiredError() from exc
        except jwt.InvalidTokenError as exc:
            raise TokenInvalidError() from exc
        return AccessClaims.from_payload(payload)
