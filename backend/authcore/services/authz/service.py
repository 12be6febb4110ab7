# authcore/services/authz/service.py
from __future__ import annotations

import logging
from collections.abc import Iterable
from enum import Enum

from authcore.models.role import WILDCARD
from authcore.services._shared.errors import AuthorizationError, TokenInvalidError, ValidationError
from authcore.services._shared.ports import AccessClaims, TokenDenylistStore, TokenProvider

log = logging.getLogger(__name__)

NAMESPACE_SEPARATOR = ":"


class Decision(str, Enum):
    ALLOW = "allow"
    DENY = "deny"


def permits(granted: Iterable[str], required: str) -> bool:
    """
    Return ``True`` when ``granted`` covers ``required``.

    A grant matches exactly, through the global ``"*"``, or through a
    namespace wildcard: ``"users:*"`` covers ``"users:read"`` but not
    ``"users"`` nor ``"usersx:read"``.

    :param granted: Permissions carried by the caller.
    :type granted: Iterable[str]
    :param required: Permission the operation needs.
    :type required: str
    :rtype: bool
    """
    for grant in granted:
        if grant == required or grant == WILDCARD:
            return True
        if grant.endswith(NAMESPACE_SEPARATOR + WILDCARD):
            prefix = grant[: -len(WILDCARD)]
            if required.startswith(prefix) and len(required) > len(prefix):
                return True
    return False


class AuthorizationService:
    """
    Authorization resolver over verified access tokens.

    Decisions use only the token: signature, expiry and the permission
    snapshot embedded at mint time. The optional denylist is the single
    storage lookup and is consulted only when configured.
    """

    def __init__(
        self,
        *,
        token_provider: TokenProvider,
        denylist: TokenDenylistStore | None = None,
    ) -> None:
        self.tokens = token_provider
        self.denylist = denylist

    def verify(self, access_token: str) -> AccessClaims:
        """
        Verify an access token and return its claims.

        :raises TokenExpiredError: If the token has expired.
        :raises TokenInvalidError: If it is malformed, forged or revoked.
        """
        if not access_token:
            raise TokenInvalidError("Missing access token")
        claims = self.tokens.decode(access_token)
        if self.denylist is not None and self.denylist.is_revoked(claims.jti):
            raise TokenInvalidError("Token has been revoked")
        return claims

    def authorize(self, access_token: str, required_permission: str) -> Decision:
        """
        Decide whether the bearer of ``access_token`` holds ``required_permission``.

        :returns: :attr:`Decision.ALLOW` or :attr:`Decision.DENY`.
        :rtype: Decision
        :raises ValidationError: If ``required_permission`` is blank.
        :raises TokenExpiredError: If the token has expired.
        :raises TokenInvalidError: If the token cannot be trusted.
        """
        claims = self.verify(access_token)
        return self._decide(claims, required_permission)

    def require(self, access_token: str, permission: str) -> AccessClaims:
        """
        Like :meth:`authorize`, but raise on deny and return the claims.

        :raises AuthorizationError: If the permission is not granted.
        """
        claims = self.verify(access_token)
        if self._decide(claims, permission) is Decision.DENY:
            raise AuthorizationError(f"Missing permission: {permission}")
        return claims

    @staticmethod
    def _decide(claims: AccessClaims, permission: str) -> Decision:
        if not permission or not permission.strip():
            raise ValidationError("A permission is required.")
        if permits(claims.permissions, permission.strip()):
            return Decision.ALLOW
        log.info(
            "Permission %s denied",
            permission,
            extra={"identity_id": claims.identity_id, "event": "authz_denied"},
        )
        return Decision.DENY
