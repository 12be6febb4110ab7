# authcore/services/auth/service.py
from __future__ import annotations

import logging
from datetime import datetime

from authcore.models.base import EntityStatus
from authcore.services._shared.base import BaseService
from authcore.services._shared.errors import InvalidCredentialsError, TokenError
from authcore.services._shared.ports import TokenDenylistStore, TokenProvider
from authcore.services.auth.dto import LoginIn, LogoutIn, TokenPairOut
from authcore.services.devices.service import DeviceService
from authcore.services.identity.service import IdentityService
from authcore.services.tokens.dto import RefreshIn
from authcore.services.tokens.service import RefreshTokenService
from authcore.uow.base import SessionFactory

log = logging.getLogger(__name__)


class AuthService(BaseService):
    """
    Credential issuer: login, refresh and logout.

    Login verifies the secret in a read-only unit of work, then registers the
    device, issues the refresh token and stamps ``last_login_at`` in one
    read-write unit of work, so a failed login leaves no trace.
    """

    def __init__(
        self,
        *,
        identities: IdentityService,
        devices: DeviceService,
        refresh_tokens: RefreshTokenService,
        token_provider: TokenProvider,
        denylist: TokenDenylistStore | None = None,
        session_factory: SessionFactory | None = None,
    ) -> None:
        """
        Initialize the service with its collaborators.

        :param identities: Identity store (credential verification).
        :param devices: Device registry (``register_or_touch``).
        :param refresh_tokens: Refresh token manager (issue/rotate/revoke).
        :param token_provider: Access token adapter, used for denylisting.
        :param denylist: Optional access-token denylist.
        """
        super().__init__(session_factory=session_factory)
        self.identities = identities
        self.devices = devices
        self.refresh_tokens = refresh_tokens
        self.tokens = token_provider
        self.denylist = denylist

    # ------------------------------------------------------------------ #
    # Login
    # ------------------------------------------------------------------ #

    def authenticate(self, dto: LoginIn, *, deadline: datetime | None = None) -> TokenPairOut:
        """
        Verify credentials and start a device-bound session.

        :param dto: Login input.
        :type dto: LoginIn
        :returns: Access/refresh token pair.
        :rtype: TokenPairOut
        :raises InvalidCredentialsError: Unknown email, wrong secret, inactive
            identity or inactive role; the cases are indistinguishable.
        :raises ValidationError: If the device fingerprint is blank.
        """
        verified = self.identities.verify_credentials(dto.email, dto.secret, deadline=deadline)
        if verified is None:
            log.info("Login rejected", extra={"event": "login_failed"})
            raise InvalidCredentialsError()

        now = self.now_utc()
        with self.rw_uow(deadline) as uow:
            identity = uow.identities.find_by_id(verified.id)
            role = uow.roles.find_by_id(verified.role_id)
            if (
                identity is None
                or identity.is_deleted
                or identity.status != EntityStatus.ACTIVE
                or role is None
                or role.is_deleted
                or role.status != EntityStatus.ACTIVE
            ):
                raise InvalidCredentialsError()

            device = self.devices.register_or_touch_in(
                uow,
                identity.id,
                dto.fingerprint,
                user_agent=dto.user_agent,
                ip_address=dto.ip_address,
                now=now,
            )
            pair = self.refresh_tokens.issue_pair_in(
                uow, identity=identity, role=role, device_id=device.id, now=now
            )
            uow.identities.assign_updates(identity, {"last_login_at": now})
            context = {"identity_id": identity.id, "device_id": device.id}

        log.info("Login succeeded", extra={**context, "event": "login"})
        return pair

    # ------------------------------------------------------------------ #
    # Refresh
    # ------------------------------------------------------------------ #

    def refresh(self, dto: RefreshIn, *, deadline: datetime | None = None) -> TokenPairOut:
        """Rotate a refresh token; see :meth:`RefreshTokenService.rotate`."""
        return self.refresh_tokens.rotate(dto, deadline=deadline)

    # ------------------------------------------------------------------ #
    # Logout
    # ------------------------------------------------------------------ #

    def logout(self, dto: LogoutIn, *, deadline: datetime | None = None) -> None:
        """
        End the session behind ``dto.refresh_token``.

        Idempotent: unknown, expired or already revoked tokens are accepted
        silently. With ``all_sessions`` every live session of the owner ends.
        A presented access token is also denylisted when a denylist is
        configured and the token still verifies.
        """
        self.refresh_tokens.end_session(
            dto.refresh_token, all_sessions=dto.all_sessions, deadline=deadline
        )
        if dto.access_token:
            try:
                self.revoke_access_token(dto.access_token)
            except TokenError:
                log.debug("Logout access token no longer valid; nothing to denylist")

    def revoke_access_token(self, access_token: str) -> bool:
        """
        Place an access token on the denylist until it expires.

        :returns: ``True`` if recorded, ``False`` when no denylist is configured.
        :rtype: bool
        :raises TokenExpiredError: If the token already expired.
        :raises TokenInvalidError: If the token does not verify.
        """
        if self.denylist is None:
            return False
        claims = self.tokens.decode(access_token)
        self.denylist.revoke_jti(jti=claims.jti, expires_at=claims.expires_at)
        log.info(
            "Access token denylisted",
            extra={"identity_id": claims.identity_id, "event": "access_token_revoked"},
        )
        return True
