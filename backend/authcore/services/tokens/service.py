# authcore/services/tokens/service.py
from __future__ import annotations

import hashlib
import logging
import secrets
from dataclasses import dataclass
from datetime import datetime, timedelta

from authcore.models.base import EntityStatus, as_utc, new_id
from authcore.models.identity import Identity
from authcore.models.refresh_token import TokenState
from authcore.models.role import Role
from authcore.services._shared.base import BaseService
from authcore.services._shared.errors import (
    DeviceMismatchError,
    NotFoundError,
    RepositoryError,
    TokenExpiredError,
    TokenInvalidError,
    TokenNotFoundError,
    TokenReuseDetectedError,
)
from authcore.services._shared.ports import TokenProvider
from authcore.services.auth.dto import AccessTokenConfig, RefreshTokenConfig, TokenPairOut
from authcore.services.tokens.dto import (
    IssuedRefreshToken,
    RefreshIn,
    RefreshTokenView,
    RevocationReason,
    RotationResult,
)
from authcore.uow.base import SessionFactory, UnitOfWork

log = logging.getLogger(__name__)


def new_token_value() -> str:
    """Return a fresh opaque refresh token (256 bits of entropy)."""
    return secrets.token_urlsafe(32)


def hash_token(value: str) -> str:
    """Return the SHA-256 hex digest under which ``value`` is stored."""
    return hashlib.sha256(value.encode("utf-8")).hexdigest()


def _is_live(entity: Identity | Role | None) -> bool:
    return entity is not None and not entity.is_deleted and entity.status == EntityStatus.ACTIVE


@dataclass(frozen=True, slots=True)
class _Rotation:
    result: RotationResult
    token_id: str | None = None
    identity_id: str | None = None
    device_id: str | None = None
    revoked: int = 0
    pair: TokenPairOut | None = None


class RefreshTokenService(BaseService):
    """
    Refresh token manager: issuance, rotation with reuse detection, revocation.

    State machine
    -------------
    ``active`` → ``rotated`` | ``revoked`` | ``expired``; all three are terminal.

    Security
    --------
    - Only SHA-256 digests are stored; plaintext values leave this service once.
    - Rotation is a compare-and-swap on ``state``: of N concurrent callers
      presenting the same value exactly one wins, the others take the reuse
      path.
    - Reuse of a consumed or revoked value revokes every live token of the
      same ``(identity, device)`` pair.

    Security outcomes (expiry, reuse, inactive principal) are committed first
    and raised afterwards, so the revocations survive the error.
    """

    def __init__(
        self,
        *,
        token_provider: TokenProvider,
        access_config: AccessTokenConfig,
        refresh_config: RefreshTokenConfig,
        session_factory: SessionFactory | None = None,
    ) -> None:
        super().__init__(session_factory=session_factory)
        self.tokens = token_provider
        self.access_cfg = access_config
        self.cfg = refresh_config

    # ------------------------------------------------------------------ #
    # Issuance
    # ------------------------------------------------------------------ #

    def issue(
        self, identity_id: str, device_id: str, *, deadline: datetime | None = None
    ) -> IssuedRefreshToken:
        """
        Start a new session chain for ``(identity_id, device_id)``.

        Any live token of the same pair is revoked as ``superseded`` first.

        :returns: The new token; ``value`` is not recoverable later.
        :rtype: IssuedRefreshToken
        """
        with self.rw_uow(deadline) as uow:
            return self.issue_in(uow, identity_id, device_id, now=self.now_utc())

    def issue_in(
        self, uow: UnitOfWork, identity_id: str, device_id: str, *, now: datetime
    ) -> IssuedRefreshToken:
        """Issue inside a caller-managed unit of work."""
        superseded = uow.refresh_tokens.revoke_all_for_session(
            identity_id, device_id, reason=RevocationReason.SUPERSEDED, now=now
        )
        if superseded:
            log.info(
                "Superseded %d live refresh token(s)",
                superseded,
                extra={"identity_id": identity_id, "device_id": device_id},
            )
        return self._insert(uow, identity_id, device_id, now=now)

    def issue_pair_in(
        self,
        uow: UnitOfWork,
        *,
        identity: Identity,
        role: Role,
        device_id: str,
        now: datetime,
    ) -> TokenPairOut:
        """Issue a refresh token and mint the matching access token."""
        issued = self.issue_in(uow, identity.id, device_id, now=now)
        return self._pair(identity, role, device_id, issued)

    def mint_access(self, identity: Identity, role: Role, device_id: str) -> str:
        """Mint an access token carrying the role's current permission snapshot."""
        return self.tokens.create_access_token(
            identity_id=identity.id,
            role=role.name,
            permissions=list(role.permissions or ()),
            device_id=device_id,
        )

    # ------------------------------------------------------------------ #
    # Rotation
    # ------------------------------------------------------------------ #

    def rotate(self, dto: RefreshIn, *, deadline: datetime | None = None) -> TokenPairOut:
        """
        Exchange a refresh token for a new token pair.

        Checks run in this order: existence, expiry, state (reuse), device
        binding, principal status, then the compare-and-swap itself.

        :param dto: Presented token and optional device fingerprint.
        :type dto: RefreshIn
        :returns: New access and refresh tokens.
        :rtype: TokenPairOut
        :raises TokenNotFoundError: Unknown value.
        :raises TokenExpiredError: Past ``expires_at`` (wins over reuse).
        :raises TokenReuseDetectedError: Value already rotated or revoked, or
            a concurrent caller rotated it first.
        :raises DeviceMismatchError: Fingerprint differs from the bound device.
        :raises TokenInvalidError: Identity or role no longer active.
        """
        if not dto.refresh_token:
            raise TokenNotFoundError()
        now = self.now_utc()
        with self.rw_uow(deadline) as uow:
            outcome = self._rotate_in(uow, hash_token(dto.refresh_token), dto.fingerprint, now)

        context = {"identity_id": outcome.identity_id, "device_id": outcome.device_id}
        if outcome.result == RotationResult.OK and outcome.pair is not None:
            log.info("Refresh token rotated", extra={**context, "token_id": outcome.token_id})
            self._touch_device(outcome.device_id, now)
            return outcome.pair

        if outcome.result == RotationResult.NOT_FOUND:
            raise TokenNotFoundError()

        if outcome.result == RotationResult.EXPIRED:
            raise TokenExpiredError("Refresh token has expired")

        if outcome.result == RotationResult.REUSED:
            # Incident: a consumed token came back; the whole session is gone.
            log.warning(
                "Refresh token reuse detected; revoked %d live token(s)",
                outcome.revoked,
                extra={**context, "token_id": outcome.token_id, "event": "token_reuse"},
            )
            raise TokenReuseDetectedError()

        if outcome.result == RotationResult.FINGERPRINT_MISMATCH:
            log.warning(
                "Refresh token presented from another device",
                extra={**context, "token_id": outcome.token_id, "event": "device_mismatch"},
            )
            raise DeviceMismatchError()

        raise TokenInvalidError("Session is no longer valid")

    def _rotate_in(
        self,
        uow: UnitOfWork,
        token_hash: str,
        fingerprint: str | None,
        now: datetime,
    ) -> _Rotation:
        repo = uow.refresh_tokens
        token = repo.find_by_hash(token_hash)
        if token is None:
            return _Rotation(RotationResult.NOT_FOUND)

        ids = {
            "token_id": token.id,
            "identity_id": token.identity_id,
            "device_id": token.device_id,
        }

        if as_utc(token.expires_at) <= now:
            repo.mark_expired(token.id)
            return _Rotation(RotationResult.EXPIRED, **ids)

        if token.state != TokenState.ACTIVE:
            revoked = self._revoke_session(uow, token.identity_id, token.device_id, now)
            return _Rotation(RotationResult.REUSED, revoked=revoked, **ids)

        if fingerprint is not None:
            device = uow.devices.find_by_id(token.device_id)
            if device is None or device.fingerprint != fingerprint.strip():
                return _Rotation(RotationResult.FINGERPRINT_MISMATCH, **ids)

        identity = uow.identities.find_by_id(token.identity_id)
        role = uow.roles.find_by_id(identity.role_id) if identity is not None else None
        if not _is_live(identity) or not _is_live(role):
            repo.revoke_all_for_session(
                token.identity_id,
                token.device_id,
                reason=RevocationReason.PRINCIPAL_INACTIVE,
                now=now,
            )
            return _Rotation(RotationResult.INACTIVE_PRINCIPAL, **ids)
        assert identity is not None and role is not None

        child_id = new_id()
        if not repo.claim_for_rotation(token.id, child_id, now=now):
            # Lost the race: the stored state changed after our read.
            revoked = self._revoke_session(uow, token.identity_id, token.device_id, now)
            return _Rotation(RotationResult.REUSED, revoked=revoked, **ids)

        issued = self._insert(
            uow,
            token.identity_id,
            token.device_id,
            now=now,
            token_id=child_id,
            parent_token_id=token.id,
        )
        pair = self._pair(identity, role, token.device_id, issued)
        return _Rotation(RotationResult.OK, pair=pair, **ids)

    # ------------------------------------------------------------------ #
    # Revocation
    # ------------------------------------------------------------------ #

    def revoke(self, value: str, *, deadline: datetime | None = None) -> bool:
        """
        Revoke the session behind ``value``.

        Idempotent: unknown or already terminal tokens return ``False``.
        """
        return self.end_session(value, deadline=deadline) > 0

    def end_session(
        self,
        value: str,
        *,
        all_sessions: bool = False,
        deadline: datetime | None = None,
    ) -> int:
        """
        Revoke the token behind ``value``, or every live token of its owner.

        :returns: Number of tokens moved to ``revoked``.
        :rtype: int
        """
        if not value:
            return 0
        now = self.now_utc()
        with self.rw_uow(deadline) as uow:
            token = uow.refresh_tokens.find_by_hash(hash_token(value))
            if token is None:
                return 0
            identity_id = token.identity_id
            if all_sessions:
                count = uow.refresh_tokens.revoke_all_for_identity(
                    identity_id, reason=RevocationReason.LOGOUT_ALL, now=now
                )
            else:
                count = int(
                    uow.refresh_tokens.revoke_by_id(
                        token.id, reason=RevocationReason.LOGOUT, now=now
                    )
                )
        log.info(
            "Revoked %d refresh token(s) on logout",
            count,
            extra={"identity_id": identity_id, "event": "logout"},
        )
        return count

    def revoke_all_for_device(
        self,
        device_id: str,
        *,
        reason: str = RevocationReason.DEVICE_REVOKED,
        deadline: datetime | None = None,
    ) -> int:
        with self.rw_uow(deadline) as uow:
            return self.revoke_all_for_device_in(uow, device_id, reason=reason)

    def revoke_all_for_device_in(
        self, uow: UnitOfWork, device_id: str, *, reason: str = RevocationReason.DEVICE_REVOKED
    ) -> int:
        count = uow.refresh_tokens.revoke_all_for_device(
            device_id, reason=reason, now=self.now_utc()
        )
        log.info("Revoked %d refresh token(s)", count, extra={"device_id": device_id})
        return count

    def revoke_all_for_identity(
        self,
        identity_id: str,
        *,
        reason: str = RevocationReason.LOGOUT_ALL,
        deadline: datetime | None = None,
    ) -> int:
        with self.rw_uow(deadline) as uow:
            count = uow.refresh_tokens.revoke_all_for_identity(
                identity_id, reason=reason, now=self.now_utc()
            )
        log.info("Revoked %d refresh token(s)", count, extra={"identity_id": identity_id})
        return count

    # ------------------------------------------------------------------ #
    # Housekeeping & audit
    # ------------------------------------------------------------------ #

    def purge_stale(
        self, retention: timedelta | None = None, *, deadline: datetime | None = None
    ) -> int:
        """
        Hard-delete tokens that expired more than ``retention`` ago.

        :param retention: Grace period kept for audit; defaults to the
            configured refresh retention.
        :type retention: timedelta | None
        :returns: Number of rows deleted.
        :rtype: int
        """
        cutoff = self.now_utc() - (retention if retention is not None else self.cfg.retention)
        with self.rw_uow(deadline) as uow:
            deleted = uow.refresh_tokens.purge_expired_before(cutoff)
        log.info("Purged %d stale refresh token(s)", deleted, extra={"event": "tokens_purged"})
        return deleted

    def chain(self, token_id: str, *, deadline: datetime | None = None) -> list[RefreshTokenView]:
        """
        Follow ``replaced_by_token_id`` from ``token_id`` to the chain head.

        :raises NotFoundError: If ``token_id`` is unknown.
        :raises RepositoryError: If the stored chain loops back on itself.
        """
        with self.ro_uow(deadline) as uow:
            token = uow.refresh_tokens.find_by_id(token_id)
            if token is None:
                raise NotFoundError("RefreshToken", token_id)
            links: list[RefreshTokenView] = []
            seen: set[str] = set()
            while token is not None:
                if token.id in seen:
                    raise RepositoryError("Rotation chain contains a cycle", retryable=False)
                seen.add(token.id)
                links.append(RefreshTokenView.from_model(token))
                successor = token.replaced_by_token_id
                token = uow.refresh_tokens.find_by_id(successor) if successor else None
            return links

    # ------------------------------------------------------------------ #
    # Helpers
    # ------------------------------------------------------------------ #

    def _insert(
        self,
        uow: UnitOfWork,
        identity_id: str,
        device_id: str,
        *,
        now: datetime,
        token_id: str | None = None,
        parent_token_id: str | None = None,
    ) -> IssuedRefreshToken:
        value = new_token_value()
        expires_at = now + self.cfg.ttl
        token = uow.refresh_tokens.create(
            {
                "id": token_id or new_id(),
                "identity_id": identity_id,
                "device_id": device_id,
                "token_hash": hash_token(value),
                "state": TokenState.ACTIVE,
                "issued_at": now,
                "expires_at": expires_at,
                "parent_token_id": parent_token_id,
            }
        )
        return IssuedRefreshToken(token_id=token.id, value=value, expires_at=expires_at)

    def _pair(
        self, identity: Identity, role: Role, device_id: str, issued: IssuedRefreshToken
    ) -> TokenPairOut:
        return TokenPairOut(
            access_token=self.mint_access(identity, role, device_id),
            refresh_token=issued.value,
            expires_in=int(self.access_cfg.ttl.total_seconds()),
        )

    @staticmethod
    def _revoke_session(uow: UnitOfWork, identity_id: str, device_id: str, now: datetime) -> int:
        return uow.refresh_tokens.revoke_all_for_session(
            identity_id, device_id, reason=RevocationReason.REUSE_DETECTED, now=now
        )

    def _touch_device(self, device_id: str | None, now: datetime) -> None:
        """Record device activity. Best-effort: a failure never fails the rotation."""
        if device_id is None:
            return
        try:
            with self.rw_uow() as uow:
                uow.devices.update_by_id(device_id, {"last_seen_at": now})
        except RepositoryError:
            log.warning(
                "Could not update device last_seen_at",
                extra={"device_id": device_id},
                exc_info=True,
            )
