# authcore/services/identity/service.py
from __future__ import annotations

import logging
from collections.abc import Iterable
from datetime import datetime

from authcore.models.base import EntityStatus
from authcore.models.identity import Identity
from authcore.repositories.base import Page
from authcore.services._shared.base import BaseService
from authcore.services._shared.errors import (
    DuplicateIdentityError,
    NotFoundError,
    ValidationError,
)
from authcore.services._shared.ports import PasswordHasher
from authcore.services.identity.dto import IdentityOut
from authcore.uow.base import SessionFactory, UnitOfWork

log = logging.getLogger(__name__)

# Verified when the email is unknown so both failure paths cost one hash check.
_TIMING_DECOY_SECRET = "authcore-timing-decoy"


class IdentityService(BaseService):
    """
    Identity store: account creation, credential verification and lifecycle.

    Secrets only cross this service as plaintext on the way into the
    injected :class:`PasswordHasher`; they are never persisted or logged.
    """

    def __init__(
        self,
        *,
        password_hasher: PasswordHasher,
        session_factory: SessionFactory | None = None,
    ) -> None:
        super().__init__(session_factory=session_factory)
        self.hasher = password_hasher
        self._decoy_digest: str | None = None

    # ------------------------------------------------------------------ #
    # Queries
    # ------------------------------------------------------------------ #

    def find_by_email(
        self, email: str, *, deadline: datetime | None = None
    ) -> IdentityOut | None:
        """
        Return the non-deleted identity owning ``email``.

        :param email: Email in any case; normalised before lookup.
        :type email: str
        :returns: Identity read model or ``None``.
        :rtype: IdentityOut | None
        """
        with self.ro_uow(deadline) as uow:
            identity = uow.identities.find_by_email(email)
            return IdentityOut.from_model(identity) if identity is not None else None

    def get(self, identity_id: str, *, deadline: datetime | None = None) -> IdentityOut:
        """
        :raises NotFoundError: If the identity is unknown or soft-deleted.
        """
        with self.ro_uow(deadline) as uow:
            return IdentityOut.from_model(self._get_live(uow, identity_id))

    def list_identities(
        self,
        *,
        page: int = 1,
        limit: int = 20,
        sort: Iterable[str] | None = None,
        role_id: str | None = None,
        deadline: datetime | None = None,
    ) -> Page[IdentityOut]:
        pagination = self.ensure_pagination(page=page, limit=limit, sort=sort or ["email"])
        filters = {"role_id": role_id} if role_id else None
        with self.ro_uow(deadline) as uow:
            result = uow.identities.paginate(pagination, filters=filters)
            return Page(
                items=[IdentityOut.from_model(i) for i in result.items],
                total=result.total,
                page=result.page,
                limit=result.limit,
            )

    def verify_credentials(
        self, email: str, secret: str, *, deadline: datetime | None = None
    ) -> IdentityOut | None:
        """
        Check a secret against the stored digest.

        Unknown email, wrong secret and inactive identity all return ``None``
        after the same amount of hashing work.

        :returns: The identity on success, ``None`` otherwise.
        :rtype: IdentityOut | None
        """
        with self.ro_uow(deadline) as uow:
            identity = uow.identities.find_by_email(email) if email else None
            if identity is None:
                self.hasher.verify(secret or "", self._decoy())
                return None
            if not self.hasher.verify(secret or "", identity.password_hash):
                return None
            if identity.status != EntityStatus.ACTIVE:
                return None
            return IdentityOut.from_model(identity)

    # ------------------------------------------------------------------ #
    # Commands
    # ------------------------------------------------------------------ #

    def create(
        self,
        email: str,
        secret: str,
        role_id: str,
        *,
        deadline: datetime | None = None,
    ) -> IdentityOut:
        """
        Register a new identity.

        :param email: Login email, unique among non-deleted identities.
        :type email: str
        :param secret: Plaintext secret; hashed before storage.
        :type secret: str
        :param role_id: Identifier of an existing, non-deleted role.
        :type role_id: str
        :returns: The created identity.
        :rtype: IdentityOut
        :raises DuplicateIdentityError: If the email is already in use.
        :raises NotFoundError: If the role does not exist.
        :raises ValidationError: On a blank secret or malformed email.
        """
        self._require_secret(secret)
        digest = self.hasher.hash(secret)
        with self.rw_uow(deadline) as uow:
            self._require_role(uow, role_id)
            if uow.identities.exists_by_email(email or ""):
                raise DuplicateIdentityError()
            identity = uow.identities.create(
                {"email": email, "password_hash": digest, "role_id": role_id}
            )
            out = IdentityOut.from_model(identity)
        log.info("Identity created", extra={"identity_id": out.id, "event": "identity_created"})
        return out

    def change_role(
        self, identity_id: str, role_id: str, *, deadline: datetime | None = None
    ) -> IdentityOut:
        with self.rw_uow(deadline) as uow:
            self._require_role(uow, role_id)
            identity = self._get_live(uow, identity_id)
            uow.identities.assign_updates(identity, {"role_id": role_id})
            return IdentityOut.from_model(identity)

    def change_password(
        self, identity_id: str, new_secret: str, *, deadline: datetime | None = None
    ) -> None:
        self._require_secret(new_secret)
        digest = self.hasher.hash(new_secret)
        with self.rw_uow(deadline) as uow:
            identity = self._get_live(uow, identity_id)
            uow.identities.assign_updates(identity, {"password_hash": digest})
        log.info(
            "Password changed", extra={"identity_id": identity_id, "event": "password_changed"}
        )

    def deactivate(self, identity_id: str, *, deadline: datetime | None = None) -> IdentityOut:
        """
        Mark an identity inactive. Its refresh tokens stop rotating at once;
        already minted access tokens run until expiry.
        """
        with self.rw_uow(deadline) as uow:
            identity = self._get_live(uow, identity_id)
            uow.identities.assign_updates(identity, {"status": EntityStatus.INACTIVE})
            return IdentityOut.from_model(identity)

    def delete(self, identity_id: str, *, deadline: datetime | None = None) -> None:
        """Soft-delete an identity; its email becomes available again."""
        with self.rw_uow(deadline) as uow:
            self._get_live(uow, identity_id)
            uow.identities.soft_delete_many([identity_id])
        log.info(
            "Identity deleted", extra={"identity_id": identity_id, "event": "identity_deleted"}
        )

    # ------------------------------------------------------------------ #
    # Helpers
    # ------------------------------------------------------------------ #

    @staticmethod
    def _require_secret(secret: str) -> None:
        if not isinstance(secret, str) or not secret.strip():
            raise ValidationError("Secret is required.")

    @staticmethod
    def _require_role(uow: UnitOfWork, role_id: str) -> None:
        role = uow.roles.find_by_id(role_id) if role_id else None
        if role is None or role.is_deleted:
            raise NotFoundError("Role", role_id)

    @staticmethod
    def _get_live(uow: UnitOfWork, identity_id: str) -> Identity:
        identity = uow.identities.find_by_id(identity_id)
        if identity is None or identity.is_deleted:
            raise NotFoundError("Identity", identity_id)
        return identity

    def _decoy(self) -> str:
        if self._decoy_digest is None:
            self._decoy_digest = self.hasher.hash(_TIMING_DECOY_SECRET)
        return self._decoy_digest
