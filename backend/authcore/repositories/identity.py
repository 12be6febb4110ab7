"""Identity repository: account lookup and mutation, no credential logic."""

from __future__ import annotations

from typing import NoReturn

from sqlalchemy.exc import IntegrityError

from authcore.models.identity import Identity
from authcore.repositories.base import BaseRepository
from authcore.services._shared.errors import DuplicateIdentityError, violates


class IdentityRepository(BaseRepository[Identity]):
    """Persistence-only repository for :class:`Identity`.

    It NEVER hashes or verifies secrets: the service receives a password
    hasher port and only hands digests to this layer.
    """

    model = Identity
    _required_fields = ("email", "password_hash", "role_id")

    # ---------------------------- Whitelists ----------------------------

    def _sortable_fields(self):
        """Expose sortable fields for safe public sorting."""
        return {
            "email": Identity.email,
            "created_at": Identity.created_at,
            "last_login_at": Identity.last_login_at,
        }

    def _filterable_fields(self):
        """Whitelist fields safe for equality filters."""
        return {
            "id": Identity.id,
            "email": Identity.email,
            "role_id": Identity.role_id,
            "status": Identity.status,
        }

    def _updatable_fields(self):
        """Allowed patch keys. ``password_hash`` only ever receives digests."""
        return {"email", "password_hash", "role_id", "status", "last_login_at"}

    def _raise_integrity(self, exc: IntegrityError) -> NoReturn:
        if violates(exc, "uq_identities_email_live") or violates(exc, "identities.email"):
            raise DuplicateIdentityError() from exc
        super()._raise_integrity(exc)

    # ---------------------------- Lookup helpers ----------------------------

    def find_by_email(self, email: str) -> Identity | None:
        """Fetch a non-deleted identity by email (case-insensitive).

        :param email: Email address to normalise and search.
        :type email: str
        :returns: Identity instance or ``None`` when not found.
        :rtype: Identity | None
        """
        return self.find_one({"email": email.strip().lower()})

    def exists_by_email(self, email: str) -> bool:
        return self.exists({"email": email.strip().lower()})

    def count_for_role(self, role_id: str) -> int:
        """Count non-deleted identities still referencing ``role_id``."""
        return self.count({"role_id": role_id})
