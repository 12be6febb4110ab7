"""Role repository: persistence for named permission sets."""

from __future__ import annotations

from typing import NoReturn

from sqlalchemy.exc import IntegrityError

from authcore.models.base import EntityStatus
from authcore.models.role import Role
from authcore.repositories.base import BaseRepository
from authcore.services._shared.errors import DuplicateRoleError, violates


class RoleRepository(BaseRepository[Role]):
    """Persistence-only repository for :class:`Role`.

    Role names are stored lower-cased by the model, so lookups normalise the
    same way before querying.
    """

    model = Role
    _required_fields = ("name",)

    def _sortable_fields(self):
        return {"name": Role.name, "created_at": Role.created_at}

    def _filterable_fields(self):
        return {
            "id": Role.id,
            "name": Role.name,
            "status": Role.status,
        }

    def _updatable_fields(self):
        return {"name", "permissions", "description", "status"}

    def _raise_integrity(self, exc: IntegrityError) -> NoReturn:
        if violates(exc, "uq_roles_name_live") or violates(exc, "roles.name"):
            raise DuplicateRoleError() from exc
        super()._raise_integrity(exc)

    # ---------------------------- Lookup helpers ----------------------------

    def find_by_name(self, name: str) -> Role | None:
        """Return the non-deleted role called ``name`` (case-insensitive)."""
        return self.find_one({"name": name.strip().lower()})

    def list_active(self) -> list[Role]:
        """Return non-deleted roles with ``ACTIVE`` status, ordered by name."""
        return self.find_many({"status": EntityStatus.ACTIVE}, sort=["name"])

    def count_active(self) -> int:
        return self.count({"status": EntityStatus.ACTIVE})
