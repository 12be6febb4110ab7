# authcore/services/roles/service.py
from __future__ import annotations

import logging
from collections.abc import Iterable, Sequence
from datetime import datetime

from authcore.services._shared.base import BaseService
from authcore.services._shared.errors import NotFoundError, RoleInUseError, ValidationError
from authcore.services.roles.dto import RoleOut, RoleSpec, permission_list

log = logging.getLogger(__name__)


class RoleService(BaseService):
    """
    Role registry: lookup, seeding and administration of permission sets.

    Identities reference roles by id only, so permission changes take effect
    for every holder on their next token mint.
    """

    # ------------------------------------------------------------------ #
    # Queries
    # ------------------------------------------------------------------ #

    def get_by_name(self, name: str, *, deadline: datetime | None = None) -> RoleOut | None:
        """
        Return the non-deleted role called ``name``.

        :param name: Role name (case-insensitive).
        :type name: str
        :returns: Role read model or ``None``.
        :rtype: RoleOut | None
        """
        with self.ro_uow(deadline) as uow:
            role = uow.roles.find_by_name(name)
            return RoleOut.from_model(role) if role is not None else None

    def list_active(self, *, deadline: datetime | None = None) -> list[RoleOut]:
        with self.ro_uow(deadline) as uow:
            return [RoleOut.from_model(r) for r in uow.roles.list_active()]

    # ------------------------------------------------------------------ #
    # Commands
    # ------------------------------------------------------------------ #

    def seed_defaults(
        self, specs: Iterable[RoleSpec], *, deadline: datetime | None = None
    ) -> int:
        """
        Create the default roles unless any active role already exists.

        :param specs: Role definitions to insert.
        :type specs: Iterable[RoleSpec]
        :returns: Number of roles created (``0`` when seeding was skipped).
        :rtype: int
        :raises BulkWriteError: If one definition is invalid; nothing is written.
        """
        rows = [spec.to_fields() for spec in specs]
        with self.rw_uow(deadline) as uow:
            if uow.roles.count_active() > 0:
                log.info("Role seeding skipped", extra={"event": "roles_seed_skipped"})
                return 0
            created = uow.roles.create_many(rows)
        log.info("Seeded %d default roles", len(created), extra={"event": "roles_seeded"})
        return len(created)

    def create_role(self, spec: RoleSpec, *, deadline: datetime | None = None) -> RoleOut:
        """
        Create one role.

        :raises DuplicateRoleError: If a non-deleted role has the same name.
        """
        with self.rw_uow(deadline) as uow:
            role = uow.roles.create(spec.to_fields())
            return RoleOut.from_model(role)

    def update_permissions(
        self, name: str, permissions: Sequence[str], *, deadline: datetime | None = None
    ) -> RoleOut:
        """
        Replace the permission set of a role.

        :raises NotFoundError: If no non-deleted role has that name.
        :raises ValidationError: If ``permissions`` is not a list of strings.
        """
        with self.rw_uow(deadline) as uow:
            role = uow.roles.find_by_name(name)
            if role is None:
                raise NotFoundError("Role", name)
            uow.roles.assign_updates(role, {"permissions": permission_list(permissions)})
            return RoleOut.from_model(role)

    def delete_role(self, name: str, *, deadline: datetime | None = None) -> None:
        """
        Soft-delete a role that no identity references any more.

        :raises NotFoundError: If no non-deleted role has that name.
        :raises RoleInUseError: While a non-deleted identity still holds it.
        """
        if not name or not name.strip():
            raise ValidationError("Role name is required.")
        with self.rw_uow(deadline) as uow:
            role = uow.roles.find_by_name(name)
            if role is None:
                raise NotFoundError("Role", name)
            holders = uow.identities.count_for_role(role.id)
            if holders:
                raise RoleInUseError(f"role is still assigned to {holders} identities")
            role_id = role.id
            uow.roles.soft_delete_many([role_id])
        log.info("Role %s deleted", role_id, extra={"event": "role_deleted"})
