# authcore/services/roles/dto.py
from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass, field

from authcore.models.role import Role
from authcore.services._shared.errors import ValidationError


def permission_list(values: Sequence[str]) -> list[str]:
    """Copy ``values`` into a list, refusing a bare string.

    :raises ValidationError: If ``values`` is a string rather than a sequence.
    """
    if isinstance(values, str):
        raise ValidationError("Permissions must be a list of strings, not a string.")
    return list(values)


@dataclass(frozen=True, slots=True)
class RoleSpec:
    """
    Desired role definition (seed data or admin input).

    :param name: Role name; stored lower-cased.
    :type name: str
    :param permissions: Granted permissions, ``"*"`` and ``"ns:*"`` allowed.
    :type permissions: Sequence[str]
    :param description: Optional human description.
    :type description: str | None
    """

    name: str
    permissions: Sequence[str] = field(default_factory=tuple)
    description: str | None = None

    def to_fields(self) -> dict[str, object]:
        return {
            "name": self.name,
            "permissions": permission_list(self.permissions),
            "description": self.description,
        }


@dataclass(frozen=True, slots=True)
class RoleOut:
    """Read model of a role."""

    id: str
    name: str
    permissions: tuple[str, ...]
    description: str | None
    status: str

    @property
    def is_active(self) -> bool:
        return self.status == "active"

    @classmethod
    def from_model(cls, role: Role) -> RoleOut:
        return cls(
            id=role.id,
            name=role.name,
            permissions=tuple(role.permissions or ()),
            description=role.description,
            status=role.status.value,
        )
