"""Role model: a named, ordered permission set."""

from __future__ import annotations

from typing import Any

from sqlalchemy import JSON, Index, String, text
from sqlalchemy.orm import Mapped, mapped_column, validates

from authcore.core.extensions import db

from .base import LifecycleMixin, PKMixin, ReprMixin, TimestampMixin

WILDCARD = "*"


def normalize_permissions(values: Any) -> list[str]:
    """Return permissions trimmed and de-duplicated, first occurrence wins.

    :param values: Iterable of permission strings.
    :type values: Any
    :returns: Ordered list of unique, non-empty permissions.
    :rtype: list[str]
    :raises ValueError: If ``values`` is a bare string or holds non-strings.
    """
    if values is None:
        return []
    if isinstance(values, str):
        raise ValueError("Permissions must be a list of strings, not a string.")
    seen: dict[str, None] = {}
    for raw in values:
        if not isinstance(raw, str):
            raise ValueError("Permissions must be strings.")
        item = raw.strip()
        if item:
            seen.setdefault(item, None)
    return list(seen)


class Role(PKMixin, LifecycleMixin, ReprMixin, TimestampMixin, db.Model):
    """
    Named permission set referenced (never owned) by identities.

    Fields
    ------
    name : str
        Unique among non-deleted roles; stored lower-cased.
    permissions : list[str]
        Ordered, de-duplicated permission strings. ``"*"`` grants everything,
        ``"<namespace>:*"`` grants every permission of the namespace.
    description : str | None
        Optional human description.
    """

    __tablename__ = "roles"

    name: Mapped[str] = mapped_column(String(64), nullable=False)
    permissions: Mapped[list[str]] = mapped_column(JSON, nullable=False, default=list)
    description: Mapped[str | None] = mapped_column(String(255), nullable=True)

    __table_args__ = (
        Index(
            "uq_roles_name_live",
            "name",
            unique=True,
            sqlite_where=text("is_deleted = 0"),
            postgresql_where=text("is_deleted = false"),
        ),
    )

    @validates("name")
    def _normalize_name(self, key: str, value: str) -> str:
        """
        Normalize and validate the role name.

        :raises ValueError: If the name is missing or blank.
        """
        if not isinstance(value, str) or not value.strip():
            raise ValueError("Role name is required.")
        return value.strip().lower()

    @validates("permissions")
    def _normalize_permissions(self, key: str, value: Any) -> list[str]:
        return normalize_permissions(value)
