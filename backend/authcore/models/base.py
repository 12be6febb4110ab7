"""Reusable SQLAlchemy mixins shared by domain models (typed 2.0)."""

from __future__ import annotations

import enum
from datetime import UTC, datetime
from uuid import uuid4

from sqlalchemy import Boolean, DateTime, Enum, String, false, func
from sqlalchemy.orm import Mapped, mapped_column


def new_id() -> str:
    """Return a fresh opaque identifier (32-char hex UUID4)."""
    return uuid4().hex


def utcnow() -> datetime:
    """Return the current timezone-aware UTC time."""
    return datetime.now(UTC)


def as_utc(value: datetime | None) -> datetime | None:
    """Attach UTC to naive datetimes read back from SQLite.

    :param value: Datetime loaded from the database (or ``None``).
    :type value: datetime | None
    :returns: Timezone-aware value in UTC.
    :rtype: datetime | None
    """
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value.astimezone(UTC)


class EntityStatus(str, enum.Enum):
    """Administrative status shared by every entity."""

    ACTIVE = "active"
    INACTIVE = "inactive"


def status_enum(name: str) -> Enum:
    """Build a portable (non-native) enum column type storing the values."""
    return Enum(
        EntityStatus,
        name=name,
        native_enum=False,
        length=16,
        values_callable=lambda members: [m.value for m in members],
        validate_strings=True,
    )


class TimestampMixin:
    """Provide ``created_at`` and ``updated_at`` timestamp columns.

    Attributes
    ----------
    created_at:
        Timezone-aware timestamp filled on insert.
    updated_at:
        Timezone-aware timestamp refreshed on update.
    """

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=utcnow,
        server_default=func.now(),
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=utcnow,
        server_default=func.now(),
        onupdate=utcnow,
    )


class PKMixin:
    """Expose an opaque string primary key named ``id``.

    Identifiers are assigned in Python at construction time and never change.
    """

    id: Mapped[str] = mapped_column(String(32), primary_key=True, default=new_id)


class LifecycleMixin:
    """Add the ``status`` and ``is_deleted`` flags of a generic entity.

    Soft-deleted rows are hidden from default repository queries but remain
    addressable by identifier.
    """

    status: Mapped[EntityStatus] = mapped_column(
        status_enum("entity_status"), nullable=False, default=EntityStatus.ACTIVE
    )
    is_deleted: Mapped[bool] = mapped_column(
        Boolean, nullable=False, default=False, server_default=false()
    )


class ReprMixin:
    """Provide a concise ``__repr__`` including the class name and id."""

    def __repr__(self) -> str:
        """Return a short and useful string representation.

        :returns: Debug-friendly ``<ClassName id=...>``.
        :rtype: str
        """
        cls = self.__class__.__name__
        key = getattr(self, "id", None)
        return f"<{cls} id={key}>"
