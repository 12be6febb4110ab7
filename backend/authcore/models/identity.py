"""Identity model: the account principals authenticate as."""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import DateTime, ForeignKey, Index, String, text
from sqlalchemy.orm import Mapped, mapped_column, validates

from authcore.core.extensions import db

from .base import LifecycleMixin, PKMixin, ReprMixin, TimestampMixin


def normalize_email(value: str) -> str:
    """
    Normalize and sanity-check an email address.

    :param value: Raw email.
    :type value: str
    :returns: Lower-cased, trimmed email.
    :rtype: str
    :raises ValueError: If the value is missing or obviously malformed.
    """
    if not value or not isinstance(value, str):
        raise ValueError("Email is required.")
    v = value.strip().lower()
    # Minimal sanity check; full validation happens at the API layer.
    if "@" not in v or "." not in v.split("@")[-1]:
        raise ValueError("Email format looks invalid.")
    return v


class Identity(PKMixin, LifecycleMixin, ReprMixin, TimestampMixin, db.Model):
    """
    Authentication identity.

    The role is a weak reference: only ``role_id`` is stored and resolved
    through :class:`authcore.repositories.role.RoleRepository`, so renaming a
    role never rewrites identities.

    Fields
    ------
    email : str
        Login email, unique among non-deleted identities.
    password_hash : str
        Digest produced by the injected password hasher. Never plaintext.
    role_id : str
        Identifier of the assigned role.
    last_login_at : datetime | None
        Timestamp of the last successful credential login.
    """

    __tablename__ = "identities"

    email: Mapped[str] = mapped_column(String(254), nullable=False)
    password_hash: Mapped[str] = mapped_column(String(255), nullable=False)
    role_id: Mapped[str] = mapped_column(
        String(32), ForeignKey("roles.id", ondelete="RESTRICT"), nullable=False, index=True
    )
    last_login_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )

    __table_args__ = (
        Index(
            "uq_identities_email_live",
            "email",
            unique=True,
            sqlite_where=text("is_deleted = 0"),
            postgresql_where=text("is_deleted = false"),
        ),
    )

    @validates("email")
    def _normalize_email(self, key: str, value: str) -> str:
        return normalize_email(value)
