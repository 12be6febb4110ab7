"""Device model: a known client context of one identity."""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import DateTime, ForeignKey, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, validates

from authcore.core.extensions import db

from .base import LifecycleMixin, PKMixin, ReprMixin, TimestampMixin, utcnow


class Device(PKMixin, LifecycleMixin, ReprMixin, TimestampMixin, db.Model):
    """
    Client device bound to exactly one identity.

    Fields
    ------
    identity_id : str
        Owning identity.
    fingerprint : str
        Opaque client-supplied device identifier.
    user_agent / ip_address : str | None
        Informational metadata from the last sighting.
    last_seen_at : datetime
        Refreshed on every login (best-effort).
    """

    __tablename__ = "devices"

    identity_id: Mapped[str] = mapped_column(
        String(32), ForeignKey("identities.id", ondelete="CASCADE"), nullable=False, index=True
    )
    fingerprint: Mapped[str] = mapped_column(String(255), nullable=False)
    user_agent: Mapped[str | None] = mapped_column(String(512), nullable=True)
    ip_address: Mapped[str | None] = mapped_column(String(64), nullable=True)
    last_seen_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow
    )

    __table_args__ = (
        UniqueConstraint("identity_id", "fingerprint", name="uq_devices_identity_fingerprint"),
    )

    @validates("fingerprint")
    def _validate_fingerprint(self, key: str, value: str) -> str:
        if not isinstance(value, str) or not value.strip():
            raise ValueError("Device fingerprint is required.")
        return value.strip()
