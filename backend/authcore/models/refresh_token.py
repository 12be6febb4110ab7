"""Refresh token model: server-side state of a rotating session credential."""

from __future__ import annotations

import enum
from datetime import datetime

from sqlalchemy import DateTime, Enum, ForeignKey, Index, String, text
from sqlalchemy.orm import Mapped, mapped_column

from authcore.core.extensions import db

from .base import PKMixin, ReprMixin, TimestampMixin


class TokenState(str, enum.Enum):
    """Refresh token lifecycle. Every state except ``ACTIVE`` is terminal."""

    ACTIVE = "active"
    ROTATED = "rotated"
    REVOKED = "revoked"
    EXPIRED = "expired"


class RefreshToken(PKMixin, ReprMixin, TimestampMixin, db.Model):
    """
    One link of a rotation chain.

    The plaintext token is handed to the client once and only its SHA-256
    digest is stored. ``replaced_by_token_id`` is the forward pointer to the
    child minted on rotation; it is written exactly once, by the same
    conditional update that moves the row out of ``ACTIVE``.

    Refresh tokens are never soft-deleted: they reach a terminal state and
    are hard-deleted by the housekeeping sweep long after expiry.
    """

    __tablename__ = "refresh_tokens"

    identity_id: Mapped[str] = mapped_column(
        String(32), ForeignKey("identities.id", ondelete="CASCADE"), nullable=False, index=True
    )
    device_id: Mapped[str] = mapped_column(
        String(32), ForeignKey("devices.id", ondelete="CASCADE"), nullable=False, index=True
    )
    token_hash: Mapped[str] = mapped_column(String(64), nullable=False, unique=True)
    state: Mapped[TokenState] = mapped_column(
        Enum(
            TokenState,
            name="refresh_token_state",
            native_enum=False,
            length=16,
            values_callable=lambda members: [m.value for m in members],
            validate_strings=True,
        ),
        nullable=False,
        default=TokenState.ACTIVE,
    )
    issued_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    expires_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    revoked_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    revoked_reason: Mapped[str | None] = mapped_column(String(32), nullable=True)
    replaced_by_token_id: Mapped[str | None] = mapped_column(
        String(32), nullable=True, unique=True
    )
    # Audit only: hot paths never walk the chain backwards.
    parent_token_id: Mapped[str | None] = mapped_column(String(32), nullable=True)

    __table_args__ = (
        Index(
            "uq_refresh_tokens_live_session",
            "identity_id",
            "device_id",
            unique=True,
            sqlite_where=text("state = 'active'"),
            postgresql_where=text("state = 'active'"),
        ),
        Index("ix_refresh_tokens_expires_at", "expires_at"),
    )
