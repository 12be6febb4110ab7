"""Refresh token repository: lookup by digest and conditional state transitions.

Every transition out of ``ACTIVE`` is a single ``UPDATE ... WHERE state =
'active'`` statement. The returned row count is the only source of truth for
who won a race; no row is ever read, modified in Python and written back.
"""

from __future__ import annotations

from collections.abc import Sequence
from datetime import datetime
from typing import NoReturn

from sqlalchemy import ColumnElement, delete
from sqlalchemy.exc import IntegrityError

from authcore.models.refresh_token import RefreshToken, TokenState
from authcore.repositories.base import BaseRepository, storage_errors
from authcore.services._shared.errors import ConflictError, violates


class RefreshTokenRepository(BaseRepository[RefreshToken]):
    """Persistence-only repository for :class:`RefreshToken`.

    There are no updatable fields: state only changes through the
    conditional transition helpers below.
    """

    model = RefreshToken
    _required_fields = ("identity_id", "device_id", "token_hash", "issued_at", "expires_at")

    def _sortable_fields(self):
        return {"issued_at": RefreshToken.issued_at, "expires_at": RefreshToken.expires_at}

    def _filterable_fields(self):
        return {
            "id": RefreshToken.id,
            "identity_id": RefreshToken.identity_id,
            "device_id": RefreshToken.device_id,
            "token_hash": RefreshToken.token_hash,
            "state": RefreshToken.state,
            "replaced_by_token_id": RefreshToken.replaced_by_token_id,
        }

    def _raise_integrity(self, exc: IntegrityError) -> NoReturn:
        if violates(exc, "uq_refresh_tokens_live_session") or violates(
            exc, "refresh_tokens.identity_id, refresh_tokens.device_id"
        ):
            raise ConflictError("RefreshToken", "device already has a live session") from exc
        if violates(exc, "replaced_by_token_id"):
            raise ConflictError("RefreshToken", "token already has a successor") from exc
        super()._raise_integrity(exc)

    # ---------------------------- Lookup helpers ----------------------------

    def find_by_hash(self, token_hash: str) -> RefreshToken | None:
        """Return the token stored under ``token_hash`` in any state."""
        return self.find_one({"token_hash": token_hash})

    def find_live_for_session(self, identity_id: str, device_id: str) -> RefreshToken | None:
        return self.find_one(
            {"identity_id": identity_id, "device_id": device_id, "state": TokenState.ACTIVE}
        )

    # ---------------------------- Transitions -------------------------------

    def _revoke_where(
        self,
        clauses: Sequence[ColumnElement[bool]],
        *,
        reason: str,
        now: datetime,
    ) -> int:
        return self._execute_update(
            [*clauses, RefreshToken.state == TokenState.ACTIVE],
            {"state": TokenState.REVOKED, "revoked_at": now, "revoked_reason": reason},
        )

    def claim_for_rotation(self, token_id: str, child_id: str, *, now: datetime) -> bool:
        """Atomically move an unexpired ``ACTIVE`` token to ``ROTATED``.

        :param token_id: Token being presented.
        :type token_id: str
        :param child_id: Identifier reserved for the successor row.
        :type child_id: str
        :param now: Evaluation instant; an expired row cannot be claimed.
        :type now: datetime
        :returns: ``True`` if this caller won the transition, ``False`` if the
            row had already left ``ACTIVE`` (or expired) in the meantime.
        :rtype: bool
        """
        updated = self._execute_update(
            [
                RefreshToken.id == token_id,
                RefreshToken.state == TokenState.ACTIVE,
                RefreshToken.expires_at > now,
            ],
            {"state": TokenState.ROTATED, "replaced_by_token_id": child_id},
        )
        return updated == 1

    def mark_expired(self, token_id: str) -> bool:
        """Move an ``ACTIVE`` token to ``EXPIRED``; no-op for terminal rows."""
        updated = self._execute_update(
            [RefreshToken.id == token_id, RefreshToken.state == TokenState.ACTIVE],
            {"state": TokenState.EXPIRED},
        )
        return updated == 1

    def revoke_by_id(self, token_id: str, *, reason: str, now: datetime) -> bool:
        return self._revoke_where([RefreshToken.id == token_id], reason=reason, now=now) == 1

    def revoke_all_for_session(
        self, identity_id: str, device_id: str, *, reason: str, now: datetime
    ) -> int:
        """Revoke every live token of one ``(identity, device)`` pair."""
        return self._revoke_where(
            [RefreshToken.identity_id == identity_id, RefreshToken.device_id == device_id],
            reason=reason,
            now=now,
        )

    def revoke_all_for_device(self, device_id: str, *, reason: str, now: datetime) -> int:
        return self._revoke_where([RefreshToken.device_id == device_id], reason=reason, now=now)

    def revoke_all_for_identity(self, identity_id: str, *, reason: str, now: datetime) -> int:
        return self._revoke_where(
            [RefreshToken.identity_id == identity_id], reason=reason, now=now
        )

    # ---------------------------- Housekeeping ------------------------------

    def purge_expired_before(self, cutoff: datetime) -> int:
        """Hard-delete tokens whose ``expires_at`` is older than ``cutoff``.

        Rows past ``expires_at`` can no longer be rotated whatever their
        stored state, so the sweep does not filter on state.
        """
        stmt = (
            delete(RefreshToken)
            .where(RefreshToken.expires_at < cutoff)
            .execution_options(synchronize_session=False)
        )
        with storage_errors("RefreshToken.purge"):
            result = self.session.execute(stmt)
        return int(result.rowcount or 0)  # type: ignore[attr-defined]
