# authcore/services/identity/dto.py
from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime

from authcore.models.base import as_utc
from authcore.models.identity import Identity


@dataclass(frozen=True, slots=True)
class IdentityOut:
    """
    Read model of an identity. Never carries the password digest.

    :param id: Identity identifier.
    :type id: str
    :param email: Normalised email.
    :type email: str
    :param role_id: Weak reference to the assigned role.
    :type role_id: str
    :param status: ``"active"`` or ``"inactive"``.
    :type status: str
    :param last_login_at: Last successful credential login, if any.
    :type last_login_at: datetime | None
    """

    id: str
    email: str
    role_id: str
    status: str
    last_login_at: datetime | None
    created_at: datetime | None

    @property
    def is_active(self) -> bool:
        return self.status == "active"

    @classmethod
    def from_model(cls, identity: Identity) -> IdentityOut:
        return cls(
            id=identity.id,
            email=identity.email,
            role_id=identity.role_id,
            status=identity.status.value,
            last_login_at=as_utc(identity.last_login_at),
            created_at=as_utc(identity.created_at),
        )
