# authcore/services/devices/service.py
from __future__ import annotations

import logging
from datetime import datetime

from authcore.models.base import EntityStatus
from authcore.models.device import Device
from authcore.services._shared.base import BaseService
from authcore.services._shared.errors import NotFoundError, ValidationError
from authcore.services.devices.dto import DeviceOut
from authcore.services.tokens.dto import RevocationReason
from authcore.services.tokens.service import RefreshTokenService
from authcore.uow.base import SessionFactory, UnitOfWork

log = logging.getLogger(__name__)


class DeviceService(BaseService):
    """
    Device registry: one row per ``(identity, fingerprint)``.

    Revoking a device cascades to its refresh tokens through
    :class:`RefreshTokenService`, the only writer of token rows.
    """

    def __init__(
        self,
        *,
        refresh_tokens: RefreshTokenService,
        session_factory: SessionFactory | None = None,
    ) -> None:
        super().__init__(session_factory=session_factory)
        self.refresh_tokens = refresh_tokens

    def register_or_touch(
        self,
        identity_id: str,
        fingerprint: str,
        *,
        user_agent: str | None = None,
        ip_address: str | None = None,
        deadline: datetime | None = None,
    ) -> DeviceOut:
        """
        Return the identity's device for ``fingerprint``, creating it if new.

        Repeated calls with the same pair return the same device id and only
        refresh ``last_seen_at`` and the client metadata.

        :raises ValidationError: If ``fingerprint`` is blank.
        """
        with self.rw_uow(deadline) as uow:
            device = self.register_or_touch_in(
                uow,
                identity_id,
                fingerprint,
                user_agent=user_agent,
                ip_address=ip_address,
                now=self.now_utc(),
            )
            return DeviceOut.from_model(device)

    def register_or_touch_in(
        self,
        uow: UnitOfWork,
        identity_id: str,
        fingerprint: str,
        *,
        user_agent: str | None,
        ip_address: str | None,
        now: datetime,
    ) -> Device:
        """Upsert inside a caller-managed unit of work.

        A previously revoked device is reactivated: a credential login on it
        is fresh proof of possession.
        """
        if not isinstance(fingerprint, str) or not fingerprint.strip():
            raise ValidationError("Device fingerprint is required.")
        patch: dict[str, object] = {"last_seen_at": now, "status": EntityStatus.ACTIVE}
        if user_agent is not None:
            patch["user_agent"] = user_agent
        if ip_address is not None:
            patch["ip_address"] = ip_address
        return uow.devices.upsert(
            {"identity_id": identity_id, "fingerprint": fingerprint.strip()}, patch
        )

    def revoke(self, device_id: str, *, deadline: datetime | None = None) -> DeviceOut:
        """
        Mark a device inactive and revoke every live refresh token bound to it.

        :raises NotFoundError: If the device is unknown.
        """
        with self.rw_uow(deadline) as uow:
            device = uow.devices.find_by_id(device_id)
            if device is None:
                raise NotFoundError("Device", device_id)
            uow.devices.assign_updates(device, {"status": EntityStatus.INACTIVE})
            self.refresh_tokens.revoke_all_for_device_in(
                uow, device_id, reason=RevocationReason.DEVICE_REVOKED
            )
            out = DeviceOut.from_model(device)
        log.info("Device revoked", extra={"device_id": device_id, "event": "device_revoked"})
        return out

    def list_for_identity(
        self, identity_id: str, *, deadline: datetime | None = None
    ) -> list[DeviceOut]:
        with self.ro_uow(deadline) as uow:
            return [DeviceOut.from_model(d) for d in uow.devices.list_for_identity(identity_id)]
