# authcore/services/devices/dto.py
from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime

from authcore.models.base import as_utc
from authcore.models.device import Device


@dataclass(frozen=True, slots=True)
class DeviceOut:
    """Read model of a registered device."""

    id: str
    identity_id: str
    fingerprint: str
    user_agent: str | None
    ip_address: str | None
    status: str
    last_seen_at: datetime | None

    @property
    def is_active(self) -> bool:
        return self.status == "active"

    @classmethod
    def from_model(cls, device: Device) -> DeviceOut:
        return cls(
            id=device.id,
            identity_id=device.identity_id,
            fingerprint=device.fingerprint,
            user_agent=device.user_agent,
            ip_address=device.ip_address,
            status=device.status.value,
            last_seen_at=as_utc(device.last_seen_at),
        )
