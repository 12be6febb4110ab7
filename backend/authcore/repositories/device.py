"""Device repository: per-identity client contexts."""

from __future__ import annotations

from authcore.models.device import Device
from authcore.repositories.base import BaseRepository


class DeviceRepository(BaseRepository[Device]):
    """Persistence-only repository for :class:`Device`."""

    model = Device
    _required_fields = ("identity_id", "fingerprint")

    def _sortable_fields(self):
        return {"last_seen_at": Device.last_seen_at, "created_at": Device.created_at}

    def _filterable_fields(self):
        return {
            "id": Device.id,
            "identity_id": Device.identity_id,
            "fingerprint": Device.fingerprint,
            "status": Device.status,
        }

    def _updatable_fields(self):
        return {"user_agent", "ip_address", "last_seen_at", "status"}

    def find_for_identity(self, identity_id: str, fingerprint: str) -> Device | None:
        """Return the device registered by ``identity_id`` under ``fingerprint``."""
        return self.find_one({"identity_id": identity_id, "fingerprint": fingerprint.strip()})

    def list_for_identity(self, identity_id: str) -> list[Device]:
        """Return the identity's devices, most recently seen first."""
        return self.find_many({"identity_id": identity_id}, sort=["-last_seen_at"])
