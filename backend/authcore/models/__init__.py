from authcore.models.base import EntityStatus
from authcore.models.device import Device
from authcore.models.identity import Identity
from authcore.models.refresh_token import RefreshToken, TokenState
from authcore.models.role import Role

__all__ = [
    "Device",
    "EntityStatus",
    "Identity",
    "RefreshToken",
    "Role",
    "TokenState",
]
