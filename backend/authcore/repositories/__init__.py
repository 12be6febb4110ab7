"""Repository package exposing persistence-layer access for all domain models."""

from __future__ import annotations

from authcore.repositories.base import (
    BaseRepository,
    Page,
    Pagination,
    UpdateResult,
    paginate_select,
    storage_errors,
)
from authcore.repositories.device import DeviceRepository
from authcore.repositories.identity import IdentityRepository
from authcore.repositories.refresh_token import RefreshTokenRepository
from authcore.repositories.role import RoleRepository

__all__ = [
    # Base
    "BaseRepository",
    "Page",
    "Pagination",
    "UpdateResult",
    "paginate_select",
    "storage_errors",
    # Domain
    "DeviceRepository",
    "IdentityRepository",
    "RefreshTokenRepository",
    "RoleRepository",
]
