"""
Abstract Unit of Work contracts.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import Callable
from typing import TYPE_CHECKING, Protocol

from sqlalchemy.orm import Session

if TYPE_CHECKING:
    from authcore.repositories import (
        DeviceRepository,
        IdentityRepository,
        RefreshTokenRepository,
        RoleRepository,
    )

#: Zero-argument callable returning a fresh, caller-owned session.
SessionFactory = Callable[[], Session]


class SupportsCommit(Protocol):
    def commit(self) -> None: ...
    def rollback(self) -> None: ...


class UnitOfWork(ABC):
    """
    Transactional boundary of one use-case step.

    The four repositories share one session, so everything done through a
    single unit of work commits or rolls back together.
    """

    roles: RoleRepository
    identities: IdentityRepository
    devices: DeviceRepository
    refresh_tokens: RefreshTokenRepository

    @abstractmethod
    def __enter__(self) -> UnitOfWork: ...
    @abstractmethod
    def __exit__(self, exc_type, exc, tb) -> None: ...
    @abstractmethod
    def commit(self) -> None: ...
    @abstractmethod
    def rollback(self) -> None: ...
