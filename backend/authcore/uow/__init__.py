"""Unit of Work abstractions and their SQLAlchemy implementations."""

from .base import SessionFactory, SupportsCommit, UnitOfWork
from .sqlalchemy_uow import SQLAlchemyReadOnlyUnitOfWork, SQLAlchemyUnitOfWork

__all__ = [
    "SessionFactory",
    "SupportsCommit",
    "UnitOfWork",
    "SQLAlchemyUnitOfWork",
    "SQLAlchemyReadOnlyUnitOfWork",
]
