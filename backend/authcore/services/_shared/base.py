# authcore/services/_shared/base.py
from __future__ import annotations

from collections.abc import Iterable
from datetime import datetime

from authcore.models.base import utcnow
from authcore.repositories.base import Pagination
from authcore.services._shared.errors import OperationTimeoutError
from authcore.uow.base import SessionFactory
from authcore.uow.sqlalchemy_uow import (
    SQLAlchemyReadOnlyUnitOfWork,
    SQLAlchemyUnitOfWork,
)


class BaseService:
    """
    Base class for application services.

    Responsibilities
    ----------------
    * Provide helpers to run read-only and read-write units of work.
    * Enforce caller deadlines between units of work.
    * Offer shared validation helpers (pagination/sorting).
    * Keep services thin, orchestration-only, no web/ORM leakage.

    Notes
    -----
    - Services never touch the global session directly; always use a Unit of Work.
    - Every public operation accepts ``deadline``; it is checked before each
      unit of work starts, never in the middle of one.
    """

    def __init__(self, *, session_factory: SessionFactory | None = None) -> None:
        """
        Initialize the base service.

        :param session_factory: Optional factory of caller-owned sessions.
            ``None`` uses the Flask-scoped session.
        :type session_factory: SessionFactory | None
        """
        self.session_factory = session_factory

    # -------------------------- UoW helpers ---------------------------------

    def rw_uow(self, deadline: datetime | None = None) -> SQLAlchemyUnitOfWork:
        """
        Create a read-write Unit of Work.

        :param deadline: Optional absolute deadline checked before starting.
        :type deadline: datetime | None
        :returns: Read-write UoW instance.
        :rtype: SQLAlchemyUnitOfWork
        :raises OperationTimeoutError: If the deadline already passed.
        """
        self.check_deadline(deadline)
        return SQLAlchemyUnitOfWork(session_factory=self.session_factory)

    def ro_uow(self, deadline: datetime | None = None) -> SQLAlchemyReadOnlyUnitOfWork:
        """
        Create a read-only Unit of Work.

        :param deadline: Optional absolute deadline checked before starting.
        :type deadline: datetime | None
        :returns: Read-only UoW instance.
        :rtype: SQLAlchemyReadOnlyUnitOfWork
        """
        self.check_deadline(deadline)
        return SQLAlchemyReadOnlyUnitOfWork(session_factory=self.session_factory)

    # -------------------------- Time & deadlines ----------------------------

    @staticmethod
    def now_utc() -> datetime:
        return utcnow()

    def check_deadline(self, deadline: datetime | None) -> None:
        """
        Fail fast once the caller's deadline has elapsed.

        :raises OperationTimeoutError: When ``deadline`` is in the past.
        """
        if deadline is not None and self.now_utc() >= deadline:
            raise OperationTimeoutError()

    # ----------------------- Validation utilities ---------------------------

    def ensure_pagination(
        self, *, page: int, limit: int, sort: Iterable[str] | None = None
    ) -> Pagination:
        """
        Build a Pagination value object with basic clamping.

        :param page: 1-based page number.
        :type page: int
        :param limit: Page size (capped at 100).
        :type limit: int
        :param sort: Sort tokens like ["-created_at", "email"].
        :type sort: Iterable[str] | None
        :returns: Pagination instance.
        :rtype: Pagination
        """
        page = max(1, int(page))
        limit = min(max(1, int(limit)), 100)
        return Pagination(page=page, limit=limit, sort=list(sort or []))
