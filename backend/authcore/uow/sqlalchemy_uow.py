"""
SQLAlchemy implementation of UnitOfWork for Flask.

By default both units of work use the Flask-scoped session and leave its
lifetime to Flask-SQLAlchemy. When a ``session_factory`` is supplied (worker
threads, CLI jobs outside a request) the unit of work owns the session it
creates and closes it on exit.
"""

from __future__ import annotations

import logging
from contextlib import suppress

from sqlalchemy import event, text
from sqlalchemy.engine import Connection
from sqlalchemy.exc import IntegrityError, InvalidRequestError, SQLAlchemyError
from sqlalchemy.orm import Session, SessionTransaction

from authcore.core.extensions import db
from authcore.repositories import (
    DeviceRepository,
    IdentityRepository,
    RefreshTokenRepository,
    RoleRepository,
    storage_errors,
)
from authcore.services._shared.errors import RepositoryError
from authcore.uow.base import SessionFactory, UnitOfWork

log = logging.getLogger(__name__)


class SQLAlchemyRepositoryContainer:
    """Provide repository instances that share a SQLAlchemy session."""

    def __init__(self, *, session_factory: SessionFactory | None = None) -> None:
        self._owns_session = session_factory is not None
        self.session: Session = session_factory() if session_factory else db.session
        self.roles = RoleRepository(session=self.session)
        self.identities = IdentityRepository(session=self.session)
        self.devices = DeviceRepository(session=self.session)
        self.refresh_tokens = RefreshTokenRepository(session=self.session)

    def _release(self) -> None:
        if self._owns_session:
            self.session.close()


class SQLAlchemyUnitOfWork(SQLAlchemyRepositoryContainer, UnitOfWork):
    """
    Read-write unit of work: commit on clean exit, rollback on exception.

    Commit failures are translated like any other storage fault, so callers
    only ever see the service error taxonomy.
    """

    def __enter__(self) -> SQLAlchemyUnitOfWork:
        # No-op: the session is lazily started on the first statement.
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        try:
            if exc_type is None:
                try:
                    self.commit()
                except Exception:
                    self.rollback()
                    raise
            else:
                self.rollback()
        finally:
            self._release()

    def commit(self) -> None:
        with storage_errors("commit"):
            try:
                self.session.commit()
            except IntegrityError as exc:
                raise RepositoryError("commit: constraint violated", retryable=False) from exc

    def rollback(self) -> None:
        self.session.rollback()


class SQLAlchemyReadOnlyUnitOfWork(SQLAlchemyRepositoryContainer, UnitOfWork):
    """
    Read-only unit of work.

    This UoW:
    - Applies ``SET TRANSACTION READ ONLY`` on dialects that support it.
    - Installs portable write-guards and always rolls back on exit.
    - Disallows ``commit()``.

    Notes
    -----
    When the session already has a transaction in progress (autobegin or an
    outer test fixture) the scope attaches to it instead of failing; the
    guards still block writes, but the DB-level read-only flag is skipped.
    """

    _WRITE_PREFIXES = (
        "insert",
        "update",
        "delete",
        "merge",
        "alter",
        "drop",
        "truncate",
        "create",
        "replace",
    )
    _READONLY_DIALECTS = ("postgresql", "mysql", "mariadb")

    def __init__(
        self,
        *,
        session_factory: SessionFactory | None = None,
        enforce_db_readonly: bool = True,
    ) -> None:
        super().__init__(session_factory=session_factory)
        self.enforce_db_readonly = enforce_db_readonly
        self._conn: Connection | None = None
        self._txn_ctx: SessionTransaction | None = None
        self._listeners_installed = False

    # ----------------------------- Context Manager -----------------------------

    def __enter__(self) -> SQLAlchemyReadOnlyUnitOfWork:
        self._txn_ctx = None
        try:
            txn_ctx = self.session.begin()
            txn_ctx.__enter__()
            self._txn_ctx = txn_ctx
        except InvalidRequestError:
            # Attach to the transaction already running on this session.
            pass

        with storage_errors("begin read-only"):
            self._conn = self.session.connection()
        self._install_listeners()

        if self._txn_ctx is not None and self.enforce_db_readonly:
            if self._conn.dialect.name in self._READONLY_DIALECTS:
                try:
                    self.session.execute(text("SET TRANSACTION READ ONLY"))
                except SQLAlchemyError as exc:
                    log.warning("SET TRANSACTION READ ONLY failed (%s); guards only.", exc)
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        """Always remove guards. Roll back only if we own the transaction."""
        try:
            if self._txn_ctx is not None:
                with suppress(SQLAlchemyError):
                    self.session.rollback()
                try:
                    self._txn_ctx.__exit__(exc_type, exc, tb)
                finally:
                    self._txn_ctx = None
        finally:
            self._remove_listeners()
            self._conn = None
            self._release()

    # ----------------------------- Public API ---------------------------------

    def commit(self) -> None:
        """
        Disallow commit in read-only Unit of Work.

        :raises RuntimeError: always, to prevent accidental writes.
        """
        raise RuntimeError("Read-only UnitOfWork does not allow commit().")

    def rollback(self) -> None:
        self.session.rollback()

    # ----------------------------- Guards & Listeners --------------------------

    def _install_listeners(self) -> None:
        """Install ORM and connection-level listeners that reject writes."""
        if self._listeners_installed:
            return

        def _before_flush(session, flush_context, instances):
            if session.new or session.dirty or session.deleted:
                raise RuntimeError("Read-only UnitOfWork: ORM flush blocked.")

        def _before_cursor_execute(conn, cursor, statement, parameters, context, executemany):
            first_token = statement.lstrip().split(None, 1)[0].lower() if statement else ""
            if first_token.startswith(self._WRITE_PREFIXES):
                raise RuntimeError(
                    f"Read-only UnitOfWork: SQL statement blocked: {first_token.upper()}"
                )

        event.listen(self.session, "before_flush", _before_flush)
        event.listen(self._conn, "before_cursor_execute", _before_cursor_execute)

        self._ro__before_flush = _before_flush
        self._ro__before_cursor_execute = _before_cursor_execute
        self._listeners_installed = True

    def _remove_listeners(self) -> None:
        if not self._listeners_installed:
            return
        with suppress(InvalidRequestError):
            event.remove(self.session, "before_flush", self._ro__before_flush)
        with suppress(InvalidRequestError):
            event.remove(self._conn, "before_cursor_execute", self._ro__before_cursor_execute)
        self._listeners_installed = False
