"""Engine-level helpers shared by the application and the test-suite.

The pysqlite driver defers ``BEGIN`` until the first DML statement, which
breaks SAVEPOINT scoping and lets a SELECT run outside the transaction that
later writes. :func:`install_sqlite_transaction_fix` applies the SQLAlchemy
documented workaround so SQLite behaves like the production dialects.
"""

from __future__ import annotations

from weakref import WeakSet

from sqlalchemy import event
from sqlalchemy.engine import Engine

# Engines already patched; ``Engine`` carries no ``info`` mapping of its own.
_PATCHED_ENGINES: WeakSet[Engine] = WeakSet()


def install_sqlite_transaction_fix(engine: Engine, *, begin: str = "BEGIN") -> bool:
    """Take over transaction control from pysqlite.

    :param engine: Engine to patch. Non-SQLite engines are left untouched.
    :type engine: :class:`sqlalchemy.engine.Engine`
    :param begin: Statement emitted when SQLAlchemy begins a transaction.
        ``"BEGIN IMMEDIATE"`` serializes writers across connections, which is
        what multi-threaded tests against a file database need.
    :type begin: str
    :returns: ``True`` if listeners were installed, ``False`` when the engine
        is not SQLite or was patched before.
    :rtype: bool
    """
    if engine.dialect.name != "sqlite" or engine in _PATCHED_ENGINES:
        return False

    @event.listens_for(engine, "connect")
    def _disable_pysqlite_begin(dbapi_connection, connection_record):  # pragma: no cover
        dbapi_connection.isolation_level = None
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()

    @event.listens_for(engine, "begin")
    def _emit_begin(conn):  # pragma: no cover - driver glue
        conn.exec_driver_sql(begin)

    _PATCHED_ENGINES.add(engine)
    return True
