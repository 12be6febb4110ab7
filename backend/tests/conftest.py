"""Pytest fixtures configuring an isolated transactional database layer.

Each test runs inside a transaction against an in-memory SQLite database;
the session joins it through SAVEPOINTs so service-level commits never leak
between cases.
"""

from __future__ import annotations

import os

import pytest
from authcore.container import Services, build_services
from authcore.core.config import TestingConfig
from authcore.core.extensions import db as _db  # Flask-SQLAlchemy instance
from authcore.factory import create_app  # application factory under test
from authcore.services._shared.ports import InMemoryDenylistStore, StubTokenProvider
from authcore.services.auth.dto import AuthSettings
from sqlalchemy.orm import scoped_session, sessionmaker


@pytest.fixture(scope="session")
def app():
    """Create a Flask application configured for testing.

    Returns
    -------
    flask.Flask
        Application instance with :class:`TestingConfig` applied and logging
        noise reduced.
    """
    # Ensure env-based config does not leak into tests
    os.environ.pop("DATABASE_URL", None)
    os.environ.pop("REDIS_URL", None)
    app = create_app(TestingConfig)
    app.logger.setLevel("WARNING")
    return app


@pytest.fixture(scope="session")
def db(app):
    """Create database tables once per test session.

    Yields
    ------
    flask_sqlalchemy.SQLAlchemy
        Database extension bound to the testing application.
    """
    with app.app_context():
        _db.create_all()
        yield _db
        _db.session.remove()
        _db.drop_all()


@pytest.fixture(scope="session")
def connection(db):
    """Keep a dedicated DBAPI connection open for the whole session."""
    conn = db.engine.connect()
    try:
        yield conn
    finally:
        conn.close()


@pytest.fixture(scope="function")
def session(db, connection):
    """Provide a SQLAlchemy session wrapped in an outer transaction.

    Yields
    ------
    sqlalchemy.orm.scoping.scoped_session
        Scoped session bound to the shared connection; automatically rolled
        back after each test.

    Notes
    -----
    ``join_transaction_mode="create_savepoint"`` makes every ``commit()``
    issued by a unit of work release a SAVEPOINT instead of committing the
    outer transaction, so the final rollback discards everything.
    """
    top_trans = connection.begin()

    SessionFactory = sessionmaker(
        bind=connection, join_transaction_mode="create_savepoint", autoflush=False
    )
    scoped = scoped_session(SessionFactory)

    # Monkey-patch db.session so app code uses this scoped session
    original_session = db.session
    db.session.remove()
    db.session = scoped

    try:
        yield scoped
    finally:
        scoped.remove()
        db.session = original_session
        top_trans.rollback()


@pytest.fixture(scope="session")
def faker():
    """Provide a :class:`faker.Faker` instance seeded for deterministic tests."""
    from faker import Faker

    fk = Faker()
    Faker.seed(1337)
    return fk


# -- Hook up Factory Boy to pytest SQLAlchemy session --------------------------
@pytest.fixture(autouse=True)
def _factories_session(session):
    """Wire Factory Boy's session helper to the transactional session fixture."""
    from tests.factories import SQLAlchemySession

    SQLAlchemySession.set(session)
    yield


# -- Service graph ----------------------------------------------------------------
@pytest.fixture()
def settings(app) -> AuthSettings:
    """Typed auth settings read from the testing configuration."""
    return AuthSettings.from_mapping(app.config)


@pytest.fixture()
def token_provider(settings) -> StubTokenProvider:
    return StubTokenProvider(ttl=settings.access.ttl)


@pytest.fixture()
def denylist() -> InMemoryDenylistStore:
    return InMemoryDenylistStore()


@pytest.fixture()
def services(settings, token_provider, denylist, session) -> Services:
    """Services wired to the stub token provider and the test session."""
    return build_services(settings, token_provider=token_provider, denylist=denylist)


@pytest.fixture()
def client(app, session):
    """Return a Flask test client sharing the transactional session."""
    return app.test_client()
