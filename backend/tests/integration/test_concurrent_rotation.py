"""Concurrent rotation of one refresh token against a file-backed database.

Every worker thread owns its session (``session_factory``); ``BEGIN
IMMEDIATE`` serializes writers the way row locks do on PostgreSQL.
"""

from __future__ import annotations

import threading
from concurrent.futures import ThreadPoolExecutor

import pytest
from authcore.container import build_services
from authcore.core.database import install_sqlite_transaction_fix
from authcore.core.extensions import db
from authcore.models import Device, Identity, RefreshToken, Role
from authcore.models.refresh_token import TokenState
from authcore.services._shared.errors import TokenReuseDetectedError
from authcore.services.tokens.dto import RefreshIn
from sqlalchemy import create_engine, select
from sqlalchemy.orm import sessionmaker

WORKERS = 8


@pytest.fixture()
def file_session_factory(tmp_path):
    engine = create_engine(
        f"sqlite:///{tmp_path / 'rotation.db'}",
        connect_args={"timeout": 30, "check_same_thread": False},
    )
    install_sqlite_transaction_fix(engine, begin="BEGIN IMMEDIATE")
    db.metadata.create_all(engine)
    try:
        yield sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)
    finally:
        engine.dispose()


@pytest.fixture()
def threaded_services(settings, token_provider, file_session_factory):
    return build_services(
        settings, token_provider=token_provider, session_factory=file_session_factory
    )


def _seed_session(session_factory) -> tuple[str, str]:
    with session_factory() as s, s.begin():
        role = Role(name="user", permissions=["profile:read"])
        s.add(role)
        s.flush()
        identity = Identity(email="race@example.com", password_hash="x", role_id=role.id)
        s.add(identity)
        s.flush()
        device = Device(identity_id=identity.id, fingerprint="laptop")
        s.add(device)
        s.flush()
        return identity.id, device.id


def test_only_one_concurrent_rotation_wins(threaded_services, file_session_factory):
    identity_id, device_id = _seed_session(file_session_factory)
    issued = threaded_services.refresh_tokens.issue(identity_id, device_id)

    barrier = threading.Barrier(WORKERS)

    def _attempt(_):
        barrier.wait()
        try:
            threaded_services.refresh_tokens.rotate(RefreshIn(refresh_token=issued.value))
        except TokenReuseDetectedError:
            return "reused"
        return "ok"

    with ThreadPoolExecutor(max_workers=WORKERS) as pool:
        outcomes = list(pool.map(_attempt, range(WORKERS)))

    assert outcomes.count("ok") == 1
    assert outcomes.count("reused") == WORKERS - 1

    with file_session_factory() as s:
        tokens = s.scalars(select(RefreshToken).order_by(RefreshToken.issued_at)).all()
    original = next(t for t in tokens if t.id == issued.token_id)
    children = [t for t in tokens if t.parent_token_id == issued.token_id]

    assert original.state == TokenState.ROTATED
    assert len(children) == 1
    # The losers replayed a consumed token, so the winner's child died with the session.
    assert children[0].state == TokenState.REVOKED
    assert not [t for t in tokens if t.state == TokenState.ACTIVE]
