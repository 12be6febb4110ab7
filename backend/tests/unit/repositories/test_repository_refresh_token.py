# tests/unit/repositories/test_repository_refresh_token.py
from __future__ import annotations

from datetime import timedelta

import pytest
from authcore.models.base import new_id, utcnow
from authcore.models.refresh_token import TokenState
from authcore.repositories import RefreshTokenRepository
from authcore.services._shared.errors import ConflictError, ValidationError
from authcore.services.tokens.service import hash_token

from tests.factories.device import DeviceFactory, RefreshTokenFactory
from tests.factories.identity import IdentityFactory


@pytest.fixture()
def repo(session) -> RefreshTokenRepository:
    return RefreshTokenRepository(session=session)


def test_find_by_hash_returns_any_state(repo):
    token = RefreshTokenFactory(value="abc", state=TokenState.REVOKED)
    assert repo.find_by_hash(hash_token("abc")).id == token.id
    assert repo.find_by_hash(hash_token("other")) is None


def test_claim_for_rotation_wins_exactly_once(repo):
    token = RefreshTokenFactory()
    now = utcnow()
    first_child, second_child = new_id(), new_id()

    assert repo.claim_for_rotation(token.id, first_child, now=now) is True
    assert repo.claim_for_rotation(token.id, second_child, now=now) is False

    assert token.state == TokenState.ROTATED
    assert token.replaced_by_token_id == first_child


def test_claim_for_rotation_refuses_expired_row(repo):
    token = RefreshTokenFactory(ttl=timedelta(seconds=1))
    later = utcnow() + timedelta(minutes=5)
    assert repo.claim_for_rotation(token.id, new_id(), now=later) is False
    assert token.state == TokenState.ACTIVE


def test_mark_expired_only_touches_active_rows(repo):
    active = RefreshTokenFactory()
    revoked = RefreshTokenFactory(state=TokenState.REVOKED)
    assert repo.mark_expired(active.id) is True
    assert repo.mark_expired(revoked.id) is False
    assert active.state == TokenState.EXPIRED
    assert revoked.state == TokenState.REVOKED


def test_revoke_all_for_session_scopes_to_pair(repo):
    identity = IdentityFactory()
    device = DeviceFactory(identity=identity)
    other_device = DeviceFactory(identity=identity)
    target = RefreshTokenFactory(device=device)
    untouched = RefreshTokenFactory(device=other_device)
    assert repo.find_live_for_session(device.identity_id, device.id).id == target.id

    count = repo.revoke_all_for_session(
        device.identity_id, device.id, reason="logout", now=utcnow()
    )
    assert count == 1
    assert repo.find_live_for_session(device.identity_id, device.id) is None
    assert target.state == TokenState.REVOKED
    assert target.revoked_reason == "logout"
    assert target.revoked_at is not None
    assert untouched.state == TokenState.ACTIVE


def test_revoke_all_for_identity_spans_devices(repo):
    identity = IdentityFactory()
    device = DeviceFactory(identity=identity)
    RefreshTokenFactory(device=device)
    RefreshTokenFactory(device=DeviceFactory(identity=identity))
    RefreshTokenFactory(device=device, state=TokenState.ROTATED)

    count = repo.revoke_all_for_identity(device.identity_id, reason="logout_all", now=utcnow())
    assert count == 2
    assert repo.count({"identity_id": device.identity_id, "state": TokenState.ACTIVE}) == 0


def test_one_live_token_per_session(repo):
    device = DeviceFactory()
    RefreshTokenFactory(device=device)
    with pytest.raises(ConflictError):
        repo.create(
            {
                "identity_id": device.identity_id,
                "device_id": device.id,
                "token_hash": hash_token("second"),
                "issued_at": utcnow(),
                "expires_at": utcnow() + timedelta(days=1),
            }
        )


def test_tokens_have_no_free_form_updates(repo):
    token = RefreshTokenFactory()
    with pytest.raises(ValidationError):
        repo.update_by_id(token.id, {"state": TokenState.ACTIVE})


def test_purge_expired_before_deletes_old_rows_of_any_state(repo, session):
    old = utcnow() - timedelta(days=60)
    RefreshTokenFactory(issued_at=old, ttl=timedelta(days=1), state=TokenState.ROTATED)
    RefreshTokenFactory(issued_at=old, ttl=timedelta(days=1), state=TokenState.ACTIVE)
    fresh_id = RefreshTokenFactory().id

    deleted = repo.purge_expired_before(utcnow() - timedelta(days=30))
    assert deleted == 2
    session.expunge_all()
    assert [t.id for t in repo.find_many()] == [fresh_id]
