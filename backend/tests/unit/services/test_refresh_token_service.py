# tests/unit/services/test_refresh_token_service.py
from __future__ import annotations

from datetime import timedelta
from types import SimpleNamespace

import pytest
from authcore.models.base import EntityStatus, utcnow
from authcore.models.refresh_token import RefreshToken, TokenState
from authcore.repositories import RefreshTokenRepository
from authcore.services._shared.errors import (
    DeviceMismatchError,
    NotFoundError,
    TokenExpiredError,
    TokenInvalidError,
    TokenNotFoundError,
    TokenReuseDetectedError,
)
from authcore.services.tokens.dto import RefreshIn, RevocationReason
from authcore.services.tokens.service import hash_token
from freezegun import freeze_time

from tests.factories.device import DeviceFactory, RefreshTokenFactory
from tests.factories.identity import IdentityFactory
from tests.factories.role import RoleFactory


def _row(session, value: str) -> RefreshToken:
    session.expire_all()
    return RefreshTokenRepository(session=session).find_by_hash(hash_token(value))


@pytest.fixture()
def device():
    role = RoleFactory(permissions=["profile:read", "devices:*"])
    return DeviceFactory(identity=IdentityFactory(role=role), fingerprint="laptop")


# ------------------------------- Issue ----------------------------------- #
def test_issue_starts_chain_and_stores_only_digest(services, session, device):
    issued = services.refresh_tokens.issue(device.identity_id, device.id)

    row = _row(session, issued.value)
    assert row.id == issued.token_id
    assert row.token_hash == hash_token(issued.value)
    assert row.token_hash != issued.value
    assert row.state == TokenState.ACTIVE
    assert row.parent_token_id is None
    assert issued.value not in repr(issued)


def test_issue_supersedes_live_token_of_same_session(services, session, device):
    first = services.refresh_tokens.issue(device.identity_id, device.id)
    second = services.refresh_tokens.issue(device.identity_id, device.id)

    old = _row(session, first.value)
    assert old.state == TokenState.REVOKED
    assert old.revoked_reason == RevocationReason.SUPERSEDED
    assert _row(session, second.value).state == TokenState.ACTIVE


# ------------------------------- Rotate ---------------------------------- #
def test_rotate_links_chain_and_mints_access(services, session, device, token_provider):
    issued = services.refresh_tokens.issue(device.identity_id, device.id)

    pair = services.refresh_tokens.rotate(RefreshIn(refresh_token=issued.value))

    parent = _row(session, issued.value)
    child = _row(session, pair.refresh_token)
    assert parent.state == TokenState.ROTATED
    assert parent.replaced_by_token_id == child.id
    assert child.parent_token_id == parent.id
    assert child.state == TokenState.ACTIVE

    claims = token_provider.decode(pair.access_token)
    assert claims.identity_id == device.identity_id
    assert claims.device_id == device.id
    assert claims.permissions == ("profile:read", "devices:*")
    assert pair.expires_in == 15 * 60


def test_rotate_unknown_token(services):
    with pytest.raises(TokenNotFoundError):
        services.refresh_tokens.rotate(RefreshIn(refresh_token="never-issued"))
    with pytest.raises(TokenNotFoundError):
        services.refresh_tokens.rotate(RefreshIn(refresh_token=""))


def test_reuse_revokes_whole_session(services, session, device):
    issued = services.refresh_tokens.issue(device.identity_id, device.id)
    pair = services.refresh_tokens.rotate(RefreshIn(refresh_token=issued.value))

    with pytest.raises(TokenReuseDetectedError):
        services.refresh_tokens.rotate(RefreshIn(refresh_token=issued.value))

    # The revocation was committed even though the call raised.
    child = _row(session, pair.refresh_token)
    assert child.state == TokenState.REVOKED
    assert child.revoked_reason == RevocationReason.REUSE_DETECTED
    with pytest.raises(TokenReuseDetectedError):
        services.refresh_tokens.rotate(RefreshIn(refresh_token=pair.refresh_token))


def test_reuse_leaves_other_devices_alone(services, session, device):
    other = DeviceFactory(identity=IdentityFactory(), fingerprint="phone")
    other_token = services.refresh_tokens.issue(other.identity_id, other.id)
    issued = services.refresh_tokens.issue(device.identity_id, device.id)
    services.refresh_tokens.rotate(RefreshIn(refresh_token=issued.value))

    with pytest.raises(TokenReuseDetectedError):
        services.refresh_tokens.rotate(RefreshIn(refresh_token=issued.value))

    assert _row(session, other_token.value).state == TokenState.ACTIVE


def test_expired_token_is_reported_as_expired(services, session, device):
    with freeze_time(utcnow()) as frozen:
        issued = services.refresh_tokens.issue(device.identity_id, device.id)
        frozen.tick(services.settings.refresh.ttl + timedelta(seconds=1))

        with pytest.raises(TokenExpiredError):
            services.refresh_tokens.rotate(RefreshIn(refresh_token=issued.value))

    assert _row(session, issued.value).state == TokenState.EXPIRED


def test_expiry_wins_over_reuse(services, device):
    with freeze_time(utcnow()) as frozen:
        issued = services.refresh_tokens.issue(device.identity_id, device.id)
        services.refresh_tokens.rotate(RefreshIn(refresh_token=issued.value))
        frozen.tick(services.settings.refresh.ttl + timedelta(minutes=1))

        with pytest.raises(TokenExpiredError):
            services.refresh_tokens.rotate(RefreshIn(refresh_token=issued.value))


def test_fingerprint_mismatch_does_not_consume_token(services, session, device):
    issued = services.refresh_tokens.issue(device.identity_id, device.id)

    with pytest.raises(DeviceMismatchError):
        services.refresh_tokens.rotate(RefreshIn(refresh_token=issued.value, fingerprint="tv"))

    assert _row(session, issued.value).state == TokenState.ACTIVE
    pair = services.refresh_tokens.rotate(
        RefreshIn(refresh_token=issued.value, fingerprint=" laptop ")
    )
    assert pair.refresh_token


def test_inactive_identity_cannot_rotate(services, session, device):
    issued = services.refresh_tokens.issue(device.identity_id, device.id)
    services.identities.deactivate(device.identity_id)

    with pytest.raises(TokenInvalidError):
        services.refresh_tokens.rotate(RefreshIn(refresh_token=issued.value))

    row = _row(session, issued.value)
    assert row.state == TokenState.REVOKED
    assert row.revoked_reason == RevocationReason.PRINCIPAL_INACTIVE


def test_inactive_role_cannot_rotate(services, session):
    role = RoleFactory(status=EntityStatus.INACTIVE)
    device = DeviceFactory(identity=IdentityFactory(role=role))
    issued = services.refresh_tokens.issue(device.identity_id, device.id)

    with pytest.raises(TokenInvalidError):
        services.refresh_tokens.rotate(RefreshIn(refresh_token=issued.value))


def test_stale_read_loses_compare_and_swap(services, session, device, monkeypatch):
    """A caller that read the token as active before a concurrent rotation must lose."""
    issued = services.refresh_tokens.issue(device.identity_id, device.id)
    row = _row(session, issued.value)
    snapshot = SimpleNamespace(
        id=row.id,
        identity_id=row.identity_id,
        device_id=row.device_id,
        state=TokenState.ACTIVE,
        expires_at=row.expires_at,
    )
    winner = services.refresh_tokens.rotate(RefreshIn(refresh_token=issued.value))

    monkeypatch.setattr(RefreshTokenRepository, "find_by_hash", lambda self, h: snapshot)
    with pytest.raises(TokenReuseDetectedError):
        services.refresh_tokens.rotate(RefreshIn(refresh_token=issued.value))
    monkeypatch.undo()

    child = _row(session, winner.refresh_token)
    assert child.state == TokenState.REVOKED
    assert child.revoked_reason == RevocationReason.REUSE_DETECTED


def test_rotate_touches_device_last_seen(services, session, device):
    issued = services.refresh_tokens.issue(device.identity_id, device.id)
    with freeze_time(utcnow() + timedelta(hours=1)):
        services.refresh_tokens.rotate(RefreshIn(refresh_token=issued.value))
        expected = utcnow()
    session.expire_all()
    assert services.devices.list_for_identity(device.identity_id)[0].last_seen_at == expected


# ------------------------------- Revoke ---------------------------------- #
def test_revoke_is_idempotent(services, session, device):
    issued = services.refresh_tokens.issue(device.identity_id, device.id)
    assert services.refresh_tokens.revoke(issued.value) is True
    assert services.refresh_tokens.revoke(issued.value) is False
    assert services.refresh_tokens.revoke("unknown") is False
    assert _row(session, issued.value).revoked_reason == RevocationReason.LOGOUT


def test_end_session_all_sessions(services, session, device):
    second = DeviceFactory(identity_id=device.identity_id, fingerprint="phone")
    a = services.refresh_tokens.issue(device.identity_id, device.id)
    b = services.refresh_tokens.issue(device.identity_id, second.id)

    count = services.refresh_tokens.end_session(a.value, all_sessions=True)

    assert count == 2
    assert _row(session, b.value).revoked_reason == RevocationReason.LOGOUT_ALL


def test_revoke_all_for_device(services, session, device):
    issued = services.refresh_tokens.issue(device.identity_id, device.id)
    assert services.refresh_tokens.revoke_all_for_device(device.id) == 1
    assert _row(session, issued.value).revoked_reason == RevocationReason.DEVICE_REVOKED


def test_revoke_all_for_identity(services, device):
    services.refresh_tokens.issue(device.identity_id, device.id)
    assert services.refresh_tokens.revoke_all_for_identity(device.identity_id) == 1
    assert services.refresh_tokens.revoke_all_for_identity(device.identity_id) == 0


# ---------------------------- Housekeeping -------------------------------- #
def test_purge_stale_respects_retention(services, session):
    old = utcnow() - timedelta(days=45)
    stale = RefreshTokenFactory(issued_at=old, ttl=timedelta(days=1), state=TokenState.ROTATED)
    recent = RefreshTokenFactory(
        issued_at=utcnow() - timedelta(days=3), ttl=timedelta(days=1), state=TokenState.EXPIRED
    )
    stale_id, recent_id = stale.id, recent.id

    assert services.refresh_tokens.purge_stale() == 1
    assert services.refresh_tokens.purge_stale(timedelta(0)) == 1

    session.expire_all()
    repo = RefreshTokenRepository(session=session)
    assert repo.find_by_id(stale_id) is None
    assert repo.find_by_id(recent_id) is None


def test_chain_walks_to_head(services, device):
    issued = services.refresh_tokens.issue(device.identity_id, device.id)
    second = services.refresh_tokens.rotate(RefreshIn(refresh_token=issued.value))
    services.refresh_tokens.rotate(RefreshIn(refresh_token=second.refresh_token))

    links = services.refresh_tokens.chain(issued.token_id)

    assert [link.state for link in links] == ["rotated", "rotated", "active"]
    assert links[1].parent_token_id == links[0].id
    assert links[0].replaced_by_token_id == links[1].id


def test_chain_unknown_token(services):
    with pytest.raises(NotFoundError):
        services.refresh_tokens.chain("missing")
