# tests/unit/services/test_auth_service.py
from __future__ import annotations

import pytest
from authcore.models.base import EntityStatus
from authcore.models.refresh_token import TokenState
from authcore.repositories import DeviceRepository, IdentityRepository, RefreshTokenRepository
from authcore.services._shared.errors import (
    InvalidCredentialsError,
    TokenInvalidError,
    TokenReuseDetectedError,
    ValidationError,
)
from authcore.services.auth.dto import LoginIn, LogoutIn, TokenPairOut
from authcore.services.tokens.dto import RefreshIn
from authcore.services.tokens.service import hash_token

from tests.factories.identity import DEFAULT_PASSWORD, IdentityFactory
from tests.factories.role import RoleFactory


@pytest.fixture()
def identity():
    role = RoleFactory(name="member", permissions=["profile:read"])
    return IdentityFactory(role=role, email="ana@example.com")


def _login(services, email="ana@example.com", secret=DEFAULT_PASSWORD, fingerprint="laptop"):
    return services.auth.authenticate(
        LoginIn(email=email, secret=secret, fingerprint=fingerprint, user_agent="pytest")
    )


# -------------------------------- Login ----------------------------------- #
def test_login_issues_pair_and_registers_device(services, session, identity, token_provider):
    pair = _login(services)

    assert isinstance(pair, TokenPairOut)
    assert pair.token_type == "Bearer"
    claims = token_provider.decode(pair.access_token)
    assert claims.role == "member"
    assert claims.permissions == ("profile:read",)

    session.expire_all()
    device = DeviceRepository(session=session).find_for_identity(identity.id, "laptop")
    assert device is not None and device.user_agent == "pytest"
    assert claims.device_id == device.id
    token = RefreshTokenRepository(session=session).find_by_hash(hash_token(pair.refresh_token))
    assert token.state == TokenState.ACTIVE
    assert IdentityRepository(session=session).find_by_id(identity.id).last_login_at is not None


def test_login_email_is_case_insensitive(services, identity):
    assert _login(services, email="  ANA@Example.com ").access_token


@pytest.mark.parametrize(
    ("email", "secret"),
    [
        ("ana@example.com", "wrong-secret"),
        ("nobody@example.com", DEFAULT_PASSWORD),
        ("", DEFAULT_PASSWORD),
        ("ana@example.com", ""),
    ],
)
def test_login_failures_are_indistinguishable(services, identity, email, secret):
    with pytest.raises(InvalidCredentialsError) as info:
        _login(services, email=email, secret=secret)
    assert str(info.value) == "Invalid credentials"


def test_login_rejects_inactive_identity(services, identity):
    services.identities.deactivate(identity.id)
    with pytest.raises(InvalidCredentialsError):
        _login(services)


def test_login_rejects_inactive_role(services):
    role = RoleFactory(status=EntityStatus.INACTIVE)
    IdentityFactory(role=role, email="bo@example.com")
    with pytest.raises(InvalidCredentialsError):
        _login(services, email="bo@example.com")


def test_failed_login_leaves_no_trace(services, session, identity):
    with pytest.raises(InvalidCredentialsError):
        _login(services, secret="nope")
    session.expire_all()
    assert DeviceRepository(session=session).count() == 0
    assert RefreshTokenRepository(session=session).count() == 0


def test_login_requires_fingerprint(services, identity):
    with pytest.raises(ValidationError):
        _login(services, fingerprint="   ")


def test_second_login_on_same_device_supersedes_session(services, session, identity):
    first = _login(services)
    second = _login(services)

    session.expire_all()
    repo = RefreshTokenRepository(session=session)
    assert repo.find_by_hash(hash_token(first.refresh_token)).state == TokenState.REVOKED
    assert repo.find_by_hash(hash_token(second.refresh_token)).state == TokenState.ACTIVE
    assert DeviceRepository(session=session).count() == 1


def test_logins_on_two_devices_are_independent(services, identity):
    laptop = _login(services, fingerprint="laptop")
    phone = _login(services, fingerprint="phone")

    services.auth.refresh(RefreshIn(refresh_token=laptop.refresh_token))
    with pytest.raises(TokenReuseDetectedError):
        services.auth.refresh(RefreshIn(refresh_token=laptop.refresh_token))

    # Reuse on the laptop must not end the phone session.
    assert services.auth.refresh(RefreshIn(refresh_token=phone.refresh_token)).access_token


# -------------------------------- Logout ---------------------------------- #
def test_logout_revokes_session_and_denylists_access(services, identity, denylist, token_provider):
    pair = _login(services)

    services.auth.logout(LogoutIn(refresh_token=pair.refresh_token, access_token=pair.access_token))

    with pytest.raises(TokenReuseDetectedError):
        services.auth.refresh(RefreshIn(refresh_token=pair.refresh_token))
    assert denylist.is_revoked(token_provider.decode(pair.access_token).jti)
    with pytest.raises(TokenInvalidError):
        services.authz.verify(pair.access_token)


def test_logout_is_idempotent(services, identity):
    pair = _login(services)
    services.auth.logout(LogoutIn(refresh_token=pair.refresh_token))
    services.auth.logout(LogoutIn(refresh_token=pair.refresh_token))
    services.auth.logout(LogoutIn(refresh_token="unknown", access_token="garbage"))


def test_logout_all_sessions(services, identity):
    laptop = _login(services, fingerprint="laptop")
    phone = _login(services, fingerprint="phone")

    services.auth.logout(LogoutIn(refresh_token=laptop.refresh_token, all_sessions=True))

    with pytest.raises(TokenReuseDetectedError):
        services.auth.refresh(RefreshIn(refresh_token=phone.refresh_token))


def test_revoke_access_token_without_denylist(services, identity):
    services.auth.denylist = None
    pair = _login(services)
    assert services.auth.revoke_access_token(pair.access_token) is False
