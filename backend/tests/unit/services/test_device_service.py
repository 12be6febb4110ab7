# tests/unit/services/test_device_service.py
from __future__ import annotations

from datetime import timedelta

import pytest
from authcore.models.base import utcnow
from authcore.models.refresh_token import TokenState
from authcore.services._shared.errors import NotFoundError, ValidationError
from authcore.services.tokens.dto import RevocationReason
from freezegun import freeze_time

from tests.factories.device import RefreshTokenFactory
from tests.factories.identity import IdentityFactory


def test_register_or_touch_is_stable(services):
    identity = IdentityFactory()
    first = services.devices.register_or_touch(identity.id, "laptop", user_agent="UA/1")
    with freeze_time(utcnow() + timedelta(minutes=5)):
        second = services.devices.register_or_touch(
            identity.id, " laptop ", ip_address="10.0.0.1"
        )

    assert second.id == first.id
    assert second.user_agent == "UA/1"
    assert second.ip_address == "10.0.0.1"
    assert second.last_seen_at > first.last_seen_at


def test_same_fingerprint_different_identities(services):
    a = services.devices.register_or_touch(IdentityFactory().id, "shared")
    b = services.devices.register_or_touch(IdentityFactory().id, "shared")
    assert a.id != b.id


def test_blank_fingerprint_rejected(services):
    with pytest.raises(ValidationError):
        services.devices.register_or_touch(IdentityFactory().id, "  ")


def test_revoke_cascades_to_refresh_tokens(services, session):
    token = RefreshTokenFactory()
    device_id = token.device_id

    out = services.devices.revoke(device_id)

    assert out.is_active is False
    session.expire_all()
    assert token.state == TokenState.REVOKED
    assert token.revoked_reason == RevocationReason.DEVICE_REVOKED


def test_revoke_unknown_device(services):
    with pytest.raises(NotFoundError):
        services.devices.revoke("missing")


def test_login_reactivates_revoked_device(services):
    identity = IdentityFactory()
    device = services.devices.register_or_touch(identity.id, "laptop")
    services.devices.revoke(device.id)
    again = services.devices.register_or_touch(identity.id, "laptop")
    assert again.id == device.id
    assert again.is_active


def test_list_for_identity_orders_by_last_seen(services):
    identity = IdentityFactory()
    services.devices.register_or_touch(identity.id, "old")
    with freeze_time(utcnow() + timedelta(hours=1)):
        services.devices.register_or_touch(identity.id, "new")
    assert [d.fingerprint for d in services.devices.list_for_identity(identity.id)] == [
        "new",
        "old",
    ]
