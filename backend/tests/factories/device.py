"""Factory Boy definitions for devices and refresh tokens."""

from __future__ import annotations

from datetime import timedelta

import factory
from authcore.models.base import utcnow
from authcore.models.device import Device
from authcore.models.refresh_token import RefreshToken, TokenState
from authcore.services.tokens.service import hash_token

from tests.factories import BaseFactory
from tests.factories.identity import IdentityFactory


class DeviceFactory(BaseFactory):
    class Meta:
        model = Device

    class Params:
        identity = factory.SubFactory(IdentityFactory)

    identity_id = factory.SelfAttribute("identity.id")
    fingerprint = factory.Sequence(lambda n: f"device-{n}")
    user_agent = "pytest"
    ip_address = "127.0.0.1"
    last_seen_at = factory.LazyFunction(utcnow)


class RefreshTokenFactory(BaseFactory):
    """
    Build persisted refresh tokens.

    ``value`` is a parameter: only its digest is stored, tests keep the
    plaintext to present it to the service.
    """

    class Meta:
        model = RefreshToken

    class Params:
        value = factory.Sequence(lambda n: f"refresh-token-{n}")
        device = factory.SubFactory(DeviceFactory)
        ttl = timedelta(days=7)

    identity_id = factory.SelfAttribute("device.identity_id")
    device_id = factory.SelfAttribute("device.id")
    token_hash = factory.LazyAttribute(lambda o: hash_token(o.value))
    state = TokenState.ACTIVE
    issued_at = factory.LazyFunction(utcnow)
    expires_at = factory.LazyAttribute(lambda o: o.issued_at + o.ttl)
