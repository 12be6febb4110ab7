"""Factory Boy definition for :class:`authcore.models.identity.Identity`."""

from __future__ import annotations

import factory
from authcore.core.config import TestingConfig
from authcore.models.identity import Identity
from werkzeug.security import generate_password_hash

from tests.factories import BaseFactory
from tests.factories.role import RoleFactory

DEFAULT_PASSWORD = "Passw0rd!"
_DEFAULT_HASH = generate_password_hash(DEFAULT_PASSWORD, method=TestingConfig.PASSWORD_HASH_METHOD)


class IdentityFactory(BaseFactory):
    """
    Build persisted identities.

    Notes
    -----
    - ``role`` is a factory parameter; only ``role_id`` is stored.
    - Pass ``password=...`` to hash a specific secret.
    """

    class Meta:
        model = Identity

    class Params:
        role = factory.SubFactory(RoleFactory)

    email = factory.Sequence(lambda n: f"identity{n}@example.com")
    role_id = factory.SelfAttribute("role.id")
    password_hash = _DEFAULT_HASH

    @factory.post_generation
    def password(obj, create, extracted, **kwargs):
        """Hash an explicit secret with the testing method."""
        if extracted:
            obj.password_hash = generate_password_hash(
                extracted, method=TestingConfig.PASSWORD_HASH_METHOD
            )
