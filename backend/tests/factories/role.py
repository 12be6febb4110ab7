"""Factory Boy definition for :class:`authcore.models.role.Role`."""

from __future__ import annotations

import factory
from authcore.models.role import Role

from tests.factories import BaseFactory


class RoleFactory(BaseFactory):
    class Meta:
        model = Role

    name = factory.Sequence(lambda n: f"role{n}")
    permissions = factory.LazyFunction(lambda: ["profile:read"])
    description = None
