"""Idempotent seed helpers: default roles and the bootstrap administrator."""

from __future__ import annotations

import logging
from collections.abc import Mapping
from typing import Any

from authcore.container import Services
from authcore.services.roles.dto import RoleSpec

LOGGER = logging.getLogger(__name__)

ADMIN_ROLE = "admin"
DEFAULT_ROLE = "user"

DEFAULT_ROLES: list[RoleSpec] = [
    RoleSpec(name=ADMIN_ROLE, permissions=("*",), description="Full access"),
    RoleSpec(
        name=DEFAULT_ROLE,
        permissions=("profile:read", "profile:write", "devices:*"),
        description="Regular account",
    ),
    RoleSpec(
        name="auditor",
        permissions=("audit:*", "profile:read"),
        description="Read-only audit",
    ),
]


def seed_roles(services: Services, *, verbose: bool = False) -> dict[str, dict[str, int]]:
    """Create the default roles unless an active role already exists."""
    created = services.roles.seed_defaults(DEFAULT_ROLES)
    existing = len(services.roles.list_active()) - created
    if verbose:
        LOGGER.info("Roles: created=%d existing=%d", created, existing)
    return {"roles": {"created": created, "existing": existing}}


def seed_admin(
    services: Services, config: Mapping[str, Any], *, verbose: bool = False
) -> dict[str, dict[str, int]]:
    """Create the bootstrap administrator from ``ADMIN_EMAIL``/``ADMIN_PASSWORD``."""
    email = str(config.get("ADMIN_EMAIL") or "")
    secret = str(config.get("ADMIN_PASSWORD") or "")
    if not email or not secret:
        LOGGER.warning("ADMIN_EMAIL/ADMIN_PASSWORD not configured; skipping admin seed")
        return {"identities": {"created": 0, "existing": 0}}

    if services.identities.find_by_email(email) is not None:
        if verbose:
            LOGGER.info("Admin %s already present", email)
        return {"identities": {"created": 0, "existing": 1}}

    role = services.roles.get_by_name(ADMIN_ROLE)
    if role is None:
        raise RuntimeError(f"Role {ADMIN_ROLE!r} is missing; seed roles first.")
    services.identities.create(email, secret, role.id)
    if verbose:
        LOGGER.info("Admin %s created", email)
    return {"identities": {"created": 1, "existing": 0}}


def run_all(
    services: Services, config: Mapping[str, Any], *, verbose: bool = False
) -> dict[str, dict[str, int]]:
    """Run all seeders in dependency order."""
    if verbose:
        LOGGER.info("Running full seed pipeline...")
    combined: dict[str, dict[str, int]] = {}
    for result in (
        seed_roles(services, verbose=verbose),
        seed_admin(services, config, verbose=verbose),
    ):
        combined.update(result)
    return combined


__all__ = ["DEFAULT_ROLES", "run_all", "seed_admin", "seed_roles"]
