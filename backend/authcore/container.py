"""Service wiring: builds the service graph once per Flask application.

Nothing here is a module-level singleton. Settings are read from
``app.config`` into typed dataclasses and handed to constructors, so several
applications (or tests) with different keys can coexist in one process.
"""

from __future__ import annotations

from dataclasses import dataclass

from flask import Flask, current_app

from authcore.core.extensions import get_redis
from authcore.infra.hashing.werkzeug_hasher import WerkzeugPasswordHasher
from authcore.infra.jwt.pyjwt_token_provider import PyJWTTokenProvider
from authcore.infra.redis.redis_denylist_store import RedisTokenDenylistStore
from authcore.services._shared.ports import PasswordHasher, TokenDenylistStore, TokenProvider
from authcore.services.auth.dto import AuthSettings
from authcore.services.auth.service import AuthService
from authcore.services.authz.service import AuthorizationService
from authcore.services.devices.service import DeviceService
from authcore.services.identity.service import IdentityService
from authcore.services.roles.service import RoleService
from authcore.services.tokens.service import RefreshTokenService
from authcore.uow.base import SessionFactory

EXTENSION_KEY = "authcore.services"


@dataclass(frozen=True, slots=True)
class Services:
    """The application's service graph."""

    settings: AuthSettings
    roles: RoleService
    identities: IdentityService
    devices: DeviceService
    refresh_tokens: RefreshTokenService
    auth: AuthService
    authz: AuthorizationService


def build_services(
    settings: AuthSettings,
    *,
    token_provider: TokenProvider | None = None,
    password_hasher: PasswordHasher | None = None,
    denylist: TokenDenylistStore | None = None,
    session_factory: SessionFactory | None = None,
) -> Services:
    """
    Assemble every service from explicit settings and ports.

    :param settings: Typed auth settings.
    :type settings: AuthSettings
    :param token_provider: Defaults to :class:`PyJWTTokenProvider`.
    :param password_hasher: Defaults to :class:`WerkzeugPasswordHasher`.
    :param denylist: Optional access-token denylist.
    :param session_factory: Optional factory of caller-owned sessions;
        ``None`` uses the Flask-scoped session.
    :returns: Wired services.
    :rtype: Services
    """
    tokens = token_provider or PyJWTTokenProvider(settings.access)
    hasher = password_hasher or WerkzeugPasswordHasher(method=settings.password_hash_method)

    refresh_tokens = RefreshTokenService(
        token_provider=tokens,
        access_config=settings.access,
        refresh_config=settings.refresh,
        session_factory=session_factory,
    )
    identities = IdentityService(password_hasher=hasher, session_factory=session_factory)
    devices = DeviceService(refresh_tokens=refresh_tokens, session_factory=session_factory)
    return Services(
        settings=settings,
        roles=RoleService(session_factory=session_factory),
        identities=identities,
        devices=devices,
        refresh_tokens=refresh_tokens,
        auth=AuthService(
            identities=identities,
            devices=devices,
            refresh_tokens=refresh_tokens,
            token_provider=tokens,
            denylist=denylist,
            session_factory=session_factory,
        ),
        authz=AuthorizationService(token_provider=tokens, denylist=denylist),
    )


def init_app(app: Flask) -> Services:
    """Build the service graph from ``app.config`` and attach it to ``app``."""
    redis_client = get_redis(app)
    denylist = RedisTokenDenylistStore(redis_client) if redis_client is not None else None
    services = build_services(AuthSettings.from_mapping(app.config), denylist=denylist)
    app.extensions[EXTENSION_KEY] = services
    return services


def get_services(app: Flask | None = None) -> Services:
    """Return the service graph of ``app`` (default: the current app)."""
    target = app or current_app
    return target.extensions[EXTENSION_KEY]
