"""
authcore.services._shared.ports
===============================

*Ports* (hexagonal interfaces) the service layer depends on for token
minting, access-token revocation and secret hashing.

Modules
-------
- :mod:`token_provider`:
    :class:`~.TokenProvider` mints and verifies access tokens and returns
    :class:`~.AccessClaims`.

- :mod:`denylist_store`:
    :class:`~.TokenDenylistStore` blocks individual access tokens by ``jti``.

- :mod:`password_hasher`:
    :class:`~.PasswordHasher` hashes and verifies identity secrets.

Concrete adapters (PyJWT, Redis, Werkzeug) live under ``authcore.infra`` and
are wired by :func:`authcore.container.build_services`.
"""

from __future__ import annotations

from .denylist_store import InMemoryDenylistStore, TokenDenylistStore
from .password_hasher import PasswordHasher
from .token_provider import ACCESS_TOKEN_TYPE, AccessClaims, StubTokenProvider, TokenProvider

__all__ = [
    "ACCESS_TOKEN_TYPE",
    "AccessClaims",
    "InMemoryDenylistStore",
    "PasswordHasher",
    "StubTokenProvider",
    "TokenDenylistStore",
    "TokenProvider",
]
