"""Tiny helpers shared across test modules."""

from __future__ import annotations

from contextlib import contextmanager

from authcore.container import Services
from authcore.services.auth.dto import LoginIn, TokenPairOut


@contextmanager
def not_raises(exception: type[BaseException]):
    """Context manager asserting that an exception is *not* raised."""
    try:
        yield
    except exception as exc:  # pragma: no cover
        raise AssertionError(f"Did raise {exception}: {exc}") from exc


def login(
    services: Services, email: str, secret: str, fingerprint: str = "laptop"
) -> TokenPairOut:
    """Authenticate through the service graph and return the token pair."""
    return services.auth.authenticate(
        LoginIn(email=email, secret=secret, fingerprint=fingerprint)
    )
