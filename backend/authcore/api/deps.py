"""Shared API helpers for request parsing and cross-cutting concerns."""

from __future__ import annotations

import functools
import time
from collections.abc import Callable
from typing import Any, TypeVar, cast

from flask import Response, current_app, g, jsonify, request

from authcore.container import Services, get_services
from authcore.core.errors import Unauthorized
from authcore.services._shared.ports import AccessClaims

F = TypeVar("F", bound=Callable[..., Any])

BEARER_PREFIX = "bearer "


def services() -> Services:
    """Return the service graph of the current application."""

    return get_services()


def bearer_token(*, optional: bool = False) -> str | None:
    """
    Extract the bearer credential from the ``Authorization`` header.

    :param optional: Return ``None`` instead of raising when absent.
    :raises Unauthorized: If the header is missing or not a bearer token.
    """

    header = request.headers.get("Authorization", "")
    if header[: len(BEARER_PREFIX)].lower() == BEARER_PREFIX:
        token = header[len(BEARER_PREFIX) :].strip()
        if token:
            return token
    if optional:
        return None
    raise Unauthorized("Missing bearer token")


def client_metadata() -> dict[str, str | None]:
    """Return the user agent and remote address recorded on devices."""

    return {
        "user_agent": request.headers.get("User-Agent"),
        "ip_address": request.remote_addr,
    }


def current_claims() -> AccessClaims:
    """Return the claims verified by :func:`require_auth` for this request."""

    return cast(AccessClaims, g.access_claims)


def require_auth(func: F) -> F:
    """Ensure the request carries a valid, non-revoked access token."""

    @functools.wraps(func)
    def wrapper(*args: Any, **kwargs: Any):
        g.access_claims = services().authz.verify(bearer_token() or "")
        return func(*args, **kwargs)

    return wrapper  # type: ignore[return-value]


def require_permission(permission: str) -> Callable[[F], F]:
    """Ensure the verified access token grants ``permission``."""

    def decorator(func: F) -> F:
        @functools.wraps(func)
        def wrapper(*args: Any, **kwargs: Any):
            g.access_claims = services().authz.require(bearer_token() or "", permission)
            return func(*args, **kwargs)

        return wrapper  # type: ignore[return-value]

    return decorator


def json_response(payload: Any, *, status: int = 200) -> Response:
    """Return a JSON response enforcing a consistent MIME type."""

    response = jsonify(payload)
    response.status_code = status
    return response


def no_store(response: Response) -> Response:
    """Mark a response carrying credentials as non-cacheable."""

    response.headers["Cache-Control"] = "no-store"
    response.headers["Pragma"] = "no-cache"
    return response


def timing(func: F) -> F:
    """Decorator capturing handler execution time in milliseconds."""

    @functools.wraps(func)
    def wrapper(*args: Any, **kwargs: Any):
        start = time.perf_counter()
        try:
            return func(*args, **kwargs)
        finally:
            elapsed_ms = (time.perf_counter() - start) * 1000
            request_endpoint = getattr(request, "endpoint", None)
            current_app.logger.debug(
                "request.elapsed",
                extra={"endpoint": request_endpoint, "elapsed_ms": round(elapsed_ms, 2)},
            )

    return wrapper  # type: ignore[return-value]
