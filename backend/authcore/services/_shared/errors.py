"""
Domain-level exceptions used within the service layer.

These exceptions are **framework-agnostic** and never depend on Flask or HTTP.
They are the stable contract between repositories, services and the delivery
layer; translation to HTTP responses (RFC 7807) happens in
``authcore/core/errors.py``.

Only :class:`RepositoryError` carries a ``retryable`` flag: every other error
is terminal for the current call and must not be retried automatically.
"""

from __future__ import annotations

from dataclasses import dataclass

from sqlalchemy.exc import IntegrityError


def violates(exc: IntegrityError, constraint_name: str) -> bool:
    """
    Check whether an IntegrityError originates from a specific constraint.

    PostgreSQL reports the constraint name; SQLite reports the offending
    columns, so callers may pass either.

    Parameters
    ----------
    exc : IntegrityError
        The exception raised by SQLAlchemy during flush/commit.
    constraint_name : str
        Constraint name (e.g. ``'uq_identities_email_live'``) or a column
        fragment (e.g. ``'identities.email'``).

    Returns
    -------
    bool
        True if the IntegrityError mentions the given constraint.
    """
    message = str(exc.orig).lower() if exc.orig else ""
    return constraint_name.lower() in message


# --------------------------------------------------------------------------- #
# Base types
# --------------------------------------------------------------------------- #


class ServiceError(Exception):
    """
    Base class for all service-level errors.

    Notes
    -----
    - These are *not* HTTP errors.
    - They can be safely raised from repositories or domain logic.
    """

    retryable: bool = False


class ValidationError(ServiceError):
    """Malformed or missing input; the caller must change the request."""


@dataclass(slots=True)
class BulkWriteError(ValidationError):
    """
    Raised by ``create_many`` when one record of the batch cannot be written.

    :param index: Position of the first conflicting record in the batch.
    :type index: int
    :param reason: Short explanation of the conflict.
    :type reason: str
    """

    index: int
    reason: str

    def __str__(self) -> str:
        return f"Bulk write failed at record {self.index}: {self.reason}"


@dataclass(slots=True)
class NotFoundError(ServiceError):
    """
    Raised when an entity is not found in the repository.

    :param entity: Entity name (e.g., "Identity").
    :type entity: str
    :param key: Identifier or search key.
    :type key: str | int
    """

    entity: str
    key: str | int

    def __str__(self) -> str:
        return f"{self.entity} not found: {self.key}"


@dataclass(slots=True)
class ConflictError(ServiceError):
    """
    Raised when a unique constraint or business rule conflict occurs.

    :param entity: Entity name (e.g., "Identity").
    :type entity: str
    :param detail: Short human-readable explanation.
    :type detail: str
    """

    entity: str
    detail: str

    def __str__(self) -> str:
        return f"Conflict on {self.entity}: {self.detail}"


class DuplicateIdentityError(ConflictError):
    """An active identity already owns the email."""

    def __init__(self, detail: str = "email already in use") -> None:
        super().__init__("Identity", detail)


class DuplicateRoleError(ConflictError):
    """A non-deleted role already uses the name."""

    def __init__(self, detail: str = "role name already in use") -> None:
        super().__init__("Role", detail)


class RoleInUseError(ConflictError):
    """Role deletion rejected because identities still reference it."""

    def __init__(self, detail: str = "role is still assigned to identities") -> None:
        super().__init__("Role", detail)


# --------------------------------------------------------------------------- #
# Authentication / session errors
# --------------------------------------------------------------------------- #


class AuthenticationError(ServiceError):
    """Base for failures that require the caller to (re-)authenticate."""


class InvalidCredentialsError(AuthenticationError):
    """Unknown identity or wrong secret. Both cases are indistinguishable."""

    def __init__(self, message: str = "Invalid credentials") -> None:
        super().__init__(message)


class TokenError(AuthenticationError):
    """Base for unusable access or refresh tokens."""


class TokenNotFoundError(TokenError):
    def __init__(self, message: str = "Refresh token not recognised") -> None:
        super().__init__(message)


class TokenExpiredError(TokenError):
    def __init__(self, message: str = "Token has expired") -> None:
        super().__init__(message)


class TokenInvalidError(TokenError):
    def __init__(self, message: str = "Token is invalid") -> None:
        super().__init__(message)


class DeviceMismatchError(TokenInvalidError):
    """Refresh token presented from a device other than the one it is bound to."""

    def __init__(self, message: str = "Device binding mismatch") -> None:
        super().__init__(message)


class TokenReuseDetectedError(TokenError):
    """
    An already rotated or revoked refresh token was presented again.

    This is a security event: every live session of the affected
    (identity, device) pair has been revoked and the caller must sign in again.
    """

    def __init__(self, message: str = "Refresh token reuse detected") -> None:
        super().__init__(message)


class AuthorizationError(ServiceError):
    """The authenticated caller lacks the required permission."""


# --------------------------------------------------------------------------- #
# Storage faults
# --------------------------------------------------------------------------- #


class RepositoryError(ServiceError):
    """
    Storage-layer fault surfaced uniformly to callers.

    :param message: Human-readable description (never contains row data).
    :type message: str
    :param retryable: ``True`` for transient faults (timeouts, lost
        connections); callers decide between retry and fail-fast.
    :type retryable: bool
    """

    def __init__(self, message: str, *, retryable: bool = False) -> None:
        super().__init__(message)
        self.retryable = retryable


class OperationTimeoutError(RepositoryError):
    """The caller's deadline elapsed; the outcome of in-flight writes is unknown."""

    def __init__(self, message: str = "Operation deadline exceeded") -> None:
        super().__init__(message, retryable=True)
