from __future__ import annotations

from dataclasses import dataclass

from werkzeug.security import check_password_hash, generate_password_hash


@dataclass(frozen=True, slots=True)
class WerkzeugPasswordHasher:
    """
    :class:`~authcore.services._shared.ports.PasswordHasher` adapter over
    Werkzeug's salted hashes.

    :param method: Werkzeug method string (``"scrypt"``, ``"pbkdf2:sha256"``...).
    :type method: str
    """

    method: str = "scrypt"

    def hash(self, secret: str) -> str:
        if not secret:
            raise ValueError("Secret must not be empty.")
        return generate_password_hash(secret, method=self.method)

    def verify(self, secret: str, digest: str) -> bool:
        if not secret or not digest:
            return False
        return check_password_hash(digest, secret)
