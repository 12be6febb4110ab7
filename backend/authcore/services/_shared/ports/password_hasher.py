from __future__ import annotations

from typing import Protocol


class PasswordHasher(Protocol):
    """Port for one-way secret hashing.

    Implementations must use a salted, slow hash and compare in constant time.
    """

    def hash(self, secret: str) -> str: ...

    def verify(self, secret: str, digest: str) -> bool: ...
