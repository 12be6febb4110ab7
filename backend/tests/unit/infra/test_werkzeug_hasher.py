# tests/unit/infra/test_werkzeug_hasher.py
from __future__ import annotations

import pytest
from authcore.infra.hashing.werkzeug_hasher import WerkzeugPasswordHasher

hasher = WerkzeugPasswordHasher(method="pbkdf2:sha256:1000")


def test_hash_is_salted_and_verifiable():
    first, second = hasher.hash("secret"), hasher.hash("secret")
    assert first != second
    assert first.startswith("pbkdf2:sha256:1000$")
    assert hasher.verify("secret", first)
    assert not hasher.verify("Secret", first)


def test_empty_inputs():
    with pytest.raises(ValueError):
        hasher.hash("")
    assert hasher.verify("", hasher.hash("x")) is False
    assert hasher.verify("x", "") is False
