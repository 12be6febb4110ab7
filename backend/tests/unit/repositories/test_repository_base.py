# tests/unit/repositories/test_repository_base.py
"""Generic repository behaviour exercised through the role and identity repositories."""

from __future__ import annotations

import pytest
from authcore.models.base import EntityStatus
from authcore.repositories import IdentityRepository, Pagination, RoleRepository
from authcore.services._shared.errors import (
    BulkWriteError,
    DuplicateIdentityError,
    DuplicateRoleError,
    ValidationError,
)

from tests.factories.identity import IdentityFactory
from tests.factories.role import RoleFactory


@pytest.fixture()
def roles(session) -> RoleRepository:
    return RoleRepository(session=session)


@pytest.fixture()
def identities(session) -> IdentityRepository:
    return IdentityRepository(session=session)


# ------------------------------- Create ---------------------------------- #
def test_create_assigns_id_and_normalizes(roles):
    role = roles.create({"name": "  Editors ", "permissions": ["a:read", "a:read", " b "]})
    assert role.id and len(role.id) == 32
    assert role.name == "editors"
    assert role.permissions == ["a:read", "b"]
    assert roles.find_by_id(role.id) is role


def test_create_missing_required_field(identities):
    with pytest.raises(ValidationError):
        identities.create({"email": "x@example.com", "password_hash": "h"})


def test_create_rejects_bad_value(identities):
    role = RoleFactory()
    with pytest.raises(ValidationError):
        identities.create({"email": "not-an-email", "password_hash": "h", "role_id": role.id})


def test_duplicate_live_name_maps_to_domain_error(roles, session):
    roles.create({"name": "ops"})
    with pytest.raises(DuplicateRoleError):
        roles.create({"name": "OPS"})
    # The failed insert ran in its own SAVEPOINT: the session is still usable.
    assert roles.count() == 1


def test_soft_deleted_name_can_be_reused(roles):
    first = roles.create({"name": "ops"})
    roles.soft_delete_many([first.id])
    second = roles.create({"name": "ops"})
    assert second.id != first.id
    assert roles.find_by_name("ops").id == second.id


def test_create_many_is_all_or_nothing(roles):
    with pytest.raises(BulkWriteError) as info:
        roles.create_many([{"name": "a"}, {"name": "b"}, {"name": "a"}])
    assert info.value.index == 2
    assert roles.count() == 0


def test_create_many_reports_invalid_record(roles):
    with pytest.raises(BulkWriteError) as info:
        roles.create_many([{"name": "a"}, {"name": "  "}])
    assert info.value.index == 1
    assert roles.count() == 0


# ------------------------------- Reads ----------------------------------- #
def test_find_many_hides_soft_deleted(roles):
    kept = RoleFactory(name="kept")
    gone = RoleFactory(name="gone")
    roles.soft_delete_many([gone.id])
    names = [r.name for r in roles.find_many()]
    assert names == ["kept"]
    assert roles.find_by_id(gone.id) is not None  # still addressable by id
    assert roles.count(include_deleted=True) == 2
    assert kept.is_deleted is False


def test_unknown_filter_key_is_rejected(roles):
    with pytest.raises(ValidationError):
        roles.find_many({"nope": 1})


def test_sequence_filter_means_membership(roles):
    a, b, _ = RoleFactory(), RoleFactory(), RoleFactory()
    found = roles.find_many({"id": [a.id, b.id]})
    assert {r.id for r in found} == {a.id, b.id}


@pytest.mark.filterwarnings("error::sqlalchemy.exc.SAWarning")
def test_exists_and_distinct(identities):
    role = RoleFactory()
    IdentityFactory(role=role)
    IdentityFactory(role=role)
    assert identities.exists({"role_id": role.id})
    assert identities.distinct("role_id") == {role.id}


def test_projection_returns_requested_columns(identities):
    identity = IdentityFactory(email="proj@example.com")
    rows = identities.find_many_projected(["id", "email"], {"id": identity.id})
    assert rows == [{"id": identity.id, "email": "proj@example.com"}]


def test_paginate_sorts_and_counts(identities):
    role = RoleFactory()
    for letter in "cab":
        IdentityFactory(role=role, email=f"{letter}@example.com")
    page = identities.paginate(Pagination(page=1, limit=2, sort=["email"]))
    assert page.total == 3
    assert [i.email for i in page.items] == ["a@example.com", "b@example.com"]

    page2 = identities.paginate(Pagination(page=2, limit=2, sort=["-email"]))
    assert [i.email for i in page2.items] == ["a@example.com"]


# ------------------------------- Updates --------------------------------- #
def test_update_by_id_applies_whitelisted_patch(roles):
    role = RoleFactory()
    updated = roles.update_by_id(role.id, {"description": "changed"})
    assert updated is not None and updated.description == "changed"
    assert roles.update_by_id("missing", {"description": "x"}) is None


def test_update_rejects_non_whitelisted_field(identities):
    identity = IdentityFactory()
    with pytest.raises(ValidationError):
        identities.update_by_id(identity.id, {"id": "forged"})


def test_update_one_reports_matched_and_modified(roles):
    role = RoleFactory(description="same")
    result = roles.update_one({"id": role.id}, {"description": "same"})
    assert (result.matched, result.modified) == (1, 0)
    result = roles.update_one({"id": role.id}, {"description": "other"})
    assert (result.matched, result.modified) == (1, 1)
    assert roles.update_one({"id": "missing"}, {"description": "x"}).matched == 0


def test_update_many_counts_only_changed_rows(identities, session):
    role = RoleFactory()
    a = IdentityFactory(role=role)
    IdentityFactory(role=role)
    identities.assign_updates(a, {"status": EntityStatus.INACTIVE})

    result = identities.update_many({"role_id": role.id}, {"status": EntityStatus.INACTIVE})
    assert result.matched == 2
    assert result.modified == 1


def test_update_duplicate_email_maps_to_domain_error(identities):
    IdentityFactory(email="taken@example.com")
    other = IdentityFactory()
    with pytest.raises(DuplicateIdentityError):
        identities.update_by_id(other.id, {"email": "taken@example.com"})


def test_upsert_creates_then_patches(roles):
    created = roles.upsert({"name": "svc"}, {"description": "v1"})
    patched = roles.upsert({"name": "svc"}, {"description": "v2"})
    assert created.id == patched.id
    assert patched.description == "v2"
    assert roles.count({"name": "svc"}) == 1


# ------------------------------- Deletes --------------------------------- #
def test_soft_delete_many_is_idempotent(roles):
    role = RoleFactory()
    first = roles.soft_delete_many([role.id])
    second = roles.soft_delete_many([role.id])
    assert (first.matched, first.modified) == (1, 1)
    assert (second.matched, second.modified) == (1, 0)
    assert roles.soft_delete_many([]).matched == 0


def test_delete_by_id_removes_row(roles, session):
    role = RoleFactory()
    deleted = roles.delete_by_id(role.id)
    assert deleted is not None
    session.expunge_all()
    assert roles.find_by_id(role.id) is None
    assert roles.delete_by_id(role.id) is None
