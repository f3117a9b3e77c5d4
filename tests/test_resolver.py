"""Tests de résolution des références -> entité ou placeholder"""

from unittest.mock import AsyncMock, patch

from app.core.errors import TransportFailure
from app.core.store import Ref, GROUPS, TASKS, USERS
from app.services.resolver_service import (
    fetch_document,
    resolve,
    resolve_group,
    resolve_user,
    user_display_name,
)
from conftest import run, seed_user


def test_resolve_user_from_ref_and_bare_id(store):
    seed_user(store, "alice", "Alice", "Martin")

    by_ref = run(resolve_user(store, Ref(USERS, "alice")))
    by_id = run(resolve_user(store, "alice"))

    assert by_ref == by_id
    assert by_ref["id"] == "alice"
    assert by_ref["name"] == "Alice Martin"


def test_resolve_missing_user_gives_unknown_placeholder(store):
    user = run(resolve_user(store, Ref(USERS, "deleted")))
    assert user["id"] == "unknown"
    assert user["name"] == "Unknown"


def test_resolve_missing_group_gives_uncategorized(store):
    group = run(resolve_group(store, Ref(GROUPS, "gone")))
    assert group["id"] == "gone"
    assert group["name"] == "Uncategorized"


def test_resolve_group_without_name(store):
    run(store.set(Ref(GROUPS, "g1"), {"color": "#FF6B6B"}))
    group = run(resolve_group(store, "g1"))
    assert group["name"] == "Uncategorized"
    assert group["color"] == "#FF6B6B"


def test_fetch_document_returns_fields_and_id(store):
    run(store.set(Ref(TASKS, "t1"), {"description": "Vaisselle"}))
    data = run(fetch_document(store, "t1", TASKS))
    assert data == {"description": "Vaisselle", "id": "t1"}


def test_fetch_document_missing_is_none(store):
    assert run(fetch_document(store, "nope", TASKS)) is None


def test_fetch_document_malformed_reference_is_none(store):
    assert run(fetch_document(store, 42, TASKS)) is None


def test_transport_failure_degrades_to_placeholder(store):
    """Une panne du store ne doit pas remonter jusqu'à l'affichage"""
    with patch.object(store, "get", AsyncMock(side_effect=TransportFailure("offline"))):
        user = run(resolve_user(store, "alice"))
        group = run(resolve_group(store, "g1"))

    assert user["name"] == "Unknown"
    assert group["name"] == "Uncategorized"


def test_generic_resolve_dispatches_on_collection(store):
    seed_user(store, "alice", "Alice", "Martin")
    assert run(resolve(store, "alice", USERS))["name"] == "Alice Martin"
    assert run(resolve(store, "missing", GROUPS))["name"] == "Uncategorized"
    assert run(resolve(store, "missing", TASKS)) == {"id": "unknown", "name": "Unknown"}


# ============ NOM AFFICHÉ ============

def test_display_name_full_name():
    assert user_display_name({"firstName": " Alice", "lastName": "Martin "}) == "Alice Martin"


def test_display_name_fallbacks():
    assert user_display_name({"firstName": "", "lastName": "", "username": "ali"}) == "ali"
    assert user_display_name({"email": "a@example.com"}) == "a@example.com"
    assert user_display_name({}) == "Unknown User"
