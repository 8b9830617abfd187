"""Tests for the in-memory collaborator implementations."""

from __future__ import annotations

import pytest
from authzcore.exceptions import NotFoundError
from authzcore.permissions import (
    Action,
    EntityType,
    Membership,
    MembershipKind,
    Organization,
    OrganizationTree,
    Override,
    PermissionMatrixEntry,
    Resource,
    RoleId,
    UserContext,
)
from authzcore.stores import (
    InMemoryAuthenticationProvider,
    InMemoryHierarchyStore,
    InMemoryMembershipStore,
    InMemoryPermissionMatrixStore,
    extract_bearer_token,
)


class TestBearerExtraction:
    def test_access_token_header(self) -> None:
        assert extract_bearer_token({"x-access-token": " tok "}) == "tok"

    def test_authorization_header(self) -> None:
        assert extract_bearer_token({"authorization": "Bearer tok"}) == "tok"

    def test_other_scheme_ignored(self) -> None:
        assert extract_bearer_token({"authorization": "Basic dXNlcg=="}) == ""

    def test_missing(self) -> None:
        assert extract_bearer_token({}) == ""


class TestAuthenticationProvider:
    def test_register_and_revoke(self) -> None:
        provider = InMemoryAuthenticationProvider()
        user = UserContext(user_id="u-1", role=RoleId.MEMBER)
        provider.register("tok", user)
        assert provider.authenticate({"authorization": "Bearer tok"}) == user

        provider.revoke("tok")
        assert provider.authenticate({"authorization": "Bearer tok"}) is None

    def test_unknown_token(self) -> None:
        assert InMemoryAuthenticationProvider().authenticate({"x-access-token": "nope"}) is None


class TestMembershipStore:
    def test_add_is_idempotent(self) -> None:
        store = InMemoryMembershipStore()
        membership = Membership("u-1", MembershipKind.TEAM, "t-1")
        store.add(membership)
        store.add(membership)
        assert store.memberships_for("u-1") == [membership]

        store.remove(membership)
        assert store.memberships_for("u-1") == []

    def test_returns_copy(self) -> None:
        store = InMemoryMembershipStore()
        store.add(Membership("u-1", MembershipKind.TEAM, "t-1"))
        store.memberships_for("u-1").clear()
        assert len(store.memberships_for("u-1")) == 1


class TestHierarchyStore:
    def test_snapshot_includes_organization_entries(self) -> None:
        matrix = InMemoryPermissionMatrixStore()
        store = InMemoryHierarchyStore(matrix)
        tree = OrganizationTree(Organization(id="org-1"))
        tree.add_team("t-1")
        store.add_tree(tree)
        entry = PermissionMatrixEntry(
            entity_type=EntityType.TEAM,
            entity_id="t-1",
            organization_id="org-1",
            role=RoleId.MEMBER,
            permissions={(Resource.TASK, Action.DELETE): Override.deny()},
        )
        matrix.compare_and_set(entry, None)

        snapshot = store.load_snapshot("org-1")
        assert snapshot.team("t-1").id == "t-1"
        stored = snapshot.entry(EntityType.TEAM, "t-1", RoleId.MEMBER)
        assert stored is not None
        assert stored.version == 1

    def test_unknown_organization(self) -> None:
        store = InMemoryHierarchyStore(InMemoryPermissionMatrixStore())
        with pytest.raises(NotFoundError):
            store.load_snapshot("org-x")

    def test_removed_tree(self) -> None:
        store = InMemoryHierarchyStore(InMemoryPermissionMatrixStore())
        store.add_tree(OrganizationTree(Organization(id="org-1")))
        store.remove_tree("org-1")
        with pytest.raises(NotFoundError):
            store.tree("org-1")
