"""Unit tests for the role store."""

import pytest

from accessctl.core.errors import (
    AlreadyExists,
    InheritanceCycle,
    InvalidInput,
    NotFound,
    RoleInUse,
    RoleProtected
)
from accessctl.core.roles import SYSTEM_ROLES, RoleStore, find_cycle
from accessctl.models.access import RoleType
from accessctl.storage.memory import InMemoryStore


def perm(perm_id, resource, action, scope="all"):
    return {"id": perm_id, "resource": resource, "action": action, "scope": scope}


@pytest.fixture
def store():
    return InMemoryStore()


@pytest.fixture
def roles(store, clock):
    role_store = RoleStore(store, clock=clock)
    role_store.seed_system_roles()
    return role_store


class TestSystemRoles:
    """Test cases for seeding the built-in roles."""

    def test_seed_creates_system_roles(self, roles):
        """Test every system role is created with its hierarchy."""
        expected = {
            "super_admin": 10,
            "admin": 8,
            "manager": 6,
            "property_manager": 4,
            "user": 2,
            "tenant": 1,
        }
        assert {r.id: r.hierarchy for r in roles.list_roles()} == expected
        assert all(r.type == RoleType.SYSTEM for r in roles.list_roles())

    def test_seed_is_idempotent(self, roles, store, clock):
        """Test seeding twice and reloading leaves roles unchanged."""
        before = {r.id: r for r in roles.list_roles()}
        assert roles.seed_system_roles() == []

        reloaded = RoleStore(store, clock=clock)
        reloaded.load()
        assert reloaded.seed_system_roles() == []
        assert {r.id: r for r in reloaded.list_roles()} == before

    def test_seed_permission_ids_are_unique_per_content(self):
        """Test shared permission ids across system roles carry identical content."""
        seen = {}
        for definition in SYSTEM_ROLES:
            for permission in definition["permissions"]:
                if permission["id"] in seen:
                    assert seen[permission["id"]] == permission
                seen[permission["id"]] = permission

    def test_list_roles_order(self, roles):
        """Test roles are listed most senior first."""
        hierarchies = [r.hierarchy for r in roles.list_roles()]
        assert hierarchies == sorted(hierarchies, reverse=True)


class TestRoleLifecycle:
    """Test cases for custom role create, update and delete."""

    def test_create_role(self, roles, store):
        """Test creating a custom role persists it."""
        role = roles.create_role(
            "Auditor",
            "Reads invoices",
            [perm("read_invoices", "invoices", "read")],
            created_by="admin",
            hierarchy=3,
        )

        assert role.type == RoleType.CUSTOM
        assert role.id.startswith("role_")
        assert roles.get_role(role.id) == role
        assert store.get("roles", role.id)["name"] == "Auditor"
        assert "read_invoices" in roles.catalog

    def test_create_role_with_explicit_id(self, roles):
        """Test duplicate role ids are rejected."""
        roles.create_role("Auditor", role_id="auditor")
        with pytest.raises(AlreadyExists):
            roles.create_role("Auditor again", role_id="auditor")

    def test_create_role_unknown_parent(self, roles):
        """Test inheriting from an unknown role fails."""
        with pytest.raises(NotFound):
            roles.create_role("Child", inherits_from=["ghost"])

    def test_create_role_conflicting_permission_id(self, roles):
        """Test reusing a catalog id with different content fails."""
        with pytest.raises(AlreadyExists):
            roles.create_role("Bad", permissions=[perm("manage_all", "invoices", "read")])

    def test_create_role_invalid_hierarchy(self, roles):
        """Test invalid role fields surface as InvalidInput."""
        with pytest.raises(InvalidInput):
            roles.create_role("Negative", hierarchy=-1)

    def test_update_role(self, roles, clock):
        """Test updating fields of a custom role."""
        role = roles.create_role("Auditor", role_id="auditor")
        clock.advance(minutes=5)

        updated = roles.update_role("auditor", {"description": "Updated", "hierarchy": 5}, updated_by="admin")

        assert updated.description == "Updated"
        assert updated.hierarchy == 5
        assert updated.updated_at > role.updated_at
        assert updated.created_at == role.created_at

    def test_update_unknown_fields(self, roles):
        """Test immutable fields cannot be updated."""
        roles.create_role("Auditor", role_id="auditor")
        with pytest.raises(InvalidInput):
            roles.update_role("auditor", {"type": "system"})

    def test_system_roles_are_protected(self, roles):
        """Test system roles cannot be edited or deleted."""
        with pytest.raises(RoleProtected):
            roles.update_role("admin", {"description": "hijacked"})
        with pytest.raises(RoleProtected):
            roles.delete_role("admin")
        assert roles.get_role("admin").description != "hijacked"

    def test_delete_role(self, roles, store):
        """Test deleting a custom role removes it from storage."""
        roles.create_role("Auditor", role_id="auditor")
        deleted = roles.delete_role("auditor")

        assert deleted.id == "auditor"
        assert roles.get_role("auditor") is None
        assert store.get("roles", "auditor") is None

    def test_delete_role_in_use(self, store, clock):
        """Test roles held by users cannot be deleted."""
        role_store = RoleStore(store, clock=clock, usage_counter=lambda role_id: 2)
        role_store.create_role("Auditor", role_id="auditor")

        with pytest.raises(RoleInUse):
            role_store.delete_role("auditor")
        assert role_store.get_role("auditor") is not None

    def test_delete_unknown_role(self, roles):
        with pytest.raises(NotFound):
            roles.delete_role("ghost")


class TestInheritance:
    """Test cases for inheritance and effective permissions."""

    def test_cycle_detection(self, roles):
        """Test an update that closes a cycle is rejected."""
        roles.create_role("A", role_id="a")
        roles.create_role("B", role_id="b", inherits_from=["a"])
        roles.create_role("C", role_id="c", inherits_from=["b"])

        with pytest.raises(InheritanceCycle):
            roles.update_role("a", {"inherits_from": ["c"]})
        with pytest.raises(InheritanceCycle):
            roles.update_role("a", {"inherits_from": ["a"]})
        assert roles.get_role("a").inherits_from == []

    def test_find_cycle(self, roles):
        """Test find_cycle reports the offending path."""
        roles.create_role("A", role_id="a")
        roles.create_role("B", role_id="b", inherits_from=["a"])
        others = {r.id: r for r in roles.list_roles() if r.id != "a"}
        assert find_cycle("a", ["b"], others) == ["a", "b", "a"]
        assert find_cycle("a", ["user"], others) is None

    def test_direct_inheritance(self, roles):
        """Test direct mode includes parents but not grandparents."""
        roles.create_role("A", role_id="a", permissions=[perm("a_read", "alpha", "read")])
        roles.create_role("B", role_id="b", permissions=[perm("b_read", "beta", "read")], inherits_from=["a"])
        roles.create_role("C", role_id="c", permissions=[perm("c_read", "gamma", "read")], inherits_from=["b"])

        assert [p.id for p in roles.get_effective_permissions("c")] == ["c_read", "b_read"]

    def test_transitive_inheritance(self, roles):
        """Test transitive mode walks the whole ancestry."""
        roles.inheritance_mode = "transitive"
        roles.create_role("A", role_id="a", permissions=[perm("a_read", "alpha", "read")])
        roles.create_role("B", role_id="b", permissions=[perm("b_read", "beta", "read")], inherits_from=["a"])
        roles.create_role("C", role_id="c", permissions=[perm("c_read", "gamma", "read")], inherits_from=["b"])

        assert [p.id for p in roles.get_effective_permissions("c")] == ["c_read", "b_read", "a_read"]

    def test_inactive_parent_contributes_nothing(self, roles):
        """Test inactive parents are skipped."""
        roles.create_role("A", role_id="a", permissions=[perm("a_read", "alpha", "read")])
        roles.create_role("B", role_id="b", inherits_from=["a"])
        roles.update_role("a", {"is_active": False})

        assert roles.get_effective_permissions("b") == []
        assert roles.get_effective_permissions("a") == []

    def test_effective_permissions_deduplicated(self, roles):
        """Test permissions with the same resource, action and scope are kept once."""
        roles.create_role("A", role_id="a", permissions=[perm("a_read", "alpha", "read")])
        roles.create_role("B", role_id="b", permissions=[perm("b_read", "alpha", "read")], inherits_from=["a"])

        assert [p.id for p in roles.get_effective_permissions("b")] == ["b_read"]

    def test_unknown_role_has_no_permissions(self, roles):
        assert roles.get_effective_permissions("ghost") == []

    def test_invalid_inheritance_mode(self, store):
        with pytest.raises(InvalidInput):
            RoleStore(store, inheritance_mode="sideways")
