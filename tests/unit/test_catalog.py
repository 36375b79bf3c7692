"""Unit tests for the permission catalog."""

import pytest

from accessctl.core.catalog import PermissionCatalog
from accessctl.core.errors import AlreadyExists
from accessctl.models.access import Permission


def permission(perm_id="read_invoices", resource="invoices", action="read", scope="all"):
    return Permission(id=perm_id, resource=resource, action=action, scope=scope)


class TestPermissionCatalog:
    """Test cases for PermissionCatalog."""

    def test_register_and_get(self):
        """Test registering a permission makes it retrievable."""
        catalog = PermissionCatalog()
        registered = catalog.register(permission())

        assert catalog.get("read_invoices") == registered
        assert "read_invoices" in catalog
        assert len(catalog) == 1

    def test_register_identical_is_noop(self):
        """Test re-registering identical content is accepted."""
        catalog = PermissionCatalog()
        catalog.register(permission())
        catalog.register(permission())
        assert len(catalog) == 1

    def test_register_conflicting_content(self):
        """Test a permission id cannot be rebound to different content."""
        catalog = PermissionCatalog()
        catalog.register(permission())

        with pytest.raises(AlreadyExists):
            catalog.register(permission(scope="own"))
        assert catalog.get("read_invoices").scope.value == "all"

    def test_register_many_is_validated_first(self):
        """Test a conflicting batch registers nothing."""
        catalog = PermissionCatalog()
        batch = [
            permission("a", "invoices", "read"),
            permission("b", "invoices", "update"),
            permission("a", "invoices", "delete"),
        ]
        with pytest.raises(AlreadyExists):
            catalog.register_many(batch)
        assert len(catalog) == 0

    def test_list_sorted(self):
        """Test listing is ordered by id."""
        catalog = PermissionCatalog()
        catalog.register_many([permission("b"), permission("a", action="update")])
        assert [p.id for p in catalog.list()] == ["a", "b"]
