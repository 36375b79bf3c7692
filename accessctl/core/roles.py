"""
Role store.

Holds role definitions, resolves effective permissions through inheritance
and seeds the built-in system roles. The role map is replaced wholesale on
every mutation so decisions can read a snapshot without taking a lock.
"""

import logging
import threading
from typing import Any, Callable, Dict, Iterable, List, Optional

from accessctl.core.catalog import PermissionCatalog
from accessctl.core.errors import (
    AlreadyExists,
    InheritanceCycle,
    InvalidInput,
    NotFound,
    RoleInUse,
    RoleProtected,
)
from accessctl.core.locks import KeyedLock
from accessctl.models.access import Permission, Role, RoleType
from accessctl.storage.base import KeyValueStore
from accessctl.utils.helpers import generate_id, utcnow

logger = logging.getLogger(__name__)

INHERITANCE_MODES = ("direct", "transitive")

UPDATABLE_FIELDS = {"name", "description", "permissions", "hierarchy", "inherits_from", "is_active"}


def _perm(perm_id: str, resource: str, action: str, scope: str, risk: str, description: str) -> Dict[str, Any]:
    return {
        "id": perm_id,
        "resource": resource,
        "action": action,
        "scope": scope,
        "metadata": {"description": description, "category": resource, "risk_level": risk},
    }


SYSTEM_ROLES: List[Dict[str, Any]] = [
    {
        "id": "super_admin",
        "name": "Super Administrator",
        "description": "Full system access with all permissions",
        "hierarchy": 10,
        "permissions": [
            _perm("manage_all", "*", "manage", "all", "critical", "Manage every resource"),
        ],
    },
    {
        "id": "admin",
        "name": "Administrator",
        "description": "High level access to manage company operations",
        "hierarchy": 8,
        "permissions": [
            _perm("manage_company", "company", "manage", "all", "high", "Manage company settings"),
            _perm("manage_templates", "templates", "manage", "all", "medium", "Manage templates"),
            _perm("manage_properties", "properties", "manage", "all", "high", "Manage all properties"),
            _perm("manage_tenants", "tenants", "manage", "all", "high", "Manage all tenants"),
            _perm("view_analytics", "analytics", "read", "all", "low", "View analytics"),
        ],
    },
    {
        "id": "manager",
        "name": "Manager",
        "description": "Regional or departmental management access",
        "hierarchy": 6,
        "permissions": [
            _perm("manage_assigned_properties", "properties", "manage", "assigned", "medium",
                  "Manage assigned properties"),
            _perm("manage_assigned_tenants", "tenants", "manage", "assigned", "medium",
                  "Manage tenants of assigned properties"),
            _perm("manage_staff", "users", "manage", "team", "high", "Manage staff in the same department"),
            _perm("view_assigned_reports", "reports", "read", "assigned", "low", "View reports for assigned portfolio"),
        ],
    },
    {
        "id": "property_manager",
        "name": "Property Manager",
        "description": "Manage properties, tenants, and maintenance",
        "hierarchy": 4,
        "permissions": [
            _perm("manage_assigned_properties", "properties", "manage", "assigned", "medium",
                  "Manage assigned properties"),
            _perm("manage_assigned_tenants", "tenants", "manage", "assigned", "medium",
                  "Manage tenants of assigned properties"),
            _perm("manage_maintenance", "workorders", "manage", "assigned", "medium", "Manage maintenance work orders"),
            _perm("view_assigned_reports", "reports", "read", "assigned", "low", "View reports for assigned portfolio"),
        ],
    },
    {
        "id": "user",
        "name": "User",
        "description": "Standard user access for viewing and basic operations",
        "hierarchy": 2,
        "permissions": [
            _perm("view_properties", "properties", "read", "assigned", "low", "View assigned properties"),
            _perm("view_tenants", "tenants", "read", "assigned", "low", "View assigned tenants"),
            _perm("view_reports", "reports", "read", "own", "low", "View own reports"),
            _perm("send_communications", "communications", "create", "own", "low", "Send communications"),
        ],
    },
    {
        "id": "tenant",
        "name": "Tenant",
        "description": "Basic tenant access to own information",
        "hierarchy": 1,
        "permissions": [
            _perm("view_own_lease", "leases", "read", "own", "low", "View own lease"),
            _perm("create_maintenance", "workorders", "create", "own", "low", "Submit maintenance requests"),
            _perm("view_own_payments", "payments", "read", "own", "low", "View own payments"),
        ],
    },
]


def _coerce_permissions(permissions: Optional[Iterable[Any]]) -> List[Permission]:
    result = []
    for permission in permissions or []:
        if isinstance(permission, Permission):
            result.append(permission)
        else:
            result.append(Permission.model_validate(permission))
    return result


def find_cycle(role_id: str, inherits_from: Iterable[str], roles: Dict[str, Role]) -> Optional[List[str]]:
    """Return the inheritance path that leads back to ``role_id``, if any.

    ``roles`` is the role map with ``role_id``'s edges not yet applied.
    """
    stack = [(parent, [role_id, parent]) for parent in inherits_from]
    visited = set()
    while stack:
        current, path = stack.pop()
        if current == role_id:
            return path
        if current in visited:
            continue
        visited.add(current)
        role = roles.get(current)
        if role is None:
            continue
        for parent in role.inherits_from:
            stack.append((parent, path + [parent]))
    return None


class RoleStore:
    """Manages role definitions and their inheritance."""

    TABLE = "roles"

    def __init__(
        self,
        store: KeyValueStore,
        catalog: Optional[PermissionCatalog] = None,
        inheritance_mode: str = "direct",
        clock: Callable = utcnow,
        usage_counter: Optional[Callable[[str], int]] = None,
    ):
        if inheritance_mode not in INHERITANCE_MODES:
            raise InvalidInput(f"Unknown inheritance mode '{inheritance_mode}'")
        self.store = store
        self.catalog = catalog or PermissionCatalog()
        self.inheritance_mode = inheritance_mode
        self.clock = clock
        self.usage_counter = usage_counter or (lambda role_id: 0)
        self._roles: Dict[str, Role] = {}
        self._structure_lock = threading.RLock()
        self._role_locks = KeyedLock()

    def load(self) -> int:
        """Load persisted roles. Returns the number loaded."""
        roles = {}
        for role_id, data in self.store.list(self.TABLE).items():
            role = Role.model_validate(data)
            self.catalog.register_many(role.permissions)
            roles[role_id] = role
        self._roles = roles
        logger.info(f"Loaded {len(roles)} roles from storage")
        return len(roles)

    def seed_system_roles(self) -> List[str]:
        """Create any missing system role. Existing roles are left untouched."""
        created = []
        with self._structure_lock:
            for definition in SYSTEM_ROLES:
                if definition["id"] in self._roles:
                    continue
                now = self.clock()
                role = Role(
                    type=RoleType.SYSTEM,
                    created_at=now,
                    updated_at=now,
                    created_by="system",
                    **definition,
                )
                self.catalog.register_many(role.permissions)
                self._save(role)
                created.append(role.id)
        if created:
            logger.info(f"Seeded system roles: {', '.join(created)}")
        return created

    def _save(self, role: Role) -> None:
        self.store.put(self.TABLE, role.id, role.model_dump(mode="json"))
        roles = dict(self._roles)
        roles[role.id] = role
        self._roles = roles

    def _check_parents(self, inherits_from: List[str]) -> None:
        for parent in inherits_from:
            if parent not in self._roles:
                raise NotFound(f"Parent role '{parent}' not found", subject=parent)

    def create_role(
        self,
        name: str,
        description: str = "",
        permissions: Optional[Iterable[Any]] = None,
        created_by: str = "system",
        hierarchy: int = 1,
        inherits_from: Optional[List[str]] = None,
        role_id: Optional[str] = None,
    ) -> Role:
        """Create a custom role.

        Raises:
            NotFound: A parent role does not exist.
            AlreadyExists: The role id or a permission id conflicts.
            InheritanceCycle: The parent edges would form a cycle.
        """
        permissions = _coerce_permissions(permissions)
        inherits_from = list(dict.fromkeys(inherits_from or []))

        with self._structure_lock:
            role_id = role_id or generate_id("role")
            if role_id in self._roles:
                raise AlreadyExists(f"Role '{role_id}' already exists", subject=role_id)
            self._check_parents(inherits_from)
            cycle = find_cycle(role_id, inherits_from, self._roles)
            if cycle:
                raise InheritanceCycle(f"Inheritance cycle: {' -> '.join(cycle)}", subject=role_id)
            self.catalog.validate(permissions)

            now = self.clock()
            try:
                role = Role(
                    id=role_id,
                    name=name,
                    description=description,
                    type=RoleType.CUSTOM,
                    permissions=permissions,
                    hierarchy=hierarchy,
                    inherits_from=inherits_from,
                    created_at=now,
                    updated_at=now,
                    created_by=created_by,
                )
            except ValueError as e:
                raise InvalidInput(f"Invalid role definition: {e}", subject=role_id) from e

            self.catalog.register_many(role.permissions)
            self._save(role)

        logger.info(f"Created role: {role.id} ({role.name})")
        return role

    def update_role(self, role_id: str, changes: Dict[str, Any], updated_by: str = "system") -> Role:
        """Apply field changes to a custom role.

        Raises:
            NotFound: Unknown role or parent.
            RoleProtected: The role is a system role.
            InvalidInput: Unknown or invalid fields.
            InheritanceCycle: New parent edges would form a cycle.
        """
        unknown = set(changes) - UPDATABLE_FIELDS
        if unknown:
            raise InvalidInput(f"Cannot update role fields: {', '.join(sorted(unknown))}", subject=role_id)

        with self._role_locks.hold(role_id), self._structure_lock:
            role = self.get_role(role_id)
            if role is None:
                raise NotFound(f"Role '{role_id}' not found", subject=role_id)
            if role.is_system:
                raise RoleProtected(f"Cannot modify system role '{role_id}'", subject=role_id)

            data = role.model_dump()
            if "permissions" in changes:
                data["permissions"] = _coerce_permissions(changes["permissions"])
                self.catalog.validate(data["permissions"])
            if "inherits_from" in changes:
                inherits_from = list(dict.fromkeys(changes["inherits_from"] or []))
                self._check_parents(inherits_from)
                others = {rid: r for rid, r in self._roles.items() if rid != role_id}
                cycle = find_cycle(role_id, inherits_from, others)
                if cycle:
                    raise InheritanceCycle(f"Inheritance cycle: {' -> '.join(cycle)}", subject=role_id)
                data["inherits_from"] = inherits_from
            for key in ("name", "description", "hierarchy", "is_active"):
                if key in changes:
                    data[key] = changes[key]
            data["updated_at"] = self.clock()

            try:
                updated = Role.model_validate(data)
            except ValueError as e:
                raise InvalidInput(f"Invalid role update: {e}", subject=role_id) from e

            self.catalog.register_many(updated.permissions)
            self._save(updated)

        logger.info(f"Updated role: {role_id} by {updated_by}")
        return updated

    def delete_role(self, role_id: str, deleted_by: str = "system") -> Role:
        """Delete a custom role with no effective assignments.

        Raises:
            NotFound: Unknown role.
            RoleProtected: The role is a system role.
            RoleInUse: Users still hold the role.
        """
        with self._role_locks.hold(role_id), self._structure_lock:
            role = self.get_role(role_id)
            if role is None:
                raise NotFound(f"Role '{role_id}' not found", subject=role_id)
            if role.is_system:
                raise RoleProtected(f"Cannot delete system role '{role_id}'", subject=role_id)
            user_count = self.usage_counter(role_id)
            if user_count > 0:
                raise RoleInUse(f"Role '{role_id}' is assigned to {user_count} user(s)", subject=role_id)

            self.store.delete(self.TABLE, role_id)
            roles = dict(self._roles)
            del roles[role_id]
            self._roles = roles

        logger.info(f"Deleted role: {role_id} by {deleted_by}")
        return role

    def get_role(self, role_id: str) -> Optional[Role]:
        """Get role by id."""
        return self._roles.get(role_id)

    def list_roles(self) -> List[Role]:
        """List all roles, most senior first."""
        return sorted(self._roles.values(), key=lambda r: (-r.hierarchy, r.id))

    def _ancestors(self, role: Role, roles: Dict[str, Role]) -> List[Role]:
        if self.inheritance_mode == "direct":
            return [roles[p] for p in role.inherits_from if p in roles]

        ordered = []
        seen = {role.id}
        stack = list(reversed(role.inherits_from))
        while stack:
            current = stack.pop()
            if current in seen or current not in roles:
                continue
            seen.add(current)
            parent = roles[current]
            ordered.append(parent)
            stack.extend(reversed(parent.inherits_from))
        return ordered

    def get_effective_permissions(self, role_id: str) -> List[Permission]:
        """Own permissions plus those inherited from active parent roles.

        The result is de-duplicated by (resource, action, scope) keeping the
        first occurrence; own permissions come before inherited ones.
        """
        roles = self._roles
        role = roles.get(role_id)
        if role is None or not role.is_active:
            return []

        result: List[Permission] = []
        seen = set()
        sources = [role] + [parent for parent in self._ancestors(role, roles) if parent.is_active]
        for source in sources:
            for permission in source.permissions:
                if permission.dedup_key in seen:
                    continue
                seen.add(permission.dedup_key)
                result.append(permission)
        return result

    def __len__(self) -> int:
        return len(self._roles)
