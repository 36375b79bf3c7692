"""Registry of permission definitions."""

import logging
import threading
from typing import Dict, Iterable, List, Optional

from accessctl.core.errors import AlreadyExists
from accessctl.models.access import Permission

logger = logging.getLogger(__name__)


class PermissionCatalog:
    """Permission definitions keyed by id.

    A permission id is bound to its content on first registration. Registering
    the same id again with identical content is a no-op; different content
    raises ``AlreadyExists`` so edits must use a new id.
    """

    def __init__(self):
        self._permissions: Dict[str, Permission] = {}
        self._lock = threading.Lock()

    def register(self, permission: Permission) -> Permission:
        with self._lock:
            existing = self._permissions.get(permission.id)
            if existing is not None:
                if existing != permission:
                    raise AlreadyExists(
                        f"Permission '{permission.id}' is already defined as {existing}",
                        subject=permission.id,
                    )
                return existing
            permissions = dict(self._permissions)
            permissions[permission.id] = permission
            self._permissions = permissions
            logger.debug(f"Registered permission {permission.id} ({permission})")
            return permission

    def register_many(self, permissions: Iterable[Permission]) -> List[Permission]:
        """Validate a batch first, then register it."""
        permissions = list(permissions)
        self.validate(permissions)
        return [self.register(permission) for permission in permissions]

    def validate(self, permissions: Iterable[Permission]) -> None:
        """Raise ``AlreadyExists`` if any permission conflicts with the catalog or the batch."""
        seen: Dict[str, Permission] = {}
        current = self._permissions
        for permission in permissions:
            known = seen.get(permission.id) or current.get(permission.id)
            if known is not None and known != permission:
                raise AlreadyExists(
                    f"Permission '{permission.id}' is already defined as {known}",
                    subject=permission.id,
                )
            seen[permission.id] = permission

    def get(self, permission_id: str) -> Optional[Permission]:
        return self._permissions.get(permission_id)

    def list(self) -> List[Permission]:
        return sorted(self._permissions.values(), key=lambda p: p.id)

    def __contains__(self, permission_id: str) -> bool:
        return permission_id in self._permissions

    def __len__(self) -> int:
        return len(self._permissions)
