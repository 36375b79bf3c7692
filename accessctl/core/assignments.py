"""
Assignment ledger.

Time-bounded bindings of users to roles. Entries are never hard-deleted:
removal and replacement flip ``is_active`` and record who did it. The
ledger is persisted one record per user under the ``role_assignments``
table.
"""

import logging
import threading
from datetime import datetime
from typing import Callable, Dict, List, Optional, Tuple

from accessctl.core.errors import InvalidInput, NotFound
from accessctl.core.identity import IdentityStore
from accessctl.core.locks import KeyedLock
from accessctl.core.roles import RoleStore
from accessctl.models.access import AssignmentMetadata, RoleAssignment
from accessctl.storage.base import KeyValueStore
from accessctl.utils.helpers import ensure_utc, utcnow

logger = logging.getLogger(__name__)


class AssignmentLedger:
    """Tracks which users hold which roles, and until when."""

    TABLE = "role_assignments"

    def __init__(
        self,
        store: KeyValueStore,
        identity: IdentityStore,
        roles: RoleStore,
        clock: Callable = utcnow,
    ):
        self.store = store
        self.identity = identity
        self.roles = roles
        self.clock = clock
        self._entries: Dict[str, Tuple[RoleAssignment, ...]] = {}
        self._user_locks = KeyedLock()
        # Guards the copy-on-write swap of _entries across users.
        self._swap_lock = threading.Lock()

    def load(self) -> int:
        entries = {}
        for user_id, data in self.store.list(self.TABLE).items():
            entries[user_id] = tuple(
                RoleAssignment.model_validate(item) for item in data.get("assignments", [])
            )
        self._entries = entries
        logger.info(f"Loaded role assignments for {len(entries)} users")
        return len(entries)

    def _save(self, user_id: str, assignments: List[RoleAssignment]) -> None:
        self.store.put(
            self.TABLE,
            user_id,
            {"user_id": user_id, "assignments": [a.model_dump(mode="json") for a in assignments]},
        )
        with self._swap_lock:
            entries = dict(self._entries)
            entries[user_id] = tuple(assignments)
            self._entries = entries

    def assign_role(
        self,
        user_id: str,
        role_id: str,
        assigned_by: str,
        expires_at: Optional[datetime] = None,
        metadata: Optional[AssignmentMetadata] = None,
    ) -> Tuple[RoleAssignment, Optional[RoleAssignment]]:
        """Grant a role, replacing any active assignment of the same role.

        Returns:
            Tuple of (new assignment, replaced assignment or None)

        Raises:
            NotFound: User or role does not exist.
            InvalidInput: ``expires_at`` is not in the future.
        """
        if self.identity.get_user(user_id) is None:
            raise NotFound(f"User '{user_id}' not found", subject=user_id)
        if self.roles.get_role(role_id) is None:
            raise NotFound(f"Role '{role_id}' not found", subject=role_id)

        with self._user_locks.hold(user_id):
            now = self.clock()
            expires_at = ensure_utc(expires_at)
            if expires_at is not None and expires_at <= now:
                raise InvalidInput("Assignment expiry must be in the future", subject=user_id)

            replaced = None
            assignments = []
            for assignment in self._entries.get(user_id, ()):
                if assignment.role_id == role_id and assignment.is_active:
                    replaced = assignment
                    assignment = assignment.model_copy(
                        update={"is_active": False, "removed_by": assigned_by, "removed_at": now}
                    )
                assignments.append(assignment)

            new = RoleAssignment(
                user_id=user_id,
                role_id=role_id,
                assigned_by=assigned_by,
                assigned_at=now,
                expires_at=expires_at,
                metadata=metadata or AssignmentMetadata(),
            )
            assignments.append(new)
            self._save(user_id, assignments)

        logger.info(f"Assigned role {role_id} to user {user_id} by {assigned_by}")
        return new, replaced

    def remove_role(self, user_id: str, role_id: str, removed_by: str, reason: Optional[str] = None) -> bool:
        """Soft-delete the active assignment. Returns False if none is active."""
        with self._user_locks.hold(user_id):
            now = self.clock()
            removed = False
            assignments = []
            for assignment in self._entries.get(user_id, ()):
                if assignment.role_id == role_id and assignment.is_active:
                    metadata = assignment.metadata
                    if reason:
                        metadata = metadata.model_copy(update={"reason": reason})
                    assignment = assignment.model_copy(
                        update={
                            "is_active": False,
                            "removed_by": removed_by,
                            "removed_at": now,
                            "metadata": metadata,
                        }
                    )
                    removed = True
                assignments.append(assignment)
            if not removed:
                return False
            self._save(user_id, assignments)

        logger.info(f"Removed role {role_id} from user {user_id} by {removed_by}")
        return True

    def revert_assignment(
        self,
        assignment: RoleAssignment,
        replaced: Optional[RoleAssignment],
        reverted_by: str,
        reason: Optional[str] = None,
    ) -> bool:
        """Undo a grant made by ``assign_role``.

        The grant is soft-removed and the assignment it replaced, if any, is
        reinstated. Returns False if the grant is no longer active.
        """
        user_id = assignment.user_id
        with self._user_locks.hold(user_id):
            now = self.clock()
            reverted = False
            assignments = []
            for entry in self._entries.get(user_id, ()):
                if entry.is_active and entry == assignment:
                    metadata = entry.metadata
                    if reason:
                        metadata = metadata.model_copy(update={"reason": reason})
                    entry = entry.model_copy(
                        update={"is_active": False, "removed_by": reverted_by, "removed_at": now, "metadata": metadata}
                    )
                    reverted = True
                assignments.append(entry)
            if not reverted:
                return False
            if replaced is not None:
                assignments.append(replaced.model_copy(update={"is_active": True, "removed_by": None, "removed_at": None}))
            self._save(user_id, assignments)

        logger.info(f"Reverted role {assignment.role_id} for user {user_id} by {reverted_by}")
        return True

    def get_user_roles(self, user_id: str, now: Optional[datetime] = None) -> List[str]:
        """Role ids of the user's effective assignments at ``now``."""
        now = now or self.clock()
        role_ids = []
        for assignment in self._entries.get(user_id, ()):
            if assignment.is_effective(now) and assignment.role_id not in role_ids:
                role_ids.append(assignment.role_id)
        return role_ids

    def get_assignments(self, user_id: str, include_inactive: bool = False) -> List[RoleAssignment]:
        assignments = list(self._entries.get(user_id, ()))
        if include_inactive:
            return assignments
        now = self.clock()
        return [a for a in assignments if a.is_effective(now)]

    def count_role_users(self, role_id: str, now: Optional[datetime] = None) -> int:
        """Number of users holding an effective assignment of the role."""
        now = now or self.clock()
        return sum(
            1 for assignments in self._entries.values()
            if any(a.role_id == role_id and a.is_effective(now) for a in assignments)
        )

    def users_with_roles(self, now: Optional[datetime] = None) -> Dict[str, List[str]]:
        """Map of user id to effective role ids, skipping users with none."""
        now = now or self.clock()
        result = {}
        for user_id in self._entries:
            role_ids = self.get_user_roles(user_id, now)
            if role_ids:
                result[user_id] = role_ids
        return result

    def sweep_expired(self, now: Optional[datetime] = None) -> List[RoleAssignment]:
        """Soft-remove active assignments whose expiry has passed."""
        now = now or self.clock()
        lapsed: List[RoleAssignment] = []
        for user_id in list(self._entries):
            with self._user_locks.hold(user_id):
                changed = False
                assignments = []
                for assignment in self._entries.get(user_id, ()):
                    if assignment.is_active and assignment.expires_at is not None and assignment.expires_at <= now:
                        assignment = assignment.model_copy(
                            update={"is_active": False, "removed_by": "system", "removed_at": now}
                        )
                        lapsed.append(assignment)
                        changed = True
                    assignments.append(assignment)
                if changed:
                    self._save(user_id, assignments)
        if lapsed:
            logger.info(f"Expired {len(lapsed)} role assignments")
        return lapsed
