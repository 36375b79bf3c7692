"""
Access request workflow.

State machine for users asking for roles they do not hold:

    pending --approve--> approved
    pending --reject---> rejected
    pending --sweep----> expired

Every non-pending state is terminal. Approve and reject on anything but a
pending request return False and leave the request untouched.
"""

import logging
import threading
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, List, Optional, Tuple

from accessctl.core.errors import InvalidInput, NotFound
from accessctl.core.identity import IdentityStore
from accessctl.core.locks import KeyedLock
from accessctl.core.roles import RoleStore
from accessctl.models.access import (
    AccessRequest,
    AccessRequestMetadata,
    AssignmentMetadata,
    Permission,
    RequestStatus,
    RoleAssignment,
)
from accessctl.storage.base import KeyValueStore
from accessctl.utils.helpers import generate_id, utcnow

logger = logging.getLogger(__name__)

# (user_id, role_id, assigned_by, expires_at, metadata) -> (assignment, replaced assignment or None)
AssignFn = Callable[[str, str, str, Optional[datetime], AssignmentMetadata], Tuple[RoleAssignment, Optional[RoleAssignment]]]
# (assignment, replaced, reverted_by, reason) -> None
RevertFn = Callable[[RoleAssignment, Optional[RoleAssignment], str, str], Any]


class AccessRequestWorkflow:
    """Creates, transitions and expires access requests."""

    TABLE = "access_requests"

    def __init__(
        self,
        store: KeyValueStore,
        identity: IdentityStore,
        roles: RoleStore,
        assign: AssignFn,
        revert: RevertFn,
        clock: Callable = utcnow,
        request_ttl_days: int = 30,
    ):
        self.store = store
        self.identity = identity
        self.roles = roles
        self.assign = assign
        self.revert = revert
        self.clock = clock
        self.request_ttl_days = request_ttl_days
        self._requests: Dict[str, AccessRequest] = {}
        self._request_locks = KeyedLock()
        self._swap_lock = threading.Lock()

    def load(self) -> int:
        self._requests = {
            request_id: AccessRequest.model_validate(data)
            for request_id, data in self.store.list(self.TABLE).items()
        }
        logger.info(f"Loaded {len(self._requests)} access requests from storage")
        return len(self._requests)

    def _save(self, request: AccessRequest) -> None:
        self.store.put(self.TABLE, request.id, request.model_dump(mode="json"))
        with self._swap_lock:
            requests = dict(self._requests)
            requests[request.id] = request
            self._requests = requests

    def create_request(
        self,
        user_id: str,
        requested_by: str,
        requested_roles: Optional[List[str]] = None,
        requested_permissions: Optional[List[Any]] = None,
        reason: str = "",
        justification: str = "",
        metadata: Optional[AccessRequestMetadata] = None,
    ) -> AccessRequest:
        """Open a pending request.

        Raises:
            NotFound: The user or a requested role does not exist.
            InvalidInput: Nothing was requested.
        """
        if self.identity.get_user(user_id) is None:
            raise NotFound(f"User '{user_id}' not found", subject=user_id)
        requested_roles = list(dict.fromkeys(requested_roles or []))
        for role_id in requested_roles:
            if self.roles.get_role(role_id) is None:
                raise NotFound(f"Role '{role_id}' not found", subject=role_id)
        permissions = [
            p if isinstance(p, Permission) else Permission.model_validate(p)
            for p in requested_permissions or []
        ]
        if not requested_roles and not permissions:
            raise InvalidInput("An access request must name at least one role or permission", subject=user_id)

        now = self.clock()
        request = AccessRequest(
            id=generate_id("req"),
            user_id=user_id,
            requested_roles=requested_roles,
            requested_permissions=permissions,
            reason=reason,
            justification=justification,
            requested_by=requested_by,
            requested_at=now,
            expires_at=now + timedelta(days=self.request_ttl_days),
            metadata=metadata or AccessRequestMetadata(),
        )
        self._save(request)
        logger.info(f"Access request {request.id} created for user {user_id}")
        return request

    def approve(self, request_id: str, approved_by: str) -> Optional[AccessRequest]:
        """Approve a pending request and grant its roles.

        Grants are all-or-nothing: if one fails, the grants already made for
        this request are reverted and the request stays pending.

        Returns:
            The approved request, or None if it is unknown or not pending.

        Raises:
            NotFound: The user or a requested role no longer exists.
        """
        with self._request_locks.hold(request_id):
            request = self._requests.get(request_id)
            if request is None or not request.is_pending:
                return None

            now = self.clock()
            if self.identity.get_user(request.user_id) is None:
                raise NotFound(f"User '{request.user_id}' no longer exists", subject=request.user_id)
            for role_id in request.requested_roles:
                if self.roles.get_role(role_id) is None:
                    raise NotFound(f"Role '{role_id}' no longer exists", subject=role_id)

            expires_at = None
            if request.metadata.temporary_access and request.metadata.access_duration:
                expires_at = now + timedelta(days=request.metadata.access_duration)
            assignment_metadata = AssignmentMetadata(
                reason=f"Access request {request.id}",
                temporary_access=request.metadata.temporary_access,
            )
            granted = []
            try:
                for role_id in request.requested_roles:
                    granted.append(self.assign(request.user_id, role_id, approved_by, expires_at, assignment_metadata))
                approved = request.model_copy(
                    update={"status": RequestStatus.APPROVED, "approved_by": approved_by, "approved_at": now}
                )
                self._save(approved)
            except Exception:
                logger.error(f"Approval of access request {request_id} failed, reverting {len(granted)} grant(s)")
                self._revert_grants(request, granted, approved_by)
                raise

        logger.info(f"Access request {request_id} approved by {approved_by}")
        return approved

    def _revert_grants(self, request: AccessRequest, granted: List[Tuple], reverted_by: str) -> None:
        reason = f"Approval of access request {request.id} failed"
        for assignment, replaced in reversed(granted):
            try:
                self.revert(assignment, replaced, reverted_by, reason)
            except Exception as e:
                logger.error(f"Could not revert role {assignment.role_id} for user {assignment.user_id}: {e}")

    def reject(self, request_id: str, rejected_by: str, reason: str = "") -> Optional[AccessRequest]:
        """Reject a pending request. Returns None if it is unknown or not pending."""
        with self._request_locks.hold(request_id):
            request = self._requests.get(request_id)
            if request is None or not request.is_pending:
                return None
            rejected = request.model_copy(
                update={
                    "status": RequestStatus.REJECTED,
                    "rejected_by": rejected_by,
                    "rejected_at": self.clock(),
                    "rejection_reason": reason,
                }
            )
            self._save(rejected)

        logger.info(f"Access request {request_id} rejected by {rejected_by}")
        return rejected

    def sweep_expired(self, now: Optional[datetime] = None) -> List[AccessRequest]:
        """Move pending requests past their deadline to ``expired``."""
        now = now or self.clock()
        expired = []
        for request_id, request in list(self._requests.items()):
            if not request.is_pending or request.expires_at is None or request.expires_at > now:
                continue
            with self._request_locks.hold(request_id):
                current = self._requests.get(request_id)
                if current is None or not current.is_pending:
                    continue
                updated = current.model_copy(update={"status": RequestStatus.EXPIRED})
                self._save(updated)
                expired.append(updated)
        if expired:
            logger.info(f"Expired {len(expired)} pending access requests")
        return expired

    def get_request(self, request_id: str) -> Optional[AccessRequest]:
        return self._requests.get(request_id)

    def list_requests(
        self,
        status: Optional[RequestStatus] = None,
        user_id: Optional[str] = None,
    ) -> List[AccessRequest]:
        """Requests newest first, optionally filtered."""
        requests = sorted(self._requests.values(), key=lambda r: (r.requested_at, r.id), reverse=True)
        if status is not None:
            requests = [r for r in requests if r.status == RequestStatus(status)]
        if user_id is not None:
            requests = [r for r in requests if r.user_id == user_id]
        return requests

    def count_pending(self) -> int:
        return sum(1 for r in self._requests.values() if r.is_pending)
