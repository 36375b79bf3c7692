"""
Access-control service facade.

``AccessControlService`` wires the engine components together and is the
single entry point for embedding code. Its lifecycle is explicit:

    service = AccessControlService(config, store)   # construct, no I/O
    service.init(seed_policies)                     # load state, seed defaults
    service.check_access(...)                       # serve
    await service.start_sweeper()                   # optional background expiry
    await service.shutdown()

Every administrative operation takes an ``actor_id`` and writes an audit
entry, whether it succeeds or fails with a typed error.
"""

import asyncio
import logging
from contextlib import contextmanager
from datetime import datetime
from typing import Any, Dict, Iterator, List, Mapping, Optional, Tuple, Union

from accessctl.config import AccessControlConfig
from accessctl.config.logging import engine_logger
from accessctl.core.assignments import AssignmentLedger
from accessctl.core.audit import ActivityHook, AuditLog
from accessctl.core.authorizer import Authorizer, ScopeHook
from accessctl.core.catalog import PermissionCatalog
from accessctl.core.errors import AccessControlError, InvalidInput, InvalidState, NotFound
from accessctl.core.identity import IdentityStore, StorageIdentityStore
from accessctl.core.policies import PolicyEngine
from accessctl.core.reporting import SecurityReporter
from accessctl.core.requests import AccessRequestWorkflow
from accessctl.core.roles import RoleStore
from accessctl.models.access import (
    AUTH_EVENTS,
    AccessRequest,
    AccessRequestMetadata,
    AssignmentMetadata,
    AuditAction,
    AuditLogEntry,
    Decision,
    Permission,
    RequestStatus,
    Role,
    RoleAssignment,
    SecurityPolicy,
    SecurityReport,
)
from accessctl.storage.base import KeyValueStore
from accessctl.storage.memory import InMemoryStore
from accessctl.utils.helpers import utcnow

logger = logging.getLogger(__name__)

SYSTEM_ACTOR = "system"


def _deep_merge(base: Dict[str, Any], override: Mapping[str, Any]) -> Dict[str, Any]:
    result = dict(base)
    for key, value in override.items():
        if key in result and isinstance(result[key], dict) and isinstance(value, Mapping):
            result[key] = _deep_merge(result[key], value)
        else:
            result[key] = value
    return result


class AccessControlService:
    """RBAC engine facade."""

    CONFIG_TABLE = "config"
    CONFIG_KEY = "access_control"

    def __init__(
        self,
        config: Optional[AccessControlConfig] = None,
        store: Optional[KeyValueStore] = None,
        identity: Optional[IdentityStore] = None,
        clock=utcnow,
        custom_scope: Optional[ScopeHook] = None,
    ):
        self.config = config or AccessControlConfig()
        self.store = store or InMemoryStore()
        self.identity = identity or StorageIdentityStore(self.store)
        self.clock = clock

        self.catalog = PermissionCatalog()
        self.roles = RoleStore(
            self.store,
            self.catalog,
            inheritance_mode=self.config.engine.inheritance_mode,
            clock=clock,
            usage_counter=lambda role_id: self.ledger.count_role_users(role_id),
        )
        self.ledger = AssignmentLedger(self.store, self.identity, self.roles, clock=clock)
        self.audit = AuditLog(self.store, max_entries=self.config.audit_policy.max_entries, clock=clock)
        self.policies = PolicyEngine(self.store, clock=clock)
        self.requests = AccessRequestWorkflow(
            self.store,
            self.identity,
            self.roles,
            assign=self._assign_for_request,
            revert=self._revert_for_request,
            clock=clock,
            request_ttl_days=self.config.engine.request_ttl_days,
        )
        self.authorizer = Authorizer(
            self.identity,
            self.roles,
            self.ledger,
            self.policies,
            self.audit,
            config=lambda: self.config,
            clock=clock,
            custom_scope=custom_scope,
        )
        self.reporter = SecurityReporter(
            self.identity,
            self.roles,
            self.ledger,
            self.requests,
            self.audit,
            thresholds=lambda: self.config.report_thresholds,
            clock=clock,
        )

        self._initialized = False
        self._sweep_task: Optional[asyncio.Task] = None

    # Lifecycle

    def init(self, seed_policies: Optional[List[Mapping[str, Any]]] = None) -> "AccessControlService":
        """Load persisted state and seed system roles and policies. Idempotent."""
        stored = self.store.get(self.CONFIG_TABLE, self.CONFIG_KEY)
        if stored is not None:
            self.config = AccessControlConfig.model_validate(stored)
            logger.info("Using persisted access-control configuration")
        else:
            self.store.put(self.CONFIG_TABLE, self.CONFIG_KEY, self.config.model_dump(mode="json"))
        self._apply_config()

        self.roles.load()
        self.roles.seed_system_roles()
        self.ledger.load()
        self.requests.load()
        self.policies.load()
        self.audit.load()

        for definition in seed_policies or []:
            policy_id = definition.get("id")
            if policy_id and self.policies.get_policy(policy_id) is not None:
                continue
            self.policies.create_policy(definition, created_by=SYSTEM_ACTOR)

        self._initialized = True
        logger.info(
            f"Access control initialized: {len(self.roles)} roles, "
            f"{len(self.policies)} policies, {len(self.audit)} audit entries"
        )
        return self

    def _apply_config(self) -> None:
        self.roles.inheritance_mode = self.config.engine.inheritance_mode
        self.audit.max_entries = self.config.audit_policy.max_entries
        self.requests.request_ttl_days = self.config.engine.request_ttl_days

    def _require_ready(self) -> None:
        if not self._initialized:
            raise InvalidState("AccessControlService.init() has not been called")

    @property
    def initialized(self) -> bool:
        return self._initialized

    def add_activity_hook(self, hook: ActivityHook) -> None:
        """Receive a denormalized copy of every audit entry."""
        self.audit.add_hook(hook)

    async def start_sweeper(self, interval: Optional[float] = None) -> None:
        """Start the background expiry sweep on the running event loop."""
        if self._sweep_task is not None and not self._sweep_task.done():
            return
        interval = interval or self.config.engine.sweep_interval_seconds
        self._sweep_task = asyncio.create_task(self._sweep_loop(interval))
        logger.info(f"Started expiry sweeper every {interval}s")

    async def _sweep_loop(self, interval: float) -> None:
        while True:
            try:
                await asyncio.sleep(interval)
                await asyncio.to_thread(self.sweep_expired)
            except asyncio.CancelledError:
                break
            except Exception as e:
                logger.error(f"Error in expiry sweep: {e}", exc_info=True)

    async def stop_sweeper(self) -> None:
        if self._sweep_task is None:
            return
        self._sweep_task.cancel()
        await asyncio.gather(self._sweep_task, return_exceptions=True)
        self._sweep_task = None
        logger.info("Stopped expiry sweeper")

    async def shutdown(self) -> None:
        """Stop background work and release storage."""
        await self.stop_sweeper()
        self.close()

    def close(self) -> None:
        self.audit.close()
        self.store.close()

    # Decisions

    def check_access(
        self,
        user_id: str,
        resource: str,
        action: str,
        resource_data: Optional[Mapping[str, Any]] = None,
        context: Optional[Mapping[str, Any]] = None,
    ) -> Decision:
        """Authorize a request. Denials are returned, never raised."""
        self._require_ready()
        return self.authorizer.has_permission(user_id, resource, action, resource_data, context)

    # Auditing helpers

    @contextmanager
    def _attempt(
        self,
        operation: str,
        audit_action: AuditAction,
        actor_id: str,
        resource: str,
        resource_id: Optional[str],
        **metadata: Any,
    ) -> Iterator[None]:
        """Audit and re-raise typed failures of an administrative operation."""
        try:
            yield
        except AccessControlError as e:
            self.audit.log(
                actor_id,
                audit_action,
                False,
                resource=resource,
                resource_id=resource_id,
                failure_reason=str(e),
                performed_by=actor_id,
                metadata={"operation": operation, "error_code": e.code, **metadata},
            )
            engine_logger.log_admin_action(actor_id, operation, resource_id or resource, False, error=str(e))
            raise

    def _succeeded(
        self,
        operation: str,
        audit_action: AuditAction,
        actor_id: str,
        resource: str,
        resource_id: Optional[str],
        previous_value: Any = None,
        new_value: Any = None,
        **metadata: Any,
    ) -> AuditLogEntry:
        entry = self.audit.log(
            actor_id,
            audit_action,
            True,
            resource=resource,
            resource_id=resource_id,
            previous_value=previous_value,
            new_value=new_value,
            performed_by=actor_id,
            metadata={"operation": operation, **metadata},
        )
        engine_logger.log_admin_action(actor_id, operation, resource_id or resource, True)
        return entry

    def _rejected(
        self,
        operation: str,
        audit_action: AuditAction,
        actor_id: str,
        resource: str,
        resource_id: Optional[str],
        reason: str,
        **metadata: Any,
    ) -> AuditLogEntry:
        entry = self.audit.log(
            actor_id,
            audit_action,
            False,
            resource=resource,
            resource_id=resource_id,
            failure_reason=reason,
            performed_by=actor_id,
            metadata={"operation": operation, **metadata},
        )
        engine_logger.log_admin_action(actor_id, operation, resource_id or resource, False, error=reason)
        return entry

    # Role assignments

    def assign_role(
        self,
        user_id: str,
        role_id: str,
        actor_id: str,
        expires_at: Optional[datetime] = None,
        metadata: Optional[Union[AssignmentMetadata, Mapping[str, Any]]] = None,
    ) -> RoleAssignment:
        """Grant ``role_id`` to ``user_id``, replacing any active grant of it.

        Raises:
            NotFound: Unknown user or role.
            InvalidInput: Expiry in the past or malformed metadata.
        """
        self._require_ready()
        assignment, _ = self._grant(user_id, role_id, actor_id, expires_at, metadata)
        return assignment

    def _grant(self, user_id, role_id, actor_id, expires_at, metadata) -> Tuple[RoleAssignment, Optional[RoleAssignment]]:
        with self._attempt("assign_role", AuditAction.ROLE_ASSIGNED, actor_id, "role_assignment", user_id,
                           role_id=role_id):
            if metadata is not None and not isinstance(metadata, AssignmentMetadata):
                try:
                    metadata = AssignmentMetadata.model_validate(metadata)
                except ValueError as e:
                    raise InvalidInput(f"Invalid assignment metadata: {e}", subject=user_id) from e
            assignment, replaced = self.ledger.assign_role(user_id, role_id, actor_id, expires_at, metadata)

        self._succeeded(
            "assign_role",
            AuditAction.ROLE_ASSIGNED,
            actor_id,
            "role_assignment",
            user_id,
            previous_value=replaced.model_dump(mode="json") if replaced else None,
            new_value=assignment.model_dump(mode="json"),
            role_id=role_id,
        )
        return assignment, replaced

    def _assign_for_request(self, user_id, role_id, assigned_by, expires_at, metadata):
        return self._grant(user_id, role_id, assigned_by, expires_at, metadata)

    def _revert_for_request(self, assignment, replaced, actor_id, reason) -> None:
        if self.ledger.revert_assignment(assignment, replaced, actor_id, reason):
            self._succeeded(
                "revert_role", AuditAction.ROLE_REMOVED, actor_id, "role_assignment", assignment.user_id,
                previous_value=assignment.model_dump(mode="json"),
                new_value=replaced.model_dump(mode="json") if replaced else None,
                role_id=assignment.role_id, reason=reason,
            )

    def remove_role(self, user_id: str, role_id: str, actor_id: str, reason: Optional[str] = None) -> bool:
        """Soft-remove an active assignment. Returns False if there was none."""
        self._require_ready()
        removed = self.ledger.remove_role(user_id, role_id, actor_id, reason)
        if removed:
            self._succeeded(
                "remove_role", AuditAction.ROLE_REMOVED, actor_id, "role_assignment", user_id,
                previous_value={"user_id": user_id, "role_id": role_id},
                role_id=role_id, reason=reason,
            )
        else:
            self._rejected(
                "remove_role", AuditAction.ROLE_REMOVED, actor_id, "role_assignment", user_id,
                "No active assignment", role_id=role_id,
            )
        return removed

    def get_user_roles(self, user_id: str) -> List[str]:
        return self.ledger.get_user_roles(user_id)

    def get_assignments(self, user_id: str, include_inactive: bool = False) -> List[RoleAssignment]:
        return self.ledger.get_assignments(user_id, include_inactive)

    # Roles

    def create_role(
        self,
        name: str,
        description: str,
        permissions: List[Union[Permission, Mapping[str, Any]]],
        actor_id: str,
        hierarchy: int = 1,
        inherits_from: Optional[List[str]] = None,
    ) -> Role:
        self._require_ready()
        with self._attempt("create_role", AuditAction.ROLE_CREATED, actor_id, "role_management", None,
                           role_name=name):
            try:
                role = self.roles.create_role(
                    name,
                    description,
                    permissions,
                    created_by=actor_id,
                    hierarchy=hierarchy,
                    inherits_from=inherits_from,
                )
            except ValueError as e:
                raise InvalidInput(f"Invalid role definition: {e}") from e

        self._succeeded(
            "create_role", AuditAction.ROLE_CREATED, actor_id, "role_management", role.id,
            new_value={"name": role.name, "permissions": len(role.permissions),
                       "inherits_from": role.inherits_from, "hierarchy": role.hierarchy},
            role_name=role.name,
        )
        return role

    def update_role(self, role_id: str, changes: Mapping[str, Any], actor_id: str) -> Role:
        self._require_ready()
        with self._attempt("update_role", AuditAction.ROLE_UPDATED, actor_id, "role_management", role_id):
            previous = self.roles.get_role(role_id)
            try:
                role = self.roles.update_role(role_id, dict(changes), updated_by=actor_id)
            except ValueError as e:
                raise InvalidInput(f"Invalid role update: {e}", subject=role_id) from e

        changed = sorted(changes)
        self._succeeded(
            "update_role", AuditAction.ROLE_UPDATED, actor_id, "role_management", role_id,
            previous_value={key: previous.model_dump(mode="json")[key] for key in changed} if previous else None,
            new_value={key: role.model_dump(mode="json")[key] for key in changed},
        )
        return role

    def delete_role(self, role_id: str, actor_id: str) -> Role:
        """Delete a custom role.

        Raises:
            NotFound: Unknown role.
            RoleProtected: System role.
            RoleInUse: The role still has effective assignments.
        """
        self._require_ready()
        with self._attempt("delete_role", AuditAction.ROLE_DELETED, actor_id, "role_management", role_id):
            role = self.roles.delete_role(role_id, deleted_by=actor_id)

        self._succeeded(
            "delete_role", AuditAction.ROLE_DELETED, actor_id, "role_management", role_id,
            previous_value={"name": role.name, "permissions": len(role.permissions)},
        )
        return role

    def get_role(self, role_id: str) -> Optional[Role]:
        return self.roles.get_role(role_id)

    def list_roles(self) -> List[Role]:
        return self.roles.list_roles()

    def get_effective_permissions(self, role_id: str) -> List[Permission]:
        if self.roles.get_role(role_id) is None:
            raise NotFound(f"Role '{role_id}' not found", subject=role_id)
        return self.roles.get_effective_permissions(role_id)

    # Access requests

    def create_access_request(
        self,
        user_id: str,
        actor_id: str,
        requested_roles: Optional[List[str]] = None,
        requested_permissions: Optional[List[Any]] = None,
        reason: str = "",
        justification: str = "",
        metadata: Optional[Union[AccessRequestMetadata, Mapping[str, Any]]] = None,
    ) -> AccessRequest:
        self._require_ready()
        with self._attempt("create_access_request", AuditAction.ACCESS_REQUESTED, actor_id,
                           "access_request", None, target_user_id=user_id):
            if metadata is not None and not isinstance(metadata, AccessRequestMetadata):
                try:
                    metadata = AccessRequestMetadata.model_validate(metadata)
                except ValueError as e:
                    raise InvalidInput(f"Invalid request metadata: {e}", subject=user_id) from e
            try:
                request = self.requests.create_request(
                    user_id,
                    requested_by=actor_id,
                    requested_roles=requested_roles,
                    requested_permissions=requested_permissions,
                    reason=reason,
                    justification=justification,
                    metadata=metadata,
                )
            except ValueError as e:
                raise InvalidInput(f"Invalid access request: {e}", subject=user_id) from e

        self._succeeded(
            "create_access_request", AuditAction.ACCESS_REQUESTED, actor_id, "access_request", request.id,
            new_value={"user_id": user_id, "requested_roles": request.requested_roles,
                       "requested_permissions": [p.id for p in request.requested_permissions]},
            target_user_id=user_id, urgency=request.metadata.urgency.value,
        )
        return request

    def approve_access_request(self, request_id: str, actor_id: str) -> bool:
        """Approve a pending request. Returns False if it is unknown or not pending."""
        self._require_ready()
        with self._attempt("approve_access_request", AuditAction.REQUEST_APPROVED, actor_id,
                           "access_request", request_id):
            approved = self.requests.approve(request_id, actor_id)

        if approved is None:
            self._rejected(
                "approve_access_request", AuditAction.REQUEST_APPROVED, actor_id, "access_request",
                request_id, self._not_pending_reason(request_id),
            )
            return False
        self._succeeded(
            "approve_access_request", AuditAction.REQUEST_APPROVED, actor_id, "access_request", request_id,
            previous_value={"status": RequestStatus.PENDING.value},
            new_value={"status": approved.status.value, "granted_roles": approved.requested_roles},
            target_user_id=approved.user_id,
        )
        return True

    def reject_access_request(self, request_id: str, actor_id: str, reason: str = "") -> bool:
        """Reject a pending request. Returns False if it is unknown or not pending."""
        self._require_ready()
        rejected = self.requests.reject(request_id, actor_id, reason)
        if rejected is None:
            self._rejected(
                "reject_access_request", AuditAction.REQUEST_REJECTED, actor_id, "access_request",
                request_id, self._not_pending_reason(request_id),
            )
            return False
        self._succeeded(
            "reject_access_request", AuditAction.REQUEST_REJECTED, actor_id, "access_request", request_id,
            previous_value={"status": RequestStatus.PENDING.value},
            new_value={"status": rejected.status.value, "rejection_reason": reason},
            target_user_id=rejected.user_id,
        )
        return True

    def _not_pending_reason(self, request_id: str) -> str:
        request = self.requests.get_request(request_id)
        if request is None:
            return f"Access request '{request_id}' not found"
        return f"Access request is {request.status.value}"

    def get_access_request(self, request_id: str) -> Optional[AccessRequest]:
        return self.requests.get_request(request_id)

    def list_access_requests(
        self,
        status: Optional[RequestStatus] = None,
        user_id: Optional[str] = None,
    ) -> List[AccessRequest]:
        return self.requests.list_requests(status=status, user_id=user_id)

    # Policies

    def create_policy(self, definition: Mapping[str, Any], actor_id: str) -> SecurityPolicy:
        self._require_ready()
        with self._attempt("create_policy", AuditAction.POLICY_CREATED, actor_id, "security_policy",
                           definition.get("id")):
            policy = self.policies.create_policy(definition, created_by=actor_id)

        self._succeeded(
            "create_policy", AuditAction.POLICY_CREATED, actor_id, "security_policy", policy.id,
            new_value={"name": policy.name, "rules": len(policy.rules),
                       "enforcement_level": policy.enforcement_level.value},
        )
        return policy

    def update_policy(self, policy_id: str, changes: Mapping[str, Any], actor_id: str) -> SecurityPolicy:
        self._require_ready()
        with self._attempt("update_policy", AuditAction.POLICY_UPDATED, actor_id, "security_policy", policy_id):
            previous = self.policies.get_policy(policy_id)
            policy = self.policies.update_policy(policy_id, changes, updated_by=actor_id)

        changed = sorted(changes)
        self._succeeded(
            "update_policy", AuditAction.POLICY_UPDATED, actor_id, "security_policy", policy_id,
            previous_value={key: previous.model_dump(mode="json")[key] for key in changed} if previous else None,
            new_value={key: policy.model_dump(mode="json")[key] for key in changed},
        )
        return policy

    def delete_policy(self, policy_id: str, actor_id: str) -> SecurityPolicy:
        self._require_ready()
        with self._attempt("delete_policy", AuditAction.POLICY_DELETED, actor_id, "security_policy", policy_id):
            policy = self.policies.delete_policy(policy_id)

        self._succeeded(
            "delete_policy", AuditAction.POLICY_DELETED, actor_id, "security_policy", policy_id,
            previous_value={"name": policy.name, "rules": len(policy.rules)},
        )
        return policy

    def get_policy(self, policy_id: str) -> Optional[SecurityPolicy]:
        return self.policies.get_policy(policy_id)

    def list_policies(self) -> List[SecurityPolicy]:
        return self.policies.list_policies()

    # Configuration

    def update_config(self, changes: Mapping[str, Any], actor_id: str) -> AccessControlConfig:
        """Validate, persist and audit a partial configuration update.

        Raises:
            InvalidInput: The merged configuration does not validate.
        """
        self._require_ready()
        with self._attempt("update_config", AuditAction.CONFIG_UPDATED, actor_id, "config", self.CONFIG_KEY):
            previous = self.config.model_dump(mode="json")
            try:
                updated = AccessControlConfig.model_validate(_deep_merge(previous, changes))
            except ValueError as e:
                raise InvalidInput(f"Invalid configuration: {e}", subject=self.CONFIG_KEY) from e
            self.store.put(self.CONFIG_TABLE, self.CONFIG_KEY, updated.model_dump(mode="json"))
            self.config = updated
            self._apply_config()

        new = updated.model_dump(mode="json")
        self._succeeded(
            "update_config", AuditAction.CONFIG_UPDATED, actor_id, "config", self.CONFIG_KEY,
            previous_value={key: previous[key] for key in changes if key in previous},
            new_value={key: new[key] for key in changes if key in new},
        )
        return updated

    # Audit and reporting

    def record_auth_event(
        self,
        user_id: str,
        event: Union[AuditAction, str],
        success: bool = True,
        failure_reason: Optional[str] = None,
        ip_address: Optional[str] = None,
        user_agent: Optional[str] = None,
        session_id: Optional[str] = None,
        metadata: Optional[Mapping[str, Any]] = None,
    ) -> AuditLogEntry:
        """Record an authentication event reported by the identity collaborator."""
        self._require_ready()
        try:
            event = AuditAction(event)
        except ValueError:
            raise InvalidInput(f"Unknown audit event '{event}'")
        if event not in AUTH_EVENTS:
            raise InvalidInput(f"'{event.value}' is not an authentication event")
        return self.audit.log(
            user_id,
            event,
            success,
            resource="authentication",
            failure_reason=failure_reason,
            performed_by=user_id,
            ip_address=ip_address,
            user_agent=user_agent,
            session_id=session_id,
            metadata=dict(metadata or {}),
        )

    def query_audit_log(
        self,
        user_id: Optional[str] = None,
        resource: Optional[str] = None,
        action: Optional[Union[AuditAction, str]] = None,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
        success: Optional[bool] = None,
        limit: Optional[int] = None,
    ) -> List[AuditLogEntry]:
        try:
            return self.audit.query(user_id, resource, action, start, end, success, limit)
        except ValueError as e:
            raise InvalidInput(f"Invalid audit filter: {e}") from e

    def generate_security_report(self) -> SecurityReport:
        self._require_ready()
        return self.reporter.generate()

    # Expiry

    def sweep_expired(self, now: Optional[datetime] = None) -> Dict[str, int]:
        """Expire overdue requests and lapsed assignments, purge old audit entries."""
        now = now or self.clock()

        expired_requests = self.requests.sweep_expired(now)
        for request in expired_requests:
            self.audit.log(
                SYSTEM_ACTOR,
                AuditAction.REQUEST_EXPIRED,
                True,
                resource="access_request",
                resource_id=request.id,
                previous_value={"status": RequestStatus.PENDING.value},
                new_value={"status": RequestStatus.EXPIRED.value},
                performed_by=SYSTEM_ACTOR,
                metadata={"target_user_id": request.user_id},
            )

        lapsed = self.ledger.sweep_expired(now)
        for assignment in lapsed:
            self.audit.log(
                SYSTEM_ACTOR,
                AuditAction.ROLE_REMOVED,
                True,
                resource="role_assignment",
                resource_id=assignment.user_id,
                previous_value={"user_id": assignment.user_id, "role_id": assignment.role_id},
                performed_by=SYSTEM_ACTOR,
                metadata={"role_id": assignment.role_id, "reason": "expired"},
            )

        purged = self.audit.purge_older_than(self.config.audit_policy.retention_days, now)
        result = {
            "expired_requests": len(expired_requests),
            "expired_assignments": len(lapsed),
            "purged_audit_entries": purged,
        }
        if any(result.values()):
            logger.info(f"Expiry sweep: {result}")
        return result
