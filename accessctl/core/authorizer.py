"""
Decision engine.

``Authorizer.has_permission`` resolves a user's effective permissions,
matches the request, applies scope and policy checks, determines whether MFA
is required and writes exactly one audit entry for the decision.

Evaluation itself has no side effects. Whatever happens during evaluation
(unknown user, no matching permission, policy veto, storage failure, rule
error, deadline overrun) is turned into an outcome first; the single audit
write happens afterwards. Errors never produce an allow.
"""

import logging
import time
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable, Dict, List, Mapping, Optional, Tuple

from accessctl.config import AccessControlConfig
from accessctl.config.logging import engine_logger
from accessctl.core.assignments import AssignmentLedger
from accessctl.core.audit import AuditLog
from accessctl.core.conditions import evaluate_conditions
from accessctl.core.errors import AccessControlSystemError
from accessctl.core.identity import IdentityStore
from accessctl.core.policies import PolicyEngine
from accessctl.core.roles import RoleStore
from accessctl.models.access import (
    AuditAction,
    Decision,
    Permission,
    PermissionScope,
    User,
)
from accessctl.utils.helpers import first_present, utcnow

logger = logging.getLogger(__name__)

REASON_USER_INACTIVE = "User not found or inactive"
REASON_INSUFFICIENT = "Insufficient permissions"
REASON_SCOPE = "Access scope restrictions"
REASON_MFA = "MFA verification required"
REASON_SYSTEM_ERROR = "System error"

# Resource data keys consulted by scope checks; camelCase aliases are accepted.
SCOPE_FIELDS = {
    "owner_id": ("owner_id", "ownerId"),
    "created_by": ("created_by", "createdBy"),
    "department": ("department",),
    "assigned_to": ("assigned_to", "assignedTo"),
    "assigned_users": ("assigned_users", "assignedUsers"),
}

# Context keys copied onto the audit entry.
REQUEST_FIELDS = ("ip_address", "user_agent", "session_id")

ScopeHook = Callable[[Permission, User, Mapping[str, Any], Mapping[str, Any]], bool]


def _allow_custom_scope(permission, user, resource_data, context) -> bool:
    return True


def _scope_value(resource_data: Mapping[str, Any], name: str) -> Any:
    for key in SCOPE_FIELDS[name]:
        found, value = first_present(key, resource_data)
        if found:
            return value
    return None


def check_scope(
    permission: Permission,
    user: User,
    resource_data: Mapping[str, Any],
    context: Mapping[str, Any],
    custom_scope: ScopeHook = _allow_custom_scope,
) -> bool:
    """Restrict a matched permission to the resource instances its scope allows."""
    scope = permission.scope
    if scope == PermissionScope.ALL:
        return True
    if scope == PermissionScope.OWN:
        return user.id in (_scope_value(resource_data, "owner_id"), _scope_value(resource_data, "created_by"))
    if scope == PermissionScope.TEAM:
        department = user.metadata.department
        return department is not None and department == _scope_value(resource_data, "department")
    if scope == PermissionScope.ASSIGNED:
        if _scope_value(resource_data, "assigned_to") == user.id:
            return True
        assigned_users = _scope_value(resource_data, "assigned_users")
        return isinstance(assigned_users, (list, tuple)) and user.id in assigned_users
    if scope == PermissionScope.CUSTOM:
        return bool(custom_scope(permission, user, resource_data, context))
    return False


@dataclass
class _Outcome:
    allowed: bool
    reason: Optional[str] = None
    requires_mfa: bool = False
    requires_approval: bool = False
    permission: Optional[Permission] = None
    failure_reason: Optional[str] = None
    metadata: Dict[str, Any] = field(default_factory=dict)


class Authorizer:
    """Orchestrates a single authorization decision."""

    def __init__(
        self,
        identity: IdentityStore,
        roles: RoleStore,
        ledger: AssignmentLedger,
        policies: PolicyEngine,
        audit: AuditLog,
        config: Callable[[], AccessControlConfig],
        clock: Callable = utcnow,
        custom_scope: Optional[ScopeHook] = None,
    ):
        self.identity = identity
        self.roles = roles
        self.ledger = ledger
        self.policies = policies
        self.audit = audit
        self.config = config
        self.clock = clock
        self.custom_scope = custom_scope or _allow_custom_scope

    def has_permission(
        self,
        user_id: str,
        resource: str,
        action: str,
        resource_data: Optional[Mapping[str, Any]] = None,
        context: Optional[Mapping[str, Any]] = None,
    ) -> Decision:
        """Decide whether ``user_id`` may perform ``action`` on ``resource``.

        Never raises. Every call appends exactly one audit entry.
        """
        resource_data = resource_data or {}
        context = context or {}
        started = time.monotonic()
        timeout = self.config().engine.decision_timeout_seconds
        deadline = started + timeout

        try:
            outcome = self._evaluate(user_id, resource, action, resource_data, context, deadline)
            self._check_deadline(deadline, timeout)
        except Exception as e:
            logger.error(f"Authorization of {user_id} for {resource}:{action} failed: {e}", exc_info=True)
            outcome = _Outcome(
                allowed=False,
                reason=REASON_SYSTEM_ERROR,
                failure_reason=f"{type(e).__name__}: {e}",
            )

        elapsed_ms = round((time.monotonic() - started) * 1000, 3)
        outcome.metadata["elapsed_ms"] = elapsed_ms
        audit_id, persisted = self._record(user_id, resource, action, resource_data, context, outcome)
        if not persisted:
            outcome = _Outcome(allowed=False, reason=REASON_SYSTEM_ERROR)

        engine_logger.log_decision(
            user_id,
            resource,
            action,
            outcome.allowed,
            reason=outcome.reason,
            elapsed_ms=elapsed_ms,
            audit_id=audit_id,
        )
        return Decision(
            allowed=outcome.allowed,
            reason=outcome.reason,
            requires_mfa=outcome.requires_mfa,
            requires_approval=outcome.requires_approval,
            matched_permission_id=outcome.permission.id if outcome.permission else None,
            audit_id=audit_id,
        )

    @staticmethod
    def _check_deadline(deadline: float, timeout: float) -> None:
        if time.monotonic() > deadline:
            raise AccessControlSystemError(f"Decision exceeded {timeout}s deadline")

    def resolve_permissions(self, role_ids: List[str]) -> List[Permission]:
        """Effective permissions of a role set, senior roles first, de-duplicated."""
        roles = [self.roles.get_role(role_id) for role_id in role_ids]
        ordered = sorted((r for r in roles if r is not None), key=lambda r: (-r.hierarchy, r.id))
        permissions: List[Permission] = []
        seen = set()
        for role in ordered:
            for permission in self.roles.get_effective_permissions(role.id):
                if permission.dedup_key in seen:
                    continue
                seen.add(permission.dedup_key)
                permissions.append(permission)
        return permissions

    def _evaluate(
        self,
        user_id: str,
        resource: str,
        action: str,
        resource_data: Mapping[str, Any],
        context: Mapping[str, Any],
        deadline: float,
    ) -> _Outcome:
        timeout = self.config().engine.decision_timeout_seconds
        now: datetime = self.clock()

        user = self.identity.get_user(user_id)
        if user is None or not user.is_active:
            return _Outcome(allowed=False, reason=REASON_USER_INACTIVE)

        role_ids = self.ledger.get_user_roles(user_id, now)
        permissions = self.resolve_permissions(role_ids)
        self._check_deadline(deadline, timeout)

        matched = None
        for permission in permissions:
            if permission.matches(resource, action) and evaluate_conditions(
                permission.conditions, resource_data, context
            ):
                matched = permission
                break
        if matched is None:
            return _Outcome(allowed=False, reason=REASON_INSUFFICIENT, metadata={"roles": role_ids})

        base_metadata = {"roles": role_ids, "permission_id": matched.id, "scope": matched.scope.value}
        if not check_scope(matched, user, resource_data, context, self.custom_scope):
            return _Outcome(allowed=False, reason=REASON_SCOPE, permission=matched, metadata=base_metadata)
        self._check_deadline(deadline, timeout)

        bag = {
            "user_id": user_id,
            "resource": resource,
            "action": action,
            "resource_data": dict(resource_data),
            "context": dict(context),
            "user": user.model_dump(mode="json"),
            "roles": list(role_ids),
            "permission": {
                "id": matched.id,
                "scope": matched.scope.value,
                "risk_level": matched.metadata.risk_level.value if matched.metadata.risk_level else None,
            },
            "now": now,
        }
        evaluation = self.policies.evaluate(bag, now)
        if evaluation.matches:
            base_metadata["policy_matches"] = [m.to_dict() for m in evaluation.matches]
        if evaluation.denied:
            base_metadata["policy_id"] = evaluation.veto.policy_id
            base_metadata["rule_id"] = evaluation.veto.rule_id
            base_metadata["enforcement_level"] = evaluation.veto.enforcement_level
            return _Outcome(
                allowed=False,
                reason=evaluation.reason,
                requires_approval=evaluation.requires_approval,
                permission=matched,
                metadata=base_metadata,
            )

        mfa = self.config().mfa_policy
        requires_mfa = (
            mfa.required
            and (
                any(role_id in mfa.required_for_roles for role_id in role_ids)
                or action in mfa.required_for_actions
            )
        ) or evaluation.requires_mfa
        base_metadata["requires_mfa"] = requires_mfa

        return _Outcome(
            allowed=True,
            reason=REASON_MFA if requires_mfa else None,
            requires_mfa=requires_mfa,
            permission=matched,
            metadata=base_metadata,
        )

    def _record(
        self,
        user_id: str,
        resource: str,
        action: str,
        resource_data: Mapping[str, Any],
        context: Mapping[str, Any],
        outcome: _Outcome,
    ) -> Tuple[str, bool]:
        """Write the decision's audit entry. Returns (audit id, persisted)."""
        request_fields = {key: context.get(key) for key in REQUEST_FIELDS if isinstance(context.get(key), str)}
        resource_id = resource_data.get("id")
        metadata = dict(outcome.metadata)
        metadata["requested_action"] = action
        fields = dict(
            resource=resource,
            resource_id=str(resource_id) if resource_id is not None else None,
            performed_by=user_id,
            metadata=metadata,
            **request_fields,
        )
        if outcome.permission is not None:
            fields["risk_score"] = outcome.permission.risk_score

        try:
            if outcome.allowed:
                entry = self.audit.log(user_id, AuditAction.PERMISSION_GRANTED, True, **fields)
            else:
                entry = self.audit.log(
                    user_id,
                    AuditAction.ACCESS_DENIED,
                    False,
                    failure_reason=outcome.failure_reason or outcome.reason,
                    **fields,
                )
            return entry.id, True
        except Exception as e:
            logger.error(f"Failed to persist audit entry for {user_id}: {e}", exc_info=True)
            fields["metadata"] = {"requested_action": action, "original_outcome": outcome.reason}
            fields.pop("risk_score", None)
            entry = self.audit.log(
                user_id,
                AuditAction.ACCESS_DENIED,
                False,
                persist=False,
                failure_reason=f"Audit persistence failed: {e}",
                **fields,
            )
            return entry.id, False
