"""
Access-control data models.

This module defines the persisted entities of the engine: permissions and
their conditions, roles, role assignments, access requests, security
policies and audit log entries. All models round-trip through
``model_dump(mode="json")`` / ``model_validate`` for storage.
"""

from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, StrictBool, StrictFloat, StrictInt, StrictStr

from accessctl.utils.helpers import utcnow


# Sentinels checked before literal comparison when matching permissions.
WILDCARD_RESOURCE = "*"
MANAGE_ACTION = "manage"

ScalarValue = Union[StrictBool, StrictInt, StrictFloat, StrictStr]
ConditionValue = Union[ScalarValue, List[ScalarValue]]


class UserStatus(str, Enum):
    """Lifecycle status of an identity-store user."""
    ACTIVE = "active"
    INACTIVE = "inactive"
    PENDING = "pending"
    SUSPENDED = "suspended"


class PermissionScope(str, Enum):
    """Data-visibility qualifier of a permission."""
    ALL = "all"
    OWN = "own"
    TEAM = "team"
    ASSIGNED = "assigned"
    CUSTOM = "custom"


class ConditionOperator(str, Enum):
    """Comparison operators available to permission conditions."""
    EQUALS = "equals"
    NOT_EQUALS = "not_equals"
    IN = "in"
    NOT_IN = "not_in"
    GREATER_THAN = "greater_than"
    LESS_THAN = "less_than"
    CONTAINS = "contains"


class RiskLevel(str, Enum):
    """Risk classification of a permission."""
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


RISK_SCORES: Dict[RiskLevel, int] = {
    RiskLevel.LOW: 2,
    RiskLevel.MEDIUM: 5,
    RiskLevel.HIGH: 8,
    RiskLevel.CRITICAL: 10,
}


class RoleType(str, Enum):
    """Role origin."""
    SYSTEM = "system"
    CUSTOM = "custom"


class RequestStatus(str, Enum):
    """Access request state."""
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"
    EXPIRED = "expired"


class Urgency(str, Enum):
    """Urgency of an access request."""
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class PolicyType(str, Enum):
    """Security policy category."""
    PASSWORD = "password"
    SESSION = "session"
    ACCESS = "access"
    DATA = "data"
    AUDIT = "audit"


class EnforcementLevel(str, Enum):
    """How strongly a policy is enforced."""
    ADVISORY = "advisory"
    WARNING = "warning"
    BLOCKING = "blocking"


class RuleAction(str, Enum):
    """Outcome of a matching security rule."""
    ALLOW = "allow"
    DENY = "deny"
    REQUIRE_APPROVAL = "require_approval"
    LOG_ONLY = "log_only"
    MFA_REQUIRED = "mfa_required"


class Severity(str, Enum):
    """Severity of a security rule."""
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class AuditAction(str, Enum):
    """Kinds of audit events."""
    PERMISSION_GRANTED = "permission_granted"
    PERMISSION_REVOKED = "permission_revoked"
    ROLE_ASSIGNED = "role_assigned"
    ROLE_REMOVED = "role_removed"
    ACCESS_DENIED = "access_denied"
    LOGIN = "login"
    LOGOUT = "logout"
    PASSWORD_CHANGED = "password_changed"
    ACCOUNT_LOCKED = "account_locked"
    ROLE_CREATED = "role_created"
    ROLE_UPDATED = "role_updated"
    ROLE_DELETED = "role_deleted"
    ACCESS_REQUESTED = "access_requested"
    REQUEST_APPROVED = "request_approved"
    REQUEST_REJECTED = "request_rejected"
    REQUEST_EXPIRED = "request_expired"
    POLICY_CREATED = "policy_created"
    POLICY_UPDATED = "policy_updated"
    POLICY_DELETED = "policy_deleted"
    CONFIG_UPDATED = "config_updated"


AUTH_EVENTS = frozenset({
    AuditAction.LOGIN,
    AuditAction.LOGOUT,
    AuditAction.PASSWORD_CHANGED,
    AuditAction.ACCOUNT_LOCKED,
})


class UserMetadata(BaseModel):
    """Identity-store profile attributes consulted by scope checks."""
    department: Optional[str] = None
    job_title: Optional[str] = None
    two_factor_enabled: bool = False
    login_attempts: int = 0


class User(BaseModel):
    """Read-only user record supplied by the identity store."""
    id: str = Field(..., min_length=1)
    email: Optional[str] = None
    status: UserStatus = UserStatus.ACTIVE
    metadata: UserMetadata = Field(default_factory=UserMetadata)
    attributes: Dict[str, Any] = Field(default_factory=dict)

    @property
    def is_active(self) -> bool:
        return self.status == UserStatus.ACTIVE


class Condition(BaseModel):
    """Single field comparison attached to a permission."""
    model_config = ConfigDict(frozen=True)

    field: str = Field(..., min_length=1, description="Dotted path into resource data or context")
    operator: ConditionOperator
    value: ConditionValue
    description: Optional[str] = None


class PermissionMetadata(BaseModel):
    """Descriptive and risk metadata of a permission."""
    model_config = ConfigDict(frozen=True)

    description: Optional[str] = None
    category: Optional[str] = None
    risk_level: Optional[RiskLevel] = None


class Permission(BaseModel):
    """Permission definition: resource, action, scope and conditions."""
    model_config = ConfigDict(frozen=True)

    id: str = Field(..., min_length=1)
    resource: str = Field(..., min_length=1)
    action: str = Field(..., min_length=1)
    scope: PermissionScope = PermissionScope.ALL
    conditions: List[Condition] = Field(default_factory=list)
    metadata: PermissionMetadata = Field(default_factory=PermissionMetadata)

    @property
    def dedup_key(self) -> tuple:
        return (self.resource, self.action, self.scope.value)

    @property
    def risk_score(self) -> Optional[int]:
        if self.metadata.risk_level is None:
            return None
        return RISK_SCORES[self.metadata.risk_level]

    def matches(self, resource: str, action: str) -> bool:
        """Check resource and action, honouring the wildcard sentinels."""
        if self.resource != WILDCARD_RESOURCE and self.resource != resource:
            return False
        return self.action == MANAGE_ACTION or self.action == action

    def __str__(self) -> str:
        return f"{self.resource}:{self.action}:{self.scope.value}"


class Role(BaseModel):
    """Role definition with permissions, rank and inheritance edges."""
    id: str = Field(..., min_length=1)
    name: str = Field(..., min_length=1)
    description: str = ""
    type: RoleType = RoleType.CUSTOM
    permissions: List[Permission] = Field(default_factory=list)
    hierarchy: int = Field(default=1, ge=0)
    inherits_from: List[str] = Field(default_factory=list)
    is_active: bool = True
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)
    created_by: str = "system"

    @property
    def is_system(self) -> bool:
        return self.type == RoleType.SYSTEM


class AssignmentMetadata(BaseModel):
    """Provenance attached to a role assignment."""
    reason: Optional[str] = None
    temporary_access: bool = False
    restricted_resources: List[str] = Field(default_factory=list)


class RoleAssignment(BaseModel):
    """Ledger entry binding a user to a role."""
    user_id: str
    role_id: str
    assigned_by: str
    assigned_at: datetime = Field(default_factory=utcnow)
    expires_at: Optional[datetime] = None
    is_active: bool = True
    removed_by: Optional[str] = None
    removed_at: Optional[datetime] = None
    metadata: AssignmentMetadata = Field(default_factory=AssignmentMetadata)

    def is_effective(self, now: datetime) -> bool:
        """Active and not yet expired at ``now``."""
        if not self.is_active:
            return False
        return self.expires_at is None or self.expires_at > now


class AccessRequestMetadata(BaseModel):
    """Optional request details."""
    urgency: Urgency = Urgency.MEDIUM
    business_case: Optional[str] = None
    temporary_access: bool = False
    access_duration: Optional[int] = Field(default=None, gt=0, description="Days of access when temporary")


class AccessRequest(BaseModel):
    """User-initiated request for roles or permissions."""
    id: str
    user_id: str
    requested_permissions: List[Permission] = Field(default_factory=list)
    requested_roles: List[str] = Field(default_factory=list)
    reason: str = ""
    justification: str = ""
    requested_by: str
    requested_at: datetime = Field(default_factory=utcnow)
    status: RequestStatus = RequestStatus.PENDING
    approved_by: Optional[str] = None
    approved_at: Optional[datetime] = None
    rejected_by: Optional[str] = None
    rejected_at: Optional[datetime] = None
    rejection_reason: Optional[str] = None
    expires_at: Optional[datetime] = None
    metadata: AccessRequestMetadata = Field(default_factory=AccessRequestMetadata)

    @property
    def is_pending(self) -> bool:
        return self.status == RequestStatus.PENDING


class SecurityRule(BaseModel):
    """Condition expression and the action taken when it holds."""
    id: str = Field(..., min_length=1)
    name: str = ""
    condition: str = Field(..., min_length=1, description="Rule expression")
    action: RuleAction
    message: Optional[str] = None
    severity: Severity = Severity.MEDIUM
    is_active: bool = True


class SecurityPolicy(BaseModel):
    """Named group of security rules."""
    id: str = Field(..., min_length=1)
    name: str = Field(..., min_length=1)
    description: str = ""
    type: PolicyType = PolicyType.ACCESS
    rules: List[SecurityRule] = Field(default_factory=list)
    is_active: bool = True
    enforcement_level: EnforcementLevel = EnforcementLevel.BLOCKING
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)
    created_by: str = "system"


class AuditLogEntry(BaseModel):
    """Immutable record of one decision or administrative action."""
    model_config = ConfigDict(frozen=True)

    id: str
    timestamp: datetime
    user_id: str
    action: AuditAction
    resource: Optional[str] = None
    resource_id: Optional[str] = None
    previous_value: Optional[Any] = None
    new_value: Optional[Any] = None
    success: bool
    failure_reason: Optional[str] = None
    performed_by: Optional[str] = None
    ip_address: Optional[str] = None
    user_agent: Optional[str] = None
    session_id: Optional[str] = None
    risk_score: Optional[int] = None
    metadata: Dict[str, Any] = Field(default_factory=dict)


class Decision(BaseModel):
    """Result of an authorization check."""
    allowed: bool
    reason: Optional[str] = None
    requires_mfa: bool = False
    requires_approval: bool = False
    matched_permission_id: Optional[str] = None
    audit_id: Optional[str] = None


class SecuritySummary(BaseModel):
    """Entity counts for the security report."""
    total_users: int
    active_users: int
    total_roles: int
    total_permissions: int
    pending_requests: int
    security_incidents: int


class RiskAnalysis(BaseModel):
    """Risk indicators for the security report."""
    high_risk_actions: int
    suspicious_activity: int
    failed_login_attempts: int
    privileged_users: int


class SecurityReport(BaseModel):
    """On-demand security summary."""
    summary: SecuritySummary
    risk_analysis: RiskAnalysis
    recommendations: List[str] = Field(default_factory=list)
    generated_at: datetime = Field(default_factory=utcnow)
