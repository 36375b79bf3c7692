"""Security report generation."""

import logging
from datetime import timedelta
from typing import Callable, List

from accessctl.config import ReportThresholds
from accessctl.core.assignments import AssignmentLedger
from accessctl.core.audit import AuditLog
from accessctl.core.identity import IdentityStore
from accessctl.core.requests import AccessRequestWorkflow
from accessctl.core.roles import RoleStore
from accessctl.models.access import (
    AuditAction,
    RiskAnalysis,
    SecurityReport,
    SecuritySummary,
    UserStatus,
)
from accessctl.utils.helpers import utcnow

logger = logging.getLogger(__name__)


class SecurityReporter:
    """Aggregates identity, roles, assignments and audit data into a report.

    Reports are recomputed from scratch on every call.
    """

    def __init__(
        self,
        identity: IdentityStore,
        roles: RoleStore,
        ledger: AssignmentLedger,
        requests: AccessRequestWorkflow,
        audit: AuditLog,
        thresholds: Callable[[], ReportThresholds],
        clock: Callable = utcnow,
    ):
        self.identity = identity
        self.roles = roles
        self.ledger = ledger
        self.requests = requests
        self.audit = audit
        self.thresholds = thresholds
        self.clock = clock

    def generate(self) -> SecurityReport:
        thresholds = self.thresholds()
        now = self.clock()

        users = self.identity.list_users()
        total_users = len(users)
        active_users = sum(1 for u in users if u.status == UserStatus.ACTIVE)
        roles = self.roles.list_roles()
        total_permissions = sum(len(role.permissions) for role in roles)
        pending_requests = self.requests.count_pending()

        entries = self.audit.entries()
        security_incidents = sum(1 for e in entries if not e.success)
        high_risk_actions = sum(
            1 for e in entries if e.risk_score is not None and e.risk_score > thresholds.high_risk_score
        )
        window_start = now - timedelta(hours=thresholds.suspicious_window_hours)
        suspicious_activity = sum(
            1 for e in entries if e.action == AuditAction.ACCESS_DENIED and e.timestamp > window_start
        )
        failed_logins = sum(1 for e in entries if e.action == AuditAction.LOGIN and not e.success)

        privileged_users = 0
        for role_ids in self.ledger.users_with_roles(now).values():
            for role_id in role_ids:
                role = self.roles.get_role(role_id)
                if role is not None and role.hierarchy >= thresholds.privileged_hierarchy:
                    privileged_users += 1
                    break

        recommendations: List[str] = []
        if pending_requests > thresholds.pending_requests:
            recommendations.append("Review pending access requests to avoid security delays")
        if failed_logins > thresholds.failed_logins:
            recommendations.append("Investigate multiple failed login attempts")
        if privileged_users > total_users * thresholds.privileged_user_ratio:
            recommendations.append(
                "Review privileged user assignments - too many users have high-level access"
            )
        if suspicious_activity > thresholds.suspicious_activity:
            recommendations.append("High number of access denials detected - review user permissions")

        report = SecurityReport(
            summary=SecuritySummary(
                total_users=total_users,
                active_users=active_users,
                total_roles=len(roles),
                total_permissions=total_permissions,
                pending_requests=pending_requests,
                security_incidents=security_incidents,
            ),
            risk_analysis=RiskAnalysis(
                high_risk_actions=high_risk_actions,
                suspicious_activity=suspicious_activity,
                failed_login_attempts=failed_logins,
                privileged_users=privileged_users,
            ),
            recommendations=recommendations,
            generated_at=now,
        )
        logger.info(f"Generated security report with {len(recommendations)} recommendations")
        return report
