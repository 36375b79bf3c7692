"""Audit log, authentication event and security report endpoints."""

from datetime import datetime
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, Query, status
from pydantic import BaseModel, Field

from accessctl.api.v1.dependencies import get_service, to_http_exception
from accessctl.core.errors import AccessControlError
from accessctl.core.service import AccessControlService
from accessctl.models.access import AuditLogEntry, SecurityReport

router = APIRouter(tags=["Audit"])


class AuthEventRequest(BaseModel):
    """Authentication event reported by the identity collaborator."""
    user_id: str = Field(..., min_length=1)
    event: str = Field(..., description="login, logout, password_changed or account_locked")
    success: bool = True
    failure_reason: Optional[str] = None
    ip_address: Optional[str] = None
    user_agent: Optional[str] = None
    session_id: Optional[str] = None
    metadata: Dict[str, Any] = Field(default_factory=dict)


@router.get("/audit", response_model=List[AuditLogEntry])
def query_audit_log(
    user_id: Optional[str] = None,
    resource: Optional[str] = None,
    action: Optional[str] = None,
    start: Optional[datetime] = None,
    end: Optional[datetime] = None,
    success: Optional[bool] = None,
    limit: int = Query(100, ge=1, le=10000),
    service: AccessControlService = Depends(get_service)
):
    """Query audit entries, newest first. All filters are combined."""
    try:
        return service.query_audit_log(
            user_id=user_id,
            resource=resource,
            action=action,
            start=start,
            end=end,
            success=success,
            limit=limit
        )
    except AccessControlError as e:
        raise to_http_exception(e)


@router.post("/audit/auth-events", response_model=AuditLogEntry, status_code=status.HTTP_201_CREATED)
def record_auth_event(body: AuthEventRequest, service: AccessControlService = Depends(get_service)):
    """Record a login, logout, password change or lockout."""
    try:
        return service.record_auth_event(
            body.user_id,
            body.event,
            success=body.success,
            failure_reason=body.failure_reason,
            ip_address=body.ip_address,
            user_agent=body.user_agent,
            session_id=body.session_id,
            metadata=body.metadata
        )
    except AccessControlError as e:
        raise to_http_exception(e)


@router.get("/reports/security", response_model=SecurityReport)
def generate_security_report(service: AccessControlService = Depends(get_service)):
    """Recompute the security summary."""
    return service.generate_security_report()
