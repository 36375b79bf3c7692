"""
Access request workflow endpoints.

Approve and reject only act on pending requests; anything else returns 409
and leaves the request unchanged.
"""

from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, status
from pydantic import BaseModel, Field

from accessctl.api.v1.dependencies import get_service, require_actor, to_http_exception
from accessctl.core.errors import AccessControlError
from accessctl.core.service import AccessControlService
from accessctl.models.access import AccessRequest, AccessRequestMetadata, Permission, RequestStatus

router = APIRouter(prefix="/access-requests", tags=["Access Requests"])


class CreateAccessRequestBody(BaseModel):
    """Request model for opening an access request."""
    user_id: str = Field(..., min_length=1, description="User who needs access")
    requested_roles: List[str] = Field(default_factory=list)
    requested_permissions: List[Permission] = Field(default_factory=list)
    reason: str = Field("", max_length=500)
    justification: str = Field("", max_length=2000)
    metadata: Optional[AccessRequestMetadata] = None


class RejectRequestBody(BaseModel):
    """Request model for rejecting an access request."""
    reason: str = Field("", max_length=500)


def _conflict(service: AccessControlService, request_id: str) -> HTTPException:
    existing = service.get_access_request(request_id)
    if existing is None:
        return HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Access request '{request_id}' not found"
        )
    return HTTPException(
        status_code=status.HTTP_409_CONFLICT,
        detail=f"Access request '{request_id}' is {existing.status.value}"
    )


@router.post("", response_model=AccessRequest, status_code=status.HTTP_201_CREATED)
def create_access_request(
    body: CreateAccessRequestBody,
    actor_id: str = Depends(require_actor),
    service: AccessControlService = Depends(get_service)
):
    """Open a pending access request."""
    try:
        return service.create_access_request(
            body.user_id,
            actor_id,
            requested_roles=body.requested_roles,
            requested_permissions=body.requested_permissions,
            reason=body.reason,
            justification=body.justification,
            metadata=body.metadata
        )
    except AccessControlError as e:
        raise to_http_exception(e)


@router.get("", response_model=List[AccessRequest])
def list_access_requests(
    status_filter: Optional[RequestStatus] = Query(None, alias="status"),
    user_id: Optional[str] = None,
    service: AccessControlService = Depends(get_service)
):
    """List access requests, newest first."""
    return service.list_access_requests(status=status_filter, user_id=user_id)


@router.get("/{request_id}", response_model=AccessRequest)
def get_access_request(request_id: str, service: AccessControlService = Depends(get_service)):
    request = service.get_access_request(request_id)
    if request is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Access request '{request_id}' not found"
        )
    return request


@router.post("/{request_id}/approve", response_model=AccessRequest)
def approve_access_request(
    request_id: str,
    actor_id: str = Depends(require_actor),
    service: AccessControlService = Depends(get_service)
):
    """Approve a pending request and grant its roles."""
    try:
        approved = service.approve_access_request(request_id, actor_id)
    except AccessControlError as e:
        raise to_http_exception(e)
    if not approved:
        raise _conflict(service, request_id)
    return service.get_access_request(request_id)


@router.post("/{request_id}/reject", response_model=AccessRequest)
def reject_access_request(
    request_id: str,
    body: Optional[RejectRequestBody] = None,
    actor_id: str = Depends(require_actor),
    service: AccessControlService = Depends(get_service)
):
    """Reject a pending request."""
    reason = body.reason if body else ""
    if not service.reject_access_request(request_id, actor_id, reason=reason):
        raise _conflict(service, request_id)
    return service.get_access_request(request_id)
