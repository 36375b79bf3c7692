"""User role assignment endpoints."""

from datetime import datetime
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, status
from pydantic import BaseModel, Field

from accessctl.api.v1.dependencies import get_service, require_actor, to_http_exception
from accessctl.core.errors import AccessControlError
from accessctl.core.service import AccessControlService
from accessctl.models.access import AssignmentMetadata, RoleAssignment

router = APIRouter(prefix="/users", tags=["Role Assignments"])


class AssignRoleRequest(BaseModel):
    """Request model for granting a role."""
    role_id: str = Field(..., min_length=1, description="Role to grant")
    expires_at: Optional[datetime] = Field(None, description="Assignment expiry (UTC)")
    metadata: Optional[AssignmentMetadata] = None


class UserRolesResponse(BaseModel):
    """Effective roles and assignments of a user."""
    user_id: str
    roles: List[str]
    assignments: List[RoleAssignment]


@router.post("/{user_id}/roles", response_model=RoleAssignment, status_code=status.HTTP_201_CREATED)
def assign_role(
    user_id: str,
    body: AssignRoleRequest,
    actor_id: str = Depends(require_actor),
    service: AccessControlService = Depends(get_service)
):
    """Grant a role to a user, replacing any active grant of the same role."""
    try:
        return service.assign_role(
            user_id,
            body.role_id,
            actor_id,
            expires_at=body.expires_at,
            metadata=body.metadata
        )
    except AccessControlError as e:
        raise to_http_exception(e)


@router.delete("/{user_id}/roles/{role_id}")
def remove_role(
    user_id: str,
    role_id: str,
    reason: Optional[str] = None,
    actor_id: str = Depends(require_actor),
    service: AccessControlService = Depends(get_service)
):
    """Revoke a user's active assignment of a role."""
    if not service.remove_role(user_id, role_id, actor_id, reason=reason):
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"User '{user_id}' has no active assignment of role '{role_id}'"
        )
    return {"message": f"Role '{role_id}' removed from user '{user_id}'"}


@router.get("/{user_id}/roles", response_model=UserRolesResponse)
def get_user_roles(
    user_id: str,
    include_inactive: bool = False,
    service: AccessControlService = Depends(get_service)
):
    """Effective roles of a user with their assignment records."""
    return UserRolesResponse(
        user_id=user_id,
        roles=service.get_user_roles(user_id),
        assignments=service.get_assignments(user_id, include_inactive=include_inactive)
    )
