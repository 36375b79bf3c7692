"""
Role management endpoints.

Create, update, delete and inspect roles. System roles are read-only; edits
and deletes on them return 409.
"""

from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, HTTPException, status
from pydantic import BaseModel, Field

from accessctl.api.v1.dependencies import get_service, require_actor, to_http_exception
from accessctl.core.errors import AccessControlError
from accessctl.core.service import AccessControlService
from accessctl.models.access import Permission, Role

router = APIRouter(prefix="/roles", tags=["Roles"])


class CreateRoleRequest(BaseModel):
    """Request model for creating a custom role."""
    name: str = Field(..., min_length=1, max_length=100, description="Role name")
    description: str = Field("", max_length=500, description="Role description")
    permissions: List[Permission] = Field(default_factory=list, description="Granted permissions")
    hierarchy: int = Field(1, ge=0, description="Seniority rank")
    inherits_from: List[str] = Field(default_factory=list, description="Parent role ids")


class UpdateRoleRequest(BaseModel):
    """Request model for updating a custom role."""
    name: Optional[str] = Field(None, min_length=1, max_length=100)
    description: Optional[str] = Field(None, max_length=500)
    permissions: Optional[List[Permission]] = None
    hierarchy: Optional[int] = Field(None, ge=0)
    inherits_from: Optional[List[str]] = None
    is_active: Optional[bool] = None


@router.get("", response_model=List[Role])
def list_roles(service: AccessControlService = Depends(get_service)):
    """List all roles, most senior first."""
    return service.list_roles()


@router.post("", response_model=Role, status_code=status.HTTP_201_CREATED)
def create_role(
    body: CreateRoleRequest,
    actor_id: str = Depends(require_actor),
    service: AccessControlService = Depends(get_service)
):
    """Create a custom role."""
    try:
        return service.create_role(
            name=body.name,
            description=body.description,
            permissions=body.permissions,
            actor_id=actor_id,
            hierarchy=body.hierarchy,
            inherits_from=body.inherits_from
        )
    except AccessControlError as e:
        raise to_http_exception(e)


@router.get("/{role_id}", response_model=Role)
def get_role(role_id: str, service: AccessControlService = Depends(get_service)):
    """Get a role by id."""
    role = service.get_role(role_id)
    if role is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Role '{role_id}' not found"
        )
    return role


@router.put("/{role_id}", response_model=Role)
def update_role(
    role_id: str,
    body: UpdateRoleRequest,
    actor_id: str = Depends(require_actor),
    service: AccessControlService = Depends(get_service)
):
    """Update fields of a custom role."""
    changes: Dict[str, Any] = body.model_dump(exclude_unset=True)
    if "permissions" in changes:
        changes["permissions"] = body.permissions
    try:
        return service.update_role(role_id, changes, actor_id)
    except AccessControlError as e:
        raise to_http_exception(e)


@router.delete("/{role_id}")
def delete_role(
    role_id: str,
    actor_id: str = Depends(require_actor),
    service: AccessControlService = Depends(get_service)
) -> Dict[str, str]:
    """Delete a custom role that nobody holds."""
    try:
        role = service.delete_role(role_id, actor_id)
    except AccessControlError as e:
        raise to_http_exception(e)
    return {"message": f"Role '{role.id}' deleted", "role_id": role.id}


@router.get("/{role_id}/permissions", response_model=List[Permission])
def get_effective_permissions(role_id: str, service: AccessControlService = Depends(get_service)):
    """Effective permissions of a role, including inherited ones."""
    try:
        return service.get_effective_permissions(role_id)
    except AccessControlError as e:
        raise to_http_exception(e)
