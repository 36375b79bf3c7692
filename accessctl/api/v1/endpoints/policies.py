"""
Security policy endpoints.

Rule conditions are parsed when a policy is created or updated; a rule that
does not parse is rejected with 400.
"""

from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, HTTPException, status
from pydantic import BaseModel, Field

from accessctl.api.v1.dependencies import get_service, require_actor, to_http_exception
from accessctl.core.errors import AccessControlError
from accessctl.core.service import AccessControlService
from accessctl.models.access import EnforcementLevel, PolicyType, SecurityPolicy, SecurityRule

router = APIRouter(prefix="/policies", tags=["Security Policies"])


class CreatePolicyRequest(BaseModel):
    """Request model for creating a security policy."""
    id: Optional[str] = Field(None, min_length=1, max_length=100, description="Policy id (generated if omitted)")
    name: str = Field(..., min_length=1, max_length=100)
    description: str = Field("", max_length=500)
    type: PolicyType = PolicyType.ACCESS
    rules: List[SecurityRule] = Field(default_factory=list)
    is_active: bool = True
    enforcement_level: EnforcementLevel = EnforcementLevel.BLOCKING


class UpdatePolicyRequest(BaseModel):
    """Request model for updating a security policy."""
    name: Optional[str] = Field(None, min_length=1, max_length=100)
    description: Optional[str] = Field(None, max_length=500)
    type: Optional[PolicyType] = None
    rules: Optional[List[SecurityRule]] = None
    is_active: Optional[bool] = None
    enforcement_level: Optional[EnforcementLevel] = None


@router.get("", response_model=List[SecurityPolicy])
def list_policies(service: AccessControlService = Depends(get_service)):
    """List security policies ordered by id."""
    return service.list_policies()


@router.post("", response_model=SecurityPolicy, status_code=status.HTTP_201_CREATED)
def create_policy(
    body: CreatePolicyRequest,
    actor_id: str = Depends(require_actor),
    service: AccessControlService = Depends(get_service)
):
    """Create a security policy."""
    definition: Dict[str, Any] = body.model_dump(exclude_none=True)
    try:
        return service.create_policy(definition, actor_id)
    except AccessControlError as e:
        raise to_http_exception(e)


@router.get("/{policy_id}", response_model=SecurityPolicy)
def get_policy(policy_id: str, service: AccessControlService = Depends(get_service)):
    policy = service.get_policy(policy_id)
    if policy is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Policy '{policy_id}' not found"
        )
    return policy


@router.put("/{policy_id}", response_model=SecurityPolicy)
def update_policy(
    policy_id: str,
    body: UpdatePolicyRequest,
    actor_id: str = Depends(require_actor),
    service: AccessControlService = Depends(get_service)
):
    """Update fields of a security policy."""
    try:
        return service.update_policy(policy_id, body.model_dump(exclude_unset=True), actor_id)
    except AccessControlError as e:
        raise to_http_exception(e)


@router.delete("/{policy_id}")
def delete_policy(
    policy_id: str,
    actor_id: str = Depends(require_actor),
    service: AccessControlService = Depends(get_service)
) -> Dict[str, str]:
    try:
        policy = service.delete_policy(policy_id, actor_id)
    except AccessControlError as e:
        raise to_http_exception(e)
    return {"message": f"Policy '{policy.id}' deleted", "policy_id": policy.id}
