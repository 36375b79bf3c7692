"""
Access check endpoint.

Denials are ordinary responses with ``allowed: false``; this endpoint only
returns an error status when the request itself is malformed.
"""

from typing import Any, Dict

from fastapi import APIRouter, Depends, Request
from pydantic import BaseModel, Field

from accessctl.api.v1.dependencies import get_service
from accessctl.core.service import AccessControlService
from accessctl.models.access import Decision

router = APIRouter(prefix="/access", tags=["Access Checks"])


class AccessCheckRequest(BaseModel):
    """Request model for an authorization check."""
    user_id: str = Field(..., min_length=1, description="Acting user")
    resource: str = Field(..., min_length=1, description="Resource being accessed")
    action: str = Field(..., min_length=1, description="Action being performed")
    resource_data: Dict[str, Any] = Field(default_factory=dict, description="Attributes of the target instance")
    context: Dict[str, Any] = Field(default_factory=dict, description="Request context")


@router.post("/check", response_model=Decision)
def check_access(
    body: AccessCheckRequest,
    request: Request,
    service: AccessControlService = Depends(get_service)
):
    """Decide whether a user may perform an action on a resource."""
    context = dict(body.context)
    if request.client and "ip_address" not in context:
        context["ip_address"] = request.client.host
    user_agent = request.headers.get("user-agent")
    if user_agent and "user_agent" not in context:
        context["user_agent"] = user_agent

    return service.check_access(
        body.user_id,
        body.resource,
        body.action,
        resource_data=body.resource_data,
        context=context
    )
