"""
Shared FastAPI dependencies for the access-control API.

The API performs no authentication. The calling service identifies the
acting user with the ``X-Actor-Id`` header, which every administrative
endpoint requires for audit provenance.
"""

from typing import Optional

from fastapi import Header, HTTPException, Request, status

from accessctl.core.errors import (
    AccessControlError,
    AlreadyExists,
    InvalidInput,
    InvalidState,
    NotFound,
)
from accessctl.core.service import AccessControlService


def get_service(request: Request) -> AccessControlService:
    """Return the service built by the application lifespan."""
    service = getattr(request.app.state, "access_control", None)
    if service is None or not service.initialized:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Access control service is not initialized"
        )
    return service


def require_actor(x_actor_id: Optional[str] = Header(None)) -> str:
    """Require the X-Actor-Id header on administrative calls."""
    if not x_actor_id or not x_actor_id.strip():
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="X-Actor-Id header is required"
        )
    return x_actor_id.strip()


def to_http_exception(error: AccessControlError) -> HTTPException:
    """Map a typed engine error to an HTTP error."""
    if isinstance(error, NotFound):
        status_code = status.HTTP_404_NOT_FOUND
    elif isinstance(error, (InvalidState, AlreadyExists)):
        status_code = status.HTTP_409_CONFLICT
    elif isinstance(error, InvalidInput):
        status_code = status.HTTP_400_BAD_REQUEST
    else:
        status_code = status.HTTP_500_INTERNAL_SERVER_ERROR
    return HTTPException(
        status_code=status_code,
        detail={"error": error.code, "message": str(error)}
    )
