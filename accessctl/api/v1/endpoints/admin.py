"""
Engine administration endpoints.

Configuration changes go through ``update_config`` so they are validated,
persisted and audited. The sweep endpoint runs the expiry sweep on demand.
"""

from typing import Any, Dict

from fastapi import APIRouter, Depends

from accessctl.api.v1.dependencies import get_service, require_actor, to_http_exception
from accessctl.config import AccessControlConfig
from accessctl.core.errors import AccessControlError
from accessctl.core.service import AccessControlService

router = APIRouter(prefix="/admin", tags=["Administration"])


@router.get("/config", response_model=AccessControlConfig)
def get_config(service: AccessControlService = Depends(get_service)):
    """Current access-control configuration."""
    return service.config


@router.patch("/config", response_model=AccessControlConfig)
def update_config(
    changes: Dict[str, Any],
    actor_id: str = Depends(require_actor),
    service: AccessControlService = Depends(get_service)
):
    """
    Apply a partial configuration update.

    Nested sections are merged, so ``{"mfa_policy": {"required": true}}``
    only changes that flag.
    """
    try:
        return service.update_config(changes, actor_id)
    except AccessControlError as e:
        raise to_http_exception(e)


@router.post("/sweep")
def run_sweep(
    actor_id: str = Depends(require_actor),
    service: AccessControlService = Depends(get_service)
) -> Dict[str, Any]:
    """Run the expiry sweep now."""
    result = service.sweep_expired()
    return {"requested_by": actor_id, **result}
