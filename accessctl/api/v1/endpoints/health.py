"""
Health check endpoints for the access-control service.

This module reports the status of the engine and its storage backend.
"""

import time
from datetime import datetime, timezone
from typing import Dict, Any, Optional

from fastapi import APIRouter, HTTPException, Request, status
from pydantic import BaseModel

from accessctl import __version__


class HealthStatus(BaseModel):
    """Health status response model."""
    status: str
    timestamp: datetime
    version: str
    uptime_seconds: float
    environment: str
    dependencies: Optional[Dict[str, Dict[str, Any]]] = None


class DetailedHealthStatus(HealthStatus):
    """Detailed health status response model."""
    service_name: str
    engine_info: Optional[Dict[str, Any]] = None
    system_info: Optional[Dict[str, Any]] = None


# Track service start time for uptime calculation
_start_time = time.time()

router = APIRouter(prefix="/health", tags=["health"])


def _environment(request: Request) -> str:
    settings = getattr(request.app.state, "settings", None)
    return settings.environment if settings is not None else "unknown"


@router.get(
    "",
    response_model=HealthStatus,
    summary="Basic health check",
    description="Returns basic health status of the access-control service"
)
async def health_check(request: Request) -> HealthStatus:
    """
    Basic health check endpoint.

    Returns:
        HealthStatus: Status, timestamp and uptime.
    """
    service = getattr(request.app.state, "access_control", None)
    return HealthStatus(
        status="healthy" if service is not None and service.initialized else "starting",
        timestamp=datetime.now(timezone.utc),
        version=__version__,
        uptime_seconds=time.time() - _start_time,
        environment=_environment(request)
    )


@router.get(
    "/detailed",
    response_model=DetailedHealthStatus,
    summary="Detailed health check",
    description="Returns health status with engine, storage and system information"
)
async def detailed_health_check(request: Request) -> DetailedHealthStatus:
    """
    Detailed health check endpoint.

    Returns:
        DetailedHealthStatus: Engine counters, storage status and host metrics.
    """
    import platform
    import psutil

    service = getattr(request.app.state, "access_control", None)
    dependencies = {"storage": _check_storage(service)}

    system_info = {
        "platform": platform.platform(),
        "python_version": platform.python_version(),
        "cpu_usage_percent": psutil.cpu_percent(interval=None),
        "memory_usage_percent": psutil.virtual_memory().percent,
        "process_rss_bytes": psutil.Process().memory_info().rss,
    }

    engine_info = None
    if service is not None and service.initialized:
        engine_info = {
            "roles": len(service.roles),
            "policies": len(service.policies),
            "audit_entries": len(service.audit),
            "permissions": len(service.catalog),
            "inheritance_mode": service.config.engine.inheritance_mode,
            "storage_backend": type(service.store).__name__,
        }

    healthy = all(dep.get("status") == "healthy" for dep in dependencies.values())
    return DetailedHealthStatus(
        status="healthy" if healthy else "degraded",
        timestamp=datetime.now(timezone.utc),
        version=__version__,
        uptime_seconds=time.time() - _start_time,
        environment=_environment(request),
        service_name="accessctl",
        engine_info=engine_info,
        system_info=system_info,
        dependencies=dependencies
    )


@router.get(
    "/ready",
    summary="Readiness check",
    description="Returns 200 once the engine is initialized and storage is reachable"
)
async def readiness_check(request: Request) -> Dict[str, str]:
    """
    Readiness check endpoint for Kubernetes readiness probes.

    Raises:
        HTTPException: 503 if the engine is not ready.
    """
    service = getattr(request.app.state, "access_control", None)
    if service is None or not service.initialized or _check_storage(service)["status"] != "healthy":
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Service not ready - access control engine unavailable"
        )
    return {"status": "ready"}


@router.get(
    "/live",
    summary="Liveness check",
    description="Returns 200 if service is alive"
)
async def liveness_check() -> Dict[str, str]:
    return {"status": "alive"}


def _check_storage(service) -> Dict[str, Any]:
    """
    Check that the storage backend answers reads.

    Returns:
        Dict: Storage health status.
    """
    if service is None:
        return {"status": "unhealthy", "message": "Engine not started"}
    started = time.perf_counter()
    try:
        service.store.get("config", service.CONFIG_KEY)
    except Exception as e:
        return {
            "status": "unhealthy",
            "error": str(e),
            "message": "Storage read failed"
        }
    return {
        "status": "healthy",
        "response_time_ms": round((time.perf_counter() - started) * 1000, 3),
        "message": "Storage read successful"
    }
