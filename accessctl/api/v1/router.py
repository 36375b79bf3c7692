"""
API v1 Router Configuration.

This module collects the access-control endpoints:
- Access checks
- Role management and user role assignments
- Access request workflow
- Security policies
- Audit log, reports and administration
- Health checks
"""

from fastapi import APIRouter

from accessctl.api.v1.endpoints import (
    access,
    admin,
    audit,
    health,
    policies,
    requests,
    roles,
    users
)

# Create main v1 router
api_router = APIRouter(prefix="/api/v1")

api_router.include_router(
    access.router,
    tags=["Access Checks"]
)

api_router.include_router(
    roles.router,
    tags=["Roles"]
)

api_router.include_router(
    users.router,
    tags=["Role Assignments"]
)

api_router.include_router(
    requests.router,
    tags=["Access Requests"]
)

api_router.include_router(
    policies.router,
    tags=["Security Policies"]
)

api_router.include_router(
    audit.router,
    tags=["Audit"]
)

api_router.include_router(
    admin.router,
    tags=["Administration"]
)

api_router.include_router(
    health.router,
    tags=["Health"]
)
