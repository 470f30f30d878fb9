"""
api/routes/v1/permissions.py -- Permission REST endpoints.

Same auth policy as roles: reads require auth, writes require manage-roles.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, Request

from api.models import (
    PermissionCreate,
    PermissionEnvelope,
    PermissionResponse,
    PermissionsEnvelope,
    PermissionUpdate,
)
from auth.dependencies import get_current_user, require_permission
from auth.models import User
from rbac.service import MANAGE_ROLES

router = APIRouter()


@router.post("/permissions", response_model=PermissionEnvelope, status_code=201)
async def create_permission(
    request: Request,
    body: PermissionCreate,
    current_user: User = Depends(require_permission(MANAGE_ROLES)),
) -> PermissionEnvelope:
    permission = await request.app.state.rbac_service.create_permission(
        body.name, body.category, body.description, created_by=current_user.id
    )
    return PermissionEnvelope(permission=PermissionResponse.from_permission(permission))


@router.get("/permissions", response_model=PermissionsEnvelope)
async def list_permissions(request: Request, current_user: User = Depends(get_current_user)) -> PermissionsEnvelope:
    permissions = await request.app.state.rbac_service.list_permissions()
    return PermissionsEnvelope(permissions=[PermissionResponse.from_permission(p) for p in permissions])


@router.get("/permissions/{permission_id}", response_model=PermissionEnvelope)
async def get_permission(
    request: Request,
    permission_id: str,
    current_user: User = Depends(get_current_user),
) -> PermissionEnvelope:
    permission = await request.app.state.rbac_service.get_permission(permission_id)
    return PermissionEnvelope(permission=PermissionResponse.from_permission(permission))


@router.patch("/permissions/{permission_id}", response_model=PermissionEnvelope)
async def update_permission(
    request: Request,
    permission_id: str,
    body: PermissionUpdate,
    current_user: User = Depends(require_permission(MANAGE_ROLES)),
) -> PermissionEnvelope:
    permission = await request.app.state.rbac_service.update_permission(
        permission_id, name=body.name, description=body.description, category=body.category
    )
    return PermissionEnvelope(permission=PermissionResponse.from_permission(permission))


@router.delete("/permissions/{permission_id}", status_code=204)
async def delete_permission(
    request: Request,
    permission_id: str,
    current_user: User = Depends(require_permission(MANAGE_ROLES)),
) -> None:
    await request.app.state.rbac_service.delete_permission(permission_id)
