"""
api/routes/v1/role_permissions.py -- Role-permission link endpoints.

Routes:
  POST   /api/v1/role-permissions              -- link a permission to a role
  GET    /api/v1/role-permissions/role/{id}    -- links for one role
  DELETE /api/v1/role-permissions/{id}         -- remove a link
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, Request

from api.models import (
    RolePermissionCreate,
    RolePermissionEnvelope,
    RolePermissionResponse,
    RolePermissionsEnvelope,
)
from auth.dependencies import get_current_user, require_permission
from auth.models import User
from rbac.service import MANAGE_ROLES

router = APIRouter()


@router.post("/role-permissions", response_model=RolePermissionEnvelope, status_code=201)
async def create_role_permission(
    request: Request,
    body: RolePermissionCreate,
    current_user: User = Depends(require_permission(MANAGE_ROLES)),
) -> RolePermissionEnvelope:
    link = await request.app.state.rbac_service.create_role_permission(body.role_id, body.permission_id)
    return RolePermissionEnvelope(role_permission=RolePermissionResponse.from_link(link))


@router.get("/role-permissions/role/{role_id}", response_model=RolePermissionsEnvelope)
async def list_role_permissions(
    request: Request,
    role_id: str,
    current_user: User = Depends(get_current_user),
) -> RolePermissionsEnvelope:
    links = await request.app.state.rbac_service.list_role_permissions(role_id)
    return RolePermissionsEnvelope(role_permissions=[RolePermissionResponse.from_link(link) for link in links])


@router.delete("/role-permissions/{link_id}", status_code=204)
async def delete_role_permission(
    request: Request,
    link_id: str,
    current_user: User = Depends(require_permission(MANAGE_ROLES)),
) -> None:
    await request.app.state.rbac_service.delete_role_permission(link_id)
