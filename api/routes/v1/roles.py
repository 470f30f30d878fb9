"""
api/routes/v1/roles.py -- Role REST endpoints.

Reads require auth; create/update/delete require manage-roles (system roles
pass implicitly). System roles themselves cannot be updated or deleted.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, Request

from api.models import RoleCreate, RoleEnvelope, RoleResponse, RolesEnvelope, RoleUpdate
from auth.dependencies import get_current_user, require_permission
from auth.models import User
from rbac.service import MANAGE_ROLES

router = APIRouter()


@router.post("/roles", response_model=RoleEnvelope, status_code=201)
async def create_role(
    request: Request,
    body: RoleCreate,
    current_user: User = Depends(require_permission(MANAGE_ROLES)),
) -> RoleEnvelope:
    role = await request.app.state.rbac_service.create_role(body.name, body.description, created_by=current_user.id)
    return RoleEnvelope(role=RoleResponse.from_role(role))


@router.get("/roles", response_model=RolesEnvelope)
async def list_roles(request: Request, current_user: User = Depends(get_current_user)) -> RolesEnvelope:
    roles = await request.app.state.rbac_service.list_roles()
    return RolesEnvelope(roles=[RoleResponse.from_role(r) for r in roles])


@router.get("/roles/{role_id}", response_model=RoleEnvelope)
async def get_role(request: Request, role_id: str, current_user: User = Depends(get_current_user)) -> RoleEnvelope:
    role = await request.app.state.rbac_service.get_role(role_id)
    return RoleEnvelope(role=RoleResponse.from_role(role))


@router.patch("/roles/{role_id}", response_model=RoleEnvelope)
async def update_role(
    request: Request,
    role_id: str,
    body: RoleUpdate,
    current_user: User = Depends(require_permission(MANAGE_ROLES)),
) -> RoleEnvelope:
    role = await request.app.state.rbac_service.update_role(role_id, name=body.name, description=body.description)
    return RoleEnvelope(role=RoleResponse.from_role(role))


@router.delete("/roles/{role_id}", status_code=204)
async def delete_role(
    request: Request,
    role_id: str,
    current_user: User = Depends(require_permission(MANAGE_ROLES)),
) -> None:
    await request.app.state.rbac_service.delete_role(role_id)
