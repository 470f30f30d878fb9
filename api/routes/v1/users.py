"""
api/routes/v1/users.py -- User management REST endpoints.

Routes:
  GET    /api/v1/users                         -- list live users
  GET    /api/v1/users/username/{username}     -- lookup by username
  GET    /api/v1/users/email/{email}           -- lookup by email
  GET    /api/v1/users/{id}                    -- lookup by id
  PATCH  /api/v1/users/{id}                    -- update (self, or manage-users)
  DELETE /api/v1/users/{id}                    -- soft delete (self, or manage-users)
  POST   /api/v1/users/{id}/restore            -- undo a soft delete (manage-users)

Route registration order: /users/username/... and /users/email/... come
before /users/{user_id} so FastAPI does not treat "username" as an id.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, Request

from api.models import UserEnvelope, UserResponse, UsersEnvelope, UserUpdate
from auth.dependencies import get_current_user, require_permission
from auth.models import User
from core.errors import AppError, ErrorType
from rbac.service import MANAGE_USERS

# Auth policy: every route requires auth. Mutating another user's account,
# changing a role and restoring require the manage-users permission.
router = APIRouter()


async def _ensure_self_or_manager(request: Request, current_user: User, user_id: str) -> None:
    if current_user.id == user_id:
        return
    if not await request.app.state.rbac_service.has_permission(current_user.role_id, MANAGE_USERS):
        raise AppError(ErrorType.FORBIDDEN)


@router.get("/users", response_model=UsersEnvelope)
async def list_users(request: Request, current_user: User = Depends(get_current_user)) -> UsersEnvelope:
    users = await request.app.state.user_service.list_users()
    return UsersEnvelope(users=[UserResponse.from_user(u) for u in users])


@router.get("/users/username/{username}", response_model=UserEnvelope)
async def get_user_by_username(
    request: Request,
    username: str,
    current_user: User = Depends(get_current_user),
) -> UserEnvelope:
    user = await request.app.state.user_service.get_user_by_username(username)
    return UserEnvelope(user=UserResponse.from_user(user))


@router.get("/users/email/{email}", response_model=UserEnvelope)
async def get_user_by_email(
    request: Request,
    email: str,
    current_user: User = Depends(get_current_user),
) -> UserEnvelope:
    user = await request.app.state.user_service.get_user_by_email(email)
    return UserEnvelope(user=UserResponse.from_user(user))


@router.get("/users/{user_id}", response_model=UserEnvelope)
async def get_user(request: Request, user_id: str, current_user: User = Depends(get_current_user)) -> UserEnvelope:
    user = await request.app.state.user_service.get_user_by_id(user_id)
    return UserEnvelope(user=UserResponse.from_user(user))


@router.patch("/users/{user_id}", response_model=UserEnvelope)
async def update_user(
    request: Request,
    user_id: str,
    body: UserUpdate,
    current_user: User = Depends(get_current_user),
) -> UserEnvelope:
    """Update username, email, password or role.

    Users may edit their own profile; a role change always needs
    manage-users, so nobody can promote themselves.
    """
    await _ensure_self_or_manager(request, current_user, user_id)
    if body.role_id is not None:
        if not await request.app.state.rbac_service.has_permission(current_user.role_id, MANAGE_USERS):
            raise AppError(ErrorType.FORBIDDEN)
        await request.app.state.rbac_service.get_role(body.role_id)

    user = await request.app.state.user_service.update_user(
        user_id,
        username=body.username,
        email=body.email,
        password=body.password,
        role_id=body.role_id,
    )
    return UserEnvelope(user=UserResponse.from_user(user))


@router.delete("/users/{user_id}", response_model=UserEnvelope)
async def delete_user(request: Request, user_id: str, current_user: User = Depends(get_current_user)) -> UserEnvelope:
    await _ensure_self_or_manager(request, current_user, user_id)
    user = await request.app.state.user_service.soft_delete_user(user_id)
    return UserEnvelope(user=UserResponse.from_user(user))


@router.post("/users/{user_id}/restore", response_model=UserEnvelope)
async def restore_user(
    request: Request,
    user_id: str,
    current_user: User = Depends(require_permission(MANAGE_USERS)),
) -> UserEnvelope:
    user = await request.app.state.user_service.restore_user(user_id)
    return UserEnvelope(user=UserResponse.from_user(user))
