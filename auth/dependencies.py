"""
auth/dependencies.py -- FastAPI Depends() helpers for authentication.

Requests authenticate with "Authorization: Bearer <access token>". The token
must verify as an access token, belong to a live user, and still be attached
to that user's session_tokens collection (logout detaches it).

get_current_user() raises UNAUTHORIZED for every failure except an expired
signature, which surfaces as TOKEN_SIGNATURE_EXPIRED so clients know to call
/auth/renew-token instead of sending the user back to the login page.

require_permission(name) wraps get_current_user() and raises FORBIDDEN when
the user's role does not grant `name`. The RBAC service is read from
app.state, so this module never imports rbac/.

Layer rule: no imports from api/ or rbac/.
"""

from __future__ import annotations

from fastapi import Depends, Request

from auth.models import User
from auth.sessions import SessionTokenService
from core.errors import AppError, ErrorType, TokenSignatureExpiredError


def bearer_token(request: Request) -> str | None:
    auth_header = request.headers.get("Authorization", "")
    if auth_header.startswith("Bearer ") and len(auth_header) > 7:
        return auth_header[7:]
    return None


async def get_current_user(request: Request) -> User:
    """Require authentication. Stores the raw access token on request.state.

    Use as a FastAPI dependency:
        @router.get("/protected")
        async def route(user: User = Depends(get_current_user)): ...
    """
    token = bearer_token(request)
    if token is None:
        raise AppError(ErrorType.UNAUTHORIZED)

    sessions: SessionTokenService = request.app.state.session_service
    try:
        user = await sessions.authenticate(token)
    except TokenSignatureExpiredError:
        raise
    except AppError as exc:
        raise AppError(ErrorType.UNAUTHORIZED) from exc

    request.state.access_token = token
    return user


def require_permission(permission_name: str):
    """Build a dependency that requires the current user's role to grant a permission.

    Use as a FastAPI dependency:
        @router.post("/roles")
        async def route(user: User = Depends(require_permission("manage-roles"))): ...
    """

    async def dependency(request: Request, user: User = Depends(get_current_user)) -> User:
        rbac = request.app.state.rbac_service
        if not await rbac.has_permission(user.role_id, permission_name):
            raise AppError(ErrorType.FORBIDDEN)
        return user

    return dependency
