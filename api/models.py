"""
API request and response models for Gatekeeper REST endpoints.

These Pydantic v2 models define the HTTP transport contract for the API layer.
They are intentionally separate from the dataclasses in auth/models.py and
rbac/models.py, which own the internal domain representation. Route handlers
map between the two.

JSON field names are camelCase (confirmPassword, roleId, isEmailVerified);
Python attributes stay snake_case. Request models accept either spelling.
"""

from __future__ import annotations

from typing import Annotated, Optional

from pydantic import BaseModel, BeforeValidator, ConfigDict, Field, model_validator
from pydantic.alias_generators import to_camel

from auth.models import User
from rbac.models import Permission, PermissionCategory, Role, RolePermission

# ---------------------------------------------------------------------------
# Field types
# ---------------------------------------------------------------------------

# Username: starts with a letter, alphanumeric only, 3-18 chars, stored lower-cased.
USERNAME_PATTERN = r"^[A-Za-z][A-Za-z0-9]*$"
# Pragmatic email shape check; deliverability is proven by the OTP / link flow.
EMAIL_PATTERN = r"^[^@\s]+@[^@\s]+\.[^@\s]+$"


def _lower_strip(value):
    return value.strip().lower() if isinstance(value, str) else value


Username = Annotated[
    str,
    BeforeValidator(_lower_strip),
    Field(min_length=3, max_length=18, pattern=USERNAME_PATTERN),
]
Email = Annotated[str, BeforeValidator(_lower_strip), Field(max_length=255, pattern=EMAIL_PATTERN)]
# bcrypt only reads the first 72 bytes; cap here so nothing is silently ignored.
Password = Annotated[str, Field(min_length=8, max_length=72)]


class _ApiModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class _Response(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# ---------------------------------------------------------------------------
# Auth -- requests
# ---------------------------------------------------------------------------


class SignUpRequest(_ApiModel):
    """Request body for POST /api/v1/auth/sign-up."""

    username: Username
    email: Email
    password: Password
    confirm_password: Password

    @model_validator(mode="after")
    def passwords_match(self) -> "SignUpRequest":
        if self.password != self.confirm_password:
            raise ValueError("Confirm password does not match password")
        return self


class LoginRequest(_ApiModel):
    email: Email
    password: str = Field(min_length=1, max_length=72)


class EmailRequest(_ApiModel):
    """Body for endpoints that only need an address (OTP request, forget password)."""

    email: Email


class OtpVerifyRequest(_ApiModel):
    email: Email
    otp: str = Field(min_length=4, max_length=10, pattern=r"^\d+$")


class ResetPasswordRequest(_ApiModel):
    token: str = Field(min_length=1)
    password: Password
    confirm_password: Password

    @model_validator(mode="after")
    def passwords_match(self) -> "ResetPasswordRequest":
        if self.password != self.confirm_password:
            raise ValueError("Confirm password does not match password")
        return self


# ---------------------------------------------------------------------------
# Users
# ---------------------------------------------------------------------------


class UserUpdate(_ApiModel):
    """Request body for PATCH /api/v1/users/{id}. All fields optional."""

    username: Optional[Username] = None
    email: Optional[Email] = None
    password: Optional[Password] = None
    role_id: Optional[str] = None


class UserResponse(_Response):
    id: str
    username: str
    email: str
    is_email_verified: bool
    role_id: Optional[str] = None
    oauth_provider: Optional[str] = None
    created_at: str
    updated_at: str

    @classmethod
    def from_user(cls, user: User) -> "UserResponse":
        return cls(
            id=user.id,
            username=user.username,
            email=user.email,
            is_email_verified=user.is_email_verified,
            role_id=user.role_id,
            oauth_provider=user.oauth_provider,
            created_at=user.created_at or "",
            updated_at=user.updated_at or "",
        )


class UserEnvelope(_Response):
    status: str = "success"
    user: UserResponse


class SignUpResponse(_Response):
    status: str = "success"
    message: str
    user: UserResponse


class UsersEnvelope(_Response):
    status: str = "success"
    users: list[UserResponse]


class MessageResponse(_Response):
    status: str = "success"
    message: str


class OAuthProviderInfo(_Response):
    name: str
    label: str


# ---------------------------------------------------------------------------
# RBAC
# ---------------------------------------------------------------------------


class RoleCreate(_ApiModel):
    name: str = Field(min_length=2, max_length=50, pattern=r"^[a-z0-9][a-z0-9-]*$")
    description: str = Field(default="", max_length=500)


class RoleUpdate(_ApiModel):
    name: Optional[str] = Field(default=None, min_length=2, max_length=50, pattern=r"^[a-z0-9][a-z0-9-]*$")
    description: Optional[str] = Field(default=None, max_length=500)


class RoleResponse(_Response):
    id: str
    name: str
    description: str
    created_by: Optional[str] = None
    is_system_role: bool
    created_at: str
    updated_at: str

    @classmethod
    def from_role(cls, role: Role) -> "RoleResponse":
        return cls(
            id=role.id,
            name=role.name,
            description=role.description,
            created_by=role.created_by,
            is_system_role=role.is_system_role,
            created_at=role.created_at or "",
            updated_at=role.updated_at or "",
        )


class RoleEnvelope(_Response):
    status: str = "success"
    role: RoleResponse


class RolesEnvelope(_Response):
    status: str = "success"
    roles: list[RoleResponse]


class PermissionCreate(_ApiModel):
    name: str = Field(min_length=2, max_length=50, pattern=r"^[a-z0-9][a-z0-9-]*$")
    description: str = Field(default="", max_length=500)
    category: PermissionCategory


class PermissionUpdate(_ApiModel):
    name: Optional[str] = Field(default=None, min_length=2, max_length=50, pattern=r"^[a-z0-9][a-z0-9-]*$")
    description: Optional[str] = Field(default=None, max_length=500)
    category: Optional[PermissionCategory] = None


class PermissionResponse(_Response):
    id: str
    name: str
    description: str
    category: PermissionCategory
    created_by: Optional[str] = None
    created_at: str
    updated_at: str

    @classmethod
    def from_permission(cls, permission: Permission) -> "PermissionResponse":
        return cls(
            id=permission.id,
            name=permission.name,
            description=permission.description,
            category=permission.category,
            created_by=permission.created_by,
            created_at=permission.created_at or "",
            updated_at=permission.updated_at or "",
        )


class PermissionEnvelope(_Response):
    status: str = "success"
    permission: PermissionResponse


class PermissionsEnvelope(_Response):
    status: str = "success"
    permissions: list[PermissionResponse]


class RolePermissionCreate(_ApiModel):
    role_id: str = Field(min_length=1)
    permission_id: str = Field(min_length=1)


class RolePermissionResponse(_Response):
    id: str
    role_id: str
    permission_id: str
    created_at: str

    @classmethod
    def from_link(cls, link: RolePermission) -> "RolePermissionResponse":
        return cls(id=link.id, role_id=link.role_id, permission_id=link.permission_id, created_at=link.created_at or "")


class RolePermissionEnvelope(_Response):
    status: str = "success"
    role_permission: RolePermissionResponse


class RolePermissionsEnvelope(_Response):
    status: str = "success"
    role_permissions: list[RolePermissionResponse]


# ---------------------------------------------------------------------------
# Errors / health
# ---------------------------------------------------------------------------


class ErrorDetail(BaseModel):
    """Machine-readable error payload."""

    model_config = ConfigDict(frozen=True)

    code: str
    message: str
    detail: Optional[str] = None


class ErrorResponse(BaseModel):
    """Top-level error envelope returned on 4xx/5xx responses."""

    model_config = ConfigDict(frozen=True)

    error: ErrorDetail


class HealthResponse(BaseModel):
    """Response for GET /api/v1/health."""

    model_config = ConfigDict(frozen=True)

    status: str = "healthy"
    version: str
    components: dict[str, str]
