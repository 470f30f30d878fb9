"""
rbac/models.py -- Domain dataclasses for the role-permission model.

A user holds at most one role (User.role_id). A role grants every permission
linked to it through a RolePermission row. System roles are seeded at
startup, cannot be modified or deleted, and implicitly hold every permission.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum


class PermissionCategory(str, Enum):
    SYSTEM = "system"
    USER = "user"
    ROLE = "role"
    CONTENT = "content"


@dataclass
class Role:
    name: str
    description: str = ""
    created_by: str | None = None  # user id
    is_system_role: bool = False
    is_deleted: bool = False
    id: str | None = None
    created_at: str | None = None
    updated_at: str | None = None


@dataclass
class Permission:
    name: str
    category: PermissionCategory
    description: str = ""
    created_by: str | None = None
    is_deleted: bool = False
    id: str | None = None
    created_at: str | None = None
    updated_at: str | None = None


@dataclass
class RolePermission:
    role_id: str
    permission_id: str
    id: str | None = None
    created_at: str | None = None
