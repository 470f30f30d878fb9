"""
rbac/service.py -- Role, permission and role-permission use cases.

Names are unique across live and soft-deleted rows alike, matching the
UNIQUE constraints in rbac/store.py. System roles (seeded at startup) can
be neither updated nor deleted and implicitly hold every permission.
"""

from __future__ import annotations

import logging

from sqlalchemy.exc import IntegrityError

from core.errors import AppError, ErrorType
from rbac.models import Permission, PermissionCategory, Role, RolePermission
from rbac.store import RbacStore

logger = logging.getLogger("gatekeeper.rbac")

SUPER_ADMIN_ROLE = "super-admin"
MANAGE_ROLES = "manage-roles"
MANAGE_USERS = "manage-users"


class RbacService:
    def __init__(self, store: RbacStore) -> None:
        self.store = store

    # ------------------------------------------------------------------
    # Roles
    # ------------------------------------------------------------------

    async def create_role(
        self,
        name: str,
        description: str = "",
        created_by: str | None = None,
        is_system_role: bool = False,
    ) -> Role:
        if self.store.get_role_by_name(name) is not None:
            raise AppError(ErrorType.ROLE_ALREADY_EXISTS)
        try:
            role_id = self.store.create_role(
                Role(name=name, description=description, created_by=created_by, is_system_role=is_system_role)
            )
        except IntegrityError as exc:
            raise AppError(ErrorType.ROLE_ALREADY_EXISTS) from exc
        logger.info("Created role %s (%s)", role_id, name)
        return await self.get_role(role_id)

    async def ensure_system_role(self, name: str, description: str = "") -> Role:
        """Return the named system role, creating it on first start."""
        role = self.store.get_role_by_name(name)
        if role is not None:
            return role
        return await self.create_role(name, description, is_system_role=True)

    async def list_roles(self) -> list[Role]:
        return self.store.list_roles()

    async def get_role(self, role_id: str) -> Role:
        role = self.store.get_role(role_id)
        if role is None or role.is_deleted:
            raise AppError(ErrorType.ROLE_NOT_FOUND)
        return role

    async def update_role(self, role_id: str, *, name: str | None = None, description: str | None = None) -> Role:
        role = await self.get_role(role_id)
        if role.is_system_role:
            raise AppError(ErrorType.SYSTEM_ROLE_PROTECTED)
        fields: dict = {}
        if name is not None and name != role.name:
            if self.store.get_role_by_name(name) is not None:
                raise AppError(ErrorType.ROLE_ALREADY_EXISTS)
            fields["name"] = name
        if description is not None:
            fields["description"] = description
        if fields:
            self.store.update_role(role_id, **fields)
        return await self.get_role(role_id)

    async def delete_role(self, role_id: str) -> None:
        role = await self.get_role(role_id)
        if role.is_system_role:
            raise AppError(ErrorType.SYSTEM_ROLE_PROTECTED)
        self.store.update_role(role_id, is_deleted=True)
        logger.info("Soft-deleted role %s", role_id)

    # ------------------------------------------------------------------
    # Permissions
    # ------------------------------------------------------------------

    async def create_permission(
        self,
        name: str,
        category: PermissionCategory,
        description: str = "",
        created_by: str | None = None,
    ) -> Permission:
        if self.store.get_permission_by_name(name) is not None:
            raise AppError(ErrorType.PERMISSION_ALREADY_EXISTS)
        try:
            permission_id = self.store.create_permission(
                Permission(name=name, category=category, description=description, created_by=created_by)
            )
        except IntegrityError as exc:
            raise AppError(ErrorType.PERMISSION_ALREADY_EXISTS) from exc
        logger.info("Created permission %s (%s)", permission_id, name)
        return await self.get_permission(permission_id)

    async def list_permissions(self) -> list[Permission]:
        return self.store.list_permissions()

    async def get_permission(self, permission_id: str) -> Permission:
        permission = self.store.get_permission(permission_id)
        if permission is None or permission.is_deleted:
            raise AppError(ErrorType.PERMISSION_NOT_FOUND)
        return permission

    async def update_permission(
        self,
        permission_id: str,
        *,
        name: str | None = None,
        description: str | None = None,
        category: PermissionCategory | None = None,
    ) -> Permission:
        permission = await self.get_permission(permission_id)
        fields: dict = {}
        if name is not None and name != permission.name:
            if self.store.get_permission_by_name(name) is not None:
                raise AppError(ErrorType.PERMISSION_ALREADY_EXISTS)
            fields["name"] = name
        if description is not None:
            fields["description"] = description
        if category is not None:
            fields["category"] = category
        if fields:
            self.store.update_permission(permission_id, **fields)
        return await self.get_permission(permission_id)

    async def delete_permission(self, permission_id: str) -> None:
        await self.get_permission(permission_id)
        self.store.update_permission(permission_id, is_deleted=True)
        logger.info("Soft-deleted permission %s", permission_id)

    # ------------------------------------------------------------------
    # Role-permission links
    # ------------------------------------------------------------------

    async def create_role_permission(self, role_id: str, permission_id: str) -> RolePermission:
        await self.get_role(role_id)
        await self.get_permission(permission_id)
        try:
            link_id = self.store.create_role_permission(role_id, permission_id)
        except IntegrityError as exc:
            raise AppError(ErrorType.ROLE_PERMISSION_ALREADY_EXISTS) from exc
        logger.info("Linked permission %s to role %s", permission_id, role_id)
        return self.store.get_role_permission(link_id)

    async def list_role_permissions(self, role_id: str) -> list[RolePermission]:
        await self.get_role(role_id)
        return self.store.list_role_permissions(role_id)

    async def delete_role_permission(self, link_id: str) -> None:
        if not self.store.delete_role_permission(link_id):
            raise AppError(ErrorType.ROLE_PERMISSION_NOT_FOUND)

    async def has_permission(self, role_id: str | None, permission_name: str) -> bool:
        """True if the role grants the permission. System roles grant everything."""
        if not role_id:
            return False
        role = self.store.get_role(role_id)
        if role is None or role.is_deleted:
            return False
        if role.is_system_role:
            return True
        return self.store.role_has_permission(role_id, permission_name)
