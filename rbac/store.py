"""
rbac/store.py -- SQLAlchemy Core persistence for roles, permissions and links.

Pattern: Repository + Data Mapper (same as auth/store.py).

Tables:
  roles             -- UNIQUE(name); soft-deleted via is_deleted.
  permissions       -- UNIQUE(name); soft-deleted via is_deleted.
  role_permissions  -- UNIQUE(role_id, permission_id); hard-deleted.

Layer rule: no imports from api/.
"""

from __future__ import annotations

from pathlib import Path

from sqlalchemy import Column, Integer, MetaData, String, Table, Text, UniqueConstraint, select
from sqlalchemy.engine import Engine

from core.db import make_engine, new_id, now_iso
from rbac.models import Permission, PermissionCategory, Role, RolePermission

_DEFAULT_DB_URL = f"sqlite:///{Path(__file__).resolve().parent.parent / 'gatekeeper.db'}"

# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

_metadata = MetaData()

_roles = Table(
    "roles",
    _metadata,
    Column("id", String(32), primary_key=True),
    Column("name", String(50), nullable=False, unique=True),
    Column("description", Text, nullable=False, server_default=""),
    Column("created_by", String(32)),
    Column("is_system_role", Integer, nullable=False, server_default="0"),
    Column("is_deleted", Integer, nullable=False, server_default="0"),
    Column("created_at", String(32), nullable=False),
    Column("updated_at", String(32), nullable=False),
)

_permissions = Table(
    "permissions",
    _metadata,
    Column("id", String(32), primary_key=True),
    Column("name", String(50), nullable=False, unique=True),
    Column("description", Text, nullable=False, server_default=""),
    Column("category", String(20), nullable=False),
    Column("created_by", String(32)),
    Column("is_deleted", Integer, nullable=False, server_default="0"),
    Column("created_at", String(32), nullable=False),
    Column("updated_at", String(32), nullable=False),
)

_role_permissions = Table(
    "role_permissions",
    _metadata,
    Column("id", String(32), primary_key=True),
    Column("role_id", String(32), nullable=False),
    Column("permission_id", String(32), nullable=False),
    Column("created_at", String(32), nullable=False),
    UniqueConstraint("role_id", "permission_id", name="uq_role_permissions_pair"),
)


class RbacStore:
    """Repository for Role, Permission and RolePermission entities."""

    def __init__(self, db_url: str = _DEFAULT_DB_URL) -> None:
        self.engine: Engine = make_engine(db_url)
        _metadata.create_all(self.engine)

    # ------------------------------------------------------------------
    # Roles
    # ------------------------------------------------------------------

    def create_role(self, role: Role) -> str:
        """Insert a role and return its ID. IntegrityError on duplicate name."""
        role_id = new_id()
        stamp = now_iso()
        with self.engine.connect() as conn:
            conn.execute(
                _roles.insert().values(
                    id=role_id,
                    name=role.name,
                    description=role.description,
                    created_by=role.created_by,
                    is_system_role=1 if role.is_system_role else 0,
                    is_deleted=1 if role.is_deleted else 0,
                    created_at=stamp,
                    updated_at=stamp,
                )
            )
            conn.commit()
        return role_id

    def get_role(self, role_id: str) -> Role | None:
        with self.engine.connect() as conn:
            row = conn.execute(_roles.select().where(_roles.c.id == role_id)).fetchone()
        return _row_to_role(row) if row is not None else None

    def get_role_by_name(self, name: str) -> Role | None:
        with self.engine.connect() as conn:
            row = conn.execute(_roles.select().where(_roles.c.name == name)).fetchone()
        return _row_to_role(row) if row is not None else None

    def list_roles(self, include_deleted: bool = False) -> list[Role]:
        query = _roles.select().order_by(_roles.c.name)
        if not include_deleted:
            query = query.where(_roles.c.is_deleted == 0)
        with self.engine.connect() as conn:
            rows = conn.execute(query).fetchall()
        return [_row_to_role(r) for r in rows]

    def update_role(self, role_id: str, **fields) -> bool:
        unknown = set(fields) - {"name", "description", "is_deleted"}
        if unknown:
            raise ValueError(f"Unknown role fields: {unknown!r}")
        if "is_deleted" in fields:
            fields["is_deleted"] = 1 if fields["is_deleted"] else 0
        fields["updated_at"] = now_iso()
        with self.engine.connect() as conn:
            result = conn.execute(_roles.update().where(_roles.c.id == role_id).values(**fields))
            conn.commit()
        return result.rowcount > 0

    # ------------------------------------------------------------------
    # Permissions
    # ------------------------------------------------------------------

    def create_permission(self, permission: Permission) -> str:
        """Insert a permission and return its ID. IntegrityError on duplicate name."""
        permission_id = new_id()
        stamp = now_iso()
        with self.engine.connect() as conn:
            conn.execute(
                _permissions.insert().values(
                    id=permission_id,
                    name=permission.name,
                    description=permission.description,
                    category=PermissionCategory(permission.category).value,
                    created_by=permission.created_by,
                    is_deleted=1 if permission.is_deleted else 0,
                    created_at=stamp,
                    updated_at=stamp,
                )
            )
            conn.commit()
        return permission_id

    def get_permission(self, permission_id: str) -> Permission | None:
        with self.engine.connect() as conn:
            row = conn.execute(_permissions.select().where(_permissions.c.id == permission_id)).fetchone()
        return _row_to_permission(row) if row is not None else None

    def get_permission_by_name(self, name: str) -> Permission | None:
        with self.engine.connect() as conn:
            row = conn.execute(_permissions.select().where(_permissions.c.name == name)).fetchone()
        return _row_to_permission(row) if row is not None else None

    def list_permissions(self, include_deleted: bool = False) -> list[Permission]:
        query = _permissions.select().order_by(_permissions.c.name)
        if not include_deleted:
            query = query.where(_permissions.c.is_deleted == 0)
        with self.engine.connect() as conn:
            rows = conn.execute(query).fetchall()
        return [_row_to_permission(r) for r in rows]

    def update_permission(self, permission_id: str, **fields) -> bool:
        unknown = set(fields) - {"name", "description", "category", "is_deleted"}
        if unknown:
            raise ValueError(f"Unknown permission fields: {unknown!r}")
        if "is_deleted" in fields:
            fields["is_deleted"] = 1 if fields["is_deleted"] else 0
        if "category" in fields:
            fields["category"] = PermissionCategory(fields["category"]).value
        fields["updated_at"] = now_iso()
        with self.engine.connect() as conn:
            result = conn.execute(_permissions.update().where(_permissions.c.id == permission_id).values(**fields))
            conn.commit()
        return result.rowcount > 0

    # ------------------------------------------------------------------
    # Role-permission links
    # ------------------------------------------------------------------

    def create_role_permission(self, role_id: str, permission_id: str) -> str:
        """Link a permission to a role. IntegrityError if the pair already exists."""
        link_id = new_id()
        with self.engine.connect() as conn:
            conn.execute(
                _role_permissions.insert().values(
                    id=link_id, role_id=role_id, permission_id=permission_id, created_at=now_iso()
                )
            )
            conn.commit()
        return link_id

    def get_role_permission(self, link_id: str) -> RolePermission | None:
        with self.engine.connect() as conn:
            row = conn.execute(_role_permissions.select().where(_role_permissions.c.id == link_id)).fetchone()
        return _row_to_role_permission(row) if row is not None else None

    def list_role_permissions(self, role_id: str) -> list[RolePermission]:
        with self.engine.connect() as conn:
            rows = conn.execute(
                _role_permissions.select()
                .where(_role_permissions.c.role_id == role_id)
                .order_by(_role_permissions.c.created_at)
            ).fetchall()
        return [_row_to_role_permission(r) for r in rows]

    def delete_role_permission(self, link_id: str) -> bool:
        with self.engine.connect() as conn:
            result = conn.execute(_role_permissions.delete().where(_role_permissions.c.id == link_id))
            conn.commit()
        return result.rowcount > 0

    def role_has_permission(self, role_id: str, permission_name: str) -> bool:
        """True if a live permission with this name is linked to the role."""
        query = (
            select(_permissions.c.id)
            .select_from(_role_permissions.join(_permissions, _permissions.c.id == _role_permissions.c.permission_id))
            .where(
                (_role_permissions.c.role_id == role_id)
                & (_permissions.c.name == permission_name)
                & (_permissions.c.is_deleted == 0)
            )
        )
        with self.engine.connect() as conn:
            row = conn.execute(query).fetchone()
        return row is not None

    def close(self) -> None:
        self.engine.dispose()


# ---------------------------------------------------------------------------
# Row mappers (Data Mapper pattern)
# ---------------------------------------------------------------------------


def _row_to_role(row) -> Role:
    return Role(
        id=row.id,
        name=row.name,
        description=row.description,
        created_by=row.created_by,
        is_system_role=bool(row.is_system_role),
        is_deleted=bool(row.is_deleted),
        created_at=row.created_at,
        updated_at=row.updated_at,
    )


def _row_to_permission(row) -> Permission:
    return Permission(
        id=row.id,
        name=row.name,
        description=row.description,
        category=PermissionCategory(row.category),
        created_by=row.created_by,
        is_deleted=bool(row.is_deleted),
        created_at=row.created_at,
        updated_at=row.updated_at,
    )


def _row_to_role_permission(row) -> RolePermission:
    return RolePermission(
        id=row.id,
        role_id=row.role_id,
        permission_id=row.permission_id,
        created_at=row.created_at,
    )
