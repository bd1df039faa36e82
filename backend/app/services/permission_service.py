# Overview: Service-layer operations for permission; encapsulates business logic and database work.

"""
Permission Checking

WHY: Enforce role-based access control. Denials are written to the
application log so unexpected 403s can be traced back to a user and route.

DESIGN PRINCIPLES:
- Fail closed: Deny by default, require explicit permission grant
- Log denials only: Permission grants are not logged
- SYSTEM_ADMIN implies every permission and every entity
"""

import logging

from ..extensions import db
from ..models import UserRole, Role, RolePermission, Permission
from ..permissions import PERMISSION_DEFINITIONS, DEFAULT_ROLE_PERMISSIONS

logger = logging.getLogger(__name__)

SUPER_PERMISSION = "SYSTEM_ADMIN"


class PermissionDeniedError(Exception):
    """Raised when user lacks required permission."""
    pass


def get_user_permissions(user_id: int) -> set[str]:
    """
    Get all permission codes for a user.

    Returns the union of the permissions of every role the user holds.
    """
    rows = (
        db.session.query(Permission.code)
        .join(RolePermission, RolePermission.permission_id == Permission.id)
        .join(UserRole, UserRole.role_id == RolePermission.role_id)
        .filter(UserRole.user_id == user_id)
        .all()
    )
    return {code for (code,) in rows}


def is_super_admin(user_id: int) -> bool:
    return SUPER_PERMISSION in get_user_permissions(user_id)


def user_has_permission(user_id: int, permission_code: str) -> bool:
    """True if the user holds permission_code (or SYSTEM_ADMIN)."""
    user_permissions = get_user_permissions(user_id)
    return permission_code in user_permissions or SUPER_PERMISSION in user_permissions


def require_permission(user_id: int, permission_code: str, resource: str | None = None) -> None:
    """
    Require user to have permission, raise PermissionDeniedError if not.

    Usage:
        require_permission(user.id, "CREATE_ORDERS", resource="/api/v1/orders")
    """
    if not user_has_permission(user_id, permission_code):
        logger.warning(
            "Permission denied: user=%s permission=%s resource=%s",
            user_id, permission_code, resource,
        )
        raise PermissionDeniedError(f"Permission denied: {permission_code}")


def get_user_role_names(user_id: int) -> list[str]:
    """Get list of role names for a user."""
    rows = (
        db.session.query(Role.name)
        .join(UserRole, UserRole.role_id == Role.id)
        .filter(UserRole.user_id == user_id)
        .order_by(Role.name)
        .all()
    )
    return [name for (name,) in rows]


def initialize_permissions() -> int:
    """
    Initialize all permission definitions in database.

    Creates Permission records for all codes in PERMISSION_DEFINITIONS.
    Idempotent: Safe to run multiple times.
    """
    created_count = 0

    for code, name, description, category in PERMISSION_DEFINITIONS:
        existing = db.session.query(Permission).filter_by(code=code).first()

        if not existing:
            db.session.add(Permission(code=code, name=name, description=description, category=category))
            created_count += 1

    db.session.commit()
    return created_count


def assign_default_role_permissions() -> int:
    """
    Assign default permissions to roles based on DEFAULT_ROLE_PERMISSIONS.

    Idempotent: skips existing links and roles that do not exist yet.
    """
    created_count = 0

    for role_name, permission_codes in DEFAULT_ROLE_PERMISSIONS.items():
        role = db.session.query(Role).filter_by(name=role_name).first()
        if not role:
            continue

        for permission_code in permission_codes:
            permission = db.session.query(Permission).filter_by(code=permission_code).first()
            if not permission:
                continue

            existing = db.session.query(RolePermission).filter_by(
                role_id=role.id,
                permission_id=permission.id
            ).first()

            if not existing:
                db.session.add(RolePermission(role_id=role.id, permission_id=permission.id))
                created_count += 1

    db.session.commit()
    return created_count


def grant_permission_to_role(role_name: str, permission_code: str) -> RolePermission:
    """Grant a permission to a role."""
    role = db.session.query(Role).filter_by(name=role_name).first()
    if not role:
        raise ValueError(f"Role '{role_name}' not found")

    permission = db.session.query(Permission).filter_by(code=permission_code).first()
    if not permission:
        raise ValueError(f"Permission '{permission_code}' not found")

    existing = db.session.query(RolePermission).filter_by(
        role_id=role.id,
        permission_id=permission.id
    ).first()
    if existing:
        return existing

    role_permission = RolePermission(role_id=role.id, permission_id=permission.id)
    db.session.add(role_permission)
    db.session.commit()
    return role_permission


def revoke_permission_from_role(role_name: str, permission_code: str) -> bool:
    """Remove a role grant; False when it was not granted."""
    role = db.session.query(Role).filter_by(name=role_name).first()
    if not role:
        raise ValueError(f"Role '{role_name}' not found")

    permission = db.session.query(Permission).filter_by(code=permission_code).first()
    if not permission:
        raise ValueError(f"Permission '{permission_code}' not found")

    existing = db.session.query(RolePermission).filter_by(role_id=role.id, permission_id=permission.id).first()
    if not existing:
        return False
    db.session.delete(existing)
    db.session.commit()
    return True
