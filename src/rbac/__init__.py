"""
Role-Based Access Control (RBAC)

4-role RBAC for the finance application.

Hierarchy:
    OWNER (4) > MANAGER (3) > ACCOUNTANT (2) > VIEWER (1)

Usage:
    from rbac import PermissionAuthority, InMemoryRoleAssignmentStore

    authority = PermissionAuthority(InMemoryRoleAssignmentStore())
    ctx = authority.create_permission_context(user_id, "invoices", "approve")
    authority.require_permission(ctx)
"""

from .roles import (
    Role,
    RoleInfo,
    ROLES,
    ROLE_HIERARCHY,
    APPROVER_ROLES,
    get_role_info,
    get_role_level,
    highest_role,
)

from .permissions import (
    ConditionType,
    Permission,
    PermissionAction,
    PermissionCondition,
    PERMISSION_MATRIX,
    WILDCARD_RESOURCE,
    freeze_permission_matrix,
    get_role_permissions,
    validate_permission_matrix,
)

from .context import PermissionCheckContext
from .cache import RoleCache, RoleCacheEntry
from .stores import (
    RoleAssignmentStore,
    InMemoryRoleAssignmentStore,
    SqlAlchemyRoleAssignmentStore,
)
from .authority import PermissionAuthority, denial_message
from .broadcast import RedisInvalidationBroadcaster, create_redis_client

__all__ = [
    # Roles
    "Role",
    "RoleInfo",
    "ROLES",
    "ROLE_HIERARCHY",
    "APPROVER_ROLES",
    "get_role_info",
    "get_role_level",
    "highest_role",
    # Permissions
    "ConditionType",
    "Permission",
    "PermissionAction",
    "PermissionCondition",
    "PERMISSION_MATRIX",
    "WILDCARD_RESOURCE",
    "freeze_permission_matrix",
    "get_role_permissions",
    "validate_permission_matrix",
    # Context
    "PermissionCheckContext",
    # Cache
    "RoleCache",
    "RoleCacheEntry",
    # Stores
    "RoleAssignmentStore",
    "InMemoryRoleAssignmentStore",
    "SqlAlchemyRoleAssignmentStore",
    # Authority
    "PermissionAuthority",
    "denial_message",
    # Broadcast
    "RedisInvalidationBroadcaster",
    "create_redis_client",
]
