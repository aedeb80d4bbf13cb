"""
Permission Authority

Answers "can user U perform action A on resource R" from the static
permission matrix plus the user's role set, and enforces the answer.

Resolution:
    1. Resolve the user's roles (role cache, then the assignment store)
    2. No roles -> deny
    3. Per held role: a wildcard ("*") grant for the action, or an exact
       (resource, action) grant whose conditions all pass -> allow
    4. Otherwise -> deny

Error policy:
    Check methods (has_permission, has_role, has_any_role, is_higher_role)
    fail closed and never raise. require_permission is the enforcement
    boundary and raises AuthorizationError. Store failures while resolving
    roles are logged and turned into a denial.

One instance is built per process (see core.bootstrap) and passed to
whatever needs it; there is no module-level singleton.
"""

import logging
import threading
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence

from config.settings import RBACSettings, get_settings
from core.errors import APIError, AuthorizationError, NotFoundError, StorageError

from .cache import RoleCache
from .context import PermissionCheckContext
from .permissions import (
    ConditionType,
    Permission,
    PermissionCondition,
    PermissionMatrix,
    PERMISSION_MATRIX,
    freeze_permission_matrix,
    validate_permission_matrix,
)
from .roles import ROLE_HIERARCHY, Role, highest_role
from .stores import RoleAssignmentStore

logger = logging.getLogger(__name__)


def denial_message(action: str, resource: str) -> str:
    """Human message for a denied permission check."""
    return f"Forbidden: You don't have permission to {action} {resource}"


class PermissionAuthority:
    """
    Role-based permission checks over a role-assignment store.

    Usage:
        authority = PermissionAuthority(store)

        if authority.has_permission(authority.create_permission_context(
            user_id, "invoices", "approve",
        )):
            ...

        authority.require_permission(ctx)  # raises AuthorizationError
    """

    def __init__(
        self,
        store: RoleAssignmentStore,
        cache: Optional[RoleCache] = None,
        matrix: Mapping[Role, Iterable[Permission]] = PERMISSION_MATRIX,
        settings: Optional[RBACSettings] = None,
        broadcaster: Any = None,
    ):
        self.settings = settings or get_settings().rbac
        self._store = store
        self._cache = cache or RoleCache(
            ttl_seconds=self.settings.cache_ttl_seconds,
            max_entries=self.settings.cache_max_entries,
        )
        if matrix is not PERMISSION_MATRIX:
            validate_permission_matrix(matrix)
            matrix = freeze_permission_matrix(matrix)
        self._matrix: PermissionMatrix = matrix
        self._broadcaster = broadcaster
        self._bootstrap_lock = threading.Lock()

    @property
    def cache(self) -> RoleCache:
        return self._cache

    # =========================================================================
    # Permission checks
    # =========================================================================

    def create_permission_context(
        self,
        user_id: str,
        resource: str,
        action: Any,
        resource_owner_id: Optional[str] = None,
        **metadata,
    ) -> PermissionCheckContext:
        """Build a PermissionCheckContext; extra kwargs land in metadata."""
        return PermissionCheckContext(
            user_id=user_id,
            resource=resource,
            action=action,
            resource_owner_id=resource_owner_id,
            metadata=metadata,
        )

    def has_permission(self, ctx: PermissionCheckContext) -> bool:
        """
        Check whether ctx.user_id may perform ctx.action on ctx.resource.

        Never raises; any internal error is a denial.
        """
        try:
            roles = self.get_user_roles(ctx.user_id)
            if not roles:
                return False

            for role in roles:
                if self._role_grants(role, ctx, roles):
                    return True

            return False
        except Exception as e:
            # StorageError was already logged at resolution time
            if not isinstance(e, StorageError):
                logger.exception(
                    "Permission check failed, denying",
                    extra={"extra_data": ctx.to_dict()},
                )
            return False

    def require_permission(self, ctx: PermissionCheckContext) -> None:
        """
        Enforce a permission check.

        Raises:
            AuthorizationError: 403 / PERMISSION_DENIED when denied
        """
        if self.has_permission(ctx):
            return

        logger.debug("Permission denied", extra={"extra_data": ctx.to_dict()})
        raise AuthorizationError(
            denial_message(ctx.action.value, ctx.resource),
            resource=ctx.resource,
            action=ctx.action.value,
        )

    def _role_grants(
        self,
        role: Role,
        ctx: PermissionCheckContext,
        held_roles: Sequence[Role],
    ) -> bool:
        """True if any of the role's permissions grants the request."""
        permissions = self._matrix.get(role, ())

        # Wildcard grants short-circuit before exact matches
        for permission in permissions:
            if permission.is_wildcard and permission.action == ctx.action:
                if self._conditions_pass(permission.conditions, ctx, held_roles):
                    return True

        for permission in permissions:
            if permission.matches(ctx.resource, ctx.action):
                if self._conditions_pass(permission.conditions, ctx, held_roles):
                    return True

        return False

    def _conditions_pass(
        self,
        conditions: Sequence[PermissionCondition],
        ctx: PermissionCheckContext,
        held_roles: Sequence[Role],
    ) -> bool:
        return all(self._evaluate_condition(c, ctx, held_roles) for c in conditions)

    def _evaluate_condition(
        self,
        condition: PermissionCondition,
        ctx: PermissionCheckContext,
        held_roles: Sequence[Role],
    ) -> bool:
        if condition.type == ConditionType.OWN_RESOURCE:
            # No owner id means ownership cannot be shown
            return ctx.is_own_resource

        if condition.type == ConditionType.ROLE_HIERARCHY:
            if condition.min_level is None:
                return False
            return any(ROLE_HIERARCHY[r] >= condition.min_level for r in held_roles)

        if condition.type == ConditionType.CUSTOM:
            if condition.validator is None:
                return False
            try:
                return bool(condition.validator(ctx))
            except Exception:
                logger.warning(
                    "Custom permission condition raised, treating as failed",
                    exc_info=True,
                    extra={"extra_data": ctx.to_dict()},
                )
                return False

        return False

    # =========================================================================
    # Role checks
    # =========================================================================

    def has_role(self, user_id: str, role: Role) -> bool:
        """Check if the user holds a specific role."""
        try:
            return Role(role) in self.get_user_roles(user_id)
        except Exception:
            return False

    def has_any_role(self, user_id: str, roles: Iterable[Role]) -> bool:
        """Check if the user holds any of the given roles."""
        try:
            wanted = {Role(r) for r in roles}
            return any(r in wanted for r in self.get_user_roles(user_id))
        except Exception:
            return False

    def is_higher_role(self, user_id: str, target_role: Role) -> bool:
        """
        True if the user's highest held role outranks target_role.

        Strictly higher: a MANAGER is not higher than a MANAGER.
        """
        try:
            top = highest_role(self.get_user_roles(user_id))
            if top is None:
                return False
            return ROLE_HIERARCHY[top] > ROLE_HIERARCHY[Role(target_role)]
        except Exception:
            return False

    # =========================================================================
    # Role resolution
    # =========================================================================

    def get_user_roles(self, user_id: str) -> List[Role]:
        """
        Roles held by the user, from the cache or the store.

        Raises:
            StorageError: the store failed; nothing is cached
        """
        try:
            return list(self._cache.get_or_load(user_id, self._load_roles))
        except APIError:
            raise
        except Exception as e:
            logger.error(
                f"Role lookup failed for user {user_id}: {e}",
                extra={"extra_data": {"user_id": user_id, "error_type": type(e).__name__}},
            )
            raise StorageError(
                "Unable to resolve user roles",
                details={"user_id": user_id},
            ) from e

    def _load_roles(self, user_id: str) -> List[Role]:
        roles = _dedupe(self._store.find_roles_by_user(user_id))
        if roles or not self.settings.bootstrap_first_user:
            return roles
        return self._bootstrap_first_user(user_id)

    def _bootstrap_first_user(self, user_id: str) -> List[Role]:
        """
        Grant OWNER to the only user of a fresh installation.

        Serialized so concurrent first requests perform one grant; the
        upsert is idempotent anyway.
        """
        with self._bootstrap_lock:
            roles = _dedupe(self._store.find_roles_by_user(user_id))
            if roles:
                return roles

            if not self._store.user_exists(user_id) or self._store.count_users() != 1:
                return []

            self._store.upsert_role(user_id, Role.OWNER)
            logger.warning(
                "Bootstrap: granted OWNER to the first user",
                extra={"extra_data": {"user_id": user_id}},
            )
            return [Role.OWNER]

    # =========================================================================
    # Role management
    # =========================================================================

    def assign_role(self, user_id: str, role: Role, assigned_by: Optional[str] = None) -> None:
        """
        Assign a role. Idempotent; always invalidates the user's cache entry.

        Raises:
            StorageError: the store write failed
        """
        role = Role(role)
        try:
            created = self._store.upsert_role(user_id, role)
        except Exception as e:
            raise StorageError(
                "Unable to assign role",
                details={"user_id": user_id, "role": role.value},
            ) from e
        finally:
            self.invalidate_cache(user_id)

        logger.info(
            f"Role {role.value} assigned to user {user_id}",
            extra={"extra_data": {
                "user_id": user_id,
                "role": role.value,
                "assigned_by": assigned_by,
                "created": created,
            }},
        )

    def remove_role(
        self,
        user_id: str,
        role: Role,
        missing_ok: bool = False,
        removed_by: Optional[str] = None,
    ) -> None:
        """
        Revoke a role and invalidate the user's cache entry.

        Raises:
            NotFoundError: the assignment did not exist (unless missing_ok)
            StorageError: the store write failed
        """
        role = Role(role)
        try:
            deleted = self._store.delete_role(user_id, role)
        except Exception as e:
            raise StorageError(
                "Unable to remove role",
                details={"user_id": user_id, "role": role.value},
            ) from e
        finally:
            self.invalidate_cache(user_id)

        if not deleted:
            if missing_ok:
                return
            raise NotFoundError(
                f"User {user_id} does not hold role {role.value}",
                details={"user_id": user_id, "role": role.value},
            )

        logger.info(
            f"Role {role.value} removed from user {user_id}",
            extra={"extra_data": {"user_id": user_id, "role": role.value, "removed_by": removed_by}},
        )

    # =========================================================================
    # Permission listing
    # =========================================================================

    def get_role_permissions(self, role: Role) -> List[Permission]:
        """Static permissions of a role."""
        return list(self._matrix.get(Role(role), ()))

    def get_user_permissions(self, user_id: str) -> List[Permission]:
        """
        Union of the user's roles' permissions, de-duplicated by
        (resource, action) with first-seen order kept.
        """
        seen: Dict[str, Permission] = {}
        for role in self.get_user_roles(user_id):
            for permission in self._matrix.get(role, ()):
                seen.setdefault(permission.key, permission)
        return list(seen.values())

    def get_role_level(self, role: Role) -> int:
        return ROLE_HIERARCHY[Role(role)]

    # =========================================================================
    # Cache control
    # =========================================================================

    def invalidate_cache(self, user_id: str) -> None:
        """Drop the user's cached roles here and, if configured, everywhere."""
        self._cache.invalidate(user_id)
        if self._broadcaster is not None:
            self._broadcaster.publish_user(user_id)

    def clear_cache(self) -> None:
        """Flush every cached role set (e.g. after a matrix redeploy)."""
        self._cache.clear()
        if self._broadcaster is not None:
            self._broadcaster.publish_global()


def _dedupe(roles: Iterable[Any]) -> List[Role]:
    result: List[Role] = []
    for value in roles:
        role = Role(value)
        if role not in result:
            result.append(role)
    return result
