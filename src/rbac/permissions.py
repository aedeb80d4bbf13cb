"""
Permission Definitions

Permissions are (resource, action) pairs, optionally guarded by conditions,
and mapped to roles through a compiled-in matrix.

Resources:
    invoices, expenses, customers, vendors, reports, bank-accounts, vat,
    accounts, audit-logs, business-rules, ... and "*" (any resource)

The matrix is versioned application logic, not tenant data. It is built
once at import time, frozen, and validated before use.
"""

from dataclasses import dataclass
from enum import Enum
from types import MappingProxyType
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional, Tuple

from core.errors import ConfigurationError

from .roles import Role


WILDCARD_RESOURCE = "*"


class PermissionAction(str, Enum):
    """Verbs that can be performed on a resource."""
    CREATE = "create"
    READ = "read"
    UPDATE = "update"
    DELETE = "delete"
    APPROVE = "approve"
    REJECT = "reject"
    SEND = "send"
    EXPORT = "export"
    IMPORT = "import"
    CONFIGURE = "configure"


class ConditionType(str, Enum):
    """Kinds of conditions that can guard a permission."""
    OWN_RESOURCE = "OWN_RESOURCE"        # Actor must own the resource
    ROLE_HIERARCHY = "ROLE_HIERARCHY"    # Some held role must reach min_level
    CUSTOM = "CUSTOM"                    # Injected predicate over the check context


@dataclass(frozen=True)
class PermissionCondition:
    """
    Condition attached to a permission.

    All conditions on a matched permission must pass (logical AND).
    """
    type: ConditionType
    min_level: Optional[int] = None
    validator: Optional[Callable[[Any], bool]] = None


@dataclass(frozen=True)
class Permission:
    """A single grant: `action` on `resource`, optionally conditional."""
    resource: str
    action: PermissionAction
    conditions: Tuple[PermissionCondition, ...] = ()

    @property
    def key(self) -> str:
        """De-duplication key, e.g. "invoices:approve"."""
        return f"{self.resource}:{self.action.value}"

    @property
    def is_wildcard(self) -> bool:
        return self.resource == WILDCARD_RESOURCE

    def matches(self, resource: str, action: PermissionAction) -> bool:
        """Exact (resource, action) match; wildcards are handled by the caller."""
        return self.resource == resource and self.action == action


def _grants(resource: str, *actions: str) -> List[Permission]:
    return [Permission(resource, PermissionAction(action)) for action in actions]


# =============================================================================
# ROLE -> PERMISSION MATRIX
# =============================================================================

_MATRIX_SOURCE: Dict[Role, List[Permission]] = {
    # -------------------------------------------------------------------------
    # OWNER: Everything, on every resource
    # -------------------------------------------------------------------------
    Role.OWNER: [Permission(WILDCARD_RESOURCE, action) for action in PermissionAction],

    # -------------------------------------------------------------------------
    # MANAGER: Full CRUD on documents + approve; rules are read-only
    # -------------------------------------------------------------------------
    Role.MANAGER: [
        *_grants("invoices", "create", "read", "update", "delete", "approve", "reject", "send", "export"),
        *_grants("expenses", "create", "read", "update", "delete", "approve", "reject", "export"),
        *_grants("customers", "create", "read", "update", "delete", "export"),
        *_grants("vendors", "create", "read", "update", "delete", "export"),
        *_grants("reports", "read", "export"),
        *_grants("bank-accounts", "read", "update"),
        *_grants("vat", "read", "export"),
        *_grants("accounts", "read"),
        *_grants("audit-logs", "read"),
        *_grants("business-rules", "read"),
    ],

    # -------------------------------------------------------------------------
    # ACCOUNTANT: Bookkeeping, no approvals, no invoice deletion
    # -------------------------------------------------------------------------
    Role.ACCOUNTANT: [
        *_grants("invoices", "create", "read", "update", "send", "export"),
        *_grants("expenses", "create", "read", "update", "delete", "export"),
        *_grants("customers", "create", "read", "update", "delete", "export"),
        *_grants("vendors", "create", "read", "update", "delete", "export"),
        *_grants("reports", "read", "export"),
        *_grants("bank-accounts", "create", "read", "update", "delete"),
        *_grants("vat", "create", "read", "update", "export"),
        *_grants("accounts", "read"),
    ],

    # -------------------------------------------------------------------------
    # VIEWER: Read + export (no settings, no rules)
    # -------------------------------------------------------------------------
    Role.VIEWER: [
        *_grants("invoices", "read", "export"),
        *_grants("expenses", "read", "export"),
        *_grants("customers", "read", "export"),
        *_grants("vendors", "read", "export"),
        *_grants("reports", "read", "export"),
        *_grants("bank-accounts", "read"),
        *_grants("vat", "read", "export"),
        *_grants("accounts", "read"),
        *_grants("audit-logs", "read"),
    ],
}


PermissionMatrix = Mapping[Role, Tuple[Permission, ...]]


def freeze_permission_matrix(matrix: Mapping[Role, Iterable[Permission]]) -> PermissionMatrix:
    """Return an immutable copy of `matrix` (tuples inside a read-only mapping)."""
    return MappingProxyType({Role(role): tuple(perms) for role, perms in matrix.items()})


def validate_permission_matrix(matrix: Mapping[Role, Iterable[Permission]]) -> None:
    """
    Validate a permission matrix at load time.

    Checks:
    - every Role has an entry
    - every entry is a Permission with a PermissionAction and a resource
    - ROLE_HIERARCHY conditions declare min_level
    - CUSTOM conditions carry a callable validator

    Raises:
        ConfigurationError: describing every problem found
    """
    errors: List[str] = []

    missing = [role.value for role in Role if role not in matrix]
    if missing:
        errors.append(f"roles without a permission entry: {', '.join(missing)}")

    for role, permissions in matrix.items():
        for index, permission in enumerate(permissions):
            where = f"{getattr(role, 'value', role)}[{index}]"
            if not isinstance(permission, Permission):
                errors.append(f"{where}: not a Permission ({permission!r})")
                continue
            if not isinstance(permission.resource, str) or not permission.resource:
                errors.append(f"{where}: empty resource")
            if not isinstance(permission.action, PermissionAction):
                errors.append(f"{where}: unknown action {permission.action!r}")
            for condition in permission.conditions:
                if not isinstance(condition, PermissionCondition):
                    errors.append(f"{where}: invalid condition {condition!r}")
                elif condition.type == ConditionType.ROLE_HIERARCHY and condition.min_level is None:
                    errors.append(f"{where}: ROLE_HIERARCHY condition without min_level")
                elif condition.type == ConditionType.CUSTOM and not callable(condition.validator):
                    errors.append(f"{where}: CUSTOM condition without a validator")

    if errors:
        raise ConfigurationError(
            "Invalid permission matrix: " + "; ".join(errors),
            details={"errors": errors},
        )


validate_permission_matrix(_MATRIX_SOURCE)
PERMISSION_MATRIX: PermissionMatrix = freeze_permission_matrix(_MATRIX_SOURCE)


def get_role_permissions(role: Role, matrix: PermissionMatrix = PERMISSION_MATRIX) -> List[Permission]:
    """Get all permissions for a role."""
    return list(matrix.get(role, ()))
