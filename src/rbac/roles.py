"""
Role Definitions

4 roles in a strict hierarchy:

    OWNER       (4) - Business owner, full access to everything
    MANAGER     (3) - Runs day-to-day operations, approves documents
    ACCOUNTANT  (2) - Books transactions, cannot approve
    VIEWER      (1) - Read-only access

A user may hold several roles at once; effective permissions are the
union across held roles.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Dict, Iterable, Optional


class Role(str, Enum):
    """
    All roles in the system.

    Values match the persisted role_type column.
    """

    OWNER = "OWNER"
    """
    Full access. The first user of a fresh installation is granted this.
    """

    MANAGER = "MANAGER"
    """
    Full CRUD on documents plus approve/reject.
    """

    ACCOUNTANT = "ACCOUNTANT"
    """
    Day-to-day bookkeeping. No approvals, no invoice deletion.
    """

    VIEWER = "VIEWER"
    """
    Read and export only.
    """


@dataclass(frozen=True)
class RoleInfo:
    """Complete information about a role."""
    role: Role
    name: str
    description: str
    level: int
    can_manage_users: bool


# =============================================================================
# ROLE REGISTRY
# =============================================================================

ROLE_HIERARCHY: Dict[Role, int] = {
    Role.OWNER: 4,
    Role.MANAGER: 3,
    Role.ACCOUNTANT: 2,
    Role.VIEWER: 1,
}

ROLES: Dict[Role, RoleInfo] = {
    Role.OWNER: RoleInfo(
        role=Role.OWNER,
        name="Owner",
        description="Business owner - full access",
        level=ROLE_HIERARCHY[Role.OWNER],
        can_manage_users=True,
    ),
    Role.MANAGER: RoleInfo(
        role=Role.MANAGER,
        name="Manager",
        description="Operations manager - approves invoices and expenses",
        level=ROLE_HIERARCHY[Role.MANAGER],
        can_manage_users=True,
    ),
    Role.ACCOUNTANT: RoleInfo(
        role=Role.ACCOUNTANT,
        name="Accountant",
        description="Bookkeeping - creates and edits documents",
        level=ROLE_HIERARCHY[Role.ACCOUNTANT],
        can_manage_users=False,
    ),
    Role.VIEWER: RoleInfo(
        role=Role.VIEWER,
        name="Viewer",
        description="Read-only access to financial data",
        level=ROLE_HIERARCHY[Role.VIEWER],
        can_manage_users=False,
    ),
}


def get_role_info(role: Role) -> RoleInfo:
    """Get information about a role."""
    return ROLES[role]


def get_role_level(role: Role) -> int:
    """Hierarchy level of a role (higher = more privileged)."""
    return ROLE_HIERARCHY[Role(role)]


def highest_role(roles: Iterable[Role]) -> Optional[Role]:
    """
    Return the most privileged role in `roles`, or None if empty.

    Ties cannot happen since levels are unique.
    """
    best: Optional[Role] = None
    for role in roles:
        if best is None or ROLE_HIERARCHY[role] > ROLE_HIERARCHY[best]:
            best = role
    return best


# Roles allowed to approve/reject documents in the approval workflow
APPROVER_ROLES = frozenset({
    Role.OWNER,
    Role.MANAGER,
})
