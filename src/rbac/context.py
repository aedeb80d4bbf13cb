"""
Permission Check Context

PermissionCheckContext is the single object handed to the Permission
Authority for a check: who is asking, to do what, on which resource.
"""

from dataclasses import dataclass, field
from typing import Any, Dict, Optional

from .permissions import PermissionAction


@dataclass(frozen=True)
class PermissionCheckContext:
    """
    Input to a permission check.

    Usage:
        ctx = PermissionCheckContext(
            user_id="u-1",
            resource="invoices",
            action="approve",
        )
        authority.require_permission(ctx)
    """

    user_id: str
    """Actor performing the operation."""

    resource: str
    """Resource name, e.g. "invoices"."""

    action: PermissionAction
    """Requested verb; plain strings are coerced."""

    resource_owner_id: Optional[str] = None
    """Owner of the target record, consumed by OWN_RESOURCE conditions."""

    metadata: Dict[str, Any] = field(default_factory=dict)
    """Free-form data for CUSTOM condition predicates."""

    def __post_init__(self):
        # frozen: go through object.__setattr__ to normalise the action
        if not isinstance(self.action, PermissionAction):
            object.__setattr__(self, "action", PermissionAction(self.action))

    @property
    def is_own_resource(self) -> bool:
        return self.resource_owner_id is not None and self.resource_owner_id == self.user_id

    def to_dict(self) -> dict:
        """Convert to dictionary for logging."""
        return {
            "user_id": self.user_id,
            "resource": self.resource,
            "action": self.action.value,
            "resource_owner_id": self.resource_owner_id,
        }
