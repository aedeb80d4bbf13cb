"""
Rule management.

CRUD, dry runs and statistics for workflow rules. Writes need `configure`
on "business-rules", reads need `read`; in the default matrix that means
OWNER can manage rules and MANAGER can only look at them.
"""

import logging
from datetime import datetime
from typing import Any, Dict, List, Mapping, Optional

from pydantic import ValidationError as PydanticValidationError

from config.settings import RuleEngineSettings, get_settings
from core.errors import NotFoundError, ValidationError
from rbac.authority import PermissionAuthority
from rbac.permissions import PermissionAction

from .conditions import validate_condition
from .engine import RuleEngine, RuleTestResult
from .models import WorkflowRule
from .rule_types import EntityType
from .stores import RuleStore

logger = logging.getLogger(__name__)

RULES_RESOURCE = "business-rules"

# Fields a caller may change through update_rule
_UPDATABLE = frozenset({
    "name", "description", "rule_type", "condition", "action",
    "action_params", "severity", "priority", "is_active",
})


class RuleManagementService:
    """
    Permission-gated management of workflow rules.

    Usage:
        service = RuleManagementService(rule_store, authority)
        rule = service.create_rule(owner_id, {
            "name": "Large invoice approval",
            "rule_type": "APPROVAL",
            "entity_type": "INVOICE",
            "condition": RuleBuilder.condition("total", ">", 50000),
            "action": "REQUIRE_APPROVAL",
            "severity": "CRITICAL",
        })
    """

    def __init__(
        self,
        store: RuleStore,
        authority: PermissionAuthority,
        engine: Optional[RuleEngine] = None,
        settings: Optional[RuleEngineSettings] = None,
    ):
        self.store = store
        self.authority = authority
        self.engine = engine or RuleEngine()
        self.settings = settings or get_settings().rules

    def _require(self, user_id: str, action: PermissionAction) -> None:
        self.authority.require_permission(
            self.authority.create_permission_context(user_id, RULES_RESOURCE, action)
        )

    def _get_or_404(self, rule_id: str) -> WorkflowRule:
        rule = self.store.get_rule(rule_id)
        if rule is None:
            raise NotFoundError(f"Rule {rule_id} not found", details={"rule_id": rule_id})
        return rule

    def _build(self, data: Mapping[str, Any]) -> WorkflowRule:
        validate_condition(data.get("condition"), self.settings.max_condition_depth)
        try:
            return WorkflowRule.model_validate(dict(data))
        except PydanticValidationError as e:
            raise ValidationError(
                "Invalid rule definition",
                details={"errors": [
                    {"loc": list(err["loc"]), "msg": err["msg"]} for err in e.errors()
                ]},
            ) from e

    # =========================================================================
    # Reads
    # =========================================================================

    def list_rules(self, user_id: str, entity_type: Optional[EntityType] = None) -> List[WorkflowRule]:
        self._require(user_id, PermissionAction.READ)
        return self.store.list_rules(EntityType(entity_type) if entity_type else None)

    def get_rule(self, user_id: str, rule_id: str) -> WorkflowRule:
        self._require(user_id, PermissionAction.READ)
        return self._get_or_404(rule_id)

    def get_rule_stats(self, user_id: str, rule_id: str) -> Dict[str, Any]:
        """Persisted execution counters plus the trigger rate."""
        self._require(user_id, PermissionAction.READ)
        rule = self._get_or_404(rule_id)
        stats = self.store.get_stats(rule_id)
        executions = stats.get("execution_count", 0)
        triggers = stats.get("trigger_count", 0)
        return {
            "rule_id": rule.id,
            "name": rule.name,
            "execution_count": executions,
            "trigger_count": triggers,
            "trigger_rate": (triggers / executions) if executions else 0.0,
        }

    def test_rule(self, user_id: str, rule_id: str, sample: Mapping[str, Any]) -> RuleTestResult:
        """Dry run of a saved rule against sample data."""
        self._require(user_id, PermissionAction.READ)
        return self.engine.test_rule(self._get_or_404(rule_id), sample)

    def test_definition(self, user_id: str, data: Mapping[str, Any], sample: Mapping[str, Any]) -> RuleTestResult:
        """Dry run of an unsaved rule definition."""
        self._require(user_id, PermissionAction.READ)
        return self.engine.test_rule(self._build(data), sample)

    # =========================================================================
    # Writes
    # =========================================================================

    def create_rule(self, user_id: str, data: Mapping[str, Any]) -> WorkflowRule:
        """
        Validate and persist a new rule.

        Raises:
            AuthorizationError: no configure permission on business-rules
            ValidationError: bad definition or condition
        """
        self._require(user_id, PermissionAction.CONFIGURE)
        rule = self._build({**data, "created_by": user_id})
        self.store.save_rule(rule)
        logger.info(
            f"Rule created: {rule.name}",
            extra={"extra_data": {
                "rule_id": rule.id,
                "entity_type": rule.entity_type.value,
                "action": rule.action.value,
                "user_id": user_id,
            }},
        )
        return rule

    def update_rule(self, user_id: str, rule_id: str, changes: Mapping[str, Any]) -> WorkflowRule:
        self._require(user_id, PermissionAction.CONFIGURE)
        current = self._get_or_404(rule_id)

        unknown = set(changes) - _UPDATABLE
        if unknown:
            raise ValidationError(
                f"Cannot update fields: {', '.join(sorted(unknown))}",
                details={"fields": sorted(unknown)},
            )

        merged = current.model_dump()
        merged.update(changes)
        merged["updated_at"] = datetime.utcnow()
        rule = self._build(merged)
        self.store.save_rule(rule)
        logger.info(
            f"Rule updated: {rule.name}",
            extra={"extra_data": {"rule_id": rule.id, "fields": sorted(changes), "user_id": user_id}},
        )
        return rule

    def set_active(self, user_id: str, rule_id: str, is_active: bool) -> WorkflowRule:
        return self.update_rule(user_id, rule_id, {"is_active": is_active})

    def delete_rule(self, user_id: str, rule_id: str) -> None:
        self._require(user_id, PermissionAction.CONFIGURE)
        if not self.store.delete_rule(rule_id):
            raise NotFoundError(f"Rule {rule_id} not found", details={"rule_id": rule_id})
        logger.info("Rule deleted", extra={"extra_data": {"rule_id": rule_id, "user_id": user_id}})
