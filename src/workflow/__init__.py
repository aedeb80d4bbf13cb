"""
Workflow Rule Engine and approval workflow.

Rules are data: a condition tree, an action and a priority, stored per
entity type. The engine evaluates them against an entity snapshot; the
approval workflow turns the outcomes into a status, enforcing permissions
through rbac.PermissionAuthority.
"""

from .rule_types import (
    ComparisonOperator,
    EntityType,
    LogicalOperator,
    RuleAction,
    RuleSeverity,
    RuleType,
)
from .conditions import (
    AndCondition,
    ComparisonCondition,
    Condition,
    NotCondition,
    OrCondition,
    RuleBuilder,
    normalize_condition,
    parse_condition,
    validate_condition,
)
from .models import RuleOutcome, WorkflowRule
from .engine import (
    MISSING,
    RuleEngine,
    RuleMetrics,
    RuleTestResult,
    compare_values,
    evaluate_condition,
    evaluate_rules,
    get_field_value,
    interpolate_message,
)
from .outcomes import ACTION_PRECEDENCE, RuleDecision, aggregate_outcomes
from .actions import apply_informational_actions, calculate
from .stores import InMemoryRuleStore, RuleStore, SqlAlchemyRuleStore
from .management import RULES_RESOURCE, RuleManagementService
from .state_machine import (
    EXPENSE_TRANSITIONS,
    INVOICE_TRANSITIONS,
    ApprovalWorkflow,
    ExpenseStatus,
    InvoiceStatus,
    Notifier,
    Transition,
    WorkflowEntity,
    WorkflowEvent,
    WorkflowHistoryEntry,
    find_transition,
)

__all__ = [
    # Types
    "ComparisonOperator",
    "EntityType",
    "LogicalOperator",
    "RuleAction",
    "RuleSeverity",
    "RuleType",
    # Conditions
    "AndCondition",
    "ComparisonCondition",
    "Condition",
    "NotCondition",
    "OrCondition",
    "RuleBuilder",
    "normalize_condition",
    "parse_condition",
    "validate_condition",
    # Rules
    "RuleOutcome",
    "WorkflowRule",
    # Engine
    "MISSING",
    "RuleEngine",
    "RuleMetrics",
    "RuleTestResult",
    "compare_values",
    "evaluate_condition",
    "evaluate_rules",
    "get_field_value",
    "interpolate_message",
    # Outcomes
    "ACTION_PRECEDENCE",
    "RuleDecision",
    "aggregate_outcomes",
    "apply_informational_actions",
    "calculate",
    # Stores
    "InMemoryRuleStore",
    "RuleStore",
    "SqlAlchemyRuleStore",
    # Management
    "RULES_RESOURCE",
    "RuleManagementService",
    # Approval workflow
    "EXPENSE_TRANSITIONS",
    "INVOICE_TRANSITIONS",
    "ApprovalWorkflow",
    "ExpenseStatus",
    "InvoiceStatus",
    "Notifier",
    "Transition",
    "WorkflowEntity",
    "WorkflowEvent",
    "WorkflowHistoryEntry",
    "find_transition",
]
