"""
Rule type definitions.

Provides the enums used by workflow rules and their condition trees.
"""

from enum import Enum


class RuleType(str, Enum):
    """Types of business rules."""
    APPROVAL = "APPROVAL"            # Route documents for sign-off
    VALIDATION = "VALIDATION"        # Data checks before saving
    COMPLIANCE = "COMPLIANCE"        # Regulatory checks (VAT, limits)
    NOTIFICATION = "NOTIFICATION"    # Tell someone something happened
    AUTOMATION = "AUTOMATION"        # Assign or compute fields


class EntityType(str, Enum):
    """Entities rules can be scoped to."""
    INVOICE = "INVOICE"
    EXPENSE = "EXPENSE"
    CUSTOMER = "CUSTOMER"
    VENDOR = "VENDOR"
    PAYMENT = "PAYMENT"

    @property
    def resource(self) -> str:
        """Permission resource guarding this entity type."""
        return _ENTITY_RESOURCES[self.value]


_ENTITY_RESOURCES = {
    "INVOICE": "invoices",
    "EXPENSE": "expenses",
    "CUSTOMER": "customers",
    "VENDOR": "vendors",
    "PAYMENT": "invoices",
}


class RuleAction(str, Enum):
    """What a fired rule asks the caller to do."""
    REQUIRE_APPROVAL = "REQUIRE_APPROVAL"
    REQUIRE_ATTACHMENT = "REQUIRE_ATTACHMENT"
    BLOCK_CREATION = "BLOCK_CREATION"
    SHOW_WARNING = "SHOW_WARNING"
    SEND_NOTIFICATION = "SEND_NOTIFICATION"
    AUTO_ASSIGN = "AUTO_ASSIGN"
    CALCULATE_FIELD = "CALCULATE_FIELD"


class RuleSeverity(str, Enum):
    """Severity levels for fired rules."""
    CRITICAL = "CRITICAL"   # Blocks or needs sign-off
    WARNING = "WARNING"     # Should review, not blocking
    INFO = "INFO"           # Informational


# Named forms accepted for the symbolic operators
_OPERATOR_ALIASES = {
    "eq": "==",
    "=": "==",
    "ne": "!=",
    "gt": ">",
    "gte": ">=",
    "lt": "<",
    "lte": "<=",
    "starts_with": "startsWith",
    "ends_with": "endsWith",
}


class ComparisonOperator(str, Enum):
    """
    Operators of a comparison node.

    Both the symbolic form (">") and the named form ("gt") are accepted
    when parsing; the symbolic form is canonical.
    """
    GT = ">"
    LT = "<"
    GTE = ">="
    LTE = "<="
    EQ = "=="
    NE = "!="
    CONTAINS = "contains"
    STARTS_WITH = "startsWith"
    ENDS_WITH = "endsWith"
    IN = "in"
    NOT_IN = "not_in"
    BETWEEN = "between"
    REGEX = "regex"
    IS_NULL = "is_null"
    IS_NOT_NULL = "is_not_null"

    @classmethod
    def _missing_(cls, value):
        if isinstance(value, str):
            canonical = _OPERATOR_ALIASES.get(value)
            if canonical is not None:
                return cls(canonical)
        return None

    @property
    def is_ordering(self) -> bool:
        return self in (ComparisonOperator.GT, ComparisonOperator.LT,
                        ComparisonOperator.GTE, ComparisonOperator.LTE)


class LogicalOperator(str, Enum):
    """Compound node kinds."""
    AND = "and"
    OR = "or"
    NOT = "not"
