"""
Workflow Rule Engine.

Evaluates active business rules against an entity snapshot and reports
every rule that fires. The engine performs no I/O and holds no shared state
beyond optional in-memory metrics counters. The caller fetches rules,
applies the resulting outcomes (see workflow.outcomes) and flushes metrics
to storage.

Failure policy:
    A rule that cannot be evaluated (malformed condition, unknown operator,
    bad value shape) does not fire and is logged. It never aborts the
    evaluation of the remaining rules.
"""

import logging
import re
import threading
from dataclasses import dataclass
from datetime import date, datetime
from decimal import Decimal, InvalidOperation
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional, Sequence, Tuple, Union

from .conditions import (
    AndCondition,
    ComparisonCondition,
    Condition,
    NotCondition,
    OrCondition,
    parse_condition,
)
from .models import RuleOutcome, WorkflowRule
from .rule_types import ComparisonOperator, EntityType

logger = logging.getLogger(__name__)


class _Missing:
    """Marker for a field path that does not resolve."""

    def __repr__(self) -> str:
        return "MISSING"

    def __bool__(self) -> bool:
        return False


MISSING = _Missing()

_PLACEHOLDER = re.compile(r"\{([^}]+)\}")


# =============================================================================
# FIELD ACCESS
# =============================================================================

def get_field_value(entity: Any, path: str) -> Any:
    """
    Resolve a dotted path ("customer.address.city", "lines.0.amount").

    Walks mappings by key, sequences by integer index and other objects by
    attribute. Returns MISSING when any segment does not resolve.
    """
    current = entity
    for segment in path.split("."):
        if current is None or current is MISSING:
            return MISSING
        if isinstance(current, Mapping):
            current = current.get(segment, MISSING)
        elif isinstance(current, (list, tuple)):
            try:
                current = current[int(segment)]
            except (ValueError, IndexError):
                return MISSING
        else:
            current = getattr(current, segment, MISSING)
    return current


# =============================================================================
# COMPARISON
# =============================================================================

def _to_number(value: Any) -> Optional[Decimal]:
    if isinstance(value, bool):
        return Decimal(int(value))
    if isinstance(value, int):
        return Decimal(value)
    if isinstance(value, float):
        number = Decimal(str(value))
    elif isinstance(value, Decimal):
        number = value
    elif isinstance(value, str):
        try:
            number = Decimal(value.strip())
        except InvalidOperation:
            return None
    else:
        return None
    return None if number.is_nan() else number


def _to_text(value: Any) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    return str(value)


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float, Decimal)) and not isinstance(value, bool)


def values_equal(actual: Any, expected: Any) -> bool:
    """
    Equality after coercing both sides to a common type.

    Numbers compare numerically (so 100, 100.0, Decimal("100") and "100"
    are equal), booleans compare with booleans or "true"/"false", anything
    else compares as text.
    """
    if type(actual) is type(expected):
        return actual == expected

    if isinstance(actual, bool) or isinstance(expected, bool):
        return _to_text(actual).lower() == _to_text(expected).lower()

    if _is_number(actual) or _is_number(expected):
        left, right = _to_number(actual), _to_number(expected)
        return left is not None and right is not None and left == right

    return _to_text(actual) == _to_text(expected)


def compare_values(
    actual: Any,
    operator: Union[ComparisonOperator, str],
    expected: Any,
) -> bool:
    """
    Apply a comparison operator.

    A missing or null field satisfies only is_null. Ordering operators
    compare both sides as Decimal and fail when either side is not numeric.

    Raises:
        ValueError: unknown operator
    """
    op = ComparisonOperator(operator)
    absent = actual is None or actual is MISSING

    if op == ComparisonOperator.IS_NULL:
        return absent
    if op == ComparisonOperator.IS_NOT_NULL:
        return not absent
    if absent:
        return False

    if op.is_ordering:
        left, right = _to_number(actual), _to_number(expected)
        if left is None or right is None:
            return False
        if op == ComparisonOperator.GT:
            return left > right
        if op == ComparisonOperator.GTE:
            return left >= right
        if op == ComparisonOperator.LT:
            return left < right
        return left <= right

    if op == ComparisonOperator.EQ:
        return values_equal(actual, expected)
    if op == ComparisonOperator.NE:
        return not values_equal(actual, expected)

    if op == ComparisonOperator.CONTAINS:
        if isinstance(actual, (list, tuple, set, frozenset)):
            return any(values_equal(item, expected) for item in actual)
        return _to_text(expected) in _to_text(actual)
    if op == ComparisonOperator.STARTS_WITH:
        return _to_text(actual).startswith(_to_text(expected))
    if op == ComparisonOperator.ENDS_WITH:
        return _to_text(actual).endswith(_to_text(expected))

    if op == ComparisonOperator.IN:
        return isinstance(expected, (list, tuple)) and any(values_equal(actual, e) for e in expected)
    if op == ComparisonOperator.NOT_IN:
        return isinstance(expected, (list, tuple)) and not any(values_equal(actual, e) for e in expected)

    if op == ComparisonOperator.BETWEEN:
        if not isinstance(expected, (list, tuple)) or len(expected) != 2:
            return False
        number, low, high = _to_number(actual), _to_number(expected[0]), _to_number(expected[1])
        if number is None or low is None or high is None:
            return False
        return low <= number <= high

    if op == ComparisonOperator.REGEX:
        try:
            return re.search(_to_text(expected), _to_text(actual)) is not None
        except re.error:
            return False

    return False


def evaluate_condition(node: Condition, entity: Any) -> bool:
    """Evaluate a parsed condition tree against an entity."""
    if isinstance(node, ComparisonCondition):
        return compare_values(get_field_value(entity, node.field), node.operator, node.value)
    if isinstance(node, AndCondition):
        return all(evaluate_condition(child, entity) for child in node.conditions)
    if isinstance(node, OrCondition):
        return any(evaluate_condition(child, entity) for child in node.conditions)
    if isinstance(node, NotCondition):
        return not evaluate_condition(node.condition, entity)
    raise TypeError(f"Unknown condition node: {type(node).__name__}")


def interpolate_message(template: str, entity: Any) -> str:
    """Replace {field.path} placeholders; unresolved ones are left as-is."""
    def _replace(match: "re.Match") -> str:
        value = get_field_value(entity, match.group(1).strip())
        return match.group(0) if value is MISSING else _to_text(value)

    return _PLACEHOLDER.sub(_replace, template)


# =============================================================================
# METRICS
# =============================================================================

class RuleMetrics:
    """
    Thread-safe per-rule execution and trigger counters.

    `record` only touches memory. When a `sink` is given (e.g. a rule
    store's record_execution), executions are also queued and handed to it
    by `flush`, which callers run after evaluation. Sink failures are logged
    and never reach the caller.
    """

    def __init__(self, sink: Optional[Callable[[str, bool], None]] = None):
        self._executions: Dict[str, int] = {}
        self._triggers: Dict[str, int] = {}
        self._pending: List[Tuple[str, bool]] = []
        self._lock = threading.Lock()
        self._sink = sink

    def record(self, rule_id: str, triggered: bool) -> None:
        with self._lock:
            self._executions[rule_id] = self._executions.get(rule_id, 0) + 1
            if triggered:
                self._triggers[rule_id] = self._triggers.get(rule_id, 0) + 1
            if self._sink is not None:
                self._pending.append((rule_id, triggered))

    def flush(self) -> int:
        """Hand queued executions to the sink. Returns how many were delivered."""
        with self._lock:
            pending, self._pending = self._pending, []
        if self._sink is None:
            return 0

        delivered = 0
        for rule_id, triggered in pending:
            try:
                self._sink(rule_id, triggered)
            except Exception as e:
                logger.error(
                    f"Failed to update rule metrics: {e}",
                    extra={"extra_data": {"rule_id": rule_id}},
                )
                continue
            delivered += 1
        return delivered

    @property
    def pending(self) -> int:
        with self._lock:
            return len(self._pending)

    def stats(self, rule_id: str) -> Dict[str, Any]:
        with self._lock:
            executions = self._executions.get(rule_id, 0)
            triggers = self._triggers.get(rule_id, 0)
        return {
            "execution_count": executions,
            "trigger_count": triggers,
            "trigger_rate": (triggers / executions) if executions else 0.0,
        }

    def reset(self) -> None:
        with self._lock:
            self._executions.clear()
            self._triggers.clear()
            self._pending.clear()


# =============================================================================
# ENGINE
# =============================================================================

@dataclass(frozen=True)
class RuleTestResult:
    """Result of a dry run of one rule against a sample entity."""
    triggered: bool
    outcome: Optional[RuleOutcome] = None
    error: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "triggered": self.triggered,
            "outcome": self.outcome.to_dict() if self.outcome else None,
            "error": self.error,
        }


class RuleEngine:
    """
    Evaluates workflow rules.

    Usage:
        engine = RuleEngine()
        outcomes = engine.evaluate(EntityType.INVOICE, {"total": 75000}, rules)
    """

    def __init__(self, metrics: Optional[RuleMetrics] = None):
        self.metrics = metrics

    def evaluate(
        self,
        entity_type: Union[EntityType, str],
        entity: Any,
        rules: Iterable[Any],
        metrics: Optional[RuleMetrics] = None,
    ) -> List[RuleOutcome]:
        """
        Evaluate every active rule for `entity_type`, lowest priority first.

        All fired outcomes are returned in evaluation order; the engine never
        stops early.
        """
        entity_type = EntityType(entity_type)
        metrics = metrics or self.metrics

        applicable: List[WorkflowRule] = []
        for raw in rules:
            rule = self._coerce_rule(raw)
            if rule is not None and rule.is_active and rule.entity_type == entity_type:
                applicable.append(rule)
        applicable.sort(key=lambda r: r.priority)

        outcomes: List[RuleOutcome] = []
        skipped = 0
        for rule in applicable:
            try:
                outcome = self.evaluate_rule(rule, entity)
            except Exception as e:
                skipped += 1
                logger.warning(
                    f"Skipping rule '{rule.name}': {e}",
                    extra={"extra_data": {
                        "rule_id": rule.id,
                        "entity_type": entity_type.value,
                        "error_type": type(e).__name__,
                    }},
                )
                continue

            if metrics is not None:
                metrics.record(rule.id, outcome is not None)
            if outcome is not None:
                outcomes.append(outcome)

        logger.debug(
            "Rules evaluated",
            extra={"extra_data": {
                "entity_type": entity_type.value,
                "evaluated": len(applicable),
                "fired": len(outcomes),
                "skipped": skipped,
            }},
        )
        return outcomes

    def evaluate_rule(self, rule: WorkflowRule, entity: Any) -> Optional[RuleOutcome]:
        """
        Evaluate one rule. Returns its outcome if it fires, else None.

        Raises whatever parsing or comparison raises; evaluate() isolates it.
        """
        node = parse_condition(rule.condition)
        if not evaluate_condition(node, entity):
            return None
        return RuleOutcome(
            rule_id=rule.id,
            rule_name=rule.name,
            action=rule.action,
            severity=rule.severity,
            message=self.build_message(rule, entity),
            action_params=dict(rule.action_params),
        )

    def test_rule(self, rule: WorkflowRule, sample: Any) -> RuleTestResult:
        """Dry run: never raises, never records metrics."""
        try:
            outcome = self.evaluate_rule(rule, sample)
        except Exception as e:
            return RuleTestResult(triggered=False, error=str(e))
        return RuleTestResult(triggered=outcome is not None, outcome=outcome)

    @staticmethod
    def build_message(rule: WorkflowRule, entity: Any) -> str:
        template = rule.action_params.get("message")
        if isinstance(template, str) and template:
            return interpolate_message(template, entity)
        if rule.description:
            return rule.description
        return f'Rule "{rule.name}" triggered for {rule.entity_type.value}'

    @staticmethod
    def _coerce_rule(raw: Any) -> Optional[WorkflowRule]:
        if isinstance(raw, WorkflowRule):
            return raw
        try:
            return WorkflowRule.model_validate(raw)
        except Exception as e:
            rule_id = raw.get("id") if isinstance(raw, Mapping) else None
            logger.warning(
                f"Skipping unreadable rule: {e}",
                extra={"extra_data": {"rule_id": rule_id}},
            )
            return None


def evaluate_rules(
    entity_type: Union[EntityType, str],
    entity: Any,
    active_rules: Sequence[Any],
) -> List[RuleOutcome]:
    """Evaluate `active_rules` against `entity` with a fresh engine."""
    return RuleEngine().evaluate(entity_type, entity, active_rules)
