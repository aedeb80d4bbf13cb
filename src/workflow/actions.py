"""
Informational rule actions.

AUTO_ASSIGN and CALCULATE_FIELD outcomes modify the entity data being saved
instead of gating the save. apply_informational_actions applies them to a
copy of the data, in outcome order.

Action params (camelCase as stored, snake_case also accepted):
    AUTO_ASSIGN:     assignToUserId, assignToRole
    CALCULATE_FIELD: targetField, calculation ("amount * 1.13")
"""

import copy
import logging
import operator
import re
from decimal import Decimal, InvalidOperation
from typing import Any, Callable, Dict, Iterable, Mapping, Optional

from .engine import MISSING, get_field_value
from .models import RuleOutcome
from .rule_types import RuleAction

logger = logging.getLogger(__name__)

_OPERATORS: Dict[str, Callable[[Decimal, Decimal], Decimal]] = {
    "+": operator.add,
    "-": operator.sub,
    "*": operator.mul,
    "/": operator.truediv,
}

_CALCULATION = re.compile(
    r"^\s*(?P<left>[A-Za-z_][\w.]*)\s*(?P<op>[-+*/])\s*(?:(?P<right_field>[A-Za-z_][\w.]*)|(?P<right_number>-?\d+(?:\.\d+)?))\s*$"
)


def _param(params: Mapping[str, Any], camel: str, snake: str) -> Any:
    value = params.get(camel)
    return params.get(snake) if value is None else value


def _decimal(value: Any) -> Optional[Decimal]:
    if isinstance(value, bool) or value is None or value is MISSING:
        return None
    try:
        return Decimal(str(value))
    except InvalidOperation:
        return None


def calculate(expression: str, data: Any) -> Optional[Decimal]:
    """
    Evaluate "<field> <op> <number|field>" against `data`.

    Returns None when the expression does not parse, an operand is not
    numeric, or it divides by zero.
    """
    match = _CALCULATION.match(expression or "")
    if match is None:
        return None

    left = _decimal(get_field_value(data, match.group("left")))
    if match.group("right_number") is not None:
        right = _decimal(match.group("right_number"))
    else:
        right = _decimal(get_field_value(data, match.group("right_field")))
    if left is None or right is None:
        return None

    op = match.group("op")
    if op == "/" and right == 0:
        return None
    return _OPERATORS[op](left, right)


def _set_path(data: Dict[str, Any], path: str, value: Any) -> None:
    """Set a dotted path, creating intermediate dicts."""
    parts = path.split(".")
    target = data
    for part in parts[:-1]:
        nxt = target.get(part)
        if not isinstance(nxt, dict):
            nxt = {}
            target[part] = nxt
        target = nxt
    target[parts[-1]] = value


def apply_informational_actions(
    data: Mapping[str, Any],
    outcomes: Iterable[RuleOutcome],
) -> Dict[str, Any]:
    """
    Apply AUTO_ASSIGN and CALCULATE_FIELD outcomes to a deep copy of `data`.

    Other actions are ignored. Outcomes with unusable params are skipped
    with a warning.
    """
    result: Dict[str, Any] = copy.deepcopy(dict(data))

    for outcome in outcomes:
        params = outcome.action_params or {}

        if outcome.action == RuleAction.AUTO_ASSIGN:
            user_id = _param(params, "assignToUserId", "assign_to_user_id")
            role = _param(params, "assignToRole", "assign_to_role")
            if user_id is None and role is None:
                logger.warning(
                    "AUTO_ASSIGN rule has no assignee",
                    extra={"extra_data": {"rule_id": outcome.rule_id}},
                )
                continue
            if user_id is not None:
                result["assigned_to"] = user_id
            if role is not None:
                result["assigned_role"] = role

        elif outcome.action == RuleAction.CALCULATE_FIELD:
            target = _param(params, "targetField", "target_field")
            expression = params.get("calculation")
            value = calculate(expression, result) if target else None
            if value is None:
                logger.warning(
                    "CALCULATE_FIELD rule skipped",
                    extra={"extra_data": {
                        "rule_id": outcome.rule_id,
                        "target_field": target,
                        "calculation": expression,
                    }},
                )
                continue
            _set_path(result, target, value)

    return result
