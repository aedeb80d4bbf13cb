"""
Condition AST for workflow rules.

A condition is a tree of tagged nodes, discriminated by `type`:

    {"type": "comparison", "field": "total", "operator": ">", "value": 50000}
    {"type": "and", "conditions": [<node>, <node>, ...]}
    {"type": "or",  "conditions": [<node>, <node>, ...]}
    {"type": "not", "condition": <node>}

The stored LEAF/COMPOSITE shape is accepted too and normalized on parse:

    {"type": "LEAF", "field": "total", "operator": "gt", "value": 50000}
    {"type": "COMPOSITE", "operator": "AND", "children": [<node>, ...]}

Rules keep their condition as the raw mapping; parsing happens when a rule
is saved (strict, see validate_condition) and when it is evaluated (lenient,
a failure only skips that rule).
"""

import re
from typing import Annotated, Any, Dict, List, Literal, Mapping, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, field_validator, model_validator
from pydantic import ValidationError as PydanticValidationError

from core.errors import ErrorCode, ValidationError

from .rule_types import ComparisonOperator, LogicalOperator

DEFAULT_MAX_DEPTH = 10


# =============================================================================
# NODES
# =============================================================================

class ComparisonCondition(BaseModel):
    """Leaf node: compare one entity field against a literal."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    type: Literal["comparison"] = "comparison"
    field: str = Field(..., min_length=1, description="Dotted path into the entity")
    operator: ComparisonOperator
    value: Any = None

    @field_validator("operator", mode="before")
    @classmethod
    def resolve_alias(cls, v: Any) -> Any:
        # "gt", "starts_with" ... map onto the canonical members
        if isinstance(v, str) and not isinstance(v, ComparisonOperator):
            try:
                return ComparisonOperator(v)
            except ValueError:
                return v
        return v

    @model_validator(mode="after")
    def check_value_shape(self) -> "ComparisonCondition":
        op = self.operator
        if op == ComparisonOperator.BETWEEN:
            if not isinstance(self.value, (list, tuple)) or len(self.value) != 2:
                raise ValueError("'between' needs a [low, high] pair")
        elif op in (ComparisonOperator.IN, ComparisonOperator.NOT_IN):
            if not isinstance(self.value, (list, tuple)):
                raise ValueError(f"'{op.value}' needs a list value")
        elif op == ComparisonOperator.REGEX:
            try:
                re.compile(str(self.value))
            except re.error as e:
                raise ValueError(f"invalid regex: {e}") from e
        return self


class AndCondition(BaseModel):
    """All children must hold."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    type: Literal["and"] = "and"
    conditions: List["Condition"] = Field(..., min_length=1)


class OrCondition(BaseModel):
    """At least one child must hold."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    type: Literal["or"] = "or"
    conditions: List["Condition"] = Field(..., min_length=1)


class NotCondition(BaseModel):
    """Negates its single child."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    type: Literal["not"] = "not"
    condition: "Condition"


Condition = Annotated[
    Union[ComparisonCondition, AndCondition, OrCondition, NotCondition],
    Field(discriminator="type"),
]

AndCondition.model_rebuild()
OrCondition.model_rebuild()
NotCondition.model_rebuild()

_condition_adapter: TypeAdapter = TypeAdapter(Condition)


# =============================================================================
# PARSING
# =============================================================================

def normalize_condition(raw: Any) -> Any:
    """
    Rewrite LEAF/COMPOSITE nodes (and upper-case logical tags) into the
    discriminated shape. Anything unrecognized is returned untouched so
    pydantic reports it.
    """
    if isinstance(raw, BaseModel):
        return raw
    if not isinstance(raw, Mapping):
        return raw

    node = dict(raw)
    node_type = node.get("type")

    if node_type == "LEAF":
        node["type"] = "comparison"
        return node

    if node_type == "COMPOSITE":
        operator = str(node.pop("operator", "")).lower()
        children = [normalize_condition(c) for c in node.pop("children", []) or []]
        if operator == LogicalOperator.NOT.value:
            return {"type": "not", "condition": children[0] if children else None}
        return {"type": operator, "conditions": children}

    if isinstance(node_type, str) and node_type.lower() in ("and", "or", "not"):
        node["type"] = node_type.lower()

    if "conditions" in node and isinstance(node["conditions"], list):
        node["conditions"] = [normalize_condition(c) for c in node["conditions"]]
    if "condition" in node:
        node["condition"] = normalize_condition(node["condition"])
    return node


def parse_condition(raw: Any) -> Condition:
    """
    Parse a raw condition tree.

    Raises:
        pydantic.ValidationError: unknown node type, unknown operator,
            missing field, bad value shape
    """
    if isinstance(raw, (ComparisonCondition, AndCondition, OrCondition, NotCondition)):
        return raw
    return _condition_adapter.validate_python(normalize_condition(raw))


def _raw_depth(raw: Any, limit: int) -> int:
    """Depth of a raw tree, stopping early once it passes `limit`."""
    if limit < 0 or not isinstance(raw, Mapping):
        return 1
    children = list(raw.get("conditions") or raw.get("children") or [])
    if raw.get("condition") is not None:
        children.append(raw["condition"])
    if not children:
        return 1
    return 1 + max(_raw_depth(child, limit - 1) for child in children)


def validate_condition(raw: Any, max_depth: int = DEFAULT_MAX_DEPTH) -> Condition:
    """
    Strict validation used when a rule is saved.

    Raises:
        ValidationError: code CONDITION_TOO_DEEP when nesting exceeds
            max_depth, INVALID_CONDITION for any other problem
    """
    # Depth first, on the raw tree, so pathological input is rejected
    # before pydantic recurses through it.
    depth = _raw_depth(raw, max_depth + 1)
    if depth > max_depth:
        raise ValidationError(
            f"Condition nesting exceeds maximum depth of {max_depth}",
            code=ErrorCode.CONDITION_TOO_DEEP,
            details={"max_depth": max_depth},
        )

    try:
        return parse_condition(raw)
    except PydanticValidationError as e:
        raise ValidationError(
            "Invalid rule condition",
            code=ErrorCode.INVALID_CONDITION,
            details={"errors": [
                {"loc": list(err["loc"]), "msg": err["msg"]} for err in e.errors()
            ]},
        ) from e


# =============================================================================
# BUILDER
# =============================================================================

class RuleBuilder:
    """
    Helpers for composing raw condition trees.

    Usage:
        RuleBuilder.and_(
            RuleBuilder.condition("total", ">", 50000),
            RuleBuilder.not_(RuleBuilder.condition("customer.vip", "==", True)),
        )
    """

    @staticmethod
    def condition(field: str, operator: Union[str, ComparisonOperator], value: Any = None) -> Dict[str, Any]:
        op = ComparisonOperator(operator)
        return {"type": "comparison", "field": field, "operator": op.value, "value": value}

    @staticmethod
    def and_(*conditions: Dict[str, Any]) -> Dict[str, Any]:
        return {"type": "and", "conditions": list(conditions)}

    @staticmethod
    def or_(*conditions: Dict[str, Any]) -> Dict[str, Any]:
        return {"type": "or", "conditions": list(conditions)}

    @staticmethod
    def not_(condition: Dict[str, Any]) -> Dict[str, Any]:
        return {"type": "not", "condition": condition}
