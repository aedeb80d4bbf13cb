"""
Workflow rule and outcome models.
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, Optional
from uuid import uuid4

from pydantic import BaseModel, ConfigDict, Field, field_validator

from .rule_types import EntityType, RuleAction, RuleSeverity, RuleType


class WorkflowRule(BaseModel):
    """
    A user-defined condition -> action pair scoped to one entity type.

    `condition` is kept as the raw mapping. A rule whose stored condition no
    longer parses still loads; the engine skips it at evaluation time.
    """

    model_config = ConfigDict(use_enum_values=False, validate_assignment=True)

    id: str = Field(default_factory=lambda: str(uuid4()))
    name: str = Field(..., min_length=1, max_length=200)
    description: Optional[str] = None
    rule_type: RuleType
    entity_type: EntityType
    condition: Dict[str, Any]
    action: RuleAction
    action_params: Dict[str, Any] = Field(default_factory=dict)
    severity: RuleSeverity = RuleSeverity.WARNING
    priority: int = Field(default=0, description="Lower runs first")
    is_active: bool = True
    created_by: Optional[str] = None
    created_at: datetime = Field(default_factory=datetime.utcnow)
    updated_at: datetime = Field(default_factory=datetime.utcnow)

    @field_validator("action_params", mode="before")
    @classmethod
    def default_params(cls, v: Any) -> Any:
        return {} if v is None else v

    def to_dict(self) -> Dict[str, Any]:
        return self.model_dump(mode="json")


@dataclass(frozen=True)
class RuleOutcome:
    """The result of one rule firing."""
    rule_id: str
    rule_name: str
    action: RuleAction
    severity: RuleSeverity
    message: str
    action_params: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for API responses."""
        return {
            "rule_id": self.rule_id,
            "rule_name": self.rule_name,
            "action": self.action.value,
            "severity": self.severity.value,
            "message": self.message,
            "action_params": dict(self.action_params),
        }
