"""
Outcome aggregation.

Folds the engine's fired outcomes into one effective decision using a fixed
precedence:

    BLOCK_CREATION > REQUIRE_APPROVAL > REQUIRE_ATTACHMENT
        > SHOW_WARNING > SEND_NOTIFICATION > AUTO_ASSIGN / CALCULATE_FIELD

AUTO_ASSIGN and CALCULATE_FIELD are informational and always applied,
whatever the effective action. Outcomes sharing an action are all kept:
distinct reasons for the same action matter to an auditor.
"""

from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional

from .models import RuleOutcome
from .rule_types import RuleAction

# Higher wins
ACTION_PRECEDENCE: Dict[RuleAction, int] = {
    RuleAction.BLOCK_CREATION: 6,
    RuleAction.REQUIRE_APPROVAL: 5,
    RuleAction.REQUIRE_ATTACHMENT: 4,
    RuleAction.SHOW_WARNING: 3,
    RuleAction.SEND_NOTIFICATION: 2,
    RuleAction.AUTO_ASSIGN: 1,
    RuleAction.CALCULATE_FIELD: 1,
}

INFORMATIONAL_ACTIONS = frozenset({RuleAction.AUTO_ASSIGN, RuleAction.CALCULATE_FIELD})


@dataclass
class RuleDecision:
    """Effective decision for one mutation."""
    effective_action: Optional[RuleAction] = None
    outcomes: List[RuleOutcome] = field(default_factory=list)

    @property
    def blocked(self) -> bool:
        return self.effective_action == RuleAction.BLOCK_CREATION

    @property
    def requires_approval(self) -> bool:
        return any(o.action == RuleAction.REQUIRE_APPROVAL for o in self.outcomes)

    @property
    def requires_attachment(self) -> bool:
        return any(o.action == RuleAction.REQUIRE_ATTACHMENT for o in self.outcomes)

    @property
    def messages(self) -> List[str]:
        """Every fired message, in evaluation order."""
        return [o.message for o in self.outcomes]

    @property
    def blocking(self) -> List[RuleOutcome]:
        return self._with(RuleAction.BLOCK_CREATION)

    @property
    def warnings(self) -> List[RuleOutcome]:
        return self._with(RuleAction.SHOW_WARNING)

    @property
    def notifications(self) -> List[RuleOutcome]:
        return self._with(RuleAction.SEND_NOTIFICATION)

    @property
    def informational(self) -> List[RuleOutcome]:
        return [o for o in self.outcomes if o.action in INFORMATIONAL_ACTIONS]

    def _with(self, action: RuleAction) -> List[RuleOutcome]:
        return [o for o in self.outcomes if o.action == action]

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for API responses."""
        return {
            "effective_action": self.effective_action.value if self.effective_action else None,
            "blocked": self.blocked,
            "requires_approval": self.requires_approval,
            "requires_attachment": self.requires_attachment,
            "messages": self.messages,
            "outcomes": [o.to_dict() for o in self.outcomes],
        }


def aggregate_outcomes(outcomes: Iterable[RuleOutcome]) -> RuleDecision:
    """
    Reduce outcomes to a RuleDecision.

    With no outcomes the effective action is None (allow). Ties keep the
    first outcome seen.
    """
    ordered = list(outcomes)
    effective: Optional[RuleAction] = None
    for outcome in ordered:
        if effective is None or ACTION_PRECEDENCE[outcome.action] > ACTION_PRECEDENCE[effective]:
            effective = outcome.action
    return RuleDecision(effective_action=effective, outcomes=ordered)
