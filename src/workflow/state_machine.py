"""
Approval State Machine for invoices and expenses.

Lifecycle (invoice):
    DRAFT -> PENDING_APPROVAL -> APPROVED -> SENT -> PARTIALLY_PAID / PAID / OVERDUE
                              -> REJECTED -> DRAFT (re-edit)
    OVERDUE -> COLLECTION -> PAID / WRITTEN_OFF
    DRAFT, PENDING_APPROVAL, APPROVED, SENT -> CANCELLED

Lifecycle (expense):
    DRAFT -> PENDING_APPROVAL -> APPROVED -> PAID
                              -> REJECTED -> DRAFT
    DRAFT -> PAID when no approval is required

Every transition names the permission action it needs on the entity's
resource ("invoices", "expenses") and optionally a set of roles and a guard.

Rules:
- DRAFT -> PENDING_APPROVAL happens automatically on create when the rules
  require approval, or by explicit submission from the creator
- Approval needs `approve`; rejection needs `reject` and a reason
- APPROVED can only be undone by a REJECTED counter-transition
- Edits never skip PENDING_APPROVAL: an edit is a new rule evaluation cycle
- APPROVED and later states are locked for edits
"""

import functools
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal, InvalidOperation
from enum import Enum
from typing import Any, Callable, Dict, FrozenSet, List, Mapping, Optional, Protocol, Tuple, Union
from uuid import uuid4

from core.errors import (
    AuthorizationError,
    BusinessRuleViolation,
    ConflictError,
    ValidationError,
    WorkflowTransitionError,
)
from core.logging_config import actor_context, get_logger
from rbac.authority import PermissionAuthority
from rbac.permissions import PermissionAction
from rbac.roles import APPROVER_ROLES, Role

from .actions import apply_informational_actions
from .engine import MISSING, RuleEngine, RuleMetrics, get_field_value
from .outcomes import RuleDecision, aggregate_outcomes
from .rule_types import EntityType
from .stores import RuleStore

logger = get_logger(__name__, component="approval_workflow")


class InvoiceStatus(str, Enum):
    """Invoice lifecycle states."""
    DRAFT = "DRAFT"
    PENDING_APPROVAL = "PENDING_APPROVAL"
    APPROVED = "APPROVED"
    REJECTED = "REJECTED"
    SENT = "SENT"
    PARTIALLY_PAID = "PARTIALLY_PAID"
    PAID = "PAID"
    OVERDUE = "OVERDUE"
    COLLECTION = "COLLECTION"
    WRITTEN_OFF = "WRITTEN_OFF"
    CANCELLED = "CANCELLED"


class ExpenseStatus(str, Enum):
    """Expense lifecycle states."""
    DRAFT = "DRAFT"
    PENDING_APPROVAL = "PENDING_APPROVAL"
    APPROVED = "APPROVED"
    REJECTED = "REJECTED"
    PAID = "PAID"
    CANCELLED = "CANCELLED"


DRAFT = "DRAFT"
PENDING_APPROVAL = "PENDING_APPROVAL"
APPROVED = "APPROVED"
REJECTED = "REJECTED"

# States in which the entity's data may still change
EDITABLE_STATES = frozenset({DRAFT, PENDING_APPROVAL, REJECTED})


# =============================================================================
# ENTITY
# =============================================================================

@dataclass
class WorkflowHistoryEntry:
    """One recorded status change."""
    from_status: Optional[str]
    to_status: str
    actor_id: str
    action: str
    reason: Optional[str] = None
    at: datetime = field(default_factory=datetime.utcnow)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "from_status": self.from_status,
            "to_status": self.to_status,
            "actor_id": self.actor_id,
            "action": self.action,
            "reason": self.reason,
            "at": self.at.isoformat(),
        }


@dataclass
class WorkflowEntity:
    """
    An invoice or expense moving through the approval workflow.

    The workflow mutates it in place; persisting it is the caller's job.
    `version` increases on every change, for optimistic concurrency.
    """
    id: str
    entity_type: EntityType
    status: str
    data: Dict[str, Any]
    created_by: str
    requires_approval: bool = False
    requires_attachment: bool = False
    approved_by: Optional[str] = None
    approved_at: Optional[datetime] = None
    rejected_by: Optional[str] = None
    rejection_reason: Optional[str] = None
    version: int = 1
    history: List[WorkflowHistoryEntry] = field(default_factory=list)
    last_decision: Optional[RuleDecision] = None
    created_at: datetime = field(default_factory=datetime.utcnow)
    updated_at: datetime = field(default_factory=datetime.utcnow)

    @property
    def resource(self) -> str:
        return self.entity_type.resource

    @property
    def is_approved(self) -> bool:
        return self.approved_by is not None

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary."""
        return {
            "id": self.id,
            "entity_type": self.entity_type.value,
            "status": self.status,
            "data": dict(self.data),
            "created_by": self.created_by,
            "requires_approval": self.requires_approval,
            "requires_attachment": self.requires_attachment,
            "approved_by": self.approved_by,
            "approved_at": self.approved_at.isoformat() if self.approved_at else None,
            "rejected_by": self.rejected_by,
            "rejection_reason": self.rejection_reason,
            "version": self.version,
            "history": [h.to_dict() for h in self.history],
            "created_at": self.created_at.isoformat(),
            "updated_at": self.updated_at.isoformat(),
        }


# =============================================================================
# TRANSITIONS
# =============================================================================

Guard = Callable[[WorkflowEntity], bool]


def _number(entity: WorkflowEntity, path: str) -> Decimal:
    value = get_field_value(entity.data, path)
    if value is None or value is MISSING or isinstance(value, bool):
        return Decimal(0)
    try:
        number = Decimal(str(value).strip())
    except InvalidOperation:
        return Decimal(0)
    return Decimal(0) if number.is_nan() else number


def _partially_paid(entity: WorkflowEntity) -> bool:
    paid = _number(entity, "paid_amount")
    return 0 < paid < _number(entity, "total")


def _fully_paid(entity: WorkflowEntity) -> bool:
    return _number(entity, "paid_amount") >= _number(entity, "total")


def _clear_rejection(entity: WorkflowEntity) -> None:
    entity.rejected_by = None
    entity.rejection_reason = None


def _needs_approval(entity: WorkflowEntity) -> bool:
    return entity.requires_approval


def _cleared_for_release(entity: WorkflowEntity) -> bool:
    return not entity.requires_approval or entity.is_approved


@dataclass(frozen=True)
class Transition:
    """An allowed status move."""
    from_status: str
    to_status: str
    action: PermissionAction
    roles: FrozenSet[Role] = frozenset()
    guard: Optional[Guard] = None
    guard_message: str = "Transition conditions not met"
    requires_reason: bool = False
    creator_only: bool = False
    notify: Tuple[str, ...] = ()


def _t(from_status: Enum, to_status: Enum, action: str, **kwargs) -> Transition:
    return Transition(from_status.value, to_status.value, PermissionAction(action), **kwargs)


_PAID_GUARD = dict(guard=_fully_paid, guard_message="Paid amount must equal or exceed total")
_PARTIAL_GUARD = dict(guard=_partially_paid, guard_message="Paid amount must be between zero and the total")
_REASON = dict(requires_reason=True)

I = InvoiceStatus
INVOICE_TRANSITIONS: Tuple[Transition, ...] = (
    _t(I.DRAFT, I.PENDING_APPROVAL, "create", guard=_needs_approval,
       guard_message="Invoice does not require approval", creator_only=True,
       notify=("approver",)),
    _t(I.DRAFT, I.SENT, "send", guard=_cleared_for_release,
       guard_message="Invoice requires approval before sending", notify=("customer",)),
    _t(I.DRAFT, I.CANCELLED, "delete"),
    _t(I.PENDING_APPROVAL, I.APPROVED, "approve", roles=APPROVER_ROLES, notify=("creator",)),
    _t(I.PENDING_APPROVAL, I.REJECTED, "reject", roles=APPROVER_ROLES, notify=("creator",), **_REASON),
    _t(I.PENDING_APPROVAL, I.CANCELLED, "delete"),
    _t(I.APPROVED, I.SENT, "send", notify=("customer",)),
    _t(I.APPROVED, I.REJECTED, "reject", roles=APPROVER_ROLES, notify=("creator",), **_REASON),
    _t(I.APPROVED, I.CANCELLED, "delete"),
    _t(I.SENT, I.PARTIALLY_PAID, "update", notify=("owner",), **_PARTIAL_GUARD),
    _t(I.SENT, I.PAID, "update", notify=("owner",), **_PAID_GUARD),
    _t(I.SENT, I.OVERDUE, "read", notify=("customer",)),
    _t(I.SENT, I.CANCELLED, "delete"),
    _t(I.PARTIALLY_PAID, I.PAID, "update", notify=("owner",), **_PAID_GUARD),
    _t(I.PARTIALLY_PAID, I.OVERDUE, "read", notify=("customer",)),
    _t(I.OVERDUE, I.PAID, "update", notify=("owner",), **_PAID_GUARD),
    _t(I.OVERDUE, I.PARTIALLY_PAID, "update", notify=("owner",), **_PARTIAL_GUARD),
    _t(I.OVERDUE, I.COLLECTION, "update", roles=APPROVER_ROLES, notify=("collections",)),
    _t(I.COLLECTION, I.PAID, "update", notify=("owner",), **_PAID_GUARD),
    _t(I.COLLECTION, I.WRITTEN_OFF, "update", roles=frozenset({Role.OWNER}), notify=("finance",)),
    _t(I.REJECTED, I.DRAFT, "create"),
)

E = ExpenseStatus
EXPENSE_TRANSITIONS: Tuple[Transition, ...] = (
    _t(E.DRAFT, E.PENDING_APPROVAL, "create", guard=_needs_approval,
       guard_message="Expense does not require approval", creator_only=True,
       notify=("approver",)),
    _t(E.DRAFT, E.PAID, "update", guard=lambda e: not e.requires_approval,
       guard_message="Expense requires approval before marking as paid"),
    _t(E.DRAFT, E.CANCELLED, "delete"),
    _t(E.PENDING_APPROVAL, E.APPROVED, "approve", roles=APPROVER_ROLES, notify=("creator",)),
    _t(E.PENDING_APPROVAL, E.REJECTED, "reject", roles=APPROVER_ROLES, notify=("creator",), **_REASON),
    _t(E.PENDING_APPROVAL, E.CANCELLED, "delete"),
    _t(E.APPROVED, E.PAID, "update", notify=("creator",)),
    _t(E.APPROVED, E.REJECTED, "reject", roles=APPROVER_ROLES, notify=("creator",), **_REASON),
    _t(E.APPROVED, E.CANCELLED, "delete"),
    _t(E.REJECTED, E.DRAFT, "create"),
)

del I, E

TRANSITIONS: Dict[EntityType, Tuple[Transition, ...]] = {
    EntityType.INVOICE: INVOICE_TRANSITIONS,
    EntityType.EXPENSE: EXPENSE_TRANSITIONS,
}


def find_transition(entity_type: EntityType, from_status: str, to_status: str) -> Optional[Transition]:
    for transition in TRANSITIONS.get(EntityType(entity_type), ()):
        if transition.from_status == from_status and transition.to_status == to_status:
            return transition
    return None


# =============================================================================
# NOTIFICATIONS
# =============================================================================

@dataclass(frozen=True)
class WorkflowEvent:
    """Something a notifier may want to tell people about."""
    kind: str                     # STATUS_CHANGED | RULE_NOTIFICATION
    entity_id: str
    entity_type: EntityType
    actor_id: str
    from_status: Optional[str] = None
    to_status: Optional[str] = None
    recipients: Tuple[str, ...] = ()
    message: Optional[str] = None
    params: Mapping[str, Any] = field(default_factory=dict)


class Notifier(Protocol):
    def notify(self, event: WorkflowEvent) -> None:
        ...


# =============================================================================
# WORKFLOW SERVICE
# =============================================================================

def _as_actor(method):
    """Bind the acting user to log records for the duration of the call."""
    @functools.wraps(method)
    def wrapper(self, actor_id, *args, **kwargs):
        with actor_context(actor_id):
            return method(self, actor_id, *args, **kwargs)
    return wrapper


class ApprovalWorkflow:
    """
    Drives invoices and expenses through their lifecycle.

    Usage:
        workflow = ApprovalWorkflow(authority, RuleEngine(), rule_store)
        invoice = workflow.create(user_id, EntityType.INVOICE, {"total": 75000})
        workflow.approve(manager_id, invoice)
    """

    def __init__(
        self,
        authority: PermissionAuthority,
        engine: RuleEngine,
        rule_store: RuleStore,
        notifier: Optional[Notifier] = None,
        metrics: Optional[RuleMetrics] = None,
    ):
        self.authority = authority
        self.engine = engine
        self.rule_store = rule_store
        self.notifier = notifier
        self.metrics = metrics

    # =========================================================================
    # Creation and edits
    # =========================================================================

    @_as_actor
    def create(
        self,
        actor_id: str,
        entity_type: Union[EntityType, str],
        data: Mapping[str, Any],
        entity_id: Optional[str] = None,
    ) -> WorkflowEntity:
        """
        Create an entity after a permission check and a rule evaluation.

        Raises:
            AuthorizationError: no `create` permission
            BusinessRuleViolation: a BLOCK_CREATION rule fired
        """
        entity_type = self._supported(entity_type)
        self._require(actor_id, entity_type.resource, PermissionAction.CREATE)

        decision = self._evaluate(entity_type, data)
        entity = WorkflowEntity(
            id=entity_id or str(uuid4()),
            entity_type=entity_type,
            status=DRAFT,
            data=apply_informational_actions(data, decision.informational),
            created_by=actor_id,
            requires_approval=decision.requires_approval,
            requires_attachment=decision.requires_attachment,
            last_decision=decision,
        )
        entity.history.append(WorkflowHistoryEntry(None, DRAFT, actor_id, "create"))
        logger.info(
            f"{entity_type.value} created",
            extra={"extra_data": {"entity_id": entity.id, "requires_approval": entity.requires_approval}},
        )

        if entity.requires_approval:
            self._move(entity, find_transition(entity_type, DRAFT, PENDING_APPROVAL), actor_id)

        self._emit_rule_notifications(entity, decision, actor_id)
        return entity

    @_as_actor
    def edit(
        self,
        actor_id: str,
        entity: WorkflowEntity,
        changes: Mapping[str, Any],
        expected_version: Optional[int] = None,
    ) -> WorkflowEntity:
        """
        Change an entity's data and re-run its rules.

        - DRAFT / REJECTED: back to DRAFT with approval requirement recomputed
        - PENDING_APPROVAL: stays pending if approval is still required,
          otherwise returns to DRAFT
        - APPROVED and later: locked

        Raises:
            ConflictError: stale expected_version
            AuthorizationError: no `update` permission
            WorkflowTransitionError: entity is locked
            BusinessRuleViolation: a BLOCK_CREATION rule fired (entity unchanged)
        """
        self._check_version(entity, expected_version)
        self._require(actor_id, entity.resource, PermissionAction.UPDATE, entity.created_by)

        if entity.status not in EDITABLE_STATES:
            raise WorkflowTransitionError(
                f"{entity.entity_type.value} in status {entity.status} cannot be edited",
                current_status=entity.status,
            )

        new_data = {**entity.data, **changes}
        decision = self._evaluate(entity.entity_type, new_data)

        previous = entity.status
        entity.data = apply_informational_actions(new_data, decision.informational)
        entity.requires_approval = decision.requires_approval
        entity.requires_attachment = decision.requires_attachment
        entity.last_decision = decision
        entity.approved_by = None
        entity.approved_at = None
        if previous == REJECTED:
            _clear_rejection(entity)

        target = PENDING_APPROVAL if previous == PENDING_APPROVAL and entity.requires_approval else DRAFT
        entity.status = target
        entity.history.append(WorkflowHistoryEntry(previous, target, actor_id, "update"))
        self._touch(entity)

        logger.info(
            f"{entity.entity_type.value} edited",
            extra={"extra_data": {
                "entity_id": entity.id,
                "from_status": previous,
                "to_status": target,
                "requires_approval": entity.requires_approval,
            }},
        )
        self._emit_rule_notifications(entity, decision, actor_id)
        return entity

    # =========================================================================
    # Approval transitions
    # =========================================================================

    def submit_for_approval(
        self,
        actor_id: str,
        entity: WorkflowEntity,
        expected_version: Optional[int] = None,
    ) -> WorkflowEntity:
        """DRAFT -> PENDING_APPROVAL, by the creator only."""
        return self.transition(actor_id, entity, PENDING_APPROVAL, expected_version=expected_version)

    def approve(
        self,
        actor_id: str,
        entity: WorkflowEntity,
        expected_version: Optional[int] = None,
    ) -> WorkflowEntity:
        return self.transition(actor_id, entity, APPROVED, expected_version=expected_version)

    def reject(
        self,
        actor_id: str,
        entity: WorkflowEntity,
        reason: str,
        expected_version: Optional[int] = None,
    ) -> WorkflowEntity:
        return self.transition(actor_id, entity, REJECTED, reason=reason, expected_version=expected_version)

    def reopen(
        self,
        actor_id: str,
        entity: WorkflowEntity,
        expected_version: Optional[int] = None,
    ) -> WorkflowEntity:
        """REJECTED -> DRAFT."""
        return self.transition(actor_id, entity, DRAFT, expected_version=expected_version)

    # =========================================================================
    # Generic transitions
    # =========================================================================

    @_as_actor
    def transition(
        self,
        actor_id: str,
        entity: WorkflowEntity,
        to_status: Union[str, Enum],
        reason: Optional[str] = None,
        expected_version: Optional[int] = None,
    ) -> WorkflowEntity:
        """
        Move an entity to `to_status`.

        Raises:
            ConflictError: stale expected_version
            WorkflowTransitionError: no such transition, or its guard fails
            AuthorizationError: missing permission or required role
            ValidationError: reason required but empty
        """
        target = to_status.value if isinstance(to_status, Enum) else str(to_status)
        self._check_version(entity, expected_version)

        transition = find_transition(entity.entity_type, entity.status, target)
        if transition is None:
            raise WorkflowTransitionError(
                f"Invalid transition from {entity.status} to {target}",
                current_status=entity.status,
                target_status=target,
            )

        self._authorize(actor_id, entity, transition)

        if transition.requires_reason and not (reason or "").strip():
            raise ValidationError("Rejection reason is required", details={"field": "reason"})

        if transition.guard is not None and not transition.guard(entity):
            raise WorkflowTransitionError(
                transition.guard_message,
                current_status=entity.status,
                target_status=target,
            )

        return self._move(entity, transition, actor_id, reason)

    def available_transitions(self, actor_id: str, entity: WorkflowEntity) -> List[str]:
        """Statuses the actor could move the entity to right now."""
        available = []
        for transition in TRANSITIONS.get(entity.entity_type, ()):
            if transition.from_status != entity.status:
                continue
            if transition.guard is not None and not transition.guard(entity):
                continue
            if not self._is_authorized(actor_id, entity, transition):
                continue
            available.append(transition.to_status)
        return available

    # =========================================================================
    # Internals
    # =========================================================================

    def _supported(self, entity_type: Union[EntityType, str]) -> EntityType:
        entity_type = EntityType(entity_type)
        if entity_type not in TRANSITIONS:
            raise ValidationError(
                f"{entity_type.value} has no approval workflow",
                details={"entity_type": entity_type.value},
            )
        return entity_type

    def _require(
        self,
        actor_id: str,
        resource: str,
        action: PermissionAction,
        owner_id: Optional[str] = None,
    ) -> None:
        self.authority.require_permission(
            self.authority.create_permission_context(actor_id, resource, action, resource_owner_id=owner_id)
        )

    def _is_authorized(self, actor_id: str, entity: WorkflowEntity, transition: Transition) -> bool:
        if transition.creator_only and actor_id != entity.created_by:
            return False
        ctx = self.authority.create_permission_context(
            actor_id, entity.resource, transition.action, resource_owner_id=entity.created_by,
        )
        if not self.authority.has_permission(ctx):
            return False
        return not transition.roles or self.authority.has_any_role(actor_id, transition.roles)

    def _authorize(self, actor_id: str, entity: WorkflowEntity, transition: Transition) -> None:
        if transition.creator_only and actor_id != entity.created_by:
            raise AuthorizationError(
                "Only the creator can submit for approval",
                resource=entity.resource,
                action=transition.action.value,
            )
        self._require(actor_id, entity.resource, transition.action, entity.created_by)
        if transition.roles and not self.authority.has_any_role(actor_id, transition.roles):
            roles = ", ".join(sorted(r.value for r in transition.roles))
            raise AuthorizationError(
                f"Requires one of roles: {roles}",
                resource=entity.resource,
                action=transition.action.value,
            )

    def _evaluate(self, entity_type: EntityType, data: Mapping[str, Any]) -> RuleDecision:
        rules = self.rule_store.find_active_rules_by_entity_type(entity_type)
        metrics = self.metrics or self.engine.metrics
        outcomes = self.engine.evaluate(entity_type, data, rules, metrics)
        if metrics is not None:
            metrics.flush()

        decision = aggregate_outcomes(outcomes)
        if decision.blocked:
            blocking = [o.message for o in decision.blocking]
            raise BusinessRuleViolation(
                "; ".join(blocking),
                messages=decision.messages,
                outcomes=decision.outcomes,
            )
        return decision

    def _check_version(self, entity: WorkflowEntity, expected_version: Optional[int]) -> None:
        if expected_version is not None and expected_version != entity.version:
            raise ConflictError(
                f"{entity.entity_type.value} {entity.id} was modified concurrently",
                details={"expected_version": expected_version, "current_version": entity.version},
            )

    def _touch(self, entity: WorkflowEntity) -> None:
        entity.version += 1
        entity.updated_at = datetime.utcnow()

    def _move(
        self,
        entity: WorkflowEntity,
        transition: Transition,
        actor_id: str,
        reason: Optional[str] = None,
    ) -> WorkflowEntity:
        previous = entity.status
        entity.status = transition.to_status

        if transition.to_status == APPROVED:
            entity.approved_by = actor_id
            entity.approved_at = datetime.utcnow()
        elif transition.to_status == REJECTED:
            entity.approved_by = None
            entity.approved_at = None
            entity.rejected_by = actor_id
            entity.rejection_reason = reason.strip() if reason else reason
        elif previous == REJECTED:
            _clear_rejection(entity)

        entity.history.append(WorkflowHistoryEntry(
            previous, transition.to_status, actor_id, transition.action.value, reason,
        ))
        self._touch(entity)

        logger.info(
            f"{entity.entity_type.value} {previous} -> {transition.to_status}",
            extra={"extra_data": {"entity_id": entity.id, "actor_id": actor_id}},
        )

        if transition.notify:
            self._notify(WorkflowEvent(
                kind="STATUS_CHANGED",
                entity_id=entity.id,
                entity_type=entity.entity_type,
                actor_id=actor_id,
                from_status=previous,
                to_status=transition.to_status,
                recipients=transition.notify,
                message=reason,
            ))
        return entity

    def _emit_rule_notifications(self, entity: WorkflowEntity, decision: RuleDecision, actor_id: str) -> None:
        for outcome in decision.notifications:
            self._notify(WorkflowEvent(
                kind="RULE_NOTIFICATION",
                entity_id=entity.id,
                entity_type=entity.entity_type,
                actor_id=actor_id,
                to_status=entity.status,
                message=outcome.message,
                params=dict(outcome.action_params),
            ))

    def _notify(self, event: WorkflowEvent) -> None:
        if self.notifier is None:
            return
        try:
            self.notifier.notify(event)
        except Exception:
            logger.exception(
                "Notifier failed",
                extra={"extra_data": {"entity_id": event.entity_id, "kind": event.kind}},
            )
