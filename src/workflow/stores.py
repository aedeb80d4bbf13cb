"""
Rule Stores

Persistence for workflow rules behind the RuleStore protocol:

- InMemoryRuleStore: thread-safe, for tests and single-process use
- SqlAlchemyRuleStore: the business_rules table

Stores return rules ordered by priority (ascending); the engine sorts again
so callers may pass rules from anywhere.
"""

import logging
import threading
from datetime import datetime
from typing import Callable, Dict, List, Optional, Protocol, Union, runtime_checkable

from sqlalchemy import select, update
from sqlalchemy.orm import Session

from database.connection import session_scope
from database.models import BusinessRuleRecord

from .models import WorkflowRule
from .rule_types import EntityType

logger = logging.getLogger(__name__)


@runtime_checkable
class RuleStore(Protocol):
    """Persistence contract for workflow rules."""

    def find_active_rules_by_entity_type(self, entity_type: EntityType) -> List[WorkflowRule]:
        ...

    def list_rules(self, entity_type: Optional[EntityType] = None) -> List[WorkflowRule]:
        ...

    def get_rule(self, rule_id: str) -> Optional[WorkflowRule]:
        ...

    def save_rule(self, rule: WorkflowRule) -> WorkflowRule:
        """Insert or replace by id."""
        ...

    def delete_rule(self, rule_id: str) -> bool:
        ...

    def record_execution(self, rule_id: str, triggered: bool) -> None:
        """Bump persisted execution (and trigger) counters."""
        ...

    def get_stats(self, rule_id: str) -> Dict[str, int]:
        ...


# =============================================================================
# IN-MEMORY STORE
# =============================================================================

class InMemoryRuleStore:
    """Thread-safe in-memory rule store."""

    def __init__(self, rules: Optional[List[WorkflowRule]] = None):
        self._rules: Dict[str, WorkflowRule] = {}
        self._stats: Dict[str, Dict[str, int]] = {}
        self._lock = threading.RLock()
        for rule in rules or []:
            self.save_rule(rule)

    def find_active_rules_by_entity_type(self, entity_type: EntityType) -> List[WorkflowRule]:
        entity_type = EntityType(entity_type)
        return [r for r in self.list_rules(entity_type) if r.is_active]

    def list_rules(self, entity_type: Optional[EntityType] = None) -> List[WorkflowRule]:
        with self._lock:
            rules = list(self._rules.values())
        if entity_type is not None:
            entity_type = EntityType(entity_type)
            rules = [r for r in rules if r.entity_type == entity_type]
        return sorted(rules, key=lambda r: r.priority)

    def get_rule(self, rule_id: str) -> Optional[WorkflowRule]:
        with self._lock:
            return self._rules.get(rule_id)

    def save_rule(self, rule: WorkflowRule) -> WorkflowRule:
        with self._lock:
            self._rules[rule.id] = rule
            self._stats.setdefault(rule.id, {"execution_count": 0, "trigger_count": 0})
        return rule

    def delete_rule(self, rule_id: str) -> bool:
        with self._lock:
            self._stats.pop(rule_id, None)
            return self._rules.pop(rule_id, None) is not None

    def record_execution(self, rule_id: str, triggered: bool) -> None:
        with self._lock:
            stats = self._stats.get(rule_id)
            if stats is None:
                return
            stats["execution_count"] += 1
            if triggered:
                stats["trigger_count"] += 1

    def get_stats(self, rule_id: str) -> Dict[str, int]:
        with self._lock:
            return dict(self._stats.get(rule_id, {"execution_count": 0, "trigger_count": 0}))


# =============================================================================
# SQLALCHEMY STORE
# =============================================================================

def _to_rule(record: BusinessRuleRecord) -> WorkflowRule:
    return WorkflowRule(
        id=record.rule_id,
        name=record.name,
        description=record.description,
        rule_type=record.rule_type,
        entity_type=record.entity_type,
        condition=record.condition or {},
        action=record.action,
        action_params=record.action_params or {},
        severity=record.severity,
        priority=record.priority,
        is_active=record.is_active,
        created_by=record.created_by,
        created_at=record.created_at,
        updated_at=record.updated_at or record.created_at,
    )


def _apply(record: BusinessRuleRecord, rule: WorkflowRule) -> None:
    record.name = rule.name
    record.description = rule.description
    record.rule_type = rule.rule_type.value
    record.entity_type = rule.entity_type.value
    record.condition = rule.condition
    record.action = rule.action.value
    record.action_params = rule.action_params
    record.severity = rule.severity.value
    record.priority = rule.priority
    record.is_active = rule.is_active
    record.created_by = rule.created_by
    record.updated_at = rule.updated_at


class SqlAlchemyRuleStore:
    """Workflow rules in the `business_rules` table."""

    def __init__(self, session_factory: Callable[[], Session]):
        self._session_factory = session_factory

    def find_active_rules_by_entity_type(self, entity_type: Union[EntityType, str]) -> List[WorkflowRule]:
        entity_type = EntityType(entity_type)
        with session_scope(self._session_factory) as session:
            stmt = (
                select(BusinessRuleRecord)
                .where(
                    BusinessRuleRecord.entity_type == entity_type.value,
                    BusinessRuleRecord.is_active.is_(True),
                )
                .order_by(BusinessRuleRecord.priority, BusinessRuleRecord.created_at)
            )
            return [_to_rule(r) for r in session.execute(stmt).scalars()]

    def list_rules(self, entity_type: Optional[EntityType] = None) -> List[WorkflowRule]:
        with session_scope(self._session_factory) as session:
            stmt = select(BusinessRuleRecord).order_by(
                BusinessRuleRecord.priority, BusinessRuleRecord.created_at
            )
            if entity_type is not None:
                stmt = stmt.where(BusinessRuleRecord.entity_type == EntityType(entity_type).value)
            return [_to_rule(r) for r in session.execute(stmt).scalars()]

    def get_rule(self, rule_id: str) -> Optional[WorkflowRule]:
        with session_scope(self._session_factory) as session:
            record = session.get(BusinessRuleRecord, rule_id)
            return _to_rule(record) if record is not None else None

    def save_rule(self, rule: WorkflowRule) -> WorkflowRule:
        with session_scope(self._session_factory) as session:
            record = session.get(BusinessRuleRecord, rule.id)
            if record is None:
                record = BusinessRuleRecord(rule_id=rule.id, created_at=rule.created_at)
                session.add(record)
            _apply(record, rule)
        return rule

    def delete_rule(self, rule_id: str) -> bool:
        with session_scope(self._session_factory) as session:
            record = session.get(BusinessRuleRecord, rule_id)
            if record is None:
                return False
            session.delete(record)
            return True

    def record_execution(self, rule_id: str, triggered: bool) -> None:
        values = {
            "execution_count": BusinessRuleRecord.execution_count + 1,
            "last_executed_at": datetime.utcnow(),
        }
        if triggered:
            values["trigger_count"] = BusinessRuleRecord.trigger_count + 1
        with session_scope(self._session_factory) as session:
            session.execute(
                update(BusinessRuleRecord)
                .where(BusinessRuleRecord.rule_id == rule_id)
                .values(**values)
            )

    def get_stats(self, rule_id: str) -> Dict[str, int]:
        with session_scope(self._session_factory) as session:
            record = session.get(BusinessRuleRecord, rule_id)
            if record is None:
                return {"execution_count": 0, "trigger_count": 0}
            return {
                "execution_count": record.execution_count,
                "trigger_count": record.trigger_count,
            }
