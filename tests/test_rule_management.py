"""Tests for permission-gated rule management."""

import pytest

from core.errors import AuthorizationError, ErrorCode, NotFoundError, ValidationError
from workflow.conditions import RuleBuilder
from workflow.management import RuleManagementService
from workflow.rule_types import EntityType


def _definition(**overrides):
    data = {
        "name": "Large invoice approval",
        "rule_type": "APPROVAL",
        "entity_type": "INVOICE",
        "condition": RuleBuilder.condition("total", ">", 50000),
        "action": "REQUIRE_APPROVAL",
        "severity": "CRITICAL",
    }
    data.update(overrides)
    return data


@pytest.fixture
def service(rule_store, authority, rule_engine, rules_settings):
    return RuleManagementService(rule_store, authority, engine=rule_engine, settings=rules_settings)


class TestRuleManagementPermissions:
    """Tests for who may manage rules."""

    def test_owner_creates_rule(self, service, users, rule_store):
        rule = service.create_rule(users["owner"], _definition())

        assert rule.created_by == users["owner"]
        assert rule_store.get_rule(rule.id) == rule

    def test_manager_cannot_create(self, service, users):
        with pytest.raises(AuthorizationError) as exc_info:
            service.create_rule(users["manager"], _definition())
        assert exc_info.value.message == "Forbidden: You don't have permission to configure business-rules"

    def test_manager_can_read(self, service, users):
        rule = service.create_rule(users["owner"], _definition())
        assert [r.id for r in service.list_rules(users["manager"])] == [rule.id]
        assert service.get_rule(users["manager"], rule.id).id == rule.id

    def test_viewer_cannot_read(self, service, users):
        with pytest.raises(AuthorizationError):
            service.list_rules(users["viewer"])

    def test_accountant_cannot_delete(self, service, users):
        rule = service.create_rule(users["owner"], _definition())
        with pytest.raises(AuthorizationError):
            service.delete_rule(users["accountant"], rule.id)


class TestRuleValidation:
    """Tests for definition validation on save."""

    def test_invalid_condition(self, service, users):
        with pytest.raises(ValidationError) as exc_info:
            service.create_rule(users["owner"], _definition(condition={"type": "comparison", "field": "total"}))
        assert exc_info.value.code == ErrorCode.INVALID_CONDITION

    def test_too_deep(self, service, users):
        condition = RuleBuilder.condition("total", ">", 1)
        for _ in range(12):
            condition = RuleBuilder.not_(condition)
        with pytest.raises(ValidationError) as exc_info:
            service.create_rule(users["owner"], _definition(condition=condition))
        assert exc_info.value.code == ErrorCode.CONDITION_TOO_DEEP

    def test_invalid_definition(self, service, users):
        with pytest.raises(ValidationError) as exc_info:
            service.create_rule(users["owner"], _definition(action="EXPLODE", name=""))
        assert exc_info.value.code == ErrorCode.VALIDATION_ERROR
        fields = {tuple(e["loc"]) for e in exc_info.value.details["errors"]}
        assert ("action",) in fields
        assert ("name",) in fields

    def test_stored_leaf_shape_accepted(self, service, users):
        rule = service.create_rule(users["owner"], _definition(
            condition={"type": "LEAF", "field": "total", "operator": "gt", "value": 10},
        ))
        assert rule.condition["type"] == "LEAF"


class TestRuleUpdates:
    """Tests for update / activation / delete."""

    def test_update(self, service, users):
        rule = service.create_rule(users["owner"], _definition())
        updated = service.update_rule(users["owner"], rule.id, {"priority": 7, "name": "Renamed"})

        assert updated.id == rule.id
        assert updated.priority == 7
        assert updated.name == "Renamed"
        assert updated.created_by == users["owner"]
        assert updated.updated_at >= rule.updated_at

    def test_update_unknown_field(self, service, users):
        rule = service.create_rule(users["owner"], _definition())
        with pytest.raises(ValidationError, match="created_by"):
            service.update_rule(users["owner"], rule.id, {"created_by": "someone"})

    def test_update_missing_rule(self, service, users):
        with pytest.raises(NotFoundError):
            service.update_rule(users["owner"], "nope", {"priority": 1})

    def test_deactivate(self, service, users, rule_store):
        rule = service.create_rule(users["owner"], _definition())
        service.set_active(users["owner"], rule.id, False)
        assert rule_store.find_active_rules_by_entity_type(EntityType.INVOICE) == []

    def test_delete(self, service, users):
        rule = service.create_rule(users["owner"], _definition())
        service.delete_rule(users["owner"], rule.id)
        with pytest.raises(NotFoundError):
            service.delete_rule(users["owner"], rule.id)


class TestRuleDryRunAndStats:
    """Tests for test_rule / test_definition / get_rule_stats."""

    def test_dry_run_saved_rule(self, service, users):
        rule = service.create_rule(users["owner"], _definition())
        result = service.test_rule(users["manager"], rule.id, {"total": 90000})
        assert result.triggered
        assert result.outcome.rule_id == rule.id

    def test_dry_run_records_no_metrics(self, service, users, rule_store):
        rule = service.create_rule(users["owner"], _definition())
        service.test_rule(users["owner"], rule.id, {"total": 90000})
        assert rule_store.get_stats(rule.id)["execution_count"] == 0

    def test_dry_run_definition(self, service, users):
        result = service.test_definition(users["manager"], _definition(), {"total": 10})
        assert result.triggered is False
        assert result.error is None

    def test_stats(self, service, users, rule_store):
        rule = service.create_rule(users["owner"], _definition())
        rule_store.record_execution(rule.id, True)
        rule_store.record_execution(rule.id, False)
        rule_store.record_execution(rule.id, False)
        rule_store.record_execution(rule.id, False)

        stats = service.get_rule_stats(users["manager"], rule.id)
        assert stats["execution_count"] == 4
        assert stats["trigger_count"] == 1
        assert stats["trigger_rate"] == 0.25
