"""Tests for the error taxonomy."""

import pytest

from core.errors import (
    APIError,
    AuthorizationError,
    BusinessRuleViolation,
    ConfigurationError,
    ConflictError,
    ErrorCode,
    NotFoundError,
    StorageError,
    ValidationError,
    WorkflowTransitionError,
)
from workflow.models import RuleOutcome
from workflow.rule_types import RuleAction, RuleSeverity


class TestErrorStatusCodes:
    """Each error maps to a stable code and HTTP-equivalent status."""

    @pytest.mark.parametrize("error, code, status", [
        (AuthorizationError("no"), ErrorCode.PERMISSION_DENIED, 403),
        (NotFoundError("no"), ErrorCode.RESOURCE_NOT_FOUND, 404),
        (ValidationError("no"), ErrorCode.VALIDATION_ERROR, 400),
        (ConflictError("no"), ErrorCode.RESOURCE_CONFLICT, 409),
        (StorageError("no"), ErrorCode.STORAGE_FAILURE, 503),
        (ConfigurationError("no"), ErrorCode.CONFIGURATION_ERROR, 500),
        (WorkflowTransitionError("no"), ErrorCode.INVALID_TRANSITION, 409),
        (BusinessRuleViolation("no", messages=[]), ErrorCode.BUSINESS_RULE_VIOLATION, 422),
    ])
    def test_codes(self, error, code, status):
        assert error.code == code
        assert error.status_code == status

    def test_explicit_code_overrides_default(self):
        error = ValidationError("too deep", code=ErrorCode.CONDITION_TOO_DEEP)
        assert error.code == ErrorCode.CONDITION_TOO_DEEP
        assert error.status_code == 400

    def test_string_code(self):
        assert APIError("x", code="RESOURCE_NOT_FOUND").status_code == 404


class TestErrorResponse:
    """Tests for the response envelope."""

    def test_authorization_details(self):
        response = AuthorizationError("Forbidden", resource="invoices", action="approve").to_response("req-1")
        assert response.code == "PERMISSION_DENIED"
        assert response.status_code == 403
        assert response.request_id == "req-1"
        assert response.details == {"resource": "invoices", "action": "approve"}

    def test_rule_violation_carries_messages(self):
        outcome = RuleOutcome("r-1", "Limit", RuleAction.BLOCK_CREATION, RuleSeverity.CRITICAL, "Too big")
        error = BusinessRuleViolation("Too big", messages=["Too big", "Also odd"], outcomes=[outcome])

        response = error.to_response()
        assert response.messages == ["Too big", "Also odd"]
        assert response.details == {"rule_ids": ["r-1"]}
        assert response.request_id

    def test_transition_details(self):
        error = WorkflowTransitionError("nope", current_status="DRAFT", target_status="PAID")
        assert error.details == {"current_status": "DRAFT", "target_status": "PAID"}
