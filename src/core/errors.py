"""
Unified Error Taxonomy.

Provides the exceptions raised by the access-control and workflow core:
- Stable machine-readable codes so callers can branch without parsing prose
- HTTP-equivalent status codes for whatever transport renders them
- A transport-neutral response envelope (ErrorResponse)

Usage:
    from core.errors import AuthorizationError, ErrorCode

    raise AuthorizationError(
        message="Forbidden: You don't have permission to approve invoices",
        details={"resource": "invoices", "action": "approve"},
    )

The exact wire format (JSON envelope, headers) belongs to the API layer;
`APIError.to_response()` is the hand-off point.
"""

from __future__ import annotations

import logging
import uuid
from datetime import datetime
from enum import Enum
from http import HTTPStatus
from typing import Any, Dict, List, Optional, Union

from pydantic import BaseModel, Field

logger = logging.getLogger(__name__)


# =============================================================================
# ERROR CODES
# =============================================================================


class ErrorCode(str, Enum):
    """
    Machine codes for core errors.

    Categories:
    - Authorization: PERMISSION_DENIED (403)
    - Validation: VALIDATION_ERROR, INVALID_CONDITION, CONDITION_TOO_DEEP (400)
    - Resource: RESOURCE_NOT_FOUND (404), RESOURCE_CONFLICT (409)
    - Workflow: INVALID_TRANSITION (409), BUSINESS_RULE_VIOLATION (422)
    - Server: STORAGE_FAILURE (503), CONFIGURATION_ERROR (500)
    """

    # Authorization
    PERMISSION_DENIED = "PERMISSION_DENIED"

    # Validation
    VALIDATION_ERROR = "VALIDATION_ERROR"
    INVALID_CONDITION = "INVALID_CONDITION"
    CONDITION_TOO_DEEP = "CONDITION_TOO_DEEP"

    # Resources
    RESOURCE_NOT_FOUND = "RESOURCE_NOT_FOUND"
    RESOURCE_CONFLICT = "RESOURCE_CONFLICT"

    # Workflow
    INVALID_TRANSITION = "INVALID_TRANSITION"
    BUSINESS_RULE_VIOLATION = "BUSINESS_RULE_VIOLATION"

    # Server
    STORAGE_FAILURE = "STORAGE_FAILURE"
    CONFIGURATION_ERROR = "CONFIGURATION_ERROR"


ERROR_CODE_STATUS_MAP: Dict[ErrorCode, int] = {
    ErrorCode.PERMISSION_DENIED: HTTPStatus.FORBIDDEN,
    ErrorCode.VALIDATION_ERROR: HTTPStatus.BAD_REQUEST,
    ErrorCode.INVALID_CONDITION: HTTPStatus.BAD_REQUEST,
    ErrorCode.CONDITION_TOO_DEEP: HTTPStatus.BAD_REQUEST,
    ErrorCode.RESOURCE_NOT_FOUND: HTTPStatus.NOT_FOUND,
    ErrorCode.RESOURCE_CONFLICT: HTTPStatus.CONFLICT,
    ErrorCode.INVALID_TRANSITION: HTTPStatus.CONFLICT,
    ErrorCode.BUSINESS_RULE_VIOLATION: HTTPStatus.UNPROCESSABLE_ENTITY,
    ErrorCode.STORAGE_FAILURE: HTTPStatus.SERVICE_UNAVAILABLE,
    ErrorCode.CONFIGURATION_ERROR: HTTPStatus.INTERNAL_SERVER_ERROR,
}


# =============================================================================
# ERROR RESPONSE MODEL
# =============================================================================


class ErrorResponse(BaseModel):
    """
    Transport-neutral error envelope.

    The API layer serializes this however it likes (JSON body, gRPC status...).
    """
    error: bool = Field(default=True, description="Always true for errors")
    code: str = Field(..., description="Error code from ErrorCode enum")
    message: str = Field(..., description="Human-readable error message")
    status_code: int = Field(..., description="HTTP-equivalent status code")
    timestamp: str = Field(..., description="ISO 8601 timestamp")
    request_id: str = Field(..., description="Unique identifier for tracking")
    details: Optional[Dict[str, Any]] = Field(None, description="Additional error context")
    messages: Optional[List[str]] = Field(None, description="All rule messages, for rule violations")


# =============================================================================
# BASE EXCEPTION
# =============================================================================


class APIError(Exception):
    """
    Base exception for errors that cross the core's boundary.

    Usage:
        raise APIError(
            code=ErrorCode.VALIDATION_ERROR,
            message="Rejection reason is required",
            details={"field": "reason"},
        )
    """

    default_code: ErrorCode = ErrorCode.VALIDATION_ERROR

    def __init__(
        self,
        message: str,
        code: Union[ErrorCode, str, None] = None,
        status_code: Optional[int] = None,
        details: Optional[Dict[str, Any]] = None,
    ):
        if code is None:
            code = self.default_code
        self.code = code if isinstance(code, ErrorCode) else ErrorCode(code)
        self.message = message
        self.status_code = int(status_code or ERROR_CODE_STATUS_MAP.get(
            self.code, HTTPStatus.INTERNAL_SERVER_ERROR
        ))
        self.details = details
        super().__init__(message)

    def to_response(self, request_id: Optional[str] = None) -> ErrorResponse:
        """Convert to ErrorResponse model."""
        return ErrorResponse(
            error=True,
            code=self.code.value,
            message=self.message,
            status_code=self.status_code,
            timestamp=datetime.utcnow().isoformat() + "Z",
            request_id=request_id or str(uuid.uuid4()),
            details=self.details,
        )

    def __repr__(self) -> str:
        return f"{type(self).__name__}(code={self.code.value!r}, message={self.message!r})"


# =============================================================================
# CONCRETE ERRORS
# =============================================================================


class AuthorizationError(APIError):
    """Raised at the enforcement boundary when a permission check denies."""
    default_code = ErrorCode.PERMISSION_DENIED

    def __init__(
        self,
        message: str,
        resource: Optional[str] = None,
        action: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ):
        self.resource = resource
        self.action = action
        merged = dict(details or {})
        if resource is not None:
            merged.setdefault("resource", resource)
        if action is not None:
            merged.setdefault("action", action)
        super().__init__(message, details=merged or None)


class NotFoundError(APIError):
    """Raised when a requested record does not exist."""
    default_code = ErrorCode.RESOURCE_NOT_FOUND


class ValidationError(APIError):
    """Raised for invalid input (rule definitions, missing reasons...)."""
    default_code = ErrorCode.VALIDATION_ERROR


class ConflictError(APIError):
    """Raised when an optimistic version check fails."""
    default_code = ErrorCode.RESOURCE_CONFLICT


class StorageError(APIError):
    """Raised when a backing store fails during a read or write."""
    default_code = ErrorCode.STORAGE_FAILURE


class ConfigurationError(APIError):
    """Raised when compiled-in configuration (the permission matrix) is invalid."""
    default_code = ErrorCode.CONFIGURATION_ERROR


class WorkflowTransitionError(APIError):
    """Raised when an invalid workflow transition is attempted."""
    default_code = ErrorCode.INVALID_TRANSITION

    def __init__(
        self,
        message: str,
        current_status: Optional[str] = None,
        target_status: Optional[str] = None,
    ):
        self.current_status = current_status
        self.target_status = target_status
        super().__init__(
            message,
            details={"current_status": current_status, "target_status": target_status},
        )


class BusinessRuleViolation(APIError):
    """
    Raised when a BLOCK_CREATION rule fires.

    Carries every fired rule message, not just the blocking ones, so the
    user sees all reasons at once.
    """
    default_code = ErrorCode.BUSINESS_RULE_VIOLATION

    def __init__(self, message: str, messages: List[str], outcomes: Optional[list] = None):
        self.messages = list(messages)
        self.outcomes = list(outcomes or [])
        super().__init__(
            message,
            details={"rule_ids": [o.rule_id for o in self.outcomes]} if self.outcomes else None,
        )

    def to_response(self, request_id: Optional[str] = None) -> ErrorResponse:
        response = super().to_response(request_id)
        response.messages = self.messages
        return response
