"""
Core Module - Shared infrastructure for cross-cutting concerns.

This module provides:
- The API error hierarchy (core.errors)
- Structured logging (core.logging_config)
- The service registry and process wiring (core.service_registry, core.bootstrap)

core.bootstrap imports rbac and workflow, which import from core; import
it directly rather than through this package.
"""

from .errors import (
    APIError,
    AuthorizationError,
    BusinessRuleViolation,
    ConfigurationError,
    ConflictError,
    ErrorCode,
    ErrorResponse,
    NotFoundError,
    StorageError,
    ValidationError,
    WorkflowTransitionError,
)
from .logging_config import configure_logging, get_logger
from .service_registry import ServiceRegistry, services

__all__ = [
    "APIError",
    "AuthorizationError",
    "BusinessRuleViolation",
    "ConfigurationError",
    "ConflictError",
    "ErrorCode",
    "ErrorResponse",
    "NotFoundError",
    "StorageError",
    "ValidationError",
    "WorkflowTransitionError",
    "configure_logging",
    "get_logger",
    "ServiceRegistry",
    "services",
]
