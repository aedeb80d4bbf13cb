"""
Database Layer for the access-control and workflow core.

This module provides:
- SQLAlchemy ORM models for users, role assignments and business rules
- Sync engine / session factory helpers
- Transactional session scope
"""

from .models import (
    Base,
    JSONB,
    UserRecord,
    UserRoleRecord,
    BusinessRuleRecord,
)

from .connection import (
    create_sync_engine,
    create_session_factory,
    create_schema,
    session_scope,
)

__all__ = [
    # Models
    "Base",
    "JSONB",
    "UserRecord",
    "UserRoleRecord",
    "BusinessRuleRecord",
    # Connection
    "create_sync_engine",
    "create_session_factory",
    "create_schema",
    "session_scope",
]
