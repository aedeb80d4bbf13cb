"""
SQLAlchemy ORM Models for the access-control and workflow core.

Tables:
- users:          minimal user identity (the bootstrap rule needs a count)
- user_roles:     role assignments, unique per (user_id, role_type)
- business_rules: user-defined workflow rules with execution counters

Architecture:
- Primary Keys: string identifiers (UUID4 text by default)
- Conditions and action params stored as portable JSON (JSONB on PostgreSQL)
- Constraints: unique assignment pair, check constraints on enum columns
"""

from datetime import datetime
from uuid import uuid4

from sqlalchemy import (
    Column, String, Integer, Boolean, DateTime, Text, ForeignKey,
    Index, CheckConstraint, UniqueConstraint, JSON,
)
from sqlalchemy.dialects.postgresql import JSONB as PG_JSONB
from sqlalchemy.orm import declarative_base, relationship
from sqlalchemy.types import TypeDecorator


# Cross-database compatible JSON type
# Uses JSONB on PostgreSQL, JSON on SQLite/others
class JSONB(TypeDecorator):
    """A portable JSONB type that works with both PostgreSQL and SQLite."""
    impl = JSON
    cache_ok = True

    def load_dialect_impl(self, dialect):
        if dialect.name == 'postgresql':
            return dialect.type_descriptor(PG_JSONB())
        else:
            return dialect.type_descriptor(JSON())


Base = declarative_base()


def _new_id() -> str:
    return str(uuid4())


def _in_clause(column: str, values) -> str:
    quoted = ", ".join(f"'{v}'" for v in values)
    return f"{column} IN ({quoted})"


# Kept in sync with rbac.roles.Role and workflow.rule_types; this module
# stays import-free of the domain packages.
ROLE_TYPES = ("OWNER", "MANAGER", "ACCOUNTANT", "VIEWER")
RULE_TYPES = ("APPROVAL", "VALIDATION", "COMPLIANCE", "NOTIFICATION", "AUTOMATION")
ENTITY_TYPES = ("INVOICE", "EXPENSE", "CUSTOMER", "VENDOR", "PAYMENT")
RULE_ACTIONS = (
    "REQUIRE_APPROVAL", "REQUIRE_ATTACHMENT", "BLOCK_CREATION", "SHOW_WARNING",
    "SEND_NOTIFICATION", "AUTO_ASSIGN", "CALCULATE_FIELD",
)
RULE_SEVERITIES = ("CRITICAL", "WARNING", "INFO")


# =============================================================================
# USERS AND ROLE ASSIGNMENTS
# =============================================================================

class UserRecord(Base):
    """
    User Record - identity only.

    Authentication data lives elsewhere; this table exists so role
    assignments have a parent and the first-user bootstrap can count users.
    """
    __tablename__ = "users"

    user_id = Column(String(64), primary_key=True, default=_new_id)
    email = Column(String(255), nullable=True, unique=True)
    name = Column(String(255), nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)

    roles = relationship(
        "UserRoleRecord",
        back_populates="user",
        cascade="all, delete-orphan",
    )

    def __repr__(self):
        return f"<UserRecord(user_id={self.user_id}, email={self.email})>"


class UserRoleRecord(Base):
    """
    Role assignment - one row per (user, role) pair.

    The unique constraint makes concurrent assigns of the same pair
    collapse to a single row.
    """
    __tablename__ = "user_roles"

    id = Column(String(64), primary_key=True, default=_new_id)
    user_id = Column(
        String(64),
        ForeignKey("users.user_id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    role_type = Column(String(20), nullable=False)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)

    user = relationship("UserRecord", back_populates="roles")

    __table_args__ = (
        UniqueConstraint('user_id', 'role_type', name='uq_user_role'),
        CheckConstraint(_in_clause('role_type', ROLE_TYPES), name='ck_user_role_type'),
    )

    def __repr__(self):
        return f"<UserRoleRecord(user_id={self.user_id}, role_type={self.role_type})>"


# =============================================================================
# BUSINESS RULES
# =============================================================================

class BusinessRuleRecord(Base):
    """
    Business Rule Record - a persisted workflow rule.

    `condition` holds the raw condition tree exactly as saved; it is parsed
    at evaluation time so a malformed row can be loaded and skipped.
    """
    __tablename__ = "business_rules"

    rule_id = Column(String(64), primary_key=True, default=_new_id)
    name = Column(String(200), nullable=False)
    description = Column(Text, nullable=True)

    rule_type = Column(String(20), nullable=False)
    entity_type = Column(String(20), nullable=False)
    condition = Column(JSONB, nullable=False)
    action = Column(String(30), nullable=False)
    action_params = Column(JSONB, nullable=True)
    severity = Column(String(10), nullable=False, default="WARNING")
    priority = Column(Integer, nullable=False, default=0)
    is_active = Column(Boolean, nullable=False, default=True)

    # Execution statistics
    execution_count = Column(Integer, nullable=False, default=0)
    trigger_count = Column(Integer, nullable=False, default=0)
    last_executed_at = Column(DateTime, nullable=True)

    created_by = Column(String(64), nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    __table_args__ = (
        Index('ix_business_rules_entity_active', 'entity_type', 'is_active', 'priority'),
        CheckConstraint(_in_clause('rule_type', RULE_TYPES), name='ck_business_rule_type'),
        CheckConstraint(_in_clause('entity_type', ENTITY_TYPES), name='ck_business_rule_entity'),
        CheckConstraint(_in_clause('action', RULE_ACTIONS), name='ck_business_rule_action'),
        CheckConstraint(_in_clause('severity', RULE_SEVERITIES), name='ck_business_rule_severity'),
    )

    def __repr__(self):
        return f"<BusinessRuleRecord(rule_id={self.rule_id}, name={self.name}, active={self.is_active})>"
