"""Pytest configuration and fixtures for test suite."""

import os
import sys
from pathlib import Path

import pytest

# Set test environment BEFORE any other imports
os.environ.setdefault("APP_ENVIRONMENT", "test")
os.environ.setdefault("DB_DRIVER", "sqlite")

# Add src to path for imports
src_path = Path(__file__).parent.parent / "src"
if str(src_path) not in sys.path:
    sys.path.insert(0, str(src_path))

from sqlalchemy.pool import StaticPool

from config.database import DatabaseSettings
from config.settings import RBACSettings, RuleEngineSettings
from database.connection import create_schema, create_session_factory, create_sync_engine
from rbac.authority import PermissionAuthority
from rbac.cache import RoleCache
from rbac.roles import Role
from rbac.stores import InMemoryRoleAssignmentStore
from workflow.engine import RuleEngine
from workflow.models import WorkflowRule
from workflow.state_machine import ApprovalWorkflow
from workflow.stores import InMemoryRuleStore


class FakeClock:
    """Manually advanced monotonic clock."""

    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


# =============================================================================
# RBAC FIXTURES
# =============================================================================

@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def rbac_settings():
    """RBAC settings with bootstrap disabled; bootstrap tests opt in."""
    return RBACSettings(cache_ttl_seconds=300.0, bootstrap_first_user=False)


@pytest.fixture
def role_store():
    return InMemoryRoleAssignmentStore()


@pytest.fixture
def role_cache(clock):
    return RoleCache(ttl_seconds=300.0, clock=clock)


@pytest.fixture
def authority(role_store, role_cache, rbac_settings):
    return PermissionAuthority(role_store, cache=role_cache, settings=rbac_settings)


@pytest.fixture
def users(authority, role_store):
    """One user per role, plus a user with no roles at all."""
    ids = {
        "owner": "u-owner",
        "manager": "u-manager",
        "accountant": "u-accountant",
        "viewer": "u-viewer",
        "nobody": "u-nobody",
    }
    for user_id in ids.values():
        role_store.add_user(user_id)
    authority.assign_role(ids["owner"], Role.OWNER)
    authority.assign_role(ids["manager"], Role.MANAGER)
    authority.assign_role(ids["accountant"], Role.ACCOUNTANT)
    authority.assign_role(ids["viewer"], Role.VIEWER)
    return ids


# =============================================================================
# WORKFLOW FIXTURES
# =============================================================================

@pytest.fixture
def rule_store():
    return InMemoryRuleStore()


@pytest.fixture
def rule_engine():
    return RuleEngine()


@pytest.fixture
def rules_settings():
    return RuleEngineSettings(max_condition_depth=10, record_metrics=True)


@pytest.fixture
def workflow(authority, rule_engine, rule_store):
    return ApprovalWorkflow(authority, rule_engine, rule_store)


@pytest.fixture
def make_rule():
    """Factory for WorkflowRule with sensible defaults."""

    def _make(**overrides) -> WorkflowRule:
        data = {
            "name": "Large invoice approval",
            "rule_type": "APPROVAL",
            "entity_type": "INVOICE",
            "condition": {"type": "comparison", "field": "total", "operator": ">", "value": 50000},
            "action": "REQUIRE_APPROVAL",
            "severity": "CRITICAL",
        }
        data.update(overrides)
        return WorkflowRule.model_validate(data)

    return _make


# =============================================================================
# DATABASE FIXTURES
# =============================================================================

@pytest.fixture
def sqlite_engine():
    """In-memory SQLite shared across threads through a single connection."""
    engine = create_sync_engine(
        DatabaseSettings(driver="sqlite", sqlite_path=Path(":memory:")),
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    create_schema(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(sqlite_engine):
    return create_session_factory(sqlite_engine)
