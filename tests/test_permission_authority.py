"""Tests for the Permission Authority."""

import threading
from concurrent.futures import ThreadPoolExecutor
from unittest.mock import MagicMock

import pytest

from config.settings import RBACSettings
from core.errors import AuthorizationError, ConfigurationError, ErrorCode, NotFoundError, StorageError
from rbac.authority import PermissionAuthority, denial_message
from rbac.permissions import (
    ConditionType,
    Permission,
    PermissionAction,
    PermissionCondition,
    PERMISSION_MATRIX,
)
from rbac.roles import Role
from rbac.stores import InMemoryRoleAssignmentStore


def _check(authority, user_id, resource, action, **kwargs):
    return authority.has_permission(
        authority.create_permission_context(user_id, resource, action, **kwargs)
    )


class TestPermissionChecks:
    """Tests for has_permission / require_permission against the default matrix."""

    def test_user_without_roles_is_denied(self, authority, users):
        assert _check(authority, users["nobody"], "invoices", "read") is False

    def test_unknown_user_is_denied(self, authority):
        assert _check(authority, "ghost", "reports", "read") is False

    def test_owner_allowed_everything(self, authority, users):
        for action in PermissionAction:
            assert _check(authority, users["owner"], "invoices", action)
        assert _check(authority, users["owner"], "some-future-resource", "configure")

    def test_manager_approves_invoices(self, authority, users):
        assert _check(authority, users["manager"], "invoices", "approve")
        assert _check(authority, users["manager"], "business-rules", "read")
        assert not _check(authority, users["manager"], "business-rules", "configure")

    def test_accountant_cannot_approve(self, authority, users):
        assert _check(authority, users["accountant"], "invoices", "create")
        assert not _check(authority, users["accountant"], "invoices", "approve")
        assert not _check(authority, users["accountant"], "invoices", "delete")

    def test_viewer_read_only(self, authority, users):
        assert _check(authority, users["viewer"], "reports", "export")
        assert not _check(authority, users["viewer"], "invoices", "create")

    def test_roles_are_unioned(self, authority, users):
        """Holding VIEWER and ACCOUNTANT grants the accountant's create."""
        authority.assign_role(users["viewer"], Role.ACCOUNTANT)
        assert _check(authority, users["viewer"], "invoices", "create")

    def test_string_action_is_coerced(self, authority, users):
        ctx = authority.create_permission_context(users["manager"], "invoices", "approve")
        assert ctx.action is PermissionAction.APPROVE

    def test_require_permission_raises_forbidden(self, authority, users):
        ctx = authority.create_permission_context(users["accountant"], "invoices", "approve")
        with pytest.raises(AuthorizationError) as exc_info:
            authority.require_permission(ctx)

        error = exc_info.value
        assert error.status_code == 403
        assert error.code == ErrorCode.PERMISSION_DENIED
        assert error.message == "Forbidden: You don't have permission to approve invoices"
        assert error.details == {"resource": "invoices", "action": "approve"}

    def test_require_permission_passes_silently(self, authority, users):
        ctx = authority.create_permission_context(users["owner"], "business-rules", "configure")
        assert authority.require_permission(ctx) is None

    def test_denial_message(self):
        assert denial_message("delete", "vendors") == "Forbidden: You don't have permission to delete vendors"


class TestRoleChecks:
    """Tests for has_role / has_any_role / is_higher_role."""

    def test_has_role(self, authority, users):
        assert authority.has_role(users["manager"], Role.MANAGER)
        assert not authority.has_role(users["manager"], Role.OWNER)

    def test_has_any_role(self, authority, users):
        assert authority.has_any_role(users["manager"], [Role.OWNER, Role.MANAGER])
        assert not authority.has_any_role(users["viewer"], [Role.OWNER, Role.MANAGER])
        assert not authority.has_any_role(users["manager"], [])

    def test_is_higher_role_is_strict(self, authority, users):
        assert authority.is_higher_role(users["owner"], Role.MANAGER)
        assert not authority.is_higher_role(users["manager"], Role.MANAGER)
        assert not authority.is_higher_role(users["viewer"], Role.ACCOUNTANT)

    def test_is_higher_role_without_roles(self, authority, users):
        assert not authority.is_higher_role(users["nobody"], Role.VIEWER)

    def test_role_level(self, authority):
        assert authority.get_role_level(Role.ACCOUNTANT) == 2


class TestPermissionListing:
    """Tests for get_role_permissions / get_user_permissions."""

    def test_role_permissions(self, authority):
        assert authority.get_role_permissions(Role.VIEWER) == list(PERMISSION_MATRIX[Role.VIEWER])

    def test_user_permissions_are_deduplicated(self, authority, users):
        authority.assign_role(users["viewer"], Role.ACCOUNTANT)
        permissions = authority.get_user_permissions(users["viewer"])
        keys = [p.key for p in permissions]

        assert len(keys) == len(set(keys))
        assert keys.count("invoices:read") == 1
        assert "invoices:create" in keys

    def test_user_permissions_keep_first_seen_order(self, authority, users):
        keys = [p.key for p in authority.get_user_permissions(users["viewer"])]
        assert keys == [p.key for p in PERMISSION_MATRIX[Role.VIEWER]]


class TestRoleCaching:
    """Tests for role caching and invalidation."""

    @pytest.fixture
    def spy_store(self):
        store = InMemoryRoleAssignmentStore()
        return MagicMock(wraps=store)

    @pytest.fixture
    def spy_authority(self, spy_store, role_cache, rbac_settings):
        return PermissionAuthority(spy_store, cache=role_cache, settings=rbac_settings)

    def test_roles_are_cached(self, spy_authority, spy_store):
        spy_authority.assign_role("u-1", Role.MANAGER)
        for _ in range(5):
            assert _check(spy_authority, "u-1", "invoices", "approve")
        assert spy_store.find_roles_by_user.call_count == 1

    def test_revocation_is_visible_immediately(self, spy_authority):
        spy_authority.assign_role("u-1", Role.MANAGER)
        assert _check(spy_authority, "u-1", "invoices", "approve")

        spy_authority.remove_role("u-1", Role.MANAGER)
        assert not _check(spy_authority, "u-1", "invoices", "approve")

    def test_assignment_is_visible_immediately(self, spy_authority):
        spy_authority.assign_role("u-1", Role.VIEWER)
        assert not _check(spy_authority, "u-1", "invoices", "create")

        spy_authority.assign_role("u-1", Role.ACCOUNTANT)
        assert _check(spy_authority, "u-1", "invoices", "create")

    def test_out_of_band_change_bounded_by_ttl(self, spy_authority, spy_store, clock):
        """A write that bypasses the authority shows up once the entry expires."""
        spy_authority.assign_role("u-1", Role.VIEWER)
        assert not _check(spy_authority, "u-1", "invoices", "create")

        spy_store.upsert_role("u-1", Role.ACCOUNTANT)
        clock.advance(299)
        assert not _check(spy_authority, "u-1", "invoices", "create")

        clock.advance(1)
        assert _check(spy_authority, "u-1", "invoices", "create")

    def test_clear_cache(self, spy_authority, spy_store):
        spy_authority.assign_role("u-1", Role.VIEWER)
        spy_authority.get_user_roles("u-1")
        spy_authority.clear_cache()
        spy_authority.get_user_roles("u-1")
        assert spy_store.find_roles_by_user.call_count == 2

    def test_writes_are_broadcast(self, role_store, role_cache, rbac_settings):
        broadcaster = MagicMock()
        authority = PermissionAuthority(role_store, cache=role_cache, settings=rbac_settings, broadcaster=broadcaster)

        authority.assign_role("u-1", Role.VIEWER)
        authority.remove_role("u-1", Role.VIEWER)
        authority.clear_cache()

        assert broadcaster.publish_user.call_count == 2
        broadcaster.publish_user.assert_called_with("u-1")
        broadcaster.publish_global.assert_called_once_with()


class TestStorageFailures:
    """Tests for fail-closed behavior when the store breaks."""

    @pytest.fixture
    def broken_store(self):
        store = MagicMock()
        store.find_roles_by_user.side_effect = RuntimeError("connection refused")
        store.upsert_role.side_effect = RuntimeError("connection refused")
        return store

    @pytest.fixture
    def broken_authority(self, broken_store, role_cache, rbac_settings):
        return PermissionAuthority(broken_store, cache=role_cache, settings=rbac_settings)

    def test_checks_deny(self, broken_authority):
        assert not _check(broken_authority, "u-1", "reports", "read")
        assert not broken_authority.has_role("u-1", Role.VIEWER)
        assert not broken_authority.has_any_role("u-1", [Role.VIEWER])
        assert not broken_authority.is_higher_role("u-1", Role.VIEWER)

    def test_require_permission_is_forbidden(self, broken_authority):
        ctx = broken_authority.create_permission_context("u-1", "reports", "read")
        with pytest.raises(AuthorizationError):
            broken_authority.require_permission(ctx)

    def test_get_user_roles_raises_storage_error(self, broken_authority, role_cache):
        with pytest.raises(StorageError) as exc_info:
            broken_authority.get_user_roles("u-1")
        assert exc_info.value.status_code == 503
        assert len(role_cache) == 0

    def test_failed_assign_still_invalidates(self, broken_authority, role_cache):
        role_cache.set("u-1", [Role.VIEWER])
        with pytest.raises(StorageError):
            broken_authority.assign_role("u-1", Role.MANAGER)
        assert "u-1" not in role_cache


class TestRoleManagement:
    """Tests for assign_role / remove_role."""

    def test_assign_is_idempotent(self, authority, role_store):
        authority.assign_role("u-1", Role.MANAGER)
        authority.assign_role("u-1", Role.MANAGER)
        assert role_store.find_roles_by_user("u-1") == [Role.MANAGER]

    def test_concurrent_assigns_leave_one_row(self, authority, role_store):
        with ThreadPoolExecutor(max_workers=8) as pool:
            list(pool.map(lambda _: authority.assign_role("u-1", Role.MANAGER), range(32)))
        assert role_store.find_roles_by_user("u-1") == [Role.MANAGER]
        assert authority.get_user_roles("u-1") == [Role.MANAGER]

    def test_remove_missing_role_raises(self, authority):
        with pytest.raises(NotFoundError) as exc_info:
            authority.remove_role("u-1", Role.MANAGER)
        assert exc_info.value.status_code == 404

    def test_remove_missing_role_with_missing_ok(self, authority):
        authority.remove_role("u-1", Role.MANAGER, missing_ok=True)
        assert authority.get_user_roles("u-1") == []


class TestPermissionConditions:
    """Tests for conditional grants, using an injected matrix."""

    @staticmethod
    def _authority(role_store, role_cache, rbac_settings, *permissions):
        matrix = dict(PERMISSION_MATRIX)
        matrix[Role.ACCOUNTANT] = tuple(permissions)
        return PermissionAuthority(role_store, cache=role_cache, matrix=matrix, settings=rbac_settings)

    def test_own_resource(self, role_store, role_cache, rbac_settings):
        authority = self._authority(
            role_store, role_cache, rbac_settings,
            Permission("expenses", PermissionAction.UPDATE, (PermissionCondition(ConditionType.OWN_RESOURCE),)),
        )
        authority.assign_role("u-1", Role.ACCOUNTANT)

        assert _check(authority, "u-1", "expenses", "update", resource_owner_id="u-1")
        assert not _check(authority, "u-1", "expenses", "update", resource_owner_id="u-2")
        assert not _check(authority, "u-1", "expenses", "update")

    def test_role_hierarchy(self, role_store, role_cache, rbac_settings):
        authority = self._authority(
            role_store, role_cache, rbac_settings,
            Permission("bank-accounts", PermissionAction.DELETE,
                       (PermissionCondition(ConditionType.ROLE_HIERARCHY, min_level=3),)),
        )
        authority.assign_role("u-1", Role.ACCOUNTANT)
        assert not _check(authority, "u-1", "bank-accounts", "delete")

        # MANAGER has no bank-accounts delete of its own; the level unlocks the accountant grant
        authority.assign_role("u-1", Role.MANAGER)
        assert _check(authority, "u-1", "bank-accounts", "delete")

    def test_custom_validator(self, role_store, role_cache, rbac_settings):
        authority = self._authority(
            role_store, role_cache, rbac_settings,
            Permission("expenses", PermissionAction.CREATE, (PermissionCondition(
                ConditionType.CUSTOM, validator=lambda ctx: ctx.metadata.get("amount", 0) < 1000,
            ),)),
        )
        authority.assign_role("u-1", Role.ACCOUNTANT)

        assert _check(authority, "u-1", "expenses", "create", amount=500)
        assert not _check(authority, "u-1", "expenses", "create", amount=5000)

    def test_raising_validator_denies(self, role_store, role_cache, rbac_settings):
        def explode(ctx):
            raise KeyError("amount")

        authority = self._authority(
            role_store, role_cache, rbac_settings,
            Permission("expenses", PermissionAction.CREATE, (PermissionCondition(ConditionType.CUSTOM, validator=explode),)),
        )
        authority.assign_role("u-1", Role.ACCOUNTANT)
        assert not _check(authority, "u-1", "expenses", "create")

    def test_invalid_injected_matrix(self, role_store):
        with pytest.raises(ConfigurationError):
            PermissionAuthority(role_store, matrix={Role.OWNER: ()})


class TestFirstUserBootstrap:
    """Tests for granting OWNER to the first user of a fresh installation."""

    @pytest.fixture
    def bootstrap_authority(self, role_store, role_cache):
        return PermissionAuthority(
            role_store,
            cache=role_cache,
            settings=RBACSettings(bootstrap_first_user=True),
        )

    def test_only_user_becomes_owner(self, bootstrap_authority, role_store):
        role_store.add_user("first")
        assert bootstrap_authority.get_user_roles("first") == [Role.OWNER]
        assert role_store.find_roles_by_user("first") == [Role.OWNER]
        assert _check(bootstrap_authority, "first", "business-rules", "configure")

    def test_no_bootstrap_with_several_users(self, bootstrap_authority, role_store):
        role_store.add_user("first")
        role_store.add_user("second")
        assert bootstrap_authority.get_user_roles("first") == []

    def test_no_bootstrap_for_unknown_user(self, bootstrap_authority):
        assert bootstrap_authority.get_user_roles("ghost") == []

    def test_disabled_by_settings(self, authority, role_store):
        role_store.add_user("first")
        assert authority.get_user_roles("first") == []

    def test_concurrent_first_requests_grant_once(self, bootstrap_authority, role_store):
        role_store.add_user("first")
        spy = MagicMock(wraps=role_store.upsert_role)
        role_store.upsert_role = spy
        barrier = threading.Barrier(8)

        def resolve(_):
            barrier.wait()
            bootstrap_authority.cache.invalidate("first")
            return bootstrap_authority.get_user_roles("first")

        with ThreadPoolExecutor(max_workers=8) as pool:
            results = list(pool.map(resolve, range(8)))

        assert all(r == [Role.OWNER] for r in results)
        assert spy.call_count == 1
        assert role_store.find_roles_by_user("first") == [Role.OWNER]
