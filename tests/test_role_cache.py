"""Tests for the role cache."""

import pytest

from rbac.cache import RoleCache, RoleCacheEntry
from rbac.roles import Role


class TestRoleCacheEntry:
    """Tests for entry staleness."""

    def test_stale_at_exactly_ttl(self):
        entry = RoleCacheEntry(roles=(Role.VIEWER,), fetched_at=100.0)
        assert not entry.is_stale(now=399.9, ttl_seconds=300.0)
        assert entry.is_stale(now=400.0, ttl_seconds=300.0)

    def test_to_dict(self):
        entry = RoleCacheEntry(roles=(Role.OWNER, Role.VIEWER), fetched_at=1.5)
        assert entry.to_dict() == {"roles": ["OWNER", "VIEWER"], "fetched_at": 1.5}


class TestRoleCacheBasics:
    """Tests for get/set/expiry."""

    def test_miss_then_hit(self, role_cache):
        assert role_cache.get("u-1") is None
        role_cache.set("u-1", [Role.MANAGER])
        assert role_cache.get("u-1") == (Role.MANAGER,)

        stats = role_cache.stats()
        assert stats["hits"] == 1
        assert stats["misses"] == 1
        assert stats["size"] == 1

    def test_entry_expires(self, role_cache, clock):
        role_cache.set("u-1", [Role.MANAGER])
        clock.advance(300)
        assert role_cache.get("u-1") is None
        assert len(role_cache) == 0

    def test_empty_role_set_is_cached(self, role_cache):
        role_cache.set("u-1", [])
        assert role_cache.get("u-1") == ()
        assert "u-1" in role_cache

    def test_oldest_entry_evicted(self, clock):
        cache = RoleCache(ttl_seconds=60, max_entries=2, clock=clock)
        cache.set("a", [Role.VIEWER])
        cache.set("b", [Role.VIEWER])
        cache.set("c", [Role.VIEWER])

        assert len(cache) == 2
        assert cache.get("a") is None
        assert cache.get("c") == (Role.VIEWER,)

    @pytest.mark.parametrize("kwargs", [{"ttl_seconds": 0}, {"max_entries": 0}])
    def test_invalid_construction(self, kwargs):
        with pytest.raises(ValueError):
            RoleCache(**kwargs)


class TestRoleCacheInvalidation:
    """Tests for invalidate/clear and load races."""

    def test_invalidate(self, role_cache):
        role_cache.set("u-1", [Role.VIEWER])
        assert role_cache.invalidate("u-1") is True
        assert role_cache.invalidate("u-1") is False
        assert role_cache.get("u-1") is None

    def test_clear(self, role_cache):
        role_cache.set("u-1", [Role.VIEWER])
        role_cache.set("u-2", [Role.OWNER])
        role_cache.clear()
        assert len(role_cache) == 0

    def test_get_or_load_caches_loader_result(self, role_cache):
        calls = []

        def loader(user_id):
            calls.append(user_id)
            return [Role.ACCOUNTANT]

        assert role_cache.get_or_load("u-1", loader) == (Role.ACCOUNTANT,)
        assert role_cache.get_or_load("u-1", loader) == (Role.ACCOUNTANT,)
        assert calls == ["u-1"]

    def test_loader_error_caches_nothing(self, role_cache):
        def loader(user_id):
            raise RuntimeError("db down")

        with pytest.raises(RuntimeError):
            role_cache.get_or_load("u-1", loader)
        assert len(role_cache) == 0

    def test_load_racing_invalidation_is_not_stored(self, role_cache):
        """A load that overlaps an invalidation returns its result but does not cache it."""
        def loader(user_id):
            role_cache.invalidate(user_id)
            return [Role.OWNER]

        assert role_cache.get_or_load("u-1", loader) == (Role.OWNER,)
        assert role_cache.get("u-1") is None

    def test_load_racing_clear_is_not_stored(self, role_cache):
        def loader(user_id):
            role_cache.clear()
            return [Role.OWNER]

        role_cache.get_or_load("u-1", loader)
        assert "u-1" not in role_cache
