"""
Role Cache - process-level caching of a user's resolved role set.

Entries are `(roles, fetched_at)` pairs with a TTL (5 minutes by default).

Invalidation:
- Eager, per user, on every role write (assign/remove)
- Full flush via clear() (e.g. after a permission matrix redeploy)
- Optionally from other instances through rbac.broadcast

The persisted role assignments stay the only source of truth; an entry is
advisory and is never trusted past its TTL.
"""

import logging
import threading
import time
from collections import OrderedDict
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional, Tuple

from .roles import Role

logger = logging.getLogger(__name__)


DEFAULT_TTL_SECONDS = 300.0
DEFAULT_MAX_ENTRIES = 10000


# =============================================================================
# CACHE ENTRY
# =============================================================================

@dataclass(frozen=True)
class RoleCacheEntry:
    """Cached role set for one user."""
    roles: Tuple[Role, ...]
    fetched_at: float

    def is_stale(self, now: float, ttl_seconds: float) -> bool:
        """An entry exactly ttl_seconds old is already stale."""
        return now - self.fetched_at >= ttl_seconds

    def to_dict(self) -> Dict[str, Any]:
        return {
            "roles": [role.value for role in self.roles],
            "fetched_at": self.fetched_at,
        }


# =============================================================================
# ROLE CACHE
# =============================================================================

class RoleCache:
    """
    Thread-safe user -> role set cache with TTL expiration.

    Concurrent misses for the same user may each hit the store; the load is
    idempotent so that is accepted. What is NOT accepted is a load that
    started before an invalidation writing its (now outdated) result back
    afterwards. Each user carries a generation number bumped by
    invalidate()/clear(); get_or_load() only stores its result if the
    generation is unchanged.
    """

    def __init__(
        self,
        ttl_seconds: float = DEFAULT_TTL_SECONDS,
        max_entries: int = DEFAULT_MAX_ENTRIES,
        clock: Callable[[], float] = time.monotonic,
    ):
        if ttl_seconds <= 0:
            raise ValueError("ttl_seconds must be positive")
        if max_entries < 1:
            raise ValueError("max_entries must be at least 1")

        self.ttl_seconds = ttl_seconds
        self.max_entries = max_entries
        self._clock = clock
        self._entries: "OrderedDict[str, RoleCacheEntry]" = OrderedDict()
        self._generations: Dict[str, int] = {}
        self._global_generation = 0
        self._lock = threading.RLock()
        self._hits = 0
        self._misses = 0

    def get(self, user_id: str) -> Optional[Tuple[Role, ...]]:
        """Return the cached roles, or None when absent or stale."""
        with self._lock:
            entry = self._entries.get(user_id)
            if entry is None:
                self._misses += 1
                return None

            if entry.is_stale(self._clock(), self.ttl_seconds):
                del self._entries[user_id]
                self._misses += 1
                return None

            self._hits += 1
            return entry.roles

    def set(self, user_id: str, roles: List[Role]) -> None:
        """Store a role set fetched just now."""
        with self._lock:
            self._store(user_id, tuple(roles))

    def get_or_load(
        self,
        user_id: str,
        loader: Callable[[str], List[Role]],
    ) -> Tuple[Role, ...]:
        """
        Return cached roles or call `loader(user_id)` and cache its result.

        The loader runs outside the lock. Exceptions from the loader
        propagate and nothing is cached.
        """
        cached = self.get(user_id)
        if cached is not None:
            return cached

        with self._lock:
            token = self._token(user_id)

        roles = tuple(loader(user_id))

        with self._lock:
            if self._token(user_id) == token:
                self._store(user_id, roles)
            else:
                logger.debug(
                    "Discarding role load that raced an invalidation",
                    extra={"extra_data": {"user_id": user_id}},
                )
        return roles

    def invalidate(self, user_id: str) -> bool:
        """Drop one user's entry. Returns True if an entry was present."""
        with self._lock:
            self._generations[user_id] = self._generations.get(user_id, 0) + 1
            removed = self._entries.pop(user_id, None) is not None
        logger.debug(
            "Role cache invalidated",
            extra={"extra_data": {"user_id": user_id, "had_entry": removed}},
        )
        return removed

    def clear(self) -> None:
        """Drop every entry."""
        with self._lock:
            size = len(self._entries)
            self._entries.clear()
            self._generations.clear()
            self._global_generation += 1
        logger.debug("Role cache cleared", extra={"extra_data": {"dropped": size}})

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def __contains__(self, user_id: str) -> bool:
        return self.get(user_id) is not None

    def stats(self) -> Dict[str, Any]:
        """Get cache statistics."""
        with self._lock:
            return {
                "size": len(self._entries),
                "max_entries": self.max_entries,
                "ttl_seconds": self.ttl_seconds,
                "hits": self._hits,
                "misses": self._misses,
            }

    def _token(self, user_id: str) -> Tuple[int, int]:
        """Current generation for a user (must hold lock)."""
        return self._global_generation, self._generations.get(user_id, 0)

    def _store(self, user_id: str, roles: Tuple[Role, ...]) -> None:
        """Insert, evicting oldest entries beyond max_entries (must hold lock)."""
        self._entries.pop(user_id, None)
        while len(self._entries) >= self.max_entries:
            self._entries.popitem(last=False)
        self._entries[user_id] = RoleCacheEntry(roles=roles, fetched_at=self._clock())
