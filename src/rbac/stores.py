"""
Role Assignment Stores

The Permission Authority reads and writes role assignments through the
RoleAssignmentStore protocol. Two implementations:

- InMemoryRoleAssignmentStore: thread-safe, for tests and single-process use
- SqlAlchemyRoleAssignmentStore: persisted in the user_roles table

Both make upsert_role idempotent: assigning an already-held role is a no-op,
and concurrent assigns of the same pair end with exactly one row.
"""

import logging
import threading
from typing import Callable, Dict, List, Optional, Protocol, Set, runtime_checkable
from uuid import uuid4

from sqlalchemy import delete, func, select
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from database.connection import session_scope
from database.models import UserRecord, UserRoleRecord

from .roles import Role

logger = logging.getLogger(__name__)


@runtime_checkable
class RoleAssignmentStore(Protocol):
    """Persistence contract for (user_id, role) assignments."""

    def find_roles_by_user(self, user_id: str) -> List[Role]:
        """All roles held by the user, in assignment order."""
        ...

    def upsert_role(self, user_id: str, role: Role) -> bool:
        """Ensure the assignment exists. Returns True if a row was created."""
        ...

    def delete_role(self, user_id: str, role: Role) -> bool:
        """Remove the assignment. Returns False if it did not exist."""
        ...

    def count_users(self) -> int:
        """Number of users ever created in the system."""
        ...

    def user_exists(self, user_id: str) -> bool:
        ...


# =============================================================================
# IN-MEMORY STORE
# =============================================================================

class InMemoryRoleAssignmentStore:
    """Thread-safe in-memory store."""

    def __init__(self):
        self._users: Set[str] = set()
        self._assignments: Dict[str, List[Role]] = {}
        self._lock = threading.RLock()

    def add_user(self, user_id: str) -> None:
        with self._lock:
            self._users.add(user_id)

    def find_roles_by_user(self, user_id: str) -> List[Role]:
        with self._lock:
            return list(self._assignments.get(user_id, ()))

    def upsert_role(self, user_id: str, role: Role) -> bool:
        role = Role(role)
        with self._lock:
            held = self._assignments.setdefault(user_id, [])
            if role in held:
                return False
            held.append(role)
            return True

    def delete_role(self, user_id: str, role: Role) -> bool:
        role = Role(role)
        with self._lock:
            held = self._assignments.get(user_id)
            if not held or role not in held:
                return False
            held.remove(role)
            if not held:
                del self._assignments[user_id]
            return True

    def count_users(self) -> int:
        with self._lock:
            return len(self._users)

    def user_exists(self, user_id: str) -> bool:
        with self._lock:
            return user_id in self._users


# =============================================================================
# SQLALCHEMY STORE
# =============================================================================

class SqlAlchemyRoleAssignmentStore:
    """
    Role assignments in the `user_roles` table.

    Each call runs in its own transaction via session_scope.
    """

    def __init__(self, session_factory: Callable[[], Session]):
        self._session_factory = session_factory

    def add_user(self, user_id: str, email: Optional[str] = None, name: Optional[str] = None) -> None:
        """Create a users row (used by bootstrap tests and seed scripts)."""
        with session_scope(self._session_factory) as session:
            if session.get(UserRecord, user_id) is None:
                session.add(UserRecord(user_id=user_id, email=email, name=name))

    def find_roles_by_user(self, user_id: str) -> List[Role]:
        with session_scope(self._session_factory) as session:
            stmt = (
                select(UserRoleRecord.role_type)
                .where(UserRoleRecord.user_id == user_id)
                .order_by(UserRoleRecord.created_at, UserRoleRecord.id)
            )
            return [Role(value) for value in session.execute(stmt).scalars()]

    def upsert_role(self, user_id: str, role: Role) -> bool:
        role = Role(role)
        with session_scope(self._session_factory) as session:
            dialect = session.get_bind().dialect.name
            if dialect in ("sqlite", "postgresql"):
                insert = sqlite_insert if dialect == "sqlite" else pg_insert
                stmt = (
                    insert(UserRoleRecord)
                    .values(id=str(uuid4()), user_id=user_id, role_type=role.value)
                    .on_conflict_do_nothing(index_elements=["user_id", "role_type"])
                )
                result = session.execute(stmt)
                return bool(result.rowcount)

        return self._upsert_portable(user_id, role)

    def _upsert_portable(self, user_id: str, role: Role) -> bool:
        """Insert-then-catch for dialects without ON CONFLICT."""
        try:
            with session_scope(self._session_factory) as session:
                session.add(UserRoleRecord(user_id=user_id, role_type=role.value))
            return True
        except IntegrityError:
            if role in self.find_roles_by_user(user_id):
                logger.debug(
                    "Role already assigned (concurrent insert)",
                    extra={"extra_data": {"user_id": user_id, "role": role.value}},
                )
                return False
            raise

    def delete_role(self, user_id: str, role: Role) -> bool:
        role = Role(role)
        with session_scope(self._session_factory) as session:
            stmt = delete(UserRoleRecord).where(
                UserRoleRecord.user_id == user_id,
                UserRoleRecord.role_type == role.value,
            )
            return session.execute(stmt).rowcount > 0

    def count_users(self) -> int:
        with session_scope(self._session_factory) as session:
            return session.execute(select(func.count()).select_from(UserRecord)).scalar_one()

    def user_exists(self, user_id: str) -> bool:
        with session_scope(self._session_factory) as session:
            return session.get(UserRecord, user_id) is not None
