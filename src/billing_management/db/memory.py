from __future__ import annotations

import asyncio
import copy
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Dict, Iterable, List, Optional

from .base import BaseDBManager
from ..errors import ConflictError
from ..models.billing import BillingRecord
from ..models.ledger import LedgerEntry
from ..models.project import Project
from ..models.user import UserAccount
from ..timeutils import now_utc


class InMemoryDBManager(BaseDBManager):
    """
    In-memory implementation used for tests and local development.

    Transactions are serialized by a lock and roll back by restoring a
    snapshot taken on entry; the append-only ledger is not part of the
    snapshot. The lock is not re-entrant: do not open a
    transaction from inside another one. Records are copied on the way in
    and out so callers never alias stored state.
    """

    def __init__(self) -> None:
        self._users: Dict[str, UserAccount] = {}
        self._billing: Dict[str, BillingRecord] = {}
        self._projects: Dict[str, Project] = {}
        self._ledger: List[LedgerEntry] = []
        self._id_counter: int = 0
        self._lock = asyncio.Lock()

    def _next_id(self) -> str:
        self._id_counter += 1
        return str(self._id_counter)

    def _snapshot(self) -> Dict[str, Any]:
        return copy.deepcopy(
            {
                "users": self._users,
                "billing": self._billing,
                "projects": self._projects,
            }
        )

    def _restore(self, snapshot: Dict[str, Any]) -> None:
        self._users = snapshot["users"]
        self._billing = snapshot["billing"]
        self._projects = snapshot["projects"]

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[None]:
        async with self._lock:
            snapshot = self._snapshot()
            try:
                yield
            except BaseException:
                self._restore(snapshot)
                raise

    # User operations
    async def add_user(self, user: UserAccount) -> UserAccount:
        if any(u.email == user.email for u in self._users.values()):
            raise ConflictError("Email already registered", details={"email": user.email})
        if user.id is None:
            user.id = self._next_id()
        self._users[user.id] = user.model_copy(deep=True)
        return user

    async def get_user(self, user_id: str) -> Optional[UserAccount]:
        user = self._users.get(user_id)
        return user.model_copy(deep=True) if user else None

    async def get_user_by_email(self, email: str) -> Optional[UserAccount]:
        email = email.strip().lower()
        for user in self._users.values():
            if user.email == email:
                return user.model_copy(deep=True)
        return None

    async def update_user(self, user: UserAccount) -> UserAccount:
        if user.id is None or user.id not in self._users:
            raise ValueError("User must exist to be updated")
        if any(u.email == user.email and uid != user.id for uid, u in self._users.items()):
            raise ConflictError(
                "Email already in use by another account", details={"email": user.email}
            )
        self._users[user.id] = user.model_copy(deep=True)
        return user

    async def delete_user(self, user_id: str) -> bool:
        return self._users.pop(user_id, None) is not None

    # Billing operations
    async def get_billing(self, user_id: str) -> Optional[BillingRecord]:
        record = self._billing.get(user_id)
        return record.model_copy(deep=True) if record else None

    async def add_billing(self, record: BillingRecord) -> BillingRecord:
        if record.user_id in self._billing:
            raise ConflictError(
                "Billing record already exists for this user",
                details={"user_id": record.user_id},
            )
        stored = record.model_copy(
            update={"id": record.id or self._next_id(), "version": 1}, deep=True
        )
        self._billing[record.user_id] = stored
        return stored.model_copy(deep=True)

    async def replace_billing(
        self, record: BillingRecord, expected_version: int
    ) -> BillingRecord:
        current = self._billing.get(record.user_id)
        if current is None or current.version != expected_version:
            raise ConflictError(
                "Billing record was modified concurrently",
                details={
                    "user_id": record.user_id,
                    "expected_version": expected_version,
                    "actual_version": current.version if current else None,
                },
            )
        stored = record.model_copy(
            update={
                "id": current.id,
                "version": expected_version + 1,
                "updated_at": now_utc(),
            },
            deep=True,
        )
        self._billing[record.user_id] = stored
        return stored.model_copy(deep=True)

    async def delete_billing(self, user_id: str) -> bool:
        return self._billing.pop(user_id, None) is not None

    # Project operations
    async def add_project(self, project: Project) -> Project:
        if project.id is None:
            project.id = self._next_id()
        self._projects[project.id] = project.model_copy(deep=True)
        return project

    async def get_project(self, project_id: str, user_id: str) -> Optional[Project]:
        project = self._projects.get(project_id)
        if project is None or project.user_id != user_id:
            return None
        return project.model_copy(deep=True)

    async def get_projects(self, user_id: str) -> Iterable[Project]:
        projects = [p for p in self._projects.values() if p.user_id == user_id]
        projects.sort(key=lambda p: p.created_at, reverse=True)
        return [p.model_copy(deep=True) for p in projects]

    async def update_project(self, project: Project) -> Project:
        if project.id is None or project.id not in self._projects:
            raise ValueError("Project must exist to be updated")
        self._projects[project.id] = project.model_copy(deep=True)
        return project

    async def delete_project(self, project_id: str, user_id: str) -> bool:
        project = self._projects.get(project_id)
        if project is None or project.user_id != user_id:
            return False
        del self._projects[project_id]
        return True

    async def delete_projects_for_user(self, user_id: str) -> int:
        doomed = [pid for pid, p in self._projects.items() if p.user_id == user_id]
        for pid in doomed:
            del self._projects[pid]
        return len(doomed)

    # Ledger
    async def add_ledger_entry(self, entry: LedgerEntry) -> LedgerEntry:
        if entry.id is None:
            entry.id = self._next_id()
        self._ledger.append(entry)
        return entry

    async def get_ledger_entries(self, user_id: str) -> Iterable[LedgerEntry]:
        return [e for e in self._ledger if e.user_id == user_id]
