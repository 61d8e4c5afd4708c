from __future__ import annotations

from abc import ABC, abstractmethod
from contextlib import asynccontextmanager
from typing import AsyncIterator, Iterable, Optional

from ..models.billing import BillingRecord
from ..models.ledger import LedgerEntry
from ..models.project import Project
from ..models.user import UserAccount


class BaseDBManager(ABC):
    """
    DB-agnostic async manager interface.

    Concrete implementations (in-memory, MongoDB, ...) implement these
    methods. Multi-step operations run inside `transaction()`; billing
    writes additionally go through `replace_billing`, which is a
    compare-and-swap on the record version.
    """

    @abstractmethod
    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[None]:
        """
        Provide an atomic transaction context.
        Must roll back on exception and commit on success.
        """
        yield

    async def close(self) -> None:
        return None

    # User operations
    @abstractmethod
    async def add_user(self, user: UserAccount) -> UserAccount:
        """Insert a user; raises ConflictError if the email is taken."""

    @abstractmethod
    async def get_user(self, user_id: str) -> Optional[UserAccount]: ...

    @abstractmethod
    async def get_user_by_email(self, email: str) -> Optional[UserAccount]: ...

    @abstractmethod
    async def update_user(self, user: UserAccount) -> UserAccount:
        """Overwrite an existing user; raises ConflictError if the new email is taken."""

    @abstractmethod
    async def delete_user(self, user_id: str) -> bool: ...

    # Billing operations
    @abstractmethod
    async def get_billing(self, user_id: str) -> Optional[BillingRecord]: ...

    @abstractmethod
    async def add_billing(self, record: BillingRecord) -> BillingRecord:
        """Insert the user's billing record; raises ConflictError if one exists."""

    @abstractmethod
    async def replace_billing(
        self, record: BillingRecord, expected_version: int
    ) -> BillingRecord:
        """
        Overwrite the user's billing record only if its stored version still
        equals `expected_version`; raises ConflictError otherwise. Returns
        the stored record with its version bumped.
        """

    @abstractmethod
    async def delete_billing(self, user_id: str) -> bool: ...

    # Project operations
    @abstractmethod
    async def add_project(self, project: Project) -> Project: ...

    @abstractmethod
    async def get_project(self, project_id: str, user_id: str) -> Optional[Project]: ...

    @abstractmethod
    async def get_projects(self, user_id: str) -> Iterable[Project]:
        """Projects owned by the user, newest first."""

    @abstractmethod
    async def update_project(self, project: Project) -> Project: ...

    @abstractmethod
    async def delete_project(self, project_id: str, user_id: str) -> bool: ...

    @abstractmethod
    async def delete_projects_for_user(self, user_id: str) -> int: ...

    # Ledger
    @abstractmethod
    async def add_ledger_entry(self, entry: LedgerEntry) -> LedgerEntry: ...

    @abstractmethod
    async def get_ledger_entries(self, user_id: str) -> Iterable[LedgerEntry]: ...
