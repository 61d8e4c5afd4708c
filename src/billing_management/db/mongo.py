from __future__ import annotations

from contextlib import asynccontextmanager
from contextvars import ContextVar
from typing import Any, AsyncIterator, Dict, Iterable, Mapping, Optional, Type, TypeVar
from uuid import uuid4

from motor.motor_asyncio import (
    AsyncIOMotorClient,
    AsyncIOMotorClientSession,
    AsyncIOMotorDatabase,
)
from pymongo import ASCENDING, DESCENDING
from pymongo.errors import ConnectionFailure, DuplicateKeyError

from .base import BaseDBManager
from ..errors import ConflictError, UnavailableError
from ..models.base import DBSerializableModel
from ..models.billing import BillingRecord
from ..models.ledger import LedgerEntry
from ..models.project import Project
from ..models.user import UserAccount
from ..timeutils import now_utc


TModel = TypeVar("TModel", bound=DBSerializableModel)


class MongoDBManager(BaseDBManager):
    """
    MongoDB implementation of BaseDBManager using motor (async driver).

    IDs are stored as string `_id` fields and mirrored in the `id`
    attribute of each Pydantic model, which keeps the rest of the system
    agnostic of MongoDB specifics.

    `transaction()` opens a client session with a multi-document
    transaction (requires a replica set); the session is carried to every
    call made inside the block through a context variable. With
    `use_transactions=False` single-document writes are still atomic and
    billing writes are still version-checked, but account deletion is no
    longer all-or-nothing.
    """

    def __init__(
        self,
        client: AsyncIOMotorClient,
        db_name: str,
        use_transactions: bool = True,
    ) -> None:
        self._client = client
        self._db: AsyncIOMotorDatabase = client[db_name]
        self._use_transactions = use_transactions
        self._session: ContextVar[Optional[AsyncIOMotorClientSession]] = ContextVar(
            "billing_mongo_session", default=None
        )

    @classmethod
    def from_client_uri(
        cls, uri: str, db_name: str, use_transactions: bool = True
    ) -> "MongoDBManager":
        client = AsyncIOMotorClient(uri, tz_aware=True)
        return cls(client, db_name, use_transactions=use_transactions)

    async def close(self) -> None:
        self._client.close()

    async def ensure_indexes(self) -> None:
        async with self._translated_errors():
            await self._db[UserAccount.collection_name].create_index(
                [("email", ASCENDING)], unique=True
            )
            await self._db[BillingRecord.collection_name].create_index(
                [("user_id", ASCENDING)], unique=True
            )
            await self._db[Project.collection_name].create_index(
                [("user_id", ASCENDING), ("created_at", DESCENDING)]
            )
            await self._db[LedgerEntry.collection_name].create_index(
                [("user_id", ASCENDING), ("created_at", ASCENDING)]
            )

    @asynccontextmanager
    async def _translated_errors(self) -> AsyncIterator[None]:
        try:
            yield
        except DuplicateKeyError as exc:
            raise ConflictError(
                "Duplicate record", details={"key": str(exc.details or {})}
            ) from exc
        except ConnectionFailure as exc:
            raise UnavailableError(
                "Database connection error. Please try again."
            ) from exc

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[None]:
        if self._session.get() is not None:
            raise RuntimeError("nested transactions are not supported")
        async with self._translated_errors():
            if not self._use_transactions:
                yield
                return
            async with await self._client.start_session() as session:
                async with session.start_transaction():
                    token = self._session.set(session)
                    try:
                        yield
                    finally:
                        self._session.reset(token)

    # Helper utilities
    @staticmethod
    def _prepare_insert(model: TModel) -> Dict[str, Any]:
        data = model.serialize_for_db()
        model_id = getattr(model, "id", None)
        if not model_id:
            model_id = uuid4().hex
            setattr(model, "id", model_id)
            data["id"] = model_id
        data["_id"] = model_id
        return data

    @staticmethod
    def _decode(model_cls: Type[TModel], doc: Optional[Mapping[str, Any]]) -> Optional[TModel]:
        if doc is None:
            return None
        data = dict(doc)
        doc_id = data.pop("_id", None)
        if doc_id is not None and "id" not in data:
            data["id"] = str(doc_id)
        return model_cls.model_validate(data)

    def _collection(self, model_cls: Type[DBSerializableModel]):
        return self._db[model_cls.collection_name]

    # User operations
    async def add_user(self, user: UserAccount) -> UserAccount:
        data = self._prepare_insert(user)
        try:
            await self._collection(UserAccount).insert_one(data, session=self._session.get())
        except DuplicateKeyError as exc:
            raise ConflictError("Email already registered", details={"email": user.email}) from exc
        return user

    async def get_user(self, user_id: str) -> Optional[UserAccount]:
        doc = await self._collection(UserAccount).find_one(
            {"_id": user_id}, session=self._session.get()
        )
        return self._decode(UserAccount, doc)

    async def get_user_by_email(self, email: str) -> Optional[UserAccount]:
        doc = await self._collection(UserAccount).find_one(
            {"email": email.strip().lower()}, session=self._session.get()
        )
        return self._decode(UserAccount, doc)

    async def update_user(self, user: UserAccount) -> UserAccount:
        if not user.id:
            raise ValueError("User must have id to be updated")
        data = user.serialize_for_db()
        data["_id"] = user.id
        try:
            await self._collection(UserAccount).replace_one(
                {"_id": user.id}, data, session=self._session.get()
            )
        except DuplicateKeyError as exc:
            raise ConflictError(
                "Email already in use by another account", details={"email": user.email}
            ) from exc
        return user

    async def delete_user(self, user_id: str) -> bool:
        result = await self._collection(UserAccount).delete_one(
            {"_id": user_id}, session=self._session.get()
        )
        return result.deleted_count > 0

    # Billing operations
    async def get_billing(self, user_id: str) -> Optional[BillingRecord]:
        doc = await self._collection(BillingRecord).find_one(
            {"user_id": user_id}, session=self._session.get()
        )
        return self._decode(BillingRecord, doc)

    async def add_billing(self, record: BillingRecord) -> BillingRecord:
        stored = record.model_copy(update={"version": 1})
        data = self._prepare_insert(stored)
        try:
            await self._collection(BillingRecord).insert_one(data, session=self._session.get())
        except DuplicateKeyError as exc:
            raise ConflictError(
                "Billing record already exists for this user",
                details={"user_id": record.user_id},
            ) from exc
        return stored

    async def replace_billing(
        self, record: BillingRecord, expected_version: int
    ) -> BillingRecord:
        stored = record.model_copy(
            update={"version": expected_version + 1, "updated_at": now_utc()}
        )
        data = stored.serialize_for_db()
        if stored.id:
            data["_id"] = stored.id
        result = await self._collection(BillingRecord).replace_one(
            {"user_id": record.user_id, "version": expected_version},
            data,
            session=self._session.get(),
        )
        if result.matched_count == 0:
            raise ConflictError(
                "Billing record was modified concurrently",
                details={"user_id": record.user_id, "expected_version": expected_version},
            )
        return stored

    async def delete_billing(self, user_id: str) -> bool:
        result = await self._collection(BillingRecord).delete_one(
            {"user_id": user_id}, session=self._session.get()
        )
        return result.deleted_count > 0

    # Project operations
    async def add_project(self, project: Project) -> Project:
        data = self._prepare_insert(project)
        await self._collection(Project).insert_one(data, session=self._session.get())
        return project

    async def get_project(self, project_id: str, user_id: str) -> Optional[Project]:
        doc = await self._collection(Project).find_one(
            {"_id": project_id, "user_id": user_id}, session=self._session.get()
        )
        return self._decode(Project, doc)

    async def get_projects(self, user_id: str) -> Iterable[Project]:
        cursor = self._collection(Project).find(
            {"user_id": user_id}, session=self._session.get()
        ).sort("created_at", DESCENDING)
        docs = await cursor.to_list(length=None)
        return [self._decode(Project, d) for d in docs if d is not None]  # type: ignore[misc]

    async def update_project(self, project: Project) -> Project:
        if not project.id:
            raise ValueError("Project must have id to be updated")
        data = project.serialize_for_db()
        data["_id"] = project.id
        await self._collection(Project).replace_one(
            {"_id": project.id, "user_id": project.user_id},
            data,
            session=self._session.get(),
        )
        return project

    async def delete_project(self, project_id: str, user_id: str) -> bool:
        result = await self._collection(Project).delete_one(
            {"_id": project_id, "user_id": user_id}, session=self._session.get()
        )
        return result.deleted_count > 0

    async def delete_projects_for_user(self, user_id: str) -> int:
        result = await self._collection(Project).delete_many(
            {"user_id": user_id}, session=self._session.get()
        )
        return result.deleted_count

    # Ledger; written outside any session so audit entries survive rollbacks
    async def add_ledger_entry(self, entry: LedgerEntry) -> LedgerEntry:
        data = self._prepare_insert(entry)
        async with self._translated_errors():
            await self._collection(LedgerEntry).insert_one(data)
        return entry

    async def get_ledger_entries(self, user_id: str) -> Iterable[LedgerEntry]:
        cursor = self._collection(LedgerEntry).find({"user_id": user_id}).sort(
            "created_at", ASCENDING
        )
        docs = await cursor.to_list(length=None)
        return [self._decode(LedgerEntry, d) for d in docs if d is not None]  # type: ignore[misc]
