from __future__ import annotations

from datetime import datetime, timezone

import pytest
import pytest_asyncio

from billing_management.catalog import BUILDER_CATALOG
from billing_management.db.memory import InMemoryDBManager
from billing_management.logging.ledger_logger import LedgerLogger
from billing_management.services.account_service import AccountService
from billing_management.services.billing_service import BillingService
from billing_management.services.project_service import ProjectService


# End of January, so monthly renewals exercise end-of-month clamping
FIXED_NOW = datetime(2025, 1, 31, 9, 30, tzinfo=timezone.utc)


@pytest.fixture
def db() -> InMemoryDBManager:
    return InMemoryDBManager()


@pytest.fixture
def ledger(db, tmp_path) -> LedgerLogger:
    return LedgerLogger(db=db, file_path=tmp_path / "ledger.log")


@pytest.fixture
def billing(db, ledger) -> BillingService:
    return BillingService(db=db, ledger=ledger, catalog=BUILDER_CATALOG, clock=lambda: FIXED_NOW)


@pytest.fixture
def accounts(db, ledger) -> AccountService:
    return AccountService(db=db, ledger=ledger)


@pytest.fixture
def projects(db) -> ProjectService:
    return ProjectService(db=db, catalog=BUILDER_CATALOG)


@pytest_asyncio.fixture
async def user_id(accounts) -> str:
    user = await accounts.create_user(
        first_name="Ada", last_name="Lovelace", email="ada@example.com"
    )
    return user.id
