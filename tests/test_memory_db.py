from __future__ import annotations

from datetime import datetime, timezone

import pytest

from billing_management.catalog import BUILDER_CATALOG
from billing_management.errors import ConflictError
from billing_management.models.user import UserAccount
from billing_management.services import entitlements


NOW = datetime(2025, 3, 1, tzinfo=timezone.utc)


def _record(user_id: str):
    return entitlements.new_billing_record(
        BUILDER_CATALOG, user_id, "free", "monthly", (), NOW
    )


@pytest.mark.asyncio
async def test_stale_version_write_is_rejected(db):
    stored = await db.add_billing(_record("u1"))
    assert stored.version == 1

    fresh = await db.replace_billing(stored.model_copy(update={"image_credits": 10}), 1)
    assert fresh.version == 2

    with pytest.raises(ConflictError):
        await db.replace_billing(stored.model_copy(update={"document_credits": 5}), 1)

    current = await db.get_billing("u1")
    assert (current.image_credits, current.document_credits) == (10, 0)


@pytest.mark.asyncio
async def test_one_billing_record_per_user(db):
    await db.add_billing(_record("u1"))
    with pytest.raises(ConflictError):
        await db.add_billing(_record("u1"))


@pytest.mark.asyncio
async def test_reads_do_not_alias_stored_state(db):
    await db.add_billing(_record("u1"))

    copy = await db.get_billing("u1")
    copy.add_ons.add("coder_package")

    assert (await db.get_billing("u1")).add_ons == set()


@pytest.mark.asyncio
async def test_transaction_rolls_back_on_error(db):
    with pytest.raises(RuntimeError):
        async with db.transaction():
            await db.add_user(UserAccount(first_name="A", last_name="B", email="a@b.io"))
            raise RuntimeError("boom")

    assert await db.get_user_by_email("a@b.io") is None
