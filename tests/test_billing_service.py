from __future__ import annotations

import asyncio
from datetime import datetime, timezone
from decimal import Decimal

import pytest

from billing_management.catalog import CODER_PACKAGE, DATABASE_PACKAGE, LEGACY_CATALOG
from billing_management.errors import (
    AlreadyOwnedError,
    InvalidInputError,
    InvalidStateError,
    NoBillingRecordError,
    NotFoundError,
    PlanIncludesFeatureError,
)
from billing_management.models.billing import BillingCycle, PaymentStatus
from billing_management.models.ledger import LedgerEventType
from billing_management.models.project import Project
from billing_management.services.billing_service import BillingService


def _project(user_id: str, name: str = "Launchpad") -> Project:
    return Project(
        user_id=user_id,
        project_name=name,
        industry="saas",
        team_size="solo",
        primary_objective="mvp",
        timeline="1-3",
        budget_range="0-5k",
        technical_level="some",
        preferred_tech_stack="python-django",
    )


@pytest.mark.asyncio
async def test_onboarding_creates_record(billing, user_id):
    record = await billing.apply_onboarding(user_id, "builder", "monthly", [DATABASE_PACKAGE])

    assert record.selected_plan == "builder"
    assert record.plan_price == Decimal("5")
    assert record.payment_status is PaymentStatus.PENDING
    assert record.add_ons == {DATABASE_PACKAGE}
    assert record.subscription_start_date == datetime(2025, 1, 31, 9, 30, tzinfo=timezone.utc)
    # Jan 31 + 1 month clamps to Feb 28
    assert record.next_billing_date == datetime(2025, 2, 28, 9, 30, tzinfo=timezone.utc)
    assert record.subscription_end_date == record.next_billing_date


@pytest.mark.asyncio
async def test_free_onboarding_is_active_without_dates(billing, user_id):
    record = await billing.apply_onboarding(user_id, "free", "annual")
    assert record.payment_status is PaymentStatus.ACTIVE
    assert record.plan_price == 0
    assert record.subscription_end_date is None
    assert record.next_billing_date is None


@pytest.mark.asyncio
async def test_onboarding_rejects_bad_input_and_unknown_user(billing, user_id):
    with pytest.raises(InvalidInputError):
        await billing.apply_onboarding(user_id, "gold", "monthly")
    with pytest.raises(InvalidInputError):
        await billing.apply_onboarding(user_id, "builder", "weekly")
    with pytest.raises(InvalidInputError):
        await billing.apply_onboarding(user_id, "builder", "monthly", ["designer_package"])
    with pytest.raises(NotFoundError):
        await billing.apply_onboarding("missing-user", "free", "monthly")


@pytest.mark.asyncio
async def test_repeat_onboarding_replaces_plan_fields_and_keeps_credits(billing, user_id):
    await billing.apply_onboarding(user_id, "builder", "monthly", [DATABASE_PACKAGE])
    await billing.purchase_credits(user_id, "image", 10)

    record = await billing.apply_onboarding(user_id, "enterprise", "annual", [CODER_PACKAGE])

    assert record.selected_plan == "enterprise"
    assert record.plan_price == Decimal("12")
    # trusted as given at onboarding; no entitlement filtering
    assert record.add_ons == {CODER_PACKAGE}
    assert record.image_credits == 10
    assert record.total_image_purchases == 1
    assert record.version == 3


@pytest.mark.asyncio
async def test_get_billing_matches_last_mutation(billing, user_id):
    state = await billing.get_billing_for_user(user_id)
    assert state.user.email == "ada@example.com"
    assert state.billing is None

    results = [
        await billing.apply_onboarding(user_id, "free", "monthly"),
        await billing.purchase_addon(user_id, DATABASE_PACKAGE),
        await billing.change_plan(user_id, "builder", "annual"),
        (await billing.purchase_credits(user_id, "document", 5)),
        await billing.cancel(user_id),
    ]
    for result in results[:3] + results[4:]:
        assert result.version >= 1
    latest = (await billing.get_billing_for_user(user_id)).billing
    assert latest == results[-1]

    with pytest.raises(NotFoundError):
        await billing.get_billing_for_user("missing-user")


@pytest.mark.asyncio
async def test_mutation_result_is_what_is_read_back(billing, user_id):
    await billing.apply_onboarding(user_id, "free", "monthly")
    changed = await billing.change_plan(user_id, "builder", "monthly")
    assert (await billing.get_billing_for_user(user_id)).billing == changed


@pytest.mark.asyncio
async def test_change_plan_requires_user_and_record(billing, user_id):
    with pytest.raises(NoBillingRecordError):
        await billing.change_plan(user_id, "builder", "monthly")

    with pytest.raises(NotFoundError) as excinfo:
        await billing.change_plan("missing-user", "builder", "monthly")
    assert not isinstance(excinfo.value, NoBillingRecordError)

    await billing.apply_onboarding(user_id, "free", "monthly")
    with pytest.raises(InvalidInputError):
        await billing.change_plan(user_id, "platinum", "monthly")


@pytest.mark.asyncio
async def test_upgrade_to_builder_drops_coder_package(billing, user_id):
    await billing.apply_onboarding(user_id, "free", "monthly", [CODER_PACKAGE, DATABASE_PACKAGE])

    record = await billing.change_plan(user_id, "builder", "monthly")

    assert record.add_ons == {DATABASE_PACKAGE}
    assert record.payment_status is PaymentStatus.PENDING


@pytest.mark.asyncio
async def test_enterprise_round_trip_clears_add_ons(billing, user_id):
    await billing.apply_onboarding(user_id, "free", "monthly", [DATABASE_PACKAGE])

    enterprise = await billing.change_plan(user_id, "enterprise", "annual")
    assert enterprise.add_ons == set()
    assert enterprise.plan_price == Decimal("12")

    free = await billing.change_plan(user_id, "free", "monthly")
    assert free.add_ons == set()
    assert free.payment_status is PaymentStatus.ACTIVE
    assert free.next_billing_date is None


@pytest.mark.asyncio
async def test_downgrade_keeps_purchased_add_ons(billing, user_id):
    await billing.apply_onboarding(user_id, "builder", "monthly")
    await billing.purchase_addon(user_id, DATABASE_PACKAGE)

    record = await billing.change_plan(user_id, "free", "monthly")

    assert record.add_ons == {DATABASE_PACKAGE}


@pytest.mark.asyncio
async def test_cancel_on_free_plan_is_rejected_and_row_unchanged(billing, user_id):
    before = await billing.apply_onboarding(user_id, "free", "monthly", [DATABASE_PACKAGE])

    with pytest.raises(InvalidStateError):
        await billing.cancel(user_id)

    assert (await billing.get_billing_for_user(user_id)).billing == before


@pytest.mark.asyncio
async def test_cancel_resets_to_free(billing, user_id):
    await billing.apply_onboarding(user_id, "enterprise", "annual")

    record = await billing.cancel(user_id)

    assert record.selected_plan == "free"
    assert record.billing_cycle is BillingCycle.MONTHLY
    assert record.plan_price == 0
    assert record.add_ons == set()
    assert record.subscription_end_date is None
    assert record.next_billing_date is None
    assert record.payment_status is PaymentStatus.ACTIVE


@pytest.mark.asyncio
async def test_cancel_requires_billing_record(billing, user_id):
    with pytest.raises(NoBillingRecordError):
        await billing.cancel(user_id)


@pytest.mark.asyncio
async def test_purchase_addon_twice_is_already_owned(billing, user_id):
    await billing.apply_onboarding(user_id, "free", "monthly")

    record = await billing.purchase_addon(user_id, CODER_PACKAGE)
    assert record.add_ons == {CODER_PACKAGE}

    with pytest.raises(AlreadyOwnedError):
        await billing.purchase_addon(user_id, CODER_PACKAGE)


@pytest.mark.asyncio
async def test_builder_owning_coder_package_is_told_plan_includes_it(billing, user_id):
    await billing.apply_onboarding(user_id, "builder", "monthly", [CODER_PACKAGE])

    with pytest.raises(PlanIncludesFeatureError):
        await billing.purchase_addon(user_id, CODER_PACKAGE)


@pytest.mark.asyncio
async def test_enterprise_blocks_every_add_on(billing, user_id):
    await billing.apply_onboarding(user_id, "enterprise", "monthly")
    for package in (CODER_PACKAGE, DATABASE_PACKAGE):
        with pytest.raises(PlanIncludesFeatureError):
            await billing.purchase_addon(user_id, package)


@pytest.mark.asyncio
async def test_purchase_addon_validation(billing, user_id):
    with pytest.raises(InvalidInputError):
        await billing.purchase_addon(user_id, "designer_package")
    with pytest.raises(NoBillingRecordError):
        await billing.purchase_addon(user_id, DATABASE_PACKAGE)


@pytest.mark.asyncio
async def test_two_image_packs(billing, user_id):
    await billing.apply_onboarding(user_id, "free", "monthly")

    first = await billing.purchase_credits(user_id, "image", 10)
    second = await billing.purchase_credits(user_id, "image", 10)

    assert (first.balance, second.balance) == (10, 20)
    assert second.total_purchases == 2
    assert first.purchase.id != second.purchase.id

    record = (await billing.get_billing_for_user(user_id)).billing
    assert record.image_credits == 20
    assert record.total_image_purchases == 2
    assert [p.id for p in record.image_purchase_history] == [first.purchase.id, second.purchase.id]
    assert record.document_credits == 0


@pytest.mark.asyncio
async def test_credit_quantity_must_match_pack(billing, user_id):
    await billing.apply_onboarding(user_id, "free", "monthly")
    with pytest.raises(InvalidInputError):
        await billing.purchase_credits(user_id, "image", 20)
    with pytest.raises(InvalidInputError):
        await billing.purchase_credits(user_id, "audio", 10)


@pytest.mark.asyncio
async def test_document_purchase_on_enterprise_changes_nothing(billing, user_id):
    before = await billing.apply_onboarding(user_id, "enterprise", "monthly")

    with pytest.raises(PlanIncludesFeatureError):
        await billing.purchase_credits(user_id, "document", 5)

    after = (await billing.get_billing_for_user(user_id)).billing
    assert after == before
    assert after.document_credits == 0
    assert after.total_document_purchases == 0
    assert after.document_purchase_history == []


@pytest.mark.asyncio
async def test_document_purchase_for_project(billing, projects, accounts, user_id):
    await billing.apply_onboarding(user_id, "builder", "monthly")
    project = await projects.create_project(user_id, _project(user_id))

    result = await billing.purchase_credits(user_id, "document", 5, project_id=project.id)

    assert result.balance == 5
    assert result.purchase.project_id == project.id
    assert result.purchase.project_name == "Launchpad"

    other = await accounts.create_user(first_name="Grace", last_name="Hopper", email="grace@example.com")
    other_project = await projects.create_project(other.id, _project(other.id, "Compiler"))
    with pytest.raises(NotFoundError):
        await billing.purchase_credits(user_id, "document", 5, project_id=other_project.id)
    assert (await billing.get_billing_for_user(user_id)).billing.document_credits == 5


@pytest.mark.asyncio
async def test_rejections_are_written_to_ledger(billing, db, user_id, tmp_path):
    await billing.apply_onboarding(user_id, "free", "monthly")
    with pytest.raises(InvalidStateError):
        await billing.cancel(user_id, correlation_id="req-42")

    entries = list(await db.get_ledger_entries(user_id))
    errors = [e for e in entries if e.event_type is LedgerEventType.ERROR]
    assert len(errors) == 1
    assert errors[0].details["code"] == "invalid_state"
    assert errors[0].details["operation"] == "cancel_subscription"
    assert errors[0].correlation_id == "req-42"
    assert any(e.event_type is LedgerEventType.BILLING for e in entries)
    assert (tmp_path / "ledger.log").read_text(encoding="utf-8").count("\n") == len(entries)


@pytest.mark.asyncio
async def test_concurrent_add_on_purchases_are_not_lost(billing, user_id):
    await billing.apply_onboarding(user_id, "free", "monthly")

    await asyncio.gather(
        billing.purchase_addon(user_id, CODER_PACKAGE),
        billing.purchase_addon(user_id, DATABASE_PACKAGE),
    )

    record = (await billing.get_billing_for_user(user_id)).billing
    assert record.add_ons == {CODER_PACKAGE, DATABASE_PACKAGE}


@pytest.mark.asyncio
async def test_plan_missing_from_active_catalog_still_buys(billing, db, ledger, user_id):
    legacy = BillingService(db=db, ledger=ledger, catalog=LEGACY_CATALOG)
    await legacy.apply_onboarding(user_id, "pro", "monthly")

    credits = await billing.purchase_credits(user_id, "image", 10)
    assert credits.balance == 10

    record = await billing.purchase_addon(user_id, DATABASE_PACKAGE)
    assert record.selected_plan == "pro"
    assert record.add_ons == {DATABASE_PACKAGE}
