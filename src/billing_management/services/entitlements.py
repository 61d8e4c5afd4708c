"""
Pure billing transition rules.

Nothing here performs I/O: each function takes the current record (or
plain inputs) plus the catalog and returns the next state, or raises a
`BillingError` when the transition is not allowed. `BillingService` wraps
these in transactions.
"""

from __future__ import annotations

from datetime import datetime
from typing import Iterable, Optional
from uuid import uuid4

from ..catalog import CreditPack, PlanCatalog, PlanDefinition, parse_cycle
from ..errors import (
    AlreadyOwnedError,
    InvalidInputError,
    InvalidStateError,
    PlanIncludesFeatureError,
)
from ..models.billing import (
    BillingCycle,
    BillingRecord,
    BillingStatus,
    CreditPool,
    PaymentStatus,
    PurchaseRecord,
)
from ..models.project import Project
from ..timeutils import add_calendar_months, add_calendar_years


def subscription_dates(
    catalog: PlanCatalog,
    plan_id: str,
    cycle: BillingCycle,
    start: datetime,
) -> tuple[Optional[datetime], Optional[datetime]]:
    """Return (subscription_end_date, next_billing_date) for a plan started at `start`."""
    if catalog.is_free(plan_id):
        return None, None
    if cycle is BillingCycle.ANNUAL:
        end = add_calendar_years(start, 1)
    else:
        end = add_calendar_months(start, 1)
    return end, end


def plan_terms(
    catalog: PlanCatalog,
    plan_id: str,
    cycle: BillingCycle | str,
    now: datetime,
) -> dict:
    """
    Everything a plan selection writes besides add-ons: price, dates and
    statuses. Used by onboarding, plan change and cancellation alike.
    """
    catalog.plan(plan_id)
    cycle = parse_cycle(cycle)
    end, next_billing = subscription_dates(catalog, plan_id, cycle, now)
    return {
        "selected_plan": plan_id,
        "billing_cycle": cycle,
        "plan_price": catalog.price(plan_id, cycle),
        "subscription_start_date": now,
        "subscription_end_date": end,
        "next_billing_date": next_billing,
        "status": BillingStatus.ACTIVE,
        "payment_status": (
            PaymentStatus.ACTIVE if catalog.is_free(plan_id) else PaymentStatus.PENDING
        ),
    }


def _stored_plan(catalog: PlanCatalog, record: BillingRecord) -> Optional[PlanDefinition]:
    # A stored plan the active catalog no longer lists grants nothing extra
    return catalog.plans.get(record.selected_plan)


def validate_add_ons(catalog: PlanCatalog, add_ons: Iterable[str]) -> set[str]:
    return {catalog.add_on(add_on).id for add_on in add_ons}


def reconcile_add_ons(
    catalog: PlanCatalog,
    current_plan: str,
    new_plan: str,
    add_ons: set[str],
) -> set[str]:
    """
    Edit the add-on set for a plan change.

    Entering or leaving an all-inclusive plan empties the set. Otherwise
    add-ons the target plan already includes are dropped (free -> builder
    drops the coder package) and the rest carry over, downgrades included.
    """
    target = catalog.plan(new_plan)
    source = catalog.plans.get(current_plan)
    if target.includes_all_add_ons or (source is not None and source.includes_all_add_ons):
        return set()
    return {add_on for add_on in add_ons if not target.includes_add_on(add_on)}


def cancellation_add_ons(
    catalog: PlanCatalog, current_plan: str, add_ons: set[str]
) -> set[str]:
    source = catalog.plans.get(current_plan)
    if source is not None and source.includes_all_add_ons:
        return set()
    return set(add_ons)


def new_billing_record(
    catalog: PlanCatalog,
    user_id: str,
    plan_id: str,
    cycle: BillingCycle | str,
    add_ons: Iterable[str],
    now: datetime,
) -> BillingRecord:
    terms = plan_terms(catalog, plan_id, cycle, now)
    return BillingRecord(
        user_id=user_id,
        add_ons=validate_add_ons(catalog, add_ons),
        created_at=now,
        updated_at=now,
        **terms,
    )


def apply_onboarding(
    catalog: PlanCatalog,
    record: BillingRecord,
    plan_id: str,
    cycle: BillingCycle | str,
    add_ons: Iterable[str],
    now: datetime,
) -> BillingRecord:
    # Full replace of plan fields; caller add-ons are taken as given
    terms = plan_terms(catalog, plan_id, cycle, now)
    return record.model_copy(
        update={**terms, "add_ons": validate_add_ons(catalog, add_ons)}
    )


def apply_plan_change(
    catalog: PlanCatalog,
    record: BillingRecord,
    new_plan: str,
    new_cycle: BillingCycle | str,
    now: datetime,
) -> BillingRecord:
    terms = plan_terms(catalog, new_plan, new_cycle, now)
    add_ons = reconcile_add_ons(catalog, record.selected_plan, new_plan, record.add_ons)
    return record.model_copy(update={**terms, "add_ons": add_ons})


def apply_cancellation(
    catalog: PlanCatalog, record: BillingRecord, now: datetime
) -> BillingRecord:
    if catalog.is_free(record.selected_plan):
        raise InvalidStateError(
            "Subscription is already on the free plan",
            details={"selected_plan": record.selected_plan},
        )
    terms = plan_terms(catalog, catalog.free_plan, BillingCycle.MONTHLY, now)
    add_ons = cancellation_add_ons(catalog, record.selected_plan, record.add_ons)
    return record.model_copy(update={**terms, "add_ons": add_ons})


def apply_add_on_purchase(
    catalog: PlanCatalog, record: BillingRecord, package_type: str
) -> BillingRecord:
    """
    Grant an add-on. Plan inclusion is checked before ownership, so a
    builder user holding the coder package is told the plan covers it.
    """
    add_on = catalog.add_on(package_type)
    plan = _stored_plan(catalog, record)
    if plan is not None and plan.includes_add_on(add_on.id):
        raise PlanIncludesFeatureError(
            f"The {plan.name} plan already includes {add_on.name}",
            details={"selected_plan": plan.id, "package_type": add_on.id},
        )
    if add_on.id in record.add_ons:
        raise AlreadyOwnedError(
            f"{add_on.name} is already owned",
            details={"package_type": add_on.id},
        )
    return record.model_copy(update={"add_ons": record.add_ons | {add_on.id}})


def resolve_credit_pack(
    catalog: PlanCatalog, pool: CreditPool | str, quantity: int
) -> CreditPack:
    """The pack for `pool`, provided `quantity` is exactly one pack."""
    pack = catalog.credit_pack(pool)
    if quantity != pack.quantity:
        raise InvalidInputError(
            f"{pack.pool.value.capitalize()} credits are sold in packs of {pack.quantity}",
            details={"pool": pack.pool.value, "quantity": quantity, "pack_size": pack.quantity},
        )
    return pack


def purchase_id(pool: CreditPool, at: datetime) -> str:
    return f"{pool.value}_{int(at.timestamp() * 1000)}_{uuid4().hex[:8]}"


def apply_credit_purchase(
    catalog: PlanCatalog,
    record: BillingRecord,
    pool: CreditPool | str,
    quantity: int,
    now: datetime,
    project: Optional[Project] = None,
) -> tuple[BillingRecord, PurchaseRecord]:
    """
    Buy exactly one pack for a pool. Balance, counter and history change
    together in the returned record.
    """
    pack = resolve_credit_pack(catalog, pool, quantity)
    plan = _stored_plan(catalog, record)
    if plan is not None and pack.pool in plan.unlimited_pools:
        raise PlanIncludesFeatureError(
            f"The {plan.name} plan already includes unlimited {pack.pool.value} credits",
            details={"selected_plan": plan.id, "pool": pack.pool.value},
        )
    purchase = PurchaseRecord(
        id=purchase_id(pack.pool, now),
        pool=pack.pool,
        quantity=pack.quantity,
        unit_price=pack.unit_price,
        total_price=pack.total_price,
        purchased_at=now,
        project_id=project.id if project else None,
        project_name=project.project_name if project else None,
    )
    return record.with_purchase(purchase), purchase
