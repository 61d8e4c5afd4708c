"""
Plan catalog: plan identifiers, base prices, implied add-ons, unlimited
credit pools, the add-on catalog and credit packs.

The state machine in `services.entitlements` only asks the catalog
questions ("is this plan free?", "does it include that add-on?"), so a
catalog can be swapped for another one, or loaded from JSON, without
touching the transition rules.
"""

from __future__ import annotations

import json
from decimal import ROUND_HALF_UP, Decimal
from pathlib import Path
from typing import Any, Mapping, Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationError, model_validator

from .errors import InvalidInputError
from .models.billing import BillingCycle, CreditPool


CODER_PACKAGE = "coder_package"
DATABASE_PACKAGE = "database_package"


class PlanDefinition(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    name: str
    base_price: Decimal = Field(ge=0)
    implied_add_ons: frozenset[str] = frozenset()
    includes_all_add_ons: bool = False
    unlimited_pools: frozenset[CreditPool] = frozenset()
    base_documents: Optional[int] = Field(
        default=None,
        description="Per-project document quota; null means unlimited.",
    )

    def includes_add_on(self, add_on: str) -> bool:
        return self.includes_all_add_ons or add_on in self.implied_add_ons


class AddOnDefinition(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    name: str
    description: Optional[str] = None


class CreditPack(BaseModel):
    """Fixed (quantity, unit price) purchase unit for one credit pool."""

    model_config = ConfigDict(frozen=True)

    pool: CreditPool
    quantity: int = Field(gt=0)
    unit_price: Decimal = Field(ge=0)

    @property
    def total_price(self) -> Decimal:
        return self.unit_price * self.quantity


class PlanCatalog(BaseModel):
    model_config = ConfigDict(frozen=True)

    free_plan: str = "free"
    annual_discount: Decimal = Field(default=Decimal("0.20"), ge=0, lt=1)
    plans: dict[str, PlanDefinition]
    add_ons: dict[str, AddOnDefinition]
    credit_packs: dict[CreditPool, CreditPack]

    @model_validator(mode="after")
    def _check_consistency(self) -> "PlanCatalog":
        if self.free_plan not in self.plans:
            raise ValueError(f"free plan {self.free_plan!r} is not in the catalog")
        if self.plans[self.free_plan].base_price != 0:
            raise ValueError("free plan must have a zero base price")
        for plan_id, plan in self.plans.items():
            if plan_id != plan.id:
                raise ValueError(f"plan key {plan_id!r} does not match id {plan.id!r}")
            unknown = plan.implied_add_ons - self.add_ons.keys()
            if unknown:
                raise ValueError(f"plan {plan_id!r} implies unknown add-ons {sorted(unknown)}")
        for pool, pack in self.credit_packs.items():
            if pool != pack.pool:
                raise ValueError(f"credit pack key {pool.value!r} does not match its pool")
        return self

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any]) -> "PlanCatalog":
        return cls.model_validate(data)

    @classmethod
    def from_file(cls, path: Path) -> "PlanCatalog":
        with path.open("r", encoding="utf-8") as f:
            return cls.from_mapping(json.load(f))

    # Lookups; every miss is a caller error
    def plan(self, plan_id: str) -> PlanDefinition:
        try:
            return self.plans[plan_id]
        except KeyError:
            raise InvalidInputError(
                "Invalid plan selected",
                details={"plan": plan_id, "valid_plans": sorted(self.plans)},
            ) from None

    def add_on(self, add_on_id: str) -> AddOnDefinition:
        try:
            return self.add_ons[add_on_id]
        except KeyError:
            raise InvalidInputError(
                "Invalid package type",
                details={"package_type": add_on_id, "valid_packages": sorted(self.add_ons)},
            ) from None

    def credit_pack(self, pool: CreditPool | str) -> CreditPack:
        try:
            return self.credit_packs[CreditPool(pool)]
        except (KeyError, ValueError):
            raise InvalidInputError(
                "Invalid credit pool",
                details={"pool": str(getattr(pool, "value", pool))},
            ) from None

    def is_free(self, plan_id: str) -> bool:
        return plan_id == self.free_plan

    def price(self, plan_id: str, cycle: BillingCycle | str) -> Decimal:
        """
        Price of a plan for a billing cycle.

        Annual pricing takes the flat discount off the base and rounds to a
        whole currency unit, half up. Free plans are always zero.
        """
        plan = self.plan(plan_id)
        cycle = parse_cycle(cycle)
        if self.is_free(plan_id):
            return Decimal("0")
        if cycle is BillingCycle.ANNUAL:
            discounted = plan.base_price * (Decimal("1") - self.annual_discount)
            return discounted.quantize(Decimal("1"), rounding=ROUND_HALF_UP)
        return plan.base_price


def parse_cycle(cycle: BillingCycle | str) -> BillingCycle:
    try:
        return BillingCycle(cycle)
    except ValueError:
        raise InvalidInputError(
            "Invalid billing cycle selected",
            details={"billing_cycle": str(cycle)},
        ) from None


_ADD_ONS = {
    CODER_PACKAGE: AddOnDefinition(
        id=CODER_PACKAGE,
        name="Coder package",
        description="Code generation for the project's tech stack.",
    ),
    DATABASE_PACKAGE: AddOnDefinition(
        id=DATABASE_PACKAGE,
        name="Database package",
        description="Managed database schema and data model design.",
    ),
}

_CREDIT_PACKS = {
    CreditPool.IMAGE: CreditPack(pool=CreditPool.IMAGE, quantity=10, unit_price=Decimal("0.50")),
    CreditPool.DOCUMENT: CreditPack(pool=CreditPool.DOCUMENT, quantity=5, unit_price=Decimal("1.00")),
}


BUILDER_CATALOG = PlanCatalog(
    plans={
        "free": PlanDefinition(id="free", name="Free", base_price=Decimal("0"), base_documents=3),
        "builder": PlanDefinition(
            id="builder",
            name="Builder",
            base_price=Decimal("5"),
            implied_add_ons=frozenset({CODER_PACKAGE}),
            base_documents=10,
        ),
        "enterprise": PlanDefinition(
            id="enterprise",
            name="Enterprise",
            base_price=Decimal("15"),
            includes_all_add_ons=True,
            unlimited_pools=frozenset({CreditPool.DOCUMENT}),
        ),
    },
    add_ons=_ADD_ONS,
    credit_packs=_CREDIT_PACKS,
)

LEGACY_CATALOG = PlanCatalog(
    plans={
        "free": PlanDefinition(id="free", name="Free", base_price=Decimal("0"), base_documents=3),
        "pro": PlanDefinition(id="pro", name="Pro", base_price=Decimal("29"), base_documents=10),
        "enterprise": PlanDefinition(
            id="enterprise",
            name="Enterprise",
            base_price=Decimal("99"),
            includes_all_add_ons=True,
            unlimited_pools=frozenset({CreditPool.DOCUMENT}),
        ),
    },
    add_ons=_ADD_ONS,
    credit_packs=_CREDIT_PACKS,
)

BUILTIN_CATALOGS: dict[str, PlanCatalog] = {
    "builder": BUILDER_CATALOG,
    "legacy": LEGACY_CATALOG,
}


def load_catalog(name: str = "builder", path: Optional[Path] = None) -> PlanCatalog:
    """
    Resolve the active catalog: a JSON file wins over a built-in name.
    """
    if path is not None:
        try:
            return PlanCatalog.from_file(path)
        except ValidationError as exc:
            raise InvalidInputError(
                "Invalid plan catalog file", details={"path": str(path), "errors": exc.errors()}
            ) from exc
    try:
        return BUILTIN_CATALOGS[name]
    except KeyError:
        raise InvalidInputError(
            "Unknown plan catalog", details={"catalog": name, "known": sorted(BUILTIN_CATALOGS)}
        ) from None
