from __future__ import annotations

import json
from decimal import ROUND_HALF_UP, Decimal

import pytest

from billing_management.catalog import (
    BUILDER_CATALOG,
    BUILTIN_CATALOGS,
    LEGACY_CATALOG,
    PlanCatalog,
    load_catalog,
)
from billing_management.errors import InvalidInputError
from billing_management.models.billing import BillingCycle, CreditPool


@pytest.mark.parametrize("catalog_name", sorted(BUILTIN_CATALOGS))
def test_annual_price_is_rounded_eighty_percent_of_monthly(catalog_name):
    catalog = BUILTIN_CATALOGS[catalog_name]
    for plan_id in catalog.plans:
        monthly = catalog.price(plan_id, "monthly")
        annual = catalog.price(plan_id, "annual")
        expected = (monthly * Decimal("0.8")).quantize(Decimal("1"), rounding=ROUND_HALF_UP)
        assert annual == expected


@pytest.mark.parametrize("cycle", list(BillingCycle))
def test_free_plan_costs_nothing_on_any_cycle(cycle):
    assert BUILDER_CATALOG.price("free", cycle) == 0
    assert LEGACY_CATALOG.price("free", cycle) == 0


def test_builtin_price_tables():
    assert BUILDER_CATALOG.price("builder", "monthly") == Decimal("5")
    assert BUILDER_CATALOG.price("builder", "annual") == Decimal("4")
    assert BUILDER_CATALOG.price("enterprise", "monthly") == Decimal("15")
    assert BUILDER_CATALOG.price("enterprise", "annual") == Decimal("12")
    assert LEGACY_CATALOG.price("pro", "annual") == Decimal("23")
    assert LEGACY_CATALOG.price("enterprise", "annual") == Decimal("79")


def test_annual_rounding_is_half_up():
    catalog = PlanCatalog.from_mapping(
        {
            "plans": {
                "free": {"id": "free", "name": "Free", "base_price": "0"},
                "odd": {"id": "odd", "name": "Odd", "base_price": "3.125"},
            },
            "add_ons": {},
            "credit_packs": {},
        }
    )
    # 3.125 * 0.8 == 2.5 exactly
    assert catalog.price("odd", "annual") == Decimal("3")


def test_unknown_plan_cycle_package_and_pool_are_invalid_input():
    with pytest.raises(InvalidInputError, match="Invalid plan"):
        BUILDER_CATALOG.price("platinum", "monthly")
    with pytest.raises(InvalidInputError, match="Invalid billing cycle"):
        BUILDER_CATALOG.price("builder", "weekly")
    with pytest.raises(InvalidInputError, match="Invalid package"):
        BUILDER_CATALOG.add_on("designer_package")
    with pytest.raises(InvalidInputError, match="Invalid credit pool"):
        BUILDER_CATALOG.credit_pack("video")


def test_plan_implications():
    assert BUILDER_CATALOG.plan("builder").includes_add_on("coder_package")
    assert not BUILDER_CATALOG.plan("builder").includes_add_on("database_package")
    assert BUILDER_CATALOG.plan("enterprise").includes_add_on("database_package")
    assert not LEGACY_CATALOG.plan("pro").includes_add_on("coder_package")
    assert CreditPool.DOCUMENT in BUILDER_CATALOG.plan("enterprise").unlimited_pools


def test_credit_packs():
    image = BUILDER_CATALOG.credit_pack("image")
    document = BUILDER_CATALOG.credit_pack(CreditPool.DOCUMENT)
    assert (image.quantity, image.unit_price) == (10, Decimal("0.50"))
    assert (document.quantity, document.unit_price) == (5, Decimal("1.00"))
    assert image.total_price == Decimal("5.00")


def test_load_catalog_from_file(tmp_path):
    path = tmp_path / "catalog.json"
    path.write_text(
        json.dumps(
            {
                "plans": {
                    "free": {"id": "free", "name": "Free", "base_price": "0", "base_documents": 1},
                    "starter": {
                        "id": "starter",
                        "name": "Starter",
                        "base_price": "10",
                        "implied_add_ons": ["coder_package"],
                    },
                },
                "add_ons": {"coder_package": {"id": "coder_package", "name": "Coder"}},
                "credit_packs": {
                    "image": {"pool": "image", "quantity": 20, "unit_price": "0.25"}
                },
            }
        ),
        encoding="utf-8",
    )

    catalog = load_catalog("builder", path=path)

    assert catalog.price("starter", "annual") == Decimal("8")
    assert catalog.plan("starter").includes_add_on("coder_package")
    assert catalog.credit_pack("image").quantity == 20


def test_load_catalog_rejects_inconsistent_file(tmp_path):
    path = tmp_path / "catalog.json"
    path.write_text(
        json.dumps(
            {
                "plans": {"pro": {"id": "pro", "name": "Pro", "base_price": "29"}},
                "add_ons": {},
                "credit_packs": {},
            }
        ),
        encoding="utf-8",
    )
    with pytest.raises(InvalidInputError, match="Invalid plan catalog file"):
        load_catalog(path=path)


def test_load_catalog_by_name():
    assert load_catalog("legacy") is LEGACY_CATALOG
    with pytest.raises(InvalidInputError):
        load_catalog("premium")
