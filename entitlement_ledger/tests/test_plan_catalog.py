from __future__ import annotations

from datetime import datetime, timezone

import pytest

from entitlement_ledger.app.entitlements import (
    DEFAULT_PLANS,
    InMemoryLedgerStore,
    Plan,
    PlanCatalog,
    PlanLimits,
    PlanNotFoundError,
)


@pytest.fixture
def catalog(clock) -> PlanCatalog:
    return PlanCatalog(InMemoryLedgerStore(DEFAULT_PLANS), clock=clock)


def test_list_plans_orders_by_price(catalog: PlanCatalog) -> None:
    names = [plan.name for plan in catalog.list_plans()]

    assert names == ["Free", "Starter", "Pro"]


def test_get_plan_unknown_raises_lookup_error(catalog: PlanCatalog) -> None:
    with pytest.raises(PlanNotFoundError):
        catalog.get_plan("plan_missing")

    assert issubclass(PlanNotFoundError, LookupError)


def test_find_free_plan_prefers_oldest_free_tier(catalog: PlanCatalog) -> None:
    newer = catalog.create_plan(
        name="Community",
        price_minor_units=0,
        validity_days=30,
        limits=PlanLimits(interview=1),
    )

    assert newer.is_free_tier is True
    assert catalog.find_free_plan().id == "plan_free"


def test_find_free_plan_ignores_inactive_plans(clock) -> None:
    retired = Plan(
        id="plan_old_free",
        name="Legacy Free",
        price_minor_units=0,
        validity_days=30,
        limits=PlanLimits(interview=1),
        is_free_tier=True,
        is_active=False,
        created_at=datetime(2020, 1, 1, tzinfo=timezone.utc),
    )
    catalog = PlanCatalog(InMemoryLedgerStore([retired]), clock=clock)

    with pytest.raises(PlanNotFoundError):
        catalog.find_free_plan()


def test_create_plan_publishes_new_entry(catalog: PlanCatalog, clock) -> None:
    plan = catalog.create_plan(
        name="  Team  ",
        price_minor_units=499000,
        validity_days=180,
        limits=PlanLimits(interview=100, assessment=200, document_upload=50),
        description="Shared prep for a cohort.",
    )

    assert plan.id.startswith("plan_")
    assert plan.name == "Team"
    assert plan.is_free_tier is False
    assert plan.created_at == clock.now
    assert catalog.get_plan(plan.id) == plan


def test_create_plan_rejects_duplicate_active_name(catalog: PlanCatalog) -> None:
    with pytest.raises(ValueError):
        catalog.create_plan(
            name="starter",
            price_minor_units=1000,
            validity_days=30,
            limits=PlanLimits(interview=1),
        )


@pytest.mark.parametrize(
    "overrides",
    [
        {"name": "   "},
        {"price_minor_units": -1},
        {"validity_days": 0},
    ],
)
def test_create_plan_validates_inputs(catalog: PlanCatalog, overrides) -> None:
    arguments = {
        "name": "Weekend",
        "price_minor_units": 1000,
        "validity_days": 2,
        "limits": PlanLimits(interview=1),
    }
    arguments.update(overrides)

    with pytest.raises(ValueError):
        catalog.create_plan(**arguments)
